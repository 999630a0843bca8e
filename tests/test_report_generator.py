"""Tests for the chunked TaxReportGenerator pipeline."""

import itertools
import threading
import pytest
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from application.cost_basis import LotIdentifier
from application.report_generator import ReportConfig, ReportOptions, TaxReportGenerator
from domain.enums import (
    CostBasisMethod, FuturesOperation, InterestType, LotSelectionStrategy, ReportPhase,
    TaxEventType, TradeSide, WarningKind,
)
from domain.exceptions import ReportCancelled, UnsupportedCostBasisMethod, UnsupportedJurisdiction
from domain.jurisdictions import JURISDICTIONS, australia
from domain.transactions import (
    FuturesTrade, Interest, LiquidityAdd, LiquidityRemove, SpotTrade, StakingDeposit,
    StakingReward, StakingWithdrawal, Swap, UnknownTransaction,
)
from domain.value_objects import AssetAmount, DataSource

SRC = DataSource(id="cs", name="CoinSpot")


def _utc(y, m, d) -> datetime:
    return datetime(y, m, d, tzinfo=timezone.utc)


def _make_trade(tx_id: str, side: TradeSide, when: datetime, amount: str,
                total: str, asset: str = "BTC") -> SpotTrade:
    return SpotTrade(
        id=tx_id, timestamp=when, source=SRC, side=side,
        base_asset=AssetAmount(asset, Decimal(amount)),
        quote_asset=AssetAmount("AUD", Decimal(total)),
    )


def _fixture() -> list:
    """Six in-period transactions for the 2023-2024 year, one of them unmatchable."""
    return [
        _make_trade("B1", TradeSide.BUY, _utc(2023, 8, 1), "1", "40000"),
        _make_trade("E1", TradeSide.BUY, _utc(2023, 9, 1), "5", "10000", "ETH"),
        _make_trade("E2", TradeSide.BUY, _utc(2023, 9, 2), "3", "6000", "ETH"),
        _make_trade("ED", TradeSide.SELL, _utc(2023, 10, 1), "10", "30000", "ETH"),
        StakingReward(id="R1", timestamp=_utc(2023, 12, 1), source=SRC,
                      reward=AssetAmount("ETH", Decimal("0.1"), Decimal("300"))),
        _make_trade("S1", TradeSide.SELL, _utc(2024, 3, 1), "1", "50000"),
    ]


def _run(transactions, year=2024, **options):
    config = ReportConfig("AU", year, transactions, ReportOptions(**options))
    return TaxReportGenerator().generate_report(config)


class TestPipeline:
    def test_report_figures(self):
        report = _run(_fixture())
        s = report.summary
        assert report.transaction_count == 6
        assert s.total_capital_gains == Decimal("10000.00")
        assert s.ordinary_income == Decimal("300.00")
        assert s.net_taxable_amount == Decimal("10300.00")
        assert report.period.label == "2023-2024"
        assert report.method == CostBasisMethod.FIFO

    def test_insufficient_lots_skip_one_disposal(self):
        report = _run(_fixture())
        by_id = {t.id: t for t in report.transactions}
        skipped = by_id["ED"]
        assert skipped.is_skipped
        assert skipped.capital_gain is None and skipped.capital_loss is None
        assert "ETH" in skipped.skip_reason
        assert report.metadata.skipped_count == 1
        assert [w.kind for w in report.warnings] == [WarningKind.SKIPPED_DISPOSAL]
        assert by_id["S1"].capital_gain == Decimal("10000.00")

    def test_out_of_period_transactions_excluded(self):
        txs = _fixture() + [_make_trade("LATE", TradeSide.BUY, _utc(2024, 7, 1), "1", "1")]
        assert "LATE" not in {t.id for t in _run(txs).transactions}

    def test_skipped_disposal_leaves_lots(self):
        txs = _fixture() + [
            _make_trade("EX", TradeSide.SELL, _utc(2024, 1, 5), "0.1", "400", "ETH")]
        report = _run(txs)
        ex = next(t for t in report.transactions if t.id == "EX")
        assert ex.cost_basis.lots[0].transaction_id == "E1"
        assert ex.capital_gain == Decimal("200.00")

    def test_income_opens_lot_at_market_value(self):
        txs = [
            StakingReward(id="R1", timestamp=_utc(2023, 12, 1), source=SRC,
                          reward=AssetAmount("ETH", Decimal("0.1"), Decimal("300"))),
            _make_trade("EX", TradeSide.SELL, _utc(2024, 1, 5), "0.1", "400", "ETH"),
        ]
        ex = _run(txs).transactions[-1]
        assert ex.cost_basis.total_cost == Decimal("300.00")
        assert ex.capital_gain == Decimal("100.00")

    def test_unclassified_warning(self):
        txs = [UnknownTransaction(id="U1", timestamp=_utc(2023, 9, 1), source=SRC,
                                  raw_type="mystery")]
        report = _run(txs)
        assert report.transactions[0].treatment.event_type == TaxEventType.NON_TAXABLE
        assert report.warnings[0].kind == WarningKind.UNCLASSIFIED

    def test_empty_input(self):
        report = _run([])
        assert report.transactions == []
        assert report.summary.net_taxable_amount == Decimal("0")


class TestHoldingsMovements:
    """Staking and pool movements park coins already held."""

    def _parked(self, sale_amount: str, sale_total: str) -> list:
        eth = AssetAmount("ETH", Decimal("10"), Decimal("25000"))
        return [
            _make_trade("B", TradeSide.BUY, _utc(2023, 8, 1), "10", "20000", "ETH"),
            StakingDeposit(id="SD", timestamp=_utc(2023, 9, 1), source=SRC, asset=eth),
            StakingWithdrawal(id="SW", timestamp=_utc(2023, 10, 1), source=SRC,
                              asset=AssetAmount("ETH", Decimal("10"), Decimal("26000"))),
            Interest(id="IP", timestamp=_utc(2023, 10, 15), source=SRC,
                     asset=AssetAmount("AUD", Decimal("100"), Decimal("100")),
                     interest_type=InterestType.PAID),
            _make_trade("S", TradeSide.SELL, _utc(2024, 1, 5), sale_amount, sale_total, "ETH"),
        ]

    def test_staking_movements_and_interest_paid_are_not_income(self):
        report = _run(self._parked("10", "30000"))
        by_id = {t.id: t for t in report.transactions}
        assert report.summary.ordinary_income == Decimal("0.00")
        assert by_id["SD"].income_amount == Decimal("0.00")
        assert by_id["IP"].income_amount == Decimal("0.00")
        assert report.warnings == []

    def test_staked_coins_do_not_open_a_second_lot(self):
        report = _run(self._parked("10", "30000"))
        sale = report.transactions[-1]
        assert [lot.transaction_id for lot in sale.cost_basis.lots] == ["B"]
        assert sale.capital_gain == Decimal("10000.00")

    def test_selling_more_than_was_bought_is_skipped(self):
        report = _run(self._parked("20", "60000"))
        sale = report.transactions[-1]
        assert sale.is_skipped
        assert report.summary.total_capital_gains == Decimal("0.00")
        assert [w.kind for w in report.warnings] == [WarningKind.SKIPPED_DISPOSAL]

    def test_liquidity_pool_round_trip_keeps_original_lot(self):
        eth = AssetAmount("ETH", Decimal("2"), Decimal("6000"))
        txs = [
            _make_trade("B", TradeSide.BUY, _utc(2023, 8, 1), "2", "4000", "ETH"),
            LiquidityAdd(id="LA", timestamp=_utc(2023, 9, 1), source=SRC, assets=(eth,)),
            LiquidityRemove(id="LR", timestamp=_utc(2023, 10, 1), source=SRC, assets=(eth,)),
            _make_trade("S", TradeSide.SELL, _utc(2024, 1, 5), "2", "7000", "ETH"),
        ]
        report = _run(txs)
        by_id = {t.id: t for t in report.transactions}
        assert by_id["LA"].treatment.event_type == TaxEventType.NON_TAXABLE
        assert by_id["LR"].treatment.event_type == TaxEventType.NON_TAXABLE
        assert by_id["S"].capital_gain == Decimal("3000.00")
        assert report.warnings == []


class TestFuturesAndSwaps:
    def _make_close(self, tx_id: str, pnl: str, fiat: str) -> FuturesTrade:
        return FuturesTrade(
            id=tx_id, timestamp=_utc(2023, 11, 1), source=SRC, contract_symbol="btcusdt",
            operation=FuturesOperation.CLOSE, position_side="LONG",
            notional=AssetAmount("USDT", Decimal("1000")),
            realized_pnl=AssetAmount("USDT", Decimal(pnl), Decimal(fiat)),
        )

    def test_realized_futures_profit_is_income(self):
        report = _run([self._make_close("F1", "200", "300")])
        close = report.transactions[0]
        assert close.treatment.event_type == TaxEventType.INCOME
        assert close.treatment.classification == "Futures Realized Profit - Ordinary Income"
        assert close.income_amount == Decimal("300.00")
        assert report.summary.ordinary_income == Decimal("300.00")
        assert report.warnings == []

    def test_futures_loss_is_not_income(self):
        report = _run([self._make_close("F2", "-50", "-75")])
        close = report.transactions[0]
        assert close.treatment.event_type == TaxEventType.NON_TAXABLE
        assert close.income_amount is None

    def test_swap_opens_lot_for_received_asset(self):
        txs = [
            _make_trade("B", TradeSide.BUY, _utc(2023, 8, 1), "1", "3000", "ETH"),
            Swap(id="SW", timestamp=_utc(2023, 9, 1), source=SRC,
                 from_asset=AssetAmount("ETH", Decimal("1")),
                 to_asset=AssetAmount("USDC", Decimal("3200"), Decimal("3200"))),
            _make_trade("S", TradeSide.SELL, _utc(2023, 10, 1), "3200", "3300", "USDC"),
        ]
        by_id = {t.id: t for t in _run(txs).transactions}
        assert by_id["SW"].capital_gain == Decimal("200.00")
        assert by_id["S"].cost_basis.lots[0].transaction_id == "SW"
        assert by_id["S"].cost_basis.total_cost == Decimal("3200.00")
        assert by_id["S"].capital_gain == Decimal("100.00")

    def test_unmatched_swap_still_delivers_received_asset(self):
        txs = [
            Swap(id="SW", timestamp=_utc(2023, 9, 1), source=SRC,
                 from_asset=AssetAmount("ETH", Decimal("1")),
                 to_asset=AssetAmount("USDC", Decimal("3200"), Decimal("3200"))),
            _make_trade("S", TradeSide.SELL, _utc(2023, 10, 1), "3200", "3300", "USDC"),
        ]
        by_id = {t.id: t for t in _run(txs).transactions}
        assert by_id["SW"].is_skipped
        assert not by_id["S"].is_skipped
        assert by_id["S"].capital_gain == Decimal("100.00")


class TestPriorHistory:
    TXS = [
        _make_trade("OLD", TradeSide.BUY, _utc(2022, 1, 1), "1", "20000"),
        _make_trade("S", TradeSide.SELL, _utc(2024, 1, 1), "1", "50000"),
    ]

    def test_prior_lots_are_used(self):
        report = _run(self.TXS)
        sale = report.transactions[0]
        assert report.transaction_count == 1
        assert sale.capital_gain == Decimal("30000.00")
        assert sale.taxable_amount == Decimal("15000.00")
        assert sale.treatment.cgt_discount_applied

    def test_without_prior_history(self):
        report = _run(self.TXS, use_prior_history=False)
        assert report.transactions[0].is_skipped


class TestSpecificIdentification:
    TXS = [
        _make_trade("B1", TradeSide.BUY, _utc(2023, 8, 1), "1", "30000"),
        _make_trade("B2", TradeSide.BUY, _utc(2023, 9, 1), "1", "45000"),
        _make_trade("S", TradeSide.SELL, _utc(2024, 1, 1), "1", "50000"),
    ]

    def test_identified_lot(self):
        report = _run(self.TXS, method=CostBasisMethod.SPECIFIC_IDENTIFICATION,
                      lot_selections={"S": [LotIdentifier("B2", Decimal("1"))]})
        assert report.transactions[-1].capital_gain == Decimal("5000.00")

    def test_optimal_selection(self):
        report = _run(self.TXS, method=CostBasisMethod.SPECIFIC_IDENTIFICATION,
                      lot_selection_strategy=LotSelectionStrategy.MAXIMIZE_LOSS)
        assert report.transactions[-1].capital_gain == Decimal("20000.00")


class TestProgressAndCancellation:
    def test_progress_per_chunk(self):
        updates = []
        config = ReportConfig("AU", 2024, _fixture(), ReportOptions(chunk_size=4))
        ticks = itertools.count(0.0, 0.5)
        TaxReportGenerator(clock=lambda: next(ticks)).generate_report(
            config, on_progress=updates.append)
        assert [(u.processed, u.current_phase) for u in updates] == [
            (4, ReportPhase.CLASSIFYING),
            (6, ReportPhase.CLASSIFYING),
            (4, ReportPhase.COMPUTING_COST_BASIS_AND_GAINS),
            (6, ReportPhase.COMPUTING_COST_BASIS_AND_GAINS),
            (6, ReportPhase.COMPLETE),
        ]
        assert all(u.total == 6 for u in updates)
        assert all(u.estimated_time_remaining >= 0 for u in updates)
        assert updates[-1].estimated_time_remaining == 0.0

    def test_iter_report_returns_report(self):
        gen = TaxReportGenerator()
        run = gen.iter_report(ReportConfig("AU", 2024, _fixture()))
        updates = []
        with pytest.raises(StopIteration) as stop:
            while True:
                updates.append(next(run))
        assert stop.value.value.transaction_count == 6
        assert gen.phase == ReportPhase.COMPLETE

    def test_cancel_between_chunks(self):
        cancel = threading.Event()
        config = ReportConfig("AU", 2024, _fixture(), ReportOptions(chunk_size=2))
        with pytest.raises(ReportCancelled):
            TaxReportGenerator().generate_report(
                config, on_progress=lambda u: cancel.set(), cancel_event=cancel)

    def test_cancel_before_start(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ReportCancelled):
            TaxReportGenerator().generate_report(
                ReportConfig("AU", 2024, _fixture()), cancel_event=cancel)


class TestConfiguration:
    def test_unknown_jurisdiction(self):
        with pytest.raises(UnsupportedJurisdiction):
            TaxReportGenerator().generate_report(ReportConfig("ZZ", 2024, []))

    def test_method_not_supported_by_jurisdiction(self, monkeypatch):
        fifo_only = replace(australia(), code="XF",
                            supported_methods=(CostBasisMethod.FIFO,))
        monkeypatch.setitem(JURISDICTIONS, "XF", lambda: fifo_only)
        config = ReportConfig("XF", 2024, [], ReportOptions(
            method=CostBasisMethod.SPECIFIC_IDENTIFICATION))
        with pytest.raises(UnsupportedCostBasisMethod):
            TaxReportGenerator().generate_report(config)

    def test_bad_chunk_size(self):
        with pytest.raises(ValueError):
            ReportOptions(chunk_size=0)


class TestConsistency:
    def test_hash_is_reproducible(self):
        first, second = _run(_fixture()), _run(_fixture())
        assert first.id != second.id
        assert first.consistency_hash == second.consistency_hash
        assert first.consistency_hash == first.compute_hash()
        assert len(first.consistency_hash) == 64

    def test_hash_changes_with_input(self):
        changed = _fixture()
        changed[-1] = _make_trade("S1", TradeSide.SELL, _utc(2024, 3, 1), "1", "51000")
        assert _run(changed).consistency_hash != _run(_fixture()).consistency_hash
