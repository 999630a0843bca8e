"""Tests for TransactionClassifier."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from application.classifier import ClassificationContext, TransactionClassifier
from domain.enums import (
    FuturesOperation, RuleCategory, TaxEventType, TradeSide, TransferDirection,
)
from domain.exceptions import UnsupportedJurisdiction
from domain.jurisdictions import TaxRule, australia
from domain.transactions import (
    Airdrop, Fee, FuturesTrade, LiquidityAdd, LiquidityRemove, SpotTrade, StakingDeposit,
    StakingReward, Swap, Transfer, UnknownTransaction,
)
from domain.value_objects import AssetAmount, DataSource

SRC = DataSource(id="kraken", name="Kraken")
AU = australia()


def _make_trade(side=TradeSide.SELL, tx_id="t1", description="") -> SpotTrade:
    return SpotTrade(
        id=tx_id, timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc), source=SRC,
        description=description, side=side,
        base_asset=AssetAmount("BTC", Decimal("1")),
        quote_asset=AssetAmount("AUD", Decimal("50000")),
    )


def _make_reward() -> StakingReward:
    return StakingReward(
        id="r1", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc), source=SRC,
        reward=AssetAmount("ETH", Decimal("0.05"), Decimal("150")),
    )


class TestEventType:
    def test_sell_is_disposal(self):
        t = TransactionClassifier().classify(_make_trade(TradeSide.SELL), AU)
        assert t.event_type == TaxEventType.DISPOSAL
        assert t.classification == "Sale of Cryptocurrency"
        assert t.is_cgt_eligible
        assert t.matched_rule

    def test_buy_is_acquisition(self):
        t = TransactionClassifier().classify(_make_trade(TradeSide.BUY), AU)
        assert t.event_type == TaxEventType.ACQUISITION
        assert t.classification == "Purchase of Cryptocurrency"

    def test_staking_reward_is_income(self):
        t = TransactionClassifier().classify(_make_reward(), AU)
        assert t.event_type == TaxEventType.INCOME
        assert t.classification == "DeFi Staking Reward - Ordinary Income"
        assert not t.is_cgt_eligible
        assert "AU_STAKING_INCOME" in t.rule_ids

    def test_airdrop_is_income(self):
        tx = Airdrop(id="a1", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
                     source=SRC, received=AssetAmount("UNI", Decimal("400")))
        t = TransactionClassifier().classify(tx, AU)
        assert t.event_type == TaxEventType.INCOME
        assert t.classification == "DeFi Airdrop - Ordinary Income"
        assert "AU_AIRDROP_INCOME" in t.rule_ids

    def test_fee_is_deductible(self):
        tx = Fee(id="f1", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
                 source=SRC, fee=AssetAmount("AUD", Decimal("10")))
        t = TransactionClassifier().classify(tx, AU)
        assert t.event_type == TaxEventType.DEDUCTIBLE
        assert t.classification == "Transaction Fee"
        assert "AU_FEE_DEDUCTION" in t.rule_ids

    def test_transfer_is_non_taxable(self):
        tx = Transfer(id="x1", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
                      source=SRC, asset=AssetAmount("BTC", Decimal("1")),
                      direction=TransferDirection.OUT)
        t = TransactionClassifier().classify(tx, AU)
        assert t.event_type == TaxEventType.NON_TAXABLE
        assert t.classification == "Internal Transfer"
        assert "AU_PERSONAL_USE" in t.rule_ids

    def test_swap_falls_back_to_sign(self):
        tx = Swap(id="s1", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
                  source=SRC, from_asset=AssetAmount("ETH", Decimal("1")),
                  to_asset=AssetAmount("USDC", Decimal("3000")))
        t = TransactionClassifier().classify(tx, AU)
        assert t.event_type == TaxEventType.DISPOSAL
        assert t.classification == "Disposal of Cryptocurrency"

    def test_description_keyword_wins(self):
        t = TransactionClassifier().classify(
            _make_trade(TradeSide.BUY, description="Referral bonus"), AU)
        assert t.event_type == TaxEventType.INCOME

    def test_unmatched_degrades_to_non_taxable(self):
        tx = UnknownTransaction(id="u1", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
                                source=SRC, raw_type="mystery")
        t = TransactionClassifier().classify(tx, AU)
        assert t.event_type == TaxEventType.NON_TAXABLE
        assert not t.matched_rule

    def test_liquidity_movements_are_non_taxable(self):
        when = datetime(2024, 2, 1, tzinfo=timezone.utc)
        eth = (AssetAmount("ETH", Decimal("1")),)
        for tx in (LiquidityAdd(id="la", timestamp=when, source=SRC, assets=eth),
                   LiquidityRemove(id="lr", timestamp=when, source=SRC, assets=eth)):
            t = TransactionClassifier().classify(tx, AU)
            assert t.event_type == TaxEventType.NON_TAXABLE
            assert t.matched_rule
            assert t.classification == "Liquidity Pool Movement"

    def test_staking_deposit_is_not_called_a_reward(self):
        tx = StakingDeposit(id="sd", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
                            source=SRC, asset=AssetAmount("ETH", Decimal("1")))
        t = TransactionClassifier().classify(tx, AU)
        assert t.classification == "DeFi Stake/Unstake - No Income Received"
        assert "AU_STAKING_INCOME" not in t.rule_ids

    def test_futures_profit_is_income(self):
        tx = FuturesTrade(
            id="f1", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc), source=SRC,
            contract_symbol="ETHUSDT", operation=FuturesOperation.CLOSE,
            position_side="SHORT", notional=AssetAmount("USDT", Decimal("500")),
            realized_pnl=AssetAmount("USDT", Decimal("40")),
        )
        t = TransactionClassifier().classify(tx, AU)
        assert t.event_type == TaxEventType.INCOME
        assert t.matched_rule


class TestPersonalUse:
    def test_personal_use_is_not_cgt_eligible(self):
        t = TransactionClassifier().classify(_make_trade(), AU, is_personal_use=True)
        assert t.is_personal_use
        assert not t.is_cgt_eligible
        assert t.treatment_reason.endswith("Designated as personal use asset.")


class TestClassifierBehaviour:
    def test_idempotent(self):
        c = TransactionClassifier()
        tx = _make_reward()
        assert c.classify(tx, AU) == c.classify(tx, AU)

    def test_jurisdiction_by_code(self):
        t = TransactionClassifier().classify(_make_trade(), "au")
        assert t.event_type == TaxEventType.DISPOSAL

    def test_unknown_jurisdiction_code(self):
        with pytest.raises(UnsupportedJurisdiction):
            TransactionClassifier().classify(_make_trade(), "ZZ")

    def test_batch_preserves_order(self):
        c = TransactionClassifier()
        results = c.classify_batch([
            ClassificationContext(_make_trade(TradeSide.BUY), AU),
            ClassificationContext(_make_reward(), AU),
        ])
        assert [r.event_type for r in results] == [
            TaxEventType.ACQUISITION, TaxEventType.INCOME]

    def test_registered_rules_replace_jurisdiction_rules(self):
        c = TransactionClassifier()
        custom = TaxRule(id="X_SALES", name="Sales", description="",
                         category=RuleCategory.CAPITAL_GAINS,
                         applicable_transaction_types=("sale",))
        c.register_rules("AU", [custom])
        t = c.classify(_make_trade(), AU)
        assert t.rule_ids == ["X_SALES"]

    def test_rule_outside_effective_window_is_dropped(self):
        c = TransactionClassifier()
        expired = TaxRule(id="OLD", name="Old", description="",
                          category=RuleCategory.CAPITAL_GAINS,
                          effective_to=datetime(2020, 1, 1, tzinfo=timezone.utc))
        c.register_rules("AU", [expired])
        assert c.classify(_make_trade(), AU).rule_ids == []

    def test_defi_liquidity_label(self):
        tx = LiquidityAdd(id="l1", timestamp=datetime(2024, 2, 1, tzinfo=timezone.utc),
                          source=SRC, assets=(AssetAmount("ETH", Decimal("1")),))
        assert (TransactionClassifier().classify_defi_transaction(tx)
                == "DeFi Liquidity Pool - Capital Transaction")
