"""TaxSummaryAggregator — folds taxable transactions into totals and breakdowns."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from application.accessors import transaction_asset, transaction_source
from application.capital_gains import CapitalGainsTotals
from domain.entities import (
    AssetSummary,
    ExchangeSummary,
    MonthlySummary,
    TaxableTransaction,
    TaxSummary,
)
from domain.enums import TaxEventType
from domain.value_objects import ZERO, as_utc, round_monetary


def month_key(moment: datetime) -> str:
    return as_utc(moment).strftime("%Y-%m")


class TaxSummaryAggregator:

    def generate_summary(self, transactions: Iterable[TaxableTransaction]) -> TaxSummary:
        summary = TaxSummary()
        totals = CapitalGainsTotals()

        for tx in transactions:
            self._fold(tx, summary, totals)

        summary.total_capital_gains = round_monetary(totals.total_gains)
        summary.total_capital_losses = round_monetary(totals.total_losses)
        summary.net_capital_gain = round_monetary(totals.net_gain_loss)
        summary.cgt_discount = round_monetary(totals.total_discount)
        summary.taxable_capital_gain = round_monetary(
            max(ZERO, summary.net_capital_gain - summary.cgt_discount))
        summary.ordinary_income = round_monetary(summary.ordinary_income)
        summary.total_deductions = round_monetary(summary.total_deductions)
        summary.net_taxable_amount = round_monetary(
            summary.taxable_capital_gain + summary.ordinary_income
            - summary.total_deductions)
        return summary

    def generate_asset_summary(self, transactions: Iterable[TaxableTransaction],
                               asset: str) -> AssetSummary:
        asset = asset.upper()
        entry = AssetSummary(asset=asset)
        for tx in transactions:
            if transaction_asset(tx.transaction) == asset:
                self._fold_asset(tx, entry)
        return entry

    def generate_range_summary(self, transactions: Iterable[TaxableTransaction],
                               start: datetime, end: datetime) -> TaxSummary:
        start, end = as_utc(start), as_utc(end)
        return self.generate_summary(
            t for t in transactions if start <= t.timestamp <= end)

    @staticmethod
    def top_gainers(summary: TaxSummary, limit: int = 10) -> list[AssetSummary]:
        return sorted(summary.by_asset.values(),
                      key=lambda a: a.capital_gains, reverse=True)[:limit]

    @staticmethod
    def top_losers(summary: TaxSummary, limit: int = 10) -> list[AssetSummary]:
        return sorted(summary.by_asset.values(),
                      key=lambda a: a.capital_losses, reverse=True)[:limit]

    # ── folding ───────────────────────────────────────────────────────

    def _fold(self, tx: TaxableTransaction, summary: TaxSummary,
              totals: CapitalGainsTotals) -> None:
        event = tx.treatment.event_type
        if event == TaxEventType.DISPOSAL:
            summary.total_disposals += 1
        elif event == TaxEventType.ACQUISITION:
            summary.total_acquisitions += 1

        if tx.capital_gain is not None:
            totals.add_amounts(
                tx.capital_gain, tx.capital_loss or ZERO,
                tx.taxable_amount or ZERO, tx.treatment.cgt_discount_applied)
        if tx.income_amount:
            summary.ordinary_income += tx.income_amount
        if tx.deductible_amount:
            summary.total_deductions += tx.deductible_amount

        asset = transaction_asset(tx.transaction)
        self._fold_asset(tx, summary.by_asset.setdefault(asset, AssetSummary(asset=asset)))

        exchange = transaction_source(tx.transaction) or "UNKNOWN"
        ex = summary.by_exchange.setdefault(exchange, ExchangeSummary(exchange=exchange))
        ex.transactions += 1
        ex.total_value += abs(tx.disposal_value or ZERO)
        ex.net_gain += tx.net_gain_loss

        key = month_key(tx.timestamp)
        month = summary.by_month.setdefault(key, MonthlySummary(month=key))
        month.transactions += 1
        month.gains += tx.capital_gain or ZERO
        month.losses += tx.capital_loss or ZERO
        month.income += tx.income_amount or ZERO

    @staticmethod
    def _fold_asset(tx: TaxableTransaction, entry: AssetSummary) -> None:
        event = tx.treatment.event_type
        if event == TaxEventType.DISPOSAL:
            entry.disposals += 1
        elif event == TaxEventType.ACQUISITION:
            entry.acquisitions += 1
        entry.capital_gains += tx.capital_gain or ZERO
        entry.capital_losses += tx.capital_loss or ZERO
        entry.taxable_gain += tx.taxable_amount or ZERO
        entry.income += tx.income_amount or ZERO
        entry.deductions += tx.deductible_amount or ZERO
