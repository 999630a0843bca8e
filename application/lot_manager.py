"""Acquisition lot manager — per-asset inventory of acquisition lots.

Lots live under the key ``ASSET:source`` in oldest-first order; lots sharing
a timestamp keep the order they were added in.  ``use_lot`` is the only
operation that changes a lot's remaining balance, and every call is logged
in the disposal history.

One manager belongs to one report run.  It holds no locks and must not be
shared between concurrent runs.
"""

from __future__ import annotations

import bisect
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from application.accessors import (
    asset_key,
    base_amount,
    fee_value,
    make_asset_key,
    quote_amount,
    transaction_source,
    unit_price,
)
from domain.entities import AcquisitionLot, LotDisposal
from domain.exceptions import InsufficientLotBalance, LotNotFound
from domain.transactions import Swap, Transaction
from domain.value_objects import (
    EPSILON,
    ZERO,
    as_utc,
    canonical_json,
    days_between,
    round_monetary,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LotAssetSummary:
    asset: str
    total_acquired: Decimal
    total_used: Decimal
    total_remaining: Decimal
    average_cost_basis: Decimal
    lot_count: int
    active_lot_count: int


class AcquisitionLotManager:
    """Caller-owned lot inventory for a single ledger."""

    def __init__(self) -> None:
        self._lots: dict[str, list[AcquisitionLot]] = defaultdict(list)
        self._disposals: list[LotDisposal] = []

    # ── adding ────────────────────────────────────────────────────────

    def add_lot(self, transaction: Transaction) -> AcquisitionLot:
        """Open a lot for an acquisition transaction and return it."""
        key = asset_key(transaction)
        if self.has_lot(key, transaction.id):
            raise ValueError(f"Lot {transaction.id} already exists for {key}")

        lot = AcquisitionLot(
            transaction_id=transaction.id,
            date=transaction.timestamp,
            amount=base_amount(transaction),
            unit_price=unit_price(transaction),
            fees=fee_value(transaction),
        )
        self.insert_lot(key, lot)
        log.debug("Lot %s opened for %s: %s @ %s",
                  lot.transaction_id, key, lot.amount, lot.unit_price)
        return lot

    def add_swap_lot(self, swap: Swap) -> AcquisitionLot:
        """Open a lot for the asset a swap delivers, priced at its received value."""
        received = swap.to_asset
        key = make_asset_key(received.symbol, transaction_source(swap))
        if self.has_lot(key, swap.id):
            raise ValueError(f"Lot {swap.id} already exists for {key}")

        amount = abs(received.amount)
        lot = AcquisitionLot(
            transaction_id=swap.id,
            date=swap.timestamp,
            amount=amount,
            unit_price=quote_amount(swap) / amount,
        )
        self.insert_lot(key, lot)
        log.debug("Swap %s opened a lot for %s: %s @ %s",
                  swap.id, key, lot.amount, lot.unit_price)
        return lot

    def add_lots(self, transactions: Iterable[Transaction]) -> list[AcquisitionLot]:
        return [self.add_lot(tx) for tx in transactions]

    def insert_lot(self, key: str, lot: AcquisitionLot) -> None:
        """Insert an existing lot keeping date order; equal dates stay FIFO."""
        bisect.insort_right(self._lots[key], lot, key=lambda l: l.date)

    # ── consuming ─────────────────────────────────────────────────────

    def use_lot(self, key: str, lot_id: str, amount: Decimal, disposal_id: str) -> None:
        """Consume *amount* from lot *lot_id* on behalf of *disposal_id*."""
        lot = self.get_lot(key, lot_id)
        if amount <= ZERO:
            raise ValueError(f"Amount to consume must be positive, got {amount}")
        if amount > lot.remaining_amount:
            raise InsufficientLotBalance(key, lot_id, amount, lot.remaining_amount)

        lot.remaining_amount -= amount
        self._disposals.append(LotDisposal(
            disposal_id=disposal_id,
            lot_id=lot_id,
            asset_key=key,
            amount=amount,
            unit_price=lot.unit_price,
            lot_date=lot.date,
        ))

    # ── queries ───────────────────────────────────────────────────────

    def get_lot(self, key: str, lot_id: str) -> AcquisitionLot:
        for lot in self._lots.get(key, ()):
            if lot.transaction_id == lot_id:
                return lot
        raise LotNotFound(key, lot_id)

    def has_lot(self, key: str, lot_id: str) -> bool:
        return any(l.transaction_id == lot_id for l in self._lots.get(key, ()))

    def get_lots(self, key: str) -> list[AcquisitionLot]:
        return list(self._lots.get(key, ()))

    def get_remaining_lots(self, key: str) -> list[AcquisitionLot]:
        return [l for l in self._lots.get(key, ()) if l.remaining_amount > EPSILON]

    def get_remaining_balance(self, key: str) -> Decimal:
        return sum((l.remaining_amount for l in self.get_remaining_lots(key)), ZERO)

    def get_lots_by_date_range(self, key: str, start: datetime,
                               end: datetime) -> list[AcquisitionLot]:
        start, end = as_utc(start), as_utc(end)
        return [l for l in self._lots.get(key, ()) if start <= l.date <= end]

    def get_lots_by_holding_period(self, key: str, min_days: int,
                                   reference_date: datetime) -> list[AcquisitionLot]:
        """Lots held at least *min_days* whole days at *reference_date*."""
        return [
            l for l in self._lots.get(key, ())
            if days_between(l.date, reference_date) >= min_days
        ]

    def get_average_cost_basis(self, key: str) -> Decimal:
        lots = self.get_remaining_lots(key)
        total_amount = sum((l.remaining_amount for l in lots), ZERO)
        if total_amount <= ZERO:
            return ZERO
        total_value = sum((l.remaining_amount * l.unit_price for l in lots), ZERO)
        return round_monetary(total_value / total_amount)

    def get_disposal_history(self, lot_id: str) -> list[LotDisposal]:
        return [d for d in self._disposals if d.lot_id == lot_id]

    def get_asset_disposal_history(self, key: str) -> list[LotDisposal]:
        return [d for d in self._disposals if d.asset_key == key]

    def consumed_amount(self, key: str, lot_id: str) -> Decimal:
        return sum(
            (d.amount for d in self._disposals
             if d.asset_key == key and d.lot_id == lot_id),
            ZERO,
        )

    def get_asset_summary(self, key: str) -> LotAssetSummary:
        lots = self._lots.get(key, [])
        remaining = self.get_remaining_lots(key)
        return LotAssetSummary(
            asset=key,
            total_acquired=sum((l.original_amount for l in lots), ZERO),
            total_used=sum((l.used_amount for l in lots), ZERO),
            total_remaining=sum((l.remaining_amount for l in remaining), ZERO),
            average_cost_basis=self.get_average_cost_basis(key),
            lot_count=len(lots),
            active_lot_count=len(remaining),
        )

    def assets(self) -> list[str]:
        return sorted(k for k, v in self._lots.items() if v)

    # ── lifecycle ─────────────────────────────────────────────────────

    def clear_asset(self, key: str) -> None:
        self._lots.pop(key, None)
        self._disposals = [d for d in self._disposals if d.asset_key != key]

    def clear(self) -> None:
        self._lots.clear()
        self._disposals = []

    def export_state(self) -> str:
        """Serialize all lots and the disposal history to JSON."""
        state = {
            "lots": {k: [l.to_dict() for l in v] for k, v in self._lots.items() if v},
            "disposals": [d.to_dict() for d in self._disposals],
        }
        return canonical_json(state)

    def import_state(self, serialized: str) -> None:
        """Replace the current state with one produced by ``export_state``."""
        try:
            state = json.loads(serialized)
            lots = {
                key: [AcquisitionLot.from_dict(raw) for raw in raw_lots]
                for key, raw_lots in state["lots"].items()
            }
            disposals = [LotDisposal.from_dict(raw) for raw in state["disposals"]]
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise ValueError(f"Failed to import lot manager state: {exc}") from exc

        self.clear()
        for key, key_lots in lots.items():
            for lot in key_lots:
                self.insert_lot(key, lot)
        self._disposals = disposals
