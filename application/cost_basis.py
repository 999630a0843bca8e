"""Cost-basis calculators: FIFO and Specific Identification.

Both calculators are bound to a caller-owned ``AcquisitionLotManager``.
A calculation first registers any acquisition it was given that the manager
does not know yet, then plans the whole match against lots dated at or
before the disposal, and only then consumes the lots.  A failed
calculation therefore leaves every balance untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Iterable, Optional, Sequence

from application.accessors import (
    asset_key,
    base_amount,
    is_acquisition_event,
    transaction_asset,
)
from application.lot_manager import AcquisitionLotManager
from domain.entities import AcquisitionLot, CostBasis, LotConsumption
from domain.enums import CostBasisMethod, LotSelectionStrategy
from domain.exceptions import (
    InsufficientAcquisitionLots,
    InsufficientLotBalance,
    LotAmountMismatch,
    LotNotFound,
    UnsupportedCostBasisMethod,
)
from domain.transactions import Transaction
from domain.value_objects import EPSILON, ZERO, days_between, to_decimal

log = logging.getLogger(__name__)

Plan = list[tuple[AcquisitionLot, Decimal]]


@dataclass(frozen=True)
class LotIdentifier:
    """Caller's choice of how much to take from one acquisition lot."""

    transaction_id: str
    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        if self.amount <= ZERO:
            raise ValueError(f"Lot {self.transaction_id}: amount must be positive")


class LotCostBasisCalculator:
    """Shared lot bookkeeping for the concrete methods."""

    method: ClassVar[CostBasisMethod]

    def __init__(self, lot_manager: AcquisitionLotManager) -> None:
        self.lot_manager = lot_manager

    def register_acquisitions(self, disposal: Transaction,
                              acquisitions: Iterable[Transaction]) -> int:
        """Add lots for acquisitions of the disposed asset not seen before."""
        key = asset_key(disposal)
        added = 0
        for acq in acquisitions:
            if (asset_key(acq) != key or not is_acquisition_event(acq)
                    or base_amount(acq) <= ZERO):
                continue
            if self.lot_manager.has_lot(key, acq.id):
                continue
            self.lot_manager.add_lot(acq)
            added += 1
        return added

    def eligible_lots(self, disposal: Transaction) -> list[AcquisitionLot]:
        """Open lots of the disposed asset dated at or before the disposal."""
        return [
            lot for lot in self.lot_manager.get_remaining_lots(asset_key(disposal))
            if lot.date <= disposal.timestamp
        ]

    def _consume(self, disposal: Transaction, plan: Plan) -> CostBasis:
        key = asset_key(disposal)
        consumptions: list[LotConsumption] = []
        for lot, take in plan:
            self.lot_manager.use_lot(key, lot.transaction_id, take, disposal.id)
            consumptions.append(LotConsumption(
                transaction_id=lot.transaction_id,
                date=lot.date,
                amount=take,
                unit_price=lot.unit_price,
                remaining_amount=lot.remaining_amount,
                cost=take * lot.unit_price,
                fees=lot.fee_share(take),
            ))
            log.debug("%s took %s from lot %s (%s left)",
                      disposal.id, take, lot.transaction_id, lot.remaining_amount)
        return self._build(disposal, consumptions)

    def _build(self, disposal: Transaction,
               consumptions: Sequence[LotConsumption]) -> CostBasis:
        if consumptions:
            acquisition_date = min(c.date for c in consumptions)
        else:
            acquisition_date = disposal.timestamp
        return CostBasis(
            method=self.method,
            acquisition_date=acquisition_date,
            acquisition_price=sum((c.cost for c in consumptions), ZERO),
            acquisition_fees=sum((c.fees for c in consumptions), ZERO),
            holding_period=max(days_between(acquisition_date, disposal.timestamp), 0),
            lots=tuple(consumptions),
        )


# ═══════════════════════════════════════════════════════════════════════════
# FIFO
# ═══════════════════════════════════════════════════════════════════════════

class FIFOCalculator(LotCostBasisCalculator):
    """Consumes the oldest eligible lots first."""

    method = CostBasisMethod.FIFO

    def calculate_cost_basis(self, disposal: Transaction,
                             acquisitions: Iterable[Transaction] = ()) -> CostBasis:
        self.register_acquisitions(disposal, acquisitions)
        return self._consume(disposal, self.plan(disposal))

    def plan(self, disposal: Transaction) -> Plan:
        """Work out which lots FIFO would take, without consuming them."""
        needed = base_amount(disposal)
        lots = self.eligible_lots(disposal)
        plan: Plan = []
        remaining = needed
        for lot in lots:
            if remaining <= EPSILON:
                break
            take = min(remaining, lot.remaining_amount)
            plan.append((lot, take))
            remaining -= take

        if remaining > EPSILON:
            available = sum((l.remaining_amount for l in lots), ZERO)
            raise InsufficientAcquisitionLots(
                transaction_asset(disposal), needed, available, disposal.id)
        return plan


# ═══════════════════════════════════════════════════════════════════════════
# Specific Identification
# ═══════════════════════════════════════════════════════════════════════════

class SpecificIdentificationCalculator(LotCostBasisCalculator):
    """Consumes exactly the lots the caller identifies."""

    method = CostBasisMethod.SPECIFIC_IDENTIFICATION

    def calculate_cost_basis(self, disposal: Transaction,
                             acquisitions: Iterable[Transaction],
                             lot_identifiers: Sequence[LotIdentifier]) -> CostBasis:
        self.register_acquisitions(disposal, acquisitions)
        return self._consume(disposal, self.plan(disposal, lot_identifiers))

    def plan(self, disposal: Transaction,
             lot_identifiers: Sequence[LotIdentifier]) -> Plan:
        key = asset_key(disposal)
        requested: dict[str, Decimal] = {}
        for ident in lot_identifiers:
            requested[ident.transaction_id] = (
                requested.get(ident.transaction_id, ZERO) + ident.amount)

        plan: Plan = []
        for lot_id, amount in requested.items():
            lot = self.lot_manager.get_lot(key, lot_id)
            if lot.date > disposal.timestamp:
                raise LotNotFound(key, lot_id)
            if amount > lot.remaining_amount + EPSILON:
                raise InsufficientLotBalance(key, lot_id, amount, lot.remaining_amount)
            plan.append((lot, min(amount, lot.remaining_amount)))

        identified = sum(requested.values(), ZERO)
        expected = base_amount(disposal)
        if abs(identified - expected) > EPSILON:
            raise LotAmountMismatch(expected, identified)
        return plan

    def find_optimal_lots(
        self,
        disposal: Transaction,
        acquisitions: Iterable[Transaction] = (),
        strategy: LotSelectionStrategy = LotSelectionStrategy.MINIMIZE_GAIN,
        holding_period_days: int = 365,
    ) -> list[LotIdentifier]:
        """Pick lots for *disposal* under *strategy* without consuming them."""
        self.register_acquisitions(disposal, acquisitions)
        lots = self.eligible_lots(disposal)
        ordered = self._order(lots, disposal, strategy, holding_period_days)

        needed = base_amount(disposal)
        remaining = needed
        picks: list[LotIdentifier] = []
        for lot in ordered:
            if remaining <= EPSILON:
                break
            take = min(remaining, lot.remaining_amount)
            picks.append(LotIdentifier(lot.transaction_id, take))
            remaining -= take

        if remaining > EPSILON:
            available = sum((l.remaining_amount for l in lots), ZERO)
            raise InsufficientAcquisitionLots(
                transaction_asset(disposal), needed, available, disposal.id)
        return picks

    def calculate_optimal(
        self,
        disposal: Transaction,
        acquisitions: Iterable[Transaction] = (),
        strategy: LotSelectionStrategy = LotSelectionStrategy.MINIMIZE_GAIN,
        holding_period_days: int = 365,
    ) -> CostBasis:
        acquisitions = list(acquisitions)
        picks = self.find_optimal_lots(disposal, acquisitions, strategy,
                                       holding_period_days)
        return self.calculate_cost_basis(disposal, (), picks)

    def _order(self, lots: list[AcquisitionLot], disposal: Transaction,
               strategy: LotSelectionStrategy,
               holding_period_days: int) -> list[AcquisitionLot]:
        if strategy == LotSelectionStrategy.MINIMIZE_GAIN:
            return sorted(lots, key=lambda l: l.unit_price, reverse=True)
        if strategy == LotSelectionStrategy.MAXIMIZE_LOSS:
            return sorted(lots, key=lambda l: l.unit_price)
        if strategy == LotSelectionStrategy.MAXIMIZE_CGT_DISCOUNT:
            long_term = {
                l.transaction_id for l in self.lot_manager.get_lots_by_holding_period(
                    asset_key(disposal), holding_period_days, disposal.timestamp)
            }
            return sorted(
                lots,
                key=lambda l: (l.transaction_id not in long_term, -l.unit_price),
            )
        raise ValueError(f"Unknown lot selection strategy: {strategy}")


# ═══════════════════════════════════════════════════════════════════════════
# Factory
# ═══════════════════════════════════════════════════════════════════════════

_DESCRIPTIONS = {
    CostBasisMethod.FIFO:
        "First-In-First-Out: uses the oldest acquisition lots first",
    CostBasisMethod.SPECIFIC_IDENTIFICATION:
        "Specific Identification: the disposer chooses which lots are consumed",
}

_RECOMMENDED = {
    "AU": CostBasisMethod.FIFO,
}


class CostBasisCalculatorFactory:
    _calculators: dict[CostBasisMethod, type[LotCostBasisCalculator]] = {
        CostBasisMethod.FIFO: FIFOCalculator,
        CostBasisMethod.SPECIFIC_IDENTIFICATION: SpecificIdentificationCalculator,
    }

    @classmethod
    def create(cls, method: CostBasisMethod | str,
               lot_manager: AcquisitionLotManager) -> LotCostBasisCalculator:
        resolved = cls.resolve(method)
        return cls._calculators[resolved](lot_manager)

    @classmethod
    def resolve(cls, method: CostBasisMethod | str) -> CostBasisMethod:
        try:
            resolved = CostBasisMethod(method)
        except ValueError:
            raise UnsupportedCostBasisMethod(method) from None
        if resolved not in cls._calculators:
            raise UnsupportedCostBasisMethod(method)
        return resolved

    @classmethod
    def supported_methods(cls) -> list[CostBasisMethod]:
        return list(cls._calculators)

    @classmethod
    def is_supported(cls, method: object) -> bool:
        try:
            cls.resolve(method)  # type: ignore[arg-type]
        except UnsupportedCostBasisMethod:
            return False
        return True

    @staticmethod
    def default_method() -> CostBasisMethod:
        return CostBasisMethod.FIFO

    @classmethod
    def describe(cls, method: CostBasisMethod | str) -> str:
        return _DESCRIPTIONS[cls.resolve(method)]

    @classmethod
    def recommended_method(cls, jurisdiction_code: str) -> CostBasisMethod:
        return _RECOMMENDED.get(jurisdiction_code.upper(), cls.default_method())

    @classmethod
    def validate_options(
        cls,
        method: CostBasisMethod | str,
        lot_identifiers: Optional[Sequence[LotIdentifier]] = None,
    ) -> list[str]:
        """Return problems with the options for *method* (empty when valid)."""
        if not cls.is_supported(method):
            return [f"Unknown cost basis method: {method}"]
        errors: list[str] = []
        if cls.resolve(method) == CostBasisMethod.SPECIFIC_IDENTIFICATION:
            if lot_identifiers is None:
                errors.append("lot_identifiers is required for Specific Identification")
            elif len(lot_identifiers) == 0:
                errors.append("lot_identifiers must not be empty")
        return errors