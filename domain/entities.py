"""Domain entities — pure data structures, no infrastructure dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from domain.enums import (
    ComplianceLevel,
    CostBasisMethod,
    ReportPhase,
    StrategyType,
    TaxEventType,
    WarningKind,
)
from domain.jurisdictions import TaxPeriod, TaxRule
from domain.transactions import Transaction
from domain.value_objects import (
    ZERO,
    as_utc,
    compute_consistency_hash,
    round_monetary,
    round_qty,
    to_decimal,
)


# ═══════════════════════════════════════════════════════════════════════════
# Lots
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AcquisitionLot:
    """One acquisition of an asset, consumed partially by later disposals."""

    transaction_id: str
    date: datetime
    amount: Decimal
    unit_price: Decimal
    remaining_amount: Optional[Decimal] = None
    fees: Decimal = ZERO

    def __post_init__(self) -> None:
        self.date = as_utc(self.date)
        self.amount = to_decimal(self.amount)
        self.unit_price = to_decimal(self.unit_price)
        self.fees = to_decimal(self.fees)
        if self.remaining_amount is None:
            self.remaining_amount = self.amount
        self.remaining_amount = to_decimal(self.remaining_amount)
        if self.amount <= ZERO:
            raise ValueError(f"Lot {self.transaction_id}: amount must be positive")
        if not (ZERO <= self.remaining_amount <= self.amount):
            raise ValueError(
                f"Lot {self.transaction_id}: remaining {self.remaining_amount} "
                f"outside [0, {self.amount}]"
            )

    @property
    def original_amount(self) -> Decimal:
        return self.amount

    @property
    def used_amount(self) -> Decimal:
        return self.amount - self.remaining_amount

    @property
    def total_cost(self) -> Decimal:
        return self.amount * self.unit_price + self.fees

    def fee_share(self, amount: Decimal) -> Decimal:
        """Acquisition fee attributable to *amount* units of this lot."""
        if self.fees == ZERO:
            return ZERO
        return self.fees * amount / self.amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "date": self.date.isoformat(),
            "amount": str(self.amount),
            "unit_price": str(self.unit_price),
            "remaining_amount": str(self.remaining_amount),
            "fees": str(self.fees),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AcquisitionLot:
        return cls(
            transaction_id=data["transaction_id"],
            date=datetime.fromisoformat(data["date"]),
            amount=Decimal(data["amount"]),
            unit_price=Decimal(data["unit_price"]),
            remaining_amount=Decimal(data["remaining_amount"]),
            fees=Decimal(data.get("fees", "0")),
        )


@dataclass(frozen=True)
class LotDisposal:
    """Log entry written by every successful ``use_lot``."""

    disposal_id: str
    lot_id: str
    asset_key: str
    amount: Decimal
    unit_price: Decimal
    lot_date: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "disposal_id": self.disposal_id,
            "lot_id": self.lot_id,
            "asset_key": self.asset_key,
            "amount": str(self.amount),
            "unit_price": str(self.unit_price),
            "lot_date": self.lot_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LotDisposal:
        return cls(
            disposal_id=data["disposal_id"],
            lot_id=data["lot_id"],
            asset_key=data["asset_key"],
            amount=Decimal(data["amount"]),
            unit_price=Decimal(data["unit_price"]),
            lot_date=datetime.fromisoformat(data["lot_date"]),
        )


@dataclass(frozen=True)
class LotConsumption:
    """The slice of one lot matched against one disposal."""

    transaction_id: str
    date: datetime
    amount: Decimal
    unit_price: Decimal
    remaining_amount: Decimal
    cost: Decimal
    fees: Decimal = ZERO


@dataclass(frozen=True)
class CostBasis:
    """Cost attributed to the units leaving the portfolio in one disposal."""

    method: CostBasisMethod
    acquisition_date: datetime
    acquisition_price: Decimal
    acquisition_fees: Decimal
    holding_period: int
    lots: tuple[LotConsumption, ...] = ()
    total_cost: Optional[Decimal] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "acquisition_price",
                           round_monetary(to_decimal(self.acquisition_price)))
        object.__setattr__(self, "acquisition_fees",
                           round_monetary(to_decimal(self.acquisition_fees)))
        object.__setattr__(self, "lots", tuple(self.lots))
        expected = self.acquisition_price + self.acquisition_fees
        if self.total_cost is None:
            object.__setattr__(self, "total_cost", expected)
        elif round_monetary(to_decimal(self.total_cost)) != expected:
            raise ValueError(
                f"total_cost {self.total_cost} != price + fees ({expected})"
            )
        if self.holding_period < 0:
            raise ValueError("holding_period must be non-negative")

    @property
    def amount(self) -> Decimal:
        return round_qty(sum((lot.amount for lot in self.lots), ZERO))


# ═══════════════════════════════════════════════════════════════════════════
# Treatment
# ═══════════════════════════════════════════════════════════════════════════

_NEVER_CGT = (TaxEventType.INCOME, TaxEventType.DEDUCTIBLE, TaxEventType.NON_TAXABLE)


@dataclass(frozen=True)
class TransactionTaxTreatment:
    """How one transaction is treated for tax purposes."""

    event_type: TaxEventType
    classification: str
    is_personal_use: bool
    is_cgt_eligible: bool
    cgt_discount_applied: bool
    treatment_reason: str
    applicable_rules: tuple[TaxRule, ...] = ()
    matched_rule: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "applicable_rules", tuple(self.applicable_rules))
        if self.is_personal_use and self.is_cgt_eligible:
            raise ValueError("A personal-use transaction cannot be CGT eligible")
        if self.cgt_discount_applied and not (
            self.is_cgt_eligible and not self.is_personal_use
        ):
            raise ValueError("CGT discount requires a CGT-eligible, non-personal-use event")
        if self.event_type in _NEVER_CGT and self.is_cgt_eligible:
            raise ValueError(f"{self.event_type.value} events are never CGT eligible")

    def with_discount(self, applied: bool) -> TransactionTaxTreatment:
        if applied == self.cgt_discount_applied:
            return self
        return replace(self, cgt_discount_applied=applied)

    @property
    def rule_ids(self) -> list[str]:
        return [r.id for r in self.applicable_rules]


@dataclass
class TaxableTransaction:
    """A transaction with its treatment and, once computed, its amounts.

    Gain/loss fields stay ``None`` until a capital-gains result is applied;
    a disposal whose cost basis failed keeps them unset and records why in
    ``skip_reason``.
    """

    transaction: Transaction
    treatment: TransactionTaxTreatment
    cost_basis: Optional[CostBasis] = None
    capital_gain: Optional[Decimal] = None
    capital_loss: Optional[Decimal] = None
    taxable_amount: Optional[Decimal] = None
    income_amount: Optional[Decimal] = None
    deductible_amount: Optional[Decimal] = None
    disposal_value: Optional[Decimal] = None
    skip_reason: Optional[str] = None

    def __post_init__(self) -> None:
        self._check_exclusive()

    @property
    def id(self) -> str:
        return self.transaction.id

    @property
    def timestamp(self) -> datetime:
        return self.transaction.timestamp

    @property
    def is_skipped(self) -> bool:
        return self.skip_reason is not None

    @property
    def holding_period(self) -> Optional[int]:
        return self.cost_basis.holding_period if self.cost_basis else None

    @property
    def net_gain_loss(self) -> Decimal:
        return (self.capital_gain or ZERO) - (self.capital_loss or ZERO)

    def apply_gains(self, cost_basis: CostBasis, disposal_value: Decimal,
                    capital_gain: Decimal, capital_loss: Decimal,
                    taxable_amount: Decimal, discount_applied: bool) -> None:
        self.cost_basis = cost_basis
        self.disposal_value = round_monetary(disposal_value)
        self.capital_gain = round_monetary(capital_gain)
        self.capital_loss = round_monetary(capital_loss)
        self.taxable_amount = round_monetary(taxable_amount)
        self.treatment = self.treatment.with_discount(discount_applied)
        self.skip_reason = None
        self._check_exclusive()

    def mark_skipped(self, reason: str) -> None:
        self.cost_basis = None
        self.capital_gain = None
        self.capital_loss = None
        self.taxable_amount = None
        self.skip_reason = reason

    def _check_exclusive(self) -> None:
        if (self.capital_gain is not None and self.capital_loss is not None
                and self.capital_gain > ZERO and self.capital_loss > ZERO):
            raise ValueError(
                f"Transaction {self.id} has both a capital gain and a capital loss"
            )


# ═══════════════════════════════════════════════════════════════════════════
# Summary
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AssetSummary:
    asset: str
    disposals: int = 0
    acquisitions: int = 0
    capital_gains: Decimal = ZERO
    capital_losses: Decimal = ZERO
    taxable_gain: Decimal = ZERO
    income: Decimal = ZERO
    deductions: Decimal = ZERO

    @property
    def net_gain_loss(self) -> Decimal:
        return self.capital_gains - self.capital_losses

    @property
    def total_transactions(self) -> int:
        return self.disposals + self.acquisitions


@dataclass
class ExchangeSummary:
    exchange: str
    transactions: int = 0
    total_value: Decimal = ZERO
    net_gain: Decimal = ZERO

    @property
    def average_transaction_value(self) -> Decimal:
        if self.transactions == 0:
            return ZERO
        return round_monetary(self.total_value / self.transactions)


@dataclass
class MonthlySummary:
    month: str          # YYYY-MM, UTC
    transactions: int = 0
    gains: Decimal = ZERO
    losses: Decimal = ZERO
    income: Decimal = ZERO

    @property
    def net_result(self) -> Decimal:
        return self.gains - self.losses


@dataclass
class TaxSummary:
    total_disposals: int = 0
    total_acquisitions: int = 0
    total_capital_gains: Decimal = ZERO
    total_capital_losses: Decimal = ZERO
    net_capital_gain: Decimal = ZERO
    cgt_discount: Decimal = ZERO
    taxable_capital_gain: Decimal = ZERO
    ordinary_income: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_taxable_amount: Decimal = ZERO
    by_asset: dict[str, AssetSummary] = field(default_factory=dict)
    by_exchange: dict[str, ExchangeSummary] = field(default_factory=dict)
    by_month: dict[str, MonthlySummary] = field(default_factory=dict)

    @property
    def capital_loss_carry_forward(self) -> Decimal:
        return -self.net_capital_gain if self.net_capital_gain < ZERO else ZERO

    @property
    def effective_discount_rate(self) -> Decimal:
        if self.total_capital_gains == ZERO:
            return ZERO
        return (self.cgt_discount / self.total_capital_gains).quantize(Decimal("0.0001"))

    def assets_by_performance(self) -> list[AssetSummary]:
        return sorted(self.by_asset.values(), key=lambda a: a.net_gain_loss, reverse=True)

    def exchanges_by_volume(self) -> list[ExchangeSummary]:
        return sorted(self.by_exchange.values(), key=lambda e: e.total_value, reverse=True)

    def months_chronologically(self) -> list[MonthlySummary]:
        return [self.by_month[k] for k in sorted(self.by_month)]

    def statistics(self) -> dict[str, Any]:
        best = self.assets_by_performance()
        return {
            "total_transactions": self.total_disposals + self.total_acquisitions,
            "assets": len(self.by_asset),
            "exchanges": len(self.by_exchange),
            "active_months": len(self.by_month),
            "most_profitable_asset": best[0].asset if best else None,
            "least_profitable_asset": best[-1].asset if best else None,
            "effective_discount_rate": self.effective_discount_rate,
            "capital_loss_carry_forward": self.capital_loss_carry_forward,
        }

    def category_breakdown(self) -> dict[str, Decimal]:
        return {
            "capital_gains": self.total_capital_gains,
            "capital_losses": self.total_capital_losses,
            "cgt_discount": self.cgt_discount,
            "taxable_capital_gain": self.taxable_capital_gain,
            "ordinary_income": self.ordinary_income,
            "deductions": self.total_deductions,
            "net_taxable_amount": self.net_taxable_amount,
        }

    def validate(self) -> list[str]:
        """Return a list of consistency problems (empty when valid)."""
        errors: list[str] = []
        for name in ("total_capital_gains", "total_capital_losses", "cgt_discount",
                     "taxable_capital_gain", "ordinary_income", "total_deductions"):
            if getattr(self, name) < ZERO:
                errors.append(f"{name} must be non-negative")
        if self.total_disposals < 0 or self.total_acquisitions < 0:
            errors.append("transaction counts must be non-negative")
        expected = self.total_capital_gains - self.total_capital_losses
        if abs(self.net_capital_gain - expected) > Decimal("0.01"):
            errors.append(
                f"net capital gain {self.net_capital_gain} != gains - losses ({expected})"
            )
        if self.cgt_discount > self.total_capital_gains:
            errors.append("CGT discount exceeds total capital gains")
        return errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_disposals": self.total_disposals,
            "total_acquisitions": self.total_acquisitions,
            **self.category_breakdown(),
            "net_capital_gain": self.net_capital_gain,
            "by_asset": {k: vars(v) for k, v in self.by_asset.items()},
            "by_exchange": {k: vars(v) for k, v in self.by_exchange.items()},
            "by_month": {k: vars(v) for k, v in self.by_month.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaxSummary:
        def dec(key: str) -> Decimal:
            return Decimal(str(data.get(key, "0")))

        def decimals(raw: dict[str, Any]) -> dict[str, Any]:
            return {k: (v if isinstance(v, (int, str)) and k in _TEXT_OR_COUNT
                        else Decimal(str(v)))
                    for k, v in raw.items()}

        return cls(
            total_disposals=int(data.get("total_disposals", 0)),
            total_acquisitions=int(data.get("total_acquisitions", 0)),
            total_capital_gains=dec("capital_gains"),
            total_capital_losses=dec("capital_losses"),
            net_capital_gain=dec("net_capital_gain"),
            cgt_discount=dec("cgt_discount"),
            taxable_capital_gain=dec("taxable_capital_gain"),
            ordinary_income=dec("ordinary_income"),
            total_deductions=dec("deductions"),
            net_taxable_amount=dec("net_taxable_amount"),
            by_asset={k: AssetSummary(**decimals(v))
                      for k, v in data.get("by_asset", {}).items()},
            by_exchange={k: ExchangeSummary(**decimals(v))
                         for k, v in data.get("by_exchange", {}).items()},
            by_month={k: MonthlySummary(**decimals(v))
                      for k, v in data.get("by_month", {}).items()},
        )


_TEXT_OR_COUNT = frozenset({
    "asset", "exchange", "month", "disposals", "acquisitions", "transactions",
})


# ═══════════════════════════════════════════════════════════════════════════
# Optimization, progress and report
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TaxStrategy:
    """A lawful tax-planning suggestion; estimates only."""

    type: StrategyType
    description: str
    potential_savings: Decimal
    implementation: tuple[str, ...]
    risks: tuple[str, ...]
    compliance: ComplianceLevel
    priority: int
    transaction_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "potential_savings",
                           round_monetary(to_decimal(self.potential_savings)))
        object.__setattr__(self, "implementation", tuple(self.implementation))
        object.__setattr__(self, "risks", tuple(self.risks))
        object.__setattr__(self, "transaction_ids", tuple(self.transaction_ids))
        if not 1 <= self.priority <= 5:
            raise ValueError(f"Strategy priority must be 1-5, got {self.priority}")
        if self.potential_savings < ZERO:
            raise ValueError("Strategy savings must be non-negative")


@dataclass(frozen=True)
class ProgressUpdate:
    processed: int
    total: int
    current_phase: ReportPhase
    estimated_time_remaining: Optional[float] = None

    @property
    def fraction(self) -> float:
        return self.processed / self.total if self.total else 1.0


@dataclass(frozen=True)
class ReportWarning:
    transaction_id: str
    kind: WarningKind
    message: str


@dataclass(frozen=True)
class ReportMetadata:
    method: CostBasisMethod
    transaction_count: int
    processing_seconds: float
    skipped_count: int = 0
    version: str = "1.0"


@dataclass
class TaxReport:
    """Everything one report run produces."""

    id: str
    jurisdiction: str
    period: TaxPeriod
    generated_at: datetime
    transactions: list[TaxableTransaction]
    summary: TaxSummary
    metadata: ReportMetadata
    strategies: list[TaxStrategy] = field(default_factory=list)
    warnings: list[ReportWarning] = field(default_factory=list)
    consistency_hash: str = ""

    @property
    def method(self) -> CostBasisMethod:
        return self.metadata.method

    @property
    def transaction_count(self) -> int:
        return self.metadata.transaction_count

    @property
    def skipped(self) -> list[TaxableTransaction]:
        return [t for t in self.transactions if t.is_skipped]

    def compute_hash(self) -> str:
        """Return the SHA-256 consistency hash over the report's figures."""
        data = {
            "jurisdiction": self.jurisdiction,
            "period": [self.period.start, self.period.end],
            "method": self.metadata.method,
            "summary": self.summary.category_breakdown(),
            "transactions": [
                [t.id, t.treatment.event_type, t.capital_gain, t.capital_loss,
                 t.taxable_amount, t.income_amount, t.deductible_amount]
                for t in self.transactions
            ],
        }
        return compute_consistency_hash(data)

    def seal(self) -> None:
        """Compute and set the consistency hash."""
        self.consistency_hash = self.compute_hash()


@dataclass(frozen=True)
class TaxableTransactionRecord:
    """Flat, persisted view of a TaxableTransaction."""

    transaction_id: str
    report_id: str
    timestamp: datetime
    kind: str
    asset: str
    source: str
    event_type: TaxEventType
    classification: str
    is_personal_use: bool
    cgt_discount_applied: bool
    amount: Optional[Decimal] = None
    disposal_value: Optional[Decimal] = None
    cost_basis: Optional[Decimal] = None
    holding_period: Optional[int] = None
    capital_gain: Optional[Decimal] = None
    capital_loss: Optional[Decimal] = None
    taxable_amount: Optional[Decimal] = None
    income_amount: Optional[Decimal] = None
    deductible_amount: Optional[Decimal] = None
    skip_reason: Optional[str] = None
    id: Optional[int] = None


@dataclass
class StoredTaxReport:
    """A persisted report header; transactions load separately as records."""

    id: str
    jurisdiction: str
    period: TaxPeriod
    method: CostBasisMethod
    generated_at: datetime
    summary: TaxSummary
    strategies: list[TaxStrategy] = field(default_factory=list)
    warnings: list[ReportWarning] = field(default_factory=list)
    transaction_count: int = 0
    skipped_count: int = 0
    processing_seconds: float = 0.0
    consistency_hash: str = ""

    @property
    def tax_year(self) -> int:
        return self.period.year


# ═══════════════════════════════════════════════════════════════════════════
# Audit
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit record for every stored mutation."""

    table_name: str
    record_id: str
    action: str                 # INSERT / DELETE
    old_data: Optional[str] = None
    new_data: Optional[str] = None
    timestamp: Optional[datetime] = None
    id: Optional[int] = None
