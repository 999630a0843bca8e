"""Tax jurisdiction configuration and the jurisdiction registry.

A jurisdiction bundles everything the pipeline needs to know about one tax
regime: the tax-year boundary, the CGT discount and its holding period, the
personal-use threshold, supported cost-basis methods, the descriptive rule
set and the ordered keyword table the classifier evaluates.

Only Australia ships here.  Other regimes plug in through
``register_jurisdiction``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from domain.enums import CostBasisMethod, Currency, RuleCategory, TaxEventType
from domain.exceptions import UnsupportedJurisdiction
from domain.value_objects import as_utc

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Rules
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TaxRule:
    """A descriptive jurisdiction rule attached to matching treatments."""

    id: str
    name: str
    description: str
    category: RuleCategory
    applicable_transaction_types: tuple[str, ...] = ()
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    reference: str = ""

    def __post_init__(self) -> None:
        if not self.id or not self.name:
            raise ValueError("TaxRule requires an id and a name")
        object.__setattr__(
            self, "applicable_transaction_types",
            tuple(self.applicable_transaction_types),
        )
        if (self.effective_from is not None and self.effective_to is not None
                and self.effective_to < self.effective_from):
            raise ValueError(f"Rule {self.id}: effective_to precedes effective_from")

    def matches_classification(self, classification: str) -> bool:
        """Empty type list matches everything; else case-insensitive substring."""
        if not self.applicable_transaction_types:
            return True
        text = classification.lower()
        return any(t.lower() in text for t in self.applicable_transaction_types)

    def is_effective(self, moment: datetime) -> bool:
        moment = as_utc(moment)
        if self.effective_from is not None and moment < as_utc(self.effective_from):
            return False
        if self.effective_to is not None and moment > as_utc(self.effective_to):
            return False
        return True


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classifier's keyword table.

    Rows are evaluated highest ``priority`` first; the first row with a
    keyword found in the transaction's type label (and, when
    ``match_description`` is set, its description) decides the event type.
    """

    event_type: TaxEventType
    keywords: tuple[str, ...]
    priority: int
    match_description: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "keywords", tuple(k.lower() for k in self.keywords)
        )
        if not self.keywords:
            raise ValueError("ClassificationRule needs at least one keyword")

    def matches(self, type_label: str, description: str = "") -> bool:
        label = type_label.lower()
        desc = description.lower() if self.match_description else ""
        return any(k in label or (desc and k in desc) for k in self.keywords)


DEFAULT_CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        TaxEventType.INCOME,
        ("staking", "reward", "mining", "airdrop", "interest",
         "dividend", "cashback", "referral", "bonus"),
        priority=30,
    ),
    ClassificationRule(
        TaxEventType.INCOME,
        ("realized_profit",),
        priority=30,
        match_description=False,
    ),
    ClassificationRule(
        TaxEventType.DEDUCTIBLE,
        ("fee", "cost", "expense"),
        priority=20,
        match_description=False,
    ),
    ClassificationRule(
        TaxEventType.NON_TAXABLE,
        ("transfer", "deposit", "withdrawal", "internal"),
        priority=10,
    ),
    ClassificationRule(
        TaxEventType.NON_TAXABLE,
        ("liquidity_add", "liquidity_remove"),
        priority=10,
        match_description=False,
    ),
)


# ═══════════════════════════════════════════════════════════════════════════
# Periods and jurisdictions
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TaxPeriod:
    """Closed interval [start, end] of one tax year."""

    year: int
    start: datetime
    end: datetime
    label: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.end < self.start:
            raise ValueError(f"Tax period {self.year}: end precedes start")
        if not self.label:
            object.__setattr__(self, "label", f"{self.year - 1}-{self.year}")

    def contains(self, moment: datetime) -> bool:
        return self.start <= as_utc(moment) <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass(frozen=True)
class TaxJurisdiction:
    """Read-only configuration for one tax regime."""

    code: str
    name: str
    currency: Currency
    tax_year_start_month: int
    tax_year_start_day: int
    cgt_discount_rate: Decimal
    cgt_holding_period: int
    personal_use_threshold: Decimal
    supported_methods: tuple[CostBasisMethod, ...]
    rules: tuple[TaxRule, ...] = ()
    classification_rules: tuple[ClassificationRule, ...] = DEFAULT_CLASSIFICATION_RULES
    default_method: CostBasisMethod = CostBasisMethod.FIFO

    def __post_init__(self) -> None:
        if not (Decimal("0") <= self.cgt_discount_rate <= Decimal("1")):
            raise ValueError(f"{self.code}: CGT discount rate must be within [0, 1]")
        if self.cgt_holding_period < 0:
            raise ValueError(f"{self.code}: holding period must be non-negative")
        if self.personal_use_threshold < 0:
            raise ValueError(f"{self.code}: personal-use threshold must be non-negative")
        if not self.supported_methods:
            raise ValueError(f"{self.code}: at least one cost basis method required")
        if self.default_method not in self.supported_methods:
            raise ValueError(f"{self.code}: default method must be supported")
        object.__setattr__(self, "rules", tuple(self.rules))
        object.__setattr__(
            self, "classification_rules",
            tuple(sorted(self.classification_rules, key=lambda r: -r.priority)),
        )

    def tax_year_period(self, year: int) -> TaxPeriod:
        """Tax year *year* is the one that ends in calendar year *year*.

        For a 1 January start the tax year is simply the calendar year.
        """
        start_year = year if (self.tax_year_start_month, self.tax_year_start_day) == (1, 1) else year - 1
        start = datetime(start_year, self.tax_year_start_month,
                         self.tax_year_start_day, tzinfo=timezone.utc)
        next_start = datetime(start_year + 1, self.tax_year_start_month,
                              self.tax_year_start_day, tzinfo=timezone.utc)
        end = next_start - timedelta(microseconds=1)
        label = str(year) if start_year == year else f"{start_year}-{year}"
        return TaxPeriod(year=year, start=start, end=end, label=label)

    def tax_year_of(self, moment: datetime) -> int:
        moment = as_utc(moment)
        starts_this_year = datetime(moment.year, self.tax_year_start_month,
                                    self.tax_year_start_day, tzinfo=timezone.utc)
        if (self.tax_year_start_month, self.tax_year_start_day) == (1, 1):
            return moment.year
        return moment.year + 1 if moment >= starts_this_year else moment.year

    def supports_method(self, method: CostBasisMethod) -> bool:
        return method in self.supported_methods

    def qualifies_for_discount(self, holding_period_days: int,
                               is_personal_use: bool = False) -> bool:
        return (not is_personal_use
                and self.cgt_discount_rate > 0
                and holding_period_days >= self.cgt_holding_period)

    def rules_in(self, category: RuleCategory) -> list[TaxRule]:
        return [r for r in self.rules if r.category == category]


# ═══════════════════════════════════════════════════════════════════════════
# Australia
# ═══════════════════════════════════════════════════════════════════════════

AU_RULES: tuple[TaxRule, ...] = (
    TaxRule(
        id="AU_CGT_DISCOUNT",
        name="CGT Discount",
        description="50% discount on capital gains for assets held at least 12 months",
        category=RuleCategory.CAPITAL_GAINS,
        applicable_transaction_types=("sale", "disposal", "trade"),
        reference="ITAA 1997 Division 115",
    ),
    TaxRule(
        id="AU_PERSONAL_USE",
        name="Personal Use Asset Exemption",
        description="Capital gains on personal use assets acquired for less than "
                    "AUD 10,000 are disregarded",
        category=RuleCategory.EXEMPTIONS,
        reference="ITAA 1997 s118-10",
    ),
    TaxRule(
        id="AU_STAKING_INCOME",
        name="Staking Rewards as Income",
        description="Staking rewards are ordinary income at market value when received",
        category=RuleCategory.INCOME,
        applicable_transaction_types=("staking",),
        reference="ATO guidance on crypto staking",
    ),
    TaxRule(
        id="AU_AIRDROP_INCOME",
        name="Airdrops as Income",
        description="Airdropped tokens are ordinary income at market value when received",
        category=RuleCategory.INCOME,
        applicable_transaction_types=("airdrop",),
        reference="ATO guidance on airdrops",
    ),
    TaxRule(
        id="AU_FEE_DEDUCTION",
        name="Transaction Fee Deduction",
        description="Transaction fees form part of the cost base or are deductible",
        category=RuleCategory.DEDUCTIONS,
        applicable_transaction_types=("fee",),
        reference="ITAA 1997 s110-25",
    ),
    TaxRule(
        id="AU_DEFI_CLASSIFICATION",
        name="DeFi Transaction Classification",
        description="DeFi income (yield, lending, liquidity) is treated by substance",
        category=RuleCategory.INCOME,
        applicable_transaction_types=("defi",),
        reference="ATO guidance on DeFi",
    ),
)


def australia() -> TaxJurisdiction:
    """Australian CGT rules: 1 July to 30 June, 50% discount after 365 days."""
    return TaxJurisdiction(
        code="AU",
        name="Australia",
        currency=Currency.AUD,
        tax_year_start_month=7,
        tax_year_start_day=1,
        cgt_discount_rate=Decimal("0.5"),
        cgt_holding_period=365,
        personal_use_threshold=Decimal("10000"),
        supported_methods=(CostBasisMethod.FIFO,
                           CostBasisMethod.SPECIFIC_IDENTIFICATION),
        rules=AU_RULES,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════════════════

JURISDICTIONS: dict[str, Callable[[], TaxJurisdiction]] = {
    "AU": australia,
}


def register_jurisdiction(code: str, factory: Callable[[], TaxJurisdiction]) -> None:
    """Make *code* loadable via ``load_jurisdiction``."""
    code = code.upper()
    if code in JURISDICTIONS:
        log.info("Replacing jurisdiction factory for %s", code)
    JURISDICTIONS[code] = factory


def load_jurisdiction(code: str) -> TaxJurisdiction:
    factory = JURISDICTIONS.get((code or "").upper())
    if factory is None:
        raise UnsupportedJurisdiction(code)
    return factory()


def supported_jurisdictions() -> list[str]:
    return sorted(JURISDICTIONS)
