"""CapitalGainsCalculator — gain or loss on one disposal under a jurisdiction.

Policy, in order:
- personal use with a cost below the threshold: exempt, everything zero;
- positive net result: capital gain, discounted when held long enough;
- otherwise: capital loss of the absolute net result.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from application.accessors import disposal_value as disposal_proceeds
from application.accessors import transaction_asset
from domain.entities import CostBasis
from domain.jurisdictions import TaxJurisdiction
from domain.transactions import Transaction
from domain.value_objects import ZERO, round_monetary


@dataclass(frozen=True)
class CapitalGainsResult:
    disposal_value: Decimal
    cost_basis_value: Decimal
    net_gain_loss: Decimal
    capital_gain: Decimal
    capital_loss: Decimal
    taxable_gain: Decimal
    cgt_discount_applied: bool
    exemption_applied: bool
    is_personal_use: bool
    holding_period: int

    @property
    def discount_amount(self) -> Decimal:
        return self.capital_gain - self.taxable_gain


@dataclass
class CapitalGainsTotals:
    """Running totals over many disposals."""

    disposals: int = 0
    total_gains: Decimal = ZERO
    total_losses: Decimal = ZERO
    total_taxable: Decimal = ZERO
    total_discount: Decimal = ZERO
    discounted_disposals: int = 0
    exempt_disposals: int = 0

    @property
    def net_gain_loss(self) -> Decimal:
        return self.total_gains - self.total_losses

    def add(self, result: CapitalGainsResult) -> None:
        self.add_amounts(result.capital_gain, result.capital_loss,
                         result.taxable_gain, result.cgt_discount_applied,
                         result.exemption_applied)

    def add_amounts(self, gain: Decimal, loss: Decimal, taxable: Decimal,
                    discounted: bool = False, exempt: bool = False) -> None:
        self.disposals += 1
        self.total_gains += gain
        self.total_losses += loss
        self.total_taxable += taxable
        if discounted:
            self.total_discount += gain - taxable
            self.discounted_disposals += 1
        if exempt:
            self.exempt_disposals += 1


@dataclass
class AssetGainsTotals(CapitalGainsTotals):
    asset: str = ""
    results: list[CapitalGainsResult] = field(default_factory=list)

    def add(self, result: CapitalGainsResult) -> None:
        super().add(result)
        self.results.append(result)


class CapitalGainsCalculator:
    """Applies the exemption, discount and loss rules to one disposal."""

    def calculate(
        self,
        disposal: Transaction,
        cost_basis: CostBasis,
        jurisdiction: TaxJurisdiction,
        is_personal_use: bool = False,
        disposal_value: Optional[Decimal] = None,
    ) -> CapitalGainsResult:
        proceeds = round_monetary(
            disposal_value if disposal_value is not None else disposal_proceeds(disposal)
        )
        cost = round_monetary(cost_basis.total_cost)
        net = proceeds - cost

        common = dict(
            disposal_value=proceeds,
            cost_basis_value=cost,
            net_gain_loss=net,
            is_personal_use=is_personal_use,
            holding_period=cost_basis.holding_period,
        )

        if is_personal_use and cost < jurisdiction.personal_use_threshold:
            return CapitalGainsResult(
                capital_gain=ZERO,
                capital_loss=ZERO,
                taxable_gain=ZERO,
                cgt_discount_applied=False,
                exemption_applied=True,
                **common,
            )

        if net > ZERO:
            discounted = jurisdiction.qualifies_for_discount(
                cost_basis.holding_period, is_personal_use)
            taxable = (
                round_monetary(net * (1 - jurisdiction.cgt_discount_rate))
                if discounted else net
            )
            return CapitalGainsResult(
                capital_gain=net,
                capital_loss=ZERO,
                taxable_gain=taxable,
                cgt_discount_applied=discounted,
                exemption_applied=False,
                **common,
            )

        return CapitalGainsResult(
            capital_gain=ZERO,
            capital_loss=abs(net),
            taxable_gain=ZERO,
            cgt_discount_applied=False,
            exemption_applied=False,
            **common,
        )

    @staticmethod
    def aggregate(results: Iterable[CapitalGainsResult]) -> CapitalGainsTotals:
        totals = CapitalGainsTotals()
        for r in results:
            totals.add(r)
        return totals

    @staticmethod
    def by_asset(
        pairs: Iterable[tuple[Transaction, CapitalGainsResult]],
    ) -> dict[str, AssetGainsTotals]:
        """Group results by the disposed asset symbol, keeping running totals."""
        grouped: dict[str, AssetGainsTotals] = defaultdict(AssetGainsTotals)
        for tx, result in pairs:
            asset = transaction_asset(tx)
            entry = grouped[asset]
            entry.asset = asset
            entry.add(result)
        return dict(grouped)
