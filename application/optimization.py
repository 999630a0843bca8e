"""TaxOptimizationEngine — ranked, risk-tagged tax planning suggestions.

The engine reads a finished set of taxable transactions and never changes
them.  Savings are heuristic estimates at a flat assumed marginal rate, not
a computation of tax payable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Mapping, Optional, Sequence

from application.lot_manager import AcquisitionLotManager
from domain.entities import TaxableTransaction, TaxStrategy
from domain.enums import ComplianceLevel, RiskTolerance, StrategyType
from domain.jurisdictions import TaxJurisdiction, TaxPeriod
from domain.value_objects import ZERO, round_monetary

log = logging.getLogger(__name__)

ASSUMED_MARGINAL_RATE = Decimal("0.30")
DEFERRAL_VALUE_RATE = Decimal("0.10")
WINDOW_DAYS = 30


@dataclass
class OptimizationContext:
    transactions: Sequence[TaxableTransaction]
    jurisdiction: TaxJurisdiction
    period: TaxPeriod
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    lot_manager: Optional[AcquisitionLotManager] = None
    market_prices: Mapping[str, Decimal] = field(default_factory=dict)


def _gain(tx: TaxableTransaction) -> Decimal:
    return tx.capital_gain or ZERO


class TaxOptimizationEngine:

    def generate_strategies(self, context: OptimizationContext) -> list[TaxStrategy]:
        analyses = (
            self.analyze_tax_loss_harvesting,
            self.analyze_cgt_discount_timing,
            self.analyze_personal_use_classification,
            self.analyze_disposal_timing,
            self.analyze_lot_selection,
        )
        strategies = [s for s in (a(context) for a in analyses) if s is not None]
        ranked = self.rank(strategies)
        allowed = self.filter_by_risk_tolerance(ranked, context.risk_tolerance)
        log.info("Optimization produced %d strategies (%d after %s filter)",
                 len(ranked), len(allowed), context.risk_tolerance.value)
        return allowed

    @staticmethod
    def rank(strategies: Sequence[TaxStrategy]) -> list[TaxStrategy]:
        """Savings descending, then priority descending; ties keep input order."""
        return sorted(strategies, key=lambda s: (-s.potential_savings, -s.priority))

    @staticmethod
    def filter_by_risk_tolerance(strategies: Sequence[TaxStrategy],
                                 tolerance: RiskTolerance) -> list[TaxStrategy]:
        allowed = tolerance.allowed_compliance
        return [s for s in strategies if s.compliance in allowed]

    # ── analyses ──────────────────────────────────────────────────────

    def analyze_tax_loss_harvesting(self, ctx: OptimizationContext) -> Optional[TaxStrategy]:
        """Open lots priced below cost, capped by the period's net realized gain."""
        if ctx.lot_manager is None or not ctx.market_prices:
            return None

        unrealized_loss = ZERO
        lot_ids: list[str] = []
        for key in ctx.lot_manager.assets():
            symbol = key.split(":", 1)[0]
            price = ctx.market_prices.get(symbol)
            if price is None:
                continue
            for lot in ctx.lot_manager.get_remaining_lots(key):
                cost = lot.remaining_amount * lot.unit_price + lot.fee_share(lot.remaining_amount)
                value = lot.remaining_amount * Decimal(price)
                if value < cost:
                    unrealized_loss += cost - value
                    lot_ids.append(lot.transaction_id)

        realized = sum((t.net_gain_loss for t in ctx.transactions if not t.is_skipped), ZERO)
        harvestable = min(unrealized_loss, max(realized, ZERO))
        if harvestable <= ZERO:
            return None

        return TaxStrategy(
            type=StrategyType.TAX_LOSS_HARVESTING,
            description="Realize capital losses to offset capital gains and reduce tax liability",
            potential_savings=harvestable * ASSUMED_MARGINAL_RATE,
            implementation=(
                "Identify assets with unrealized losses",
                "Consider selling loss-making positions before the tax year ends",
                "Use the realized losses to offset capital gains",
                "Carry forward unused losses to future years",
            ),
            risks=(
                "The asset may recover after it is sold",
                "Transaction fees reduce the net benefit",
                "Loss of future upside",
            ),
            compliance=ComplianceLevel.SAFE,
            priority=5,
            transaction_ids=tuple(lot_ids),
        )

    def analyze_cgt_discount_timing(self, ctx: OptimizationContext) -> Optional[TaxStrategy]:
        j = ctx.jurisdiction
        if j.cgt_discount_rate <= ZERO:
            return None
        floor = j.cgt_holding_period - WINDOW_DAYS
        candidates = [
            t for t in ctx.transactions
            if t.cost_basis is not None
            and floor <= t.cost_basis.holding_period < j.cgt_holding_period
            and _gain(t) > ZERO
        ]
        if not candidates:
            return None

        discount = sum((_gain(t) * j.cgt_discount_rate for t in candidates), ZERO)
        return TaxStrategy(
            type=StrategyType.CGT_DISCOUNT_TIMING,
            description=(
                f"Defer disposals until the {j.cgt_holding_period}-day holding period "
                f"for the {j.cgt_discount_rate * 100:.0f}% CGT discount"
            ),
            potential_savings=discount * ASSUMED_MARGINAL_RATE,
            implementation=(
                "Track assets approaching the holding period",
                "Defer disposals until the discount applies",
                f"Hold winning positions for at least {j.cgt_holding_period} days",
            ),
            risks=(
                "Market risk during the extra holding period",
                "Liquidity constraints",
                "Opportunity cost of capital",
            ),
            compliance=ComplianceLevel.SAFE,
            priority=5,
            transaction_ids=tuple(t.id for t in candidates),
        )

    def analyze_personal_use_classification(self, ctx: OptimizationContext) -> Optional[TaxStrategy]:
        j = ctx.jurisdiction
        candidates = [
            t for t in ctx.transactions
            if t.cost_basis is not None
            and t.cost_basis.total_cost < j.personal_use_threshold
            and not t.treatment.is_personal_use
            and _gain(t) > ZERO
        ]
        if not candidates:
            return None

        return TaxStrategy(
            type=StrategyType.PERSONAL_USE_CLASSIFICATION,
            description=(
                f"Classify eligible assets as personal use under the "
                f"{j.currency.value} {j.personal_use_threshold:,.0f} exemption"
            ),
            potential_savings=sum((_gain(t) for t in candidates), ZERO) * ASSUMED_MARGINAL_RATE,
            implementation=(
                "Document personal use intent at acquisition",
                "Confirm the acquisition cost is under the threshold",
                "Keep records of the personal use",
                "Separate personal and investment holdings",
            ),
            risks=(
                "Documentation requirements",
                "Tax authority scrutiny of the classification",
                "Requires genuine personal use intent",
            ),
            compliance=ComplianceLevel.MODERATE,
            priority=3,
            transaction_ids=tuple(t.id for t in candidates),
        )

    def analyze_disposal_timing(self, ctx: OptimizationContext) -> Optional[TaxStrategy]:
        window_start = ctx.period.end - timedelta(days=WINDOW_DAYS)
        candidates = [
            t for t in ctx.transactions
            if window_start <= t.timestamp <= ctx.period.end and _gain(t) > ZERO
        ]
        if not candidates:
            return None

        return TaxStrategy(
            type=StrategyType.DISPOSAL_TIMING,
            description="Time disposals near the tax-year end to defer or accelerate liability",
            potential_savings=sum((_gain(t) * DEFERRAL_VALUE_RATE for t in candidates), ZERO),
            implementation=(
                "Defer gains to the next tax year where beneficial",
                "Accelerate losses into the current year",
                "Consider income levels across tax years",
            ),
            risks=(
                "Market volatility while waiting",
                "Changes in tax law",
                "Liquidity needs may override timing",
            ),
            compliance=ComplianceLevel.SAFE,
            priority=3,
            transaction_ids=tuple(t.id for t in candidates),
        )

    def analyze_lot_selection(self, ctx: OptimizationContext) -> Optional[TaxStrategy]:
        candidates = [
            t for t in ctx.transactions
            if t.cost_basis is not None and len(t.cost_basis.lots) > 1
        ]
        if not candidates:
            return None

        return TaxStrategy(
            type=StrategyType.LOT_SELECTION,
            description="Use specific identification to choose which lots are disposed of",
            potential_savings=round_monetary(ZERO),
            implementation=(
                "Track acquisition lots separately",
                "Document each lot selection",
                "Prefer high-cost lots for disposals",
                "Consider the holding period of each lot",
            ),
            risks=(
                "More complex record-keeping",
                "Every lot must be tracked accurately",
            ),
            compliance=ComplianceLevel.MODERATE,
            priority=2,
            transaction_ids=tuple(t.id for t in candidates),
        )
