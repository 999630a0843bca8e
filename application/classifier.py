"""Transaction classifier — assigns a tax treatment to each transaction.

Event type comes from the jurisdiction's ordered keyword table (highest
priority first, first match wins) and falls back to the sign of the
transaction's base amount.  Unmatched input degrades to NON_TAXABLE
instead of failing; ``matched_rule`` on the treatment tells callers which
path decided.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from application.accessors import signed_base_amount, type_label
from domain.entities import TransactionTaxTreatment
from domain.enums import RuleCategory, TaxEventType
from domain.jurisdictions import TaxJurisdiction, TaxRule, load_jurisdiction
from domain.transactions import Transaction
from domain.value_objects import ZERO

log = logging.getLogger(__name__)

# Which rule categories can apply to each event type.
_CATEGORY_MAP: dict[TaxEventType, tuple[RuleCategory, ...]] = {
    TaxEventType.DISPOSAL: (RuleCategory.CAPITAL_GAINS, RuleCategory.REPORTING),
    TaxEventType.ACQUISITION: (RuleCategory.CAPITAL_GAINS, RuleCategory.REPORTING),
    TaxEventType.INCOME: (RuleCategory.INCOME, RuleCategory.REPORTING),
    TaxEventType.DEDUCTIBLE: (RuleCategory.DEDUCTIONS, RuleCategory.REPORTING),
    TaxEventType.NON_TAXABLE: (RuleCategory.EXEMPTIONS, RuleCategory.REPORTING),
}


@dataclass(frozen=True)
class ClassificationContext:
    transaction: Transaction
    jurisdiction: TaxJurisdiction
    is_personal_use: bool = False


class TransactionClassifier:
    """Stateless apart from rule sets registered per jurisdiction code."""

    def __init__(self) -> None:
        self._rules: dict[str, tuple[TaxRule, ...]] = {}

    def register_rules(self, jurisdiction_code: str, rules: Iterable[TaxRule]) -> None:
        """Replace the rule set used for *jurisdiction_code*."""
        self._rules[jurisdiction_code.upper()] = tuple(rules)

    def classify(
        self,
        transaction: Transaction,
        jurisdiction: TaxJurisdiction | str,
        is_personal_use: bool = False,
    ) -> TransactionTaxTreatment:
        if isinstance(jurisdiction, str):
            jurisdiction = load_jurisdiction(jurisdiction)

        event_type, matched = self._determine_event_type(transaction, jurisdiction)
        classification = self._detailed_classification(transaction, event_type)
        is_cgt_eligible = (
            event_type in (TaxEventType.DISPOSAL, TaxEventType.ACQUISITION)
            and not is_personal_use
        )
        reason = f"Classified as {event_type.value} - {classification}"
        if is_personal_use:
            reason += ". Designated as personal use asset."

        return TransactionTaxTreatment(
            event_type=event_type,
            classification=classification,
            is_personal_use=is_personal_use,
            is_cgt_eligible=is_cgt_eligible,
            cgt_discount_applied=False,
            treatment_reason=reason,
            applicable_rules=self._applicable_rules(
                transaction, jurisdiction, event_type, classification),
            matched_rule=matched,
        )

    def classify_batch(
        self, contexts: Iterable[ClassificationContext],
    ) -> list[TransactionTaxTreatment]:
        return [
            self.classify(c.transaction, c.jurisdiction, c.is_personal_use)
            for c in contexts
        ]

    def classify_defi_transaction(self, transaction: Transaction) -> str:
        """Human-readable DeFi classification for income-like events."""
        label = type_label(transaction)
        desc = (transaction.description or "").lower()

        if "realized_profit" in label:
            return "Futures Realized Profit - Ordinary Income"
        if "staking_deposit" in label or "staking_withdrawal" in label:
            return "DeFi Stake/Unstake - No Income Received"
        if "staking" in label or "staking reward" in desc:
            return "DeFi Staking Reward - Ordinary Income"
        if ("liquidity" in label or "add liquidity" in desc
                or "remove liquidity" in desc):
            return "DeFi Liquidity Pool - Capital Transaction"
        if "farm" in label or "yield" in desc:
            return "DeFi Yield Farming - Ordinary Income"
        if ("lend" in label or "borrow" in label or "interest" in label
                or "interest" in desc):
            return "DeFi Lending/Borrowing - Interest Income/Expense"
        if "airdrop" in label or "airdrop" in desc:
            return "DeFi Airdrop - Ordinary Income"
        if "swap" in label or "swap" in desc:
            return "DeFi Swap - Disposal and Acquisition"
        return "DeFi Transaction - Requires Manual Review"

    # ── internals ─────────────────────────────────────────────────────

    @staticmethod
    def _determine_event_type(
        transaction: Transaction, jurisdiction: TaxJurisdiction,
    ) -> tuple[TaxEventType, bool]:
        label = type_label(transaction)
        description = transaction.description or ""
        for rule in jurisdiction.classification_rules:
            if rule.matches(label, description):
                return rule.event_type, True

        amount = signed_base_amount(transaction)
        if amount < ZERO:
            return TaxEventType.DISPOSAL, True
        if amount > ZERO:
            return TaxEventType.ACQUISITION, True
        log.debug("No rule matched %s (%s); treating as non-taxable",
                  transaction.id, label)
        return TaxEventType.NON_TAXABLE, False

    def _detailed_classification(
        self, transaction: Transaction, event_type: TaxEventType,
    ) -> str:
        label = type_label(transaction)
        if event_type == TaxEventType.DISPOSAL:
            if "sell" in label:
                return "Sale of Cryptocurrency"
            if "trade" in label:
                return "Trade/Exchange of Cryptocurrency"
            if "spend" in label:
                return "Spending Cryptocurrency"
            if "gift" in label:
                return "Gift of Cryptocurrency"
            return "Disposal of Cryptocurrency"
        if event_type == TaxEventType.ACQUISITION:
            if "buy" in label:
                return "Purchase of Cryptocurrency"
            if "trade" in label:
                return "Trade/Exchange of Cryptocurrency"
            if "receive" in label:
                return "Receipt of Cryptocurrency"
            return "Acquisition of Cryptocurrency"
        if event_type == TaxEventType.INCOME:
            return self.classify_defi_transaction(transaction)
        if event_type == TaxEventType.DEDUCTIBLE:
            return "Transaction Fee" if "fee" in label else "Deductible Expense"
        if "transfer" in label:
            return "Internal Transfer"
        if "liquidity" in label:
            return "Liquidity Pool Movement"
        return "Non-Taxable Event"

    def _applicable_rules(
        self,
        transaction: Transaction,
        jurisdiction: TaxJurisdiction,
        event_type: TaxEventType,
        classification: str,
    ) -> tuple[TaxRule, ...]:
        rules: Optional[tuple[TaxRule, ...]] = self._rules.get(jurisdiction.code.upper())
        if rules is None:
            rules = jurisdiction.rules
        categories = _CATEGORY_MAP[event_type]
        return tuple(
            r for r in rules
            if r.category in categories
            and r.matches_classification(classification)
            and r.is_effective(transaction.timestamp)
        )
