"""Domain enums for the crypto tax engine."""

from enum import Enum


class TransactionKind(str, Enum):
    """Tag of a normalized transaction variant."""
    SPOT_TRADE = "SPOT_TRADE"
    TRANSFER = "TRANSFER"
    STAKING_DEPOSIT = "STAKING_DEPOSIT"
    STAKING_WITHDRAWAL = "STAKING_WITHDRAWAL"
    STAKING_REWARD = "STAKING_REWARD"
    SWAP = "SWAP"
    LIQUIDITY_ADD = "LIQUIDITY_ADD"
    LIQUIDITY_REMOVE = "LIQUIDITY_REMOVE"
    AIRDROP = "AIRDROP"
    FEE = "FEE"
    LOAN = "LOAN"
    INTEREST = "INTEREST"
    MARGIN_TRADE = "MARGIN_TRADE"
    FUTURES_TRADE = "FUTURES_TRADE"
    UNKNOWN = "UNKNOWN"


class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class TransferDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"
    INTERNAL = "INTERNAL"


class LoanOperation(str, Enum):
    BORROW = "BORROW"
    REPAY = "REPAY"


class InterestType(str, Enum):
    EARNED = "EARNED"
    PAID = "PAID"


class FuturesOperation(str, Enum):
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    LIQUIDATION = "LIQUIDATION"


class TaxEventType(str, Enum):
    """Tax event kind assigned by the classifier."""
    DISPOSAL = "DISPOSAL"
    ACQUISITION = "ACQUISITION"
    INCOME = "INCOME"
    DEDUCTIBLE = "DEDUCTIBLE"
    NON_TAXABLE = "NON_TAXABLE"

    @property
    def label(self) -> str:
        _labels = {
            "DISPOSAL": "Disposal",
            "ACQUISITION": "Acquisition",
            "INCOME": "Income",
            "DEDUCTIBLE": "Deductible",
            "NON_TAXABLE": "Non-taxable",
        }
        return _labels[self.value]


class CostBasisMethod(str, Enum):
    FIFO = "FIFO"
    SPECIFIC_IDENTIFICATION = "SPECIFIC_IDENTIFICATION"

    @property
    def label(self) -> str:
        _labels = {
            "FIFO": "First-In-First-Out",
            "SPECIFIC_IDENTIFICATION": "Specific Identification",
        }
        return _labels[self.value]


class LotSelectionStrategy(str, Enum):
    """Ordering used to pre-select lots for Specific Identification."""
    MINIMIZE_GAIN = "MINIMIZE_GAIN"
    MAXIMIZE_LOSS = "MAXIMIZE_LOSS"
    MAXIMIZE_CGT_DISCOUNT = "MAXIMIZE_CGT_DISCOUNT"


class RuleCategory(str, Enum):
    CAPITAL_GAINS = "CAPITAL_GAINS"
    INCOME = "INCOME"
    DEDUCTIONS = "DEDUCTIONS"
    EXEMPTIONS = "EXEMPTIONS"
    REPORTING = "REPORTING"


class StrategyType(str, Enum):
    TAX_LOSS_HARVESTING = "TAX_LOSS_HARVESTING"
    CGT_DISCOUNT_TIMING = "CGT_DISCOUNT_TIMING"
    PERSONAL_USE_CLASSIFICATION = "PERSONAL_USE_CLASSIFICATION"
    DISPOSAL_TIMING = "DISPOSAL_TIMING"
    LOT_SELECTION = "LOT_SELECTION"

    @property
    def label(self) -> str:
        _labels = {
            "TAX_LOSS_HARVESTING": "Tax loss harvesting",
            "CGT_DISCOUNT_TIMING": "CGT discount timing",
            "PERSONAL_USE_CLASSIFICATION": "Personal use classification",
            "DISPOSAL_TIMING": "Disposal timing",
            "LOT_SELECTION": "Lot selection",
        }
        return _labels[self.value]


class ComplianceLevel(str, Enum):
    SAFE = "SAFE"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"


class RiskTolerance(str, Enum):
    """Caller appetite used to filter strategies by compliance level."""
    CONSERVATIVE = "CONSERVATIVE"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"

    @property
    def allowed_compliance(self) -> tuple[ComplianceLevel, ...]:
        _allowed = {
            "CONSERVATIVE": (ComplianceLevel.SAFE,),
            "MODERATE": (ComplianceLevel.SAFE, ComplianceLevel.MODERATE),
            "AGGRESSIVE": (
                ComplianceLevel.SAFE,
                ComplianceLevel.MODERATE,
                ComplianceLevel.AGGRESSIVE,
            ),
        }
        return _allowed[self.value]


class ReportPhase(str, Enum):
    """States of one report run."""
    IDLE = "IDLE"
    FILTERING_PERIOD = "FILTERING_PERIOD"
    CLASSIFYING = "CLASSIFYING"
    COMPUTING_COST_BASIS_AND_GAINS = "COMPUTING_COST_BASIS_AND_GAINS"
    AGGREGATING = "AGGREGATING"
    OPTIMIZING = "OPTIMIZING"
    COMPLETE = "COMPLETE"

    @property
    def label(self) -> str:
        _labels = {
            "IDLE": "Idle",
            "FILTERING_PERIOD": "Filtering transactions",
            "CLASSIFYING": "Classifying transactions",
            "COMPUTING_COST_BASIS_AND_GAINS": "Calculating capital gains",
            "AGGREGATING": "Aggregating summary",
            "OPTIMIZING": "Generating optimization strategies",
            "COMPLETE": "Complete",
        }
        return _labels[self.value]


class WarningKind(str, Enum):
    SKIPPED_DISPOSAL = "SKIPPED_DISPOSAL"
    UNCLASSIFIED = "UNCLASSIFIED"
    MISSING_FIAT_VALUE = "MISSING_FIAT_VALUE"


class Currency(str, Enum):
    """Reporting currencies."""
    AUD = "AUD"
    USD = "USD"

    @property
    def symbol(self) -> str:
        return "A$" if self == Currency.AUD else "US$"
