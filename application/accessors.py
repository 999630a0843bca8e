"""Read-only helpers over every transaction variant.

Each function dispatches on the variant's type explicitly and raises
``TypeError`` for anything it does not recognise, so adding a variant to
``domain.transactions`` fails loudly until every accessor handles it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.entities import TaxableTransaction, TaxableTransactionRecord
from domain.enums import LoanOperation, InterestType, TradeSide, TransferDirection
from domain.transactions import (
    Airdrop,
    BaseTransaction,
    Fee,
    FuturesTrade,
    Interest,
    LiquidityAdd,
    LiquidityRemove,
    Loan,
    MarginTrade,
    SpotTrade,
    StakingDeposit,
    StakingReward,
    StakingWithdrawal,
    Swap,
    Transaction,
    Transfer,
    UnknownTransaction,
)
from domain.value_objects import ZERO, AssetAmount

log = logging.getLogger(__name__)


def _unsupported(tx: object) -> TypeError:
    return TypeError(f"Unsupported transaction variant: {type(tx).__name__}")


# ---------------------------------------------------------------------------
# Primary asset
# ---------------------------------------------------------------------------

def primary_asset(tx: Transaction) -> Optional[AssetAmount]:
    """The asset amount the transaction is about."""
    if isinstance(tx, (SpotTrade, MarginTrade)):
        return tx.base_asset
    if isinstance(tx, Swap):
        return tx.from_asset
    if isinstance(tx, (Transfer, StakingDeposit, StakingWithdrawal, Loan, Interest)):
        return tx.asset
    if isinstance(tx, StakingReward):
        return tx.reward
    if isinstance(tx, (LiquidityAdd, LiquidityRemove)):
        return tx.assets[0]
    if isinstance(tx, Airdrop):
        return tx.received
    if isinstance(tx, Fee):
        return tx.fee
    if isinstance(tx, FuturesTrade):
        return tx.notional
    if isinstance(tx, UnknownTransaction):
        return tx.asset
    raise _unsupported(tx)


def transaction_asset(tx: Transaction) -> str:
    if isinstance(tx, FuturesTrade):
        return tx.contract_symbol
    if isinstance(tx, UnknownTransaction) and tx.asset is None:
        return "UNKNOWN"
    asset = primary_asset(tx)
    return asset.symbol if asset is not None else "UNKNOWN"


def transaction_source(tx: Transaction) -> str:
    if not isinstance(tx, BaseTransaction):
        raise _unsupported(tx)
    return tx.source.name


def transaction_timestamp(tx: Transaction) -> datetime:
    if not isinstance(tx, BaseTransaction):
        raise _unsupported(tx)
    return tx.timestamp


def asset_key(tx: Transaction) -> str:
    """Lot-manager key ``ASSET:source``."""
    return make_asset_key(transaction_asset(tx), transaction_source(tx))


def make_asset_key(asset: str, source: str) -> str:
    return f"{asset.upper()}:{source}"


def is_same_asset(a: Transaction, b: Transaction) -> bool:
    return asset_key(a) == asset_key(b)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

def base_amount(tx: Transaction) -> Decimal:
    """Unsigned amount of the primary asset."""
    asset = primary_asset(tx)
    if asset is None:
        return ZERO
    return abs(asset.amount)


def signed_base_amount(tx: Transaction) -> Decimal:
    """Primary amount signed by direction: negative leaves, positive arrives."""
    if isinstance(tx, UnknownTransaction):
        return tx.asset.amount if tx.asset is not None else ZERO
    if is_disposal_event(tx):
        return -base_amount(tx)
    if is_acquisition_event(tx):
        return base_amount(tx)
    return ZERO


def quote_amount(tx: Transaction) -> Decimal:
    if isinstance(tx, (SpotTrade, MarginTrade)):
        return _valued(tx.quote_asset)
    if isinstance(tx, Swap):
        return _valued(tx.to_asset)
    if isinstance(tx, (Transfer, StakingDeposit, StakingWithdrawal, StakingReward,
                       LiquidityAdd, LiquidityRemove, Airdrop, Fee, Loan,
                       Interest, FuturesTrade, UnknownTransaction)):
        return ZERO
    raise _unsupported(tx)


def transaction_fee(tx: Transaction) -> Optional[AssetAmount]:
    if isinstance(tx, (SpotTrade, MarginTrade, Swap, FuturesTrade)):
        return tx.fee
    if isinstance(tx, Transfer):
        return tx.network_fee
    if isinstance(tx, Fee):
        return tx.fee
    if isinstance(tx, (StakingDeposit, StakingWithdrawal, StakingReward,
                       LiquidityAdd, LiquidityRemove, Airdrop, Loan, Interest,
                       UnknownTransaction)):
        return None
    raise _unsupported(tx)


def fee_value(tx: Transaction) -> Decimal:
    """Fee in the reporting currency; the raw amount when no value was given."""
    fee = transaction_fee(tx)
    if fee is None:
        return ZERO
    return _valued(fee)


def unit_price(tx: Transaction) -> Decimal:
    """Per-unit acquisition price used when the transaction opens a lot."""
    amount = base_amount(tx)
    if amount == ZERO:
        return ZERO
    if isinstance(tx, (SpotTrade, MarginTrade)):
        return quote_amount(tx) / amount
    if isinstance(tx, (Transfer, StakingDeposit, StakingWithdrawal, StakingReward,
                       Swap, LiquidityAdd, LiquidityRemove, Airdrop, Fee, Loan,
                       Interest, FuturesTrade, UnknownTransaction)):
        asset = primary_asset(tx)
        if asset is not None and asset.fiat_value is not None:
            return abs(asset.fiat_value) / amount
        return ZERO
    raise _unsupported(tx)


def disposal_value(tx: Transaction) -> Decimal:
    """Proceeds of a disposal in the reporting currency."""
    if isinstance(tx, (SpotTrade, MarginTrade)):
        return quote_amount(tx) - fee_value(tx)
    if isinstance(tx, Swap):
        return quote_amount(tx)
    if isinstance(tx, (Transfer, StakingDeposit, StakingWithdrawal, StakingReward,
                       LiquidityAdd, LiquidityRemove, Airdrop, Fee, Loan,
                       Interest, FuturesTrade, UnknownTransaction)):
        asset = primary_asset(tx)
        if asset is not None and asset.fiat_value is not None:
            return abs(asset.fiat_value)
        return ZERO
    raise _unsupported(tx)


def income_value(tx: Transaction) -> Decimal:
    """Market value of what was received as income.

    Staking deposits and withdrawals move units already held and interest
    paid leaves the wallet, so none of them is a receipt.
    """
    if isinstance(tx, FuturesTrade):
        if tx.realized_pnl is not None and tx.realized_pnl.amount > ZERO:
            return _valued(tx.realized_pnl)
        return ZERO
    if isinstance(tx, (SpotTrade, MarginTrade, Swap)):
        return quote_amount(tx)
    if isinstance(tx, (StakingDeposit, StakingWithdrawal)):
        return ZERO
    if isinstance(tx, Interest) and tx.interest_type == InterestType.PAID:
        return ZERO
    if isinstance(tx, (Transfer, StakingReward, LiquidityAdd, LiquidityRemove,
                       Airdrop, Fee, Loan, Interest, UnknownTransaction)):
        asset = primary_asset(tx)
        if asset is None:
            return ZERO
        if asset.fiat_value is None:
            log.debug("No fiat value on %s; income recorded as zero", tx.id)
            return ZERO
        return abs(asset.fiat_value)
    raise _unsupported(tx)


def deductible_value(tx: Transaction) -> Decimal:
    if isinstance(tx, Fee):
        return _valued(tx.fee)
    if isinstance(tx, Interest):
        return _valued(tx.asset)
    return fee_value(tx)


def _valued(asset: AssetAmount) -> Decimal:
    if asset.fiat_value is not None:
        return abs(asset.fiat_value)
    return abs(asset.amount)


# ---------------------------------------------------------------------------
# Direction
# ---------------------------------------------------------------------------

def is_disposal_event(tx: Transaction) -> bool:
    # Staking and pool movements re-park units already held; neither direction
    # opens or consumes a lot.
    if isinstance(tx, (SpotTrade, MarginTrade)):
        return tx.side == TradeSide.SELL
    if isinstance(tx, Swap):
        return True
    if isinstance(tx, Transfer):
        return tx.direction == TransferDirection.OUT
    if isinstance(tx, (StakingDeposit, StakingWithdrawal, StakingReward, LiquidityAdd,
                       LiquidityRemove, Airdrop, Fee, Loan, Interest, FuturesTrade)):
        return False
    if isinstance(tx, UnknownTransaction):
        return tx.asset is not None and tx.asset.amount < ZERO
    raise _unsupported(tx)


def is_acquisition_event(tx: Transaction) -> bool:
    if isinstance(tx, (SpotTrade, MarginTrade)):
        return tx.side == TradeSide.BUY
    if isinstance(tx, Transfer):
        return tx.direction == TransferDirection.IN
    if isinstance(tx, (StakingReward, Airdrop)):
        return True
    if isinstance(tx, Loan):
        return tx.operation == LoanOperation.BORROW
    if isinstance(tx, Interest):
        return tx.interest_type == InterestType.EARNED
    if isinstance(tx, (Swap, StakingDeposit, StakingWithdrawal, LiquidityAdd,
                       LiquidityRemove, Fee, FuturesTrade)):
        return False
    if isinstance(tx, UnknownTransaction):
        return tx.asset is not None and tx.asset.amount > ZERO
    raise _unsupported(tx)


def is_income_event(tx: Transaction) -> bool:
    if isinstance(tx, (StakingReward, Airdrop)):
        return True
    if isinstance(tx, Interest):
        return tx.interest_type == InterestType.EARNED
    if isinstance(tx, FuturesTrade):
        return tx.realized_pnl is not None and tx.realized_pnl.amount > ZERO
    if isinstance(tx, (SpotTrade, MarginTrade, Swap, Transfer, StakingDeposit,
                       StakingWithdrawal, LiquidityAdd, LiquidityRemove, Fee,
                       Loan, UnknownTransaction)):
        return False
    raise _unsupported(tx)


def type_label(tx: Transaction) -> str:
    """Lower-case label the classifier matches keywords against."""
    if isinstance(tx, (SpotTrade, MarginTrade)):
        return f"{tx.kind.value.lower()}:{tx.side.value.lower()}"
    if isinstance(tx, Transfer):
        return f"transfer:{tx.direction.value.lower()}"
    if isinstance(tx, Loan):
        return f"loan:{tx.operation.value.lower()}"
    if isinstance(tx, Interest):
        return f"interest:{tx.interest_type.value.lower()}"
    if isinstance(tx, Fee):
        return f"fee:{tx.fee_type.lower()}"
    if isinstance(tx, FuturesTrade):
        label = f"futures_trade:{tx.operation.value.lower()}"
        return f"{label}:realized_profit" if is_income_event(tx) else label
    if isinstance(tx, UnknownTransaction):
        return tx.raw_type.lower()
    if isinstance(tx, (StakingDeposit, StakingWithdrawal, StakingReward, Swap,
                       LiquidityAdd, LiquidityRemove, Airdrop)):
        return tx.kind.value.lower()
    raise _unsupported(tx)


# ---------------------------------------------------------------------------
# Flat records
# ---------------------------------------------------------------------------

def to_record(report_id: str, tt: TaxableTransaction) -> TaxableTransactionRecord:
    """Flatten a computed transaction into its stored/exported form."""
    tx = tt.transaction
    return TaxableTransactionRecord(
        transaction_id=tt.id,
        report_id=report_id,
        timestamp=tt.timestamp,
        kind=tx.kind.value,
        asset=transaction_asset(tx),
        source=transaction_source(tx),
        event_type=tt.treatment.event_type,
        classification=tt.treatment.classification,
        is_personal_use=tt.treatment.is_personal_use,
        cgt_discount_applied=tt.treatment.cgt_discount_applied,
        amount=base_amount(tx),
        disposal_value=tt.disposal_value,
        cost_basis=tt.cost_basis.total_cost if tt.cost_basis is not None else None,
        holding_period=tt.holding_period,
        capital_gain=tt.capital_gain,
        capital_loss=tt.capital_loss,
        taxable_amount=tt.taxable_amount,
        income_amount=tt.income_amount,
        deductible_amount=tt.deductible_amount,
        skip_reason=tt.skip_reason,
    )
