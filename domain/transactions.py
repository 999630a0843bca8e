"""Normalized transaction variants consumed by the tax engine.

Every variant is an immutable dataclass tagged by a ``kind`` class attribute.
Timestamps are stored as aware UTC datetimes; naive input is read as UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Optional, Union

from domain.enums import (
    FuturesOperation,
    InterestType,
    LoanOperation,
    TradeSide,
    TransactionKind,
    TransferDirection,
)
from domain.value_objects import AssetAmount, DataSource, as_utc, to_decimal


@dataclass(frozen=True, kw_only=True)
class BaseTransaction:
    """Fields shared by every transaction variant."""

    kind: ClassVar[TransactionKind] = TransactionKind.UNKNOWN

    id: str
    timestamp: datetime
    source: DataSource
    description: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Transaction id must not be empty")
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))
        self._validate()

    def _validate(self) -> None:
        pass


@dataclass(frozen=True, kw_only=True)
class SpotTrade(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.SPOT_TRADE

    side: TradeSide
    base_asset: AssetAmount
    quote_asset: AssetAmount
    price: Optional[Decimal] = None
    fee: Optional[AssetAmount] = None

    def _validate(self) -> None:
        if self.base_asset.amount <= 0:
            raise ValueError(f"Trade {self.id}: base amount must be positive")
        if self.price is not None:
            object.__setattr__(self, "price", to_decimal(self.price))


@dataclass(frozen=True, kw_only=True)
class MarginTrade(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.MARGIN_TRADE

    side: TradeSide
    base_asset: AssetAmount
    quote_asset: AssetAmount
    price: Optional[Decimal] = None
    fee: Optional[AssetAmount] = None
    leverage: Optional[Decimal] = None

    def _validate(self) -> None:
        if self.base_asset.amount <= 0:
            raise ValueError(f"Trade {self.id}: base amount must be positive")


@dataclass(frozen=True, kw_only=True)
class Transfer(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.TRANSFER

    asset: AssetAmount
    direction: TransferDirection
    network_fee: Optional[AssetAmount] = None
    transfer_type: str = ""


@dataclass(frozen=True, kw_only=True)
class StakingDeposit(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.STAKING_DEPOSIT

    asset: AssetAmount
    validator: str = ""


@dataclass(frozen=True, kw_only=True)
class StakingWithdrawal(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.STAKING_WITHDRAWAL

    asset: AssetAmount
    validator: str = ""


@dataclass(frozen=True, kw_only=True)
class StakingReward(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.STAKING_REWARD

    reward: AssetAmount
    validator: str = ""


@dataclass(frozen=True, kw_only=True)
class Swap(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.SWAP

    from_asset: AssetAmount
    to_asset: AssetAmount
    fee: Optional[AssetAmount] = None
    protocol: str = ""


@dataclass(frozen=True, kw_only=True)
class LiquidityAdd(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.LIQUIDITY_ADD

    assets: tuple[AssetAmount, ...]
    lp_tokens: Optional[AssetAmount] = None
    pool: str = ""

    def _validate(self) -> None:
        if not self.assets:
            raise ValueError(f"Liquidity add {self.id} has no assets")
        object.__setattr__(self, "assets", tuple(self.assets))


@dataclass(frozen=True, kw_only=True)
class LiquidityRemove(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.LIQUIDITY_REMOVE

    assets: tuple[AssetAmount, ...]
    lp_tokens: Optional[AssetAmount] = None
    pool: str = ""

    def _validate(self) -> None:
        if not self.assets:
            raise ValueError(f"Liquidity remove {self.id} has no assets")
        object.__setattr__(self, "assets", tuple(self.assets))


@dataclass(frozen=True, kw_only=True)
class Airdrop(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.AIRDROP

    received: AssetAmount
    project: str = ""


@dataclass(frozen=True, kw_only=True)
class Fee(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.FEE

    fee: AssetAmount
    fee_type: str = "trading"


@dataclass(frozen=True, kw_only=True)
class Loan(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.LOAN

    asset: AssetAmount
    operation: LoanOperation
    protocol: str = ""


@dataclass(frozen=True, kw_only=True)
class Interest(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.INTEREST

    asset: AssetAmount
    interest_type: InterestType = InterestType.EARNED
    protocol: str = ""


@dataclass(frozen=True, kw_only=True)
class FuturesTrade(BaseTransaction):
    kind: ClassVar[TransactionKind] = TransactionKind.FUTURES_TRADE

    contract_symbol: str
    operation: FuturesOperation
    position_side: str
    notional: AssetAmount
    realized_pnl: Optional[AssetAmount] = None
    fee: Optional[AssetAmount] = None

    def _validate(self) -> None:
        object.__setattr__(self, "contract_symbol", self.contract_symbol.upper())


@dataclass(frozen=True, kw_only=True)
class UnknownTransaction(BaseTransaction):
    """Record the normalizer could not map; ``raw_type`` keeps its label."""

    kind: ClassVar[TransactionKind] = TransactionKind.UNKNOWN

    raw_type: str = "unknown"
    asset: Optional[AssetAmount] = None
    extra: dict = field(default_factory=dict, compare=False)


Transaction = Union[
    SpotTrade,
    MarginTrade,
    Transfer,
    StakingDeposit,
    StakingWithdrawal,
    StakingReward,
    Swap,
    LiquidityAdd,
    LiquidityRemove,
    Airdrop,
    Fee,
    Loan,
    Interest,
    FuturesTrade,
    UnknownTransaction,
]

TRANSACTION_TYPES: dict[TransactionKind, type] = {
    TransactionKind.SPOT_TRADE: SpotTrade,
    TransactionKind.MARGIN_TRADE: MarginTrade,
    TransactionKind.TRANSFER: Transfer,
    TransactionKind.STAKING_DEPOSIT: StakingDeposit,
    TransactionKind.STAKING_WITHDRAWAL: StakingWithdrawal,
    TransactionKind.STAKING_REWARD: StakingReward,
    TransactionKind.SWAP: Swap,
    TransactionKind.LIQUIDITY_ADD: LiquidityAdd,
    TransactionKind.LIQUIDITY_REMOVE: LiquidityRemove,
    TransactionKind.AIRDROP: Airdrop,
    TransactionKind.FEE: Fee,
    TransactionKind.LOAN: Loan,
    TransactionKind.INTEREST: Interest,
    TransactionKind.FUTURES_TRADE: FuturesTrade,
    TransactionKind.UNKNOWN: UnknownTransaction,
}
