"""Domain value objects with strict rounding rules."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Rounding helpers
# ---------------------------------------------------------------------------

MONETARY_PRECISION = Decimal("0.01")        # 2 decimal places
QTY_PRECISION = Decimal("0.00000001")       # 8 decimal places
EPSILON = Decimal("0.000001")               # residue tolerance for lot balances
ZERO = Decimal("0")


def round_monetary(value: Decimal) -> Decimal:
    """Round a monetary value to 2 decimal places using ROUND_HALF_UP."""
    return value.quantize(MONETARY_PRECISION, rounding=ROUND_HALF_UP)


def round_qty(value: Decimal) -> Decimal:
    """Round a quantity to 8 decimal places using ROUND_HALF_UP."""
    return value.quantize(QTY_PRECISION, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Decimal:
    """Safely convert a value to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Cannot convert {value!r} to Decimal") from exc


def is_negligible(value: Decimal) -> bool:
    """True when |value| is within the lot-balance tolerance."""
    return abs(value) <= EPSILON


def as_utc(moment: datetime) -> datetime:
    """Return *moment* as an aware UTC datetime; naive values are read as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from *start* to *end* (floor of the elapsed time)."""
    delta = as_utc(end) - as_utc(start)
    return delta.days


# ---------------------------------------------------------------------------
# Value Objects (immutable via frozen dataclass)
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class DataSource:
    """Where a transaction came from (exchange, wallet, manual import)."""

    id: str
    name: str
    type: str = "exchange"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("DataSource name must not be empty")


@dataclass(frozen=True, slots=True)
class AssetAmount:
    """An amount of one asset, optionally valued in the reporting currency."""

    symbol: str
    amount: Decimal
    fiat_value: Optional[Decimal] = None

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValueError("AssetAmount symbol must not be empty")
        object.__setattr__(self, "symbol", self.symbol.upper())
        object.__setattr__(self, "amount", to_decimal(self.amount))
        if self.fiat_value is not None:
            object.__setattr__(self, "fiat_value", to_decimal(self.fiat_value))

    @property
    def unit_value(self) -> Optional[Decimal]:
        if self.fiat_value is None or self.amount == ZERO:
            return None
        return self.fiat_value / abs(self.amount)

    def __repr__(self) -> str:
        return f"{self.amount} {self.symbol}"


# ---------------------------------------------------------------------------
# Consistency Hash
# ---------------------------------------------------------------------------

def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if hasattr(obj, "value"):  # Enum
        return obj.value
    if hasattr(obj, "isoformat"):  # date/datetime
        return obj.isoformat()
    raise TypeError(f"Cannot serialize {type(obj)}")


def canonical_json(data: Any) -> str:
    """Deterministic JSON: sorted keys, Decimals as strings."""
    return json.dumps(data, sort_keys=True, default=_json_default)


def compute_consistency_hash(data: dict) -> str:
    """Compute SHA-256 of a canonical JSON representation.

    Keys are sorted, Decimals are serialized as strings to ensure
    determinism across platforms.
    """
    return hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()
