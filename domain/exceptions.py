"""Errors raised by the tax engine."""

from __future__ import annotations

from decimal import Decimal


class TaxEngineError(ValueError):
    """Base class for every tax engine failure."""


class InsufficientAcquisitionLots(TaxEngineError):
    """Available lots cannot cover a disposal."""

    def __init__(self, asset: str, required: Decimal, available: Decimal,
                 transaction_id: str = "") -> None:
        self.asset = asset
        self.required = required
        self.available = available
        self.transaction_id = transaction_id
        super().__init__(
            f"Insufficient acquisition lots for {asset}: "
            f"need {required}, available {available}"
        )


class InsufficientLotBalance(TaxEngineError):
    """An identified lot has less remaining than requested."""

    def __init__(self, asset: str, lot_id: str, requested: Decimal,
                 remaining: Decimal) -> None:
        self.asset = asset
        self.lot_id = lot_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Lot {lot_id} of {asset} has {remaining} remaining, "
            f"{requested} requested"
        )


class LotNotFound(TaxEngineError):
    """A referenced lot is not an acquisition lot for the asset."""

    def __init__(self, asset: str, lot_id: str) -> None:
        self.asset = asset
        self.lot_id = lot_id
        super().__init__(f"No acquisition lot {lot_id} for {asset}")


class LotAmountMismatch(TaxEngineError):
    """Identified lot amounts do not add up to the disposal amount."""

    def __init__(self, expected: Decimal, identified: Decimal) -> None:
        self.expected = expected
        self.identified = identified
        super().__init__(
            f"Identified lots total {identified}, disposal amount is {expected}"
        )


class UnsupportedCostBasisMethod(TaxEngineError):
    def __init__(self, method: object) -> None:
        self.method = method
        super().__init__(f"Unsupported cost basis method: {method}")


class UnsupportedJurisdiction(TaxEngineError):
    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Unsupported jurisdiction: {code}")


class ReportCancelled(TaxEngineError):
    """The caller cancelled a report run between chunks."""
