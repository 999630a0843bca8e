"""Tests for AcquisitionLotManager."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from application.lot_manager import AcquisitionLotManager
from domain.entities import AcquisitionLot
from domain.enums import TradeSide
from domain.exceptions import InsufficientLotBalance, LotNotFound
from domain.transactions import SpotTrade, Swap
from domain.value_objects import AssetAmount, DataSource

SRC = DataSource(id="cs", name="CoinSpot")
KEY = "BTC:CoinSpot"
T0 = datetime(2023, 1, 1, tzinfo=timezone.utc)


def _make_buy(tx_id: str, amount: str, price: str, days: int = 0,
              fee: str | None = None) -> SpotTrade:
    qty = Decimal(amount)
    return SpotTrade(
        id=tx_id, timestamp=T0 + timedelta(days=days), source=SRC, side=TradeSide.BUY,
        base_asset=AssetAmount("BTC", qty),
        quote_asset=AssetAmount("AUD", qty * Decimal(price)),
        fee=AssetAmount("AUD", Decimal(fee)) if fee else None,
    )


class TestAddLots:
    def test_lot_from_buy(self):
        m = AcquisitionLotManager()
        lot = m.add_lot(_make_buy("A1", "1", "30000", fee="50"))
        assert lot.amount == Decimal("1")
        assert lot.unit_price == Decimal("30000")
        assert lot.fees == Decimal("50")
        assert lot.remaining_amount == lot.amount

    def test_duplicate_rejected(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1", "30000"))
        with pytest.raises(ValueError, match="already exists"):
            m.add_lot(_make_buy("A1", "1", "30000"))

    def test_lots_kept_in_date_order(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("late", "1", "100", days=10))
        m.add_lot(_make_buy("early", "1", "100", days=1))
        m.add_lot(_make_buy("same_a", "1", "100", days=5))
        m.add_lot(_make_buy("same_b", "1", "100", days=5))
        assert [l.transaction_id for l in m.get_lots(KEY)] == [
            "early", "same_a", "same_b", "late"]

    def test_swap_lot_for_received_asset(self):
        m = AcquisitionLotManager()
        swap = Swap(id="SW", timestamp=T0, source=SRC,
                    from_asset=AssetAmount("BTC", Decimal("0.1")),
                    to_asset=AssetAmount("USDC", Decimal("4000"), Decimal("6000")))
        lot = m.add_swap_lot(swap)
        assert lot.unit_price == Decimal("1.5")
        assert m.get_remaining_balance("USDC:CoinSpot") == Decimal("4000")
        assert m.get_lots(KEY) == []


class TestUseLot:
    def test_conservation(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "2", "100"))
        m.use_lot(KEY, "A1", Decimal("0.5"), "D1")
        m.use_lot(KEY, "A1", Decimal("0.25"), "D2")
        lot = m.get_lot(KEY, "A1")
        assert lot.remaining_amount + m.consumed_amount(KEY, "A1") == lot.original_amount
        assert [d.disposal_id for d in m.get_disposal_history("A1")] == ["D1", "D2"]

    def test_over_consumption(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1", "100"))
        with pytest.raises(InsufficientLotBalance):
            m.use_lot(KEY, "A1", Decimal("1.5"), "D1")
        assert m.get_lot(KEY, "A1").remaining_amount == Decimal("1")

    def test_non_positive_amount(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1", "100"))
        with pytest.raises(ValueError):
            m.use_lot(KEY, "A1", Decimal("0"), "D1")

    def test_unknown_lot(self):
        with pytest.raises(LotNotFound):
            AcquisitionLotManager().use_lot(KEY, "nope", Decimal("1"), "D1")

    def test_dust_is_not_remaining(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1", "100"))
        m.use_lot(KEY, "A1", Decimal("0.9999995"), "D1")
        assert m.get_remaining_lots(KEY) == []
        assert m.get_remaining_balance(KEY) == Decimal("0")


class TestQueries:
    def test_average_cost(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1", "100"))
        m.add_lot(_make_buy("A2", "3", "200", days=1))
        assert m.get_average_cost_basis(KEY) == Decimal("175.00")

    def test_holding_period_filter(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("old", "1", "100"))
        m.add_lot(_make_buy("new", "1", "100", days=300))
        held = m.get_lots_by_holding_period(KEY, 365, T0 + timedelta(days=365))
        assert [l.transaction_id for l in held] == ["old"]

    def test_date_range(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1", "100", days=1))
        m.add_lot(_make_buy("A2", "1", "100", days=20))
        found = m.get_lots_by_date_range(KEY, T0, T0 + timedelta(days=10))
        assert [l.transaction_id for l in found] == ["A1"]

    def test_asset_summary(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1", "100"))
        m.add_lot(_make_buy("A2", "1", "100", days=1))
        m.use_lot(KEY, "A1", Decimal("1"), "D1")
        s = m.get_asset_summary(KEY)
        assert s.total_acquired == Decimal("2")
        assert s.total_used == Decimal("1")
        assert s.total_remaining == Decimal("1")
        assert s.lot_count == 2
        assert s.active_lot_count == 1

    def test_clear_asset(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1", "100"))
        m.use_lot(KEY, "A1", Decimal("0.5"), "D1")
        m.clear_asset(KEY)
        assert m.assets() == []
        assert m.get_asset_disposal_history(KEY) == []


class TestState:
    def test_round_trip(self):
        m = AcquisitionLotManager()
        m.add_lot(_make_buy("A1", "1.5", "100", fee="3"))
        m.add_lot(_make_buy("A2", "2", "120", days=3))
        m.use_lot(KEY, "A1", Decimal("0.5"), "D1")

        restored = AcquisitionLotManager()
        restored.import_state(m.export_state())
        assert restored.export_state() == m.export_state()
        assert restored.get_lot(KEY, "A1").remaining_amount == Decimal("1.0")
        assert len(restored.get_asset_disposal_history(KEY)) == 1

    def test_bad_state(self):
        m = AcquisitionLotManager()
        with pytest.raises(ValueError, match="Failed to import"):
            m.import_state('{"lots": {}}')

    def test_lot_validation(self):
        with pytest.raises(ValueError):
            AcquisitionLot("L", T0, Decimal("1"), Decimal("1"), Decimal("2"))
