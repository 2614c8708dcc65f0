"""Tests for position sizing and order validation — pure math."""

import pytest

from supportbot.errors import OrderValidationError
from supportbot.exchange.models import InstrumentInfo
from supportbot.risk.position_sizer import (
    BELOW_MINIMUM_NOTIONAL,
    BELOW_MINIMUM_QUANTITY,
    EXCEEDS_MAX_ORDER_AMOUNT,
    EXCEEDS_MAXIMUM_QUANTITY,
    INVALID_PRICE,
    floor_to_step,
    is_step_multiple,
    round_to_tick,
    size_order,
    validate_order,
)


def _instrument(**overrides) -> InstrumentInfo:
    defaults = dict(
        symbol="ETHUSDT", tick_size=0.01, lot_step=0.01, min_qty=0.01, min_notional=5.0,
    )
    defaults.update(overrides)
    return InstrumentInfo(**defaults)


# ── Rounding helpers ─────────────────────────────────────────────────────


class TestRounding:
    def test_floor_never_rounds_up(self):
        assert floor_to_step(0.99502, 0.01) == pytest.approx(0.99)
        assert floor_to_step(0.999999, 0.001) == pytest.approx(0.999)

    def test_floor_exact_multiple_unchanged(self):
        assert floor_to_step(1.25, 0.05) == pytest.approx(1.25)

    def test_round_to_tick(self):
        assert round_to_tick(102.5100001, 0.01) == pytest.approx(102.51)
        assert round_to_tick(102.515, 0.01) == pytest.approx(102.52)
        assert round_to_tick(0.123456, 0.0001) == pytest.approx(0.1235)

    def test_non_positive_step_raises(self):
        with pytest.raises(ValueError):
            floor_to_step(1.0, 0)
        with pytest.raises(ValueError):
            round_to_tick(1.0, -0.01)

    def test_step_multiple(self):
        assert is_step_multiple(0.99, 0.01)
        assert not is_step_multiple(0.995, 0.01)


# ── size_order ───────────────────────────────────────────────────────────


class TestSizeOrder:
    def test_budget_split_rounds_quantity_down(self):
        sized = size_order(100.50, 100.0, _instrument())
        assert sized.price == pytest.approx(100.50)
        assert sized.quantity == pytest.approx(0.99)
        assert sized.notional == pytest.approx(99.495)
        assert sized.notional <= 100.0

    @pytest.mark.parametrize("price,step", [
        (100.50, 0.01), (2345.67, 0.0001), (0.08765, 1.0), (61234.5, 0.000001),
    ])
    def test_quantity_is_lot_multiple_within_budget(self, price, step):
        instrument = _instrument(tick_size=0.00001, lot_step=step, min_qty=step, min_notional=1.0)
        sized = size_order(price, 100.0, instrument)
        assert is_step_multiple(sized.quantity, step)
        assert sized.quantity * sized.price <= 100.0 * 1.005

    def test_price_rounded_to_tick(self):
        sized = size_order(100.504, 100.0, _instrument())
        assert sized.price == pytest.approx(100.50)

    def test_below_minimum_quantity(self):
        with pytest.raises(OrderValidationError) as exc_info:
            size_order(100.50, 100.0, _instrument(min_qty=1.0))
        assert exc_info.value.reason == BELOW_MINIMUM_QUANTITY

    def test_below_minimum_notional(self):
        with pytest.raises(OrderValidationError) as exc_info:
            size_order(100.50, 4.0, _instrument(min_qty=0.001, lot_step=0.001))
        assert exc_info.value.reason == BELOW_MINIMUM_NOTIONAL

    def test_budget_smaller_than_one_lot(self):
        with pytest.raises(OrderValidationError) as exc_info:
            size_order(60000.0, 100.0, _instrument(lot_step=0.01, min_qty=0.01))
        assert exc_info.value.reason == BELOW_MINIMUM_QUANTITY

    def test_invalid_price(self):
        with pytest.raises(OrderValidationError) as exc_info:
            size_order(0.0, 100.0, _instrument())
        assert exc_info.value.reason == INVALID_PRICE

    def test_non_positive_budget_raises(self):
        with pytest.raises(ValueError):
            size_order(100.0, 0.0, _instrument())


# ── validate_order ───────────────────────────────────────────────────────


class TestValidateOrder:
    def test_returns_notional(self):
        assert validate_order(102.51, 0.99, _instrument()) == pytest.approx(101.4849)

    def test_max_quantity(self):
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order(100.0, 5.0, _instrument(max_qty=2.0))
        assert exc_info.value.reason == EXCEEDS_MAXIMUM_QUANTITY

    def test_exceeds_budget_beyond_tolerance(self):
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order(100.0, 1.01, _instrument(), max_order_amount=100.0, tolerance_pct=0.5)
        assert exc_info.value.reason == EXCEEDS_MAX_ORDER_AMOUNT

    def test_within_tolerance_accepted(self):
        notional = validate_order(100.0, 1.004, _instrument(lot_step=0.001), max_order_amount=100.0)
        assert notional == pytest.approx(100.4)

    def test_close_order_ignores_budget(self):
        assert validate_order(200.0, 1.0, _instrument()) == pytest.approx(200.0)
