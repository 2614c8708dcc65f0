"""Position sizing and order validation — pure math, no I/O.

Converts a target entry price and a USD budget into an exchange-legal
order using the instrument's tick size, lot step and minimums.  All
rounding goes through ``Decimal`` so quantities are exact multiples of the
lot step.
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Optional

from supportbot.errors import OrderValidationError
from supportbot.exchange.models import InstrumentInfo


# Rejection reasons recorded on signals and in the activity log
INVALID_PRICE = "invalid_price"
BELOW_MINIMUM_QUANTITY = "below_minimum_quantity"
BELOW_MINIMUM_NOTIONAL = "below_minimum_notional"
EXCEEDS_MAXIMUM_QUANTITY = "exceeds_maximum_quantity"
EXCEEDS_MAX_ORDER_AMOUNT = "exceeds_max_order_amount"

DEFAULT_TOLERANCE_PCT = 0.5


@dataclass(frozen=True)
class SizedOrder:
    """A validated order ready to be sent to the exchange."""

    price: float
    quantity: float
    notional: float


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


def floor_to_step(value: float, step: float) -> float:
    """Round *value* down to a multiple of *step*.

    Never rounds up: a sized order must not exceed its budget because of
    lot-step rounding.

    Raises:
        ValueError: If *step* is non-positive.
    """
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    d_step = _dec(step)
    units = (_dec(value) / d_step).to_integral_value(rounding=ROUND_FLOOR)
    return float(units * d_step)


def round_to_tick(price: float, tick_size: float) -> float:
    """Round *price* to the nearest multiple of *tick_size*.

    Raises:
        ValueError: If *tick_size* is non-positive.
    """
    if tick_size <= 0:
        raise ValueError(f"tick_size must be positive, got {tick_size}")
    d_tick = _dec(tick_size)
    ticks = (_dec(price) / d_tick).to_integral_value(rounding=ROUND_HALF_UP)
    return float(ticks * d_tick)


def is_step_multiple(value: float, step: float) -> bool:
    """``True`` when *value* is an exact multiple of *step*."""
    return _dec(value) % _dec(step) == 0


def validate_order(
    price: float,
    quantity: float,
    instrument: InstrumentInfo,
    max_order_amount: Optional[float] = None,
    tolerance_pct: float = DEFAULT_TOLERANCE_PCT,
) -> float:
    """Check an order against the instrument's minimums and the budget.

    Used for entry orders and, without *max_order_amount*, for close orders.

    Returns:
        The order notional (``price × quantity``).

    Raises:
        OrderValidationError: with one of the module-level reason codes.
    """
    if price <= 0:
        raise OrderValidationError(INVALID_PRICE, f"price {price}")
    if quantity <= 0 or quantity < instrument.min_qty:
        raise OrderValidationError(
            BELOW_MINIMUM_QUANTITY,
            f"quantity {quantity} < minimum {instrument.min_qty} for {instrument.symbol}",
        )
    if instrument.max_qty > 0 and quantity > instrument.max_qty:
        raise OrderValidationError(
            EXCEEDS_MAXIMUM_QUANTITY,
            f"quantity {quantity} > maximum {instrument.max_qty} for {instrument.symbol}",
        )

    notional = float(_dec(price) * _dec(quantity))
    if notional < instrument.min_notional:
        raise OrderValidationError(
            BELOW_MINIMUM_NOTIONAL,
            f"order value {notional:.8f} < minimum {instrument.min_notional} "
            f"for {instrument.symbol}",
        )
    if max_order_amount is not None:
        ceiling = max_order_amount * (1 + tolerance_pct / 100.0)
        if notional > ceiling:
            raise OrderValidationError(
                EXCEEDS_MAX_ORDER_AMOUNT,
                f"order value {notional:.8f} > {max_order_amount} "
                f"(+{tolerance_pct}% tolerance)",
            )
    return notional


def size_order(
    price: float,
    max_order_amount: float,
    instrument: InstrumentInfo,
    tolerance_pct: float = DEFAULT_TOLERANCE_PCT,
) -> SizedOrder:
    """Size a limit buy for *max_order_amount* of quote currency.

    Formula::

        price     = round_to_tick(price)
        quantity  = floor_to_step(max_order_amount / price)
        notional  = price × quantity

    Example: budget 100, price 100.50, lot step 0.01 → 0.99 units,
    notional 99.495.

    Raises:
        ValueError: If *max_order_amount* is non-positive.
        OrderValidationError: If the rounded order fails validation.
    """
    if max_order_amount <= 0:
        raise ValueError(f"max_order_amount must be positive, got {max_order_amount}")
    if price <= 0:
        raise OrderValidationError(INVALID_PRICE, f"price {price}")

    tick_price = round_to_tick(price, instrument.tick_size)
    if tick_price <= 0:
        raise OrderValidationError(
            INVALID_PRICE, f"price {price} rounds to {tick_price} at tick {instrument.tick_size}"
        )

    raw_qty = _dec(max_order_amount) / _dec(tick_price)
    quantity = floor_to_step(float(raw_qty), instrument.lot_step)

    notional = validate_order(
        tick_price,
        quantity,
        instrument,
        max_order_amount=max_order_amount,
        tolerance_pct=tolerance_pct,
    )
    return SizedOrder(price=tick_price, quantity=quantity, notional=notional)
