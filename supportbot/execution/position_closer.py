"""Market close of a filled position, shared by monitor, EOD and manual close."""

import logging

from supportbot.errors import ExchangeError, PositionStateError
from supportbot.events import (
    ORDER_FAILED,
    POSITION_CLOSED,
    SEVERITY_WARNING,
    EventSink,
)
from supportbot.exchange.instrument_cache import InstrumentCache
from supportbot.exchange.models import (
    ORDER_FILLED,
    ExchangeGateway,
    OrderSpec,
    make_client_order_id,
)
from supportbot.models.position import FILLED, Position
from supportbot.risk.position_sizer import floor_to_step, validate_order

logger = logging.getLogger("supportbot.closer")


class PositionCloser:
    """Close filled buy positions with a market sell.

    Sequence: validate the close order, cancel any linked resting take-profit,
    place the market sell, then persist ``closed`` with realised P/L.

    Args:
        exchange: ``ExchangeGateway`` implementation.
        instruments: Engine-owned ``InstrumentCache``.
        positions: ``PositionRepo`` (or duck-type).
        sink: Activity event sink.
    """

    def __init__(
        self,
        exchange: ExchangeGateway,
        instruments: InstrumentCache,
        positions,
        sink: EventSink,
    ) -> None:
        self._exchange = exchange
        self._instruments = instruments
        self._positions = positions
        self._sink = sink

    async def close(self, position: Position, market_price: float, reason: str) -> Position:
        """Close *position* at market.

        Args:
            position: A ``filled`` buy position.
            market_price: Price the close decision was evaluated at; recorded
                as the exit price.
            reason: Stored as ``close_reason`` (e.g. ``"take_profit"``,
                ``"end_of_day"``, ``"manual"``).

        Returns:
            The closed position.

        Raises:
            PositionStateError: *position* is not filled.
            OrderValidationError: the sell fails the instrument minimums.
            ExchangeError: the take-profit cancel or the market sell failed.
        """
        if position.status != FILLED:
            raise PositionStateError(
                f"Position {position.id} is {position.status}, only filled positions can be closed"
            )

        instrument = await self._instruments.get(position.symbol)
        quantity = floor_to_step(position.quantity, instrument.lot_step)
        validate_order(market_price, quantity, instrument)

        if position.linked_take_profit_order_id:
            await self._cancel_take_profit(position)

        try:
            ack = await self._exchange.place_order(
                OrderSpec(
                    symbol=position.symbol,
                    side="sell",
                    order_type="market",
                    quantity=quantity,
                    time_in_force="IOC",
                    client_order_id=make_client_order_id("cl", position.id),
                )
            )
        except ExchangeError as exc:
            self._sink.emit(
                ORDER_FAILED,
                f"Market sell for position #{position.id} failed: {exc}",
                {"position_id": position.id, "symbol": position.symbol, "reason": reason, "error": str(exc)},
                severity=SEVERITY_WARNING,
            )
            raise

        profit_loss = (market_price - position.price) * quantity
        closed = self._positions.mark_closed(position.id, market_price, profit_loss, reason)
        logger.info(
            "%s: position #%d closed (%s) exit=%s pnl=%.8f order=%s",
            position.symbol, position.id, reason, market_price, profit_loss, ack.order_id,
        )
        self._sink.emit(
            POSITION_CLOSED,
            f"Position #{position.id} {position.symbol} closed ({reason})",
            {
                "position_id": position.id,
                "symbol": position.symbol,
                "entry_price": position.price,
                "exit_price": market_price,
                "quantity": quantity,
                "profit_loss": profit_loss,
                "profit_percent": position.profit_percent(market_price),
                "close_reason": reason,
                "exchange_order_id": ack.order_id,
            },
        )
        return closed

    async def _cancel_take_profit(self, position: Position) -> None:
        order_id = position.linked_take_profit_order_id
        status = await self._exchange.get_order_status(position.symbol, order_id)
        if status.status == ORDER_FILLED:
            # The resting sell already consumed the holding.
            raise PositionStateError(
                f"Take-profit {order_id} of position {position.id} already filled"
            )
        try:
            await self._exchange.cancel_order(position.symbol, order_id)
        except ExchangeError as exc:
            self._sink.emit(
                ORDER_FAILED,
                f"Could not cancel take-profit {order_id} of position #{position.id}; close skipped",
                {"position_id": position.id, "symbol": position.symbol, "order_id": order_id, "error": str(exc)},
                severity=SEVERITY_WARNING,
            )
            raise
        self._positions.set_take_profit(position.id, None, None)
        logger.info("%s: cancelled take-profit %s of position #%d", position.symbol, order_id, position.id)
