"""Order placement — limit entry orders with a paired take-profit.

Every signal is claimed (marked processed) before anything is sent to the
exchange, so a signal produces at most one execution attempt.  A Position
row is only created once the exchange has accepted the buy.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from supportbot.errors import ExchangeError, OrderRejectedError, OrderValidationError
from supportbot.events import (
    ORDER_FAILED,
    ORDER_PLACED,
    ORDER_REJECTED,
    SEVERITY_ERROR,
    SEVERITY_INFO,
    SEVERITY_WARNING,
    SIGNAL_REJECTED,
    SYSTEM_ERROR,
    TRADE_EXECUTED,
    EventSink,
)
from supportbot.exchange.instrument_cache import InstrumentCache
from supportbot.exchange.models import ExchangeGateway, OrderSpec, make_client_order_id
from supportbot.models.position import Position
from supportbot.models.trading_config import TradingConfiguration
from supportbot.risk.position_sizer import (
    floor_to_step,
    round_to_tick,
    size_order,
    validate_order,
)
from supportbot.strategy.models import Signal

logger = logging.getLogger("supportbot.orders")


def take_profit_price(entry_price: float, take_profit_percent: float, tick_size: float) -> float:
    """Tick-rounded take-profit price, always at least one tick above entry."""
    price = round_to_tick(entry_price * (1 + take_profit_percent / 100.0), tick_size)
    if price <= entry_price:
        price = round_to_tick(entry_price + tick_size, tick_size)
    return price


class OrderPlacer:
    """Turns signals into exchange orders and owns take-profit creation.

    Args:
        exchange: ``ExchangeGateway`` implementation.
        instruments: Engine-owned ``InstrumentCache``.
        positions: ``PositionRepo`` (or duck-type).
        signals: ``SignalRepo`` (or duck-type).
        sink: Activity event sink.
        account_id: Account the orders belong to.
    """

    def __init__(
        self,
        exchange: ExchangeGateway,
        instruments: InstrumentCache,
        positions,
        signals,
        sink: EventSink,
        account_id: str,
    ) -> None:
        self._exchange = exchange
        self._instruments = instruments
        self._positions = positions
        self._signals = signals
        self._sink = sink
        self._account_id = account_id

    # ── Entry orders ─────────────────────────────────────────────────────

    def _reject(self, signal: Signal, reason: str, event_type: str, message: str, data: dict) -> dict:
        self._signals.set_rejection_reason(signal.id, reason)
        self._sink.emit(
            event_type,
            message,
            {"signal_id": signal.id, "symbol": signal.symbol, "reason": reason, **data},
            severity=SEVERITY_WARNING if event_type == ORDER_FAILED else SEVERITY_INFO,
        )
        return {"action": "rejected", "symbol": signal.symbol, "reason": reason}

    async def execute(self, signal: Signal, config: TradingConfiguration) -> dict:
        """Execute one signal.

        Returns a dict describing the action taken:

        - ``{"action": "skipped", "reason": "already_processed"}``
        - ``{"action": "rejected", "reason": "..."}``
        - ``{"action": "order_placed", ...}``
        """
        if signal.id is None or signal.processed:
            return {"action": "skipped", "symbol": signal.symbol, "reason": "already_processed"}
        if not self._signals.mark_processed(signal.id):
            return {"action": "skipped", "symbol": signal.symbol, "reason": "already_processed"}

        try:
            instrument = await self._instruments.get(signal.symbol)
        except ExchangeError as exc:
            return self._reject(
                signal, "instrument_info_unavailable", ORDER_FAILED,
                f"No instrument info for {signal.symbol}: {exc}", {"error": str(exc)},
            )

        try:
            sized = size_order(
                signal.target_price,
                config.max_order_amount_usd,
                instrument,
                tolerance_pct=config.order_value_tolerance_percent,
            )
        except OrderValidationError as exc:
            return self._reject(
                signal, exc.reason, SIGNAL_REJECTED,
                f"Signal for {signal.symbol} rejected: {exc.reason}",
                {
                    "target_price": signal.target_price,
                    "max_order_amount_usd": config.max_order_amount_usd,
                    "min_notional": instrument.min_notional,
                    "min_qty": instrument.min_qty,
                    "lot_step": instrument.lot_step,
                    "detail": exc.detail,
                },
            )

        spec = OrderSpec(
            symbol=signal.symbol,
            side="buy",
            order_type="limit",
            quantity=sized.quantity,
            price=sized.price,
            client_order_id=make_client_order_id("e", signal.id),
        )
        try:
            ack = await self._exchange.place_order(spec)
        except OrderRejectedError as exc:
            return self._reject(
                signal, "exchange_rejected", ORDER_REJECTED,
                f"Exchange rejected buy for {signal.symbol}: {exc}",
                {"price": sized.price, "quantity": sized.quantity, "error": str(exc)},
            )
        except ExchangeError as exc:
            return self._reject(
                signal, "exchange_error", ORDER_FAILED,
                f"Buy order for {signal.symbol} failed: {exc}",
                {"price": sized.price, "quantity": sized.quantity, "error": str(exc)},
            )

        position = self._positions.insert_position(
            account_id=self._account_id,
            symbol=signal.symbol,
            side="buy",
            order_type="limit",
            price=sized.price,
            quantity=sized.quantity,
            exchange_order_id=ack.order_id,
            signal_id=signal.id,
        )
        logger.info(
            "%s: limit buy %s @ %s placed (order %s, position #%d)",
            signal.symbol, sized.quantity, sized.price, ack.order_id, position.id,
        )
        self._sink.emit(
            ORDER_PLACED,
            f"Limit buy placed for {signal.symbol}",
            {
                "signal_id": signal.id,
                "position_id": position.id,
                "symbol": signal.symbol,
                "price": sized.price,
                "quantity": sized.quantity,
                "order_value": sized.notional,
                "exchange_order_id": ack.order_id,
                "order_kind": "entry",
            },
        )
        self._sink.emit(
            TRADE_EXECUTED,
            f"Position #{position.id} opened for {signal.symbol}",
            {"position_id": position.id, "symbol": signal.symbol, "status": position.status},
        )

        result = {
            "action": "order_placed",
            "symbol": signal.symbol,
            "position_id": position.id,
            "order_id": ack.order_id,
            "price": sized.price,
            "quantity": sized.quantity,
            "take_profit_order_id": None,
        }

        if config.uses_resting_take_profit:
            try:
                position = await self.place_take_profit(position, config)
                result["take_profit_order_id"] = position.linked_take_profit_order_id
            except (ExchangeError, OrderValidationError) as exc:
                # Left to the reconciler once the buy fills.
                logger.warning(
                    "%s: take-profit for position #%d not placed yet: %s",
                    signal.symbol, position.id, exc,
                )
                self._sink.emit(
                    ORDER_FAILED,
                    f"Take-profit for {signal.symbol} deferred to reconciliation",
                    {"position_id": position.id, "symbol": signal.symbol, "error": str(exc)},
                    severity=SEVERITY_WARNING,
                )
        return result

    async def execute_pending(
        self,
        config: TradingConfiguration,
        now: Optional[datetime] = None,
    ) -> list[dict]:
        """Execute every unprocessed signal of the account, oldest first.

        Signals older than two loop intervals are expired instead of being
        traded on a stale price.  Failures are contained per signal.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        max_age = timedelta(seconds=2 * config.main_loop_interval_seconds)

        results: list[dict] = []
        for signal in self._signals.get_unprocessed(self._account_id):
            try:
                created = datetime.fromisoformat(signal.created_at) if signal.created_at else now
                if now - created > max_age:
                    if self._signals.mark_processed(signal.id, rejection_reason="expired"):
                        self._sink.emit(
                            SIGNAL_REJECTED,
                            f"Signal #{signal.id} for {signal.symbol} expired",
                            {"signal_id": signal.id, "symbol": signal.symbol, "reason": "expired"},
                        )
                    results.append({"action": "rejected", "symbol": signal.symbol, "reason": "expired"})
                    continue
                results.append(await self.execute(signal, config))
            except Exception as exc:
                logger.exception("Signal #%s (%s) execution error", signal.id, signal.symbol)
                self._sink.emit(
                    SYSTEM_ERROR,
                    f"Signal #{signal.id} execution error: {exc}",
                    {"signal_id": signal.id, "symbol": signal.symbol, "error": str(exc)},
                    severity=SEVERITY_ERROR,
                )
                results.append({"action": "error", "symbol": signal.symbol, "reason": str(exc)})
        return results

    # ── Take-profit orders ───────────────────────────────────────────────

    async def place_take_profit(self, position: Position, config: TradingConfiguration) -> Position:
        """Place a resting limit sell above entry and link it to *position*.

        Raises:
            ExchangeError: instrument info or order placement failed.
            OrderValidationError: the sell order fails minimum checks.
        """
        instrument = await self._instruments.get(position.symbol)
        tp_price = take_profit_price(
            position.price, config.take_profit_percent, instrument.tick_size,
        )
        quantity = floor_to_step(position.quantity, instrument.lot_step)
        validate_order(tp_price, quantity, instrument)

        ack = await self._exchange.place_order(
            OrderSpec(
                symbol=position.symbol,
                side="sell",
                order_type="limit",
                quantity=quantity,
                price=tp_price,
                client_order_id=make_client_order_id("tp", position.id),
            )
        )
        updated = self._positions.set_take_profit(position.id, ack.order_id, tp_price)
        logger.info(
            "%s: take-profit sell %s @ %s linked to position #%d (order %s)",
            position.symbol, quantity, tp_price, position.id, ack.order_id,
        )
        self._sink.emit(
            ORDER_PLACED,
            f"Take-profit placed for {position.symbol}",
            {
                "position_id": position.id,
                "symbol": position.symbol,
                "entry_price": position.price,
                "take_profit_price": tp_price,
                "take_profit_percent": config.take_profit_percent,
                "quantity": quantity,
                "exchange_order_id": ack.order_id,
                "order_kind": "take_profit",
            },
        )
        return updated
