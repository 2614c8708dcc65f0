"""Fill reconciliation and the take-profit audit sweep.

``reconcile`` moves pending positions to filled / cancelled from exchange
order state.  ``audit_sweep`` walks every filled buy and repairs positions
that lost their resting take-profit, or closes them when it already filled.
"""

import logging
from decimal import Decimal

from supportbot.errors import ExchangeError, OrderValidationError, PositionStateError
from supportbot.events import (
    POSITION_CLOSED,
    SEVERITY_CRITICAL,
    SEVERITY_ERROR,
    SYSTEM_ERROR,
    TRADE_FILLED,
    EventSink,
)
from supportbot.exchange.models import (
    ORDER_CANCELLED,
    ORDER_FILLED,
    ORDER_NOT_FOUND,
    TERMINAL_FAILED_STATES,
    ExchangeGateway,
    OrderStatus,
)
from supportbot.execution.order_placer import OrderPlacer
from supportbot.models.position import FILLED, PENDING, Position
from supportbot.models.trading_config import TradingConfiguration

logger = logging.getLogger("supportbot.reconciler")


class FillReconciler:
    """Keeps stored positions in step with exchange order state.

    Args:
        exchange: ``ExchangeGateway`` implementation.
        positions: ``PositionRepo`` (or duck-type).
        placer: ``OrderPlacer`` providing ``place_take_profit``.
        sink: Activity event sink.
        account_id: Account whose positions are reconciled.
    """

    def __init__(
        self,
        exchange: ExchangeGateway,
        positions,
        placer: OrderPlacer,
        sink: EventSink,
        account_id: str,
    ) -> None:
        self._exchange = exchange
        self._positions = positions
        self._placer = placer
        self._sink = sink
        self._account_id = account_id

    # ── Pending → filled / cancelled ─────────────────────────────────────

    async def reconcile(self, config: TradingConfiguration) -> dict:
        """Reconcile every pending buy of the account.

        Returns:
            ``{"filled": int, "cancelled": int, "unchanged": int, "errors": int}``
        """
        summary = {"filled": 0, "cancelled": 0, "unchanged": 0, "errors": 0}
        for position in self._positions.get_by_status(self._account_id, PENDING):
            try:
                outcome = await self._reconcile_one(position, config)
            except Exception as exc:
                summary["errors"] += 1
                logger.exception("Reconcile failed for position #%d (%s)", position.id, position.symbol)
                self._sink.emit(
                    SYSTEM_ERROR,
                    f"Reconcile failed for position #{position.id}: {exc}",
                    {"position_id": position.id, "symbol": position.symbol, "error": str(exc)},
                    severity=SEVERITY_ERROR,
                )
                continue
            summary[outcome] += 1
        return summary

    async def _reconcile_one(self, position: Position, config: TradingConfiguration) -> str:
        status = await self._exchange.get_order_status(position.symbol, position.exchange_order_id)

        partial_cancel = status.status == ORDER_CANCELLED and status.executed_qty > 0
        if status.status == ORDER_FILLED or partial_cancel:
            price = status.avg_price or position.price
            quantity = status.executed_qty or position.quantity
            filled = self._positions.mark_filled(position.id, price, quantity)
            logger.info(
                "%s: position #%d filled %s @ %s%s",
                position.symbol, position.id, quantity, price,
                " (partial, remainder cancelled)" if partial_cancel else "",
            )
            self._sink.emit(
                TRADE_FILLED,
                f"Buy for {position.symbol} filled",
                {
                    "position_id": position.id,
                    "symbol": position.symbol,
                    "price": price,
                    "quantity": quantity,
                    "partial": partial_cancel,
                    "exchange_order_id": position.exchange_order_id,
                },
            )
            if config.uses_resting_take_profit:
                await self._ensure_take_profit(filled, config)
            return "filled"

        if status.status in TERMINAL_FAILED_STATES:
            self._positions.mark_cancelled(position.id)
            logger.info(
                "%s: position #%d order %s %s",
                position.symbol, position.id, position.exchange_order_id, status.status,
            )
            return "cancelled"

        return "unchanged"

    # ── Take-profit guarantee ────────────────────────────────────────────

    async def audit_sweep(self, config: TradingConfiguration) -> dict:
        """Verify every filled buy has a live take-profit, repairing as needed.

        Only meaningful for ``resting_order`` mode; returns an empty summary
        otherwise.

        Returns:
            ``{"ok": int, "created": int, "recreated": int, "closed": int,
            "skipped": int, "failed": int}``  ``skipped`` counts positions whose
            take-profit state could not be read this sweep.
        """
        summary = {"ok": 0, "created": 0, "recreated": 0, "closed": 0, "skipped": 0, "failed": 0}
        if not config.uses_resting_take_profit:
            return summary

        for position in self._positions.get_by_status(self._account_id, FILLED):
            try:
                outcome = await self._audit_one(position, config)
            except (ExchangeError, OrderValidationError, PositionStateError) as exc:
                summary["failed"] += 1
                self._report_unprotected(position, exc)
                continue
            except Exception as exc:
                summary["failed"] += 1
                logger.exception("Unexpected audit error for position #%d", position.id)
                self._report_unprotected(position, exc)
                continue
            summary[outcome] += 1
        return summary

    async def _ensure_take_profit(self, position: Position, config: TradingConfiguration) -> None:
        if position.linked_take_profit_order_id:
            return
        try:
            await self._placer.place_take_profit(position, config)
        except (ExchangeError, OrderValidationError) as exc:
            # The audit sweep in the same cycle retries and escalates.
            logger.warning(
                "%s: take-profit for filled position #%d not placed: %s",
                position.symbol, position.id, exc,
            )

    async def _audit_one(self, position: Position, config: TradingConfiguration) -> str:
        order_id = position.linked_take_profit_order_id
        if not order_id:
            await self._placer.place_take_profit(position, config)
            return "created"

        try:
            status = await self._exchange.get_order_status(position.symbol, order_id)
        except ExchangeError as exc:
            # State unknown, re-checked on the next sweep.
            logger.warning(
                "%s: could not query take-profit %s of position #%d: %s",
                position.symbol, order_id, position.id, exc,
            )
            return "skipped"

        if status.status == ORDER_FILLED:
            self._close_on_take_profit(position, status.avg_price)
            return "closed"

        if status.status == ORDER_CANCELLED and status.executed_qty > 0:
            return await self._recover_partial_take_profit(position, status, config)

        if status.status in TERMINAL_FAILED_STATES or status.status == ORDER_NOT_FOUND:
            logger.warning(
                "%s: take-profit %s of position #%d is %s, recreating",
                position.symbol, order_id, position.id, status.status,
            )
            cleared = self._positions.set_take_profit(position.id, None, None)
            await self._placer.place_take_profit(cleared, config)
            return "recreated"

        return "ok"

    async def _recover_partial_take_profit(
        self,
        position: Position,
        status: OrderStatus,
        config: TradingConfiguration,
    ) -> str:
        """Book the sold part of a cancelled take-profit and protect the rest."""
        sold = status.executed_qty
        remaining = float(Decimal(str(position.quantity)) - Decimal(str(sold)))
        if remaining <= 0:
            self._close_on_take_profit(position, status.avg_price)
            return "closed"

        exit_price = status.avg_price or position.take_profit_price
        profit_loss = (exit_price - position.price) * sold
        updated = self._positions.record_partial_exit(position.id, remaining, profit_loss)
        logger.warning(
            "%s: take-profit %s of position #%d cancelled after selling %s @ %s, "
            "recreating for remaining %s",
            position.symbol, position.linked_take_profit_order_id, position.id,
            sold, exit_price, remaining,
        )
        self._sink.emit(
            TRADE_FILLED,
            f"Take-profit for {position.symbol} partially filled",
            {
                "position_id": position.id,
                "symbol": position.symbol,
                "order_kind": "take_profit",
                "partial": True,
                "price": exit_price,
                "quantity": sold,
                "remaining_quantity": remaining,
                "profit_loss": profit_loss,
                "exchange_order_id": position.linked_take_profit_order_id,
            },
        )
        await self._placer.place_take_profit(updated, config)
        return "recreated"

    def _close_on_take_profit(self, position: Position, fill_price: float) -> None:
        exit_price = position.take_profit_price or fill_price
        profit_loss = (exit_price - position.price) * position.quantity
        self._positions.mark_closed(position.id, exit_price, profit_loss, "take_profit")
        logger.info(
            "%s: position #%d closed by take-profit @ %s pnl=%.8f",
            position.symbol, position.id, exit_price, profit_loss,
        )
        self._sink.emit(
            POSITION_CLOSED,
            f"Position #{position.id} {position.symbol} closed (take_profit)",
            {
                "position_id": position.id,
                "symbol": position.symbol,
                "entry_price": position.price,
                "exit_price": exit_price,
                "quantity": position.quantity,
                "profit_loss": profit_loss,
                "close_reason": "take_profit",
                "exchange_order_id": position.linked_take_profit_order_id,
            },
        )

    def _report_unprotected(self, position: Position, exc: Exception) -> None:
        logger.critical(
            "%s: position #%d has no working take-profit and recovery failed: %s",
            position.symbol, position.id, exc,
        )
        self._sink.emit(
            SYSTEM_ERROR,
            f"Position #{position.id} {position.symbol} unprotected: take-profit recovery failed",
            {
                "position_id": position.id,
                "symbol": position.symbol,
                "entry_price": position.price,
                "quantity": position.quantity,
                "linked_take_profit_order_id": position.linked_take_profit_order_id,
                "error": str(exc),
                "manual_action_required": True,
            },
            severity=SEVERITY_CRITICAL,
        )
