"""Position monitor — closes filled positions that reached the take-profit."""

import logging

from supportbot.errors import ExchangeError, OrderValidationError, PositionStateError
from supportbot.events import SEVERITY_ERROR, SYSTEM_ERROR, EventSink
from supportbot.exchange.models import ExchangeGateway
from supportbot.execution.position_closer import PositionCloser
from supportbot.models.position import FILLED
from supportbot.models.trading_config import TradingConfiguration

logger = logging.getLogger("supportbot.monitor")


class PositionMonitor:
    """Watches filled buys whose exit is not delegated to a resting order.

    In ``monitor`` mode every filled buy is watched.  In ``resting_order``
    mode only filled buys without a linked take-profit are; the reconciler
    and audit sweep own the rest.
    """

    def __init__(
        self,
        exchange: ExchangeGateway,
        positions,
        closer: PositionCloser,
        sink: EventSink,
        account_id: str,
    ) -> None:
        self._exchange = exchange
        self._positions = positions
        self._closer = closer
        self._sink = sink
        self._account_id = account_id

    async def monitor(self, config: TradingConfiguration) -> dict:
        """One monitoring pass.

        Returns:
            ``{"checked": int, "closed": int, "skipped": int, "errors": int}``
        """
        summary = {"checked": 0, "closed": 0, "skipped": 0, "errors": 0}
        prices: dict[str, float] = {}

        for position in self._positions.get_by_status(self._account_id, FILLED):
            if config.uses_resting_take_profit and position.linked_take_profit_order_id:
                continue
            summary["checked"] += 1
            try:
                if position.symbol not in prices:
                    ticker = await self._exchange.get_market_price(position.symbol)
                    prices[position.symbol] = ticker.price
                price = prices[position.symbol]
                profit_pct = position.profit_percent(price)
                if profit_pct < config.take_profit_percent:
                    logger.debug(
                        "%s: position #%d at %.3f%% (< %.3f%%), holding",
                        position.symbol, position.id, profit_pct, config.take_profit_percent,
                    )
                    continue
                await self._closer.close(position, price, "take_profit")
                summary["closed"] += 1
            except OrderValidationError as exc:
                summary["skipped"] += 1
                logger.warning(
                    "%s: close of position #%d skipped this cycle: %s",
                    position.symbol, position.id, exc,
                )
            except (ExchangeError, PositionStateError) as exc:
                summary["errors"] += 1
                logger.warning(
                    "%s: monitoring position #%d failed: %s", position.symbol, position.id, exc,
                )
            except Exception as exc:
                summary["errors"] += 1
                logger.exception("Monitor error for position #%d", position.id)
                self._sink.emit(
                    SYSTEM_ERROR,
                    f"Monitor error for position #{position.id}: {exc}",
                    {"position_id": position.id, "symbol": position.symbol, "error": str(exc)},
                    severity=SEVERITY_ERROR,
                )
        return summary
