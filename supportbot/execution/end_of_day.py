"""End-of-day closure of open positions under a profit threshold.

Thresholds, with ``p = eod_close_premium_percent``::

    minimum_profit   close when profit % ≥ +p
    loss_tolerant    close when profit % ≥ −p
    close_any_profit close when absolute profit > 0
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from supportbot.errors import (
    ExchangeError,
    OrderRejectedError,
    OrderValidationError,
    PositionStateError,
)
from supportbot.events import ENGINE_STATUS, SEVERITY_ERROR, SYSTEM_ERROR, EventSink
from supportbot.exchange.models import ExchangeGateway
from supportbot.execution.position_closer import PositionCloser
from supportbot.models.position import FILLED, Position
from supportbot.models.trading_config import TradingConfiguration

logger = logging.getLogger("supportbot.eod")


def eod_threshold(config: TradingConfiguration) -> float:
    """Minimum profit percent at which a position is closed at end of day."""
    if config.eod_close_mode == "loss_tolerant":
        return -config.eod_close_premium_percent
    return config.eod_close_premium_percent


def should_close(
    position: Position,
    market_price: float,
    config: TradingConfiguration,
    close_any_profit: bool = False,
) -> bool:
    if close_any_profit:
        return position.profit_amount(market_price) > 0
    return position.profit_percent(market_price) >= eod_threshold(config)


class EndOfDayManager:
    """Evaluates filled buys at the daily boundary and closes qualifiers.

    The automatic path runs at most once per UTC day, on the first call at
    or after ``eod_close_time_utc``.  A run in which any position hit a
    transient exchange failure does not count, so the next cycle tries again.  A forced simulation ignores both the
    time gate and ``auto_close_at_end_of_day``.
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
        self._last_run: Optional[date] = None

    @property
    def last_run(self) -> Optional[date]:
        return self._last_run

    def is_due(self, config: TradingConfiguration, now: datetime) -> bool:
        if not config.auto_close_at_end_of_day:
            return False
        now = now.astimezone(timezone.utc)
        if self._last_run == now.date():
            return False
        return now.time() >= config.eod_close_time

    async def manage(
        self,
        config: TradingConfiguration,
        now: Optional[datetime] = None,
        force_simulation: bool = False,
        close_any_profit: bool = False,
    ) -> dict:
        """Run the end-of-day evaluation if due (or forced).

        Returns:
            ``{"action": "not_due"}`` or ``{"action": "evaluated",
            "closed": [...], "kept": [...], "errors": int}``
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if not force_simulation and not self.is_due(config, now):
            return {"action": "not_due"}

        threshold = eod_threshold(config)
        closed: list[dict] = []
        kept: list[dict] = []
        errors = 0
        transient = 0
        prices: dict[str, float] = {}

        for position in self._positions.get_by_status(self._account_id, FILLED):
            try:
                if position.symbol not in prices:
                    ticker = await self._exchange.get_market_price(position.symbol)
                    prices[position.symbol] = ticker.price
                price = prices[position.symbol]
                profit_pct = position.profit_percent(price)
                entry = {
                    "position_id": position.id,
                    "symbol": position.symbol,
                    "profit_percent": round(profit_pct, 4),
                    "threshold_percent": threshold,
                }
                if not should_close(position, price, config, close_any_profit):
                    logger.info(
                        "EOD: keeping %s position #%d at %.3f%% (threshold %.3f%%)",
                        position.symbol, position.id, profit_pct, threshold,
                    )
                    kept.append(entry)
                    continue
                result = await self._closer.close(position, price, "end_of_day")
                closed.append({**entry, "profit_loss": result.profit_loss})
            except (OrderRejectedError, OrderValidationError, PositionStateError) as exc:
                errors += 1
                logger.warning("EOD: position #%d not closed: %s", position.id, exc)
            except ExchangeError as exc:
                errors += 1
                transient += 1
                logger.warning("EOD: position #%d not closed: %s", position.id, exc)
            except Exception as exc:
                errors += 1
                logger.exception("EOD error for position #%d", position.id)
                self._sink.emit(
                    SYSTEM_ERROR,
                    f"End-of-day error for position #{position.id}: {exc}",
                    {"position_id": position.id, "symbol": position.symbol, "error": str(exc)},
                    severity=SEVERITY_ERROR,
                )

        if not force_simulation:
            if transient:
                logger.warning(
                    "EOD: %d position(s) hit exchange errors, evaluation will be retried", transient,
                )
            else:
                self._last_run = now.astimezone(timezone.utc).date()

        self._sink.emit(
            ENGINE_STATUS,
            f"End-of-day evaluation: {len(closed)} closed, {len(kept)} kept",
            {
                "simulation": force_simulation,
                "close_any_profit": close_any_profit,
                "eod_close_mode": config.eod_close_mode,
                "threshold_percent": threshold,
                "closed": closed,
                "kept": kept,
                "errors": errors,
            },
        )
        return {"action": "evaluated", "closed": closed, "kept": kept, "errors": errors}
