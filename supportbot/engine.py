"""SupportBot — Trading engine (cycle scheduler).

Runs one account's trading cycle on a fixed interval::

    load config → reconcile fills → audit take-profits → ingest prices
    → detect support → generate signals → place orders → monitor → EOD

Every step and every symbol is error-contained; a configuration error
aborts only the current cycle.  Cycles and admin actions hold the same
per-engine lock, so one account never has two executions in flight.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from supportbot.errors import ConfigError, ExchangeError, PositionStateError
from supportbot.events import (
    CYCLE_SKIPPED,
    ENGINE_STATUS,
    SEVERITY_ERROR,
    SEVERITY_WARNING,
    SYSTEM_ERROR,
    ActivityLogSink,
)
from supportbot.exchange.instrument_cache import InstrumentCache
from supportbot.exchange.models import ExchangeGateway
from supportbot.execution.end_of_day import EndOfDayManager
from supportbot.execution.order_placer import OrderPlacer
from supportbot.execution.position_closer import PositionCloser
from supportbot.execution.position_monitor import PositionMonitor
from supportbot.execution.reconciler import FillReconciler
from supportbot.market_data import MarketDataIngestor
from supportbot.models.position import FILLED, Position
from supportbot.models.trading_config import TradingConfiguration
from supportbot.strategy.signals import SignalGenerator
from supportbot.strategy.support import detect_support

logger = logging.getLogger("supportbot.engine")

MIN_INTERVAL_SECONDS = 1
MAX_INTERVAL_SECONDS = 3600
DEFAULT_INTERVAL_SECONDS = 300


def clamp_interval(seconds: int) -> int:
    """Keep the loop interval within 1 s .. 1 h."""
    return max(MIN_INTERVAL_SECONDS, min(MAX_INTERVAL_SECONDS, int(seconds)))


class TradingEngine:
    """Orchestrates the trading cycle for a single account.

    Args:
        account_id: Account this engine trades for.
        exchange: An ``ExchangeGateway`` (``BybitClient`` or a test double).
        config_provider: Object with ``load_config(account_id)``.
        positions: ``PositionRepo``.
        signals: ``SignalRepo``.
        market_data: ``MarketDataRepo``.
        activity: ``ActivityRepo`` backing the event sink.
        instrument_ttl: Lifetime of cached instrument info, in seconds.
    """

    def __init__(
        self,
        account_id: str,
        exchange: ExchangeGateway,
        config_provider,
        positions,
        signals,
        market_data,
        activity,
        instrument_ttl: float = 300.0,
    ) -> None:
        self._account_id = account_id
        self._exchange = exchange
        self._config_provider = config_provider
        self._positions = positions
        self._sink = ActivityLogSink(activity, account_id)
        self._instruments = InstrumentCache(exchange, ttl_seconds=instrument_ttl)

        self._ingestor = MarketDataIngestor(exchange, market_data, account_id)
        self._generator = SignalGenerator(positions, signals, self._sink, account_id)
        self._placer = OrderPlacer(
            exchange, self._instruments, positions, signals, self._sink, account_id,
        )
        self._closer = PositionCloser(exchange, self._instruments, positions, self._sink)
        self._reconciler = FillReconciler(
            exchange, positions, self._placer, self._sink, account_id,
        )
        self._monitor = PositionMonitor(
            exchange, positions, self._closer, self._sink, account_id,
        )
        self._eod = EndOfDayManager(
            exchange, positions, self._closer, self._sink, account_id,
        )

        self._running: bool = False
        self._cycle_count: int = 0
        self._last_cycle_at: Optional[str] = None
        self._last_result: Optional[dict] = None
        self._interval: int = DEFAULT_INTERVAL_SECONDS
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        # Serialises cycles and admin actions on this account.
        self._lock = asyncio.Lock()

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def instruments(self) -> InstrumentCache:
        return self._instruments

    def status(self) -> dict:
        """Snapshot of the engine state for the status API."""
        last_eod = self._eod.last_run
        return {
            "account_id": self._account_id,
            "running": self._running,
            "cycle_count": self._cycle_count,
            "last_cycle_at": self._last_cycle_at,
            "last_action": (self._last_result or {}).get("action"),
            "interval_seconds": self._interval,
            "last_end_of_day": last_eod.isoformat() if last_eod else None,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def start(self) -> bool:
        """Start the cycle loop as a background task.

        Returns ``False`` (and does nothing) when the engine is already
        running, the configuration cannot be loaded, or the account is
        inactive.
        """
        if self._running:
            logger.info("Engine '%s' already running.", self._account_id)
            return False

        try:
            config = self._config_provider.load_config(self._account_id)
        except ConfigError as exc:
            logger.error("Engine '%s' not started: %s", self._account_id, exc)
            self._sink.emit(
                SYSTEM_ERROR, f"Engine not started: {exc}", {"error": str(exc)},
                severity=SEVERITY_ERROR,
            )
            return False
        if not config.is_active:
            logger.warning("Engine '%s' not started: configuration inactive.", self._account_id)
            self._sink.emit(
                ENGINE_STATUS, "Engine not started: configuration inactive",
                {"running": False}, severity=SEVERITY_WARNING,
            )
            return False

        self._interval = clamp_interval(config.main_loop_interval_seconds)
        self._stop_event = asyncio.Event()
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"engine-{self._account_id}")
        self._sink.emit(
            ENGINE_STATUS, "Engine started",
            {"running": True, **config.summary()},
        )
        return True

    def stop(self) -> None:
        """Ask the loop to stop; an in-flight cycle completes first."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def join(self) -> None:
        """Wait until the loop task has finished."""
        if self._task is not None:
            await self._task

    async def _run_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    result = await self.run_cycle()
                    logger.info("Engine '%s' cycle %d: %s",
                                self._account_id, self._cycle_count, result.get("action"))
                except Exception as exc:
                    logger.exception("Engine '%s' cycle %d crashed", self._account_id, self._cycle_count)
                    self._last_result = {"action": "error", "reason": str(exc)}

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Engine '%s' stopped after %d cycles.", self._account_id, self._cycle_count)
            self._sink.emit(ENGINE_STATUS, "Engine stopped", {"running": False})

    # ── Single cycle ─────────────────────────────────────────────────────

    def _load_config(self) -> TradingConfiguration:
        config = self._config_provider.load_config(self._account_id)
        self._interval = clamp_interval(config.main_loop_interval_seconds)
        return config

    async def run_cycle(self, utc_now: Optional[datetime] = None) -> dict:
        """Execute one trading cycle.

        Returns a dict describing the action taken:

        - ``{"action": "error", "reason": "config_error", ...}``
        - ``{"action": "skipped", "reason": "inactive"}``
        - ``{"action": "completed", "reconcile": ..., "symbols": ..., ...}``

        Args:
            utc_now: Current UTC datetime.  Defaults to ``datetime.now(UTC)``.
        """
        async with self._lock:
            return await self._cycle(utc_now)

    async def _cycle(self, utc_now: Optional[datetime]) -> dict:
        if utc_now is None:
            utc_now = datetime.now(timezone.utc)
        self._cycle_count += 1
        self._last_cycle_at = utc_now.isoformat()

        try:
            config = self._load_config()
        except ConfigError as exc:
            logger.error("Engine '%s': configuration error, cycle aborted: %s", self._account_id, exc)
            self._sink.emit(
                SYSTEM_ERROR, f"Configuration error, cycle aborted: {exc}",
                {"error": str(exc), "cycle": self._cycle_count}, severity=SEVERITY_ERROR,
            )
            result = {"action": "error", "reason": "config_error", "detail": str(exc)}
            self._last_result = result
            return result

        if not config.is_active:
            self._sink.emit(
                CYCLE_SKIPPED, "Cycle skipped: configuration inactive",
                {"cycle": self._cycle_count},
            )
            result = {"action": "skipped", "reason": "inactive"}
            self._last_result = result
            return result

        result = {"action": "completed", "cycle": self._cycle_count}
        result["reconcile"] = await self._step("reconcile", self._reconciler.reconcile(config))
        result["audit"] = await self._step("audit_sweep", self._reconciler.audit_sweep(config))
        result["symbols"] = await self._scan_symbols(config)
        result["orders"] = await self._step(
            "execute_signals", self._placer.execute_pending(config, utc_now),
        )
        result["monitor"] = await self._step("monitor", self._monitor.monitor(config))
        result["end_of_day"] = await self._step("end_of_day", self._eod.manage(config, utc_now))
        self._last_result = result
        return result

    async def _step(self, name: str, coro):
        try:
            return await coro
        except Exception as exc:
            logger.exception("Engine '%s': step %s failed", self._account_id, name)
            self._sink.emit(
                SYSTEM_ERROR, f"Cycle step {name} failed: {exc}",
                {"step": name, "error": str(exc)}, severity=SEVERITY_ERROR,
            )
            return {"error": str(exc)}

    async def _scan_symbols(self, config: TradingConfiguration) -> dict:
        outcomes: dict[str, dict] = {}
        for symbol in config.symbols:
            try:
                outcomes[symbol] = await self._scan_symbol(symbol, config)
            except ExchangeError as exc:
                logger.warning("%s: skipped this cycle: %s", symbol, exc)
                outcomes[symbol] = {"action": "skipped", "reason": "exchange_error"}
            except Exception as exc:
                logger.exception("%s: analysis failed", symbol)
                self._sink.emit(
                    SYSTEM_ERROR, f"Analysis of {symbol} failed: {exc}",
                    {"symbol": symbol, "error": str(exc)}, severity=SEVERITY_ERROR,
                )
                outcomes[symbol] = {"action": "error", "reason": str(exc)}
        return outcomes

    async def _scan_symbol(self, symbol: str, config: TradingConfiguration) -> dict:
        ticker, prices = await self._ingestor.ingest(symbol, config)
        support = detect_support(prices, window=config.support_candle_count)
        if support is None:
            logger.info("%s: no support level in %d samples", symbol, len(prices))
            return {"action": "no_support", "price": ticker.price}

        signal = self._generator.generate(symbol, support, ticker.price, config)
        if signal is None:
            return {"action": "no_signal", "price": ticker.price, "support": support.price}
        return {
            "action": "signal",
            "price": ticker.price,
            "support": support.price,
            "signal_id": signal.id,
        }

    # ── Admin actions ────────────────────────────────────────────────────

    async def manual_close_position(self, position_id: int) -> Position:
        """Close a filled position at market regardless of profit.

        Raises:
            PositionStateError: unknown position, other account, or not filled.
        """
        async with self._lock:
            position = self._positions.get_position(position_id)
            if position is None or position.account_id != self._account_id:
                raise PositionStateError(f"Position {position_id} not found")
            if position.status != FILLED:
                raise PositionStateError(
                    f"Position {position_id} is {position.status}, only filled positions can be closed"
                )
            ticker = await self._exchange.get_market_price(position.symbol)
            return await self._closer.close(position, ticker.price, "manual")

    async def simulate_end_of_day(self, close_any_profit: bool = False) -> dict:
        """Run the end-of-day evaluation now, ignoring time and enable gates."""
        async with self._lock:
            config = self._config_provider.load_config(self._account_id)
            return await self._eod.manage(
                config, force_simulation=True, close_any_profit=close_any_profit,
            )

    async def reconcile_now(self) -> dict:
        """Run fill reconciliation and the take-profit audit immediately."""
        async with self._lock:
            config = self._config_provider.load_config(self._account_id)
            return {
                "reconcile": await self._reconciler.reconcile(config),
                "audit": await self._reconciler.audit_sweep(config),
            }
