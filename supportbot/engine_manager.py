"""EngineRegistry — one ``TradingEngine`` per account.

Engines are created lazily, started and stopped individually, and reused
for admin actions.  When an account has no registered engine, admin actions run
on an idle engine kept per account, so concurrent actions on one account
still share a single engine lock.  Starting the account adopts that engine.
"""

import logging
from typing import Callable, Optional

from supportbot.config import Config
from supportbot.engine import TradingEngine
from supportbot.exchange.models import ExchangeGateway
from supportbot.models.position import Position
from supportbot.repos.activity_repo import ActivityRepo
from supportbot.repos.market_data_repo import MarketDataRepo
from supportbot.repos.position_repo import PositionRepo
from supportbot.repos.signal_repo import SignalRepo

logger = logging.getLogger("supportbot.engine_manager")


class EngineRegistry:
    """Lifecycle manager for per-account trading engines.

    Args:
        config: Process ``Config`` loaded from ``.env``.
        exchange: Shared ``ExchangeGateway``.
        config_provider: Source of per-account ``TradingConfiguration``.
        engine_factory: Optional ``account_id -> TradingEngine`` override
            (tests); defaults to :meth:`build_engine`.
    """

    def __init__(
        self,
        config: Config,
        exchange: ExchangeGateway,
        config_provider,
        engine_factory: Optional[Callable[[str], TradingEngine]] = None,
    ) -> None:
        self._config = config
        self._exchange = exchange
        self._config_provider = config_provider
        self._factory = engine_factory or self.build_engine
        self._engines: dict[str, TradingEngine] = {}
        self._idle: dict[str, TradingEngine] = {}

    # ── Construction ─────────────────────────────────────────────────────

    def build_engine(self, account_id: str) -> TradingEngine:
        """Wire a ``TradingEngine`` for *account_id* against the shared DB."""
        db_path = self._config.db_path
        return TradingEngine(
            account_id=account_id,
            exchange=self._exchange,
            config_provider=self._config_provider,
            positions=PositionRepo(db_path),
            signals=SignalRepo(db_path),
            market_data=MarketDataRepo(db_path),
            activity=ActivityRepo(db_path),
        )

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def engines(self) -> dict[str, TradingEngine]:
        """Map of account id → ``TradingEngine``."""
        return dict(self._engines)

    def get(self, account_id: str) -> Optional[TradingEngine]:
        return self._engines.get(account_id)

    def create(self, account_id: str) -> TradingEngine:
        """Return the engine for *account_id*, building it on first use."""
        engine = self._engines.get(account_id)
        if engine is None:
            engine = self._idle.pop(account_id, None) or self._factory(account_id)
            self._engines[account_id] = engine
            logger.info("Registered engine for account '%s'.", account_id)
        return engine

    async def start(self, account_id: str) -> bool:
        """Start (creating if needed) the engine of *account_id*."""
        started = await self.create(account_id).start()
        if started:
            logger.info("Engine for account '%s' started.", account_id)
        return started

    async def start_all(self, account_ids: list[str]) -> dict[str, bool]:
        return {account_id: await self.start(account_id) for account_id in account_ids}

    def stop(self, account_id: str) -> bool:
        """Signal the engine of *account_id* to stop.  ``False`` if unknown."""
        engine = self._engines.get(account_id)
        if engine is None:
            return False
        engine.stop()
        logger.info("Stop signal sent to account '%s'.", account_id)
        return True

    async def stop_all(self) -> None:
        """Stop every engine and wait for the loops to exit."""
        for account_id, engine in self._engines.items():
            engine.stop()
            logger.info("Stop signal sent to account '%s'.", account_id)
        for engine in self._engines.values():
            await engine.join()

    async def remove(self, account_id: str) -> bool:
        """Stop and forget the engine of *account_id*."""
        engine = self._engines.pop(account_id, None)
        if engine is None:
            return False
        engine.stop()
        await engine.join()
        logger.info("Removed engine for account '%s'.", account_id)
        return True

    def get_status(self, account_id: Optional[str] = None) -> dict:
        """Return aggregated or per-account engine status."""
        if account_id is not None:
            engine = self._engines.get(account_id)
            if engine is None:
                return {"error": f"Unknown account: {account_id}"}
            return engine.status()
        return {"accounts": {a: e.status() for a, e in self._engines.items()}}

    # ── Admin actions ────────────────────────────────────────────────────

    def _engine_for_admin(self, account_id: str) -> TradingEngine:
        engine = self._engines.get(account_id)
        if engine is not None:
            return engine
        engine = self._idle.get(account_id)
        if engine is None:
            logger.info("No engine for account '%s'; using an idle one.", account_id)
            engine = self._factory(account_id)
            self._idle[account_id] = engine
        return engine

    async def manual_close(self, account_id: str, position_id: int) -> Position:
        return await self._engine_for_admin(account_id).manual_close_position(position_id)

    async def simulate_end_of_day(self, account_id: str, close_any_profit: bool = False) -> dict:
        return await self._engine_for_admin(account_id).simulate_end_of_day(close_any_profit)

    async def reconcile(self, account_id: str) -> dict:
        return await self._engine_for_admin(account_id).reconcile_now()
