"""Per-symbol instrument-info cache with a fixed time-to-live.

Owned by a single ``TradingEngine``; entries expire after ``ttl_seconds`` so
exchange-side filter changes are picked up without a restart.
"""

import logging
import time
from typing import Callable

from supportbot.exchange.models import ExchangeGateway, InstrumentInfo

logger = logging.getLogger("supportbot.exchange")

DEFAULT_TTL_SECONDS = 300.0


class InstrumentCache:
    """Time-bounded cache in front of ``ExchangeGateway.get_instrument_info``.

    Args:
        exchange: Gateway used on cache misses.
        ttl_seconds: Lifetime of a cached entry.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        exchange: ExchangeGateway,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._exchange = exchange
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, InstrumentInfo]] = {}

    async def get(self, symbol: str) -> InstrumentInfo:
        """Return cached constraints for *symbol*, fetching when stale."""
        entry = self._entries.get(symbol)
        now = self._clock()
        if entry is not None and now < entry[0]:
            return entry[1]

        info = await self._exchange.get_instrument_info(symbol)
        self._entries[symbol] = (now + self._ttl, info)
        logger.debug(
            "Cached instrument info for %s: tick=%s step=%s min_qty=%s min_notional=%s",
            symbol, info.tick_size, info.lot_step, info.min_qty, info.min_notional,
        )
        return info

    def invalidate(self, symbol: str | None = None) -> None:
        """Drop one symbol, or everything when *symbol* is ``None``."""
        if symbol is None:
            self._entries.clear()
        else:
            self._entries.pop(symbol, None)

    def __len__(self) -> int:
        return len(self._entries)
