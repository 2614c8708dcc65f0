"""Market data ingestion — one ticker sample per symbol per cycle.

A symbol with too little history is seeded from recent hourly candle lows
so support detection can work from the first cycle.
"""

import logging
from datetime import datetime, timezone

from supportbot.exchange.models import ExchangeGateway, Ticker
from supportbot.models.trading_config import TradingConfiguration
from supportbot.strategy.models import MarketSample

logger = logging.getLogger("supportbot.market_data")

SEED_INTERVAL = "60"


class MarketDataIngestor:
    """Fetches prices from the exchange and keeps the sample store bounded.

    Args:
        exchange: ``ExchangeGateway`` implementation.
        repo: ``MarketDataRepo`` (or duck-type).
        account_id: Account whose sample history is kept.
    """

    def __init__(self, exchange: ExchangeGateway, repo, account_id: str) -> None:
        self._exchange = exchange
        self._repo = repo
        self._account_id = account_id

    async def seed(self, symbol: str, count: int) -> int:
        """Backfill *count* samples from candle lows.  Returns rows written."""
        klines = await self._exchange.fetch_klines(symbol, SEED_INTERVAL, limit=count)
        samples = [
            MarketSample(
                symbol=symbol,
                price=k.low,
                volume=k.volume,
                timestamp=datetime.fromtimestamp(k.start_time / 1000, tz=timezone.utc).isoformat(),
            )
            for k in klines
        ]
        written = self._repo.insert_samples(self._account_id, samples)
        logger.info("%s: seeded %d samples from %s-minute candles", symbol, written, SEED_INTERVAL)
        return written

    async def ingest(self, symbol: str, config: TradingConfiguration) -> tuple[Ticker, list[float]]:
        """Record the current price of *symbol*.

        Returns:
            ``(ticker, prices)`` where *prices* are the newest
            ``support_candle_count`` sample prices, oldest first.
        """
        if self._repo.count(self._account_id, symbol) < config.support_candle_count:
            await self.seed(symbol, config.support_candle_count)

        ticker = await self._exchange.get_market_price(symbol)
        self._repo.insert_samples(self._account_id, [
            MarketSample(symbol, ticker.price, ticker.volume, ticker.timestamp),
        ])
        removed = self._repo.prune(self._account_id, symbol, config.market_data_window)
        if removed:
            logger.debug("%s: pruned %d old samples", symbol, removed)

        recent = self._repo.get_recent(self._account_id, symbol, config.support_candle_count)
        return ticker, [s.price for s in recent]
