"""Tests for the per-symbol instrument-info TTL cache."""

import pytest

from supportbot.exchange.instrument_cache import InstrumentCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_cached_within_ttl(exchange):
    clock = _Clock()
    cache = InstrumentCache(exchange, ttl_seconds=300, clock=clock)

    first = await cache.get("ETHUSDT")
    clock.now += 299
    second = await cache.get("ETHUSDT")

    assert first is second
    assert exchange.instrument_calls == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_refetched_after_ttl(exchange):
    clock = _Clock()
    cache = InstrumentCache(exchange, ttl_seconds=300, clock=clock)

    await cache.get("ETHUSDT")
    clock.now += 301
    await cache.get("ETHUSDT")

    assert exchange.instrument_calls == 2


@pytest.mark.asyncio
async def test_symbols_cached_independently(exchange):
    cache = InstrumentCache(exchange)
    await cache.get("ETHUSDT")
    await cache.get("BTCUSDT")
    await cache.get("ETHUSDT")
    assert exchange.instrument_calls == 2


@pytest.mark.asyncio
async def test_invalidate(exchange):
    cache = InstrumentCache(exchange)
    await cache.get("ETHUSDT")
    await cache.get("BTCUSDT")

    cache.invalidate("ETHUSDT")
    assert len(cache) == 1
    cache.invalidate()
    assert len(cache) == 0

    await cache.get("ETHUSDT")
    assert exchange.instrument_calls == 3
