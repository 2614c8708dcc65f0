"""Tests for the SQLite repositories."""

import pytest

from supportbot.errors import PositionStateError
from supportbot.models.position import CANCELLED, CLOSED, FILLED, PENDING
from supportbot.strategy.models import MarketSample, Signal


def _signal(symbol: str = "ETHUSDT") -> Signal:
    return Signal(
        symbol=symbol,
        target_price=100.28,
        confidence=0.6,
        reasoning="test",
        support_price=100.18,
        current_price=100.40,
    )


# ── PositionRepo ─────────────────────────────────────────────────────────


class TestPositionRepo:
    def test_insert_defaults_to_pending(self, position_repo):
        position = position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.5, 0.99, "ord-1", signal_id=7)
        assert position.id is not None
        assert position.status == PENDING
        assert position.signal_id == 7
        assert position.notional == pytest.approx(99.495)

    def test_fill_then_close(self, position_repo):
        position = position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.5, 0.99, "ord-1")
        filled = position_repo.mark_filled(position.id, 100.48, 0.99)
        assert filled.status == FILLED
        assert filled.price == pytest.approx(100.48)

        closed = position_repo.mark_closed(position.id, 102.5, 2.0, "take_profit")
        assert closed.status == CLOSED
        assert closed.exit_price == pytest.approx(102.5)
        assert closed.closed_at is not None

    def test_partial_exit_accumulates_profit_loss(self, position_repo):
        position = position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.5, 0.99, "ord-1")
        position_repo.mark_filled(position.id, 100.5, 0.99)
        position_repo.set_take_profit(position.id, "tp-1", 102.51)

        partial = position_repo.record_partial_exit(position.id, 0.49, 1.0)
        assert partial.status == FILLED
        assert partial.quantity == pytest.approx(0.49)
        assert partial.profit_loss == pytest.approx(1.0)
        assert partial.linked_take_profit_order_id is None
        assert partial.take_profit_price is None

        closed = position_repo.mark_closed(position.id, 102.5, 0.5, "take_profit")
        assert closed.profit_loss == pytest.approx(1.5)

    def test_partial_exit_requires_filled(self, position_repo):
        position = position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.5, 0.99, "ord-1")
        with pytest.raises(PositionStateError):
            position_repo.record_partial_exit(position.id, 0.49, 1.0)

    def test_illegal_transitions_rejected(self, position_repo):
        position = position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.5, 0.99, "ord-1")
        with pytest.raises(PositionStateError):
            position_repo.mark_closed(position.id, 101.0, 0.5, "manual")

        position_repo.mark_cancelled(position.id)
        assert position_repo.get_position(position.id).status == CANCELLED
        with pytest.raises(PositionStateError):
            position_repo.mark_filled(position.id, 100.5, 0.99)

    def test_missing_position(self, position_repo):
        assert position_repo.get_position(42) is None
        with pytest.raises(PositionStateError, match="missing"):
            position_repo.mark_filled(42, 1.0, 1.0)

    def test_take_profit_link_set_and_cleared(self, position_repo):
        position = position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.5, 0.99, "ord-1")
        linked = position_repo.set_take_profit(position.id, "tp-1", 102.51)
        assert linked.linked_take_profit_order_id == "tp-1"
        assert linked.take_profit_price == pytest.approx(102.51)

        cleared = position_repo.set_take_profit(position.id, None, None)
        assert cleared.linked_take_profit_order_id is None

    def test_count_open_by_symbol(self, position_repo):
        a = position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.0, 1.0, "o1")
        position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.0, 1.0, "o2")
        b = position_repo.insert_position("acct", "BTCUSDT", "buy", "limit", 100.0, 1.0, "o3")
        position_repo.insert_position("other", "SOLUSDT", "buy", "limit", 100.0, 1.0, "o4")
        position_repo.mark_filled(a.id, 100.0, 1.0)
        position_repo.mark_cancelled(b.id)

        assert position_repo.count_open_by_symbol("acct") == {"ETHUSDT": 2}

    def test_get_by_status_and_listing(self, position_repo):
        first = position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 100.0, 1.0, "o1")
        position_repo.insert_position("acct", "ETHUSDT", "buy", "limit", 101.0, 1.0, "o2")
        position_repo.mark_filled(first.id, 100.0, 1.0)

        assert [p.id for p in position_repo.get_by_status("acct", FILLED)] == [first.id]

        listing = position_repo.get_positions("acct", limit=1)
        assert listing["total"] == 2
        assert len(listing["positions"]) == 1
        assert listing["positions"][0]["exchange_order_id"] == "o2"

        filtered = position_repo.get_positions("acct", status_filter=FILLED)
        assert filtered["total"] == 1


# ── SignalRepo ───────────────────────────────────────────────────────────


class TestSignalRepo:
    def test_insert_and_fetch(self, signal_repo):
        stored = signal_repo.insert_signal("acct", _signal())
        assert stored.id is not None
        assert stored.processed is False
        assert stored.created_at
        assert signal_repo.get_unprocessed("acct") == [stored]

    def test_mark_processed_claims_once(self, signal_repo):
        stored = signal_repo.insert_signal("acct", _signal())
        assert signal_repo.mark_processed(stored.id) is True
        assert signal_repo.mark_processed(stored.id) is False
        assert signal_repo.get_unprocessed("acct") == []

    def test_rejection_reason(self, signal_repo):
        stored = signal_repo.insert_signal("acct", _signal())
        signal_repo.mark_processed(stored.id, "max_positions_per_pair")
        assert signal_repo.get_signal(stored.id).rejection_reason == "max_positions_per_pair"

        signal_repo.set_rejection_reason(stored.id, "below_min_notional")
        assert signal_repo.get_signal(stored.id).rejection_reason == "below_min_notional"

    def test_get_signals_newest_first(self, signal_repo):
        signal_repo.insert_signal("acct", _signal("ETHUSDT"))
        signal_repo.insert_signal("acct", _signal("BTCUSDT"))
        signal_repo.insert_signal("other", _signal("SOLUSDT"))

        rows = signal_repo.get_signals("acct")
        assert [r["symbol"] for r in rows] == ["BTCUSDT", "ETHUSDT"]


# ── MarketDataRepo ───────────────────────────────────────────────────────


class TestMarketDataRepo:
    def test_recent_oldest_first_and_prune(self, market_repo):
        samples = [MarketSample("ETHUSDT", 100.0 + i, 1.0, f"t{i}") for i in range(6)]
        assert market_repo.insert_samples("acct", samples) == 6
        market_repo.insert_samples("acct", [MarketSample("BTCUSDT", 50_000.0, 1.0, "t0")])

        recent = market_repo.get_recent("acct", "ETHUSDT", 3)
        assert [s.price for s in recent] == [103.0, 104.0, 105.0]

        assert market_repo.prune("acct", "ETHUSDT", 4) == 2
        assert market_repo.count("acct", "ETHUSDT") == 4
        assert market_repo.count("acct", "BTCUSDT") == 1

    def test_scoped_per_account(self, market_repo):
        market_repo.insert_samples("acct", [MarketSample("ETHUSDT", 100.0, 1.0, "t0")])
        market_repo.insert_samples("other", [MarketSample("ETHUSDT", 200.0, 1.0, "t0")] * 3)

        assert [s.price for s in market_repo.get_recent("acct", "ETHUSDT", 10)] == [100.0]
        assert market_repo.prune("other", "ETHUSDT", 1) == 2
        assert market_repo.count("acct", "ETHUSDT") == 1
        assert market_repo.count("other", "ETHUSDT") == 1

    def test_insert_nothing(self, market_repo):
        assert market_repo.insert_samples("acct", []) == 0


# ── ActivityRepo ─────────────────────────────────────────────────────────


class TestActivityRepo:
    def test_filters_and_ordering(self, activity_repo):
        activity_repo.insert_event("acct", "order_placed", "first", {"n": 1})
        activity_repo.insert_event("acct", "system_error", "boom", {"n": 2}, severity="critical")
        activity_repo.insert_event("acct", "order_placed", "second", {"n": 3})
        activity_repo.insert_event("other", "order_placed", "elsewhere", {})

        events = activity_repo.get_events("acct")
        assert [e["message"] for e in events] == ["second", "boom", "first"]
        assert events[0]["data"] == {"n": 3}

        placed = activity_repo.get_events("acct", event_type="order_placed")
        assert len(placed) == 2

        critical = activity_repo.get_events("acct", severity="critical")
        assert [e["message"] for e in critical] == ["boom"]

        assert len(activity_repo.get_events("acct", limit=1)) == 1
