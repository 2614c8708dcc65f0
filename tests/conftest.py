"""Shared fixtures: a temp SQLite database, repos, a fake exchange and a
recording event sink."""

from datetime import datetime, timezone

import pytest

from supportbot.errors import ExchangeError, OrderRejectedError
from supportbot.exchange.models import (
    ORDER_FILLED,
    ORDER_NOT_FOUND,
    ORDER_OPEN,
    InstrumentInfo,
    Kline,
    OrderAck,
    OrderSpec,
    OrderStatus,
    Ticker,
)
from supportbot.repos.activity_repo import ActivityRepo
from supportbot.repos.db import init_db
from supportbot.repos.market_data_repo import MarketDataRepo
from supportbot.repos.position_repo import PositionRepo
from supportbot.repos.signal_repo import SignalRepo


# ── Fake exchange ────────────────────────────────────────────────────────


class FakeExchange:
    """Duck-typed ``ExchangeGateway`` keeping orders in memory."""

    def __init__(self, prices=None) -> None:
        self.prices: dict[str, float] = dict(prices or {})
        self.instruments: dict[str, InstrumentInfo] = {}
        self.klines: dict[str, list[Kline]] = {}
        self.orders: dict[str, OrderStatus] = {}
        self.placed: list[OrderSpec] = []
        self.cancelled: list[str] = []
        self.reject_sides: set[str] = set()
        self.fail_sides: set[str] = set()
        self.fail_prices: set[str] = set()
        self.fail_status: set[str] = set()
        self.fail_cancel = False
        self.instrument_calls = 0
        self._next_id = 1

    def instrument(self, symbol: str) -> InstrumentInfo:
        return self.instruments.get(
            symbol,
            InstrumentInfo(
                symbol=symbol,
                tick_size=0.01,
                lot_step=0.01,
                min_qty=0.01,
                min_notional=5.0,
            ),
        )

    async def get_market_price(self, symbol: str) -> Ticker:
        if symbol in self.fail_prices or symbol not in self.prices:
            raise ExchangeError(f"no price for {symbol}")
        return Ticker(
            symbol=symbol,
            price=self.prices[symbol],
            volume=10.0,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    async def place_order(self, order: OrderSpec) -> OrderAck:
        self.placed.append(order)
        if order.side in self.reject_sides:
            raise OrderRejectedError(f"rejected {order.side} {order.symbol}", ret_code=170131)
        if order.side in self.fail_sides:
            raise ExchangeError(f"timeout placing {order.side} {order.symbol}")
        order_id = f"ord-{self._next_id}"
        self._next_id += 1
        self.orders[order_id] = OrderStatus(order_id=order_id, status=ORDER_OPEN, raw_status="New")
        return OrderAck(
            order_id=order_id,
            symbol=order.symbol,
            side=order.side,
            quantity=order.quantity,
            price=order.price,
        )

    async def get_order_status(self, symbol: str, order_id: str) -> OrderStatus:
        if order_id in self.fail_status:
            raise ExchangeError(f"status query for {order_id} timed out")
        return self.orders.get(order_id, OrderStatus(order_id=order_id, status=ORDER_NOT_FOUND))

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        if self.fail_cancel:
            raise ExchangeError(f"cannot cancel {order_id}")
        self.cancelled.append(order_id)
        self.set_status(order_id, "cancelled")

    async def get_instrument_info(self, symbol: str) -> InstrumentInfo:
        self.instrument_calls += 1
        return self.instrument(symbol)

    async def fetch_klines(self, symbol: str, interval: str = "60", limit: int = 200) -> list[Kline]:
        return self.klines.get(symbol, [])[-limit:]

    # ── Test controls ────────────────────────────────────────────────────

    def fill(self, order_id: str, price: float, quantity: float) -> None:
        self.orders[order_id] = OrderStatus(
            order_id=order_id, status=ORDER_FILLED, avg_price=price,
            executed_qty=quantity, raw_status="Filled",
        )

    def set_status(self, order_id: str, status: str, executed_qty: float = 0.0, avg_price: float = 0.0) -> None:
        self.orders[order_id] = OrderStatus(
            order_id=order_id, status=status, avg_price=avg_price,
            executed_qty=executed_qty,
        )

    def sells(self) -> list[OrderSpec]:
        return [o for o in self.placed if o.side == "sell"]

    def buys(self) -> list[OrderSpec]:
        return [o for o in self.placed if o.side == "buy"]


# ── Recording sink ───────────────────────────────────────────────────────


class RecordingSink:
    """``EventSink`` that keeps events in a list."""

    def __init__(self) -> None:
        self.events: list[dict] = []

    def emit(self, event_type, message, data=None, severity="info") -> None:
        self.events.append({
            "event_type": event_type,
            "message": message,
            "data": data or {},
            "severity": severity,
        })

    def types(self) -> list[str]:
        return [e["event_type"] for e in self.events]

    def of(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["event_type"] == event_type]


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "supportbot.db")
    init_db(path)
    return path


@pytest.fixture
def position_repo(db_path):
    return PositionRepo(db_path)


@pytest.fixture
def signal_repo(db_path):
    return SignalRepo(db_path)


@pytest.fixture
def activity_repo(db_path):
    return ActivityRepo(db_path)


@pytest.fixture
def market_repo(db_path):
    return MarketDataRepo(db_path)


@pytest.fixture
def exchange():
    return FakeExchange(prices={"ETHUSDT": 100.50})


@pytest.fixture
def sink():
    return RecordingSink()
