"""Exchange data models — typed representations of Bybit v5 spot API objects."""

import secrets
import time
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable


# Normalised order states (exchange vocabulary is mapped onto these)
ORDER_OPEN = "open"
ORDER_PARTIALLY_FILLED = "partially_filled"
ORDER_FILLED = "filled"
ORDER_CANCELLED = "cancelled"
ORDER_REJECTED = "rejected"
ORDER_NOT_FOUND = "not_found"

TERMINAL_FAILED_STATES = (ORDER_CANCELLED, ORDER_REJECTED)


def make_client_order_id(tag: str, ref: object = "") -> str:
    """Return a unique client order id (Bybit ``orderLinkId``, max 36 chars).

    *tag* names the order's purpose (``e`` entry, ``tp`` take-profit, ``cl``
    close) and *ref* the signal or position it belongs to.
    """
    return f"sb-{tag}{ref}-{int(time.time() * 1000)}-{secrets.token_hex(2)}"[:36]


@dataclass(frozen=True)
class Ticker:
    """Last traded price for a symbol."""

    symbol: str
    price: float
    volume: float
    timestamp: str


@dataclass(frozen=True)
class Kline:
    """A single candlestick bar."""

    start_time: int  # epoch milliseconds
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class InstrumentInfo:
    """Trading constraints for a spot instrument."""

    symbol: str
    tick_size: float
    lot_step: float
    min_qty: float
    min_notional: float
    max_qty: float = 0.0  # 0 = unbounded


@dataclass(frozen=True)
class OrderSpec:
    """An order request payload."""

    symbol: str
    side: str  # "buy" or "sell"
    order_type: str  # "limit" or "market"
    quantity: float
    price: Optional[float] = None
    time_in_force: str = "GTC"
    client_order_id: Optional[str] = None  # sent as Bybit orderLinkId


@dataclass(frozen=True)
class OrderAck:
    """Exchange acknowledgement of an accepted order."""

    order_id: str
    symbol: str
    side: str
    quantity: float
    price: Optional[float] = None


@dataclass(frozen=True)
class OrderStatus:
    """Current exchange-side state of an order."""

    order_id: str
    status: str  # one of the ORDER_* constants
    avg_price: float = 0.0
    executed_qty: float = 0.0
    raw_status: str = ""


@runtime_checkable
class ExchangeGateway(Protocol):
    """Interface the trading core needs from an exchange."""

    async def get_market_price(self, symbol: str) -> Ticker:
        ...

    async def place_order(self, order: OrderSpec) -> OrderAck:
        ...

    async def get_order_status(self, symbol: str, order_id: str) -> OrderStatus:
        ...

    async def cancel_order(self, symbol: str, order_id: str) -> None:
        ...

    async def get_instrument_info(self, symbol: str) -> InstrumentInfo:
        ...

    async def fetch_klines(
        self, symbol: str, interval: str = "60", limit: int = 200
    ) -> list[Kline]:
        ...
