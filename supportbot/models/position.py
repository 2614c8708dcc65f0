"""Position record — the durable audit trail of every entry order.

Positions are never deleted, only transitioned::

    pending ──▶ filled ──▶ closed
       │
       └──────▶ cancelled
"""

from dataclasses import dataclass
from typing import Optional


PENDING = "pending"
FILLED = "filled"
CANCELLED = "cancelled"
CLOSED = "closed"

OPEN_STATUSES = (PENDING, FILLED)


@dataclass(frozen=True)
class Position:
    """A single exchange order tracked by the bot (a.k.a. trade)."""

    id: int
    account_id: str
    symbol: str
    side: str  # "buy" or "sell"
    order_type: str  # "limit" or "market"
    price: float
    quantity: float
    status: str
    exchange_order_id: str
    linked_take_profit_order_id: Optional[str] = None
    take_profit_price: Optional[float] = None
    profit_loss: Optional[float] = None
    exit_price: Optional[float] = None
    close_reason: Optional[str] = None
    signal_id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
    closed_at: Optional[str] = None

    @property
    def notional(self) -> float:
        return self.price * self.quantity

    def profit_percent(self, market_price: float) -> float:
        """Unrealised profit against *market_price*, in percent of entry."""
        if self.side == "buy":
            return (market_price - self.price) / self.price * 100.0
        return (self.price - market_price) / self.price * 100.0

    def profit_amount(self, market_price: float) -> float:
        """Unrealised profit against *market_price*, in quote currency."""
        if self.side == "buy":
            return (market_price - self.price) * self.quantity
        return (self.price - market_price) * self.quantity

    @classmethod
    def from_row(cls, row: dict) -> "Position":
        return cls(
            id=row["id"],
            account_id=row["account_id"],
            symbol=row["symbol"],
            side=row["side"],
            order_type=row["order_type"],
            price=float(row["price"]),
            quantity=float(row["quantity"]),
            status=row["status"],
            exchange_order_id=row["exchange_order_id"],
            linked_take_profit_order_id=row["linked_take_profit_order_id"],
            take_profit_price=row["take_profit_price"],
            profit_loss=row["profit_loss"],
            exit_price=row["exit_price"],
            close_reason=row["close_reason"],
            signal_id=row["signal_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            closed_at=row["closed_at"],
        )
