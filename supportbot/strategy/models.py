"""Strategy data models — typed representations for strategy inputs and outputs."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MarketSample:
    """A single price observation for a symbol."""

    symbol: str
    price: float
    volume: float
    timestamp: str


@dataclass(frozen=True)
class SupportLevel:
    """A price region where downward movement has repeatedly paused."""

    price: float
    strength: float  # 0..1, grows with touch count
    touch_count: int


@dataclass(frozen=True)
class Signal:
    """A buy signal produced by the signal generator.

    ``id`` is ``None`` until the signal has been persisted.
    """

    symbol: str
    target_price: float
    confidence: float
    reasoning: str
    support_price: float
    current_price: float
    action: str = "buy"
    processed: bool = False
    rejection_reason: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""

    @classmethod
    def from_row(cls, row: dict) -> "Signal":
        return cls(
            id=row["id"],
            symbol=row["symbol"],
            action=row["action"],
            target_price=float(row["target_price"]),
            confidence=float(row["confidence"]),
            reasoning=row["reasoning"],
            support_price=float(row["support_price"]),
            current_price=float(row["current_price"]),
            processed=bool(row["processed"]),
            rejection_reason=row["rejection_reason"],
            created_at=row["created_at"],
        )
