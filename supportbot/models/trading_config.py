"""Per-account trading configuration.

One immutable snapshot is loaded at the start of every cycle and passed
explicitly to each component for the duration of that cycle.
"""

from dataclasses import dataclass, field, fields
from datetime import time

from supportbot.errors import ConfigError


TAKE_PROFIT_MODES = ("resting_order", "monitor")
EOD_CLOSE_MODES = ("minimum_profit", "loss_tolerant")

_POSITIVE_FLOATS = (
    "entry_offset_percent",
    "take_profit_percent",
    "max_order_amount_usd",
    "support_lower_bound_percent",
    "support_upper_bound_percent",
    "eod_close_premium_percent",
    "min_signal_confidence",
    "order_value_tolerance_percent",
)

_POSITIVE_INTS = (
    "max_positions_per_pair",
    "max_active_pairs",
    "support_candle_count",
    "main_loop_interval_seconds",
    "market_data_window",
)


@dataclass(frozen=True)
class TradingConfiguration:
    """Trading parameters for a single account.

    Percentages are expressed in percent (``2.0`` means 2 %).  Every
    percentage and amount must be strictly positive; violations raise
    ``ConfigError`` at construction time.
    """

    symbols: list[str] = field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])
    entry_offset_percent: float = 0.1
    take_profit_percent: float = 2.0
    max_order_amount_usd: float = 100.0
    max_positions_per_pair: int = 1
    max_active_pairs: int = 5
    support_candle_count: int = 10
    support_lower_bound_percent: float = 0.5
    support_upper_bound_percent: float = 2.0
    eod_close_premium_percent: float = 0.5
    auto_close_at_end_of_day: bool = True
    main_loop_interval_seconds: int = 300
    is_active: bool = False
    eod_close_time_utc: str = "23:00"
    eod_close_mode: str = "minimum_profit"
    take_profit_mode: str = "resting_order"
    min_signal_confidence: float = 0.3
    market_data_window: int = 200
    order_value_tolerance_percent: float = 0.5

    def __post_init__(self) -> None:
        for name in _POSITIVE_FLOATS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigError(f"{name} must be positive, got {value!r}")
        for name in _POSITIVE_INTS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigError(
                    f"{name} must be a positive integer, got {value!r}"
                )
        if self.min_signal_confidence > 1:
            raise ConfigError(
                f"min_signal_confidence must be <= 1, got {self.min_signal_confidence}"
            )
        if self.take_profit_mode not in TAKE_PROFIT_MODES:
            raise ConfigError(
                f"take_profit_mode must be one of {TAKE_PROFIT_MODES}, "
                f"got {self.take_profit_mode!r}"
            )
        if self.eod_close_mode not in EOD_CLOSE_MODES:
            raise ConfigError(
                f"eod_close_mode must be one of {EOD_CLOSE_MODES}, "
                f"got {self.eod_close_mode!r}"
            )
        # Fail early on a malformed boundary rather than at end of day.
        self.eod_close_time

    @property
    def eod_close_time(self) -> time:
        """Parsed ``eod_close_time_utc`` boundary."""
        try:
            hour, minute = (int(p) for p in self.eod_close_time_utc.split(":")[:2])
            return time(hour=hour, minute=minute)
        except (ValueError, AttributeError) as exc:
            raise ConfigError(
                f"eod_close_time_utc must be 'HH:MM', got {self.eod_close_time_utc!r}"
            ) from exc

    @property
    def uses_resting_take_profit(self) -> bool:
        return self.take_profit_mode == "resting_order"

    @classmethod
    def from_dict(cls, data: dict) -> "TradingConfiguration":
        """Build a configuration from a JSON-style dict.

        Unknown keys are ignored so that older or newer account files load
        without modification.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "symbols" in kwargs:
            kwargs["symbols"] = [str(s).upper() for s in kwargs["symbols"]]
        return cls(**kwargs)

    def summary(self) -> dict:
        """Compact dict for activity logging."""
        return {
            "is_active": self.is_active,
            "symbols": list(self.symbols),
            "max_order_amount_usd": self.max_order_amount_usd,
            "take_profit_percent": self.take_profit_percent,
            "take_profit_mode": self.take_profit_mode,
            "main_loop_interval_seconds": self.main_loop_interval_seconds,
        }
