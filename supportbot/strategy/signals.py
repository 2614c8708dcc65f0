"""Buy-signal generation from a support level and the current price.

``evaluate_entry`` is a pure function; ``SignalGenerator`` wraps it with the
per-pair / active-pair position limits and persists accepted signals.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from supportbot.events import EventSink, SIGNAL_PROCESSED, SIGNAL_REJECTED
from supportbot.models.trading_config import TradingConfiguration
from supportbot.strategy.models import Signal, SupportLevel

logger = logging.getLogger("supportbot.signals")

STRENGTH_WEIGHT = 0.5
PROXIMITY_WEIGHT = 0.5


@dataclass(frozen=True)
class EntryDecision:
    """Outcome of evaluating one symbol for entry."""

    accepted: bool
    reason: str
    target_price: float
    lower_bound: float
    upper_bound: float
    confidence: float = 0.0
    signal: Optional[Signal] = None

    def as_log_data(self) -> dict:
        return {
            "reason": self.reason,
            "target_price": round(self.target_price, 8),
            "lower_bound": round(self.lower_bound, 8),
            "upper_bound": round(self.upper_bound, 8),
            "confidence": round(self.confidence, 4),
        }


def signal_confidence(strength: float, current_price: float, target_price: float) -> float:
    """Blend support strength with proximity of price to the target entry.

    Proximity is ``1 / (1 + distance_pct)``: 1.0 at the target and strictly
    decreasing with distance.  The result is clamped to ``[0, 1]``.
    """
    distance_pct = abs(current_price - target_price) / target_price * 100.0
    proximity = 1.0 / (1.0 + distance_pct)
    blended = STRENGTH_WEIGHT * strength + PROXIMITY_WEIGHT * proximity
    return max(0.0, min(1.0, blended))


def evaluate_entry(
    symbol: str,
    support: SupportLevel,
    current_price: float,
    config: TradingConfiguration,
) -> EntryDecision:
    """Decide whether *current_price* near *support* warrants a buy signal.

    Formula::

        target = support × (1 + entry_offset / 100)
        accept iff support × (1 − lower / 100) ≤ price ≤ support × (1 + upper / 100)
                and confidence ≥ min_signal_confidence
    """
    target = support.price * (1 + config.entry_offset_percent / 100.0)
    lower = support.price * (1 - config.support_lower_bound_percent / 100.0)
    upper = support.price * (1 + config.support_upper_bound_percent / 100.0)

    if current_price < lower:
        return EntryDecision(False, "price_below_support_band", target, lower, upper)
    if current_price > upper:
        return EntryDecision(False, "price_above_support_band", target, lower, upper)

    confidence = signal_confidence(support.strength, current_price, target)
    if confidence < config.min_signal_confidence:
        return EntryDecision(
            False, "low_confidence", target, lower, upper, confidence=confidence,
        )

    reasoning = (
        f"Support {support.price:.8g} ({support.touch_count} touches, "
        f"strength {support.strength:.2f}); price {current_price:.8g} within "
        f"[{lower:.8g}, {upper:.8g}]; entry +{config.entry_offset_percent}%"
    )
    signal = Signal(
        symbol=symbol,
        target_price=target,
        confidence=confidence,
        reasoning=reasoning,
        support_price=support.price,
        current_price=current_price,
    )
    return EntryDecision(
        True, "accepted", target, lower, upper, confidence=confidence, signal=signal,
    )


class SignalGenerator:
    """Applies position limits, then persists accepted buy signals.

    Args:
        positions: ``PositionRepo`` (or duck-type) for open position counts.
        signals: ``SignalRepo`` (or duck-type) for persistence.
        sink: Activity event sink.
        account_id: Account the signals belong to.
    """

    def __init__(self, positions, signals, sink: EventSink, account_id: str) -> None:
        self._positions = positions
        self._signals = signals
        self._sink = sink
        self._account_id = account_id

    def _open_counts(self) -> dict[str, int]:
        """Open positions per symbol, counting unprocessed signals as reserved."""
        counts = dict(self._positions.count_open_by_symbol(self._account_id))
        for sig in self._signals.get_unprocessed(self._account_id):
            counts[sig.symbol] = counts.get(sig.symbol, 0) + 1
        return counts

    def generate(
        self,
        symbol: str,
        support: SupportLevel,
        current_price: float,
        config: TradingConfiguration,
    ) -> Optional[Signal]:
        """Evaluate *symbol* and persist a signal when it qualifies."""
        counts = self._open_counts()
        held = counts.get(symbol, 0)
        active_pairs = sum(1 for n in counts.values() if n > 0)

        if held >= config.max_positions_per_pair:
            self._sink.emit(
                SIGNAL_REJECTED,
                f"{symbol}: max positions per pair reached",
                {
                    "symbol": symbol,
                    "reason": "max_positions_per_pair",
                    "open_positions": held,
                    "limit": config.max_positions_per_pair,
                },
            )
            return None
        if held == 0 and active_pairs >= config.max_active_pairs:
            self._sink.emit(
                SIGNAL_REJECTED,
                f"{symbol}: max active pairs reached",
                {
                    "symbol": symbol,
                    "reason": "max_active_pairs",
                    "active_pairs": active_pairs,
                    "limit": config.max_active_pairs,
                },
            )
            return None

        decision = evaluate_entry(symbol, support, current_price, config)
        data = {
            "symbol": symbol,
            "support_price": round(support.price, 8),
            "touch_count": support.touch_count,
            "current_price": current_price,
            **decision.as_log_data(),
        }
        if not decision.accepted:
            logger.info("%s: no signal (%s)", symbol, decision.reason)
            self._sink.emit(SIGNAL_REJECTED, f"{symbol}: {decision.reason}", data)
            return None

        stored = self._signals.insert_signal(self._account_id, decision.signal)
        logger.info(
            "%s: buy signal #%s target=%.8g confidence=%.2f",
            symbol, stored.id, stored.target_price, stored.confidence,
        )
        self._sink.emit(
            SIGNAL_PROCESSED,
            f"Buy signal generated for {symbol}",
            {**data, "signal_id": stored.id},
        )
        return stored
