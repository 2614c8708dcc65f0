"""Support level detection from recent price samples — pure functions."""

from typing import Optional, Sequence

from supportbot.strategy.models import SupportLevel


DEFAULT_TOLERANCE = 0.005  # 0.5 % relative distance
MIN_SAMPLES = 10
MIN_TOUCHES = 3
FULL_STRENGTH_TOUCHES = 10


def cluster_levels(
    prices: Sequence[float],
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[tuple[float, int]]:
    """Cluster nearby price levels into zones.

    Prices are sorted ascending and each one joins the current cluster when
    its relative distance from the cluster's lowest member is within
    *tolerance*; otherwise it opens a new cluster.  Anchoring on the lowest
    member keeps every pair inside a cluster within tolerance.

    Returns a list of ``(average_price, touch_count)`` tuples sorted by price.
    """
    if not prices:
        return []

    sorted_prices = sorted(prices)
    clusters: list[list[float]] = []
    current: list[float] = [sorted_prices[0]]

    for price in sorted_prices[1:]:
        anchor = current[0]
        if anchor > 0 and (price - anchor) / anchor <= tolerance:
            current.append(price)
        else:
            clusters.append(current)
            current = [price]
    clusters.append(current)

    return [(sum(c) / len(c), len(c)) for c in clusters]


def support_strength(touch_count: int) -> float:
    """Map a touch count onto ``[0, 1]``; ten touches is full strength."""
    return min(touch_count / FULL_STRENGTH_TOUCHES, 1.0)


def detect_support(
    prices: Sequence[float],
    window: Optional[int] = None,
    tolerance: float = DEFAULT_TOLERANCE,
    min_samples: int = MIN_SAMPLES,
    min_touches: int = MIN_TOUCHES,
) -> Optional[SupportLevel]:
    """Find the strongest support level in a price series.

    Args:
        prices: Sample prices ordered oldest-first.
        window: Only the newest *window* samples are analysed (all if None).
        tolerance: Relative clustering tolerance.
        min_samples: Fewer samples than this yields no support.
        min_touches: Clusters with fewer touches do not qualify.

    Returns:
        The qualifying cluster with the most touches (the lowest price wins
        a tie), or ``None`` when nothing qualifies.
    """
    recent = list(prices[-window:]) if window else list(prices)
    if len(recent) < min_samples:
        return None

    best: Optional[tuple[float, int]] = None
    for price, touches in cluster_levels(recent, tolerance):
        if touches < min_touches:
            continue
        # Clusters arrive in ascending price order; strict ">" keeps the lowest on ties.
        if best is None or touches > best[1]:
            best = (price, touches)

    if best is None:
        return None

    price, touches = best
    return SupportLevel(
        price=price,
        strength=support_strength(touches),
        touch_count=touches,
    )
