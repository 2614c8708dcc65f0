"""Tests for support level detection — pure functions, no I/O."""

import pytest

from supportbot.strategy.support import cluster_levels, detect_support, support_strength


def _floor_series() -> list[float]:
    """Ten samples bouncing off ~100 (3 touches) with noise above."""
    return [103.0, 100.00, 104.2, 100.20, 106.0, 101.9, 100.10, 105.5, 108.0, 102.7]


class TestClusterLevels:
    def test_empty(self):
        assert cluster_levels([]) == []

    def test_groups_within_tolerance(self):
        clusters = cluster_levels([100.0, 100.4, 101.0])
        assert clusters[0] == (pytest.approx(100.2), 2)
        assert clusters[1] == (pytest.approx(101.0), 1)

    def test_anchor_is_lowest_member(self):
        # 100.9 is within 0.5 % of 100.45 but not of 100.0.
        clusters = cluster_levels([100.0, 100.45, 100.9])
        assert [n for _, n in clusters] == [2, 1]

    def test_sorted_ascending(self):
        clusters = cluster_levels([110.0, 90.0, 100.0])
        assert [round(p) for p, _ in clusters] == [90, 100, 110]


class TestDetectSupport:
    def test_fewer_than_ten_samples_returns_none(self):
        assert detect_support(_floor_series()[:9]) is None

    def test_no_cluster_with_three_touches_returns_none(self):
        prices = [100.0 + i * 2 for i in range(12)]
        assert detect_support(prices) is None

    def test_detects_floor(self):
        level = detect_support(_floor_series())
        assert level is not None
        assert level.touch_count == 3
        assert level.price == pytest.approx(100.10)
        assert level.strength == pytest.approx(0.3)

    def test_deterministic(self):
        first = detect_support(_floor_series())
        second = detect_support(list(_floor_series()))
        assert first == second

    def test_most_touches_wins(self):
        prices = [100.0, 100.1, 100.2, 110.0, 110.1, 110.2, 110.3, 120.0, 125.0, 130.0]
        level = detect_support(prices)
        assert level.touch_count == 4
        assert level.price == pytest.approx(110.15)

    def test_tie_resolved_by_lowest_price(self):
        prices = [110.0, 110.1, 110.2, 100.0, 100.1, 100.2, 120.0, 125.0, 130.0, 135.0]
        level = detect_support(prices)
        assert level.touch_count == 3
        assert level.price == pytest.approx(100.1)

    def test_window_uses_newest_samples(self):
        old_floor = [90.0, 90.1, 90.2, 90.1]
        prices = old_floor + _floor_series()
        level = detect_support(prices, window=10)
        assert level.price == pytest.approx(100.10)


class TestSupportStrength:
    @pytest.mark.parametrize("touches,expected", [(3, 0.3), (10, 1.0), (25, 1.0)])
    def test_strength(self, touches, expected):
        assert support_strength(touches) == pytest.approx(expected)
