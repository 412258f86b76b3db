"""
Tests: EMA hit-rate tracking and threshold classification
"""
import pytest

from app.cache import AdaptiveConfig, AdaptiveTracker

BASE_MS = 15_000


@pytest.fixture
def tracker(clock):
    return AdaptiveTracker(AdaptiveConfig(), clock=clock)


def hit_every(tracker, clock, key, seconds, times):
    for _ in range(times):
        clock.advance(seconds)
        tracker.record_hit(key)


class TestEma:
    def test_first_hit_seeds_one_per_minute(self, tracker):
        tracker.record_hit("k")
        assert tracker.ema("k") == 1.0

    def test_ema_update(self, tracker, clock):
        tracker.record_hit("k")
        clock.advance(1)
        tracker.record_hit("k")
        # 0.2 * 60 + 0.8 * 1
        assert tracker.ema("k") == pytest.approx(12.8)

    def test_long_gap_decays(self, tracker, clock):
        tracker.record_hit("k")
        clock.advance(11 * 60)
        tracker.record_hit("k")
        assert tracker.ema("k") == pytest.approx(0.8)

    def test_oldest_keys_evicted(self, clock):
        tracker = AdaptiveTracker(AdaptiveConfig(max_keys=2), clock=clock)
        for key in ("a", "b", "c"):
            tracker.record_hit(key)
        assert len(tracker) == 2
        assert tracker.ema("a") == 0.0
        assert tracker.ema("c") == 1.0


class TestClassification:
    def test_unseen_key_is_suppressed(self, tracker):
        decision = tracker.compute_adaptive_threshold(BASE_MS, "never")
        assert decision.reason == "suppressed-low"
        assert decision.skip is True

    def test_cold_key_shrinks_threshold(self, tracker):
        tracker.record_hit("k")
        decision = tracker.compute_adaptive_threshold(BASE_MS, "k")
        assert decision.reason == "cold"
        assert decision.adjusted_threshold_ms == 7500

    def test_baseline_key(self, tracker, clock):
        tracker.record_hit("k")
        clock.advance(6)
        tracker.record_hit("k")
        # 0.2 * 10 + 0.8 * 1 = 2.8
        decision = tracker.compute_adaptive_threshold(BASE_MS, "k")
        assert decision.reason == "baseline"
        assert decision.adjusted_threshold_ms == BASE_MS

    def test_hot_key_expands_threshold(self, tracker, clock):
        tracker.record_hit("k")
        hit_every(tracker, clock, "k", 1, 10)
        decision = tracker.compute_adaptive_threshold(BASE_MS, "k")
        assert decision.reason == "hot"
        assert decision.adjusted_threshold_ms == 30_000
        assert decision.skip is False

    def test_burst_of_hits_without_clock_movement_is_hot(self, tracker):
        for _ in range(60):
            tracker.record_hit("k")
        decision = tracker.compute_adaptive_threshold(BASE_MS, "k")
        assert decision.reason == "hot"
        assert decision.adjusted_threshold_ms > BASE_MS

    def test_hot_threshold_capped(self, tracker, clock):
        tracker.record_hit("k")
        hit_every(tracker, clock, "k", 1, 10)
        decision = tracker.compute_adaptive_threshold(3_000_000, "k")
        assert decision.adjusted_threshold_ms == 3_600_000

    def test_disabled(self, clock):
        tracker = AdaptiveTracker(AdaptiveConfig(enabled=False), clock=clock)
        tracker.record_hit("k")
        decision = tracker.compute_adaptive_threshold(BASE_MS, "k")
        assert decision.reason == "disabled"
        assert decision.adjusted_threshold_ms == BASE_MS
        assert len(tracker) == 0


def test_stats_sorted_hottest_first(tracker, clock):
    tracker.record_hit("cold")
    tracker.record_hit("hot")
    hit_every(tracker, clock, "hot", 1, 5)

    stats = tracker.adaptive_stats(limit=1)
    assert stats["enabled"] is True
    assert stats["total"] == 2
    assert [row["key"] for row in stats["hot_sample"]] == ["hot"]
    assert stats["config"]["hot_hpm"] == 30
