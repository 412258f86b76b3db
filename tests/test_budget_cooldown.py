"""
Tests: daily budget gate and 429 cooldown
"""
import math

import pytest

from app.upstream import BudgetTracker, CooldownTracker, cooldown_seconds_for


@pytest.fixture
def budget(clock):
    return BudgetTracker(clock=clock)


class TestBudget:
    def test_spend_until_limit(self, budget):
        for _ in range(3):
            assert budget.can_spend("gnews", 3).ok
            budget.spend("gnews")
        decision = budget.can_spend("gnews", 3)
        assert decision.ok is False
        assert decision.reason == "daily-limit(3/3)"

    def test_cost_counts_against_limit(self, budget):
        budget.spend("gnews", 3)
        assert budget.can_spend("gnews", 5, cost=3).ok is False
        assert budget.can_spend("gnews", 6, cost=3).ok is True

    def test_counter_resets_on_new_utc_day(self, budget, clock):
        budget.spend("gnews", 10)
        assert budget.get_used_today("gnews") == 10
        # START is 22:13 UTC; two hours later is the next day
        clock.advance(2 * 3600)
        assert budget.get_used_today("gnews") == 0
        assert budget.snapshot()["day"] == "2023-11-15"

    @pytest.mark.parametrize("limit", [0, -1, math.inf, float("nan"), "abc"])
    def test_inactive_limits_disable_gate(self, budget, limit):
        budget.spend("gnews", 1000)
        assert budget.can_spend("gnews", limit).ok is True
        assert budget.remaining("gnews", limit) == math.inf

    def test_remaining(self, budget):
        budget.spend("gnews", 2)
        assert budget.remaining("gnews", 5) == 3
        budget.spend("gnews", 10)
        assert budget.remaining("gnews", 5) == 0

    def test_snapshot(self, budget):
        budget.spend("gnews")
        assert budget.snapshot() == {"day": "2023-11-14", "used": {"gnews": 1}}


class TestCooldown:
    def test_cooldown_counts_down(self, clock):
        cooldown = CooldownTracker(clock=clock)
        cooldown.set_cooldown("gnews", 30)
        assert cooldown.get_cooldown_remaining("gnews") == 30_000
        assert cooldown.is_cooling_down("gnews")

        clock.advance(10)
        assert cooldown.get_cooldown_remaining("gnews") == 20_000
        assert cooldown.snapshot() == {"gnews": 20_000}

        clock.advance(21)
        assert cooldown.is_cooling_down("gnews") is False
        assert cooldown.snapshot() == {}

    def test_unknown_upstream_not_cooling(self, clock):
        assert CooldownTracker(clock=clock).get_cooldown_remaining("x") == 0

    @pytest.mark.parametrize(
        "retry_after,expected",
        [("5", 10), ("45", 45), ("500", 120), (None, 30), ("soon", 30)],
    )
    def test_retry_after_is_clamped(self, retry_after, expected):
        assert cooldown_seconds_for(retry_after) == expected
