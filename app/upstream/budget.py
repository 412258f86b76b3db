"""Daily spend budget per cost-metered upstream."""
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.cache.core import Clock


@dataclass
class BudgetCounter:
    day: str
    units_used: int = 0


@dataclass
class BudgetDecision:
    ok: bool
    reason: Optional[str] = None


class BudgetTracker:
    """
    Units spent per upstream for the current UTC day.

    Counters reset lazily: a read on a new day starts from zero.
    """

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._counters: Dict[str, BudgetCounter] = {}

    def _today(self) -> str:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc).date().isoformat()

    def _ensure(self, name: str) -> BudgetCounter:
        day = self._today()
        counter = self._counters.get(name)
        if counter is None or counter.day != day:
            counter = BudgetCounter(day=day)
            self._counters[name] = counter
        return counter

    def get_used_today(self, name: str) -> int:
        return self._ensure(name).units_used

    def spend(self, name: str, cost: int = 1) -> None:
        self._ensure(name).units_used += max(1, cost)

    def can_spend(self, name: str, daily_limit: float, cost: int = 1) -> BudgetDecision:
        """A non-finite or non-positive limit disables the check."""
        if not _is_active_limit(daily_limit):
            return BudgetDecision(ok=True)
        used = self.get_used_today(name)
        if used + max(1, cost) > daily_limit:
            return BudgetDecision(ok=False, reason=f"daily-limit({used}/{daily_limit:g})")
        return BudgetDecision(ok=True)

    def remaining(self, name: str, daily_limit: float) -> float:
        if not _is_active_limit(daily_limit):
            return math.inf
        return max(0, daily_limit - self.get_used_today(name))

    def snapshot(self) -> Dict[str, Any]:
        day = self._today()
        used = {
            name: counter.units_used if counter.day == day else 0
            for name, counter in self._counters.items()
        }
        return {"day": day, "used": used}

    def reset(self) -> None:
        self._counters.clear()


def _is_active_limit(daily_limit: Any) -> bool:
    try:
        limit = float(daily_limit)
    except (TypeError, ValueError):
        return False
    return math.isfinite(limit) and limit > 0
