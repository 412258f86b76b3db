"""Short per-upstream suppression after a 429."""
import time
from typing import Dict, Optional

from app.cache.core import Clock


class CooldownTracker:
    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._until: Dict[str, float] = {}

    def set_cooldown(self, name: str, seconds: float) -> None:
        self._until[name] = self._clock() + max(0.0, seconds)

    def get_cooldown_remaining(self, name: str) -> float:
        """Remaining cooldown in milliseconds."""
        until = self._until.get(name, 0.0)
        return max(0.0, (until - self._clock()) * 1000)

    def is_cooling_down(self, name: str) -> bool:
        return self.get_cooldown_remaining(name) > 0

    def snapshot(self) -> Dict[str, float]:
        return {
            name: round(self.get_cooldown_remaining(name))
            for name in self._until
            if self.is_cooling_down(name)
        }

    def reset(self) -> None:
        self._until.clear()


def cooldown_seconds_for(
    retry_after: Optional[str],
    minimum: int = 10,
    maximum: int = 120,
    default: int = 30,
) -> int:
    """Clamp an upstream Retry-After hint into [minimum, maximum]."""
    try:
        seconds = int(str(retry_after).strip())
    except (TypeError, ValueError):
        return default
    return min(maximum, max(minimum, seconds))
