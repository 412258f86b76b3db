"""
Per-upstream circuit breaker.

closed --(failure burst)--> open --(open duration elapsed)--> half-open
half-open --(probe success)--> closed
half-open --(probe failure)--> open, with the open duration doubled (capped)
"""
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from app.cache.core import Clock

logger = logging.getLogger("upstream.breaker")


class BreakerStatus(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class BreakerState:
    status: BreakerStatus = BreakerStatus.CLOSED
    consecutive_failures: int = 0
    opened_at: float = 0.0
    open_duration_ms: int = 30_000
    half_open_probe_in_flight: bool = False
    opened_count: int = 0


@dataclass
class BreakerConfig:
    enabled: bool = True
    failure_burst: int = 4
    open_ms_base: int = 30_000
    open_ms_max: int = 5 * 60_000

    @classmethod
    def from_settings(cls, settings) -> "BreakerConfig":
        return cls(
            enabled=settings.breaker_enabled,
            failure_burst=settings.breaker_failure_burst,
            open_ms_base=settings.breaker_open_ms,
            open_ms_max=settings.breaker_open_ms_max,
        )


class CircuitBreaker:
    """Breaker states keyed by upstream name, created on first use."""

    def __init__(self, config: BreakerConfig = None, clock: Clock = time.time):
        self.config = config or BreakerConfig()
        self._clock = clock
        self._states: Dict[str, BreakerState] = {}

    def _ensure(self, name: str) -> BreakerState:
        state = self._states.get(name)
        if state is None:
            state = BreakerState(open_duration_ms=self.config.open_ms_base)
            self._states[name] = state
        return state

    def state_of(self, name: str) -> BreakerStatus:
        return self._ensure(name).status

    def allow_request(self, name: str) -> bool:
        """
        Whether a call to `name` may go out now.

        An open breaker whose duration has elapsed moves to half-open and hands
        out its single probe slot to this caller.
        """
        if not self.config.enabled:
            return True
        state = self._ensure(name)
        if state.status == BreakerStatus.CLOSED:
            return True
        if state.status == BreakerStatus.OPEN:
            elapsed_ms = (self._clock() - state.opened_at) * 1000
            if elapsed_ms < state.open_duration_ms:
                return False
            state.status = BreakerStatus.HALF_OPEN
            state.half_open_probe_in_flight = False
            logger.info(f"Breaker half-open for {name}, allowing one probe")
        if state.half_open_probe_in_flight:
            return False
        state.half_open_probe_in_flight = True
        return True

    def on_success(self, name: str) -> None:
        if not self.config.enabled:
            return
        state = self._ensure(name)
        if state.status != BreakerStatus.CLOSED:
            logger.info(f"Breaker closed for {name}")
        state.status = BreakerStatus.CLOSED
        state.consecutive_failures = 0
        state.half_open_probe_in_flight = False
        state.open_duration_ms = self.config.open_ms_base

    def on_failure(self, name: str, status: Optional[int] = None) -> None:
        if not self.config.enabled:
            return
        # 422 is a query problem, not upstream health
        if status == 422:
            return
        state = self._ensure(name)
        state.consecutive_failures += 1
        cfg = self.config

        if state.status == BreakerStatus.HALF_OPEN:
            doubled = max(cfg.open_ms_base, state.open_duration_ms * 2)
            self._open(name, state, min(cfg.open_ms_max, doubled))
            return

        if state.status == BreakerStatus.CLOSED and state.consecutive_failures >= cfg.failure_burst:
            duration = max(cfg.open_ms_base, state.open_duration_ms)
            self._open(name, state, min(cfg.open_ms_max, duration))

    def _open(self, name: str, state: BreakerState, duration_ms: int) -> None:
        state.status = BreakerStatus.OPEN
        state.opened_at = self._clock()
        state.opened_count += 1
        state.open_duration_ms = duration_ms
        state.half_open_probe_in_flight = False
        logger.warning(
            f"Breaker opened for {name} "
            f"(failures={state.consecutive_failures}, open_ms={duration_ms})"
        )

    def release_probe(self, name: str) -> None:
        """Free a half-open probe slot whose attempt said nothing about health."""
        state = self._states.get(name)
        if state is not None and state.status == BreakerStatus.HALF_OPEN:
            state.half_open_probe_in_flight = False

    def force_half_open(self, name: str) -> None:
        """Put a breaker in half-open with its probe slot free (tests)."""
        state = self._ensure(name)
        state.status = BreakerStatus.HALF_OPEN
        state.half_open_probe_in_flight = False

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        out = {}
        for name, state in self._states.items():
            row = asdict(state)
            row["status"] = state.status.value
            out[name] = row
        return out

    def reset(self) -> None:
        self._states.clear()
