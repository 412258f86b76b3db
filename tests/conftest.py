"""
Shared fixtures: a controllable clock and quiet settings.
"""
import pytest

from config.settings import Settings

# 2023-11-14T22:13:20Z
START = 1_700_000_000.0


class FakeClock:
    """Callable clock returning epoch seconds; only moves when told to."""

    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_settings():
    """Settings isolated from .env, with background work off unless asked for."""
    def _make(**overrides):
        values = {
            "gnews_api": "test-key",
            "enable_l2_cache": False,
            "enable_bg_revalidate": False,
            "prefetch_enabled": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make
