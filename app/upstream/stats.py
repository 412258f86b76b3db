"""Per-provider outcome counters."""
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProviderOutcome:
    success: int = 0
    empty: int = 0
    error: int = 0
    articles: int = 0
    last_success: Optional[str] = None
    last_error: Optional[str] = None
    last_error_message: Optional[str] = None


class ProviderStats:
    def __init__(self):
        self.started_at = _now_iso()
        self.total_requests = 0
        self._providers: Dict[str, ProviderOutcome] = {}

    def _ensure(self, name: str) -> ProviderOutcome:
        return self._providers.setdefault(name, ProviderOutcome())

    def record_success(self, name: str, articles: int = 0) -> None:
        outcome = self._ensure(name)
        outcome.success += 1
        outcome.articles += articles
        outcome.last_success = _now_iso()
        self.total_requests += 1

    def record_empty(self, name: str) -> None:
        self._ensure(name).empty += 1
        self.total_requests += 1

    def record_error(self, name: str, message: Optional[str] = None) -> None:
        outcome = self._ensure(name)
        outcome.error += 1
        outcome.last_error = _now_iso()
        outcome.last_error_message = message
        self.total_requests += 1

    def get_stats(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "total_requests": self.total_requests,
            "providers": {name: asdict(o) for name, o in self._providers.items()},
        }

    def reset(self) -> None:
        self.total_requests = 0
        self._providers.clear()
