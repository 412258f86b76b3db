"""Upstream error types."""
import re
from typing import List, Optional

_STATUS_IN_MESSAGE = re.compile(r"\b(\d{3})\b")


class UpstreamError(Exception):
    """A provider call failed (network error, non-2xx, timeout)."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retry_after: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_client_error(self) -> bool:
        # Query rejected by the upstream, not an upstream health signal
        return self.status == 422


class AllProvidersFailed(UpstreamError):
    """No provider produced a result; carries the per-attempt trail."""

    def __init__(
        self,
        message: str,
        details: Optional[List[str]] = None,
        attempts: Optional[List[str]] = None,
        attempts_detail: Optional[List[str]] = None,
        errors: Optional[List[str]] = None,
        status: Optional[int] = None,
        retry_after: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message, status=status, retry_after=retry_after)
        self.details = details or []
        self.attempts = attempts or []
        self.attempts_detail = attempts_detail or []
        self.errors = errors or []
        self.hint = hint


class NoProvidersConfigured(AllProvidersFailed):
    """Raised when no provider has credentials."""


def status_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by an error, or parsed from its message."""
    status = getattr(error, "status", None)
    if status is not None:
        try:
            return int(status)
        except (TypeError, ValueError):
            pass
    match = _STATUS_IN_MESSAGE.search(str(error))
    return int(match.group(1)) if match else None
