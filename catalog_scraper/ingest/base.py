"""Fetch result type and HTTP status classification."""

from dataclasses import dataclass
from typing import Optional

# Statuses worth a second attempt at the batch level
RETRYABLE_BATCH_STATUSES = frozenset({429, 502, 503, 504, 520, 521, 522, 523, 524})

# Statuses that get the longer rate-limit backoff in the single-page fetcher
RATE_LIMIT_STATUSES = frozenset({429, 503})


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one page request."""

    success: bool
    body: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    # Final URL after redirects
    url: Optional[str] = None

    @classmethod
    def ok(cls, body: str, status_code: int = 200, url: Optional[str] = None) -> "FetchResult":
        return cls(success=True, body=body, status_code=status_code, url=url)

    @classmethod
    def failed(cls, error: str, status_code: Optional[int] = None) -> "FetchResult":
        return cls(success=False, status_code=status_code, error=error)

    @property
    def is_retryable(self) -> bool:
        """Failed with a transient HTTP status (transport errors are not retried here)."""
        return (
            not self.success
            and self.status_code is not None
            and self.status_code in RETRYABLE_BATCH_STATUSES
        )
