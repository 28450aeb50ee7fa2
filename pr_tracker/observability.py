"""Logging setup and refresh telemetry."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pr_tracker.schema import RateLimitStatus

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
MAX_RECORDED_ERRORS = 20


def configure_logging(*, verbose: bool = False) -> None:
    """Send tracker logs to stderr; DEBUG when verbose, WARNING otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )
    logging.getLogger("httpx").setLevel(logging.INFO if verbose else logging.WARNING)


@dataclass(slots=True)
class RefreshTelemetry:
    """Redacted refresh telemetry summary; `errors` keeps only the most recent failure messages."""

    refreshes: int = 0
    failures: int = 0
    last_item_count: int = 0
    last_duration_seconds: float = 0.0
    last_truncated: bool = False
    last_refreshed_at: datetime | None = None
    rate_limit: RateLimitStatus = field(default_factory=RateLimitStatus)
    errors: deque[str] = field(default_factory=lambda: deque(maxlen=MAX_RECORDED_ERRORS))

    def record_success(
        self,
        *,
        item_count: int,
        duration_seconds: float,
        truncated: bool,
        rate_limit: RateLimitStatus,
    ) -> None:
        self.refreshes += 1
        self.last_item_count = item_count
        self.last_duration_seconds = duration_seconds
        self.last_truncated = truncated
        self.last_refreshed_at = datetime.now(tz=UTC)
        self.rate_limit = rate_limit

    def record_failure(self, message: str) -> None:
        self.failures += 1
        self.errors.append(message)
