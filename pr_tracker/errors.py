"""Error taxonomy and failure classification for the sync engine."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import datetime

import httpx
from pydantic import ValidationError

logger = logging.getLogger(__name__)

UNAUTHORIZED_PATTERN = re.compile(r"\b401\b|unauthorized|bad credentials", re.IGNORECASE)


class TrackerError(RuntimeError):
    """Base class for every failure surfaced by the tracker."""


class NotAuthenticatedError(TrackerError):
    """Raised when no valid session exists."""

    def __init__(self, message: str = "Not authenticated. Please add your GitHub token.") -> None:
        super().__init__(message)


class NotConfiguredError(TrackerError):
    """Raised when the session was never given a token."""

    def __init__(self, message: str = "Token not configured.") -> None:
        super().__init__(message)


class ApiError(TrackerError):
    """Raised when a GitHub API request fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint
        self.cause = cause


class RateLimitedError(ApiError):
    """Raised when GitHub API rate limiting prevents request completion."""

    def __init__(
        self,
        message: str,
        *,
        reset_at: datetime | None = None,
        status_code: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, endpoint=endpoint)
        self.reset_at = reset_at


class InvalidResponseError(ApiError):
    """Raised when a GitHub payload has an unexpected shape."""


def is_unauthorized(error: BaseException) -> bool:
    """Return whether an error describes an HTTP unauthorized condition."""
    if isinstance(error, ApiError):
        if error.status_code is not None:
            return error.status_code == 401
        if error.cause is not None:
            return is_unauthorized(error.cause)
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 401
    if isinstance(error, httpx.HTTPError):
        return False
    # Free-text fallback for errors without a status code.
    return UNAUTHORIZED_PATTERN.search(str(error)) is not None


def classify_error(error: BaseException) -> TrackerError:
    """Map any failure from the session or fetch path into the taxonomy."""
    if isinstance(error, TrackerError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        return ApiError(
            f"GitHub API error: {error}",
            status_code=error.response.status_code,
            endpoint=str(error.request.url),
            cause=error,
        )
    if isinstance(error, httpx.HTTPError):
        return ApiError(f"GitHub API error: network failure ({error}).", cause=error)
    if isinstance(error, (json.JSONDecodeError, ValidationError)):
        return InvalidResponseError(
            "Invalid response from GitHub.",
            cause=error,
        )
    return ApiError(f"GitHub API error: {error}", cause=error)


class ErrorClassifier:
    """Classify refresh failures and revoke credentials on auth failures."""

    def __init__(self, revoke: Callable[[], Awaitable[None]]) -> None:
        self._revoke = revoke

    async def handle(self, error: BaseException) -> TrackerError:
        """Classify an error; await revocation first when it is an auth failure."""
        classified = classify_error(error)
        if is_unauthorized(classified):
            logger.warning("Authentication failure detected; signing out.")
            await self._revoke()
        return classified
