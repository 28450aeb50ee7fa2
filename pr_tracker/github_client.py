"""GitHub API wrapper: client construction, retries, and payload helpers."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from pr_tracker.errors import ApiError, InvalidResponseError, RateLimitedError
from pr_tracker.schema import RateLimitStatus

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
GITHUB_JSON_ACCEPT = "application/vnd.github+json"
GITHUB_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 10

ResponseHook = Callable[[httpx.Response], Awaitable[None]]

logger = logging.getLogger(__name__)


def build_github_client(
    token: str,
    *,
    base_url: str = GITHUB_API_BASE_URL,
    timeout_seconds: float = 20,
    trust_env: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
    response_hooks: list[ResponseHook] | None = None,
) -> httpx.AsyncClient:
    """Build an authenticated GitHub HTTP client."""
    headers = {
        "Accept": GITHUB_JSON_ACCEPT,
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
    }
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=timeout_seconds,
        trust_env=trust_env,
        transport=transport,
        event_hooks={"response": list(response_hooks or [])},
    )


def parse_rate_limit(response: httpx.Response) -> RateLimitStatus | None:
    """Read X-RateLimit-* headers, if present."""
    remaining = _parse_int_header(response, "X-RateLimit-Remaining")
    limit = _parse_int_header(response, "X-RateLimit-Limit")
    reset_epoch = _parse_int_header(response, "X-RateLimit-Reset")
    if remaining is None and limit is None and reset_epoch is None:
        return None
    reset_at = datetime.fromtimestamp(reset_epoch, tz=UTC) if reset_epoch is not None else None
    return RateLimitStatus(remaining=remaining, limit=limit, reset_at=reset_at)


def _parse_int_header(response: httpx.Response, name: str) -> int | None:
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _is_retryable_status(status_code: int) -> bool:
    """Return whether a status code is retryable under policy."""
    return status_code == 429 or 500 <= status_code < 600


def _is_rate_limit_exhausted(response: httpx.Response) -> bool:
    """Primary rate limit: 403 with no remaining requests."""
    return response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0"


def _parse_retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse Retry-After header as seconds if present and valid."""
    retry_after = response.headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        parsed_value = float(retry_after)
    except ValueError:
        return None
    if parsed_value < 0:
        return None
    return parsed_value


def _compute_retry_delay_seconds(response: httpx.Response, *, attempt_number: int) -> float:
    """Compute retry delay from Retry-After header or exponential backoff."""
    retry_after_seconds = _parse_retry_after_seconds(response)
    if retry_after_seconds is not None:
        return retry_after_seconds
    return DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt_number - 1))


async def _sleep_for_retry(seconds: float) -> None:
    """Sleep helper for retry delays (wrapped for deterministic tests)."""
    await asyncio.sleep(seconds)


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success GitHub API response."""
    message = f"GitHub API request failed with status {response.status_code} for '{endpoint}'."
    if response.status_code == 429 or _is_rate_limit_exhausted(response):
        rate_limit = parse_rate_limit(response)
        raise RateLimitedError(
            message,
            reset_at=rate_limit.reset_at if rate_limit is not None else None,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise ApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


async def request_with_retries(
    client: httpx.AsyncClient,
    endpoint: str,
    *,
    params: dict[str, Any] | None = None,
    max_attempts: int = GITHUB_MAX_RETRIES,
) -> httpx.Response:
    """Perform a GET request with retry handling for 429/5xx responses."""
    for attempt_number in range(1, max_attempts + 1):
        try:
            response = await client.get(endpoint, params=params)
        except httpx.HTTPError as error:
            raise ApiError(
                f"GitHub API request failed for '{endpoint}': {error}",
                endpoint=endpoint,
                cause=error,
            ) from error

        if response.status_code < 400:
            return response

        should_retry = _is_retryable_status(response.status_code) and attempt_number < max_attempts
        if not should_retry:
            _raise_http_error(response, endpoint)

        delay_seconds = _compute_retry_delay_seconds(response, attempt_number=attempt_number)
        logger.debug(
            "Retrying %s after status %s in %.2fs.", endpoint, response.status_code, delay_seconds
        )
        await _sleep_for_retry(delay_seconds)

    raise RuntimeError("Unexpected retry loop exit without a response.")


def _decode_json(response: httpx.Response, endpoint: str) -> object:
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise InvalidResponseError(
            f"GitHub returned a non-JSON body for '{endpoint}'.",
            status_code=response.status_code,
            endpoint=endpoint,
            cause=error,
        ) from error


def ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise InvalidResponseError(
            f"Expected JSON object for {context}.",
            endpoint=context,
        )
    return value


async def request_json(
    client: httpx.AsyncClient,
    endpoint: str,
    *,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Perform a JSON request against GitHub API."""
    response = await request_with_retries(client, endpoint, params=params)
    return ensure_mapping(_decode_json(response, endpoint), context=endpoint)


async def request_json_list(
    client: httpx.AsyncClient,
    endpoint: str,
    *,
    params: dict[str, Any] | None = None,
) -> list[dict[str, Any]]:
    """Perform a JSON request that returns an array of objects."""
    response = await request_with_retries(client, endpoint, params=params)
    payload = _decode_json(response, endpoint)
    if not isinstance(payload, list):
        raise InvalidResponseError(
            "Expected JSON array in GitHub response.",
            endpoint=endpoint,
        )
    rows: list[dict[str, Any]] = []
    for item in payload:
        if not isinstance(item, dict):
            raise InvalidResponseError(
                "Expected all array items to be JSON objects in GitHub response.",
                endpoint=endpoint,
            )
        rows.append(item)
    return rows


async def request_paginated_list(
    client: httpx.AsyncClient,
    endpoint: str,
    *,
    params: dict[str, Any] | None = None,
    per_page: int = DEFAULT_PAGE_SIZE,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> list[dict[str, Any]]:
    """Fetch list pages sequentially until a short page or the page cap."""
    rows: list[dict[str, Any]] = []
    page = 1
    while page <= max_pages:
        page_params = {**(params or {}), "per_page": per_page, "page": page}
        page_rows = await request_json_list(client, endpoint, params=page_params)
        rows.extend(page_rows)
        if len(page_rows) < per_page:
            break
        page += 1
    return rows


def require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise InvalidResponseError(
            f"Expected string field '{key}' in GitHub response.",
            endpoint=endpoint,
        )
    return value


def require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidResponseError(
            f"Expected integer field '{key}' in GitHub response.",
            endpoint=endpoint,
        )
    return value


def require_object(payload: dict[str, Any], *, key: str, endpoint: str) -> dict[str, Any]:
    """Read a required object field from payload."""
    value = payload.get(key)
    if not isinstance(value, dict):
        raise InvalidResponseError(
            f"Expected object field '{key}' in GitHub response.",
            endpoint=endpoint,
        )
    return value


def optional_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str | None:
    """Read a string-or-null field from payload."""
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise InvalidResponseError(
            f"Expected '{key}' to be a string or null in GitHub response.",
            endpoint=endpoint,
        )
    return value
