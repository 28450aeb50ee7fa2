"""Retrieve pull requests by search query or by per-repository listing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from pr_tracker.auth import AuthSession
from pr_tracker.config import FetchStrategy, TrackerSettings
from pr_tracker.discovery import discover_repositories
from pr_tracker.errors import InvalidResponseError, NotAuthenticatedError
from pr_tracker.fanout import gather_settled
from pr_tracker.github_client import (
    DEFAULT_MAX_PAGES,
    DEFAULT_PAGE_SIZE,
    request_json,
    request_json_list,
)
from pr_tracker.schema import PullRequest, PullRequestState, Repository

SEARCH_ENDPOINT = "/search/issues"

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Unordered pull requests from one fetch plus pagination bookkeeping."""

    pull_requests: tuple[PullRequest, ...]
    truncated: bool = False


def resolve_state(state: str, merged_at: object) -> PullRequestState:
    """Closed with a merge timestamp is merged; closed without is closed; else open."""
    if state == "closed":
        return PullRequestState.MERGED if merged_at is not None else PullRequestState.CLOSED
    return PullRequestState.OPEN


def parse_repository_from_url(html_url: str) -> Repository | None:
    """Extract owner/name from https://host/owner/repo/pull/number."""
    parts = html_url.split("/")
    if len(parts) < 5 or not parts[3] or not parts[4]:
        return None
    return Repository(owner=parts[3], name=parts[4])


def _build_pull_request(fields: dict[str, Any], *, endpoint: str) -> PullRequest:
    try:
        return PullRequest.model_validate(fields)
    except ValidationError as error:
        raise InvalidResponseError(
            f"Unexpected pull request payload in GitHub response for '{endpoint}'.",
            endpoint=endpoint,
            cause=error,
        ) from error


def _user_fields(item: dict[str, Any]) -> tuple[str, str | None]:
    user = item.get("user")
    if not isinstance(user, dict):
        return "unknown", None
    login = user.get("login")
    avatar_url = user.get("avatar_url")
    return (
        login if isinstance(login, str) else "unknown",
        avatar_url if isinstance(avatar_url, str) else None,
    )


def parse_search_item(item: dict[str, Any], *, endpoint: str) -> PullRequest | None:
    """Normalize one search result; None for items that are not usable PRs."""
    pull_request = item.get("pull_request")
    if not isinstance(pull_request, dict) or not pull_request.get("html_url"):
        return None
    html_url = item.get("html_url")
    if not isinstance(html_url, str):
        raise InvalidResponseError(
            "Expected string field 'html_url' in GitHub response.",
            endpoint=endpoint,
        )
    repository = parse_repository_from_url(html_url)
    if repository is None:
        logger.debug("Dropping search item with unexpected URL %s.", html_url)
        return None

    author, avatar_url = _user_fields(item)
    return _build_pull_request(
        {
            "id": item.get("id"),
            "number": item.get("number"),
            "title": item.get("title"),
            "state": resolve_state(str(item.get("state")), pull_request.get("merged_at")),
            "is_draft": bool(item.get("draft") or False),
            "repository_owner": repository.owner,
            "repository_name": repository.name,
            "author": author,
            "avatar_url": avatar_url,
            "comments_count": item.get("comments") or 0,
            "html_url": pull_request["html_url"],
            "created_at": item.get("created_at"),
            "updated_at": item.get("updated_at"),
        },
        endpoint=endpoint,
    )


async def search_pull_requests(
    *,
    client: httpx.AsyncClient,
    login: str,
    per_page: int = DEFAULT_PAGE_SIZE,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> FetchResult:
    """Page through every PR authored by `login`, most recently updated first.

    Pages are requested strictly in order. Stops on a short page or after
    `max_pages`; hitting the cap on a full page marks the result truncated.
    """
    query = f"is:pr author:{login}"
    pull_requests: list[PullRequest] = []
    truncated = False
    page = 1
    while True:
        params = {
            "q": query,
            "per_page": per_page,
            "page": page,
            "sort": "updated",
            "order": "desc",
        }
        payload = await request_json(client, SEARCH_ENDPOINT, params=params)
        items = payload.get("items")
        if not isinstance(items, list):
            raise InvalidResponseError(
                "Expected array field 'items' in GitHub search response.",
                endpoint=SEARCH_ENDPOINT,
            )
        for item in items:
            if not isinstance(item, dict):
                raise InvalidResponseError(
                    "Expected all search items to be JSON objects in GitHub response.",
                    endpoint=SEARCH_ENDPOINT,
                )
            parsed = parse_search_item(item, endpoint=SEARCH_ENDPOINT)
            if parsed is not None:
                pull_requests.append(parsed)

        if len(items) < per_page:
            break
        if page >= max_pages:
            truncated = True
            logger.info("Search results truncated after %d pages.", page)
            break
        page += 1

    return FetchResult(pull_requests=tuple(pull_requests), truncated=truncated)


def parse_pull_row(
    row: dict[str, Any], *, repository: Repository, endpoint: str
) -> PullRequest | None:
    """Normalize one row of the pulls listing; None when title or URL is absent."""
    title = row.get("title")
    html_url = row.get("html_url")
    if not isinstance(title, str) or not isinstance(html_url, str):
        return None
    author, avatar_url = _user_fields(row)
    return _build_pull_request(
        {
            "id": row.get("id"),
            "number": row.get("number"),
            "title": title,
            "state": resolve_state(str(row.get("state")), row.get("merged_at")),
            "is_draft": bool(row.get("draft") or False),
            "repository_owner": repository.owner,
            "repository_name": repository.name,
            "author": author,
            "avatar_url": avatar_url,
            "comments_count": 0,
            "html_url": html_url,
            "created_at": row.get("created_at"),
            "updated_at": row.get("updated_at"),
        },
        endpoint=endpoint,
    )


async def fetch_repository_pull_requests(
    *, client: httpx.AsyncClient, repository: Repository
) -> list[PullRequest]:
    """Fetch pull requests of one repository in every state."""
    endpoint = f"/repos/{repository.owner}/{repository.name}/pulls"
    rows = await request_json_list(
        client, endpoint, params={"state": "all", "per_page": DEFAULT_PAGE_SIZE}
    )
    pull_requests: list[PullRequest] = []
    for row in rows:
        parsed = parse_pull_row(row, repository=repository, endpoint=endpoint)
        if parsed is not None:
            pull_requests.append(parsed)
    return pull_requests


async def fetch_pull_requests_per_repository(
    *,
    client: httpx.AsyncClient,
    repositories: list[Repository],
    max_concurrency: int,
) -> list[PullRequest]:
    """Fetch every repository concurrently; any failure fails the whole fetch."""

    async def fetch_one(repository: Repository) -> list[PullRequest]:
        return await fetch_repository_pull_requests(client=client, repository=repository)

    outcomes = await gather_settled(repositories, fetch_one, max_concurrency=max_concurrency)
    pull_requests: list[PullRequest] = []
    for outcome in outcomes:
        if outcome.error is not None:
            raise outcome.error
        pull_requests.extend(outcome.value or [])
    return pull_requests


class PullRequestFetcher:
    """Fetch pull requests for the current session with the configured strategy."""

    def __init__(self, session: AuthSession, settings: TrackerSettings | None = None) -> None:
        self._session = session
        self._settings = settings or TrackerSettings()

    async def fetch(self, strategy: FetchStrategy | None = None) -> FetchResult:
        if not self._session.is_configured:
            raise NotAuthenticatedError()
        strategy = strategy or self._settings.strategy
        if strategy is FetchStrategy.PER_REPOSITORY:
            return await self._fetch_per_repository()
        return await self._fetch_by_search()

    async def _fetch_by_search(self) -> FetchResult:
        user = await self._session.get_current_user()
        async with self._session.open_client() as client:
            return await search_pull_requests(
                client=client,
                login=user.login,
                per_page=self._settings.search_page_size,
                max_pages=self._settings.search_max_pages,
            )

    async def _fetch_per_repository(self) -> FetchResult:
        async with self._session.open_client() as client:
            repositories = await discover_repositories(
                client=client, max_concurrency=self._settings.max_concurrency
            )
            pull_requests = await fetch_pull_requests_per_repository(
                client=client,
                repositories=repositories,
                max_concurrency=self._settings.max_concurrency,
            )
        return FetchResult(pull_requests=tuple(pull_requests))
