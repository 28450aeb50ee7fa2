"""Enumerate repositories the authenticated user can access."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from pr_tracker.errors import TrackerError, is_unauthorized
from pr_tracker.fanout import gather_settled
from pr_tracker.github_client import (
    request_json_list,
    request_paginated_list,
    require_object,
    require_str,
)
from pr_tracker.schema import Repository

DEFAULT_MAX_CONCURRENCY = 8

logger = logging.getLogger(__name__)


def _parse_repository_rows(
    rows: list[dict[str, Any]],
    *,
    endpoint: str,
    owner: str | None = None,
) -> list[Repository]:
    repositories: list[Repository] = []
    for row in rows:
        name = row.get("name")
        if not isinstance(name, str) or not name:
            continue
        if owner is None:
            owner_payload = require_object(row, key="owner", endpoint=endpoint)
            repo_owner = require_str(owner_payload, key="login", endpoint=endpoint)
        else:
            repo_owner = owner
        repositories.append(Repository(owner=repo_owner, name=name))
    return repositories


async def list_user_repositories(*, client: httpx.AsyncClient) -> list[Repository]:
    """List repositories owned by or shared with the authenticated user."""
    endpoint = "/user/repos"
    rows = await request_paginated_list(client, endpoint)
    return _parse_repository_rows(rows, endpoint=endpoint)


async def list_user_organizations(*, client: httpx.AsyncClient) -> list[str]:
    """List organization logins the authenticated user belongs to."""
    endpoint = "/user/orgs"
    rows = await request_json_list(client, endpoint)
    return [require_str(row, key="login", endpoint=endpoint) for row in rows]


async def list_organization_repositories(
    *, client: httpx.AsyncClient, organization: str
) -> list[Repository]:
    """List repositories of one organization."""
    endpoint = f"/orgs/{organization}/repos"
    rows = await request_paginated_list(client, endpoint)
    return _parse_repository_rows(rows, endpoint=endpoint, owner=organization)


async def discover_repositories(
    *,
    client: httpx.AsyncClient,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
) -> list[Repository]:
    """Collect own repositories plus the repositories of every organization.

    A failing organization contributes no repositories instead of aborting
    discovery. The result is the plain union, in no particular order.
    """
    repositories = await list_user_repositories(client=client)

    try:
        organizations = await list_user_organizations(client=client)
    except TrackerError as error:
        if is_unauthorized(error):
            raise
        logger.warning("Could not fetch organizations: %s", error)
        organizations = []

    async def list_for(organization: str) -> list[Repository]:
        return await list_organization_repositories(client=client, organization=organization)

    outcomes = await gather_settled(organizations, list_for, max_concurrency=max_concurrency)
    for outcome in outcomes:
        if outcome.ok and outcome.value is not None:
            repositories.extend(outcome.value)
        else:
            logger.warning("Could not fetch repos for org %s: %s", outcome.key, outcome.error)

    logger.debug(
        "Discovered %d repositories across %d organizations.",
        len(repositories),
        len(organizations),
    )
    return repositories
