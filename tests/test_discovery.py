"""Unit tests for repository discovery."""

from __future__ import annotations

import httpx
import pytest
from factories import make_client

from pr_tracker.discovery import discover_repositories, list_organization_repositories
from pr_tracker.errors import ApiError


def _repo(name: str, owner: str) -> dict[str, object]:
    return {"name": name, "owner": {"login": owner}}


def _names(repositories) -> set[str]:
    return {repository.full_name for repository in repositories}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_discovery_unions_user_and_organization_repositories() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/user/repos":
            return httpx.Response(status_code=200, json=[_repo("dotfiles", "octocat")])
        if path == "/user/orgs":
            return httpx.Response(status_code=200, json=[{"login": "acme"}, {"login": "globex"}])
        if path == "/orgs/acme/repos":
            return httpx.Response(status_code=200, json=[{"name": "rocket"}, {"name": "anvil"}])
        if path == "/orgs/globex/repos":
            return httpx.Response(status_code=200, json=[{"name": "hammock"}])
        return httpx.Response(status_code=404)

    async with make_client(handler) as client:
        repositories = await discover_repositories(client=client)

    assert _names(repositories) == {
        "octocat/dotfiles",
        "acme/rocket",
        "acme/anvil",
        "globex/hammock",
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failing_organization_contributes_nothing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/user/repos":
            return httpx.Response(status_code=200, json=[_repo("dotfiles", "octocat")])
        if path == "/user/orgs":
            return httpx.Response(status_code=200, json=[{"login": "acme"}, {"login": "locked"}])
        if path == "/orgs/acme/repos":
            return httpx.Response(status_code=200, json=[{"name": "rocket"}])
        return httpx.Response(status_code=403, json={"message": "SSO required"})

    async with make_client(handler) as client:
        repositories = await discover_repositories(client=client)

    assert _names(repositories) == {"octocat/dotfiles", "acme/rocket"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_organization_listing_failure_is_tolerated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user/repos":
            return httpx.Response(status_code=200, json=[_repo("dotfiles", "octocat")])
        return httpx.Response(status_code=403)

    async with make_client(handler) as client:
        repositories = await discover_repositories(client=client)

    assert _names(repositories) == {"octocat/dotfiles"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unauthorized_organization_listing_propagates() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user/repos":
            return httpx.Response(status_code=200, json=[])
        return httpx.Response(status_code=401)

    async with make_client(handler) as client:
        with pytest.raises(ApiError) as exc_info:
            await discover_repositories(client=client)

    assert exc_info.value.status_code == 401


@pytest.mark.unit
@pytest.mark.asyncio
async def test_user_repository_failure_propagates() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=404)

    async with make_client(handler) as client:
        with pytest.raises(ApiError):
            await discover_repositories(client=client)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_organization_repositories_are_paginated() -> None:
    pages: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params["page"]
        pages.append(page)
        if page == "1":
            return httpx.Response(
                status_code=200, json=[{"name": f"repo-{i}"} for i in range(100)]
            )
        return httpx.Response(status_code=200, json=[{"name": "repo-100"}])

    async with make_client(handler) as client:
        repositories = await list_organization_repositories(client=client, organization="acme")

    assert pages == ["1", "2"]
    assert len(repositories) == 101
    assert all(repository.owner == "acme" for repository in repositories)
