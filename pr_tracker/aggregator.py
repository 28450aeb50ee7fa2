"""Merge, filter and group pull requests; owner of the current snapshot."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

from pr_tracker.schema import (
    PullRequest,
    PullRequestState,
    RepositoryGroup,
    Snapshot,
    StateCounts,
    StateFilter,
)


def merge_pull_requests(
    items: Iterable[PullRequest],
    *,
    updated_at: datetime | None = None,
    truncated: bool = False,
) -> Snapshot:
    """Deduplicate by id and order by last update, most recent first."""
    unique: dict[int, PullRequest] = {}
    for item in items:
        unique[item.id] = item
    ordered = sorted(unique.values(), key=lambda pr: pr.updated_at, reverse=True)
    return Snapshot(
        pull_requests=tuple(ordered),
        updated_at=updated_at or datetime.now(tz=UTC),
        truncated=truncated,
    )


def _matches_state(pr: PullRequest, state_filter: StateFilter) -> bool:
    if state_filter is StateFilter.OPEN:
        return pr.state is PullRequestState.OPEN and not pr.is_draft
    if state_filter is StateFilter.MERGED:
        return pr.state is PullRequestState.MERGED
    if state_filter is StateFilter.CLOSED:
        return pr.state is PullRequestState.CLOSED
    if state_filter is StateFilter.DRAFT:
        return pr.is_draft
    return True


def _matches_query(pr: PullRequest, query: str, number: int | None) -> bool:
    if number is not None and pr.number == number:
        return True
    return query in pr.title.lower() or query in pr.repository_name.lower()


def filter_pull_requests(
    items: Snapshot | Iterable[PullRequest],
    state_filter: StateFilter = StateFilter.ALL,
    search_query: str = "",
) -> list[PullRequest]:
    """Apply a state filter and an optional number/title/repository search."""
    pull_requests = items.pull_requests if isinstance(items, Snapshot) else tuple(items)
    state_filter = StateFilter(state_filter)
    result = [pr for pr in pull_requests if _matches_state(pr, state_filter)]
    if not search_query:
        return result

    try:
        number: int | None = int(search_query)
    except ValueError:
        number = None
    query = search_query.lower()
    return [pr for pr in result if _matches_query(pr, query, number)]


def group_by_repository(items: Iterable[PullRequest]) -> list[RepositoryGroup]:
    """Group by owner/name, groups alphabetical, item order preserved."""
    grouped: dict[str, list[PullRequest]] = {}
    for pr in items:
        grouped.setdefault(pr.repository_full_name, []).append(pr)
    return [
        RepositoryGroup(repository=repository, pull_requests=tuple(grouped[repository]))
        for repository in sorted(grouped)
    ]


def count_states(items: Iterable[PullRequest]) -> StateCounts:
    """Tally open (non-draft), merged, closed and draft pull requests."""
    pull_requests = list(items)
    return StateCounts(
        open=sum(
            1 for pr in pull_requests if pr.state is PullRequestState.OPEN and not pr.is_draft
        ),
        merged=sum(1 for pr in pull_requests if pr.state is PullRequestState.MERGED),
        closed=sum(1 for pr in pull_requests if pr.state is PullRequestState.CLOSED),
        draft=sum(1 for pr in pull_requests if pr.is_draft),
    )


class Aggregator:
    """Single owner of the current snapshot; replaced wholesale, never patched."""

    def __init__(self) -> None:
        self._snapshot: Snapshot | None = None

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    def replace(self, items: Iterable[PullRequest], *, truncated: bool = False) -> Snapshot:
        self._snapshot = merge_pull_requests(items, truncated=truncated)
        return self._snapshot

    def clear(self) -> None:
        self._snapshot = None
