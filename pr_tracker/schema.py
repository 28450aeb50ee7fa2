"""Domain models for tracked pull requests and snapshots."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class PullRequestState(StrEnum):
    """Resolved pull request state."""

    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


class StateFilter(StrEnum):
    """Supported list filters."""

    ALL = "all"
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"
    DRAFT = "draft"


class GitHubUser(BaseModel):
    """Authenticated GitHub identity."""

    model_config = ConfigDict(frozen=True)

    id: int
    login: str = Field(min_length=1)
    name: str | None = None
    avatar_url: str | None = None


class Repository(BaseModel):
    """Repository reference produced by discovery."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class PullRequest(BaseModel):
    """Pull request with the fields needed for display."""

    model_config = ConfigDict(frozen=True)

    id: int
    number: int = Field(ge=1)
    title: str
    state: PullRequestState
    is_draft: bool = False
    repository_owner: str = Field(min_length=1)
    repository_name: str = Field(min_length=1)
    author: str
    avatar_url: str | None = None
    comments_count: int = Field(default=0, ge=0)
    html_url: str = Field(min_length=1)
    created_at: datetime
    updated_at: datetime

    @property
    def repository_full_name(self) -> str:
        """Full repository path (owner/repo)."""
        return f"{self.repository_owner}/{self.repository_name}"


class Snapshot(BaseModel):
    """Current ordered, deduplicated view of all known pull requests."""

    model_config = ConfigDict(frozen=True)

    pull_requests: tuple[PullRequest, ...] = ()
    updated_at: datetime
    truncated: bool = False


class RepositoryGroup(BaseModel):
    """Pull requests of one repository, in snapshot order."""

    model_config = ConfigDict(frozen=True)

    repository: str
    pull_requests: tuple[PullRequest, ...]


class StateCounts(BaseModel):
    """Per-state tallies used for badges."""

    model_config = ConfigDict(frozen=True)

    open: int = 0
    merged: int = 0
    closed: int = 0
    draft: int = 0

    @property
    def dominant_state(self) -> PullRequestState:
        counts = [
            (PullRequestState.OPEN, self.open),
            (PullRequestState.MERGED, self.merged),
            (PullRequestState.CLOSED, self.closed),
        ]
        return max(counts, key=lambda entry: entry[1])[0]

    @property
    def dominant_count(self) -> int:
        return {
            PullRequestState.OPEN: self.open,
            PullRequestState.MERGED: self.merged,
            PullRequestState.CLOSED: self.closed,
        }[self.dominant_state]


class ScopeValidation(BaseModel):
    """Outcome of token scope introspection."""

    model_config = ConfigDict(frozen=True)

    granted: frozenset[str] = frozenset()
    missing: frozenset[str] = frozenset()
    warnings: frozenset[str] = frozenset()

    @property
    def ok(self) -> bool:
        return not self.missing


class RateLimitStatus(BaseModel):
    """Last known rate limit reported by GitHub."""

    model_config = ConfigDict(frozen=True)

    remaining: int | None = None
    limit: int | None = None
    reset_at: datetime | None = None
