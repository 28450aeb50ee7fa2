"""Tracker facade: authentication lifecycle, refresh, and the exposed status."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from pr_tracker.aggregator import (
    Aggregator,
    count_states,
    filter_pull_requests,
    group_by_repository,
)
from pr_tracker.auth import AuthSession
from pr_tracker.config import TrackerSettings
from pr_tracker.credentials import CredentialStore, CredentialStoreError
from pr_tracker.errors import ErrorClassifier, TrackerError
from pr_tracker.fetcher import PullRequestFetcher
from pr_tracker.observability import RefreshTelemetry
from pr_tracker.scheduler import RefreshScheduler, SchedulerState, SleepFunction
from pr_tracker.schema import (
    GitHubUser,
    PullRequest,
    RepositoryGroup,
    ScopeValidation,
    Snapshot,
    StateCounts,
    StateFilter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TrackerStatus:
    """Read-only view handed to consumers."""

    is_authenticated: bool
    is_loading: bool
    snapshot: Snapshot | None
    error: str | None
    user: GitHubUser | None


def format_scope_error(validation: ScopeValidation) -> str:
    """Build the user-facing message for a token lacking required scopes."""
    missing = "\n".join(f"- {scope}" for scope in sorted(validation.missing))
    return (
        "Missing required permissions:\n"
        f"{missing}\n"
        "Please create a new token with: repo (full control of repositories) "
        "and read:org (read organization data)."
    )


StatusListener = Callable[[TrackerStatus], None]


class PullRequestTracker:
    """Wire session, fetcher, aggregator, scheduler and error classifier."""

    def __init__(
        self,
        credential_store: CredentialStore,
        *,
        settings: TrackerSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunction | None = None,
    ) -> None:
        self.settings = settings or TrackerSettings()
        self.session = AuthSession(credential_store, settings=self.settings, transport=transport)
        self.fetcher = PullRequestFetcher(self.session, self.settings)
        self.aggregator = Aggregator()
        self.classifier = ErrorClassifier(self.sign_out)
        self.scheduler = RefreshScheduler(
            self.refresh,
            active_interval=self.settings.active_interval_seconds,
            background_interval=self.settings.background_interval_seconds,
            sleep=sleep,
        )
        self.telemetry = RefreshTelemetry()
        self._error: str | None = None
        self._is_loading = False
        self._listeners: list[StatusListener] = []

    @property
    def status(self) -> TrackerStatus:
        return TrackerStatus(
            is_authenticated=self.session.is_configured,
            is_loading=self._is_loading,
            snapshot=self.aggregator.snapshot,
            error=self._error,
            user=self.session.user,
        )

    async def load_saved_credentials(self) -> bool:
        """Restore a saved token and start refreshing."""
        if not self.session.load_saved_credentials():
            return False
        await self.scheduler.activate()
        return self.session.is_configured

    def subscribe(self, listener: StatusListener) -> None:
        """Call `listener` with the new status after every refresh attempt."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        status = self.status
        for listener in self._listeners:
            listener(status)

    async def authenticate(self, token: str, *, start_refresh: bool = True) -> bool:
        """Validate a token, persist it only when valid, and start refreshing."""
        self._is_loading = True
        self._error = None
        try:
            self.session.configure(token)
            await self.session.get_current_user()
            validation = await self.session.validate_scopes()
            if not validation.ok:
                self._error = format_scope_error(validation)
                await self._discard_credentials()
                return False
            self.session.persist()
        except (TrackerError, CredentialStoreError, ValueError) as error:
            self._error = f"Authentication failed: {error}"
            await self._discard_credentials()
            return False
        finally:
            self._is_loading = False

        if start_refresh:
            await self.scheduler.activate()
        return True

    async def _discard_credentials(self) -> None:
        self.scheduler.stop()
        self.aggregator.clear()
        try:
            await self.session.revoke()
        except CredentialStoreError as error:
            logger.warning("Could not delete stored credential: %s", error)

    async def sign_out(self) -> None:
        """Stop refreshing, delete the stored credential, clear snapshot and session."""
        self._error = None
        await self._discard_credentials()

    async def refresh(self) -> None:
        """Fetch, merge and publish a new snapshot; classify failures."""
        if not self.session.is_configured:
            return
        generation = self.session.generation
        self._is_loading = True
        self._error = None
        started = time.monotonic()
        try:
            result = await self.fetcher.fetch()
        except Exception as error:
            classified = await self.classifier.handle(error)
            self.telemetry.record_failure(str(classified))
            self._error = str(classified)
            logger.warning("Refresh failed: %s", classified)
            self._is_loading = False
            self._notify()
            return
        finally:
            self._is_loading = False

        if generation != self.session.generation:
            logger.info("Session changed during refresh; discarding result.")
            return
        snapshot = self.aggregator.replace(result.pull_requests, truncated=result.truncated)
        self.telemetry.record_success(
            item_count=len(snapshot.pull_requests),
            duration_seconds=time.monotonic() - started,
            truncated=snapshot.truncated,
            rate_limit=self.session.rate_limit,
        )
        logger.info("Refreshed %d pull requests.", len(snapshot.pull_requests))
        self._notify()

    async def refresh_now(self) -> bool:
        """Manual refresh through the scheduler's in-flight guard."""
        return await self.scheduler.tick()

    def set_visibility(self, visible: bool) -> None:
        self.scheduler.set_visibility(visible)

    @property
    def scheduler_state(self) -> SchedulerState:
        return self.scheduler.state

    def pull_requests(
        self,
        state_filter: StateFilter = StateFilter.ALL,
        search_query: str = "",
    ) -> list[PullRequest]:
        snapshot = self.aggregator.snapshot
        if snapshot is None:
            return []
        return filter_pull_requests(snapshot, state_filter, search_query)

    def grouped_pull_requests(
        self,
        state_filter: StateFilter = StateFilter.ALL,
        search_query: str = "",
    ) -> list[RepositoryGroup]:
        return group_by_repository(self.pull_requests(state_filter, search_query))

    def state_counts(self) -> StateCounts:
        return count_states(self.pull_requests())

