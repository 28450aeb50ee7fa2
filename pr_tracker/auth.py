"""Authenticated session: token ownership, scope checks, identity."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from pr_tracker.config import TrackerSettings
from pr_tracker.credentials import GITHUB_TOKEN_ACCOUNT, CredentialStore
from pr_tracker.errors import NotAuthenticatedError, NotConfiguredError
from pr_tracker.github_client import (
    build_github_client,
    optional_str,
    parse_rate_limit,
    request_json,
    request_with_retries,
    require_int,
    require_str,
)
from pr_tracker.schema import GitHubUser, RateLimitStatus, ScopeValidation

REQUIRED_SCOPES = ("repo",)
ORG_READ_SCOPES = frozenset({"read:org", "admin:org"})
ORG_READ_WARNING = "read:org"
SCOPES_HEADER = "X-OAuth-Scopes"

logger = logging.getLogger(__name__)


def parse_scopes_header(header_value: str | None) -> frozenset[str]:
    """Split a comma separated scopes header into normalized scope names."""
    if not header_value:
        return frozenset()
    return frozenset(
        scope.strip().lower() for scope in header_value.split(",") if scope.strip()
    )


def check_scopes(granted: frozenset[str]) -> ScopeValidation:
    """Check required scopes (exact or prefix match) and advisory org scopes."""
    missing = frozenset(
        required
        for required in REQUIRED_SCOPES
        if not any(scope == required or scope.startswith(required) for scope in granted)
    )
    warnings = frozenset() if granted & ORG_READ_SCOPES else frozenset({ORG_READ_WARNING})
    return ScopeValidation(granted=granted, missing=missing, warnings=warnings)


class AuthSession:
    """Owns the access token, the derived client configuration and the identity."""

    def __init__(
        self,
        credential_store: CredentialStore,
        *,
        settings: TrackerSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        credential_key: str = GITHUB_TOKEN_ACCOUNT,
    ) -> None:
        self._store = credential_store
        self._settings = settings or TrackerSettings()
        self._transport = transport
        self._credential_key = credential_key
        self._token: str | None = None
        self._user: GitHubUser | None = None
        self._rate_limit = RateLimitStatus()
        self._generation = 0
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        token_state = "set" if self._token else "unset"
        return f"AuthSession(token={token_state}, user={self.login!r})"

    @property
    def is_configured(self) -> bool:
        return self._token is not None

    @property
    def user(self) -> GitHubUser | None:
        return self._user

    @property
    def login(self) -> str | None:
        return self._user.login if self._user is not None else None

    @property
    def rate_limit(self) -> RateLimitStatus:
        return self._rate_limit

    @property
    def generation(self) -> int:
        """Incremented whenever the session is configured or revoked."""
        return self._generation

    def configure(self, token: str) -> None:
        """Store a token and its client configuration; no network call."""
        token = token.strip()
        if not token:
            raise ValueError("Token must be a non-empty string.")
        self._token = token
        self._user = None
        self._rate_limit = RateLimitStatus()
        self._generation += 1

    def load_saved_credentials(self) -> bool:
        """Configure the session from the credential store, if a token is saved."""
        token = self._store.retrieve(self._credential_key)
        if not token:
            return False
        self.configure(token)
        return True

    def persist(self) -> None:
        """Save the configured token to the credential store."""
        if self._token is None:
            raise NotConfiguredError()
        self._store.save(self._token, self._credential_key)

    async def revoke(self) -> None:
        """Delete the stored credential and clear the session."""
        async with self._lock:
            self._token = None
            self._user = None
            self._rate_limit = RateLimitStatus()
            self._generation += 1
            self._store.delete(self._credential_key)

    @asynccontextmanager
    async def open_client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield an authenticated client; raises NotAuthenticatedError without a token."""
        if self._token is None:
            raise NotAuthenticatedError()
        client = build_github_client(
            self._token,
            base_url=self._settings.api_base_url,
            timeout_seconds=self._settings.timeout_seconds,
            trust_env=self._settings.trust_env,
            transport=self._transport,
            response_hooks=[self._record_rate_limit],
        )
        async with client:
            yield client

    async def _record_rate_limit(self, response: httpx.Response) -> None:
        rate_limit = parse_rate_limit(response)
        if rate_limit is not None:
            self._rate_limit = rate_limit

    async def validate_scopes(self) -> ScopeValidation:
        """Check the token's advertised scopes with one authenticated request."""
        if self._token is None:
            raise NotConfiguredError()
        async with self.open_client() as client:
            response = await request_with_retries(client, "/user")
        result = check_scopes(parse_scopes_header(response.headers.get(SCOPES_HEADER)))
        if result.warnings:
            logger.info("Token missing read:org scope, some features may be limited.")
        return result

    async def get_current_user(self) -> GitHubUser:
        """Fetch the authenticated user's identity."""
        async with self.open_client() as client:
            user = await fetch_authenticated_user(client=client)
        async with self._lock:
            if self._token is not None:
                self._user = user
        return user


async def fetch_authenticated_user(*, client: httpx.AsyncClient) -> GitHubUser:
    """Fetch and normalize the authenticated user."""
    endpoint = "/user"
    payload = await request_json(client, endpoint)
    return GitHubUser(
        id=require_int(payload, key="id", endpoint=endpoint),
        login=require_str(payload, key="login", endpoint=endpoint),
        name=optional_str(payload, key="name", endpoint=endpoint),
        avatar_url=optional_str(payload, key="avatar_url", endpoint=endpoint),
    )
