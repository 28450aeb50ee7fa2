"""Tests for the typer CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest
from factories import BlockingSleep, FakeGitHub
from typer.testing import CliRunner

from pr_tracker import cli
from pr_tracker.config import TrackerSettings
from pr_tracker.credentials import GITHUB_TOKEN_ACCOUNT, CredentialStore, InMemoryCredentialStore
from pr_tracker.tracker import PullRequestTracker

runner = CliRunner()


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def store(
    monkeypatch: pytest.MonkeyPatch, clean_env: Path, github: FakeGitHub
) -> InMemoryCredentialStore:
    """Route CLI commands to an in-memory store and a mocked GitHub API."""
    credential_store = InMemoryCredentialStore()

    def build_tracker(settings: TrackerSettings, store: CredentialStore) -> PullRequestTracker:
        return PullRequestTracker(
            store,
            settings=settings,
            transport=httpx.MockTransport(github),
            sleep=BlockingSleep(),
        )

    monkeypatch.setattr(cli, "build_credential_store", lambda settings: credential_store)
    monkeypatch.setattr(cli, "build_tracker", build_tracker)
    return credential_store


@pytest.mark.unit
def test_auth_check_fails_when_token_missing(store: InMemoryCredentialStore) -> None:
    result = runner.invoke(cli.app, ["auth-check"])

    assert result.exit_code == 1
    assert "GitHub auth check failed" in result.output


@pytest.mark.unit
def test_auth_check_succeeds_with_env_token(
    store: InMemoryCredentialStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_env")

    result = runner.invoke(cli.app, ["auth-check"])

    assert result.exit_code == 0, result.output
    assert "Token detected in GITHUB_TOKEN." in result.output
    assert "Authenticated as GitHub user 'octocat'." in result.output
    assert "GitHub token setup is valid." in result.output
    assert store.retrieve(GITHUB_TOKEN_ACCOUNT) is None


@pytest.mark.unit
def test_auth_check_uses_saved_token_and_warns_about_org_scope(
    store: InMemoryCredentialStore, github: FakeGitHub
) -> None:
    store.save("ghp_saved", GITHUB_TOKEN_ACCOUNT)
    github.scopes = "repo"

    result = runner.invoke(cli.app, ["auth-check"])

    assert result.exit_code == 0, result.output
    assert "Token detected in credential store." in result.output
    assert "Warning: token missing recommended scope 'read:org'." in result.output


@pytest.mark.unit
def test_auth_check_fails_on_missing_repo_scope(
    store: InMemoryCredentialStore, github: FakeGitHub
) -> None:
    github.scopes = "public_repo, read:org"

    result = runner.invoke(cli.app, ["auth-check", "--token", "ghp_public"])

    assert result.exit_code == 1
    assert "missing required scopes: repo" in result.output


@pytest.mark.unit
def test_auth_check_reports_rejected_token(
    store: InMemoryCredentialStore, github: FakeGitHub
) -> None:
    github.unauthorized = True

    result = runner.invoke(cli.app, ["auth-check", "--token", "ghp_revoked"])

    assert result.exit_code == 1
    assert "GitHub auth check failed: GitHub API request failed with status 401" in result.output


@pytest.mark.unit
def test_login_saves_valid_token(store: InMemoryCredentialStore) -> None:
    result = runner.invoke(cli.app, ["login", "--token", "ghp_valid"])

    assert result.exit_code == 0, result.output
    assert "Signed in as 'octocat'. Token saved." in result.output
    assert store.retrieve(GITHUB_TOKEN_ACCOUNT) == "ghp_valid"


@pytest.mark.unit
def test_login_prompts_when_no_token_available(store: InMemoryCredentialStore) -> None:
    result = runner.invoke(cli.app, ["login"], input="ghp_prompted\n")

    assert result.exit_code == 0, result.output
    assert store.retrieve(GITHUB_TOKEN_ACCOUNT) == "ghp_prompted"


@pytest.mark.unit
def test_login_rejects_token_without_repo_scope(
    store: InMemoryCredentialStore, github: FakeGitHub
) -> None:
    github.scopes = "public_repo"

    result = runner.invoke(cli.app, ["login", "--token", "ghp_public"])

    assert result.exit_code == 1
    assert "Missing required permissions:" in result.output
    assert store.retrieve(GITHUB_TOKEN_ACCOUNT) is None


@pytest.mark.unit
def test_logout_deletes_saved_token(store: InMemoryCredentialStore) -> None:
    store.save("ghp_saved", GITHUB_TOKEN_ACCOUNT)

    result = runner.invoke(cli.app, ["logout"])

    assert result.exit_code == 0
    assert "Signed out." in result.output
    assert store.retrieve(GITHUB_TOKEN_ACCOUNT) is None


@pytest.mark.unit
def test_list_renders_grouped_text(store: InMemoryCredentialStore) -> None:
    store.save("ghp_saved", GITHUB_TOKEN_ACCOUNT)

    result = runner.invoke(cli.app, ["list"])

    assert result.exit_code == 0, result.output
    assert "open=3 merged=0 closed=0 draft=0" in result.output
    assert "acme/rocket (3)" in result.output
    assert "Last updated:" in result.output


@pytest.mark.unit
def test_list_renders_json(store: InMemoryCredentialStore) -> None:
    result = runner.invoke(cli.app, ["list", "--token", "ghp_cli", "--output-format", "json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["truncated"] is False
    assert payload["groups"][0]["repository"] == "acme/rocket"
    assert len(payload["groups"][0]["pull_requests"]) == 3


@pytest.mark.unit
def test_list_applies_state_filter_and_search(store: InMemoryCredentialStore) -> None:
    result = runner.invoke(
        cli.app, ["list", "--token", "ghp_cli", "--state", "merged", "--search", "rocket"]
    )

    assert result.exit_code == 0, result.output
    assert "No pull requests match the current filter." in result.output


@pytest.mark.unit
def test_list_without_token_fails(store: InMemoryCredentialStore) -> None:
    result = runner.invoke(cli.app, ["list"])

    assert result.exit_code == 1
    assert "No token found" in result.output


@pytest.mark.unit
def test_list_reports_refresh_failure(
    store: InMemoryCredentialStore, github: FakeGitHub
) -> None:
    github.search_status = 404

    result = runner.invoke(cli.app, ["list", "--token", "ghp_cli"])

    assert result.exit_code == 1
    assert "Error: GitHub API request failed with status 404" in result.output
    assert "No pull requests loaded." in result.output


@pytest.mark.unit
def test_list_with_rejected_one_off_token_keeps_saved_token(
    store: InMemoryCredentialStore, github: FakeGitHub
) -> None:
    store.save("ghp_saved", GITHUB_TOKEN_ACCOUNT)
    github.unauthorized = True

    result = runner.invoke(cli.app, ["list", "--token", "ghp_cli"])

    assert result.exit_code == 1
    assert "401" in result.output
    assert store.retrieve(GITHUB_TOKEN_ACCOUNT) == "ghp_saved"


@pytest.mark.unit
def test_list_with_rejected_saved_token_signs_out(
    store: InMemoryCredentialStore, github: FakeGitHub
) -> None:
    store.save("ghp_saved", GITHUB_TOKEN_ACCOUNT)
    github.unauthorized = True

    result = runner.invoke(cli.app, ["list"])

    assert result.exit_code == 1
    assert store.retrieve(GITHUB_TOKEN_ACCOUNT) is None


@pytest.mark.unit
def test_list_rejects_unknown_output_format(store: InMemoryCredentialStore) -> None:
    result = runner.invoke(cli.app, ["list", "--token", "ghp_cli", "--output-format", "xml"])

    assert result.exit_code == 2


@pytest.mark.unit
def test_invalid_settings_exit_with_usage_code(
    store: InMemoryCredentialStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("PR_TRACKER_SEARCH_PAGE_SIZE", "500")

    result = runner.invoke(cli.app, ["list", "--token", "ghp_cli"])

    assert result.exit_code == 2
    assert "Invalid tracker settings" in result.output


@pytest.mark.unit
def test_watch_requires_saved_token(store: InMemoryCredentialStore) -> None:
    result = runner.invoke(cli.app, ["watch"])

    assert result.exit_code == 1
    assert "No saved token. Run login first." in result.output


@pytest.mark.unit
def test_watch_stops_when_token_is_revoked(
    store: InMemoryCredentialStore, github: FakeGitHub
) -> None:
    store.save("ghp_saved", GITHUB_TOKEN_ACCOUNT)
    github.unauthorized = True

    result = runner.invoke(cli.app, ["watch"])

    assert result.exit_code == 1
    assert "Refresh failed:" in result.output
    assert "Signed out." in result.output
    assert store.retrieve(GITHUB_TOKEN_ACCOUNT) is None
