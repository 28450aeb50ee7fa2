"""Typer CLI for the pull request tracker."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer

from pr_tracker.auth import AuthSession
from pr_tracker.config import (
    ConfigError,
    FetchStrategy,
    TrackerSettings,
    get_github_token_with_source,
    load_settings,
)
from pr_tracker.credentials import (
    GITHUB_TOKEN_ACCOUNT,
    CredentialStore,
    CredentialStoreError,
    InMemoryCredentialStore,
    SqliteCredentialStore,
)
from pr_tracker.errors import TrackerError
from pr_tracker.observability import configure_logging
from pr_tracker.output import render_json_report, render_text_report
from pr_tracker.schema import StateFilter
from pr_tracker.tracker import PullRequestTracker, TrackerStatus

app = typer.Typer(help="Track your GitHub pull requests across repositories and organizations.")

CREDENTIAL_STORE_SOURCE = "credential store"


def build_credential_store(settings: TrackerSettings) -> CredentialStore:
    """Open the local credential store configured in settings."""
    return SqliteCredentialStore(settings.credential_path)


def build_tracker(settings: TrackerSettings, store: CredentialStore) -> PullRequestTracker:
    """Construct the tracker used by CLI commands."""
    return PullRequestTracker(store, settings=settings)


def _load_settings_or_exit(**overrides: object) -> TrackerSettings:
    try:
        return load_settings(**overrides)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=2) from error


def _resolve_token(token: str | None, store: CredentialStore) -> tuple[str, str] | None:
    """Pick a token from the option, the environment, or the credential store."""
    if token:
        return token, "--token"
    from_env = get_github_token_with_source()
    if from_env is not None:
        return from_env
    saved = store.retrieve(GITHUB_TOKEN_ACCOUNT)
    if saved:
        return saved, CREDENTIAL_STORE_SOURCE
    return None


@app.command("auth-check")
def auth_check_command(
    token: Annotated[str | None, typer.Option(help="Token to check instead of the saved one.")] = None,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Validate GitHub token identity and scopes."""
    configure_logging(verbose=verbose)
    settings = _load_settings_or_exit()
    store = build_credential_store(settings)
    resolved = _resolve_token(token, store)
    if resolved is None:
        typer.echo("GitHub auth check failed: no token found. Set GITHUB_TOKEN or run login.")
        raise typer.Exit(code=1)
    token_value, token_source = resolved
    typer.echo(f"Token detected in {token_source}.")

    tracker = build_tracker(settings, store)

    async def check(session: AuthSession) -> None:
        session.configure(token_value)
        user = await session.get_current_user()
        typer.echo(f"Authenticated as GitHub user '{user.login}'.")
        validation = await session.validate_scopes()
        for scope in sorted(validation.warnings):
            typer.echo(f"Warning: token missing recommended scope '{scope}'.")
        if not validation.ok:
            missing = ", ".join(sorted(validation.missing))
            typer.echo(f"GitHub auth check failed: missing required scopes: {missing}.")
            raise typer.Exit(code=1)

    try:
        asyncio.run(check(tracker.session))
    except TrackerError as error:
        typer.echo(f"GitHub auth check failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo("GitHub token setup is valid.")


@app.command("login")
def login_command(
    token: Annotated[
        str | None,
        typer.Option(help="Personal access token. Defaults to GITHUB_TOKEN/GH_TOKEN or a prompt."),
    ] = None,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Validate a token and save it to the credential store."""
    configure_logging(verbose=verbose)
    settings = _load_settings_or_exit()
    store = build_credential_store(settings)
    if token is None:
        from_env = get_github_token_with_source()
        token = from_env[0] if from_env else typer.prompt("GitHub token", hide_input=True)

    tracker = build_tracker(settings, store)
    if not asyncio.run(tracker.authenticate(token, start_refresh=False)):
        typer.echo(tracker.status.error or "Authentication failed.")
        raise typer.Exit(code=1)

    user = tracker.status.user
    typer.echo(f"Signed in as '{user.login if user else 'unknown'}'. Token saved.")


@app.command("logout")
def logout_command() -> None:
    """Delete the saved token."""
    settings = _load_settings_or_exit()
    store = build_credential_store(settings)
    try:
        store.delete(GITHUB_TOKEN_ACCOUNT)
    except CredentialStoreError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    typer.echo("Signed out.")


@app.command("list")
def list_command(
    state: Annotated[StateFilter, typer.Option(help="State filter.")] = StateFilter.ALL,
    search: Annotated[str, typer.Option(help="Match PR number, title, or repository.")] = "",
    strategy: Annotated[
        FetchStrategy | None, typer.Option(help="Retrieval strategy override.")
    ] = None,
    output_format: Annotated[str, typer.Option(help="Output format: text|json.")] = "text",
    token: Annotated[str | None, typer.Option(help="Token to use for this run.")] = None,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Fetch once and print pull requests grouped by repository."""
    if output_format not in {"text", "json"}:
        raise typer.BadParameter("Use --output-format text or json.")
    configure_logging(verbose=verbose)
    settings = _load_settings_or_exit(strategy=strategy)
    store = build_credential_store(settings)
    resolved = _resolve_token(token, store)
    if resolved is None:
        typer.echo("No token found. Set GITHUB_TOKEN or run login.")
        raise typer.Exit(code=1)

    token_value, token_source = resolved
    if token_source != CREDENTIAL_STORE_SOURCE:
        # A token from --token or the environment must not replace or revoke the saved one.
        store = InMemoryCredentialStore()

    tracker = build_tracker(settings, store)
    tracker.session.configure(token_value)
    asyncio.run(tracker.refresh())

    status = tracker.status
    groups = tracker.grouped_pull_requests(state, search)
    if output_format == "json":
        typer.echo(render_json_report(groups, snapshot=status.snapshot))
    else:
        typer.echo(
            render_text_report(
                groups,
                snapshot=status.snapshot,
                counts=tracker.state_counts(),
                error=status.error,
            )
        )
    if status.snapshot is None:
        raise typer.Exit(code=1)


@app.command("watch")
def watch_command(
    background: Annotated[
        bool, typer.Option(help="Start with the slower background refresh cadence.")
    ] = False,
    state: Annotated[StateFilter, typer.Option(help="State filter.")] = StateFilter.ALL,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Keep refreshing with the saved token and print a summary after each refresh."""
    configure_logging(verbose=verbose)
    settings = _load_settings_or_exit()
    store = build_credential_store(settings)
    tracker = build_tracker(settings, store)

    def report(status: TrackerStatus) -> None:
        if status.error:
            typer.echo(f"Refresh failed: {status.error}")
        if status.snapshot is not None:
            counts = tracker.state_counts()
            shown = len(tracker.pull_requests(state))
            typer.echo(
                f"{status.snapshot.updated_at:%H:%M:%S} {shown} shown "
                f"(open={counts.open} merged={counts.merged} closed={counts.closed})"
            )

    async def run() -> None:
        tracker.subscribe(report)
        tracker.set_visibility(not background)
        restored = await tracker.load_saved_credentials()
        if not restored and tracker.status.error is None:
            typer.echo("No saved token. Run login first.")
            raise typer.Exit(code=1)
        try:
            while tracker.session.is_configured:
                await asyncio.sleep(1)
        finally:
            await tracker.scheduler.aclose()
        typer.echo("Signed out.")
        raise typer.Exit(code=1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        typer.echo("Stopped.")
