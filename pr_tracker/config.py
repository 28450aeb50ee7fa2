"""Runtime settings and token discovery."""

from __future__ import annotations

import os
from enum import StrEnum
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from pr_tracker.github_client import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE, GITHUB_API_BASE_URL

ENV_PREFIX = "PR_TRACKER_"
DEFAULT_CREDENTIAL_DB_PATH = "~/.config/pr-tracker/credentials.sqlite"


class ConfigError(ValueError):
    """Raised when settings from the environment are invalid."""


class FetchStrategy(StrEnum):
    """How pull requests are retrieved."""

    SEARCH = "search"
    PER_REPOSITORY = "per-repository"


class TrackerSettings(BaseModel):
    """Tracker configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    api_base_url: str = GITHUB_API_BASE_URL
    timeout_seconds: float = Field(default=20.0, gt=0)
    trust_env: bool = True
    active_interval_seconds: float = Field(default=120.0, gt=0)
    background_interval_seconds: float = Field(default=600.0, gt=0)
    strategy: FetchStrategy = FetchStrategy.SEARCH
    search_page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=100)
    search_max_pages: int = Field(default=DEFAULT_MAX_PAGES, ge=1)
    max_concurrency: int = Field(default=8, ge=1)
    credential_db_path: str = DEFAULT_CREDENTIAL_DB_PATH

    @model_validator(mode="after")
    def validate_intervals(self) -> TrackerSettings:
        """Background refresh must be slower than active refresh."""
        if self.background_interval_seconds <= self.active_interval_seconds:
            raise ValueError(
                "background_interval_seconds must be greater than active_interval_seconds"
            )
        return self

    @property
    def credential_path(self) -> Path:
        return Path(self.credential_db_path).expanduser()


def load_settings(**overrides: object) -> TrackerSettings:
    """Build settings from PR_TRACKER_* environment variables and overrides."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    values: dict[str, object] = {}
    for field_name in TrackerSettings.model_fields:
        env_value = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
        if env_value is not None:
            values[field_name] = env_value
    values.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return TrackerSettings.model_validate(values)
    except ValidationError as error:
        raise ConfigError(f"Invalid tracker settings: {error}") from error


def get_github_token_with_source() -> tuple[str, str] | None:
    """Read GitHub token and return token value with environment source key."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    github_token = os.getenv("GITHUB_TOKEN")
    if github_token:
        return github_token, "GITHUB_TOKEN"

    gh_token = os.getenv("GH_TOKEN")
    if gh_token:
        return gh_token, "GH_TOKEN"

    return None
