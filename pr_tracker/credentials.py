"""Credential persistence contract and local implementations."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Protocol

DEFAULT_CREDENTIAL_SERVICE = "pr-tracker"
GITHUB_TOKEN_ACCOUNT = "github_token"


class CredentialStoreError(RuntimeError):
    """Base class for credential store failures."""


class EncodingFailedError(CredentialStoreError):
    """Raised when a secret cannot be encoded for storage."""

    def __init__(self) -> None:
        super().__init__("Failed to encode token data.")


class SaveFailedError(CredentialStoreError):
    """Raised when the backing store rejects a write."""

    def __init__(self, status: str) -> None:
        super().__init__(f"Failed to save credential. Status: {status}")
        self.status = status


class DeleteFailedError(CredentialStoreError):
    """Raised when the backing store rejects a delete."""

    def __init__(self, status: str) -> None:
        super().__init__(f"Failed to delete credential. Status: {status}")
        self.status = status


class CredentialStore(Protocol):
    """Secret persistence contract consumed by the auth session."""

    def save(self, secret: str, key: str) -> None:
        """Persist a secret under a key, replacing any previous value."""

    def retrieve(self, key: str) -> str | None:
        """Return the stored secret, or None when absent."""

    def delete(self, key: str) -> None:
        """Remove a secret; a missing key is not an error."""


def _encode_secret(secret: str) -> bytes:
    try:
        return secret.encode("utf-8")
    except UnicodeEncodeError as error:
        raise EncodingFailedError() from error


class InMemoryCredentialStore:
    """Process-local store for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._secrets: dict[str, bytes] = {}

    def save(self, secret: str, key: str) -> None:
        self._secrets[key] = _encode_secret(secret)

    def retrieve(self, key: str) -> str | None:
        data = self._secrets.get(key)
        return data.decode("utf-8") if data is not None else None

    def delete(self, key: str) -> None:
        self._secrets.pop(key, None)


class SqliteCredentialStore:
    """SQLite-backed credential store, readable only by the current user."""

    def __init__(self, db_path: Path | str, *, service: str = DEFAULT_CREDENTIAL_SERVICE) -> None:
        self._db_path = Path(db_path)
        self._service = service
        self._ensure_schema()

    def _open_connection(self) -> sqlite3.Connection:
        """Open a SQLite connection."""
        return sqlite3.connect(self._db_path)

    def _ensure_schema(self) -> None:
        """Create the credential table if missing and restrict file permissions."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._open_connection() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    service TEXT NOT NULL,
                    account TEXT NOT NULL,
                    secret BLOB NOT NULL,
                    PRIMARY KEY (service, account)
                )
                """
            )
        os.chmod(self._db_path, 0o600)

    def save(self, secret: str, key: str) -> None:
        """Insert or replace the secret for one account."""
        data = _encode_secret(secret)
        try:
            with self._open_connection() as connection:
                connection.execute(
                    """
                    INSERT INTO credentials (service, account, secret)
                    VALUES (?, ?, ?)
                    ON CONFLICT(service, account) DO UPDATE SET secret=excluded.secret
                    """,
                    (self._service, key, sqlite3.Binary(data)),
                )
        except sqlite3.Error as error:
            raise SaveFailedError(_status_of(error)) from error

    def retrieve(self, key: str) -> str | None:
        """Read the secret for one account."""
        try:
            with self._open_connection() as connection:
                row = connection.execute(
                    "SELECT secret FROM credentials WHERE service = ? AND account = ?",
                    (self._service, key),
                ).fetchone()
        except sqlite3.Error:
            return None
        if row is None:
            return None
        try:
            return bytes(row[0]).decode("utf-8")
        except UnicodeDecodeError:
            return None

    def delete(self, key: str) -> None:
        """Delete the secret for one account; missing rows are fine."""
        try:
            with self._open_connection() as connection:
                connection.execute(
                    "DELETE FROM credentials WHERE service = ? AND account = ?",
                    (self._service, key),
                )
        except sqlite3.Error as error:
            raise DeleteFailedError(_status_of(error)) from error


def _status_of(error: sqlite3.Error) -> str:
    return getattr(error, "sqlite_errorname", None) or type(error).__name__
