"""Summary: SQLite storage implementation for Deskmate.

Importance: Provides the durable token and configuration store with atomic upserts.
Alternatives: Use an ORM or a hosted database immediately.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from deskmate.models import EmailConfiguration, TokenRecord, User


@dataclass(frozen=True)
class StoredOAuthState:
    """Summary: Pending OAuth authorization state.

    Importance: Ties an OAuth callback back to the user who started the flow.
    Alternatives: Keep states in signed cookies.
    """

    state: str
    user_id: str
    provider: str
    created_at: datetime


class SqliteStore:
    """Summary: SQLite-backed storage for profiles, tokens, and email configurations.

    Importance: Enables local-first persistence with minimal dependencies.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str, timeout: float = 10.0) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: Allows configurable database location and lock timeout per environment.
        Alternatives: Hardcode a default path in the class.
        """

        self._db_path = Path(db_path)
        self._timeout = timeout

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready before the first request.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    email TEXT
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS email_oauth_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    expires_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(user_id, provider)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS email_configurations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL UNIQUE,
                    host TEXT NOT NULL,
                    port INTEGER NOT NULL DEFAULT 993,
                    secure INTEGER NOT NULL DEFAULT 1,
                    provider TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS oauth_states (
                    state TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            connection.commit()

    def ensure_user(self, user: User) -> str:
        """Summary: Ensure a user profile exists and return its ID.

        Importance: Provides a profile row for email lookups.
        Alternatives: Read profiles from the identity provider on every request.
        """

        with self._connection() as connection:
            connection.execute(
                "INSERT OR IGNORE INTO users (id, display_name, email) VALUES (?, ?, ?)",
                (user.id, user.display_name, user.email),
            )
            connection.commit()
        return user.id

    def get_user_email(self, user_id: str) -> str | None:
        """Return the profile email for a user, or None."""

        with self._connection() as connection:
            row = connection.execute(
                "SELECT email FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        if not row or not row[0]:
            return None
        return str(row[0])

    def update_user_email(self, user_id: str, email: str) -> None:
        """Summary: Set the profile email, creating the profile if needed.

        Importance: Lets the manual setup flow record the mailbox address.
        Alternatives: Require a separate profile update call.
        """

        with self._connection() as connection:
            connection.execute(
                """
                INSERT INTO users (id, display_name, email) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET email = excluded.email
                """,
                (user_id, email, email),
            )
            connection.commit()

    def upsert_oauth_token(self, record: TokenRecord) -> None:
        """Summary: Insert or replace the token for (user_id, provider).

        Importance: A single statement keeps the write atomic; concurrent writers resolve
        to the last write.
        Alternatives: Read-modify-write under an explicit transaction.
        """

        updated_at = record.updated_at or datetime.now(timezone.utc)
        with self._connection() as connection:
            connection.execute(
                """
                INSERT INTO email_oauth_tokens (
                    user_id, provider, access_token, refresh_token, expires_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, provider) DO UPDATE SET
                    access_token = excluded.access_token,
                    refresh_token = excluded.refresh_token,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    record.user_id,
                    record.provider,
                    record.access_token,
                    record.refresh_token,
                    _to_iso(record.expires_at),
                    _to_iso(updated_at),
                ),
            )
            connection.commit()

    def get_oauth_token(self, user_id: str, provider: str) -> TokenRecord | None:
        """Summary: Fetch the token record for (user_id, provider).

        Importance: Supplies the resolver with the current token state.
        Alternatives: Cache tokens in memory across requests.
        """

        with self._connection() as connection:
            row = connection.execute(
                """
                SELECT user_id, provider, access_token, refresh_token, expires_at, updated_at
                FROM email_oauth_tokens
                WHERE user_id = ? AND provider = ?
                """,
                (user_id, provider),
            ).fetchone()
        if not row:
            return None
        return TokenRecord(
            user_id=row[0],
            provider=row[1],
            access_token=row[2],
            refresh_token=row[3],
            expires_at=_from_iso(row[4]),
            updated_at=_from_iso(row[5]),
        )

    def upsert_email_configuration(self, config: EmailConfiguration) -> None:
        """Insert or replace the email configuration for a user."""

        updated_at = config.updated_at or datetime.now(timezone.utc)
        with self._connection() as connection:
            connection.execute(
                """
                INSERT INTO email_configurations (user_id, host, port, secure, provider, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    host = excluded.host,
                    port = excluded.port,
                    secure = excluded.secure,
                    provider = excluded.provider,
                    updated_at = excluded.updated_at
                """,
                (
                    config.user_id,
                    config.host,
                    config.port,
                    1 if config.secure else 0,
                    config.provider,
                    _to_iso(updated_at),
                ),
            )
            connection.commit()

    def get_email_configuration(self, user_id: str) -> EmailConfiguration | None:
        """Return the stored email configuration for a user, or None."""

        with self._connection() as connection:
            row = connection.execute(
                """
                SELECT user_id, host, port, secure, provider, updated_at
                FROM email_configurations
                WHERE user_id = ?
                """,
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return EmailConfiguration(
            user_id=row[0],
            host=row[1],
            port=int(row[2]),
            secure=bool(row[3]),
            provider=row[4],
            updated_at=_from_iso(row[5]),
        )

    def save_oauth_state(self, state: StoredOAuthState) -> None:
        with self._connection() as connection:
            connection.execute(
                "INSERT INTO oauth_states (state, user_id, provider, created_at) VALUES (?, ?, ?, ?)",
                (state.state, state.user_id, state.provider, _to_iso(state.created_at)),
            )
            connection.commit()

    def pop_oauth_state(self, state: str, provider: str) -> StoredOAuthState | None:
        """Summary: Fetch and delete a pending OAuth state.

        Importance: States are single-use so a callback cannot be replayed.
        Alternatives: Mark states as used instead of deleting them.
        """

        with self._connection() as connection:
            row = connection.execute(
                "SELECT state, user_id, provider, created_at FROM oauth_states "
                "WHERE state = ? AND provider = ?",
                (state, provider),
            ).fetchone()
            if not row:
                return None
            connection.execute("DELETE FROM oauth_states WHERE state = ?", (state,))
            connection.commit()
        return StoredOAuthState(
            state=row[0], user_id=row[1], provider=row[2], created_at=_from_iso(row[3])
        )

    def delete_expired_oauth_states(self, before: datetime) -> int:
        """Delete states created before ``before`` and return how many were removed."""

        with self._connection() as connection:
            cursor = connection.execute(
                "DELETE FROM oauth_states WHERE created_at < ?", (_to_iso(before),)
            )
            connection.commit()
            return cursor.rowcount

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path, timeout=self._timeout)
        try:
            yield connection
        finally:
            connection.close()


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
