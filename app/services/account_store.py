"""SQLite-backed store for connected social accounts and their credentials."""

from __future__ import annotations

import logging
import sqlite3
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from app.core.errors import REAUTH_REQUIRED_CODES
from app.models.account import Account, AccountStatus, Platform, utcnow
from app.models.message import SyncResult
from app.models.oauth import PlatformProfile, TokenGrant
from app.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


def _ensure_directory(db_path: Path) -> None:
    if db_path.parent and not db_path.parent.exists():
        db_path.parent.mkdir(parents=True, exist_ok=True)


def _to_db_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class AccountStore:
    """Persist accounts keyed by ``(user_id, platform, platform_id)``.

    Access and refresh tokens are encrypted before they reach the database
    and decrypted when rows are loaded. Reconnecting an identity updates its
    existing row rather than creating a second one.
    """

    def __init__(self, db_path: str, cipher: TokenCipherService) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        _ensure_directory(self._db_path)
        self._ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    platform_id TEXT NOT NULL,
                    username TEXT NOT NULL,
                    display_name TEXT,
                    avatar_url TEXT,
                    bio TEXT,
                    followers_count INTEGER NOT NULL DEFAULT 0,
                    following_count INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL,
                    access_token_encrypted TEXT,
                    refresh_token_encrypted TEXT,
                    token_expires_at TEXT,
                    last_synced_at TEXT,
                    last_activity_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, platform, platform_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_accounts_platform_id "
                "ON accounts (platform, platform_id)"
            )

    # -- Queries -----------------------------------------------------------

    def get(self, account_id: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE id = ?", (account_id,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def list_for_user(self, user_id: str) -> List[Account]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM accounts WHERE user_id = ? ORDER BY created_at",
                (user_id,),
            ).fetchall()
        return [self._row_to_account(row) for row in rows]

    def list_connected(
        self, user_id: Optional[str] = None, platform: Optional[Platform] = None
    ) -> List[Account]:
        """Return active accounts, optionally narrowed to a user or platform."""
        clauses = ["status = ?"]
        params: List[Any] = [AccountStatus.CONNECTED.value]
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if platform is not None:
            clauses.append("platform = ?")
            params.append(platform.value)
        query = f"SELECT * FROM accounts WHERE {' AND '.join(clauses)} ORDER BY created_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_account(row) for row in rows]

    def find_needing_refresh(self, user_id: Optional[str] = None) -> List[Account]:
        """Return connected accounts whose access token has already expired."""
        return [
            account
            for account in self.list_connected(user_id=user_id)
            if account.needs_refresh
        ]

    def list_by_platform_id(self, platform: Platform, platform_id: str) -> List[Account]:
        """Every connected account linked to one external identity.

        Several local users may link the same identity, so a webhook can
        address more than one account.
        """
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM accounts WHERE platform = ? AND platform_id = ? "
                "AND status = ? ORDER BY updated_at DESC",
                (platform.value, platform_id, AccountStatus.CONNECTED.value),
            ).fetchall()
        return [self._row_to_account(row) for row in rows]

    def get_by_platform_id(self, platform: Platform, platform_id: str) -> Optional[Account]:
        """The most recently updated connected account for an external identity."""
        matches = self.list_by_platform_id(platform, platform_id)
        return matches[0] if matches else None

    def stats(self) -> Dict[str, Any]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, platform, status, last_synced_at FROM accounts"
            ).fetchall()
        connected = [row for row in rows if row["status"] == AccountStatus.CONNECTED.value]
        return {
            "total_accounts": len(rows),
            "connected_accounts": len(connected),
            "platform_breakdown": dict(Counter(row["platform"] for row in connected)),
            "last_sync_times": {
                row["id"]: _from_db_time(row["last_synced_at"]) for row in connected
            },
        }

    # -- Mutations ---------------------------------------------------------

    def upsert_from_oauth(
        self,
        platform: Platform,
        platform_id: str,
        user_id: str,
        profile: PlatformProfile,
        tokens: TokenGrant,
    ) -> Account:
        """Create or refresh the account behind a completed OAuth flow."""
        now = utcnow()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO accounts (
                    id,
                    user_id,
                    platform,
                    platform_id,
                    username,
                    display_name,
                    avatar_url,
                    bio,
                    followers_count,
                    following_count,
                    status,
                    access_token_encrypted,
                    refresh_token_encrypted,
                    token_expires_at,
                    last_activity_at,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, platform, platform_id) DO UPDATE SET
                    username = excluded.username,
                    display_name = excluded.display_name,
                    avatar_url = excluded.avatar_url,
                    bio = excluded.bio,
                    followers_count = excluded.followers_count,
                    following_count = excluded.following_count,
                    status = excluded.status,
                    access_token_encrypted = excluded.access_token_encrypted,
                    refresh_token_encrypted = COALESCE(
                        excluded.refresh_token_encrypted, accounts.refresh_token_encrypted
                    ),
                    token_expires_at = excluded.token_expires_at,
                    last_activity_at = excluded.last_activity_at,
                    updated_at = excluded.updated_at
                """,
                (
                    uuid4().hex,
                    user_id,
                    platform.value,
                    platform_id,
                    profile.username,
                    profile.display_name,
                    profile.avatar_url,
                    profile.bio,
                    profile.followers_count or 0,
                    profile.following_count or 0,
                    AccountStatus.CONNECTED.value,
                    self._cipher.encrypt(tokens.access_token),
                    self._cipher.encrypt_optional(tokens.refresh_token),
                    _to_db_time(tokens.expires_at(now)),
                    _to_db_time(now),
                    _to_db_time(now),
                    _to_db_time(now),
                ),
            )
            row = conn.execute(
                "SELECT * FROM accounts WHERE user_id = ? AND platform = ? AND platform_id = ?",
                (user_id, platform.value, platform_id),
            ).fetchone()
        account = self._row_to_account(row)
        logger.info(
            "Stored %s account",
            platform.display_name,
            extra={"account_id": account.id, "user_id": user_id},
        )
        return account

    def update_tokens(self, account_id: str, grant: TokenGrant) -> Optional[Account]:
        """Persist refreshed tokens; a grant without a refresh token keeps the old one."""
        now = utcnow()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE accounts SET
                    access_token_encrypted = ?,
                    refresh_token_encrypted = COALESCE(?, refresh_token_encrypted),
                    token_expires_at = ?,
                    status = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    self._cipher.encrypt(grant.access_token),
                    self._cipher.encrypt_optional(grant.refresh_token),
                    _to_db_time(grant.expires_at(now)),
                    AccountStatus.CONNECTED.value,
                    _to_db_time(now),
                    account_id,
                ),
            )
        return self.get(account_id)

    def update_profile(self, account_id: str, profile: PlatformProfile) -> None:
        """Overwrite the cached profile fields with a fresh provider read."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE accounts SET
                    username = ?,
                    display_name = ?,
                    avatar_url = ?,
                    bio = ?,
                    followers_count = COALESCE(?, followers_count),
                    following_count = COALESCE(?, following_count),
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    profile.username,
                    profile.display_name,
                    profile.avatar_url,
                    profile.bio,
                    profile.followers_count,
                    profile.following_count,
                    _to_db_time(utcnow()),
                    account_id,
                ),
            )

    def set_status(self, account_id: str, status: AccountStatus) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE accounts SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, _to_db_time(utcnow()), account_id),
            )

    def mark_sync_outcome(self, account_id: str, result: SyncResult) -> None:
        """Record the outcome of one sync attempt. Never raises."""
        now = _to_db_time(utcnow())
        try:
            with self._connect() as conn:
                if result.success:
                    conn.execute(
                        """
                        UPDATE accounts SET
                            status = ?, last_synced_at = ?, updated_at = ?
                        WHERE id = ?
                        """,
                        (AccountStatus.CONNECTED.value, now, now, account_id),
                    )
                    if result.new_messages:
                        conn.execute(
                            "UPDATE accounts SET last_activity_at = ? WHERE id = ?",
                            (now, account_id),
                        )
                else:
                    status = (
                        AccountStatus.EXPIRED
                        if result.error_code in REAUTH_REQUIRED_CODES
                        else AccountStatus.ERROR
                    )
                    conn.execute(
                        "UPDATE accounts SET status = ?, updated_at = ? WHERE id = ?",
                        (status.value, now, account_id),
                    )
        except sqlite3.Error:
            logger.exception(
                "Failed to record sync outcome", extra={"account_id": account_id}
            )

    def disconnect(self, account_id: str, user_id: str) -> bool:
        """Delete an account owned by ``user_id``. Returns False when none matched."""
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM accounts WHERE id = ? AND user_id = ?",
                (account_id, user_id),
            )
        return cursor.rowcount > 0

    # -- Mapping -----------------------------------------------------------

    def _decrypt(self, ciphertext: Optional[str], account_id: str) -> Optional[str]:
        try:
            return self._cipher.decrypt_optional(ciphertext)
        except ValueError:
            # Secret rotated; the account will surface as needing re-authentication.
            logger.warning(
                "Stored token could not be decrypted", extra={"account_id": account_id}
            )
            return None

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            id=row["id"],
            user_id=row["user_id"],
            platform=Platform(row["platform"]),
            platform_id=row["platform_id"],
            username=row["username"],
            display_name=row["display_name"],
            avatar_url=row["avatar_url"],
            bio=row["bio"],
            followers_count=row["followers_count"],
            following_count=row["following_count"],
            status=AccountStatus(row["status"]),
            access_token=self._decrypt(row["access_token_encrypted"], row["id"]),
            refresh_token=self._decrypt(row["refresh_token_encrypted"], row["id"]),
            token_expires_at=_from_db_time(row["token_expires_at"]),
            last_synced_at=_from_db_time(row["last_synced_at"]),
            last_activity_at=_from_db_time(row["last_activity_at"]),
            created_at=_from_db_time(row["created_at"]),
            updated_at=_from_db_time(row["updated_at"]),
        )


__all__ = ["AccountStore"]
