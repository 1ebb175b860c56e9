"""
User persistence.

Stores user records and enforces the username / email uniqueness invariant
through the table's unique constraints, so two concurrent registrations of the
same name end with exactly one row.
"""

import sqlite3
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .database import (
    Database,
    audit_from_row,
    audit_values,
    chunked,
    placeholders,
    to_db_time,
    unique_violation,
)
from .errors import (
    ConcurrentModificationError,
    EmailExistsError,
    UserNotFoundError,
    UsernameExistsError,
)
from .models import AuditFields, User
from .retry import retry_on_locked


_USER_COLUMNS = (
    "user_id, username, email, password_hash, first_name, last_name, is_active, "
    "created_at, updated_at, created_by, updated_by, version"
)


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        user_id=row["user_id"],
        username=row["username"],
        email=row["email"],
        password_hash=row["password_hash"],
        audit=audit_from_row(row),
        is_active=bool(row["is_active"]),
        first_name=row["first_name"],
        last_name=row["last_name"],
        version=row["version"],
    )


def like_pattern(keyword: str) -> str:
    """``%keyword%`` with LIKE wildcards in the keyword escaped."""
    escaped = keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def check_paging(page: int, size: int) -> None:
    if page < 0:
        raise ValueError(f"page must be >= 0, got {page}")
    if size < 1:
        raise ValueError(f"size must be >= 1, got {size}")


def _conflict_for(error: sqlite3.IntegrityError, user: User) -> Optional[Exception]:
    column = unique_violation(error)
    if column == "users.username":
        return UsernameExistsError(user.username)
    if column == "users.email":
        return EmailExistsError(user.email)
    return None


class CredentialStore:
    """
    Credential store.

    Persists users. Lookups by username and email are case-insensitive,
    matching the uniqueness rule.
    """

    def __init__(self, db: Database):
        self.db = db

    # ========================================================================
    # Writes
    # ========================================================================

    @retry_on_locked
    def create(self, user: User) -> User:
        """
        Insert a new user.

        Args:
            user: Fully populated user (id, hash and audit fields set)

        Returns:
            The stored user

        Raises:
            UsernameExistsError: Username already taken
            EmailExistsError: Email already taken
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO users ({_USER_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        user.user_id,
                        user.username,
                        user.email,
                        user.password_hash,
                        user.first_name,
                        user.last_name,
                        1 if user.is_active else 0,
                        *audit_values(user.audit),
                        user.version,
                    ),
                )
        except sqlite3.IntegrityError as e:
            conflict = _conflict_for(e, user)
            if conflict is None:
                raise
            raise conflict from e

        logger.debug(f"User row inserted: {user.username} ({user.user_id})")
        return user

    @retry_on_locked
    def update(self, user: User, expected_version: int) -> User:
        """
        Write a changed user if nobody else changed it first.

        The stored version must equal ``expected_version``; the written row
        gets ``expected_version + 1``.

        Args:
            user: User carrying the new field values and audit fields
            expected_version: Version the caller read

        Returns:
            The user with its new version

        Raises:
            UserNotFoundError: No such user
            ConcurrentModificationError: Stored version differs
            UsernameExistsError / EmailExistsError: New name or email taken
        """
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE users
                    SET username = ?, email = ?, password_hash = ?, first_name = ?,
                        last_name = ?, is_active = ?, updated_at = ?, updated_by = ?,
                        version = version + 1
                    WHERE user_id = ? AND version = ?
                    """,
                    (
                        user.username,
                        user.email,
                        user.password_hash,
                        user.first_name,
                        user.last_name,
                        1 if user.is_active else 0,
                        to_db_time(user.audit.updated_at),
                        user.audit.updated_by,
                        user.user_id,
                        expected_version,
                    ),
                )
                if cursor.rowcount == 0:
                    exists = conn.execute(
                        "SELECT 1 FROM users WHERE user_id = ?", (user.user_id,)
                    ).fetchone()
                    if exists is None:
                        raise UserNotFoundError(user.user_id)
                    raise ConcurrentModificationError("User", user.user_id, expected_version)
        except sqlite3.IntegrityError as e:
            conflict = _conflict_for(e, user)
            if conflict is None:
                raise
            raise conflict from e

        user.version = expected_version + 1
        return user

    def set_active(self, user: User, active: bool, audit: AuditFields) -> User:
        """Enable or disable a user (optimistic, like ``update``)."""
        user.is_active = active
        user.audit = audit
        return self.update(user, user.version)

    def update_password_hash(self, user: User, password_hash: str, audit: AuditFields) -> User:
        user.password_hash = password_hash
        user.audit = audit
        return self.update(user, user.version)

    # ========================================================================
    # Lookups
    # ========================================================================

    def _get_where(self, where: str, params: tuple) -> Optional[User]:
        with self.db.read() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE {where}", params
            ).fetchone()
        return _row_to_user(row) if row else None

    def get_by_id(self, user_id: str) -> Optional[User]:
        return self._get_where("user_id = ?", (user_id,))

    def get_by_username(self, username: str) -> Optional[User]:
        return self._get_where("username = ?", (username,))

    def get_by_email(self, email: str) -> Optional[User]:
        return self._get_where("email = ?", (email,))

    def get_by_username_or_email(self, identifier: str) -> Optional[User]:
        """
        Find a user whose username or email equals ``identifier``.

        A username match wins over an email match.
        """
        with self.db.read() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE username = ? OR email = ? "
                "ORDER BY CASE WHEN username = ? THEN 0 ELSE 1 END LIMIT 1",
                (identifier, identifier, identifier),
            ).fetchone()
        return _row_to_user(row) if row else None

    def username_exists(self, username: str, exclude_user_id: Optional[str] = None) -> bool:
        return self._exists("username", username, exclude_user_id)

    def email_exists(self, email: str, exclude_user_id: Optional[str] = None) -> bool:
        return self._exists("email", email, exclude_user_id)

    def _exists(self, column: str, value: str, exclude_user_id: Optional[str]) -> bool:
        query = f"SELECT 1 FROM users WHERE {column} = ?"
        params: tuple = (value,)
        if exclude_user_id is not None:
            query += " AND user_id != ?"
            params += (exclude_user_id,)
        with self.db.read() as conn:
            return conn.execute(query, params).fetchone() is not None

    def get_by_ids(self, user_ids: Iterable[str]) -> Dict[str, User]:
        """
        Batch lookup.

        Returns:
            Mapping of user ID to user; unknown IDs are absent
        """
        ids = list(dict.fromkeys(user_ids))
        users: Dict[str, User] = {}
        if not ids:
            return users

        with self.db.read() as conn:
            for chunk in chunked(ids):
                rows = conn.execute(
                    f"SELECT {_USER_COLUMNS} FROM users "
                    f"WHERE user_id IN ({placeholders(len(chunk))})",
                    chunk,
                ).fetchall()
                for row in rows:
                    users[row["user_id"]] = _row_to_user(row)
        return users

    # ========================================================================
    # Listing
    # ========================================================================

    def list_page(self, page: int, size: int) -> Tuple[List[User], int]:
        """
        One page of users ordered by username.

        Args:
            page: Zero-based page number
            size: Page size

        Returns:
            (users on the page, total number of users)
        """
        check_paging(page, size)
        with self.db.read() as conn:
            total = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users ORDER BY username LIMIT ? OFFSET ?",
                (size, page * size),
            ).fetchall()
        return [_row_to_user(row) for row in rows], total

    def search(self, keyword: str, page: int, size: int) -> Tuple[List[User], int]:
        """
        Users whose username, email, first or last name contains ``keyword``.

        Returns:
            (users on the page, total number of matches)
        """
        check_paging(page, size)
        pattern = like_pattern(keyword)
        where = (
            "username LIKE ? ESCAPE '\\' OR email LIKE ? ESCAPE '\\' "
            "OR first_name LIKE ? ESCAPE '\\' OR last_name LIKE ? ESCAPE '\\'"
        )
        params = (pattern,) * 4

        with self.db.read() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM users WHERE {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE {where} "
                "ORDER BY username LIMIT ? OFFSET ?",
                params + (size, page * size),
            ).fetchall()
        return [_row_to_user(row) for row in rows], total
