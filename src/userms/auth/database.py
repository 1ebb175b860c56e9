"""
SQLite database for the identity stores.

Thread-safe database with tables for users, roles, permissions and the two
composite-key association tables linking them.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from loguru import logger

from .config import Settings
from .models import AuditFields


# Largest number of ids bound into a single ``IN (...)`` clause
MAX_BATCH_PARAMS = 500


SCHEMA = [
    # Users
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id TEXT PRIMARY KEY,
        username TEXT NOT NULL COLLATE NOCASE UNIQUE,
        email TEXT NOT NULL COLLATE NOCASE UNIQUE,
        password_hash TEXT NOT NULL,
        first_name TEXT,
        last_name TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        created_by TEXT,
        updated_by TEXT,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    # Roles
    """
    CREATE TABLE IF NOT EXISTS roles (
        role_id TEXT PRIMARY KEY,
        role_name TEXT NOT NULL UNIQUE,
        role_code TEXT NOT NULL UNIQUE,
        description TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        created_by TEXT,
        updated_by TEXT,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    # Permissions
    """
    CREATE TABLE IF NOT EXISTS permissions (
        permission_id TEXT PRIMARY KEY,
        permission_name TEXT NOT NULL,
        permission_code TEXT NOT NULL UNIQUE,
        resource_name TEXT NOT NULL,
        action_type TEXT NOT NULL,
        description TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        created_by TEXT,
        updated_by TEXT,
        version INTEGER NOT NULL DEFAULT 0
    )
    """,
    # User roles (many-to-many)
    """
    CREATE TABLE IF NOT EXISTS user_roles (
        user_id TEXT NOT NULL,
        role_id TEXT NOT NULL,
        assigned_at TEXT NOT NULL,
        assigned_by TEXT,
        PRIMARY KEY (user_id, role_id),
        FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
        FOREIGN KEY (role_id) REFERENCES roles(role_id) ON DELETE RESTRICT
    )
    """,
    # Role permissions (many-to-many)
    """
    CREATE TABLE IF NOT EXISTS role_permissions (
        role_id TEXT NOT NULL,
        permission_id TEXT NOT NULL,
        granted_at TEXT NOT NULL,
        granted_by TEXT,
        PRIMARY KEY (role_id, permission_id),
        FOREIGN KEY (role_id) REFERENCES roles(role_id) ON DELETE CASCADE,
        FOREIGN KEY (permission_id) REFERENCES permissions(permission_id) ON DELETE RESTRICT
    )
    """,
    # The composite primary keys index the left column; index the right one too
    "CREATE INDEX IF NOT EXISTS idx_user_roles_role ON user_roles(role_id)",
    "CREATE INDEX IF NOT EXISTS idx_role_permissions_permission ON role_permissions(permission_id)",
    "CREATE INDEX IF NOT EXISTS idx_permissions_resource ON permissions(resource_name)",
]


def to_db_time(moment: datetime) -> str:
    return moment.isoformat()


def from_db_time(value: str) -> datetime:
    return datetime.fromisoformat(value)


def placeholders(count: int) -> str:
    """``?, ?, ?`` for an ``IN (...)`` clause of ``count`` values."""
    return ", ".join("?" * count)


def chunked(values: list, size: int = MAX_BATCH_PARAMS) -> Iterator[list]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class Database:
    """
    Thread-safe identity database.

    Every logical change runs inside ``transaction()``: one connection, one
    ``BEGIN IMMEDIATE`` ... ``COMMIT``, rolled back on any exception
    (including the caller abandoning the operation). In-process access is
    serialized with a ``threading.RLock``; across processes the SQLite write
    lock and the unique / composite-key constraints do the serializing.
    """

    def __init__(
        self,
        db_path: Path,
        retry_attempts: int = 3,
        retry_delay: float = 0.05,
        busy_timeout: float = 5.0,
    ):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite database file
            retry_attempts: Extra attempts for operations that hit a lock
            retry_delay: Initial delay between those attempts, in seconds
            busy_timeout: How long SQLite itself waits on a lock, in seconds
        """
        self.db_path = Path(db_path)
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.busy_timeout = busy_timeout
        self._lock = threading.RLock()
        self._init_db()

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_path,
            retry_attempts=settings.store_retry_attempts,
            retry_delay=settings.store_retry_delay,
        )

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

        logger.info(f"Identity database initialized: {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block as one atomic write.

        Yields:
            Connection with an open ``BEGIN IMMEDIATE`` transaction
        """
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Connection for read-only queries."""
        with self._lock:
            conn = self._connect()
            try:
                yield conn
            finally:
                conn.close()

    def count(self, table: str, where: str = "", params: tuple = ()) -> int:
        """Row count of one of the identity tables."""
        if table not in ("users", "roles", "permissions", "user_roles", "role_permissions"):
            raise ValueError(f"Unknown table: {table}")
        query = f"SELECT COUNT(*) FROM {table}"
        if where:
            query += f" WHERE {where}"
        with self.read() as conn:
            return conn.execute(query, params).fetchone()[0]


def audit_from_row(row: sqlite3.Row) -> AuditFields:
    return AuditFields(
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
        created_by=row["created_by"],
        updated_by=row["updated_by"],
    )


def audit_values(audit: AuditFields) -> tuple:
    """``(created_at, updated_at, created_by, updated_by)`` column values."""
    return (
        to_db_time(audit.created_at),
        to_db_time(audit.updated_at),
        audit.created_by,
        audit.updated_by,
    )


def unique_violation(error: sqlite3.IntegrityError) -> Optional[str]:
    """
    Column named by a unique / primary-key violation.

    ``"UNIQUE constraint failed: users.email"`` gives ``"users.email"``;
    composite keys give the comma-joined column list. None for other
    integrity errors (foreign keys, NOT NULL).
    """
    message = str(error)
    prefix = "UNIQUE constraint failed: "
    if not message.startswith(prefix):
        return None
    return message[len(prefix):].strip()
