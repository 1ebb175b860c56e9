"""
Tests for the SQLite layer and lock retries.
"""

import sqlite3
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from userms.auth import (
    AuditFields,
    ConflictError,
    CredentialStore,
    Database,
    StoreUnavailableError,
    User,
)
from userms.auth.database import chunked, unique_violation
from userms.auth.retry import retry_on_locked

from conftest import insert_user


class FlakyStore:
    """Store stand-in that hits a lock a set number of times."""

    def __init__(self, failures: int, attempts: int = 3, message: str = "database is locked"):
        self.db = SimpleNamespace(retry_attempts=attempts, retry_delay=0)
        self.failures = failures
        self.message = message
        self.calls = 0

    @retry_on_locked
    def write(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise sqlite3.OperationalError(self.message)
        return value


class TestSchema:
    """Test schema creation."""

    def test_tables_exist(self, core):
        """Test every table is created on startup."""
        with core.db.read() as conn:
            names = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }

        assert {"users", "roles", "permissions", "user_roles", "role_permissions"} <= names

    def test_reopen_keeps_data(self, core, settings):
        """Test a second Database on the same file sees existing rows."""
        insert_user(core, "alice")

        reopened = Database(settings.database_path)

        assert reopened.count("users") == 1

    def test_count_rejects_unknown_table(self, core):
        """Test table names are whitelisted."""
        with pytest.raises(ValueError):
            core.db.count("sqlite_master")


class TestTransactions:
    """Test atomic writes."""

    def test_rollback_on_exception(self, core):
        """Test a failing block leaves nothing behind."""
        insert_user(core, "alice")

        with pytest.raises(RuntimeError):
            with core.db.transaction() as conn:
                conn.execute("DELETE FROM users")
                raise RuntimeError("abort")

        assert core.db.count("users") == 1

    def test_unique_violation_does_not_leave_partial_rows(self, core):
        """Test a rejected insert keeps the original row intact."""
        insert_user(core, "alice")

        with pytest.raises(ConflictError):
            insert_user(core, "ALICE")

        assert core.db.count("users") == 1


class TestRetryOnLocked:
    """Test the lock retry decorator."""

    def test_succeeds_after_transient_locks(self):
        """Test a call that loses the lock twice then wins."""
        store = FlakyStore(failures=2)

        assert store.write("ok") == "ok"
        assert store.calls == 3

    def test_gives_up(self):
        """Test exhausting the attempts raises StoreUnavailable."""
        store = FlakyStore(failures=10, attempts=2)

        with pytest.raises(StoreUnavailableError) as exc_info:
            store.write("ok")

        assert store.calls == 3
        assert exc_info.value.operation == "write"

    def test_other_errors_propagate(self):
        """Test non-lock operational errors are not retried."""
        store = FlakyStore(failures=1, message="no such table: users")

        with pytest.raises(sqlite3.OperationalError):
            store.write("ok")

        assert store.calls == 1

    def test_real_lock_held_by_another_connection(self, tmp_path):
        """Test a write blocked by another process-level writer."""
        db = Database(tmp_path / "locked.db", retry_attempts=1, retry_delay=0, busy_timeout=0.05)
        store = CredentialStore(db)
        user = User(
            user_id="u1",
            username="alice",
            email="alice@example.com",
            password_hash="not-a-real-hash",
            audit=AuditFields.new(datetime(2024, 1, 1, tzinfo=timezone.utc)),
        )

        blocker = sqlite3.connect(str(db.db_path), isolation_level=None)
        blocker.execute("BEGIN IMMEDIATE")
        try:
            with pytest.raises(StoreUnavailableError):
                store.create(user)
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()


class TestHelpers:
    """Test small SQL helpers."""

    def test_chunked(self):
        """Test chunking keeps order and sizes."""
        chunks = list(chunked(list(range(1201)), 500))

        assert [len(c) for c in chunks] == [500, 500, 201]
        assert chunks[2][-1] == 1200

    def test_unique_violation(self):
        """Test parsing the constrained column from the error message."""
        assert unique_violation(sqlite3.IntegrityError("UNIQUE constraint failed: users.email")) == "users.email"
        assert unique_violation(sqlite3.IntegrityError("FOREIGN KEY constraint failed")) is None
