"""
Tests for user account management.
"""

import pytest

from userms.auth import (
    ConcurrentModificationError,
    EmailExistsError,
    UserNotFoundError,
    UserUpdate,
    UsernameExistsError,
)

from conftest import PASSWORD, create_role, insert_user, register


class TestListing:
    """Test paged listing and search."""

    def test_pages_resolve_roles_in_one_call(self, core, monkeypatch):
        """Test each page costs one role resolution whatever its size."""
        create_role(core, "USER")
        for i in range(25):
            user = insert_user(core, f"user_{i:02d}")
            core.assignments.assign_role(user.user_id, "USER")

        calls = []
        original = core.resolver.resolve_role_codes_for_users

        def counting(user_ids, reverse=False):
            calls.append(list(user_ids))
            return original(calls[-1], reverse=reverse)

        monkeypatch.setattr(core.resolver, "resolve_role_codes_for_users", counting)

        first = core.accounts.list_users(page=0, size=10)
        last = core.accounts.list_users(page=2, size=10)

        assert len(calls) == 2
        assert len(calls[0]) == 10
        assert [u.username for u in first.items][:2] == ["user_00", "user_01"]
        assert all(u.roles == ["USER"] for u in first.items)
        assert first.total == 25
        assert first.total_pages == 3
        assert first.has_next is True
        assert len(last.items) == 5
        assert last.has_next is False

    def test_search(self, core):
        """Test keyword search over username, email and names."""
        register(core, "alice")
        register(core, "bob")
        core.accounts.create_user("carol", "carol@corp.test", PASSWORD, first_name="Alicia")

        result = core.accounts.search_users("ali")

        assert sorted(u.username for u in result.items) == ["alice", "carol"]
        assert result.total == 2

    def test_search_escapes_wildcards(self, core):
        """Test LIKE wildcards in the keyword match literally."""
        register(core, "a_b")
        register(core, "axb")

        result = core.accounts.search_users("a_b")

        assert [u.username for u in result.items] == ["a_b"]

    def test_bad_paging(self, core):
        """Test negative pages and empty sizes are refused."""
        with pytest.raises(ValueError):
            core.accounts.list_users(page=-1)
        with pytest.raises(ValueError):
            core.accounts.list_users(size=0)

    def test_get_user(self, core):
        """Test lookup by id, including the not-found case."""
        record = register(core, "alice")

        assert core.accounts.get_user(record.id).username == "alice"
        with pytest.raises(UserNotFoundError):
            core.accounts.get_user("missing")

    def test_get_user_by_username(self, core):
        """Test lookup by username."""
        record = register(core, "alice")

        assert core.accounts.get_user_by_username("alice").id == record.id
        with pytest.raises(UserNotFoundError):
            core.accounts.get_user_by_username("nobody")

    def test_get_user_by_email(self, core):
        """Test lookup by email ignores case."""
        record = register(core, "alice")

        assert core.accounts.get_user_by_email("Alice@Example.com").id == record.id
        with pytest.raises(UserNotFoundError):
            core.accounts.get_user_by_email("nobody@example.com")


class TestUpdate:
    """Test optimistic profile updates."""

    def test_update_increments_version(self, core, clock):
        """Test a successful update bumps the version and updated_at."""
        record = register(core, "alice")
        clock.advance(minutes=5)

        updated = core.accounts.update_user(
            record.id, UserUpdate(expected_version=0, first_name="Alice"), actor_id="admin"
        )

        assert updated.version == 1
        assert updated.first_name == "Alice"
        assert updated.updated_at > updated.created_at
        assert core.credentials.get_by_id(record.id).audit.updated_by == "admin"

    def test_stale_version(self, core):
        """Test an update based on an old read is rejected."""
        record = register(core, "alice")
        core.accounts.update_user(record.id, UserUpdate(expected_version=0, first_name="A"))

        with pytest.raises(ConcurrentModificationError):
            core.accounts.update_user(record.id, UserUpdate(expected_version=0, first_name="B"))

        assert core.accounts.get_user(record.id).first_name == "A"

    def test_store_detects_concurrent_write(self, core):
        """Test the compare-and-increment at write time."""
        record = register(core, "alice")
        first = core.credentials.get_by_id(record.id)
        second = core.credentials.get_by_id(record.id)

        first.first_name = "First"
        core.credentials.update(first, expected_version=0)

        second.first_name = "Second"
        with pytest.raises(ConcurrentModificationError):
            core.credentials.update(second, expected_version=0)

    def test_username_and_email_stay_unique(self, core):
        """Test renames cannot collide with other users."""
        register(core, "alice")
        bob = register(core, "bob")

        with pytest.raises(UsernameExistsError):
            core.accounts.update_user(bob.id, UserUpdate(expected_version=0, username="alice"))
        with pytest.raises(EmailExistsError):
            core.accounts.update_user(bob.id, UserUpdate(expected_version=0, email="alice@example.com"))

    def test_rename_to_own_values(self, core):
        """Test keeping one's own username and email is not a conflict."""
        alice = register(core, "alice")

        updated = core.accounts.update_user(
            alice.id,
            UserUpdate(expected_version=0, username="alice", email="alice@example.com"),
        )

        assert updated.version == 1

    def test_disable_and_enable(self, core):
        """Test toggling the active flag."""
        record = register(core, "alice")

        disabled = core.accounts.disable_user(record.id)
        assert disabled.is_active is False
        assert disabled.version == 1

        enabled = core.accounts.enable_user(record.id)
        assert enabled.is_active is True
        assert core.auth.login("alice", PASSWORD).user.id == record.id

    def test_user_role_codes(self, core):
        """Test role codes for a single user."""
        record = register(core, "alice")
        create_role(core, "USER")
        core.assignments.assign_role(record.id, "USER")

        assert core.accounts.user_role_codes(record.id) == ["USER"]
