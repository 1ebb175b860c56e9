"""
Tests for permission checks on request contexts.
"""

import pytest

from userms.auth import (
    AccessControlGate,
    PermissionDeniedError,
    RequestContext,
    UnauthenticatedError,
    permission_required,
)

from conftest import PASSWORD, create_permission, create_role, register


@pytest.fixture
def editor_ctx(core):
    """Context of a user whose EDITOR role grants USER_READ and USER_WRITE."""
    record = register(core, "alice")
    role = create_role(core, "EDITOR")
    for code in ("USER_READ", "USER_WRITE", "USER_DELETE"):
        create_permission(core, code)
    core.assignments.assign_permission(role.id, "USER_READ")
    core.assignments.assign_permission(role.id, "USER_WRITE")
    core.assignments.assign_role(record.id, "EDITOR")

    token = core.auth.login("alice", PASSWORD).token
    return core.gate.authenticate(f"Bearer {token}")


class TestPermissionChecker:
    """Test checks against the resolver."""

    def test_granted(self, core, editor_ctx):
        """Test a permission granted through a role."""
        assert core.checker.has_permission(editor_ctx, "USER_WRITE") is True
        core.checker.require_permission(editor_ctx, "USER_WRITE")

    def test_denied(self, core, editor_ctx):
        """Test the denial names the subject and the required codes."""
        assert core.checker.has_permission(editor_ctx, "USER_DELETE") is False

        with pytest.raises(PermissionDeniedError) as exc_info:
            core.checker.require_permission(editor_ctx, "USER_DELETE")

        assert exc_info.value.subject == "alice"
        assert exc_info.value.required == ("USER_DELETE",)

    def test_anonymous(self, core):
        """Test an anonymous context is unauthenticated, not denied."""
        ctx = RequestContext.anonymous()

        assert core.checker.has_permission(ctx, "USER_READ") is False
        with pytest.raises(UnauthenticatedError):
            core.checker.require_permission(ctx, "USER_READ")

    def test_any_permission(self, core, editor_ctx):
        """Test any-of checks."""
        assert core.checker.has_any_permission(editor_ctx, ["USER_DELETE", "USER_READ"]) is True
        core.checker.require_any_permission(editor_ctx, ["USER_DELETE", "USER_READ"])

        with pytest.raises(PermissionDeniedError):
            core.checker.require_any_permission(editor_ctx, ["USER_DELETE"])

    def test_effective_permissions(self, core, editor_ctx):
        """Test the full set for a context."""
        assert core.checker.effective_permissions(editor_ctx) == {"USER_READ", "USER_WRITE"}
        assert core.checker.effective_permissions(RequestContext.anonymous()) == set()

    def test_revocation_applies_to_next_check(self, core, editor_ctx):
        """Test decisions are not cached across checks."""
        role = core.catalog.get_role_by_code("EDITOR")
        core.assignments.revoke_permission(role.id, "USER_WRITE")

        assert core.checker.has_permission(editor_ctx, "USER_WRITE") is False

    def test_principal_without_user_id(self, core, editor_ctx):
        """Test a token-only principal holds nothing."""
        token = core.auth.login("alice", PASSWORD).token
        ctx = AccessControlGate(core.codec).authenticate(token)

        assert ctx.is_authenticated
        assert core.checker.has_permission(ctx, "USER_READ") is False
        with pytest.raises(PermissionDeniedError):
            core.checker.require_permission(ctx, "USER_READ")


class TestPermissionRequired:
    """Test the handler decorator."""

    def test_runs_when_granted(self, core, editor_ctx):
        """Test the handler runs and gets its arguments."""
        @permission_required(core.checker, "USER_READ")
        def list_users(ctx, page=0):
            return f"{ctx.principal.username}:{page}"

        assert list_users(editor_ctx, page=2) == "alice:2"

    def test_blocks_when_denied(self, core, editor_ctx):
        """Test the handler body never runs on denial."""
        calls = []

        @permission_required(core.checker, "USER_DELETE")
        def delete_user(ctx, user_id):
            calls.append(user_id)

        with pytest.raises(PermissionDeniedError):
            delete_user(editor_ctx, "u1")
        with pytest.raises(UnauthenticatedError):
            delete_user(RequestContext.anonymous(), "u1")
        assert calls == []

    def test_needs_a_code(self, core):
        """Test the decorator refuses an empty permission list."""
        with pytest.raises(ValueError):
            permission_required(core.checker)

    def test_keeps_metadata(self, core):
        """Test the wrapped handler keeps its name and docstring."""
        @permission_required(core.checker, "USER_READ")
        def show_user(ctx):
            """Show one user."""

        assert show_user.__name__ == "show_user"
        assert show_user.__doc__ == "Show one user."
