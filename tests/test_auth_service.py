"""
Tests for registration, login, session refresh and current-user lookup.
"""

import pytest

from userms.auth import (
    EmailExistsError,
    ErrorCode,
    InvalidCredentialsError,
    LoginRequest,
    PasswordMismatchError,
    PasswordPolicyError,
    RegistrationRequest,
    TokenNotRefreshableError,
    UserInactiveError,
    UserNotFoundError,
    UsernameExistsError,
)

from conftest import PASSWORD, create_role, register, tamper_signature


class TestRegister:
    """Test user registration."""

    def test_register_then_login(self, core):
        """Test a newly registered user can log in."""
        record = register(core, "alice")

        assert record.username == "alice"
        assert record.is_active is True
        assert record.version == 0
        assert record.roles == []
        assert record.created_at == record.updated_at

        result = core.auth.login("alice", PASSWORD)
        assert result.user.id == record.id
        assert result.token_type == "Bearer"
        assert result.expires_in == 24 * 3600

    def test_password_is_hashed(self, core):
        """Test the stored password is a bcrypt digest, never the plaintext."""
        record = register(core, "alice")
        stored = core.credentials.get_by_id(record.id)

        assert stored.password_hash != PASSWORD
        assert core.hasher.verify(PASSWORD, stored.password_hash)

    def test_record_has_no_password_hash(self, core):
        """Test outward records carry no hash field."""
        record = register(core, "alice")

        assert "password_hash" not in record.model_dump()
        assert "password" not in record.model_dump_json()

    def test_duplicate_username(self, core):
        """Test a taken username fails even with a new email."""
        register(core, "alice")

        with pytest.raises(UsernameExistsError):
            register(core, "alice", email="other@example.com")

    def test_duplicate_username_ignores_case(self, core):
        """Test usernames are unique regardless of case."""
        register(core, "alice")

        with pytest.raises(UsernameExistsError):
            register(core, "ALICE", email="other@example.com")

    def test_duplicate_email(self, core):
        """Test a taken email fails even with a new username."""
        register(core, "alice")

        with pytest.raises(EmailExistsError):
            register(core, "bob", email="alice@example.com")

    def test_mismatch_checked_before_uniqueness(self, core):
        """Test a mismatch is reported even when the username is taken."""
        register(core, "alice")

        with pytest.raises(PasswordMismatchError):
            core.auth.register("alice", "alice@example.com", PASSWORD, PASSWORD + "x")

    def test_weak_password(self, core):
        """Test the password policy is asserted by the core."""
        with pytest.raises(PasswordPolicyError):
            core.auth.register("alice", "alice@example.com", "weakpass", "weakpass")

    def test_register_request(self, core):
        """Test registration from a validated request model."""
        request = RegistrationRequest(
            username="alice",
            email="alice@example.com",
            password=PASSWORD,
            confirm_password=PASSWORD,
            first_name="Alice",
            last_name="Liddell",
        )

        record = core.auth.register_request(request)

        assert record.full_name == "Alice Liddell"


class TestLogin:
    """Test login."""

    def test_login_request(self, core):
        """Test login from a validated request model."""
        register(core, "alice")

        result = core.auth.login_request(LoginRequest(username_or_email="alice", password=PASSWORD))

        assert result.user.username == "alice"

    def test_login_by_email(self, core):
        """Test the email address works as the login identifier."""
        register(core, "alice")

        result = core.auth.login("alice@example.com", PASSWORD)

        assert result.user.username == "alice"
        assert core.codec.parse(result.token).subject == "alice"

    def test_wrong_password_and_unknown_user_look_the_same(self, core):
        """Test both failures carry the same error kind."""
        register(core, "alice")

        with pytest.raises(InvalidCredentialsError) as wrong_password:
            core.auth.login("alice", "Wrong1@pass")
        with pytest.raises(InvalidCredentialsError) as unknown_user:
            core.auth.login("nobody", PASSWORD)

        assert wrong_password.value.code == unknown_user.value.code == ErrorCode.INVALID_CREDENTIALS
        assert wrong_password.value.message == unknown_user.value.message

    def test_inactive_user(self, core):
        """Test correct credentials on a disabled account give UserInactive."""
        record = register(core, "alice")
        core.accounts.disable_user(record.id)

        with pytest.raises(UserInactiveError):
            core.auth.login("alice", PASSWORD)

    def test_inactive_user_wrong_password(self, core):
        """Test a disabled account is reported before the password is checked."""
        record = register(core, "alice")
        core.accounts.disable_user(record.id)

        with pytest.raises(UserInactiveError):
            core.auth.login("alice", "Wrong1@pass")

    def test_unknown_user_still_checks_a_digest(self, core, monkeypatch):
        """Test an unknown identifier costs one bcrypt check like a known one."""
        calls = []
        original = core.auth.hasher.verify

        def counting(plaintext, digest):
            calls.append(digest)
            return original(plaintext, digest)

        monkeypatch.setattr(core.auth.hasher, "verify", counting)

        with pytest.raises(InvalidCredentialsError):
            core.auth.login("nobody", PASSWORD)
        with pytest.raises(InvalidCredentialsError):
            core.auth.login("nobody-else", PASSWORD)

        assert len(calls) == 2
        assert calls[0] == calls[1]

    def test_login_includes_role_codes(self, core):
        """Test the user record lists active role codes."""
        record = register(core, "alice")
        create_role(core, "USER")
        create_role(core, "ADMIN")
        core.assignments.assign_role(record.id, "USER")
        core.assignments.assign_role(record.id, "ADMIN")

        result = core.auth.login("alice", PASSWORD)

        assert result.user.roles == ["ADMIN", "USER"]


class TestRefreshSession:
    """Test session refresh."""

    def test_refresh_within_grace(self, core, clock):
        """Test an expired token inside the grace window yields a new session."""
        register(core, "alice")
        old = core.auth.login("alice", PASSWORD).token
        clock.advance(hours=25)

        result = core.auth.refresh_session(old)

        assert result.user.username == "alice"
        assert core.codec.validate(result.token, "alice")

    def test_refresh_beyond_grace(self, core, clock):
        """Test refresh fails after the grace window."""
        register(core, "alice")
        old = core.auth.login("alice", PASSWORD).token
        clock.advance(hours=49)

        with pytest.raises(TokenNotRefreshableError):
            core.auth.refresh_session(old)

    def test_refresh_forged_token(self, core):
        """Test a tampered token cannot be refreshed."""
        register(core, "alice")
        old = core.auth.login("alice", PASSWORD).token

        with pytest.raises(TokenNotRefreshableError):
            core.auth.refresh_session(tamper_signature(old))

    def test_refresh_rechecks_active_flag(self, core):
        """Test a user disabled after login cannot refresh."""
        record = register(core, "alice")
        old = core.auth.login("alice", PASSWORD).token
        core.accounts.disable_user(record.id)

        with pytest.raises(UserInactiveError):
            core.auth.refresh_session(old)

    def test_refresh_deleted_user(self, core):
        """Test a user deleted after login cannot refresh."""
        record = register(core, "alice")
        old = core.auth.login("alice", PASSWORD).token
        core.assignments.delete_user(record.id)

        with pytest.raises(UserNotFoundError):
            core.auth.refresh_session(old)


class TestCurrentUserAndLogout:
    """Test current-user lookup and logout."""

    def test_current_user(self, core):
        """Test lookup by token subject."""
        register(core, "alice")

        assert core.auth.current_user("alice").email == "alice@example.com"

    def test_current_user_unknown(self, core):
        """Test an unknown subject fails."""
        with pytest.raises(UserNotFoundError):
            core.auth.current_user("ghost")

    def test_logout_keeps_token_valid(self, core):
        """Test logout is stateless and does not revoke the token."""
        register(core, "alice")
        token = core.auth.login("alice", PASSWORD).token

        core.auth.logout(token)
        core.auth.logout("garbage")

        assert core.codec.validate(token, "alice")


class TestChangePassword:
    """Test password changes."""

    def test_change_then_login(self, core):
        """Test only the new password works afterwards."""
        record = register(core, "alice")

        updated = core.auth.change_password(record.id, PASSWORD, "Newpass1!x", "Newpass1!x")

        assert updated.version == 1
        assert core.auth.login("alice", "Newpass1!x").user.id == record.id
        with pytest.raises(InvalidCredentialsError):
            core.auth.login("alice", PASSWORD)

    def test_wrong_current_password(self, core):
        """Test the current password must be proven."""
        record = register(core, "alice")

        with pytest.raises(InvalidCredentialsError):
            core.auth.change_password(record.id, "Wrong1@pass", "Newpass1!x", "Newpass1!x")

    def test_mismatch_and_policy(self, core):
        """Test confirmation and policy apply to the new password."""
        record = register(core, "alice")

        with pytest.raises(PasswordMismatchError):
            core.auth.change_password(record.id, PASSWORD, "Newpass1!x", "Newpass1!y")
        with pytest.raises(PasswordPolicyError):
            core.auth.change_password(record.id, PASSWORD, "weakpass", "weakpass")

    def test_unknown_user(self, core):
        """Test changing the password of a missing user."""
        with pytest.raises(UserNotFoundError):
            core.auth.change_password("missing", PASSWORD, "Newpass1!x", "Newpass1!x")
