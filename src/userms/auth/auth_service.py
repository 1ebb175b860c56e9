"""
Authentication service.

Combines the credential store, password hasher, token codec and permission
resolver for the registration / login / refresh flow.
"""

from typing import Optional

from loguru import logger

from .credential_store import CredentialStore
from .errors import (
    EmailExistsError,
    InvalidCredentialsError,
    PasswordMismatchError,
    TokenMalformedError,
    TokenNotRefreshableError,
    UserInactiveError,
    UserNotFoundError,
    UsernameExistsError,
)
from .models import AuditFields, User, new_id
from .passwords import PasswordHasher, check_password_policy
from .resolver import PermissionResolver
from .schemas import AuthResult, LoginRequest, RegistrationRequest, UserRecord
from .token_codec import TokenCodec


class AuthService:
    """
    User authentication service.

    Provides:
    - Registration
    - Login with username or email
    - Session refresh from an expired (but genuine) token
    - Current-user lookup for an authenticated subject
    """

    def __init__(
        self,
        credentials: CredentialStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        resolver: PermissionResolver,
    ):
        """
        Initialize service.

        Args:
            credentials: User store
            hasher: Password hasher
            codec: Token codec (its clock also stamps audit fields)
            resolver: Resolver used to attach role codes to user records
        """
        self.credentials = credentials
        self.hasher = hasher
        self.codec = codec
        self.resolver = resolver
        self._dummy_hash: Optional[str] = None

    def _dummy_digest(self) -> str:
        """Digest checked against when the login identifier matches no user."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(new_id())
        return self._dummy_hash

    def _record(self, user: User) -> UserRecord:
        return UserRecord.from_user(user, self.resolver.resolve_role_codes_for_user(user.user_id))

    def _result(self, token: str, user: User) -> AuthResult:
        return AuthResult(
            token=token,
            expires_in=self.codec.ttl_seconds,
            user=self._record(user),
        )

    # ========================================================================
    # Registration
    # ========================================================================

    def register(
        self,
        username: str,
        email: str,
        password: str,
        confirm_password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> UserRecord:
        """
        Register a new user.

        The password/confirmation comparison runs before any lookup, so a
        mismatch says nothing about whether the username or email exists.

        Args:
            username: Unique username
            email: Unique email address
            password: Plain text password (will be hashed)
            confirm_password: Must equal ``password``
            first_name: Optional given name
            last_name: Optional family name
            actor_id: Creator recorded in the audit fields (optional)

        Returns:
            The new active user, version 0

        Raises:
            PasswordMismatchError: Password and confirmation differ
            PasswordPolicyError: Password too weak
            UsernameExistsError: Username taken
            EmailExistsError: Email taken
        """
        if password != confirm_password:
            logger.warning(f"Registration rejected for '{username}': passwords do not match")
            raise PasswordMismatchError()

        check_password_policy(password)

        if self.credentials.username_exists(username):
            logger.warning(f"Registration rejected: username '{username}' already exists")
            raise UsernameExistsError(username)
        if self.credentials.email_exists(email):
            logger.warning(f"Registration rejected: email '{email}' already exists")
            raise EmailExistsError(email)

        user = User(
            user_id=new_id(),
            username=username,
            email=email,
            password_hash=self.hasher.hash(password),
            audit=AuditFields.new(self.codec.now(), actor_id),
            is_active=True,
            first_name=first_name,
            last_name=last_name,
            version=0,
        )
        self.credentials.create(user)

        logger.info(f"User registered: {username} ({user.user_id})")
        return UserRecord.from_user(user, [])

    def register_request(self, request: RegistrationRequest) -> UserRecord:
        """Register from a validated ``RegistrationRequest``."""
        return self.register(
            username=request.username,
            email=str(request.email),
            password=request.password,
            confirm_password=request.confirm_password,
            first_name=request.first_name,
            last_name=request.last_name,
        )

    # ========================================================================
    # Login / refresh / logout
    # ========================================================================

    def login(self, username_or_email: str, password: str) -> AuthResult:
        """
        Authenticate a user and issue a token.

        Unknown users and wrong passwords fail the same way, and both pay
        for one bcrypt check. A deactivated account is reported before the
        password is checked.

        Args:
            username_or_email: Username or email address
            password: Plain text password

        Returns:
            AuthResult with the token and user record

        Raises:
            InvalidCredentialsError: Unknown user or wrong password
            UserInactiveError: Deactivated account
        """
        user = self.credentials.get_by_username_or_email(username_or_email)
        if user is None:
            # Same bcrypt cost as a real check
            self.hasher.verify(password, self._dummy_digest())
            logger.warning(f"Login failed: user '{username_or_email}' not found")
            raise InvalidCredentialsError()

        if not user.is_active:
            logger.warning(f"Login failed: user '{user.username}' is inactive")
            raise UserInactiveError(user.username)

        if not self.hasher.verify(password, user.password_hash):
            logger.warning(f"Login failed: invalid password for '{user.username}'")
            raise InvalidCredentialsError()

        token = self.codec.issue(user.username)
        logger.info(f"User logged in: {user.username}")
        return self._result(token, user)

    def login_request(self, request: LoginRequest) -> AuthResult:
        return self.login(request.username_or_email, request.password)

    def refresh_session(self, old_token: str) -> AuthResult:
        """
        Exchange a refreshable token for a new one.

        The user's existence and active flag are checked again on every
        refresh.

        Raises:
            TokenNotRefreshableError: Forged, malformed, or expired beyond the grace window
            UserNotFoundError: The subject no longer exists
            UserInactiveError: The subject has been deactivated
        """
        if not self.codec.can_refresh(old_token):
            raise TokenNotRefreshableError()

        subject = self.codec.parse(old_token).subject
        user = self.credentials.get_by_username(subject)
        if user is None:
            logger.warning(f"Refresh rejected: user '{subject}' no longer exists")
            raise UserNotFoundError(subject)
        if not user.is_active:
            logger.warning(f"Refresh rejected: user '{subject}' is inactive")
            raise UserInactiveError(subject)

        token = self.codec.refresh(old_token)
        return self._result(token, user)

    def change_password(
        self,
        user_id: str,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> UserRecord:
        """
        Replace a user's password after re-checking the current one.

        Tokens already issued stay valid until they expire.

        Raises:
            UserNotFoundError: Unknown user
            PasswordMismatchError: New password and confirmation differ
            InvalidCredentialsError: Current password is wrong
            PasswordPolicyError: New password too weak
            ConcurrentModificationError: The user changed during the update
        """
        user = self.credentials.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        if new_password != confirm_password:
            raise PasswordMismatchError()

        if not self.hasher.verify(current_password, user.password_hash):
            logger.warning(f"Password change rejected for '{user.username}': wrong current password")
            raise InvalidCredentialsError()

        check_password_policy(new_password)

        self.credentials.update_password_hash(
            user,
            self.hasher.hash(new_password),
            user.audit.touched(self.codec.now(), user.user_id),
        )

        logger.info(f"Password changed: {user.username}")
        return self._record(user)

    def current_user(self, subject: str) -> UserRecord:
        """
        User record for an authenticated subject.

        Raises:
            UserNotFoundError: No user with that username
        """
        user = self.credentials.get_by_username(subject)
        if user is None:
            raise UserNotFoundError(subject)
        return self._record(user)

    def logout(self, token: str) -> None:
        """
        Log out.

        Tokens are stateless and there is no revocation list, so this only
        records the event; the client discards the token.
        """
        try:
            subject = self.codec.parse(token).subject
        except TokenMalformedError:
            subject = None
        logger.info(f"User logged out: {subject or 'unknown'}")
