"""
User account management.

Admin-side user flows: lookup, paged listing, search, creation, profile
updates and enabling / disabling. Listings attach role codes to a whole page
with a single resolver call.
"""

from typing import List, Optional

from loguru import logger

from .auth_service import AuthService
from .credential_store import CredentialStore
from .errors import (
    ConcurrentModificationError,
    EmailExistsError,
    UserNotFoundError,
    UsernameExistsError,
)
from .models import User, utc_now
from .resolver import PermissionResolver
from .schemas import PageResult, UserRecord, UserUpdate
from .token_codec import Clock


class AccountService:
    """User management service."""

    def __init__(
        self,
        credentials: CredentialStore,
        resolver: PermissionResolver,
        auth: AuthService,
        clock: Clock = utc_now,
    ):
        self.credentials = credentials
        self.resolver = resolver
        self.auth = auth
        self._clock = clock

    def _user(self, user_id: str) -> User:
        user = self.credentials.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def _records(self, users: List[User]) -> List[UserRecord]:
        """User records for a list of users, role codes resolved in one call."""
        role_codes = self.resolver.resolve_role_codes_for_users(u.user_id for u in users)
        return [UserRecord.from_user(u, role_codes.get(u.user_id, [])) for u in users]

    # ========================================================================
    # Reads
    # ========================================================================

    def get_user(self, user_id: str) -> UserRecord:
        """
        Raises:
            UserNotFoundError: Unknown user
        """
        return self._records([self._user(user_id)])[0]

    def get_user_by_username(self, username: str) -> UserRecord:
        user = self.credentials.get_by_username(username)
        if user is None:
            raise UserNotFoundError(username)
        return self._records([user])[0]

    def get_user_by_email(self, email: str) -> UserRecord:
        user = self.credentials.get_by_email(email)
        if user is None:
            raise UserNotFoundError(email)
        return self._records([user])[0]

    def list_users(self, page: int = 0, size: int = 20) -> PageResult[UserRecord]:
        """
        One page of users with their role codes.

        Costs a count, a page query and one role resolution, whatever the
        page size.

        Args:
            page: Zero-based page number
            size: Page size
        """
        users, total = self.credentials.list_page(page, size)
        return PageResult[UserRecord](items=self._records(users), page=page, size=size, total=total)

    def search_users(self, keyword: str, page: int = 0, size: int = 20) -> PageResult[UserRecord]:
        """Users matching ``keyword`` in username, email or name."""
        users, total = self.credentials.search(keyword, page, size)
        return PageResult[UserRecord](items=self._records(users), page=page, size=size, total=total)

    def user_role_codes(self, user_id: str) -> List[str]:
        self._user(user_id)
        return self.resolver.resolve_role_codes_for_user(user_id)

    # ========================================================================
    # Writes
    # ========================================================================

    def create_user(
        self,
        username: str,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> UserRecord:
        """
        Create a user on someone's behalf.

        Same rules as self-registration, without the confirmation field.
        """
        return self.auth.register(
            username=username,
            email=email,
            password=password,
            confirm_password=password,
            first_name=first_name,
            last_name=last_name,
            actor_id=actor_id,
        )

    def update_user(
        self, user_id: str, changes: UserUpdate, actor_id: Optional[str] = None
    ) -> UserRecord:
        """
        Apply profile changes if the caller saw the current version.

        Args:
            user_id: User to change
            changes: New field values plus the version the caller read
            actor_id: Who is making the change (optional)

        Returns:
            The updated user (version incremented)

        Raises:
            UserNotFoundError: Unknown user
            ConcurrentModificationError: The user changed since the caller read it
            UsernameExistsError / EmailExistsError: New value used by another user
        """
        user = self._user(user_id)
        if user.version != changes.expected_version:
            logger.warning(
                f"Update of {user.username} rejected: version {changes.expected_version} "
                f"is stale (current {user.version})"
            )
            raise ConcurrentModificationError("User", user_id, changes.expected_version)

        if changes.username is not None and changes.username != user.username:
            if self.credentials.username_exists(changes.username, exclude_user_id=user_id):
                raise UsernameExistsError(changes.username)
            user.username = changes.username

        if changes.email is not None and str(changes.email) != user.email:
            email = str(changes.email)
            if self.credentials.email_exists(email, exclude_user_id=user_id):
                raise EmailExistsError(email)
            user.email = email

        if changes.first_name is not None:
            user.first_name = changes.first_name
        if changes.last_name is not None:
            user.last_name = changes.last_name
        if changes.is_active is not None:
            user.is_active = changes.is_active

        user.audit = user.audit.touched(self._clock(), actor_id)
        self.credentials.update(user, changes.expected_version)

        logger.info(f"User updated: {user.username} (version {user.version})")
        return self._records([user])[0]

    def set_user_active(self, user_id: str, active: bool, actor_id: Optional[str] = None) -> UserRecord:
        """
        Enable or disable a user.

        A disabled user can no longer log in or refresh, and is granted no
        permissions.
        """
        user = self._user(user_id)
        self.credentials.set_active(user, active, user.audit.touched(self._clock(), actor_id))

        logger.info(f"User {'enabled' if active else 'disabled'}: {user.username}")
        return self._records([user])[0]

    def enable_user(self, user_id: str, actor_id: Optional[str] = None) -> UserRecord:
        return self.set_user_active(user_id, True, actor_id)

    def disable_user(self, user_id: str, actor_id: Optional[str] = None) -> UserRecord:
        return self.set_user_active(user_id, False, actor_id)
