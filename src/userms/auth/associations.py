"""
Association management.

Assigns and revokes roles on users and permissions on roles, and deletes
principals together with their links.
"""

from typing import List, Optional

from loguru import logger

from .association_store import AssociationStore
from .credential_store import CredentialStore
from .errors import (
    AlreadyAssignedError,
    NotAssignedError,
    PermissionInUseError,
    PermissionNotFoundError,
    RoleInUseError,
    RoleNotFoundError,
    UserNotFoundError,
)
from .models import Permission, Role, RolePermission, User, UserRole, utc_now
from .role_store import RoleStore
from .token_codec import Clock


class AssociationManager:
    """
    Role and permission assignment.

    A duplicate assignment is an error, never a silent no-op: the composite
    key of each link table guarantees that of two racing assigns exactly one
    succeeds and the other gets ``AlreadyAssignedError``.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        roles: RoleStore,
        associations: AssociationStore,
        clock: Clock = utc_now,
    ):
        self.credentials = credentials
        self.roles = roles
        self.associations = associations
        self._clock = clock

    # ------------------------------------------------------------------------
    # Lookups that fail loudly
    # ------------------------------------------------------------------------

    def _user(self, user_id: str) -> User:
        user = self.credentials.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def _role(self, role_id: str) -> Role:
        role = self.roles.get_role(role_id)
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    def _role_by_code(self, role_code: str) -> Role:
        role = self.roles.get_role_by_code(role_code)
        if role is None:
            raise RoleNotFoundError(role_code)
        return role

    def _permission_by_code(self, permission_code: str) -> Permission:
        permission = self.roles.get_permission_by_code(permission_code)
        if permission is None:
            raise PermissionNotFoundError(permission_code)
        return permission

    # ========================================================================
    # User <-> role
    # ========================================================================

    def assign_role(self, user_id: str, role_code: str, actor_id: Optional[str] = None) -> UserRole:
        """
        Give a user a role.

        Args:
            user_id: User to receive the role
            role_code: Code of the role
            actor_id: Who is making the change (optional)

        Returns:
            The created link

        Raises:
            UserNotFoundError: Unknown user
            RoleNotFoundError: Unknown role code
            AlreadyAssignedError: The user already has the role
        """
        user = self._user(user_id)
        role = self._role_by_code(role_code)

        if self.associations.user_role_exists(user.user_id, role.role_id):
            logger.warning(f"Role {role_code} already assigned to {user.username}")
            raise AlreadyAssignedError(user.user_id, role_code)

        link = UserRole(
            user_id=user.user_id,
            role_id=role.role_id,
            assigned_at=self._clock(),
            assigned_by=actor_id,
        )
        self.associations.insert_user_role(link, label=role_code)

        logger.info(f"Role {role_code} assigned to {user.username}")
        return link

    def revoke_role(self, user_id: str, role_code: str) -> None:
        """
        Take a role away from a user.

        Raises:
            UserNotFoundError: Unknown user
            RoleNotFoundError: Unknown role code
            NotAssignedError: The user does not have the role
        """
        user = self._user(user_id)
        role = self._role_by_code(role_code)

        if not self.associations.delete_user_role(user.user_id, role.role_id):
            logger.warning(f"Role {role_code} is not assigned to {user.username}")
            raise NotAssignedError(user.user_id, role_code)

        logger.info(f"Role {role_code} revoked from {user.username}")

    def user_roles(self, user_id: str) -> List[Role]:
        """All roles linked to a user, active or not, ordered by code."""
        self._user(user_id)
        role_ids = self.associations.role_ids_for_user(user_id)
        roles = self.roles.get_roles_by_ids(role_ids)
        return sorted(roles.values(), key=lambda role: role.role_code)

    def user_count(self, role_id: str, active_only: bool = False) -> int:
        """Number of users holding a role."""
        self._role(role_id)
        return self.associations.count_users_for_role(role_id, active_only=active_only)

    def role_users(self, role_id: str) -> List[User]:
        """
        All users holding a role, active or not, ordered by username.

        Two store calls whatever the number of holders.
        """
        self._role(role_id)
        user_ids = [user_id for _, user_id in self.associations.find_user_ids_by_role_ids([role_id])]
        users = self.credentials.get_by_ids(user_ids)
        return sorted(users.values(), key=lambda user: user.username.lower())

    # ========================================================================
    # Role <-> permission
    # ========================================================================

    def assign_permission(
        self, role_id: str, permission_code: str, actor_id: Optional[str] = None
    ) -> RolePermission:
        """
        Grant a permission to a role.

        Raises:
            RoleNotFoundError: Unknown role
            PermissionNotFoundError: Unknown permission code
            AlreadyAssignedError: The role already grants the permission
        """
        role = self._role(role_id)
        permission = self._permission_by_code(permission_code)

        if self.associations.role_permission_exists(role.role_id, permission.permission_id):
            logger.warning(f"Permission {permission_code} already granted to role {role.role_code}")
            raise AlreadyAssignedError(role.role_id, permission_code)

        link = RolePermission(
            role_id=role.role_id,
            permission_id=permission.permission_id,
            granted_at=self._clock(),
            granted_by=actor_id,
        )
        self.associations.insert_role_permission(link, label=permission_code)

        logger.info(f"Permission {permission_code} granted to role {role.role_code}")
        return link

    def revoke_permission(self, role_id: str, permission_code: str) -> None:
        """
        Remove a permission from a role.

        Raises:
            RoleNotFoundError: Unknown role
            PermissionNotFoundError: Unknown permission code
            NotAssignedError: The role does not grant the permission
        """
        role = self._role(role_id)
        permission = self._permission_by_code(permission_code)

        if not self.associations.delete_role_permission(role.role_id, permission.permission_id):
            logger.warning(f"Permission {permission_code} is not granted to role {role.role_code}")
            raise NotAssignedError(role.role_id, permission_code)

        logger.info(f"Permission {permission_code} revoked from role {role.role_code}")

    def role_permissions(self, role_id: str) -> List[Permission]:
        """All permissions linked to a role, active or not, ordered by code."""
        self._role(role_id)
        permission_ids = self.associations.permission_ids_for_role(role_id)
        permissions = self.roles.get_permissions_by_ids(permission_ids)
        return sorted(permissions.values(), key=lambda permission: permission.permission_code)

    def role_count(self, permission_id: str) -> int:
        """Number of roles granting a permission."""
        if self.roles.get_permission(permission_id) is None:
            raise PermissionNotFoundError(permission_id)
        return self.associations.count_roles_for_permission(permission_id)

    # ========================================================================
    # Principal deletes
    # ========================================================================

    def delete_user(self, user_id: str) -> None:
        """
        Hard-delete a user; its role links go with it.

        Raises:
            UserNotFoundError: Unknown user
        """
        if not self.associations.delete_user(user_id):
            raise UserNotFoundError(user_id)
        logger.info(f"User deleted: {user_id}")

    def delete_role(self, role_id: str) -> None:
        """
        Delete a role and its permission links.

        Raises:
            RoleNotFoundError: Unknown role
            RoleInUseError: Users still hold the role
        """
        role = self._role(role_id)
        try:
            deleted = self.associations.delete_role(role_id)
        except RoleInUseError as e:
            logger.warning(f"Refusing to delete role {role.role_code}: {e.message}")
            raise

        if not deleted:
            raise RoleNotFoundError(role_id)
        logger.info(f"Role deleted: {role.role_code}")

    def delete_permission(self, permission_id: str) -> None:
        """
        Delete a permission.

        Raises:
            PermissionNotFoundError: Unknown permission
            PermissionInUseError: A role still grants it
        """
        permission = self.roles.get_permission(permission_id)
        if permission is None:
            raise PermissionNotFoundError(permission_id)

        try:
            deleted = self.associations.delete_permission(permission_id)
        except PermissionInUseError as e:
            logger.warning(f"Refusing to delete permission {permission.permission_code}: {e.message}")
            raise

        if not deleted:
            raise PermissionNotFoundError(permission_id)
        logger.info(f"Permission deleted: {permission.permission_code}")
