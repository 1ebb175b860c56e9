"""
Role and permission catalog.

Creates, updates and lists roles and permissions. Role views carry the
role's active permission codes and active user count; for lists both are
fetched for the whole page at once.
"""

from typing import List, Optional

from loguru import logger

from .association_store import AssociationStore
from .errors import (
    ConcurrentModificationError,
    PermissionExistsError,
    PermissionNotFoundError,
    RoleExistsError,
    RoleNotFoundError,
)
from .models import AuditFields, Permission, Role, new_id, utc_now
from .resolver import PermissionResolver
from .role_store import RoleStore
from .schemas import (
    PageResult,
    PermissionCreate,
    PermissionUpdate,
    PermissionView,
    RoleCreate,
    RoleUpdate,
    RoleView,
)
from .token_codec import Clock


class CatalogService:
    """Role and permission management service."""

    def __init__(
        self,
        roles: RoleStore,
        associations: AssociationStore,
        resolver: PermissionResolver,
        clock: Clock = utc_now,
    ):
        self.roles = roles
        self.associations = associations
        self.resolver = resolver
        self._clock = clock

    # ========================================================================
    # Role views
    # ========================================================================

    def _role_views(self, roles: List[Role]) -> List[RoleView]:
        role_ids = [role.role_id for role in roles]
        permissions = self.resolver.resolve_permission_codes_for_roles(role_ids)
        user_counts = self.associations.count_active_users_by_role_ids(role_ids)
        return [
            RoleView.from_role(
                role,
                permissions.get(role.role_id, []),
                user_counts.get(role.role_id, 0),
            )
            for role in roles
        ]

    def _role(self, role_id: str) -> Role:
        role = self.roles.get_role(role_id)
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    def get_role(self, role_id: str) -> RoleView:
        return self._role_views([self._role(role_id)])[0]

    def get_role_by_code(self, role_code: str) -> RoleView:
        role = self.roles.get_role_by_code(role_code)
        if role is None:
            raise RoleNotFoundError(role_code)
        return self._role_views([role])[0]

    def list_roles(self, page: int = 0, size: int = 20, active_only: bool = False) -> PageResult[RoleView]:
        roles, total = self.roles.list_roles(page, size, active_only=active_only)
        return PageResult[RoleView](items=self._role_views(roles), page=page, size=size, total=total)

    def active_roles(self) -> List[RoleView]:
        return self._role_views(self.roles.all_roles(active_only=True))

    def search_roles(self, keyword: str, page: int = 0, size: int = 20) -> PageResult[RoleView]:
        roles, total = self.roles.search_roles(keyword, page, size)
        return PageResult[RoleView](items=self._role_views(roles), page=page, size=size, total=total)

    # ========================================================================
    # Role writes
    # ========================================================================

    def _check_role_unique(self, role_name: str, role_code: str, role_id: Optional[str] = None) -> None:
        existing = self.roles.get_role_by_name(role_name)
        if existing is not None and existing.role_id != role_id:
            raise RoleExistsError("role_name", role_name)
        existing = self.roles.get_role_by_code(role_code)
        if existing is not None and existing.role_id != role_id:
            raise RoleExistsError("role_code", role_code)

    def create_role(self, request: RoleCreate, actor_id: Optional[str] = None) -> RoleView:
        """
        Create a role.

        Raises:
            RoleExistsError: Name or code already used
        """
        self._check_role_unique(request.role_name, request.role_code)

        role = Role(
            role_id=new_id(),
            role_name=request.role_name,
            role_code=request.role_code,
            audit=AuditFields.new(self._clock(), actor_id),
            description=request.description,
        )
        self.roles.create_role(role)

        logger.info(f"Role created: {role.role_code} ({role.role_id})")
        return RoleView.from_role(role)

    def update_role(self, role_id: str, changes: RoleUpdate, actor_id: Optional[str] = None) -> RoleView:
        """
        Optimistic role update.

        Raises:
            RoleNotFoundError: Unknown role
            ConcurrentModificationError: Stale ``expected_version``
            RoleExistsError: New name or code already used by another role
        """
        role = self._role(role_id)
        if role.version != changes.expected_version:
            raise ConcurrentModificationError("Role", role_id, changes.expected_version)

        role_name = changes.role_name if changes.role_name is not None else role.role_name
        role_code = changes.role_code if changes.role_code is not None else role.role_code
        self._check_role_unique(role_name, role_code, role_id)

        role.role_name = role_name
        role.role_code = role_code
        if changes.description is not None:
            role.description = changes.description
        if changes.is_active is not None:
            role.is_active = changes.is_active
        role.audit = role.audit.touched(self._clock(), actor_id)

        self.roles.update_role(role, changes.expected_version)
        logger.info(f"Role updated: {role.role_code} (version {role.version})")
        return self.get_role(role_id)

    def set_role_active(self, role_id: str, active: bool, actor_id: Optional[str] = None) -> RoleView:
        """An inactive role grants nothing but keeps its links."""
        role = self._role(role_id)
        role.is_active = active
        role.audit = role.audit.touched(self._clock(), actor_id)
        self.roles.update_role(role, role.version)

        logger.info(f"Role {'enabled' if active else 'disabled'}: {role.role_code}")
        return self.get_role(role_id)

    # ========================================================================
    # Permissions
    # ========================================================================

    def _permission(self, permission_id: str) -> Permission:
        permission = self.roles.get_permission(permission_id)
        if permission is None:
            raise PermissionNotFoundError(permission_id)
        return permission

    def get_permission(self, permission_id: str) -> PermissionView:
        return PermissionView.from_permission(self._permission(permission_id))

    def get_permission_by_code(self, permission_code: str) -> PermissionView:
        permission = self.roles.get_permission_by_code(permission_code)
        if permission is None:
            raise PermissionNotFoundError(permission_code)
        return PermissionView.from_permission(permission)

    def list_permissions(
        self, page: int = 0, size: int = 20, active_only: bool = False
    ) -> PageResult[PermissionView]:
        permissions, total = self.roles.list_permissions(page, size, active_only=active_only)
        return PageResult[PermissionView](
            items=[PermissionView.from_permission(p) for p in permissions],
            page=page,
            size=size,
            total=total,
        )

    def search_permissions(self, keyword: str, page: int = 0, size: int = 20) -> PageResult[PermissionView]:
        permissions, total = self.roles.search_permissions(keyword, page, size)
        return PageResult[PermissionView](
            items=[PermissionView.from_permission(p) for p in permissions],
            page=page,
            size=size,
            total=total,
        )

    def permissions_by_resource(self, resource_name: str) -> List[PermissionView]:
        return [PermissionView.from_permission(p) for p in self.roles.permissions_by_resource(resource_name)]

    def resources(self) -> List[str]:
        """Distinct resource names, sorted."""
        return self.roles.distinct_resources()

    def actions(self) -> List[str]:
        """Distinct action types, sorted."""
        return self.roles.distinct_actions()

    def create_permission(self, request: PermissionCreate, actor_id: Optional[str] = None) -> PermissionView:
        """
        Create a permission.

        Raises:
            PermissionExistsError: Code already used
        """
        if self.roles.get_permission_by_code(request.permission_code) is not None:
            raise PermissionExistsError(request.permission_code)

        permission = Permission(
            permission_id=new_id(),
            permission_name=request.permission_name,
            permission_code=request.permission_code,
            resource_name=request.resource_name,
            action_type=request.action_type,
            audit=AuditFields.new(self._clock(), actor_id),
            description=request.description,
        )
        self.roles.create_permission(permission)

        logger.info(f"Permission created: {permission.permission_code}")
        return PermissionView.from_permission(permission)

    def update_permission(
        self, permission_id: str, changes: PermissionUpdate, actor_id: Optional[str] = None
    ) -> PermissionView:
        """
        Optimistic permission update.

        Raises:
            PermissionNotFoundError: Unknown permission
            ConcurrentModificationError: Stale ``expected_version``
            PermissionExistsError: New code already used by another permission
        """
        permission = self._permission(permission_id)
        if permission.version != changes.expected_version:
            raise ConcurrentModificationError("Permission", permission_id, changes.expected_version)

        if changes.permission_code is not None and changes.permission_code != permission.permission_code:
            if self.roles.get_permission_by_code(changes.permission_code) is not None:
                raise PermissionExistsError(changes.permission_code)
            permission.permission_code = changes.permission_code

        for field_name in ("permission_name", "resource_name", "action_type", "description", "is_active"):
            value = getattr(changes, field_name)
            if value is not None:
                setattr(permission, field_name, value)
        permission.audit = permission.audit.touched(self._clock(), actor_id)

        self.roles.update_permission(permission, changes.expected_version)
        logger.info(f"Permission updated: {permission.permission_code} (version {permission.version})")
        return PermissionView.from_permission(permission)

    def set_permission_active(
        self, permission_id: str, active: bool, actor_id: Optional[str] = None
    ) -> PermissionView:
        """An inactive permission drops out of every effective set."""
        permission = self._permission(permission_id)
        permission.is_active = active
        permission.audit = permission.audit.touched(self._clock(), actor_id)
        self.roles.update_permission(permission, permission.version)

        logger.info(f"Permission {'enabled' if active else 'disabled'}: {permission.permission_code}")
        return PermissionView.from_permission(permission)
