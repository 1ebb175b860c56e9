"""
Role and permission persistence.
"""

import sqlite3
from typing import Dict, Iterable, List, Optional, Tuple

from .credential_store import check_paging, like_pattern
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
    PermissionExistsError,
    PermissionNotFoundError,
    RoleExistsError,
    RoleNotFoundError,
)
from .models import Permission, Role
from .retry import retry_on_locked


_ROLE_COLUMNS = (
    "role_id, role_name, role_code, description, is_active, "
    "created_at, updated_at, created_by, updated_by, version"
)

_PERMISSION_COLUMNS = (
    "permission_id, permission_name, permission_code, resource_name, action_type, "
    "description, is_active, created_at, updated_at, created_by, updated_by, version"
)

_LIKE = "LIKE ? ESCAPE '\\'"


def _row_to_role(row: sqlite3.Row) -> Role:
    return Role(
        role_id=row["role_id"],
        role_name=row["role_name"],
        role_code=row["role_code"],
        audit=audit_from_row(row),
        description=row["description"],
        is_active=bool(row["is_active"]),
        version=row["version"],
    )


def _row_to_permission(row: sqlite3.Row) -> Permission:
    return Permission(
        permission_id=row["permission_id"],
        permission_name=row["permission_name"],
        permission_code=row["permission_code"],
        resource_name=row["resource_name"],
        action_type=row["action_type"],
        audit=audit_from_row(row),
        description=row["description"],
        is_active=bool(row["is_active"]),
        version=row["version"],
    )


def _role_conflict(error: sqlite3.IntegrityError, role: Role) -> Optional[Exception]:
    column = unique_violation(error)
    if column == "roles.role_name":
        return RoleExistsError("role_name", role.role_name)
    if column == "roles.role_code":
        return RoleExistsError("role_code", role.role_code)
    return None


def _permission_conflict(error: sqlite3.IntegrityError, permission: Permission) -> Optional[Exception]:
    if unique_violation(error) == "permissions.permission_code":
        return PermissionExistsError(permission.permission_code)
    return None


class RoleStore:
    """
    Role and permission store.

    Uniqueness of role name, role code and permission code is enforced by
    the schema and surfaced as typed conflicts.
    """

    def __init__(self, db: Database):
        self.db = db

    # ========================================================================
    # Role writes
    # ========================================================================

    @retry_on_locked
    def create_role(self, role: Role) -> Role:
        """
        Insert a role.

        Raises:
            RoleExistsError: Name or code already used
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO roles ({_ROLE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        role.role_id,
                        role.role_name,
                        role.role_code,
                        role.description,
                        1 if role.is_active else 0,
                        *audit_values(role.audit),
                        role.version,
                    ),
                )
        except sqlite3.IntegrityError as e:
            conflict = _role_conflict(e, role)
            if conflict is None:
                raise
            raise conflict from e
        return role

    @retry_on_locked
    def update_role(self, role: Role, expected_version: int) -> Role:
        """
        Optimistic role update.

        Raises:
            RoleNotFoundError: No such role
            ConcurrentModificationError: Stored version differs from ``expected_version``
            RoleExistsError: New name or code already used
        """
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE roles
                    SET role_name = ?, role_code = ?, description = ?, is_active = ?,
                        updated_at = ?, updated_by = ?, version = version + 1
                    WHERE role_id = ? AND version = ?
                    """,
                    (
                        role.role_name,
                        role.role_code,
                        role.description,
                        1 if role.is_active else 0,
                        to_db_time(role.audit.updated_at),
                        role.audit.updated_by,
                        role.role_id,
                        expected_version,
                    ),
                )
                if cursor.rowcount == 0:
                    if conn.execute(
                        "SELECT 1 FROM roles WHERE role_id = ?", (role.role_id,)
                    ).fetchone() is None:
                        raise RoleNotFoundError(role.role_id)
                    raise ConcurrentModificationError("Role", role.role_id, expected_version)
        except sqlite3.IntegrityError as e:
            conflict = _role_conflict(e, role)
            if conflict is None:
                raise
            raise conflict from e

        role.version = expected_version + 1
        return role

    # ========================================================================
    # Role lookups
    # ========================================================================

    def _role_where(self, where: str, params: tuple) -> Optional[Role]:
        with self.db.read() as conn:
            row = conn.execute(
                f"SELECT {_ROLE_COLUMNS} FROM roles WHERE {where}", params
            ).fetchone()
        return _row_to_role(row) if row else None

    def get_role(self, role_id: str) -> Optional[Role]:
        return self._role_where("role_id = ?", (role_id,))

    def get_role_by_code(self, role_code: str) -> Optional[Role]:
        return self._role_where("role_code = ?", (role_code,))

    def get_role_by_name(self, role_name: str) -> Optional[Role]:
        return self._role_where("role_name = ?", (role_name,))

    def get_roles_by_ids(self, role_ids: Iterable[str]) -> Dict[str, Role]:
        ids = list(dict.fromkeys(role_ids))
        roles: Dict[str, Role] = {}
        with self.db.read() as conn:
            for chunk in chunked(ids):
                for row in conn.execute(
                    f"SELECT {_ROLE_COLUMNS} FROM roles WHERE role_id IN ({placeholders(len(chunk))})",
                    chunk,
                ).fetchall():
                    roles[row["role_id"]] = _row_to_role(row)
        return roles

    def list_roles(self, page: int, size: int, active_only: bool = False) -> Tuple[List[Role], int]:
        """
        One page of roles ordered by role code.

        Returns:
            (roles on the page, total number of roles matching)
        """
        check_paging(page, size)
        where = "WHERE is_active = 1" if active_only else ""
        with self.db.read() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM roles {where}").fetchone()[0]
            rows = conn.execute(
                f"SELECT {_ROLE_COLUMNS} FROM roles {where} ORDER BY role_code LIMIT ? OFFSET ?",
                (size, page * size),
            ).fetchall()
        return [_row_to_role(row) for row in rows], total

    def all_roles(self, active_only: bool = False) -> List[Role]:
        where = "WHERE is_active = 1" if active_only else ""
        with self.db.read() as conn:
            rows = conn.execute(
                f"SELECT {_ROLE_COLUMNS} FROM roles {where} ORDER BY role_code"
            ).fetchall()
        return [_row_to_role(row) for row in rows]

    def search_roles(self, keyword: str, page: int, size: int) -> Tuple[List[Role], int]:
        """Roles whose name, code or description contains ``keyword``."""
        check_paging(page, size)
        pattern = like_pattern(keyword)
        where = f"role_name {_LIKE} OR role_code {_LIKE} OR description {_LIKE}"
        params = (pattern,) * 3
        with self.db.read() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM roles WHERE {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT {_ROLE_COLUMNS} FROM roles WHERE {where} "
                "ORDER BY role_code LIMIT ? OFFSET ?",
                params + (size, page * size),
            ).fetchall()
        return [_row_to_role(row) for row in rows], total

    # ========================================================================
    # Permission writes
    # ========================================================================

    @retry_on_locked
    def create_permission(self, permission: Permission) -> Permission:
        """
        Insert a permission.

        Raises:
            PermissionExistsError: Code already used
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO permissions ({_PERMISSION_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        permission.permission_id,
                        permission.permission_name,
                        permission.permission_code,
                        permission.resource_name,
                        permission.action_type,
                        permission.description,
                        1 if permission.is_active else 0,
                        *audit_values(permission.audit),
                        permission.version,
                    ),
                )
        except sqlite3.IntegrityError as e:
            conflict = _permission_conflict(e, permission)
            if conflict is None:
                raise
            raise conflict from e
        return permission

    @retry_on_locked
    def update_permission(self, permission: Permission, expected_version: int) -> Permission:
        """
        Optimistic permission update.

        Raises:
            PermissionNotFoundError: No such permission
            ConcurrentModificationError: Stored version differs from ``expected_version``
            PermissionExistsError: New code already used
        """
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE permissions
                    SET permission_name = ?, permission_code = ?, resource_name = ?,
                        action_type = ?, description = ?, is_active = ?,
                        updated_at = ?, updated_by = ?, version = version + 1
                    WHERE permission_id = ? AND version = ?
                    """,
                    (
                        permission.permission_name,
                        permission.permission_code,
                        permission.resource_name,
                        permission.action_type,
                        permission.description,
                        1 if permission.is_active else 0,
                        to_db_time(permission.audit.updated_at),
                        permission.audit.updated_by,
                        permission.permission_id,
                        expected_version,
                    ),
                )
                if cursor.rowcount == 0:
                    if conn.execute(
                        "SELECT 1 FROM permissions WHERE permission_id = ?",
                        (permission.permission_id,),
                    ).fetchone() is None:
                        raise PermissionNotFoundError(permission.permission_id)
                    raise ConcurrentModificationError(
                        "Permission", permission.permission_id, expected_version
                    )
        except sqlite3.IntegrityError as e:
            conflict = _permission_conflict(e, permission)
            if conflict is None:
                raise
            raise conflict from e

        permission.version = expected_version + 1
        return permission

    # ========================================================================
    # Permission lookups
    # ========================================================================

    def _permission_where(self, where: str, params: tuple) -> Optional[Permission]:
        with self.db.read() as conn:
            row = conn.execute(
                f"SELECT {_PERMISSION_COLUMNS} FROM permissions WHERE {where}", params
            ).fetchone()
        return _row_to_permission(row) if row else None

    def get_permission(self, permission_id: str) -> Optional[Permission]:
        return self._permission_where("permission_id = ?", (permission_id,))

    def get_permission_by_code(self, permission_code: str) -> Optional[Permission]:
        return self._permission_where("permission_code = ?", (permission_code,))

    def get_permissions_by_ids(self, permission_ids: Iterable[str]) -> Dict[str, Permission]:
        ids = list(dict.fromkeys(permission_ids))
        permissions: Dict[str, Permission] = {}
        with self.db.read() as conn:
            for chunk in chunked(ids):
                for row in conn.execute(
                    f"SELECT {_PERMISSION_COLUMNS} FROM permissions "
                    f"WHERE permission_id IN ({placeholders(len(chunk))})",
                    chunk,
                ).fetchall():
                    permissions[row["permission_id"]] = _row_to_permission(row)
        return permissions

    def list_permissions(
        self, page: int, size: int, active_only: bool = False
    ) -> Tuple[List[Permission], int]:
        """One page of permissions ordered by resource, then code."""
        check_paging(page, size)
        where = "WHERE is_active = 1" if active_only else ""
        with self.db.read() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM permissions {where}").fetchone()[0]
            rows = conn.execute(
                f"SELECT {_PERMISSION_COLUMNS} FROM permissions {where} "
                "ORDER BY resource_name, permission_code LIMIT ? OFFSET ?",
                (size, page * size),
            ).fetchall()
        return [_row_to_permission(row) for row in rows], total

    def search_permissions(self, keyword: str, page: int, size: int) -> Tuple[List[Permission], int]:
        """Permissions whose name, code, resource or action contains ``keyword``."""
        check_paging(page, size)
        pattern = like_pattern(keyword)
        where = (
            f"permission_name {_LIKE} OR permission_code {_LIKE} "
            f"OR resource_name {_LIKE} OR action_type {_LIKE}"
        )
        params = (pattern,) * 4
        with self.db.read() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM permissions WHERE {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"SELECT {_PERMISSION_COLUMNS} FROM permissions WHERE {where} "
                "ORDER BY resource_name, permission_code LIMIT ? OFFSET ?",
                params + (size, page * size),
            ).fetchall()
        return [_row_to_permission(row) for row in rows], total

    def permissions_by_resource(self, resource_name: str) -> List[Permission]:
        with self.db.read() as conn:
            rows = conn.execute(
                f"SELECT {_PERMISSION_COLUMNS} FROM permissions "
                "WHERE resource_name = ? ORDER BY permission_code",
                (resource_name,),
            ).fetchall()
        return [_row_to_permission(row) for row in rows]

    def distinct_resources(self) -> List[str]:
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT DISTINCT resource_name FROM permissions ORDER BY resource_name"
            ).fetchall()
        return [row[0] for row in rows]

    def distinct_actions(self) -> List[str]:
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT DISTINCT action_type FROM permissions ORDER BY action_type"
            ).fetchall()
        return [row[0] for row in rows]
