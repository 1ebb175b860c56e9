"""
User-role and role-permission association persistence.

Both link tables are keyed by the composite of their two foreign ids, so at
most one link exists per pair no matter how many writers race. The batch
queries here take any number of ids in ONE call and return flat
``(key, value)`` rows; grouping happens in the resolver.
"""

import sqlite3
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .database import Database, chunked, placeholders, to_db_time, unique_violation
from .errors import (
    AlreadyAssignedError,
    PermissionInUseError,
    PermissionNotFoundError,
    RoleInUseError,
    RoleNotFoundError,
    UserNotFoundError,
)
from .models import RolePermission, UserRole
from .retry import retry_on_locked


def _unique_ids(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(ids))


class AssociationStore:
    """
    Association store.

    Owns the ``user_roles`` and ``role_permissions`` tables and the deletes
    that must touch them together with a parent row.
    """

    def __init__(self, db: Database):
        self.db = db

    def _missing_parent(self, table: str, column: str, row_id: str, error) -> None:
        """Raise ``error`` when a foreign-key insert failed because ``row_id`` is gone."""
        if self.db.count(table, f"{column} = ?", (row_id,)) == 0:
            logger.warning(f"Link insert failed: {table} row {row_id} no longer exists")
            raise error(row_id)

    def _batch(self, query: str, ids: Iterable[str]) -> List[sqlite3.Row]:
        """
        Run ``query`` (containing one ``{ids}`` placeholder list) over all ids.

        Ids are bound in chunks on a single connection, so any number of ids
        costs one store call.
        """
        unique = _unique_ids(ids)
        rows: List[sqlite3.Row] = []
        if not unique:
            return rows

        with self.db.read() as conn:
            for chunk in chunked(unique):
                rows.extend(
                    conn.execute(
                        query.format(ids=placeholders(len(chunk))),
                        chunk,
                    ).fetchall()
                )
        return rows

    # ========================================================================
    # User <-> role links
    # ========================================================================

    @retry_on_locked
    def insert_user_role(self, link: UserRole, label: Optional[str] = None) -> UserRole:
        """
        Create a user-role link.

        Args:
            link: Link to insert
            label: Name of the role used in error messages (default: role ID)

        Raises:
            AlreadyAssignedError: The pair is already linked
            UserNotFoundError: The user row is gone
            RoleNotFoundError: The role row is gone
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO user_roles (user_id, role_id, assigned_at, assigned_by) "
                    "VALUES (?, ?, ?, ?)",
                    (link.user_id, link.role_id, to_db_time(link.assigned_at), link.assigned_by),
                )
        except sqlite3.IntegrityError as e:
            if unique_violation(e) is None:
                self._missing_parent("users", "user_id", link.user_id, UserNotFoundError)
                self._missing_parent("roles", "role_id", link.role_id, RoleNotFoundError)
                raise
            raise AlreadyAssignedError(link.user_id, label or link.role_id) from e
        return link

    @retry_on_locked
    def delete_user_role(self, user_id: str, role_id: str) -> bool:
        """Remove a user-role link. Returns False when there was none."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM user_roles WHERE user_id = ? AND role_id = ?",
                (user_id, role_id),
            )
        return cursor.rowcount > 0

    def user_role_exists(self, user_id: str, role_id: str) -> bool:
        with self.db.read() as conn:
            return conn.execute(
                "SELECT 1 FROM user_roles WHERE user_id = ? AND role_id = ?",
                (user_id, role_id),
            ).fetchone() is not None

    def role_ids_for_user(self, user_id: str) -> List[str]:
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT role_id FROM user_roles WHERE user_id = ? ORDER BY assigned_at",
                (user_id,),
            ).fetchall()
        return [row[0] for row in rows]

    # ========================================================================
    # Role <-> permission links
    # ========================================================================

    @retry_on_locked
    def insert_role_permission(
        self, link: RolePermission, label: Optional[str] = None
    ) -> RolePermission:
        """
        Create a role-permission link.

        Raises:
            AlreadyAssignedError: The pair is already linked
            RoleNotFoundError: The role row is gone
            PermissionNotFoundError: The permission row is gone
        """
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO role_permissions (role_id, permission_id, granted_at, granted_by) "
                    "VALUES (?, ?, ?, ?)",
                    (link.role_id, link.permission_id, to_db_time(link.granted_at), link.granted_by),
                )
        except sqlite3.IntegrityError as e:
            if unique_violation(e) is None:
                self._missing_parent("roles", "role_id", link.role_id, RoleNotFoundError)
                self._missing_parent(
                    "permissions", "permission_id", link.permission_id, PermissionNotFoundError
                )
                raise
            raise AlreadyAssignedError(link.role_id, label or link.permission_id) from e
        return link

    @retry_on_locked
    def delete_role_permission(self, role_id: str, permission_id: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM role_permissions WHERE role_id = ? AND permission_id = ?",
                (role_id, permission_id),
            )
        return cursor.rowcount > 0

    def role_permission_exists(self, role_id: str, permission_id: str) -> bool:
        with self.db.read() as conn:
            return conn.execute(
                "SELECT 1 FROM role_permissions WHERE role_id = ? AND permission_id = ?",
                (role_id, permission_id),
            ).fetchone() is not None

    def permission_ids_for_role(self, role_id: str) -> List[str]:
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT permission_id FROM role_permissions WHERE role_id = ? ORDER BY granted_at",
                (role_id,),
            ).fetchall()
        return [row[0] for row in rows]

    # ========================================================================
    # Batch queries
    # ========================================================================

    def find_role_codes_by_user_ids(self, user_ids: Iterable[str]) -> List[Tuple[str, str]]:
        """
        ``(user_id, role_code)`` for every active role linked to the given users.
        """
        rows = self._batch(
            """
            SELECT ur.user_id, r.role_code
            FROM user_roles ur
            JOIN roles r ON r.role_id = ur.role_id
            WHERE ur.user_id IN ({ids}) AND r.is_active = 1
            """,
            user_ids,
        )
        return [(row[0], row[1]) for row in rows]

    def find_granting_roles_by_user_ids(self, user_ids: Iterable[str]) -> List[Tuple[str, str]]:
        """
        ``(user_id, role_id)`` for active roles of active users.

        These are the links that confer permissions.
        """
        rows = self._batch(
            """
            SELECT ur.user_id, ur.role_id
            FROM user_roles ur
            JOIN roles r ON r.role_id = ur.role_id
            JOIN users u ON u.user_id = ur.user_id
            WHERE ur.user_id IN ({ids}) AND r.is_active = 1 AND u.is_active = 1
            """,
            user_ids,
        )
        return [(row[0], row[1]) for row in rows]

    def find_permission_codes_by_role_ids(self, role_ids: Iterable[str]) -> List[Tuple[str, str]]:
        """
        ``(role_id, permission_code)`` for every active permission linked to the roles.
        """
        rows = self._batch(
            """
            SELECT rp.role_id, p.permission_code
            FROM role_permissions rp
            JOIN permissions p ON p.permission_id = rp.permission_id
            WHERE rp.role_id IN ({ids}) AND p.is_active = 1
            """,
            role_ids,
        )
        return [(row[0], row[1]) for row in rows]

    def find_user_ids_by_role_ids(self, role_ids: Iterable[str]) -> List[Tuple[str, str]]:
        """``(role_id, user_id)`` for every user linked to the roles."""
        rows = self._batch(
            "SELECT role_id, user_id FROM user_roles WHERE role_id IN ({ids})",
            role_ids,
        )
        return [(row[0], row[1]) for row in rows]

    def count_active_users_by_role_ids(self, role_ids: Iterable[str]) -> Dict[str, int]:
        """Active linked user count per role; roles without users are absent."""
        rows = self._batch(
            """
            SELECT ur.role_id, COUNT(*)
            FROM user_roles ur
            JOIN users u ON u.user_id = ur.user_id
            WHERE ur.role_id IN ({ids}) AND u.is_active = 1
            GROUP BY ur.role_id
            """,
            role_ids,
        )
        return {row[0]: row[1] for row in rows}

    # ========================================================================
    # Membership checks (one query each)
    # ========================================================================

    _GRANTS = """
        FROM user_roles ur
        JOIN users u ON u.user_id = ur.user_id
        JOIN roles r ON r.role_id = ur.role_id
        JOIN role_permissions rp ON rp.role_id = r.role_id
        JOIN permissions p ON p.permission_id = rp.permission_id
        WHERE ur.user_id = ? AND u.is_active = 1 AND r.is_active = 1 AND p.is_active = 1
    """

    def user_has_permission(self, user_id: str, permission_code: str) -> bool:
        with self.db.read() as conn:
            row = conn.execute(
                f"SELECT EXISTS(SELECT 1 {self._GRANTS} AND p.permission_code = ?)",
                (user_id, permission_code),
            ).fetchone()
        return bool(row[0])

    def user_has_any_permission(self, user_id: str, permission_codes: Iterable[str]) -> bool:
        codes = _unique_ids(permission_codes)
        if not codes:
            return False

        with self.db.read() as conn:
            row = conn.execute(
                f"SELECT EXISTS(SELECT 1 {self._GRANTS} "
                f"AND p.permission_code IN ({placeholders(len(codes))}))",
                (user_id, *codes),
            ).fetchone()
        return bool(row[0])

    def user_has_role(self, user_id: str, role_code: str) -> bool:
        with self.db.read() as conn:
            row = conn.execute(
                """
                SELECT EXISTS(
                    SELECT 1 FROM user_roles ur
                    JOIN roles r ON r.role_id = ur.role_id
                    WHERE ur.user_id = ? AND r.role_code = ? AND r.is_active = 1
                )
                """,
                (user_id, role_code),
            ).fetchone()
        return bool(row[0])

    # ========================================================================
    # Counts
    # ========================================================================

    def count_users_for_role(self, role_id: str, active_only: bool = False) -> int:
        query = "SELECT COUNT(*) FROM user_roles ur"
        if active_only:
            query += " JOIN users u ON u.user_id = ur.user_id WHERE ur.role_id = ? AND u.is_active = 1"
        else:
            query += " WHERE ur.role_id = ?"
        with self.db.read() as conn:
            return conn.execute(query, (role_id,)).fetchone()[0]

    def count_roles_for_permission(self, permission_id: str) -> int:
        with self.db.read() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM role_permissions WHERE permission_id = ?",
                (permission_id,),
            ).fetchone()[0]

    # ========================================================================
    # Principal deletes
    # ========================================================================

    @retry_on_locked
    def delete_user(self, user_id: str) -> bool:
        """
        Delete a user and its role links in one transaction.

        Returns:
            False if the user did not exist
        """
        with self.db.transaction() as conn:
            links = conn.execute("DELETE FROM user_roles WHERE user_id = ?", (user_id,)).rowcount
            deleted = conn.execute("DELETE FROM users WHERE user_id = ?", (user_id,)).rowcount

        if deleted:
            logger.debug(f"User {user_id} deleted with {links} role link(s)")
        return deleted > 0

    @retry_on_locked
    def delete_role(self, role_id: str) -> bool:
        """
        Delete a role and its permission links in one transaction.

        Refused while any user is still linked to the role.

        Returns:
            False if the role did not exist

        Raises:
            RoleInUseError: At least one user holds the role
        """
        with self.db.transaction() as conn:
            users = conn.execute(
                "SELECT COUNT(*) FROM user_roles WHERE role_id = ?", (role_id,)
            ).fetchone()[0]
            if users:
                raise RoleInUseError(role_id, users)

            conn.execute("DELETE FROM role_permissions WHERE role_id = ?", (role_id,))
            deleted = conn.execute("DELETE FROM roles WHERE role_id = ?", (role_id,)).rowcount
        return deleted > 0

    @retry_on_locked
    def delete_permission(self, permission_id: str) -> bool:
        """
        Delete a permission.

        Raises:
            PermissionInUseError: At least one role still grants it
        """
        with self.db.transaction() as conn:
            roles = conn.execute(
                "SELECT COUNT(*) FROM role_permissions WHERE permission_id = ?",
                (permission_id,),
            ).fetchone()[0]
            if roles:
                raise PermissionInUseError(permission_id, roles)

            deleted = conn.execute(
                "DELETE FROM permissions WHERE permission_id = ?", (permission_id,)
            ).rowcount
        return deleted > 0
