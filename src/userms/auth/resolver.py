"""
Permission resolver.

Resolves role codes and permission codes for one or many principals in a
fixed number of store calls. Every method takes ids in bulk, asks the
association store once per hop (users -> roles, roles -> permissions) and
joins the flat rows in memory, so rendering a page of N users costs the same
number of round-trips as rendering one.

Nothing is cached: role and permission edits show up on the next call.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Set

from loguru import logger

from .association_store import AssociationStore


def _group(rows: Iterable[tuple], keys: Iterable[str], reverse: bool) -> Dict[str, List[str]]:
    """
    Group ``(key, value)`` rows into sorted, de-duplicated lists.

    Every key in ``keys`` is present in the result, with an empty list when
    no row mentioned it.
    """
    grouped: Dict[str, Set[str]] = {key: set() for key in keys}
    for key, value in rows:
        grouped.setdefault(key, set()).add(value)
    return {key: sorted(values, reverse=reverse) for key, values in grouped.items()}


class PermissionResolver:
    """
    Batch role / permission resolution over the association graph.

    Codes come back sorted ascending unless ``reverse=True`` is requested.
    """

    def __init__(self, associations: AssociationStore):
        self.associations = associations

    # ========================================================================
    # Roles
    # ========================================================================

    def resolve_role_codes_for_users(
        self, user_ids: Iterable[str], reverse: bool = False
    ) -> Dict[str, List[str]]:
        """
        Active role codes for many users with one store call.

        Args:
            user_ids: Users to resolve
            reverse: Sort codes descending instead of ascending

        Returns:
            Mapping of every requested user ID to its role codes; users
            without active roles map to an empty list
        """
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        rows = self.associations.find_role_codes_by_user_ids(ids)
        logger.debug(f"Resolved {len(rows)} role link(s) for {len(ids)} user(s)")
        return _group(rows, ids, reverse)

    def resolve_role_codes_for_user(self, user_id: str) -> List[str]:
        return self.resolve_role_codes_for_users([user_id])[user_id]

    def has_role(self, user_id: str, role_code: str) -> bool:
        return self.associations.user_has_role(user_id, role_code)

    # ========================================================================
    # Permissions
    # ========================================================================

    def resolve_permission_codes_for_roles(
        self, role_ids: Iterable[str], reverse: bool = False
    ) -> Dict[str, List[str]]:
        """
        Active permission codes for many roles with one store call.

        Returns:
            Mapping of every requested role ID to its permission codes
        """
        ids = list(dict.fromkeys(role_ids))
        if not ids:
            return {}

        rows = self.associations.find_permission_codes_by_role_ids(ids)
        return _group(rows, ids, reverse)

    def resolve_permission_codes_for_role(self, role_id: str) -> List[str]:
        """Active permission codes of a single role, sorted ascending."""
        return self.resolve_permission_codes_for_roles([role_id])[role_id]

    def resolve_effective_permissions_for_users(
        self, user_ids: Iterable[str]
    ) -> Dict[str, Set[str]]:
        """
        Effective permission sets for many users.

        Two store calls at most: granting roles for all users, then active
        permissions for all of those roles. Inactive users, inactive roles
        and inactive permissions contribute nothing.

        Returns:
            Mapping of every requested user ID to its permission codes
        """
        ids = list(dict.fromkeys(user_ids))
        effective: Dict[str, Set[str]] = {user_id: set() for user_id in ids}
        if not ids:
            return effective

        roles_by_user: Dict[str, Set[str]] = defaultdict(set)
        for user_id, role_id in self.associations.find_granting_roles_by_user_ids(ids):
            roles_by_user[user_id].add(role_id)

        role_ids = {role_id for roles in roles_by_user.values() for role_id in roles}
        if not role_ids:
            return effective

        permissions_by_role: Dict[str, Set[str]] = defaultdict(set)
        for role_id, code in self.associations.find_permission_codes_by_role_ids(role_ids):
            permissions_by_role[role_id].add(code)

        for user_id, roles in roles_by_user.items():
            for role_id in roles:
                effective[user_id] |= permissions_by_role.get(role_id, set())
        return effective

    def resolve_effective_permissions_for_user(self, user_id: str) -> Set[str]:
        """
        Union of the active permissions of the user's active roles.

        Empty for an inactive or unknown user.
        """
        return self.resolve_effective_permissions_for_users([user_id])[user_id]

    def has_permission(self, user_id: str, permission_code: str) -> bool:
        """Membership check as one query; the full set is never built."""
        return self.associations.user_has_permission(user_id, permission_code)

    def has_any_permission(self, user_id: str, permission_codes: Iterable[str]) -> bool:
        codes = list(permission_codes)
        if not codes:
            return False
        return self.associations.user_has_any_permission(user_id, codes)
