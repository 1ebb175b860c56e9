"""
Authorization decisions.

Checks an authenticated request context against the permission resolver.
Decisions are made fresh on every call, so role and permission edits apply
to the next request.
"""

import functools
from typing import Callable, Iterable, Set

from loguru import logger

from .errors import PermissionDeniedError, UnauthenticatedError
from .gate import RequestContext
from .resolver import PermissionResolver


class PermissionChecker:
    """
    Checks if a request's principal has permission to perform an action.

    A principal without a stored user ID (gate built without a credential
    store) holds no permissions.
    """

    def __init__(self, resolver: PermissionResolver):
        self.resolver = resolver

    def has_permission(self, ctx: RequestContext, permission_code: str) -> bool:
        """
        Check if the principal has a specific permission.

        Args:
            ctx: Request context from the gate
            permission_code: Permission code (e.g., "USER_READ")

        Returns:
            True if authenticated and granted, False otherwise
        """
        if not ctx.is_authenticated or ctx.principal.user_id is None:
            return False
        return self.resolver.has_permission(ctx.principal.user_id, permission_code)

    def has_any_permission(self, ctx: RequestContext, permission_codes: Iterable[str]) -> bool:
        if not ctx.is_authenticated or ctx.principal.user_id is None:
            return False
        return self.resolver.has_any_permission(ctx.principal.user_id, permission_codes)

    def effective_permissions(self, ctx: RequestContext) -> Set[str]:
        if not ctx.is_authenticated or ctx.principal.user_id is None:
            return set()
        return self.resolver.resolve_effective_permissions_for_user(ctx.principal.user_id)

    def require_permission(self, ctx: RequestContext, permission_code: str) -> None:
        """
        Require a permission.

        Raises:
            UnauthenticatedError: No authenticated principal
            PermissionDeniedError: The principal lacks the permission
        """
        self.require_any_permission(ctx, [permission_code])

    def require_any_permission(self, ctx: RequestContext, permission_codes: Iterable[str]) -> None:
        """
        Require at least one of several permissions.

        Raises:
            UnauthenticatedError: No authenticated principal
            PermissionDeniedError: The principal has none of them
        """
        codes = list(permission_codes)
        if not ctx.is_authenticated:
            raise UnauthenticatedError()

        if not self.has_any_permission(ctx, codes):
            logger.warning(f"Permission denied for {ctx.principal.username}: needs any of {codes}")
            raise PermissionDeniedError(ctx.principal.username, codes)


def permission_required(checker: PermissionChecker, *permission_codes: str) -> Callable:
    """
    Decorator for handlers whose first argument is the ``RequestContext``.

    The handler runs only if the principal has at least one of
    ``permission_codes``.

    Examples:
        >>> @permission_required(checker, "USER_READ")
        ... def list_users(ctx, page=0):
        ...     ...
    """
    if not permission_codes:
        raise ValueError("permission_required needs at least one permission code")

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(ctx: RequestContext, *args, **kwargs):
            checker.require_any_permission(ctx, permission_codes)
            return func(ctx, *args, **kwargs)
        return wrapper

    return decorator
