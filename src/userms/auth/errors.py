"""
Typed failures raised by the identity core.

Every business-rule violation is an ``IdentityError`` subclass carrying an
``ErrorCode``, so a boundary layer can map it to a status code and a
user-facing message without string matching.
"""

from enum import Enum
from typing import Dict, Iterable, Optional


class ErrorCode(str, Enum):
    """Stable error kinds exposed to callers."""

    # Users
    USERNAME_EXISTS = "USERNAME_EXISTS"
    EMAIL_EXISTS = "EMAIL_EXISTS"
    PASSWORD_MISMATCH = "PASSWORD_MISMATCH"
    PASSWORD_POLICY = "PASSWORD_POLICY"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    USER_INACTIVE = "USER_INACTIVE"
    USER_NOT_FOUND = "USER_NOT_FOUND"

    # Roles and permissions
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    ROLE_EXISTS = "ROLE_EXISTS"
    ROLE_IN_USE = "ROLE_IN_USE"
    PERMISSION_NOT_FOUND = "PERMISSION_NOT_FOUND"
    PERMISSION_EXISTS = "PERMISSION_EXISTS"
    PERMISSION_IN_USE = "PERMISSION_IN_USE"
    ALREADY_ASSIGNED = "ALREADY_ASSIGNED"
    NOT_ASSIGNED = "NOT_ASSIGNED"

    # Tokens
    TOKEN_MALFORMED = "TOKEN_MALFORMED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_NOT_REFRESHABLE = "TOKEN_NOT_REFRESHABLE"

    # Authorization
    UNAUTHENTICATED = "UNAUTHENTICATED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Store
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class IdentityError(Exception):
    """
    Base class for all identity-core failures.

    Attributes:
        code: The error kind
        message: Human-readable description
    """

    code: ErrorCode

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


# ============================================================================
# Groupings
# ============================================================================

class ConflictError(IdentityError):
    """The change collides with existing state; retrying unchanged will fail again."""


class NotFoundError(IdentityError):
    """A referenced entity or link does not exist."""


class AuthenticationError(IdentityError):
    """The caller could not be authenticated."""


class TokenError(IdentityError):
    """A bearer token was rejected."""


# ============================================================================
# Users
# ============================================================================

class UsernameExistsError(ConflictError):
    code = ErrorCode.USERNAME_EXISTS

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username already exists: {username}")


class EmailExistsError(ConflictError):
    code = ErrorCode.EMAIL_EXISTS

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email already in use: {email}")


class PasswordMismatchError(IdentityError):
    code = ErrorCode.PASSWORD_MISMATCH

    def __init__(self):
        super().__init__("Password and confirmation do not match")


class PasswordPolicyError(IdentityError):
    code = ErrorCode.PASSWORD_POLICY

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Password does not meet policy: {reason}")


class InvalidCredentialsError(AuthenticationError):
    """Unknown identifier or wrong password; the message does not say which."""

    code = ErrorCode.INVALID_CREDENTIALS

    def __init__(self):
        super().__init__("Invalid username/email or password")


class UserInactiveError(AuthenticationError):
    code = ErrorCode.USER_INACTIVE

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User account is inactive: {username}")


class UserNotFoundError(NotFoundError):
    code = ErrorCode.USER_NOT_FOUND

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"User not found: {identifier}")


# ============================================================================
# Roles and permissions
# ============================================================================

class RoleNotFoundError(NotFoundError):
    code = ErrorCode.ROLE_NOT_FOUND

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Role not found: {identifier}")


class RoleExistsError(ConflictError):
    code = ErrorCode.ROLE_EXISTS

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"Role with {field} '{value}' already exists")


class RoleInUseError(ConflictError):
    code = ErrorCode.ROLE_IN_USE

    def __init__(self, role_id: str, user_count: int):
        self.role_id = role_id
        self.user_count = user_count
        super().__init__(f"Role {role_id} is still assigned to {user_count} user(s)")


class PermissionNotFoundError(NotFoundError):
    code = ErrorCode.PERMISSION_NOT_FOUND

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Permission not found: {identifier}")


class PermissionExistsError(ConflictError):
    code = ErrorCode.PERMISSION_EXISTS

    def __init__(self, permission_code: str):
        self.permission_code = permission_code
        super().__init__(f"Permission code already exists: {permission_code}")


class PermissionInUseError(ConflictError):
    code = ErrorCode.PERMISSION_IN_USE

    def __init__(self, permission_id: str, role_count: int):
        self.permission_id = permission_id
        self.role_count = role_count
        super().__init__(f"Permission {permission_id} is still granted to {role_count} role(s)")


class AlreadyAssignedError(ConflictError):
    code = ErrorCode.ALREADY_ASSIGNED

    def __init__(self, principal_id: str, target: str):
        self.principal_id = principal_id
        self.target = target
        super().__init__(f"{target} is already assigned to {principal_id}")


class NotAssignedError(NotFoundError):
    code = ErrorCode.NOT_ASSIGNED

    def __init__(self, principal_id: str, target: str):
        self.principal_id = principal_id
        self.target = target
        super().__init__(f"{target} is not assigned to {principal_id}")


# ============================================================================
# Tokens
# ============================================================================

class TokenMalformedError(TokenError):
    """Bad structure or bad signature. Never valid, never refreshable."""

    code = ErrorCode.TOKEN_MALFORMED

    def __init__(self, reason: str = "invalid token"):
        self.reason = reason
        super().__init__(f"Malformed token: {reason}")


class TokenExpiredError(TokenError):
    """Signature is good but the token is past its expiry."""

    code = ErrorCode.TOKEN_EXPIRED

    def __init__(self, subject: Optional[str] = None):
        self.subject = subject
        super().__init__("Token has expired")


class TokenNotRefreshableError(TokenError):
    code = ErrorCode.TOKEN_NOT_REFRESHABLE

    def __init__(self, reason: str = "token cannot be refreshed, log in again"):
        self.reason = reason
        super().__init__(reason)


# ============================================================================
# Authorization
# ============================================================================

class UnauthenticatedError(AuthenticationError):
    code = ErrorCode.UNAUTHENTICATED

    def __init__(self):
        super().__init__("Authentication required")


class PermissionDeniedError(IdentityError):
    """
    Raised when a principal attempts an action they don't have permission for.

    Attributes:
        subject: The principal who was denied
        required: The permission code(s) that would have allowed the action
    """

    code = ErrorCode.PERMISSION_DENIED

    def __init__(self, subject: str, required: Iterable[str]):
        self.subject = subject
        self.required = tuple(required)
        super().__init__(
            f"User {subject} denied permission (requires any of: {', '.join(self.required)})"
        )


# ============================================================================
# Store
# ============================================================================

class ConcurrentModificationError(ConflictError):
    code = ErrorCode.CONCURRENT_MODIFICATION

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity} {entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class StoreUnavailableError(IdentityError):
    code = ErrorCode.STORE_UNAVAILABLE

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Store busy, gave up on {operation}")


def error_payload(exc: IdentityError) -> Dict[str, str]:
    """
    Convert an identity error into the ``{"code", "message"}`` shape a
    boundary layer returns to clients.
    """
    return {"code": exc.code.value, "message": exc.message}
