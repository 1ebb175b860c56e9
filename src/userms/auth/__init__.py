"""
Identity core: accounts, roles, permissions and session tokens.

Provides stateless HS256 session tokens, bcrypt credentials and batch
role/permission resolution over SQLite.
"""

from .models import User, Role, Permission, UserRole, RolePermission, AuditFields
from .config import Settings, get_settings
from .logs import configure_logging
from .errors import (
    ErrorCode,
    IdentityError,
    ConflictError,
    NotFoundError,
    AuthenticationError,
    TokenError,
    UsernameExistsError,
    EmailExistsError,
    PasswordMismatchError,
    PasswordPolicyError,
    InvalidCredentialsError,
    UserInactiveError,
    UserNotFoundError,
    RoleNotFoundError,
    RoleExistsError,
    RoleInUseError,
    PermissionNotFoundError,
    PermissionExistsError,
    PermissionInUseError,
    AlreadyAssignedError,
    NotAssignedError,
    TokenMalformedError,
    TokenExpiredError,
    TokenNotRefreshableError,
    UnauthenticatedError,
    PermissionDeniedError,
    ConcurrentModificationError,
    StoreUnavailableError,
    error_payload,
)
from .database import Database
from .credential_store import CredentialStore
from .role_store import RoleStore
from .association_store import AssociationStore
from .passwords import PasswordHasher, check_password_policy
from .token_codec import TokenCodec, TokenClaims
from .resolver import PermissionResolver
from .auth_service import AuthService
from .accounts import AccountService
from .catalog import CatalogService
from .associations import AssociationManager
from .gate import AccessControlGate, Principal, RequestContext
from .authorization import PermissionChecker, permission_required
from .schemas import (
    RegistrationRequest,
    LoginRequest,
    UserUpdate,
    RoleCreate,
    RoleUpdate,
    PermissionCreate,
    PermissionUpdate,
    UserRecord,
    RoleView,
    PermissionView,
    AuthResult,
    PageResult,
)
from .core import IdentityCore

__all__ = [
    # Models
    "User",
    "Role",
    "Permission",
    "UserRole",
    "RolePermission",
    "AuditFields",
    # Configuration and logging
    "Settings",
    "get_settings",
    "configure_logging",
    # Errors
    "ErrorCode",
    "IdentityError",
    "ConflictError",
    "NotFoundError",
    "AuthenticationError",
    "TokenError",
    "UsernameExistsError",
    "EmailExistsError",
    "PasswordMismatchError",
    "PasswordPolicyError",
    "InvalidCredentialsError",
    "UserInactiveError",
    "UserNotFoundError",
    "RoleNotFoundError",
    "RoleExistsError",
    "RoleInUseError",
    "PermissionNotFoundError",
    "PermissionExistsError",
    "PermissionInUseError",
    "AlreadyAssignedError",
    "NotAssignedError",
    "TokenMalformedError",
    "TokenExpiredError",
    "TokenNotRefreshableError",
    "UnauthenticatedError",
    "PermissionDeniedError",
    "ConcurrentModificationError",
    "StoreUnavailableError",
    "error_payload",
    # Persistence
    "Database",
    "CredentialStore",
    "RoleStore",
    "AssociationStore",
    # Credentials and tokens
    "PasswordHasher",
    "check_password_policy",
    "TokenCodec",
    "TokenClaims",
    # Services
    "PermissionResolver",
    "AuthService",
    "AccountService",
    "CatalogService",
    "AssociationManager",
    "IdentityCore",
    # Request handling
    "AccessControlGate",
    "Principal",
    "RequestContext",
    "PermissionChecker",
    "permission_required",
    # Input models and records
    "RegistrationRequest",
    "LoginRequest",
    "UserUpdate",
    "RoleCreate",
    "RoleUpdate",
    "PermissionCreate",
    "PermissionUpdate",
    "UserRecord",
    "RoleView",
    "PermissionView",
    "AuthResult",
    "PageResult",
]
