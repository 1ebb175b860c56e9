"""
Input models and outward-facing records.

Input models carry the field-format rules a boundary layer validates before
calling into the services. Outward records are what services hand back to
callers; none of them has a password hash field.
"""

from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .models import Permission, Role, User


USERNAME_PATTERN = r"^[A-Za-z0-9_]+$"
CODE_PATTERN = r"^[A-Z][A-Z0-9_]*$"
EMAIL_MAX_LENGTH = 100

T = TypeVar("T")


# ============================================================================
# Input models
# ============================================================================

class RegistrationRequest(BaseModel):
    """User registration data."""
    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(min_length=1, max_length=100)
    confirm_password: str = Field(min_length=1, max_length=100)
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)

    @field_validator("email")
    @classmethod
    def _email_length(cls, value: str) -> str:
        if len(value) > EMAIL_MAX_LENGTH:
            raise ValueError(f"email must be at most {EMAIL_MAX_LENGTH} characters")
        return value


class LoginRequest(BaseModel):
    """Credentials for ``AuthService.login``."""
    username_or_email: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=100)


class UserUpdate(BaseModel):
    """Profile changes; ``expected_version`` must match the stored version."""
    expected_version: int = Field(ge=0)
    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(default=None, max_length=50)
    last_name: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def _email_length(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) > EMAIL_MAX_LENGTH:
            raise ValueError(f"email must be at most {EMAIL_MAX_LENGTH} characters")
        return value


class RoleCreate(BaseModel):
    role_name: str = Field(min_length=2, max_length=50)
    role_code: str = Field(min_length=2, max_length=30, pattern=CODE_PATTERN)
    description: Optional[str] = Field(default=None, max_length=200)


class RoleUpdate(BaseModel):
    expected_version: int = Field(ge=0)
    role_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    role_code: Optional[str] = Field(default=None, min_length=2, max_length=30, pattern=CODE_PATTERN)
    description: Optional[str] = Field(default=None, max_length=200)
    is_active: Optional[bool] = None


class PermissionCreate(BaseModel):
    permission_name: str = Field(min_length=2, max_length=100)
    permission_code: str = Field(min_length=2, max_length=50, pattern=CODE_PATTERN)
    resource_name: str = Field(min_length=2, max_length=100)
    action_type: str = Field(min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)


class PermissionUpdate(BaseModel):
    expected_version: int = Field(ge=0)
    permission_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    permission_code: Optional[str] = Field(default=None, min_length=2, max_length=50, pattern=CODE_PATTERN)
    resource_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    action_type: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    is_active: Optional[bool] = None


# ============================================================================
# Outward records
# ============================================================================

class UserRecord(BaseModel):
    """User data returned to callers (no sensitive fields)."""
    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    version: int
    roles: List[str] = Field(default_factory=list)

    @classmethod
    def from_user(cls, user: User, roles: Optional[List[str]] = None) -> "UserRecord":
        return cls(
            id=user.user_id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            full_name=user.full_name,
            is_active=user.is_active,
            created_at=user.audit.created_at,
            updated_at=user.audit.updated_at,
            version=user.version,
            roles=list(roles or []),
        )


class PermissionView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    permission_name: str
    permission_code: str
    resource_name: str
    action_type: str
    description: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    version: int

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionView":
        return cls(
            id=permission.permission_id,
            permission_name=permission.permission_name,
            permission_code=permission.permission_code,
            resource_name=permission.resource_name,
            action_type=permission.action_type,
            description=permission.description,
            is_active=permission.is_active,
            created_at=permission.audit.created_at,
            updated_at=permission.audit.updated_at,
            version=permission.version,
        )


class RoleView(BaseModel):
    """Role with its active permission codes and active user count."""
    model_config = ConfigDict(frozen=True)

    id: str
    role_name: str
    role_code: str
    description: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    version: int
    permissions: List[str] = Field(default_factory=list)
    user_count: int = 0

    @classmethod
    def from_role(
        cls,
        role: Role,
        permissions: Optional[List[str]] = None,
        user_count: int = 0,
    ) -> "RoleView":
        return cls(
            id=role.role_id,
            role_name=role.role_name,
            role_code=role.role_code,
            description=role.description,
            is_active=role.is_active,
            created_at=role.audit.created_at,
            updated_at=role.audit.updated_at,
            version=role.version,
            permissions=list(permissions or []),
            user_count=user_count,
        )


class AuthResult(BaseModel):
    """Token plus the authenticated user, returned by login and refresh."""
    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "Bearer"
    expires_in: int  # seconds until the token expires
    user: UserRecord


class PageResult(BaseModel, Generic[T]):
    """One page of a listing."""
    items: List[T]
    page: int
    size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size

    @property
    def has_next(self) -> bool:
        return self.page + 1 < self.total_pages
