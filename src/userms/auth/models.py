"""
Identity data models.

Data classes for users, roles, permissions and the two association links
between them. Shared audit fields are embedded by value in every entity.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate an opaque entity identifier (UUID4 string)."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class AuditFields:
    """
    Creation / modification bookkeeping.

    Attributes:
        created_at: When the entity was created
        updated_at: When the entity was last changed
        created_by: ID of the user who created it (optional)
        updated_by: ID of the user who last changed it (optional)
    """
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @classmethod
    def new(cls, now: datetime, actor_id: Optional[str] = None) -> "AuditFields":
        """Audit fields for an entity created at ``now``, both timestamps equal."""
        return cls(created_at=now, updated_at=now, created_by=actor_id, updated_by=actor_id)

    def touched(self, now: datetime, actor_id: Optional[str] = None) -> "AuditFields":
        """Copy with ``updated_at`` (and ``updated_by`` when given) advanced."""
        return replace(
            self,
            updated_at=now,
            updated_by=actor_id if actor_id is not None else self.updated_by,
        )


@dataclass
class User:
    """
    User account.

    Attributes:
        user_id: Unique user identifier (UUID)
        username: Unique username (3-50 chars, letters, digits, underscore)
        email: Unique email address
        password_hash: Bcrypt hashed password, never exposed outward
        audit: Creation / modification timestamps and actors
        is_active: Whether the account may log in
        first_name: Optional given name
        last_name: Optional family name
        version: Optimistic concurrency counter, incremented on every update
    """
    user_id: str
    username: str
    email: str
    password_hash: str = field(repr=False)
    audit: AuditFields
    is_active: bool = True
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    version: int = 0

    @property
    def full_name(self) -> str:
        """Display name, falling back to the username."""
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.username


@dataclass
class Role:
    """
    Role for RBAC.

    Attributes:
        role_id: Unique role identifier
        role_name: Unique human-readable name (2-50 chars)
        role_code: Unique code used in authorization checks (e.g., "ADMIN")
        description: Human-readable description (up to 200 chars)
        audit: Creation / modification timestamps and actors
        is_active: Inactive roles grant nothing
        version: Optimistic concurrency counter
    """
    role_id: str
    role_name: str
    role_code: str
    audit: AuditFields
    description: Optional[str] = None
    is_active: bool = True
    version: int = 0


@dataclass
class Permission:
    """
    Permission granted through roles.

    Attributes:
        permission_id: Unique permission identifier
        permission_name: Human-readable name (2-100 chars)
        permission_code: Globally unique code (e.g., "USER_READ")
        resource_name: Resource the permission applies to (e.g., "user")
        action_type: Action on that resource (e.g., "read")
        audit: Creation / modification timestamps and actors
        description: Human-readable description
        is_active: Inactive permissions are never part of an effective set
        version: Optimistic concurrency counter
    """
    permission_id: str
    permission_name: str
    permission_code: str
    resource_name: str
    action_type: str
    audit: AuditFields
    description: Optional[str] = None
    is_active: bool = True
    version: int = 0


@dataclass(frozen=True)
class UserRole:
    """
    User <-> role link, keyed by ``(user_id, role_id)``.

    Attributes:
        user_id: Linked user
        role_id: Linked role
        assigned_at: When the link was created
        assigned_by: Who created it (optional)
    """
    user_id: str
    role_id: str
    assigned_at: datetime
    assigned_by: Optional[str] = None


@dataclass(frozen=True)
class RolePermission:
    """
    Role <-> permission link, keyed by ``(role_id, permission_id)``.

    Attributes:
        role_id: Linked role
        permission_id: Linked permission
        granted_at: When the link was created
        granted_by: Who created it (optional)
    """
    role_id: str
    permission_id: str
    granted_at: datetime
    granted_by: Optional[str] = None
