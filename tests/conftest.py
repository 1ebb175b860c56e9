"""
Shared fixtures for the identity core tests.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from userms.auth import (
    AuditFields,
    IdentityCore,
    RoleCreate,
    PermissionCreate,
    Settings,
    User,
)
from userms.auth.models import new_id


SECRET_KEY = "test-secret-key-with-at-least-32-bytes!"
PASSWORD = "Secret1@pass"
START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Fixed clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        database_path=tmp_path / "users.db",
        jwt_secret_key=SECRET_KEY,
        bcrypt_rounds=4,
        store_retry_delay=0,
    )


@pytest.fixture
def core(settings: Settings, clock: FakeClock) -> IdentityCore:
    return IdentityCore.from_settings(settings, clock=clock)


def register(core: IdentityCore, username: str, email: Optional[str] = None, password: str = PASSWORD):
    """Register a user through the auth service."""
    return core.auth.register(
        username=username,
        email=email or f"{username}@example.com",
        password=password,
        confirm_password=password,
    )


def insert_user(core: IdentityCore, username: str, is_active: bool = True) -> User:
    """Insert a user directly, skipping password hashing."""
    now = core.codec.now()
    user = User(
        user_id=new_id(),
        username=username,
        email=f"{username}@example.com",
        password_hash="not-a-real-hash",
        audit=AuditFields.new(now),
        is_active=is_active,
    )
    return core.credentials.create(user)


def create_role(core: IdentityCore, code: str, name: Optional[str] = None):
    return core.catalog.create_role(RoleCreate(role_name=name or code.title(), role_code=code))


def create_permission(core: IdentityCore, code: str, resource: str = "user", action: str = "read"):
    return core.catalog.create_permission(
        PermissionCreate(
            permission_name=code.replace("_", " ").title(),
            permission_code=code,
            resource_name=resource,
            action_type=action,
        )
    )


def tamper_signature(token: str) -> str:
    """Change the first character of the signature segment."""
    header, payload, signature = token.split(".")
    replacement = "A" if signature[0] != "A" else "B"
    return ".".join([header, payload, replacement + signature[1:]])
