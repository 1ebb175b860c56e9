"""
Wiring of the identity core.

Builds the database, stores, codec, resolver and services from settings, so
a boundary layer (HTTP app, CLI, tests) needs a single object.
"""

from dataclasses import dataclass
from typing import Optional

from .accounts import AccountService
from .association_store import AssociationStore
from .associations import AssociationManager
from .auth_service import AuthService
from .authorization import PermissionChecker
from .catalog import CatalogService
from .config import Settings, get_settings
from .credential_store import CredentialStore
from .database import Database
from .gate import AccessControlGate
from .models import utc_now
from .passwords import PasswordHasher
from .resolver import PermissionResolver
from .role_store import RoleStore
from .token_codec import Clock, TokenCodec


@dataclass
class IdentityCore:
    """All identity components sharing one database and one clock."""
    db: Database
    credentials: CredentialStore
    roles: RoleStore
    associations: AssociationStore
    codec: TokenCodec
    hasher: PasswordHasher
    resolver: PermissionResolver
    auth: AuthService
    accounts: AccountService
    catalog: CatalogService
    assignments: AssociationManager
    gate: AccessControlGate
    checker: PermissionChecker

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        clock: Clock = utc_now,
    ) -> "IdentityCore":
        """
        Build the core.

        Args:
            settings: Settings to use (default: ``get_settings()``)
            clock: Current-time source for tokens and audit fields
        """
        settings = settings or get_settings()

        db = Database.from_settings(settings)
        credentials = CredentialStore(db)
        roles = RoleStore(db)
        associations = AssociationStore(db)
        codec = TokenCodec.from_settings(settings, clock=clock)
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        resolver = PermissionResolver(associations)
        auth = AuthService(credentials, hasher, codec, resolver)

        return cls(
            db=db,
            credentials=credentials,
            roles=roles,
            associations=associations,
            codec=codec,
            hasher=hasher,
            resolver=resolver,
            auth=auth,
            accounts=AccountService(credentials, resolver, auth, clock=clock),
            catalog=CatalogService(roles, associations, resolver, clock=clock),
            assignments=AssociationManager(credentials, roles, associations, clock=clock),
            gate=AccessControlGate(codec, credentials),
            checker=PermissionChecker(resolver),
        )
