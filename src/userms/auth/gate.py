"""
Access control gate.

Per-request authentication: takes the raw ``Authorization`` header, verifies
the bearer token and returns an explicit, immutable request context. The
context is handed to downstream code as an argument; nothing is kept in
globals or thread-locals.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from loguru import logger

from .credential_store import CredentialStore
from .errors import ErrorCode, TokenExpiredError, TokenMalformedError
from .token_codec import TokenCodec


BEARER_SCHEME = "bearer"


@dataclass(frozen=True)
class Principal:
    """
    Authenticated user attached to a request.

    Attributes:
        username: Token subject
        user_id: Stored user ID (None when the gate has no credential store)
        expires_at: When the presented token expires
    """
    username: str
    user_id: Optional[str]
    expires_at: datetime


@dataclass(frozen=True)
class RequestContext:
    """
    Request-scoped authentication result.

    Attributes:
        principal: The authenticated user, or None
        failure: Why authentication failed (None when authenticated or no
            credentials were presented)
    """
    principal: Optional[Principal] = None
    failure: Optional[ErrorCode] = None

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

    @classmethod
    def anonymous(cls, failure: Optional[ErrorCode] = None) -> "RequestContext":
        return cls(principal=None, failure=failure)


class AccessControlGate:
    """
    Bearer token authentication for incoming requests.

    Never raises for a missing, malformed, forged or expired token; such
    requests get an anonymous context.
    """

    def __init__(self, codec: TokenCodec, credentials: Optional[CredentialStore] = None):
        """
        Initialize gate.

        Args:
            codec: Token codec used for verification
            credentials: When given, the token's user must still exist and be active
        """
        self.codec = codec
        self.credentials = credentials

    @staticmethod
    def extract_token(authorization: Optional[str]) -> Optional[str]:
        """
        Token from an ``Authorization`` header value.

        Accepts ``Bearer <token>`` (scheme case-insensitive) or a bare token.

        Returns:
            The token, or None if absent or presented under another scheme
        """
        if not authorization or not authorization.strip():
            return None

        parts = authorization.strip().split(None, 1)
        if len(parts) == 1:
            # A scheme with nothing after it carries no token
            if parts[0].lower() == BEARER_SCHEME:
                return None
            return parts[0]

        scheme, token = parts
        if scheme.lower() != BEARER_SCHEME:
            return None
        return token.strip() or None

    def authenticate(self, authorization: Optional[str]) -> RequestContext:
        """
        Authenticate a request.

        Args:
            authorization: Raw ``Authorization`` header value (or bare token)

        Returns:
            RequestContext with a principal on success, anonymous otherwise
        """
        token = self.extract_token(authorization)
        if token is None:
            return RequestContext.anonymous(ErrorCode.UNAUTHENTICATED if authorization else None)

        if not self.codec.is_valid_format(token):
            logger.warning("Rejected request token: not a three-segment token")
            return RequestContext.anonymous(ErrorCode.TOKEN_MALFORMED)

        try:
            claims = self.codec.verify(token)
        except TokenMalformedError as e:
            logger.warning(f"Rejected request token: {e.reason}")
            return RequestContext.anonymous(ErrorCode.TOKEN_MALFORMED)
        except TokenExpiredError:
            logger.debug("Rejected request token: expired")
            return RequestContext.anonymous(ErrorCode.TOKEN_EXPIRED)

        user_id = None
        if self.credentials is not None:
            user = self.credentials.get_by_username(claims.subject)
            if user is None:
                logger.warning(f"Rejected request token: user '{claims.subject}' not found")
                return RequestContext.anonymous(ErrorCode.USER_NOT_FOUND)
            if not user.is_active:
                logger.warning(f"Rejected request token: user '{claims.subject}' is inactive")
                return RequestContext.anonymous(ErrorCode.USER_INACTIVE)
            user_id = user.user_id

        logger.debug(f"Request authenticated: {claims.subject}")
        return RequestContext(
            principal=Principal(
                username=claims.subject,
                user_id=user_id,
                expires_at=claims.expires_at,
            )
        )
