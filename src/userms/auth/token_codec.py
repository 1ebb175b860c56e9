"""
Signed session token codec.

Issues and verifies compact HS256 tokens (``header.payload.signature``, each
segment base64url). The codec is stateless: a token is valid when its
signature checks out against the server secret and its ``exp`` is in the
future. Nothing is stored server-side.

Signature checking and expiry checking are separate steps. An expired
token with a good signature may be refreshed within the grace window; a
token with a bad signature or broken structure is rejected by every
operation regardless of its claimed dates.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from loguru import logger

from .config import Settings
from .errors import TokenExpiredError, TokenMalformedError, TokenNotRefreshableError
from .models import utc_now


Clock = Callable[[], datetime]

REQUIRED_CLAIMS = ["sub", "iat", "exp"]

# Signature/structure only; expiry is judged against our own clock
_DECODE_OPTIONS = {
    "require": REQUIRED_CLAIMS,
    "verify_signature": True,
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
}


@dataclass(frozen=True)
class TokenClaims:
    """
    Decoded, signature-verified token claims.

    Attributes:
        subject: Username the token was issued to (``sub``)
        issued_at: Issue time (``iat``)
        expires_at: Expiry time (``exp``)
        jti: Unique token ID
    """
    subject: str
    issued_at: datetime
    expires_at: datetime
    jti: Optional[str] = None


def _to_epoch(moment: datetime) -> int:
    return int(moment.timestamp())


def _from_epoch(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class TokenCodec:
    """
    Session token codec.

    Creates, parses, validates and refreshes signed tokens.
    """

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(hours=24),
        refresh_grace: timedelta = timedelta(hours=24),
        near_expiry: timedelta = timedelta(minutes=30),
        clock: Clock = utc_now,
    ):
        """
        Initialize codec.

        Args:
            secret_key: Symmetric key used for the HMAC signature
            algorithm: HMAC algorithm (default: HS256)
            ttl: Lifetime of a freshly issued token
            refresh_grace: How long after expiry a token may still be refreshed
            near_expiry: Remaining lifetime below which a token counts as near expiry
            clock: Returns the current UTC time
        """
        if not secret_key:
            raise ValueError("Token secret key must not be empty")
        if ttl <= timedelta(0):
            raise ValueError("Token TTL must be positive")

        self._secret_key = secret_key
        self.algorithm = algorithm
        self.ttl = ttl
        self.refresh_grace = refresh_grace
        self.near_expiry = near_expiry
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenCodec":
        return cls(
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            ttl=timedelta(seconds=settings.token_ttl_seconds),
            refresh_grace=timedelta(seconds=settings.refresh_grace_seconds),
            near_expiry=timedelta(seconds=settings.near_expiry_seconds),
            clock=clock,
        )

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def now(self) -> datetime:
        return self._clock()

    # ========================================================================
    # Issue / parse
    # ========================================================================

    def issue(self, subject: str) -> str:
        """
        Issue a token for ``subject``.

        Args:
            subject: Username to put in the ``sub`` claim

        Returns:
            Compact signed token string
        """
        now = self.now()
        payload = {
            "sub": subject,
            "iat": _to_epoch(now),
            "exp": _to_epoch(now + self.ttl),
            "jti": secrets.token_urlsafe(16),
        }

        token = jwt.encode(payload, self._secret_key, algorithm=self.algorithm)
        logger.debug(f"Token issued for {subject}")
        return token

    def parse(self, token: str) -> TokenClaims:
        """
        Verify the signature and decode the claims. Does not look at expiry.

        Args:
            token: Compact token string

        Returns:
            TokenClaims, possibly already expired

        Raises:
            TokenMalformedError: Wrong structure, bad signature, or missing claims
        """
        if not self.is_valid_format(token):
            raise TokenMalformedError("expected three dot-separated segments")

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self.algorithm],
                options=_DECODE_OPTIONS,
            )
        except jwt.InvalidSignatureError:
            raise TokenMalformedError("signature mismatch")
        except jwt.InvalidTokenError as e:
            raise TokenMalformedError(str(e))

        subject = payload["sub"]
        if not isinstance(subject, str):
            raise TokenMalformedError("subject claim must be a string")

        try:
            return TokenClaims(
                subject=subject,
                issued_at=_from_epoch(payload["iat"]),
                expires_at=_from_epoch(payload["exp"]),
                jti=payload.get("jti"),
            )
        except (TypeError, ValueError, OverflowError, OSError):
            raise TokenMalformedError("timestamp claims must be epoch seconds")

    @staticmethod
    def is_valid_format(token: Optional[str]) -> bool:
        """Three non-empty dot-separated segments."""
        if not token or not token.strip():
            return False
        parts = token.split(".")
        return len(parts) == 3 and all(parts)

    # ========================================================================
    # Expiry and validation
    # ========================================================================

    def is_expired(self, claims: TokenClaims) -> bool:
        return self.now() >= claims.expires_at

    def verify(self, token: str) -> TokenClaims:
        """
        Parse and require the token to be unexpired.

        Raises:
            TokenMalformedError: Bad structure or signature
            TokenExpiredError: Good signature, past expiry
        """
        claims = self.parse(token)
        if self.is_expired(claims):
            raise TokenExpiredError(claims.subject)
        return claims

    def validate(self, token: str, expected_subject: str) -> bool:
        """
        Check that a token is genuine, unexpired and issued to ``expected_subject``.

        Never raises for a bad token; returns False instead.
        """
        try:
            claims = self.verify(token)
        except TokenMalformedError as e:
            logger.warning(f"Token validation failed: {e.reason}")
            return False
        except TokenExpiredError:
            logger.debug(f"Token for {expected_subject} has expired")
            return False

        return claims.subject == expected_subject

    def remaining_seconds(self, token: str) -> int:
        """Seconds until expiry (negative once expired), 0 when unparseable."""
        try:
            claims = self.parse(token)
        except TokenMalformedError:
            return 0
        return int((claims.expires_at - self.now()).total_seconds())

    def is_near_expiry(self, token: str) -> bool:
        """True when less than ``near_expiry`` remains, or the token is unusable."""
        try:
            claims = self.parse(token)
        except TokenMalformedError:
            return True
        return claims.expires_at - self.now() < self.near_expiry

    # ========================================================================
    # Refresh
    # ========================================================================

    def can_refresh(self, token: str) -> bool:
        """
        Whether a token may be exchanged for a fresh one.

        The signature must verify; expiry is tolerated up to ``refresh_grace``.
        """
        try:
            claims = self.parse(token)
        except TokenMalformedError as e:
            logger.warning(f"Refusing refresh of invalid token: {e.reason}")
            return False

        return self.now() - claims.expires_at < self.refresh_grace

    def refresh(self, old_token: str) -> str:
        """
        Issue a new token for the subject of a refreshable token.

        Args:
            old_token: Current (possibly expired) token

        Returns:
            New token with a full TTL

        Raises:
            TokenNotRefreshableError: Forged, malformed, or expired beyond grace
        """
        if not self.can_refresh(old_token):
            raise TokenNotRefreshableError()

        claims = self.parse(old_token)
        if not claims.subject.strip():
            raise TokenNotRefreshableError("token has no subject")

        logger.info(f"Token refreshed for {claims.subject}")
        return self.issue(claims.subject)
