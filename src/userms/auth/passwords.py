"""
Password hashing and password policy.

Hashing is bcrypt with a configurable cost. The policy check is the same rule
the registration form enforces, asserted again in the core.
"""

import re

import bcrypt
from loguru import logger

from .errors import PasswordPolicyError


# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 100
PASSWORD_SPECIALS = "@$!%*?&"
_ALLOWED = re.compile(r"^[A-Za-z\d@$!%*?&]+$")


class PasswordHasher:
    """
    Bcrypt password hasher.

    Hashes and verifies passwords. ``rounds`` is the bcrypt cost factor;
    production uses 12, tests use the minimum of 4.
    """

    def __init__(self, rounds: int = 12):
        """
        Initialize hasher.

        Args:
            rounds: Bcrypt cost factor (4-31)
        """
        if not 4 <= rounds <= 31:
            raise ValueError(f"bcrypt rounds must be between 4 and 31, got {rounds}")
        self.rounds = rounds

    @staticmethod
    def _encode(plaintext: str) -> bytes:
        return plaintext.encode("utf-8")[:BCRYPT_MAX_BYTES]

    def hash(self, plaintext: str) -> str:
        """
        Hash a password.

        Args:
            plaintext: Plain text password

        Returns:
            Bcrypt digest as a string
        """
        return bcrypt.hashpw(
            self._encode(plaintext),
            bcrypt.gensalt(rounds=self.rounds)
        ).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """
        Verify a password against its digest.

        Args:
            plaintext: Plain text password to verify
            digest: Stored bcrypt digest

        Returns:
            True if password matches, False otherwise (including for a
            digest that is not a valid bcrypt hash)
        """
        try:
            return bcrypt.checkpw(self._encode(plaintext), digest.encode("utf-8"))
        except ValueError as e:
            logger.error(f"Stored password digest is not a valid bcrypt hash: {e}")
            return False


def check_password_policy(password: str) -> None:
    """
    Require a password to meet the account password policy.

    8-100 characters, at least one uppercase letter, one lowercase letter,
    one digit and one of ``@$!%*?&``; no other characters.

    Raises:
        PasswordPolicyError: Naming the first rule that failed
    """
    if not PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH:
        raise PasswordPolicyError(
            f"length must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH}"
        )
    if not _ALLOWED.match(password):
        raise PasswordPolicyError(
            f"only letters, digits and {PASSWORD_SPECIALS} are allowed"
        )
    if not any(c.isupper() for c in password):
        raise PasswordPolicyError("must contain an uppercase letter")
    if not any(c.islower() for c in password):
        raise PasswordPolicyError("must contain a lowercase letter")
    if not any(c.isdigit() for c in password):
        raise PasswordPolicyError("must contain a digit")
    if not any(c in PASSWORD_SPECIALS for c in password):
        raise PasswordPolicyError(f"must contain one of {PASSWORD_SPECIALS}")
