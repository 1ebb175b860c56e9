"""
Unit tests for the session token codec.
"""

from datetime import timedelta

import jwt
import pytest

from userms.auth import (
    TokenCodec,
    TokenExpiredError,
    TokenMalformedError,
    TokenNotRefreshableError,
)

from conftest import SECRET_KEY, START, FakeClock, tamper_signature


@pytest.fixture
def codec(clock: FakeClock) -> TokenCodec:
    return TokenCodec(SECRET_KEY, clock=clock)


class TestIssueAndParse:
    """Test issuing and parsing tokens."""

    @pytest.mark.parametrize("subject", ["alice", "bob_42", "élodie", "a" * 50])
    def test_subject_round_trip(self, codec, subject):
        """Test that the parsed subject equals the issued one."""
        assert codec.parse(codec.issue(subject)).subject == subject

    def test_claims_follow_clock(self, codec):
        """Test issued-at and expiry come from the injected clock."""
        claims = codec.parse(codec.issue("alice"))

        assert claims.issued_at == START
        assert claims.expires_at == START + timedelta(hours=24)
        assert claims.jti

    def test_compact_three_segment_format(self, codec):
        """Test the wire format is header.payload.signature."""
        token = codec.issue("alice")

        assert len(token.split(".")) == 3
        assert TokenCodec.is_valid_format(token)

    def test_payload_carries_standard_claims(self, codec):
        """Test sub, iat and exp are present as epoch seconds."""
        payload = jwt.decode(codec.issue("alice"), options={"verify_signature": False})

        assert payload["sub"] == "alice"
        assert payload["iat"] == int(START.timestamp())
        assert payload["exp"] == int(START.timestamp()) + 24 * 3600

    def test_token_ids_are_unique(self, codec):
        """Test two tokens for the same subject differ."""
        first = codec.parse(codec.issue("alice"))
        second = codec.parse(codec.issue("alice"))

        assert first.jti != second.jti

    def test_constructor_rejects_bad_configuration(self):
        """Test empty secret and non-positive TTL are refused."""
        with pytest.raises(ValueError):
            TokenCodec("")
        with pytest.raises(ValueError):
            TokenCodec(SECRET_KEY, ttl=timedelta(0))


class TestMalformedTokens:
    """Test rejection of forged and broken tokens."""

    def test_tampered_signature_fails_everything(self, codec):
        """Test a flipped signature byte is never valid or refreshable."""
        forged = tamper_signature(codec.issue("alice"))

        assert codec.validate(forged, "alice") is False
        assert codec.can_refresh(forged) is False
        with pytest.raises(TokenMalformedError):
            codec.parse(forged)
        with pytest.raises(TokenNotRefreshableError):
            codec.refresh(forged)

    def test_tampered_expired_token_is_not_refreshable(self, codec, clock):
        """Test a forged token stays unrefreshable inside the grace window."""
        forged = tamper_signature(codec.issue("alice"))
        clock.advance(hours=25)

        assert codec.can_refresh(forged) is False

    def test_token_signed_with_other_secret(self, codec, clock):
        """Test a token from a different secret is rejected."""
        other = TokenCodec("another-secret-key-also-32-bytes-long!!", clock=clock)
        token = other.issue("alice")

        assert codec.validate(token, "alice") is False
        with pytest.raises(TokenMalformedError):
            codec.parse(token)

    @pytest.mark.parametrize("token", ["", "   ", "abc", "a.b", "a..c", "a.b.c.d"])
    def test_bad_structure(self, codec, token):
        """Test tokens that are not three non-empty segments."""
        assert TokenCodec.is_valid_format(token) is False
        with pytest.raises(TokenMalformedError):
            codec.parse(token)

    def test_garbage_segments(self, codec):
        """Test three segments of non-token data."""
        with pytest.raises(TokenMalformedError):
            codec.parse("not.a.token")

    def test_missing_expiry_claim(self, codec):
        """Test a genuine signature without exp is still malformed."""
        token = jwt.encode({"sub": "alice", "iat": int(START.timestamp())}, SECRET_KEY, algorithm="HS256")

        with pytest.raises(TokenMalformedError):
            codec.parse(token)

    def test_remaining_and_near_expiry_for_garbage(self, codec):
        """Test helpers treat unparseable tokens as used up."""
        assert codec.remaining_seconds("a.b.c") == 0
        assert codec.is_near_expiry("a.b.c") is True


class TestExpiryAndRefresh:
    """Test expiry checks and the refresh grace window."""

    def test_fresh_token_validates(self, codec):
        """Test a new token validates for its own subject only."""
        token = codec.issue("alice")

        assert codec.validate(token, "alice") is True
        assert codec.validate(token, "bob") is False

    def test_expired_exactly_at_expiry(self, codec, clock):
        """Test now == expiresAt counts as expired."""
        token = codec.issue("alice")
        clock.advance(hours=24)

        assert codec.is_expired(codec.parse(token)) is True
        with pytest.raises(TokenExpiredError):
            codec.verify(token)

    def test_expired_within_grace(self, codec, clock):
        """Test an expired token inside the grace window can be refreshed."""
        token = codec.issue("alice")
        original = codec.parse(token)
        clock.advance(hours=30)

        assert codec.validate(token, "alice") is False
        assert codec.can_refresh(token) is True

        new_token = codec.refresh(token)
        refreshed = codec.parse(new_token)

        assert refreshed.subject == "alice"
        assert refreshed.expires_at > original.expires_at
        assert codec.validate(new_token, "alice") is True

    def test_expired_beyond_grace(self, codec, clock):
        """Test refresh is refused once the grace window has passed."""
        token = codec.issue("alice")
        clock.advance(hours=48, seconds=1)

        assert codec.can_refresh(token) is False
        with pytest.raises(TokenNotRefreshableError):
            codec.refresh(token)

    def test_unexpired_token_can_refresh(self, codec, clock):
        """Test refresh also works before expiry."""
        token = codec.issue("alice")
        clock.advance(hours=1)

        assert codec.can_refresh(token) is True
        assert codec.parse(codec.refresh(token)).expires_at == clock() + timedelta(hours=24)

    def test_remaining_seconds_and_near_expiry(self, codec, clock):
        """Test remaining lifetime and the 30 minute near-expiry threshold."""
        token = codec.issue("alice")
        assert codec.remaining_seconds(token) == 24 * 3600
        assert codec.is_near_expiry(token) is False

        clock.advance(hours=23, minutes=40)
        assert codec.remaining_seconds(token) == 20 * 60
        assert codec.is_near_expiry(token) is True

    def test_from_settings(self, settings, clock):
        """Test codec configuration comes from settings."""
        codec = TokenCodec.from_settings(settings.model_copy(update={"token_ttl_seconds": 60}), clock=clock)

        assert codec.ttl_seconds == 60
        assert codec.parse(codec.issue("alice")).expires_at == START + timedelta(seconds=60)
