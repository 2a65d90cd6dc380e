import base64
import json
from datetime import timedelta

import pytest

from projectdesk.service.errors import (
    AuthenticationError,
    TokenExpiredError,
    TokenInvalidError,
)
from projectdesk.service.tokens import ACCESS, REFRESH, TokenIssuer, token_digest
from projectdesk.storage.models import User

ACCESS_SECRET = "a" * 48
REFRESH_SECRET = "r" * 48


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _unb64(segment: str) -> dict:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return json.loads(base64.urlsafe_b64decode(segment + padding))


@pytest.fixture
def user():
    return User(id="user-1", email="a@x.com", username="alice", password_hash="h", role="user")


@pytest.fixture
def issuer(clock):
    return TokenIssuer(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, clock=clock)


class TestIssue:
    def test_access_token_claims(self, issuer, user, clock):
        claims = issuer.verify(issuer.issue_access_token(user), ACCESS)
        assert claims["id"] == "user-1"
        assert claims["email"] == "a@x.com"
        assert claims["username"] == "alice"
        assert claims["role"] == "user"
        assert claims["typ"] == "access"
        assert claims["iss"] == "projectdesk"
        assert claims["exp"] - claims["iat"] == 15 * 60
        assert claims["jti"]

    def test_refresh_token_carries_only_identity(self, issuer, user, clock):
        issued = issuer.issue_refresh_token(user)
        claims = issuer.verify(issued.token, REFRESH)
        assert claims["id"] == "user-1"
        assert claims["typ"] == "refresh"
        assert "email" not in claims
        assert "role" not in claims
        assert issued.expires_at == clock.now + timedelta(days=7)
        assert issued.jti == claims["jti"]

    def test_tokens_are_unique(self, issuer, user):
        first = issuer.issue_refresh_token(user)
        second = issuer.issue_refresh_token(user)
        assert first.token != second.token
        assert token_digest(first.token) != token_digest(second.token)

    def test_equal_secrets_rejected(self):
        with pytest.raises(ValueError):
            TokenIssuer(access_secret="same" * 10, refresh_secret="same" * 10)


class TestExpiry:
    def test_valid_until_expiry(self, issuer, user, clock):
        token = issuer.issue_access_token(user)
        clock.advance(minutes=14, seconds=59)
        assert issuer.verify(token, ACCESS)["id"] == "user-1"

    def test_expired_at_exact_expiry(self, issuer, user, clock):
        token = issuer.issue_access_token(user)
        clock.advance(minutes=15)
        with pytest.raises(TokenExpiredError):
            issuer.verify(token, ACCESS)

    def test_refresh_expires_after_seven_days(self, issuer, user, clock):
        token = issuer.issue_refresh_token(user).token
        clock.advance(days=7, seconds=1)
        with pytest.raises(TokenExpiredError) as excinfo:
            issuer.verify(token, REFRESH)
        assert excinfo.value.status_code == 401
        assert excinfo.value.error_code == "token_expired"


class TestRejection:
    def test_access_token_is_not_a_refresh_token(self, issuer, user):
        with pytest.raises(TokenInvalidError):
            issuer.verify(issuer.issue_access_token(user), REFRESH)

    def test_refresh_token_is_not_an_access_token(self, issuer, user):
        with pytest.raises(TokenInvalidError):
            issuer.verify(issuer.issue_refresh_token(user).token, ACCESS)

    def test_tampered_payload(self, issuer, user):
        header, payload, signature = issuer.issue_access_token(user).split(".")
        claims = _unb64(payload)
        claims["role"] = "admin"
        forged = f"{header}.{_b64(claims)}.{signature}"
        with pytest.raises(TokenInvalidError):
            issuer.verify(forged, ACCESS)

    def test_alg_none(self, issuer, user):
        _, payload, _ = issuer.issue_access_token(user).split(".")
        forged = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{payload}."
        with pytest.raises(TokenInvalidError):
            issuer.verify(forged, ACCESS)

    def test_other_issuer(self, user, clock):
        other = TokenIssuer(
            access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, issuer="other", clock=clock
        )
        ours = TokenIssuer(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, clock=clock)
        with pytest.raises(TokenInvalidError):
            ours.verify(other.issue_access_token(user), ACCESS)

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c", "...."])
    def test_malformed(self, issuer, token):
        with pytest.raises(TokenInvalidError):
            issuer.verify(token, ACCESS)

    def test_token_errors_are_authentication_errors(self):
        assert issubclass(TokenInvalidError, AuthenticationError)
        assert issubclass(TokenExpiredError, AuthenticationError)
        assert TokenInvalidError("x").error_code == "token_invalid"
