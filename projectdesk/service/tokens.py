from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from projectdesk.config import Settings
from projectdesk.logging import get_logger
from projectdesk.service.errors import TokenExpiredError, TokenInvalidError
from projectdesk.storage.models import User, utcnow

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    jti: str


def token_digest(token: str) -> str:
    """sha256 of a token, the only form in which refresh tokens are stored."""
    return hashlib.sha256(token.encode()).hexdigest()


class TokenIssuer:
    """HS256 access/refresh tokens, each kind with its own secret and lifetime."""

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        issuer: str = "projectdesk",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl, REFRESH: refresh_ttl}
        self.issuer = issuer
        self._clock = clock or utcnow

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Optional[Callable[[], datetime]] = None
    ) -> "TokenIssuer":
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            issuer=settings.jwt_issuer,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(minutes=settings.refresh_token_ttl_minutes),
            clock=clock,
        )

    def now(self) -> datetime:
        return self._clock()

    @property
    def refresh_ttl(self) -> timedelta:
        return self._ttls[REFRESH]

    @property
    def access_ttl(self) -> timedelta:
        return self._ttls[ACCESS]

    def issue_access_token(self, user: User) -> str:
        claims = {"email": user.email, "username": user.username, "role": user.role}
        return self._issue(ACCESS, user.id, claims).token

    def issue_refresh_token(self, user: User) -> IssuedToken:
        return self._issue(REFRESH, user.id, {})

    def _issue(self, kind: str, user_id: str, extra: dict[str, Any]) -> IssuedToken:
        now = self._clock()
        expires_at = now + self._ttls[kind]
        jti = uuid.uuid4().hex
        payload = {
            "id": user_id,
            **extra,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self.issuer,
            "typ": kind,
            "jti": jti,
        }
        return IssuedToken(
            token=self._encode_jwt(payload, self._secrets[kind]),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=expires_at.tzinfo),
            jti=jti,
        )

    def verify(self, token: str, kind: str) -> dict[str, Any]:
        """Return the claims of ``token`` or raise TokenInvalidError / TokenExpiredError."""
        if kind not in self._secrets:
            raise ValueError(f"unknown token kind: {kind}")
        if not token or not isinstance(token, str):
            raise TokenInvalidError("token missing or malformed")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise TokenInvalidError("token missing or malformed")

        try:
            header = json.loads(self._decode_segment(header_b64))
        except (ValueError, TypeError):
            logger.warning("jwt_header_decode_failed", token_type=kind)
            raise TokenInvalidError("token missing or malformed")
        # Reject alg=none and friends before touching the signature
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm", token_type=kind)
            raise TokenInvalidError("unsupported token algorithm")

        expected_sig = self._sign(f"{header_b64}.{payload_b64}", self._secrets[kind])
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise TokenInvalidError("token signature mismatch")

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise TokenInvalidError("token missing or malformed")
        if not isinstance(payload, dict):
            raise TokenInvalidError("token missing or malformed")
        if payload.get("typ") != kind:
            raise TokenInvalidError("wrong token type")
        if payload.get("iss") != self.issuer:
            raise TokenInvalidError("unexpected token issuer")
        if not payload.get("id"):
            raise TokenInvalidError("token subject missing")
        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise TokenInvalidError("token expiry missing")
        if self._clock().timestamp() >= exp:
            raise TokenExpiredError("token expired")
        return payload

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        try:
            return base64.urlsafe_b64decode(segment + padding)
        except (ValueError, TypeError) as exc:
            raise ValueError("invalid base64 segment") from exc

    def _sign(self, signing_input: str, secret: str) -> str:
        return self._encode_segment(
            hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any], secret: str) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, secret)}"
