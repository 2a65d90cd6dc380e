from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from projectdesk.storage.models import utcnow


@dataclass(frozen=True)
class OneTimeToken:
    raw: str
    hashed: str
    expires_at: datetime


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


class OneTimeTokenGenerator:
    """Random single-use tokens for email verification and password reset.

    Only ``hashed`` is persisted; ``raw`` goes out by email and is never stored.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or utcnow

    def generate(self, ttl: timedelta) -> OneTimeToken:
        raw = secrets.token_hex(32)
        return OneTimeToken(raw=raw, hashed=hash_token(raw), expires_at=self._clock() + ttl)

    def consume(
        self,
        raw: str,
        stored_hash: Optional[str],
        stored_expiry: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> bool:
        if not raw or not stored_hash or stored_expiry is None:
            return False
        if not hmac.compare_digest(hash_token(raw).encode(), stored_hash.encode()):
            return False
        return (now or self._clock()) < stored_expiry
