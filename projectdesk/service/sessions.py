from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from projectdesk.logging import get_logger
from projectdesk.service.errors import TokenInvalidError, TooManySessionsError
from projectdesk.service.tokens import IssuedToken, token_digest
from projectdesk.storage.models import utcnow

logger = get_logger(__name__)


class SessionRegistry:
    """Bounded per-user set of live refresh tokens.

    Tokens are reduced to their sha256 digest before they reach the store, and
    each mutation is delegated to a single atomic store call.
    """

    def __init__(
        self,
        store,
        *,
        max_sessions: int = 5,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.max_sessions = max_sessions
        self._clock = clock or utcnow

    def add_session(self, user_id: str, refresh: IssuedToken) -> None:
        added = self.store.add_refresh_token(
            user_id,
            token_digest(refresh.token),
            refresh.expires_at,
            max_sessions=self.max_sessions,
            now=self._clock(),
        )
        if not added:
            logger.warning("session_limit_reached", user_id=user_id, limit=self.max_sessions)
            raise TooManySessionsError(
                "maximum number of active sessions reached",
                detail={"max_sessions": self.max_sessions},
            )

    def remove_session(self, user_id: str, token: str) -> None:
        self.store.remove_refresh_token(user_id, token_digest(token))

    def clear_all_sessions(self, user_id: str) -> int:
        removed = self.store.clear_refresh_tokens(user_id)
        logger.info("sessions_cleared", user_id=user_id, removed=removed)
        return removed

    def rotate_session(self, user_id: str, old_token: str, new_refresh: IssuedToken) -> None:
        rotated = self.store.rotate_refresh_token(
            user_id,
            token_digest(old_token),
            token_digest(new_refresh.token),
            new_refresh.expires_at,
            now=self._clock(),
        )
        if not rotated:
            # already rotated, revoked or expired: treat as replay
            logger.warning("refresh_token_replay", user_id=user_id)
            raise TokenInvalidError("refresh token is not active")

    def has_session(self, user_id: str, token: str) -> bool:
        return self.store.has_refresh_token(user_id, token_digest(token), self._clock())

    def count_sessions(self, user_id: str) -> int:
        return self.store.count_refresh_tokens(user_id, self._clock())
