from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Protocol, Tuple

from projectdesk.config import Settings
from projectdesk.logging import email_hash, get_logger
from projectdesk.service.email import EmailService
from projectdesk.service.errors import (
    AuthenticationError,
    DependencyFailureError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from projectdesk.service.one_time_tokens import OneTimeTokenGenerator, hash_token
from projectdesk.service.passwords import hash_password, verify_password
from projectdesk.service.sessions import SessionRegistry
from projectdesk.service.tokens import ACCESS, REFRESH, IssuedToken, TokenIssuer
from projectdesk.storage.models import User, utcnow

logger = get_logger(__name__)


class AuthStore(Protocol):
    def create_user(
        self,
        email: str,
        username: str,
        password_hash: str,
        *,
        full_name: Optional[str] = None,
        role: str = "user",
        is_email_verified: bool = False,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def list_users(
        self, *, search: Optional[str] = None, offset: int = 0, limit: int = 10
    ) -> Tuple[List[User], int]: ...

    def update_user_profile(
        self,
        user_id: str,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> Optional[User]: ...

    def update_user_role(self, user_id: str, role: str) -> Optional[User]: ...

    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]: ...

    def delete_user(self, user_id: str) -> bool: ...

    def replace_password(self, user_id: str, password_hash: str) -> Optional[User]: ...

    def set_email_verification_token(
        self, user_id: str, token_hash: str, expires_at: datetime, sent_at: datetime
    ) -> Optional[User]: ...

    def complete_email_verification(self, token_hash: str, now: datetime) -> Optional[User]: ...

    def set_password_reset_token(
        self, user_id: str, token_hash: str, expires_at: datetime
    ) -> Optional[User]: ...

    def complete_password_reset(
        self, token_hash: str, password_hash: str, now: datetime
    ) -> Optional[User]: ...


@dataclass
class AuthContext:
    """Identity attached to an authenticated request; never carries secrets."""

    user_id: str
    role: str
    email: str
    username: str


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


@dataclass
class LoginResult:
    user: User
    tokens: TokenPair


class AuthService:
    """Registration, login, token rotation and the one-time-token flows."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        email: EmailService,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.email = email
        self._clock = clock or utcnow
        self.issuer = TokenIssuer.from_settings(settings, clock=self._clock)
        self.sessions = SessionRegistry(
            store, max_sessions=settings.max_sessions, clock=self._clock
        )
        self.one_time_tokens = OneTimeTokenGenerator(clock=self._clock)
        self.logger = logger

    def _now(self) -> datetime:
        return self._clock()

    # registration and verification
    async def register(
        self,
        email: str,
        username: str,
        password: str,
        *,
        full_name: Optional[str] = None,
    ) -> User:
        user = self.store.create_user(
            email, username, hash_password(password), full_name=full_name
        )
        try:
            sent = await self._send_verification(user)
        except Exception as exc:
            self.store.delete_user(user.id)
            self.logger.error(
                "registration_email_error", user_id=user.id, error_type=type(exc).__name__
            )
            raise DependencyFailureError("failed to send verification email") from exc
        if not sent:
            # Compensate so a user who can never verify is not left behind
            self.store.delete_user(user.id)
            self.logger.error("registration_email_failed", user_id=user.id)
            raise DependencyFailureError("failed to send verification email")
        self.logger.info("user_registered", user_id=user.id, email_hash=email_hash(user.email))
        return self.store.get_user(user.id) or user

    async def _send_verification(self, user: User) -> bool:
        now = self._now()
        token = self.one_time_tokens.generate(
            timedelta(minutes=self.settings.email_verification_ttl_minutes)
        )
        self.store.set_email_verification_token(user.id, token.hashed, token.expires_at, now)
        return await asyncio.to_thread(
            self.email.send_email_verification, user.email, user.username, token.raw
        )

    def verify_email(self, token: str) -> User:
        user = self.store.complete_email_verification(hash_token(token), self._now())
        if not user:
            self.logger.warning("email_verification_invalid_token")
            raise ValidationError("invalid or expired verification token")
        self.logger.info("email_verified", user_id=user.id)
        return user

    async def resend_verification(self, email: str) -> None:
        user = self.store.get_user_by_email(email)
        if not user:
            raise NotFoundError("user not found")
        if user.is_email_verified:
            raise ValidationError("email is already verified")
        cooldown = timedelta(seconds=self.settings.verification_resend_cooldown_seconds)
        if user.verification_sent_at and self._now() - user.verification_sent_at < cooldown:
            retry_after = cooldown - (self._now() - user.verification_sent_at)
            raise RateLimitedError(
                "please wait before requesting another verification email",
                detail={"retry_after": max(1, int(retry_after.total_seconds()))},
            )
        if not await self._send_verification(user):
            self.logger.error("verification_resend_failed", user_id=user.id)
            raise DependencyFailureError("failed to send verification email")
        self.logger.info("verification_resent", user_id=user.id)

    # login and token lifecycle
    def _issue_pair(self, user: User) -> Tuple[IssuedToken, TokenPair]:
        refresh = self.issuer.issue_refresh_token(user)
        access = self.issuer.issue_access_token(user)
        return refresh, TokenPair(
            access_token=access,
            refresh_token=refresh.token,
            refresh_expires_at=refresh.expires_at,
        )

    def login(self, email: str, password: str) -> LoginResult:
        user = self.store.get_user_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            self.logger.warning("login_failed", email_hash=email_hash(email))
            raise AuthenticationError("invalid email or password")
        if not user.is_active:
            self.logger.warning("login_inactive_user", user_id=user.id)
            raise AuthenticationError("account is deactivated")
        refresh, pair = self._issue_pair(user)
        self.sessions.add_session(user.id, refresh)
        self.logger.info("login_succeeded", user_id=user.id)
        return LoginResult(user=user, tokens=pair)

    def refresh(self, refresh_token: Optional[str]) -> LoginResult:
        if not refresh_token:
            raise ValidationError("refresh token is required")
        claims = self.issuer.verify(refresh_token, REFRESH)
        user = self.store.get_user(claims["id"])
        if not user or not user.is_active:
            raise AuthenticationError("user not found or inactive")
        new_refresh, pair = self._issue_pair(user)
        self.sessions.rotate_session(user.id, refresh_token, new_refresh)
        self.logger.info("refresh_rotated", user_id=user.id)
        return LoginResult(user=user, tokens=pair)

    def logout(self, ctx: AuthContext, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            raise ValidationError("refresh token is required")
        self.sessions.remove_session(ctx.user_id, refresh_token)
        self.logger.info("logout", user_id=ctx.user_id)

    def logout_all(self, ctx: AuthContext) -> int:
        return self.sessions.clear_all_sessions(ctx.user_id)

    def authenticate(self, token: Optional[str]) -> AuthContext:
        if not token:
            raise AuthenticationError("authentication required")
        claims = self.issuer.verify(token, ACCESS)
        user = self.store.get_user(claims["id"])
        if not user:
            raise AuthenticationError("user no longer exists")
        if not user.is_active:
            raise AuthenticationError("account is deactivated")
        return AuthContext(
            user_id=user.id, role=user.role, email=user.email, username=user.username
        )

    # passwords
    def change_password(self, ctx: AuthContext, old_password: str, new_password: str) -> None:
        user = self.store.get_user(ctx.user_id)
        if not user:
            raise NotFoundError("user not found")
        if not verify_password(old_password, user.password_hash):
            raise AuthenticationError("old password is incorrect")
        if verify_password(new_password, user.password_hash):
            raise ValidationError("new password cannot be the same as the old password")
        self.store.replace_password(user.id, hash_password(new_password))
        self.logger.info("password_changed", user_id=user.id)

    async def forgot_password(self, email: str) -> None:
        """Send a reset link if the account exists; the caller answers 200 either way."""
        user = self.store.get_user_by_email(email)
        if not user:
            self.logger.info("password_reset_unknown_email", email_hash=email_hash(email))
            return
        token = self.one_time_tokens.generate(
            timedelta(minutes=self.settings.password_reset_ttl_minutes)
        )
        self.store.set_password_reset_token(user.id, token.hashed, token.expires_at)
        sent = await asyncio.to_thread(
            self.email.send_password_reset, user.email, user.username, token.raw
        )
        if not sent:
            self.logger.error("password_reset_email_failed", user_id=user.id)
            return
        self.logger.info("password_reset_requested", user_id=user.id)

    def reset_password(self, token: str, new_password: str) -> User:
        user = self.store.complete_password_reset(
            hash_token(token), hash_password(new_password), self._now()
        )
        if not user:
            self.logger.warning("password_reset_invalid_token")
            raise ValidationError("invalid or expired reset token")
        self.logger.info("password_reset_completed", user_id=user.id)
        return user

    # profile
    async def update_profile(
        self,
        ctx: AuthContext,
        *,
        username: Optional[str] = None,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
    ) -> User:
        if username is None and email is None and full_name is None:
            raise ValidationError("provide a new username, email or full name")
        before = self.store.get_user(ctx.user_id)
        previous_email = before.email if before else None
        user = self.store.update_user_profile(
            ctx.user_id, username=username, email=email, full_name=full_name
        )
        if not user:
            raise NotFoundError("user not found")
        if previous_email is not None and previous_email != user.email:
            if not await self._send_verification(user):
                self.logger.warning("verification_after_email_change_failed", user_id=user.id)
        return user

    def deactivate(self, ctx: AuthContext) -> None:
        if not self.store.set_user_active(ctx.user_id, False):
            raise NotFoundError("user not found")
        self.logger.info("account_deactivated", user_id=ctx.user_id)

    def delete_account(self, user_id: str) -> None:
        if not self.store.delete_user(user_id):
            raise NotFoundError("user not found")
        self.logger.info("account_deleted", user_id=user_id)

    # administration
    def list_users(
        self, *, page: int = 1, limit: int = 10, search: Optional[str] = None
    ) -> Tuple[List[User], int]:
        return self.store.list_users(search=search, offset=(page - 1) * limit, limit=limit)

    def get_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("user not found")
        return user

    def set_user_role(self, user_id: str, role: str) -> User:
        if role not in {"user", "admin"}:
            raise ValidationError("invalid role", detail={"allowed": ["user", "admin"]})
        user = self.store.update_user_role(user_id, role)
        if not user:
            raise NotFoundError("user not found")
        self.logger.info("user_role_changed", user_id=user_id, role=role)
        return user

    def ensure_admin(self, email: str, username: str, password: str) -> User:
        """Create or promote an admin account; used by the bootstrap script."""
        user = self.store.get_user_by_email(email)
        if user is None:
            user = self.store.create_user(
                email, username, hash_password(password), role="admin", is_email_verified=True
            )
            self.logger.info("admin_created", user_id=user.id)
            return user
        self.store.replace_password(user.id, hash_password(password))
        if user.role != "admin":
            user = self.set_user_role(user.id, "admin")
        self.logger.info("admin_promoted", user_id=user.id)
        return self.store.get_user(user.id) or user
