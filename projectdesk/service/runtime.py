from __future__ import annotations

import asyncio
import math
import threading
from datetime import datetime
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse, urlunparse

from projectdesk.config import get_settings, reset_settings_cache
from projectdesk.logging import get_logger
from projectdesk.service.auth import AuthService
from projectdesk.service.email import EmailService
from projectdesk.service.notes import NoteService
from projectdesk.service.projects import ProjectService
from projectdesk.service.tasks import TaskService
from projectdesk.storage.memory import MemoryStore
from projectdesk.storage.models import utcnow
from projectdesk.storage.postgres import PostgresStore
from projectdesk.storage.redis_cache import RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if not parsed.password:
            return url
        netloc = parsed.hostname or ""
        if parsed.port:
            netloc = f"{netloc}:{parsed.port}"
        if parsed.username:
            netloc = f"{parsed.username}:***@{netloc}"
        else:
            netloc = f":***@{netloc}"
        return urlunparse(
            (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
        )
    except ValueError:
        return "***url_parse_error***"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore(fs_root=None if self.settings.test_mode else self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(
                    self.settings.database_url,
                    timeout_seconds=self.settings.store_timeout_seconds,
                )
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type="memory" if self.settings.use_memory_store else "postgres",
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Optional[RedisCache] = None
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                cache = RedisCache(
                    self.settings.redis_url,
                    socket_timeout=self.settings.store_timeout_seconds,
                )
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                redis_error = exc
                self.cache = None

        if not self.cache:
            if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for shared rate limits; start Redis or set "
                    "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error
            fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(self.settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                mode=fallback_mode,
            )

        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
            base_url=self.settings.app_base_url,
            verification_ttl_minutes=self.settings.email_verification_ttl_minutes,
            reset_ttl_minutes=self.settings.password_reset_ttl_minutes,
        )
        self.auth = AuthService(self.store, self.settings, email=self.email)
        self.projects = ProjectService(self.store)
        self.tasks = TaskService(self.store)
        self.notes = NoteService(self.store)
        # key -> (hits in window, window start)
        self._local_rate_limits: Dict[str, Tuple[int, datetime]] = {}
        self._local_rate_limit_lock = asyncio.Lock()

        logger.info(
            "runtime_initialized",
            store_type="memory" if self.settings.use_memory_store else "postgres",
            redis_enabled=self.cache is not None,
            email_configured=self.email.is_configured,
        )

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.close()
        self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Double-checked locking: the fast path skips the lock once the runtime exists.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime


async def check_rate_limit(
    runtime: Runtime,
    key: str,
    limit: int,
    window_seconds: int,
) -> Tuple[bool, int, int]:
    """Fixed-window rate limit; returns ``(allowed, remaining, reset_seconds)``.

    At most ``limit`` hits pass between the first hit on ``key`` and
    ``window_seconds`` later. Uses the shared Redis counter when available and
    an in-process counter otherwise.
    """
    if limit <= 0:
        return (True, limit, 0)
    if window_seconds <= 0:
        logger.warning("rate_limit_invalid_window", window_seconds=window_seconds)
        window_seconds = 60
    if runtime.cache:
        return await runtime.cache.check_rate_limit(key, limit, window_seconds)
    now = utcnow()
    async with runtime._local_rate_limit_lock:
        count, window_start = runtime._local_rate_limits.get(key, (0, now))
        elapsed = (now - window_start).total_seconds()
        if elapsed >= window_seconds or elapsed < 0:
            count, window_start = 0, now
        allowed = count < limit
        if allowed:
            count += 1
        runtime._local_rate_limits[key] = (count, window_start)
        reset_seconds = max(1, math.ceil(window_seconds - (now - window_start).total_seconds()))
        remaining = limit - count
    return (allowed, remaining, reset_seconds)
