"""
Rate limiting for operations.

Two layers live here:

- `limiter`: a slowapi Limiter giving every endpoint a coarse per-IP
  flood limit configured from the environment.
- `RateLimitService`: settings-driven budgets for authenticated users
  (per user id), unauthenticated clients (per IP + User-Agent
  fingerprint) and all unauthenticated clients combined. The limits are
  read from the settings store on first use and rebuilt by reload().

Admins are exempt. A service that cannot read its settings fails open:
every check is allowed until a later initialization succeeds.
"""

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from slowapi import Limiter
from slowapi.util import get_remote_address

from config import settings
from core.sliding_window import SlidingWindowLimiter, create_sliding_window_limiter
from models.auth import Role
from models.rate_limit import LimiterResponse, LimitType, RateLimitResult, RateLimitStatus
from models.settings import SettingKey

logger = logging.getLogger(__name__)

# Window and ban settings shared by all three budgets
WINDOW_SECONDS = 60
BLOCK_DURATION_SECONDS = 0  # deny only, no extra ban window

# Used when a limiter fails without telling us how long to wait
FALLBACK_MS_BEFORE_NEXT = 60000

GLOBAL_KEY = "global"

SettingReader = Callable[[Any], Awaitable[Any]]
LimiterFactory = Callable[[int, int, int], SlidingWindowLimiter]
Clock = Callable[[], datetime]


class RateLimitInitializationError(Exception):
    """Rate limiters could not be built from settings."""

    def __init__(self, message: str, code: str = "rate_limit_init_failed"):
        self.message = message
        self.code = code
        super().__init__(message)


class InitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.utcnow()


def generate_fingerprint(ip: str, user_agent: str) -> str:
    """SHA-256 of "ip:user_agent", hex encoded."""
    return hashlib.sha256(f"{ip}:{user_agent}".encode("utf-8")).hexdigest()


class RateLimitService:
    """Settings-driven rate limiting for authenticated and unauthenticated callers."""

    def __init__(
        self,
        get_setting: SettingReader,
        limiter_factory: LimiterFactory = create_sliding_window_limiter,
        clock: Clock = _utcnow,
    ):
        self._get_setting = get_setting
        self._limiter_factory = limiter_factory
        self._clock = clock

        self.authed_limiter: SlidingWindowLimiter | None = None
        self.unauth_limiter: SlidingWindowLimiter | None = None
        self.unauth_global_limiter: SlidingWindowLimiter | None = None

        self._state = InitState.UNINITIALIZED
        self._init_task: asyncio.Task | None = None

    @property
    def state(self) -> InitState:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._state is InitState.READY

    # --- Initialization ---

    async def _build_limiter(self, enabled_key: SettingKey, limit_key: SettingKey, label: str):
        enabled = await self._get_setting(enabled_key)
        limit = await self._get_setting(limit_key)

        if not enabled:
            logger.info(f"Rate limiting disabled for {label}")
            return None

        limiter = self._limiter_factory(limit, WINDOW_SECONDS, BLOCK_DURATION_SECONDS)
        logger.info(f"Rate limiting initialized: {limit} requests per minute for {label}")
        return limiter

    async def _run_initialization(self) -> None:
        try:
            authed = await self._build_limiter(
                SettingKey.RATE_LIMITING_AUTHED_ENABLED,
                SettingKey.RATE_LIMITING_AUTHED_LIMIT,
                "authenticated users",
            )
            unauth = await self._build_limiter(
                SettingKey.RATE_LIMITING_UNAUTHENTICATED_ENABLED,
                SettingKey.RATE_LIMITING_UNAUTHENTICATED_LIMIT,
                "each unauthenticated user",
            )
            unauth_global = await self._build_limiter(
                SettingKey.RATE_LIMITING_UNAUTHENTICATED_GLOBAL_ENABLED,
                SettingKey.RATE_LIMITING_UNAUTHENTICATED_GLOBAL_LIMIT,
                "all unauthenticated users combined",
            )
        except Exception as e:
            logger.error(f"Failed to initialize rate limiter: {e}")
            self.authed_limiter = None
            self.unauth_limiter = None
            self.unauth_global_limiter = None
            self._state = InitState.FAILED
            raise RateLimitInitializationError(f"Failed to initialize rate limiter: {e}") from e
        else:
            self.authed_limiter = authed
            self.unauth_limiter = unauth
            self.unauth_global_limiter = unauth_global
            self._state = InitState.READY
        finally:
            self._init_task = None

    async def initialize(self) -> None:
        """
        Build the limiters from current settings.

        Idempotent. Concurrent callers share one in-flight initialization
        and all observe its outcome.

        Raises:
            RateLimitInitializationError: If settings could not be read. The
                service is left fail-open and the next call retries.
        """
        if self._state is InitState.READY:
            return

        if self._init_task is None:
            self._state = InitState.INITIALIZING
            self._init_task = asyncio.ensure_future(self._run_initialization())

        await asyncio.shield(self._init_task)

    async def _wait_for_initialization_to_finish(self) -> None:
        task = self._init_task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except RateLimitInitializationError as e:
            logger.warning(f"Previous rate limiter initialization failed: {e.message}")

    async def _ensure_initialized(self) -> None:
        if self._state is InitState.READY:
            return
        try:
            await self.initialize()
        except RateLimitInitializationError:
            # already logged; limiters are None so the caller is allowed through
            pass

    async def reload(self) -> None:
        """
        Rebuild limiters after rate limit settings change.

        Waits for any in-flight initialization first so a reload never races
        one that is already running.
        """
        logger.info("Reloading rate limiter configuration...")
        await self._wait_for_initialization_to_finish()
        self._state = InitState.UNINITIALIZED
        await self.initialize()

    # --- Helpers ---

    def _reset_at(self, ms_before_next: int) -> datetime:
        return self._clock() + timedelta(milliseconds=ms_before_next)

    def _allowed(self, res: LimiterResponse) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            remaining_points=res.remaining_points,
            ms_before_next=res.ms_before_next,
            reset_at=self._reset_at(res.ms_before_next),
        )

    def _denied(self, ms_before_next: int, limit_type: LimitType | None = None) -> RateLimitResult:
        return RateLimitResult(
            allowed=False,
            remaining_points=0,
            ms_before_next=ms_before_next,
            reset_at=self._reset_at(ms_before_next),
            limit_type=limit_type,
        )

    @staticmethod
    async def _try_consume(limiter: SlidingWindowLimiter, key: str, points: int = 1) -> LimiterResponse:
        """Consume from a limiter, turning backend failures into a denial with the fallback wait."""
        try:
            return await limiter.consume(key, points)
        except Exception as e:
            logger.error(f"Rate limiter backend error: {e}")
            return LimiterResponse(
                allowed=False,
                remaining_points=0,
                ms_before_next=FALLBACK_MS_BEFORE_NEXT,
                consumed_points=0,
            )

    # --- Authenticated users ---

    async def check_limit(self, user_id: str, role: Role | str | None = None) -> RateLimitResult:
        """
        Consume one point for a user and decide whether the operation may run.

        Admins are always allowed.
        """
        await self._ensure_initialized()

        if role == Role.ADMIN:
            return RateLimitResult(allowed=True)

        limiter = self.authed_limiter
        if limiter is None:
            return RateLimitResult(allowed=True)

        res = await self._try_consume(limiter, user_id)
        if res.allowed:
            return self._allowed(res)

        logger.warning(f"Rate limit exceeded for user {user_id}")
        return self._denied(res.ms_before_next)

    async def consume(self, user_id: str, points: int = 1) -> None:
        """Consume points for a user outside the check path. Denials are ignored."""
        await self._ensure_initialized()

        limiter = self.authed_limiter
        if limiter is None:
            return

        try:
            await limiter.consume(user_id, points)
        except Exception as e:
            logger.debug(f"Ignoring rate limiter error while consuming for {user_id}: {e}")

    async def reset(self, user_id: str) -> None:
        """Clear a user's consumed points."""
        await self._ensure_initialized()

        limiter = self.authed_limiter
        if limiter is None:
            return

        try:
            await limiter.delete(user_id)
            logger.info(f"Rate limit reset for user {user_id}")
        except Exception as e:
            logger.error(f"Failed to reset rate limit for user {user_id}: {e}")

    async def get_status(self, user_id: str) -> RateLimitStatus | None:
        """
        Peek at a user's remaining budget without consuming.

        Returns None when authenticated rate limiting is disabled.
        """
        await self._ensure_initialized()

        limiter = self.authed_limiter
        if limiter is None:
            return None

        try:
            res = await limiter.get(user_id)
            if res is None:
                limit = await self._get_setting(SettingKey.RATE_LIMITING_AUTHED_LIMIT)
                return RateLimitStatus(remaining_points=limit, ms_before_next=0, reset_at=self._clock())

            return RateLimitStatus(
                remaining_points=res.remaining_points,
                ms_before_next=res.ms_before_next,
                reset_at=self._reset_at(res.ms_before_next),
            )
        except Exception as e:
            logger.error(f"Failed to get rate limit status for user {user_id}: {e}")
            return None

    # --- Unauthenticated users ---

    async def check_unauthenticated_limit(self, ip: str, user_agent: str) -> RateLimitResult:
        """
        Consume one point from the fingerprint budget and then the global budget.

        The global budget is only touched after the personal one succeeds. If
        the global budget then denies, the personal point is given back.
        """
        await self._ensure_initialized()

        personal_limiter = self.unauth_limiter
        global_limiter = self.unauth_global_limiter

        if personal_limiter is None and global_limiter is None:
            return RateLimitResult(allowed=True)

        if personal_limiter is None:
            global_res = await self._try_consume(global_limiter, GLOBAL_KEY)
            if global_res.allowed:
                return self._allowed(global_res)
            logger.warning("Global rate limit exceeded for unauthenticated users")
            return self._denied(global_res.ms_before_next, LimitType.GLOBAL)

        fingerprint = generate_fingerprint(ip, user_agent)

        personal_res = await self._try_consume(personal_limiter, fingerprint)
        if not personal_res.allowed:
            logger.warning(f"Personal rate limit exceeded for fingerprint: {fingerprint[:8]}...")
            return self._denied(personal_res.ms_before_next, LimitType.PERSONAL)

        if global_limiter is None:
            return self._allowed(personal_res)

        global_res = await self._try_consume(global_limiter, GLOBAL_KEY)
        if not global_res.allowed:
            try:
                await personal_limiter.reward(fingerprint, 1)
            except Exception as e:
                logger.warning(f"Failed to refund personal rate limit point: {e}")

            logger.warning("Global rate limit exceeded for unauthenticated users")
            return self._denied(global_res.ms_before_next, LimitType.GLOBAL)

        ms_before_next = max(personal_res.ms_before_next, global_res.ms_before_next)
        return RateLimitResult(
            allowed=True,
            remaining_points=min(personal_res.remaining_points, global_res.remaining_points),
            ms_before_next=ms_before_next,
            reset_at=self._reset_at(ms_before_next),
        )


# Coarse per-IP limiter for every endpoint; in-memory storage, single process only
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.http_rate_limit],
    storage_uri="memory://",
)


# Singleton
_rate_limit_service: RateLimitService | None = None


def get_rate_limit_service() -> RateLimitService:
    """Get the global rate limit service instance, reading limits from the settings service."""
    global _rate_limit_service
    if _rate_limit_service is None:
        from core.settings_service import get_settings_service

        _rate_limit_service = RateLimitService(get_setting=get_settings_service().get)
    return _rate_limit_service
