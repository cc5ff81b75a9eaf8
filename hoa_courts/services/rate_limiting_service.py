"""
Per-actor, per-action rate limiting.

Fixed-window counters keyed by ``"{actor}:{action}"``. The active limiter is
injectable: the in-memory limiter is the single-process default, and the
Redis limiter shares counters across API instances.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

from hoa_courts.services import redis_service
from hoa_courts.services.exceptions import RateLimited

logger = logging.getLogger(__name__)

RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()

DEFAULT_MAX_ACTIONS = 10
DEFAULT_WINDOW_SECONDS = 60

# Admin action budgets: action -> (max actions, window seconds)
ADMIN_RATE_LIMITS: Dict[str, Tuple[int, int]] = {
    "create_user": (5, 300),
    "bulk_update_users": (3, 300),
    "update_user": (10, 300),
    "deactivate_user": (5, 300),
    "create_hoa": (5, 300),
    "password_reset_request": (3, 900),
}


class RateLimiter(ABC):
    """Fixed-window rate limiter interface."""

    @abstractmethod
    async def hit(self, key: str, max_actions: int, window_seconds: int) -> bool:
        """Record one action for key; return False if it exceeds the window budget."""

    @abstractmethod
    async def reset(self) -> None:
        """Forget all counters."""


class InMemoryRateLimiter(RateLimiter):
    """
    Process-local counters. Not shared between instances and lost on restart.

    Elapsed windows are swept at most once per ``sweep_interval`` seconds, and
    the oldest windows are evicted when more than ``max_keys`` are tracked.
    """

    def __init__(self, clock=time.monotonic, sweep_interval: float = 60, max_keys: int = 10000):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._max_keys = max_keys
        self._last_sweep = clock()
        # key -> (window start, window seconds, count)
        self._windows: Dict[str, Tuple[float, int, int]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, max_actions: int, window_seconds: int) -> bool:
        async with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now)
            window_start, _, count = self._windows.get(key, (now, window_seconds, 0))
            if now - window_start >= window_seconds:
                window_start, count = now, 0
            if count >= max_actions:
                self._windows[key] = (window_start, window_seconds, count)
                return False
            self._windows[key] = (window_start, window_seconds, count + 1)
            if len(self._windows) > self._max_keys:
                self._evict_oldest()
            return True

    def _sweep(self, now: float) -> None:
        expired = [
            key
            for key, (start, window_seconds, _) in self._windows.items()
            if now - start >= window_seconds
        ]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"Dropped {len(expired)} elapsed rate limit window(s)")

    def _evict_oldest(self) -> None:
        overflow = len(self._windows) - self._max_keys
        oldest = sorted(self._windows, key=lambda k: self._windows[k][0])[:overflow]
        for key in oldest:
            del self._windows[key]

    async def reset(self) -> None:
        async with self._lock:
            self._windows.clear()


class RedisRateLimiter(RateLimiter):
    """Counters in Redis (INCR + EXPIRE), falling back to memory if Redis is down."""

    KEY_PREFIX = "ratelimit:"

    def __init__(self, fallback: Optional[RateLimiter] = None):
        self._fallback = fallback or InMemoryRateLimiter()

    async def hit(self, key: str, max_actions: int, window_seconds: int) -> bool:
        try:
            count = await redis_service.incr_with_expiry(self.KEY_PREFIX + key, window_seconds)
        except Exception as e:
            logger.warning(f"Redis rate limit check failed for {key}, using in-memory limiter: {e}")
            count = None
        if count is None:
            return await self._fallback.hit(key, max_actions, window_seconds)
        return count <= max_actions

    async def reset(self) -> None:
        await self._fallback.reset()
        client = await redis_service.get_redis_client()
        if client is None:
            return
        keys = [k async for k in client.scan_iter(match=self.KEY_PREFIX + "*")]
        if keys:
            await client.delete(*keys)


def _default_limiter() -> RateLimiter:
    if RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimiter()
    return InMemoryRateLimiter()


_rate_limiter: RateLimiter = _default_limiter()


def get_rate_limiter() -> RateLimiter:
    return _rate_limiter


def set_rate_limiter(limiter: RateLimiter) -> None:
    """Swap the active limiter (e.g. Redis in production, a fresh one in tests)."""
    global _rate_limiter
    _rate_limiter = limiter


async def reset_rate_limits() -> None:
    """Reset all counters of the active limiter. Useful for testing."""
    await _rate_limiter.reset()


async def check_rate_limit(
    actor_id,
    action: str,
    max_actions: int = DEFAULT_MAX_ACTIONS,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
) -> bool:
    """
    Record an action and report whether it is within budget.

    Args:
        actor_id: User id (or other actor key such as an email address)
        action: Action name, e.g. "create_user"
        max_actions: Allowed actions per window
        window_seconds: Window length

    Returns:
        True if allowed, False if the budget is exhausted
    """
    return await _rate_limiter.hit(f"{actor_id}:{action}", max_actions, window_seconds)


async def enforce_rate_limit(
    actor_id,
    action: str,
    max_actions: Optional[int] = None,
    window_seconds: Optional[int] = None,
) -> None:
    """
    Like check_rate_limit, using ADMIN_RATE_LIMITS defaults for known actions.

    Raises:
        RateLimited: If the budget is exhausted
    """
    default_max, default_window = ADMIN_RATE_LIMITS.get(
        action, (DEFAULT_MAX_ACTIONS, DEFAULT_WINDOW_SECONDS)
    )
    allowed = await check_rate_limit(
        actor_id,
        action,
        max_actions=max_actions or default_max,
        window_seconds=window_seconds or default_window,
    )
    if not allowed:
        logger.warning(f"Rate limit exceeded for {actor_id} on {action}")
        raise RateLimited()
