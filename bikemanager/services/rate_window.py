"""
Rate Window - sliding window activity limiter.

One primitive serves two call sites:
- password reset requests (3 per user per hour by default)
- maintenance reminder re-enqueues (3 per reminder per day by default)

Design:
- Sliding window over exact activity timestamps, window is [now - W, now]
- An activity is recorded only when it is allowed
- Read-then-write is serialized per subject key (asyncio.Lock in memory,
  an atomic Lua script in Redis) so two concurrent requests can never both
  observe count < limit

Usage:
    window = InMemoryRateWindow(limit=3, window=timedelta(hours=1))

    if not await window.try_record_activity("password_reset:user-123", clock.now()):
        ...  # rate limited
"""

import asyncio
from collections import deque
from datetime import datetime, timedelta
from typing import Protocol

from bikemanager.infrastructure.observability.logging import get_logger
from bikemanager.services.redis_client import FastRedisClient

logger = get_logger(__name__)


class RateWindow(Protocol):
    limit: int
    window: timedelta

    async def try_record_activity(self, subject_key: str, now: datetime) -> bool: ...

    async def activity_count(self, subject_key: str, now: datetime) -> int: ...

    async def reset(self, subject_key: str) -> None: ...


class InMemoryRateWindow:
    """
    Process-local sliding window.

    Example:
        With limit=3 and window=1h, activities at 10:00, 10:10 and 10:20 fill
        the window; a 4th at 10:30 is refused, one at 11:00:01 is allowed
        because the 10:00 activity has left the window.

    Subjects whose activities have all left the window are dropped, at most
    one sweep per window length, so state is bounded by recent activity.
    """

    def __init__(self, limit: int, window: timedelta):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self.window = window
        self._events: dict[str, deque[datetime]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._next_sweep_at: datetime | None = None

    def _prune(self, events: deque[datetime], now: datetime) -> deque[datetime]:
        window_start = now - self.window
        while events and events[0] < window_start:
            events.popleft()
        return events

    def _discard_if_idle(self, subject_key: str) -> None:
        lock = self._locks.get(subject_key)
        if self._events.get(subject_key) or (lock is not None and lock.locked()):
            return
        self._events.pop(subject_key, None)
        self._locks.pop(subject_key, None)

    def _sweep(self, now: datetime) -> None:
        if self._next_sweep_at is not None and now < self._next_sweep_at:
            return
        self._next_sweep_at = now + self.window

        for subject_key in list(self._events):
            self._prune(self._events[subject_key], now)
            self._discard_if_idle(subject_key)

    async def try_record_activity(self, subject_key: str, now: datetime) -> bool:
        self._sweep(now)
        lock = self._locks.setdefault(subject_key, asyncio.Lock())
        async with lock:
            events = self._prune(self._events.setdefault(subject_key, deque()), now)
            if len(events) >= self.limit:
                logger.info(
                    "Rate window limit reached",
                    subject_key=subject_key,
                    limit=self.limit,
                    window_seconds=self.window.total_seconds(),
                )
                return False

            events.append(now)
            return True

    async def activity_count(self, subject_key: str, now: datetime) -> int:
        self._sweep(now)
        events = self._events.get(subject_key)
        if events is None:
            return 0

        count = len(self._prune(events, now))
        if not count:
            self._discard_if_idle(subject_key)
        return count

    async def reset(self, subject_key: str) -> None:
        self._events.pop(subject_key, None)
        self._discard_if_idle(subject_key)
        logger.info("Rate window reset", subject_key=subject_key)

    def tracked_subjects(self) -> int:
        return len(self._events)


class RedisRateWindow:
    """
    Redis-backed sliding window using sorted sets.

    Thread Safety:
        Uses an atomic Lua script, which is the per-key critical section.
    """

    # Returns: {allowed (0 or 1), current_count}
    RECORD_ACTIVITY_LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])
    local unique_id = ARGV[4]

    -- Drop entries strictly older than the window start
    redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. (now_ms - window_ms))

    local current_count = redis.call('ZCARD', key)
    if current_count >= limit then
        return {0, current_count}
    end

    redis.call('ZADD', key, now_ms, unique_id)
    redis.call('PEXPIRE', key, window_ms * 2)

    return {1, current_count + 1}
    """

    def __init__(
        self,
        redis_client: FastRedisClient,
        limit: int,
        window: timedelta,
        namespace: str = "ratewindow",
        fail_open: bool = False,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.redis_client = redis_client
        self.limit = limit
        self.window = window
        self.namespace = namespace
        self.fail_open = fail_open
        self._sequence = 0

    def _redis_key(self, subject_key: str) -> str:
        return f"{self.namespace}:{subject_key}"

    def _window_ms(self) -> int:
        return int(self.window.total_seconds() * 1000)

    async def try_record_activity(self, subject_key: str, now: datetime) -> bool:
        now_ms = int(now.timestamp() * 1000)
        self._sequence += 1
        unique_id = f"{now_ms}:{id(self)}:{self._sequence}"

        try:
            result = await self.redis_client.client.eval(
                self.RECORD_ACTIVITY_LUA_SCRIPT,
                1,
                self._redis_key(subject_key),
                self.limit,
                self._window_ms(),
                now_ms,
                unique_id,
            )
        except Exception as e:
            logger.error(
                "Rate window Redis error",
                error=str(e),
                error_type=type(e).__name__,
                subject_key=subject_key,
                fail_open=self.fail_open,
            )
            return self.fail_open

        allowed = bool(result[0])
        if not allowed:
            logger.info("Rate window limit reached", subject_key=subject_key, limit=self.limit)
        return allowed

    async def activity_count(self, subject_key: str, now: datetime) -> int:
        now_ms = int(now.timestamp() * 1000)
        window_start = now_ms - self._window_ms()
        return int(
            await self.redis_client.client.zcount(self._redis_key(subject_key), window_start, now_ms)
        )

    async def reset(self, subject_key: str) -> None:
        await self.redis_client.client.delete(self._redis_key(subject_key))
        logger.info("Rate window reset", subject_key=subject_key)
