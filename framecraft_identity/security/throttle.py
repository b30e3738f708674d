"""Attempt throttling for the authentication endpoints."""

from __future__ import annotations

import hashlib
import logging
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Callable, Deque, DefaultDict, Protocol

from redis import Redis
from redis.exceptions import RedisError

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


class AttemptThrottle(Protocol):
    def allow(self, key: str) -> bool: ...


class SlidingWindowThrottle:
    """Thread-safe in-process sliding window limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._events: DefaultDict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()
        self._clock = clock

    def allow(self, key: str) -> bool:
        """Return ``True`` when the attempt is within the configured limit."""
        now = self._clock()
        with self._lock:
            attempts = self._events[key]
            while attempts and now - attempts[0] > self._window:
                attempts.popleft()
            if len(attempts) >= self._max_requests:
                return False
            attempts.append(now)
            return True


class RedisThrottle:
    """Fixed window limiter shared by every replica through Redis counters."""

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "auth-throttle",
    ) -> None:
        self._client = client
        self._max_requests = max_requests
        self._window = window_seconds
        self._key_prefix = key_prefix

    def allow(self, key: str) -> bool:
        bucket = int(time.time()) // self._window
        redis_key = f"{self._key_prefix}:{key}:{bucket}"
        pipe = self._client.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, self._window)
        count, _ = pipe.execute()
        return int(count) <= self._max_requests


def attempt_key(kind: str, origin_ip: str | None, subject: str) -> str:
    """Build a throttle key without putting raw emails or tokens into storage.

    Login subjects are emails and are case-folded; refresh tokens are hashed as given.
    """
    if kind == "login":
        subject = subject.strip().lower()
    digest = hashlib.sha256(subject.encode("utf-8")).hexdigest()[:16]
    return f"{kind}:{origin_ip or 'unknown'}:{digest}"


def build_throttle(settings: Settings | None = None) -> AttemptThrottle:
    """Instantiate the configured throttle backend, preferring Redis when available."""
    settings = settings or get_settings()
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = Redis.from_url(settings.redis_url)
            client.ping()
        except RedisError as exc:
            logger.warning("redis throttle unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("auth throttle configured for redis backend")
            return RedisThrottle(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )

    logger.info("auth throttle using in-memory backend")
    return SlidingWindowThrottle(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
