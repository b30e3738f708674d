"""Tests for the authentication attempt throttles."""

from __future__ import annotations

import dataclasses

import fakeredis
import pytest

from framecraft_identity.config import get_settings
from framecraft_identity.security.throttle import (
    RedisThrottle,
    SlidingWindowThrottle,
    attempt_key,
    build_throttle,
)


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


def test_redis_throttle_allows_within_threshold(redis_client):
    limiter = RedisThrottle(redis_client, max_requests=3, window_seconds=60, key_prefix="test")
    key = attempt_key("login", "10.0.0.1", "ann@example.com")
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert limiter.allow(key)


def test_redis_throttle_blocks_excess(redis_client):
    limiter = RedisThrottle(redis_client, max_requests=2, window_seconds=60, key_prefix="test")
    key = attempt_key("login", "10.0.0.1", "ann@example.com")
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert not limiter.allow(key)
    assert limiter.allow(attempt_key("login", "10.0.0.1", "bob@example.com"))


def test_redis_throttle_sets_window_expiry(redis_client):
    limiter = RedisThrottle(redis_client, max_requests=1, window_seconds=30, key_prefix="test")
    limiter.allow("login:ip:subject")

    keys = redis_client.keys("test:login:ip:subject:*")
    assert len(keys) == 1
    assert 0 < redis_client.ttl(keys[0]) <= 30


def test_sliding_window_forgets_old_attempts():
    ticks = iter([0.0, 1.0, 2.0, 12.0])
    limiter = SlidingWindowThrottle(max_requests=2, window_seconds=10, clock=lambda: next(ticks))

    assert limiter.allow("key")
    assert limiter.allow("key")
    assert not limiter.allow("key")
    assert limiter.allow("key")


def test_attempt_key_hides_subject():
    key = attempt_key("login", None, " Ann@Example.com ")

    assert key.startswith("login:unknown:")
    assert "ann" not in key
    assert key == attempt_key("login", None, "ann@example.com")


def test_attempt_key_keeps_refresh_tokens_case_sensitive():
    lower = attempt_key("refresh", "10.0.0.1", "abcDEF123")
    upper = attempt_key("refresh", "10.0.0.1", "ABCdef123")

    assert lower != upper
    assert lower == attempt_key("refresh", "10.0.0.1", "abcDEF123")


def test_build_throttle_falls_back_without_redis():
    settings = dataclasses.replace(
        get_settings(), rate_limit_backend="redis", redis_url="redis://127.0.0.1:1/0"
    )

    assert isinstance(build_throttle(settings), SlidingWindowThrottle)
