"""Unit tests for the fixed-window rate limiter."""

import time
from unittest.mock import MagicMock

import pytest
from limits.storage import MemoryStorage
from starlette.requests import Request

from app.core.middleware import get_client_ip, select_policy
from app.core.rate_limit import (
    RateLimiter,
    RateLimitPolicy,
    STANDARD,
    STRICT,
    UPLOAD,
    client_key,
)


def _limiter(**exprs) -> RateLimiter:
    policies = {name: RateLimitPolicy.parse(name, expr) for name, expr in exprs.items()}
    return RateLimiter(storage=MemoryStorage(), policies=policies)


def _request(method="GET", path="/api/v1/organisations", headers=None, client=("10.0.0.1", 1234)) -> Request:
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "query_string": b"",
        "client": client,
    }
    return Request(scope)


def test_policy_parse():
    policy = RateLimitPolicy.parse(STRICT, "20/15 minutes")
    assert policy.max_requests == 20
    assert policy.window_seconds == 900


def test_strict_policy_denies_21st_request():
    limiter = _limiter(strict="20/15 minutes")
    key = client_key("10.0.0.1", "/api/v1/cron/billing")

    decisions = [limiter.check(key, STRICT) for _ in range(20)]
    assert all(d.allowed for d in decisions)
    assert decisions[0].remaining == 19
    assert decisions[-1].remaining == 0

    denied = limiter.check(key, STRICT)
    assert denied.allowed is False
    assert denied.remaining == 0
    assert 1 <= denied.retry_after_seconds <= 900


def test_keys_are_independent():
    limiter = _limiter(strict="1/15 minutes")
    assert limiter.check(client_key("10.0.0.1", "/a"), STRICT).allowed
    assert limiter.check(client_key("10.0.0.2", "/a"), STRICT).allowed
    assert limiter.check(client_key("10.0.0.1", "/b"), STRICT).allowed
    assert not limiter.check(client_key("10.0.0.1", "/a"), STRICT).allowed


def test_window_expiry_starts_fresh():
    limiter = _limiter(standard="2/1 second")
    key = client_key("10.0.0.1", "/x")
    assert limiter.check(key).allowed
    assert limiter.check(key).allowed
    assert not limiter.check(key).allowed

    time.sleep(1.1)

    first = limiter.check(key)
    assert first.allowed
    assert first.remaining == 1


def test_disabled_limiter_allows_everything():
    limiter = RateLimiter(
        storage=MemoryStorage(),
        policies={STRICT: RateLimitPolicy.parse(STRICT, "1/hour")},
        enabled=False,
    )
    assert all(limiter.check("k", STRICT).allowed for _ in range(5))


def test_store_failure_allows_request():
    limiter = _limiter(standard="1/hour")
    limiter._strategy = MagicMock()
    limiter._strategy.hit.side_effect = ConnectionError("redis down")

    decision = limiter.check("k")
    assert decision.allowed is True


def test_reset_clears_counters():
    limiter = _limiter(strict="1/hour")
    assert limiter.check("k", STRICT).allowed
    assert not limiter.check("k", STRICT).allowed
    limiter.reset()
    assert limiter.check("k", STRICT).allowed


def test_client_key_unknown_ip():
    assert client_key(None, "/p") == "unknown:/p"


@pytest.mark.parametrize(
    "method, path, headers, expected",
    [
        ("GET", "/api/v1/organisations/1/status", {}, STANDARD),
        ("POST", "/api/v1/cron/billing", {}, STRICT),
        ("POST", "/api/v1/organisations/1/pause", {}, STRICT),
        ("DELETE", "/api/v1/anything", {}, STRICT),
        ("GET", "/api/v1/cron/billing", {}, STANDARD),
        ("POST", "/api/v1/files", {"content-type": "multipart/form-data; boundary=x"}, UPLOAD),
        ("PUT", "/api/v1/organisations/1/billing-day", {}, STANDARD),
    ],
)
def test_select_policy(method, path, headers, expected):
    assert select_policy(_request(method, path, headers)) == expected


def test_client_ip_prefers_forwarded_for():
    request = _request(headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "198.51.100.2"})
    assert get_client_ip(request) == "203.0.113.7"


def test_client_ip_falls_back_to_real_ip_then_socket():
    assert get_client_ip(_request(headers={"X-Real-IP": "198.51.100.2"})) == "198.51.100.2"
    assert get_client_ip(_request()) == "10.0.0.1"
    assert get_client_ip(_request(client=None)) is None
