"""Tests for the named policy table and quota configs."""

import pytest

from app.core.errors import RateLimitConfigError, ValidationAppError
from app.core.policies import (
    HOUR_MS,
    MINUTE_MS,
    RATE_LIMIT_POLICIES,
    RateLimitConfig,
    policy_type_for,
    resolve_policy,
)


@pytest.mark.parametrize(
    "name,window_ms,max_requests",
    [
        ("auth.login", 15 * MINUTE_MS, 5),
        ("auth.register", HOUR_MS, 3),
        ("auth.passwordReset", HOUR_MS, 3),
        ("api.general", 15 * MINUTE_MS, 100),
        ("api.search", MINUTE_MS, 30),
        ("api.upload", HOUR_MS, 10),
        ("api.payment", HOUR_MS, 20),
        ("admin.general", 15 * MINUTE_MS, 200),
        ("admin.userManagement", HOUR_MS, 50),
        ("admin.systemOperations", HOUR_MS, 100),
    ],
)
def test_policy_table(name: str, window_ms: int, max_requests: int) -> None:
    assert resolve_policy(name) == RateLimitConfig(window_ms=window_ms, max=max_requests)


def test_policy_types_are_unique_short_tags() -> None:
    types = [p.policy_type for p in RATE_LIMIT_POLICIES.values()]

    assert len(types) == len(set(types))
    assert policy_type_for("auth.login") == "login"
    assert policy_type_for("api.general") == "api"
    assert policy_type_for("admin.general") == "admin"


def test_unknown_policy_raises_config_error() -> None:
    with pytest.raises(RateLimitConfigError) as exc_info:
        resolve_policy("auth.teleport")

    assert exc_info.value.code == "unknown_rate_limit_policy"
    assert isinstance(exc_info.value, ValidationAppError)


@pytest.mark.parametrize(
    "kwargs,code",
    [
        ({"window_ms": 0, "max": 1}, "invalid_rate_limit_window"),
        ({"window_ms": -5, "max": 1}, "invalid_rate_limit_window"),
        ({"window_ms": 1000, "max": 0}, "invalid_rate_limit_max"),
    ],
)
def test_invalid_config_fails_loudly(kwargs: dict, code: str) -> None:
    with pytest.raises(RateLimitConfigError) as exc_info:
        RateLimitConfig(**kwargs)

    assert exc_info.value.code == code


@pytest.mark.parametrize(
    "max_requests,factor,expected",
    [
        (100, 0.1, 10),
        (10, 0.5, 5),
        (5, 0.1, 1),
        (7, 0.5, 3),
        (10, 0.0, 1),
        (10, 1.5, 15),
    ],
)
def test_scaled_floors_and_clamps(max_requests: int, factor: float, expected: int) -> None:
    config = RateLimitConfig(window_ms=MINUTE_MS, max=max_requests)

    scaled = config.scaled(factor)

    assert scaled.max == expected
    assert scaled.window_ms == MINUTE_MS
    assert config.max == max_requests
