"""Named admission-control policies.

Every guarded operation resolves its quota from this fixed table, so invalid
windows or limits fail at import/resolution time instead of in production
traffic.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from app.core.errors import RateLimitConfigError

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


@dataclass(frozen=True)
class RateLimitConfig:
    """Window length and request cap for one policy.

    Attributes:
        window_ms: Window length in milliseconds (> 0).
        max: Maximum admitted requests per window (>= 1).

    Raises:
        RateLimitConfigError: If either value is out of range.
    """

    window_ms: int
    max: int

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise RateLimitConfigError(
                code="invalid_rate_limit_window",
                message="window_ms must be > 0",
                details={"field": "window_ms", "min_value": 1, "actual_value": self.window_ms},
            )
        if self.max < 1:
            raise RateLimitConfigError(
                code="invalid_rate_limit_max",
                message="max must be >= 1",
                details={"field": "max", "min_value": 1, "actual_value": self.max},
            )

    def scaled(self, factor: float) -> "RateLimitConfig":
        """Derive an effective config with ``max`` scaled by factor.

        The result is floored and never drops below 1.
        """
        if factor < 0:
            raise RateLimitConfigError(
                code="invalid_rate_limit_factor",
                message="scaling factor must be >= 0",
                details={"field": "factor", "min_value": 0, "actual_value": factor},
            )
        return RateLimitConfig(window_ms=self.window_ms, max=max(1, math.floor(self.max * factor)))

    def with_max(self, max_requests: int) -> "RateLimitConfig":
        return RateLimitConfig(window_ms=self.window_ms, max=max_requests)


@dataclass(frozen=True)
class PolicyDefinition:
    """A named policy: its short policy-type tag and its quota."""

    name: str
    policy_type: str
    config: RateLimitConfig


def _policy(name: str, policy_type: str, window_ms: int, max_requests: int) -> PolicyDefinition:
    return PolicyDefinition(
        name=name,
        policy_type=policy_type,
        config=RateLimitConfig(window_ms=window_ms, max=max_requests),
    )


RATE_LIMIT_POLICIES: dict[str, PolicyDefinition] = {
    p.name: p
    for p in (
        # Authentication
        _policy("auth.login", "login", 15 * MINUTE_MS, 5),
        _policy("auth.register", "register", HOUR_MS, 3),
        _policy("auth.passwordReset", "passwordReset", HOUR_MS, 3),
        # API
        _policy("api.general", "api", 15 * MINUTE_MS, 100),
        _policy("api.search", "search", MINUTE_MS, 30),
        _policy("api.upload", "upload", HOUR_MS, 10),
        _policy("api.payment", "payment", HOUR_MS, 20),
        # Admin
        _policy("admin.general", "admin", 15 * MINUTE_MS, 200),
        _policy("admin.userManagement", "userManagement", HOUR_MS, 50),
        _policy("admin.systemOperations", "systemOperations", HOUR_MS, 100),
    )
}


def get_policy(name: str) -> PolicyDefinition:
    """Look up a named policy.

    Raises:
        RateLimitConfigError: If the name is not in the policy table.
    """
    try:
        return RATE_LIMIT_POLICIES[name]
    except KeyError:
        raise RateLimitConfigError(
            code="unknown_rate_limit_policy",
            message=f"Unknown rate limit policy: {name}",
            details={"policy": name, "hint": "Use one of GET /v1/limits/policies"},
        ) from None


def resolve_policy(name: str) -> RateLimitConfig:
    """Return the quota for a named policy."""
    return get_policy(name).config


def policy_type_for(name: str) -> str:
    """Return the short policy-type tag (e.g. ``login``) for a named policy."""
    return get_policy(name).policy_type
