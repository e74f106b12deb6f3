"""Admission control wiring for FastAPI routes.

This module translates policy engine decisions into HTTP artifacts:
an admit/deny outcome, ``X-RateLimit-*`` headers and, on denial, a 429 with
``Retry-After``.

Design goals:
- Minimal coupling: routes depend on a guard object only.
- Swap-friendly: the engine (and its store) is resolved from ``app.state``,
  never from module globals, so the backend can be replaced at app creation.
- Explicit composition: a guard captures policy type, quota and identifier
  strategy at construction time and exposes a single decision method.

Usage:
    login_guard = RateLimitGuard.for_policy("auth.login")

    @router.post("/login", dependencies=[Depends(login_guard)])
    async def login(...): ...
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from fastapi import HTTPException, Request, Response, status

from app.core.config import settings
from app.core.logging import hash_for_log
from app.core.middleware import resolve_client_ip, sanitize_identifier
from app.core.policies import RateLimitConfig, policy_type_for, resolve_policy
from app.services.policy_engine import LimitStatus, RateLimitPolicyEngine

logger = logging.getLogger(__name__)


class IdentifierStrategy(str, Enum):
    """How a guard derives the counter identifier from a request."""

    CLIENT_IP = "client_ip"
    USER_ID = "user_id"
    IP_AND_USER = "ip_and_user"


IdentifierFunc = Callable[[Request], str]


@dataclass(frozen=True)
class RateLimitDecision:
    """Caller-facing outcome of one admission decision."""

    allowed: bool
    status: LimitStatus
    headers: dict[str, str] = field(default_factory=dict)


def build_rate_limit_headers(limit_status: LimitStatus, *, now_ms: int) -> dict[str, str]:
    """Render a limit status as response headers.

    Args:
        limit_status: Decision metadata from the policy engine.
        now_ms: Current time in epoch milliseconds (for Retry-After).

    Returns:
        ``X-RateLimit-Limit``, ``X-RateLimit-Remaining``, ``X-RateLimit-Reset``
        (epoch seconds) and, only when denied, ``Retry-After`` (seconds).
    """

    headers = {
        "X-RateLimit-Limit": str(limit_status.total),
        "X-RateLimit-Remaining": str(max(0, limit_status.remaining)),
        "X-RateLimit-Reset": str(math.ceil(limit_status.reset_time_ms / 1000)),
    }
    if not limit_status.allowed:
        retry_after = max(0, math.ceil((limit_status.reset_time_ms - now_ms) / 1000))
        headers["Retry-After"] = str(retry_after)
    return headers


def get_policy_engine(request: Request) -> RateLimitPolicyEngine:
    """Return the engine owned by the running application.

    Raises:
        RuntimeError: If the app was not built with ``create_app()``.
    """

    engine = getattr(request.app.state, "rate_limit_engine", None)
    if engine is None:
        raise RuntimeError("rate limit engine is not initialised; build the app with create_app()")
    return engine


def get_client_ip(request: Request) -> str:
    """Client IP resolved by the middleware (or resolved now if absent)."""

    client_ip = getattr(request.state, "client_ip", None)
    return client_ip or resolve_client_ip(request)


def get_user_id(request: Request) -> str | None:
    """Authenticated user id set on ``request.state`` by the auth layer."""

    user_id = getattr(request.state, "user_id", None)
    if user_id is None or user_id == "":
        return None
    return sanitize_identifier(str(user_id))


def build_identifier(request: Request, strategy: IdentifierStrategy) -> str:
    """Derive the counter identifier for a request.

    ``USER_ID`` falls back to the client IP for anonymous callers; the two
    are prefixed so they can never collide.
    """

    client_ip = get_client_ip(request)
    user_id = get_user_id(request)

    if strategy is IdentifierStrategy.CLIENT_IP:
        return client_ip
    if strategy is IdentifierStrategy.USER_ID:
        return f"user:{user_id}" if user_id else f"ip:{client_ip}"
    if user_id:
        return f"ip:{client_ip}:user:{user_id}"
    return f"ip:{client_ip}"


class RateLimitGuard:
    """Admission check bound to one policy, usable as a FastAPI dependency.

    Attributes:
        policy_type: Short tag naming the protected operation (e.g. ``login``).
        config: Quota enforced by this guard.
    """

    def __init__(
        self,
        policy_type: str,
        config: RateLimitConfig,
        *,
        identifier_strategy: IdentifierStrategy | IdentifierFunc = IdentifierStrategy.CLIENT_IP,
    ) -> None:
        if not policy_type:
            raise ValueError("policy_type must be a non-empty string")
        self.policy_type = policy_type
        self.config = config
        self._identifier_strategy = identifier_strategy

    @classmethod
    def for_policy(
        cls,
        name: str,
        *,
        identifier_strategy: IdentifierStrategy | IdentifierFunc = IdentifierStrategy.CLIENT_IP,
    ) -> "RateLimitGuard":
        """Build a guard from the named policy table (e.g. ``auth.login``)."""

        return cls(policy_type_for(name), resolve_policy(name), identifier_strategy=identifier_strategy)

    def identifier_for(self, request: Request) -> str:
        strategy = self._identifier_strategy
        if isinstance(strategy, IdentifierStrategy):
            return build_identifier(request, strategy)
        return sanitize_identifier(strategy(request))

    def decide(self, request: Request, engine: RateLimitPolicyEngine) -> RateLimitDecision:
        """Count the request and build its decision and headers."""

        identifier = self.identifier_for(request)
        limit_status = engine.get_limit_status(identifier, self.policy_type, self.config)
        headers = build_rate_limit_headers(limit_status, now_ms=engine.now_ms())
        if not limit_status.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "policy_type": self.policy_type,
                    "key_hash": hash_for_log(identifier),
                    "limit": limit_status.total,
                    "window_ms": self.config.window_ms,
                    "retry_after_s": headers.get("Retry-After"),
                    "path": request.url.path,
                },
            )
        return RateLimitDecision(allowed=limit_status.allowed, status=limit_status, headers=headers)

    async def __call__(self, request: Request, response: Response) -> RateLimitDecision | None:
        """FastAPI dependency enforcing this guard's policy.

        Attaches rate limit headers to successful responses and raises 429 on
        denial.

        Raises:
            HTTPException: 429 Too Many Requests when the quota is exhausted.
        """

        if not settings.app.rate_limit_enabled:
            return None

        decision = self.decide(request, get_policy_engine(request))
        include_headers = settings.app.rate_limit_include_headers

        if decision.allowed:
            if include_headers:
                response.headers.update(decision.headers)
            return decision

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=decision.headers if include_headers else None,
        )
