"""Admission-control policy engine.

The engine turns a request identifier, a policy type and a base quota into an
admit/deny decision. Every strategy resolves an effective config (possibly
adjusted by violation history, a user-agent heuristic or a load factor) and
then delegates to the counter store's atomic check-and-increment.

The engine holds no durable state of its own; everything lives in the store,
so engines can be rebuilt freely around the same store.

Key layout (all namespaces are disjoint):
- ``<type>:<identifier>`` for plain checks
- ``ip:<type>:<ip>`` / ``user:<type>:<user_id>`` for IP and user checks
- ``<type>:short:<id>`` / ``<type>:long:<id>`` for burst checks
- ``violations:<type>:<identifier>`` for progressive violation history
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass

from app.adapters.rate_limit.base import (
    AbstractCounterStore,
    CounterDecision,
    RemainingQuota,
)
from app.core.config import AppSettings
from app.core.logging import hash_for_log
from app.core.policies import RateLimitConfig

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

SUSPICIOUS_AGENT_PATTERNS: tuple[str, ...] = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "curl",
    "wget",
)

# Violation records only count; they never deny.
_UNBOUNDED = sys.maxsize


@dataclass(frozen=True)
class LimitStatus:
    """Decision plus the metadata needed to build response headers."""

    allowed: bool
    remaining: int
    reset_time_ms: int
    total: int


def is_suspicious_user_agent(user_agent: str | None) -> bool:
    """Return True when the user agent looks like an automation client."""
    if not user_agent:
        return False
    lowered = user_agent.lower()
    return any(pattern in lowered for pattern in SUSPICIOUS_AGENT_PATTERNS)


class RateLimitPolicyEngine:
    """Composable admission policies on top of a counter store."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        violation_multiplier: float = 0.5,
        violation_window_ms: int = DAY_MS,
        suspicious_agent_multiplier: float = 0.1,
        authenticated_multiplier: int = 2,
    ) -> None:
        self._store = store
        self.violation_multiplier = violation_multiplier
        self.violation_window_ms = violation_window_ms
        self.suspicious_agent_multiplier = suspicious_agent_multiplier
        self.authenticated_multiplier = authenticated_multiplier

    @classmethod
    def from_settings(
        cls, store: AbstractCounterStore, app_settings: AppSettings
    ) -> "RateLimitPolicyEngine":
        """Build an engine using the multipliers configured in settings."""
        return cls(
            store,
            violation_multiplier=app_settings.rate_limit_violation_multiplier,
            violation_window_ms=app_settings.rate_limit_violation_window_seconds * 1000,
            suspicious_agent_multiplier=app_settings.rate_limit_suspicious_agent_multiplier,
            authenticated_multiplier=app_settings.rate_limit_authenticated_multiplier,
        )

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    def now_ms(self) -> int:
        """Current time on the store's clock (used for Retry-After)."""
        return self._store.now_ms()

    @staticmethod
    def _key(identifier: str, policy_type: str) -> str:
        return f"{policy_type}:{identifier}"

    def _violation_key(self, identifier: str, policy_type: str) -> str:
        return f"violations:{policy_type}:{identifier}"

    def _consume(
        self, identifier: str, policy_type: str, config: RateLimitConfig
    ) -> CounterDecision:
        key = self._key(identifier, policy_type)
        decision = self._store.consume(key, config.window_ms, config.max)
        if decision.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "policy_type": policy_type,
                    "key_hash": hash_for_log(key),
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                },
            )
        else:
            logger.info(
                "rate_limit.denied",
                extra={
                    "policy_type": policy_type,
                    "key_hash": hash_for_log(key),
                    "limit": decision.limit,
                    "reset_at_ms": decision.reset_at_ms,
                },
            )
        return decision

    def check_limit(self, identifier: str, policy_type: str, config: RateLimitConfig) -> bool:
        """Plain fixed-window check; the building block of every strategy."""
        return self._consume(identifier, policy_type, config).allowed

    def get_remaining_requests(
        self, identifier: str, policy_type: str, config: RateLimitConfig
    ) -> RemainingQuota:
        """Read-only quota lookup for (identifier, policy_type)."""
        return self._store.remaining(self._key(identifier, policy_type), config.window_ms, config.max)

    def get_violation_count(self, identifier: str, policy_type: str) -> int:
        """Number of progressive-limit denials in the violation window."""
        return self._store.count(self._violation_key(identifier, policy_type))

    def check_progressive_limit(
        self,
        identifier: str,
        policy_type: str,
        base_config: RateLimitConfig,
        violation_multiplier: float | None = None,
    ) -> bool:
        """Fixed-window check with a stricter cap for recent offenders.

        Any recorded violation in the last violation window applies the
        multiplier once (it does not compound with more violations). Each
        denial records a further violation.

        The violation lookup, the check and the violation write are separate
        atomic steps, so racing callers can over-record violations but never
        over-admit.
        """
        multiplier = self.violation_multiplier if violation_multiplier is None else violation_multiplier

        violations = self.get_violation_count(identifier, policy_type)
        config = base_config.scaled(multiplier) if violations > 0 else base_config

        allowed = self.check_limit(identifier, policy_type, config)
        if not allowed:
            violation_key = self._violation_key(identifier, policy_type)
            recorded = self._store.consume(violation_key, self.violation_window_ms, _UNBOUNDED)
            logger.warning(
                "rate_limit.violation_recorded",
                extra={
                    "policy_type": policy_type,
                    "key_hash": hash_for_log(violation_key),
                    "violations": recorded.count,
                    "effective_limit": config.max,
                },
            )
        return allowed

    def check_ip_limit(
        self,
        ip: str,
        policy_type: str,
        config: RateLimitConfig,
        user_agent: str | None = None,
    ) -> bool:
        """Per-IP check; automation-like user agents get a reduced quota."""
        if is_suspicious_user_agent(user_agent):
            config = config.scaled(self.suspicious_agent_multiplier)
        return self.check_limit(ip, f"ip:{policy_type}", config)

    def check_user_limit(self, user_id: str, policy_type: str, config: RateLimitConfig) -> bool:
        return self.check_limit(user_id, f"user:{policy_type}", config)

    def check_combined_limit(
        self,
        ip: str,
        user_id: str | None,
        policy_type: str,
        config: RateLimitConfig,
    ) -> bool:
        """IP check, then (for authenticated callers) a user check.

        The user quota is ``max * authenticated_multiplier``; both checks must
        pass. A denied IP check short-circuits and leaves the user counter
        untouched.
        """
        if not self.check_ip_limit(ip, policy_type, config):
            return False
        if user_id:
            user_config = config.with_max(config.max * self.authenticated_multiplier)
            return self.check_user_limit(user_id, policy_type, user_config)
        return True

    def check_burst_limit(
        self,
        identifier: str,
        policy_type: str,
        short_config: RateLimitConfig,
        long_config: RateLimitConfig,
    ) -> bool:
        """Short and long windows enforced together (e.g. 10/min and 100/h).

        Both windows are always counted, so the long window sees every
        request even when the short one denies it.
        """
        short_allowed = self.check_limit(identifier, f"{policy_type}:short", short_config)
        long_allowed = self.check_limit(identifier, f"{policy_type}:long", long_config)
        return short_allowed and long_allowed

    def check_adaptive_limit(
        self,
        identifier: str,
        policy_type: str,
        base_config: RateLimitConfig,
        system_load_factor: float = 1.0,
    ) -> bool:
        """Scale the quota by a caller-supplied health factor (1.0 = normal)."""
        return self.check_limit(identifier, policy_type, base_config.scaled(system_load_factor))

    def get_limit_status(
        self, identifier: str, policy_type: str, config: RateLimitConfig
    ) -> LimitStatus:
        """Count the request and return the decision with its metadata.

        The metadata is taken in the same critical section as the decision.
        """
        decision = self._consume(identifier, policy_type, config)
        return LimitStatus(
            allowed=decision.allowed,
            remaining=decision.remaining,
            reset_time_ms=decision.reset_at_ms,
            total=config.max,
        )

    def clear_limit(
        self, identifier: str, policy_type: str, *, include_violations: bool = False
    ) -> bool:
        """Administrative override: forget the identifier's counter.

        Returns:
            True if any record was removed.
        """
        cleared = self._store.clear(self._key(identifier, policy_type))
        if include_violations:
            cleared = self._store.clear(self._violation_key(identifier, policy_type)) or cleared
        logger.info(
            "rate_limit.cleared",
            extra={
                "policy_type": policy_type,
                "key_hash": hash_for_log(self._key(identifier, policy_type)),
                "include_violations": include_violations,
                "cleared": cleared,
            },
        )
        return cleared
