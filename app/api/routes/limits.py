"""Administrative API over the admission-control engine.

Lets operators inspect the policy table, look up an identifier's remaining
quota without consuming it, clear counters, and check store/reaper state.
All routes require ``X-API-Key`` and are themselves guarded by the
``admin.general`` policy.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Query, Request

from app.core.auth import verify_api_key
from app.core.middleware import sanitize_identifier
from app.core.policies import RATE_LIMIT_POLICIES, get_policy
from app.core.rate_limit import RateLimitGuard, get_policy_engine
from app.schemas.limits import (
    ClearLimitResponse,
    LimitStatusResponse,
    PolicyResponse,
    StoreStatsResponse,
)

admin_guard = RateLimitGuard.for_policy("admin.general")

router = APIRouter(
    prefix="/limits",
    tags=["Limits"],
    dependencies=[Depends(verify_api_key), Depends(admin_guard)],
)


@router.get("/policies", response_model=list[PolicyResponse])
def list_policies() -> list[PolicyResponse]:
    """Return the named policy table."""

    return [
        PolicyResponse(
            name=policy.name,
            policy_type=policy.policy_type,
            window_ms=policy.config.window_ms,
            max=policy.config.max,
        )
        for policy in RATE_LIMIT_POLICIES.values()
    ]


@router.get("/stats", response_model=StoreStatsResponse)
def store_stats(request: Request) -> StoreStatsResponse:
    """Return counter store size and background reaper state."""

    engine = get_policy_engine(request)
    reaper = request.app.state.rate_limit_reaper
    return StoreStatsResponse(
        entries=len(engine.store),
        reaper_running=reaper.is_running,
        sweep_interval_seconds=reaper.interval_seconds,
        sweeps=reaper.sweeps,
        removed_total=reaper.removed_total,
    )


@router.get("/{policy}/status", response_model=LimitStatusResponse)
def limit_status(
    policy: str,
    request: Request,
    identifier: str = Query(..., min_length=1, description="Client IP, user id or composite key"),
) -> LimitStatusResponse:
    """Look up an identifier's quota without counting a request.

    Raises:
        RateLimitConfigError: 400 when the policy name is unknown.
    """

    definition = get_policy(policy)
    engine = get_policy_engine(request)
    clean_identifier = sanitize_identifier(identifier)

    quota = engine.get_remaining_requests(clean_identifier, definition.policy_type, definition.config)
    return LimitStatusResponse(
        policy=definition.name,
        policy_type=definition.policy_type,
        limit=definition.config.max,
        remaining=quota.remaining,
        reset_at=math.ceil(quota.reset_at_ms / 1000),
        violations=engine.get_violation_count(clean_identifier, definition.policy_type),
    )


@router.delete("/{policy}/{identifier}", response_model=ClearLimitResponse)
def clear_limit(
    policy: str,
    identifier: str,
    request: Request,
    include_violations: bool = Query(False, description="Also forget progressive-limit violations"),
) -> ClearLimitResponse:
    """Administrative override: reset an identifier's counter for a policy."""

    definition = get_policy(policy)
    engine = get_policy_engine(request)

    cleared = engine.clear_limit(
        sanitize_identifier(identifier),
        definition.policy_type,
        include_violations=include_violations,
    )
    return ClearLimitResponse(
        policy=definition.name,
        policy_type=definition.policy_type,
        cleared=cleared,
        include_violations=include_violations,
    )
