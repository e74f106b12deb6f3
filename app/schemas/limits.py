"""Response models for the administrative limits API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PolicyResponse(BaseModel):
    """One entry of the named policy table."""

    name: str = Field(..., description="Policy name, e.g. auth.login")
    policy_type: str = Field(..., description="Short tag used in counter keys, e.g. login")
    window_ms: int = Field(..., description="Window length in milliseconds")
    max: int = Field(..., description="Maximum admitted requests per window")


class LimitStatusResponse(BaseModel):
    """Read-only quota view for one identifier under one policy."""

    policy: str
    policy_type: str
    limit: int = Field(..., description="Quota in force (X-RateLimit-Limit)")
    remaining: int = Field(..., ge=0, description="Requests left in the window")
    reset_at: int = Field(..., description="Window reset, UNIX epoch seconds")
    violations: int = Field(0, ge=0, description="Progressive-limit violations in the last 24h")


class ClearLimitResponse(BaseModel):
    """Outcome of an administrative clear."""

    policy: str
    policy_type: str
    cleared: bool = Field(..., description="Whether any counter was removed")
    include_violations: bool


class StoreStatsResponse(BaseModel):
    """Counter store and reaper state."""

    entries: int = Field(..., ge=0, description="Records currently held by the store")
    reaper_running: bool
    sweep_interval_seconds: float
    sweeps: int = Field(..., ge=0)
    removed_total: int = Field(..., ge=0)
