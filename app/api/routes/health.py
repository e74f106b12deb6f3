from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness check.

    Reports ``degraded`` when the background reaper is not running, since
    expired counters would then accumulate until restart.
    """

    reaper = getattr(request.app.state, "rate_limit_reaper", None)
    reaper_running = bool(reaper and reaper.is_running)
    return {
        "status": "ok" if reaper_running else "degraded",
        "reaper": "running" if reaper_running else "stopped",
    }
