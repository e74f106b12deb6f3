from __future__ import annotations

"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
owns the admission-control lifecycle: one counter store and one policy engine
per app, plus a background reaper started and stopped with the lifespan.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.rate_limit.base import AbstractCounterStore
from app.adapters.rate_limit.in_memory import InMemoryWindowCounterStore
from app.api.routes import health_router, limits_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.services.policy_engine import RateLimitPolicyEngine
from app.services.reaper import CounterStoreReaper

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the reaper with the app and stop it deterministically on shutdown."""
    reaper: CounterStoreReaper = app.state.rate_limit_reaper
    reaper.start()
    logger.info("app.startup", extra={"app_env": settings.app_env})
    try:
        yield
    finally:
        # join() blocks; keep it off the event loop
        await asyncio.to_thread(reaper.stop)
        logger.info("app.shutdown", extra={"entries_left": len(app.state.rate_limit_engine.store)})


def create_app(*, store: AbstractCounterStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        store: Counter store to use; defaults to a fresh in-memory store.
            Pass a shared backend here for multi-instance deployments.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admission Control API",
        description=(
            "Request admission control: fixed-window, progressive, per-IP, "
            "per-user, combined, burst and load-adaptive rate limits with "
            "X-RateLimit-* headers, plus an administrative API to inspect "
            "quotas and clear counters."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    counter_store = store if store is not None else InMemoryWindowCounterStore()
    app.state.rate_limit_engine = RateLimitPolicyEngine.from_settings(counter_store, settings.app)
    app.state.rate_limit_reaper = CounterStoreReaper(
        counter_store,
        interval_seconds=settings.app.rate_limit_sweep_interval_seconds,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
