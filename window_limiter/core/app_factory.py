"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
lifespan) to keep ``main`` trivial and tests able to build fresh apps.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from window_limiter.adapters.slots.redis_store import RedisSlotProvider
from window_limiter.api.routes import health_router, limits_router
from window_limiter.core.config import settings
from window_limiter.core.exception_handlers import setup_exception_handlers
from window_limiter.core.logging import configure_logging
from window_limiter.core.middleware import request_id_middleware
from window_limiter.core.rate_limit import close_retired_limiters, get_rate_limiter, reset_rate_limiter


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the limiter on startup; flush and close Redis on shutdown."""

    limiter = get_rate_limiter() if settings.rate_limit.enabled else None
    if limiter is not None and isinstance(limiter.slot_provider, RedisSlotProvider):
        # Sync routes decide in worker threads; their Redis calls run here
        limiter.slot_provider.attach_loop()
    yield

    if limiter is not None and isinstance(limiter.slot_provider, RedisSlotProvider):
        await limiter.slot_provider.aclose()
    await close_retired_limiters()
    reset_rate_limiter()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Window Limiter",
        description=(
            "Sliding-window rate limiting service. Decides per logical key "
            "(IP, user id, e-mail...) whether a request fits the configured rate, "
            "with counters in process memory or in a shared Redis."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    return app
