from __future__ import annotations

from fastapi import APIRouter

from window_limiter.core.config import settings

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Used by load balancers and monitoring systems to determine service health.

    Returns:
        dict: ``status`` plus the configured counter backend.
    """

    return {"status": "ok", "rate_limit_backend": settings.rate_limit.backend}
