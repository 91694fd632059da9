from __future__ import annotations

from fastapi import APIRouter, Depends

from window_limiter.core.rate_limit import enforce_rate_limit, get_rate_limiter
from window_limiter.schemas.limits import LimitDecisionResponse, RateDescription
from window_limiter.services.rate_limiter import RateLimiter
from window_limiter.services.sliding_window import ALLOWED, Decision

router = APIRouter(tags=["Limits"])


def _describe(limiter: RateLimiter, key: str, decision: Decision, counted: bool) -> LimitDecisionResponse:
    rate = limiter.rate
    return LimitDecisionResponse(
        key=key,
        decision=decision,
        counted=counted,
        retry_after_seconds=None if decision == ALLOWED else limiter.retry_after_seconds(key),
        rate=RateDescription(
            requests=rate.requests,
            period=rate.period,
            unit=rate.unit,
            period_in_seconds=rate.period_in_seconds,
        ),
    )


@router.post("/limits/{key}", response_model=LimitDecisionResponse)
async def apply_limit(key: str) -> LimitDecisionResponse:
    """Decide for ``key`` and count the request when it is allowed.

    Lets services without an embedded limiter share the configured counters
    by asking over HTTP before doing rate-limited work.
    """

    limiter = get_rate_limiter()
    decision = limiter.apply(key)
    return _describe(limiter, key, decision, counted=decision == ALLOWED)


@router.get("/limits/{key}", response_model=LimitDecisionResponse)
async def check_limit(key: str) -> LimitDecisionResponse:
    """Decide for ``key`` without counting anything."""

    limiter = get_rate_limiter()
    return _describe(limiter, key, limiter.check(key), counted=False)


@router.get("/ping", dependencies=[Depends(enforce_rate_limit)])
async def ping() -> dict:
    """Guarded endpoint: answers 429 once the caller exceeds the configured rate."""

    return {"pong": True}
