"""Rate limiting dependency for FastAPI routes.

This module wires the sliding-window limiter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on a dependency object only.
- Swap-friendly: counters live in memory or in Redis, chosen by settings.
- Safe defaults: keyed by API key, falling back to client IP.

A route can use the process-wide limiter configured by ``RATE_LIMIT_*``
settings (``Depends(enforce_rate_limit)``) or its own::

    login_guard = RateLimitDependency(
        limiter=RateLimiter(rate="5 requests in 1 minute"),
        key=lambda request: request.client.host if request.client else None,
    )

    @router.post("/login", dependencies=[Depends(login_guard)])
    async def login(): ...
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Callable

import redis.asyncio as redis
from fastapi import Header, HTTPException, Request, status

from window_limiter.adapters.slots.base import SlotProvider
from window_limiter.adapters.slots.in_memory import InMemorySlotProvider
from window_limiter.adapters.slots.redis_store import RedisSlotProvider
from window_limiter.core.config import RateLimitSettings, settings
from window_limiter.core.errors import ConfigurationAppError
from window_limiter.core.logging import hash_for_logging
from window_limiter.services.rate_limiter import RateLimiter
from window_limiter.services.sliding_window import RATE_LIMITED

logger = logging.getLogger(__name__)

RequestKey = Callable[[Request], "str | None"]

_limiter: RateLimiter | None = None
_limiter_config: tuple | None = None
_retiring: set[asyncio.Task[None]] = set()


def build_slot_provider(cfg: RateLimitSettings) -> SlotProvider:
    """Create the counter storage selected by ``cfg.backend``.

    Raises:
        ConfigurationAppError: If the Redis backend is selected without a URL.
    """

    if cfg.backend == "redis":
        if not cfg.redis_url:
            raise ConfigurationAppError(
                code="redis_url_missing",
                message="RATE_LIMIT_REDIS_URL is required when RATE_LIMIT_BACKEND=redis",
                details={"hint": "Set RATE_LIMIT_REDIS_URL or use RATE_LIMIT_BACKEND=memory"},
            )
        client = redis.from_url(cfg.redis_url)
        return RedisSlotProvider(client, key_prefix=cfg.key_prefix)

    return InMemorySlotProvider()


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide rate limiter instance.

    The instance is cached in-module to preserve counters across requests.
    If configuration changes (primarily in tests), the limiter is rebuilt.
    """

    global _limiter, _limiter_config

    cfg = settings.rate_limit
    config = (cfg.rate, cfg.backend, cfg.redis_url, cfg.key_prefix, cfg.max_tracked_keys)

    if _limiter is None or _limiter_config != config:
        previous = _limiter
        _limiter = RateLimiter(
            rate=cfg.rate,
            slot_provider=build_slot_provider(cfg),
            max_windows=cfg.max_tracked_keys,
        )
        _limiter_config = config
        logger.info(
            "rate_limit.configured",
            extra={"rate": str(_limiter.rate), "backend": cfg.backend},
        )
        if previous is not None:
            _retire(previous)

    return _limiter


def _retire(limiter: RateLimiter) -> None:
    """Close the Redis client of a limiter replaced after a settings change."""

    provider = limiter.slot_provider
    if not isinstance(provider, RedisSlotProvider):
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning(
            "rate_limit.retired_unclosed",
            extra={"pending_tasks": provider.pending_tasks},
        )
        return

    task = loop.create_task(provider.aclose())
    _retiring.add(task)
    task.add_done_callback(_retiring.discard)
    logger.info("rate_limit.retired", extra={"pending_tasks": provider.pending_tasks})


async def close_retired_limiters() -> None:
    """Wait until every replaced Redis-backed limiter is closed."""

    while _retiring:
        await asyncio.gather(*list(_retiring), return_exceptions=True)


def reset_rate_limiter() -> None:
    """Forget the process-wide limiter (tests and shutdown)."""

    global _limiter, _limiter_config
    _limiter = None
    _limiter_config = None


def default_request_key(request: Request, x_api_key: str | None) -> str:
    """Namespace requests by API key, or by client IP when no key is sent."""

    if x_api_key:
        return f"api_key:{x_api_key}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


class RateLimitDependency:
    """FastAPI dependency enforcing a sliding-window rate limit.

    Args:
        limiter: Limiter to consult; the settings-driven process-wide one
            when omitted.
        key: Custom request key. Returning ``None`` skips limiting for the
            request. Defaults to API key, then client IP.
    """

    def __init__(self, limiter: RateLimiter | None = None, *, key: RequestKey | None = None) -> None:
        self._limiter = limiter
        self._key = key

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter if self._limiter is not None else get_rate_limiter()

    async def __call__(
        self,
        request: Request,
        x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    ) -> None:
        """Consume one request from the caller's budget.

        Raises:
            HTTPException: 429 Too Many Requests when the caller is over budget.
        """

        if self._limiter is None and not settings.rate_limit.enabled:
            return

        key = self._key(request) if self._key else default_request_key(request, x_api_key)
        if key is None:
            logger.debug("rate_limit.skipped", extra={"reason": "no_key"})
            return

        limiter = self.limiter
        key_hash = hash_for_logging(key)

        if limiter.apply(key) != RATE_LIMITED:
            logger.debug("rate_limit.allowed", extra={"key_hash": key_hash})
            return

        retry_after = limiter.retry_after_seconds(key) or 0
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": key_hash,
                "rate": str(limiter.rate),
                "retry_after_s": retry_after,
                "path": request.url.path,
            },
        )

        headers: dict[str, str] = {}
        if settings.rate_limit.include_headers:
            headers["Retry-After"] = str(retry_after)
            headers["X-RateLimit-Limit"] = str(limiter.rate.requests)
            headers["X-RateLimit-Period"] = str(limiter.rate.period_in_seconds)

        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=headers or None,
        )


enforce_rate_limit = RateLimitDependency()
