"""Rate limiting entry points for application code.

Two flavours are offered:

- :class:`RateLimiter`, a resource exposing ``apply`` (check and count) and
  ``check`` (check only) per logical key;
- :func:`rate_limit`, a decorator guarding a sync or async callable. A
  ``key`` function chooses the group a call belongs to; returning ``None``
  skips limiting for that call.

Use a :class:`~window_limiter.adapters.slots.redis_store.RedisSlotProvider`
when several processes or machines serve the same functions. Without an
explicit slot provider, counters are kept in this process only.

Example:
    >>> @rate_limit(
    ...     key=lambda email, password: None if email == "admin@domain.com" else email,
    ...     rate="10 requests in 5 minutes",
    ...     on_limit=lambda email, password: {"error": "Too many requests"},
    ... )
    ... def login(email: str, password: str) -> dict: ...
"""

from __future__ import annotations

import functools
import inspect
import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable

from window_limiter.adapters.slots.base import SlotProvider
from window_limiter.adapters.slots.in_memory import InMemorySlotProvider
from window_limiter.core.errors import RateLimitExceededAppError
from window_limiter.core.logging import hash_for_logging
from window_limiter.services.rate import Rate, coerce_rate
from window_limiter.services.sliding_window import RATE_LIMITED, Decision, validate_rate
from window_limiter.services.sliding_window_provider import SlidingWindowProvider

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Sliding-window limiter for many logical keys sharing one rate.

    Args:
        rate: Rate or its literal form (``"10 requests in 1 minute"``).
        slot_provider: Counter storage; in-memory when omitted.
        clock: Time source, injectable for tests.
        max_windows: Optional bound on tracked keys (LRU).
    """

    def __init__(
        self,
        *,
        rate: Rate | str,
        slot_provider: SlotProvider | None = None,
        clock: Callable[[], datetime] = utc_now,
        max_windows: int | None = None,
    ) -> None:
        self.rate = validate_rate(coerce_rate(rate))
        self.slot_provider = slot_provider if slot_provider is not None else InMemorySlotProvider()
        self.clock = clock
        self._windows = SlidingWindowProvider(
            rate=self.rate,
            slot_provider=self.slot_provider,
            max_windows=max_windows,
        )

    def apply(self, key: str) -> Decision:
        """Check whether ``key`` is rate limited and count the request if not."""

        return self._windows.get(key).is_rate_limited(self.clock(), increment=True)

    def check(self, key: str) -> Decision:
        """Check whether ``key`` is rate limited without counting anything."""

        return self._windows.get(key).is_rate_limited(self.clock(), increment=False)

    def retry_after_seconds(self, key: str, now: datetime | None = None) -> int | None:
        """Seconds until ``key`` is predicted to be unblocked, if it is blocked."""

        until = self._windows.get(key).rate_limited_until_seconds
        if until is None:
            return None
        now_seconds = (now or self.clock()).timestamp()
        return max(0, math.ceil(until - now_seconds))


def rate_limit(
    *,
    key: Callable[..., str | None],
    rate: Rate | str,
    on_limit: Callable[..., Any] | None = None,
    slot_provider: SlotProvider | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Limit how often the decorated callable runs per group of calls.

    Args:
        key: Receives the call arguments, returns the group key or ``None``
            to skip limiting (e.g. the client IP, or IP plus e-mail).
        rate: Rate or its literal form.
        on_limit: Receives the call arguments and returns the substitute
            result of a rejected call. Awaited when it returns an awaitable.
        slot_provider: Counter storage; in-memory when omitted.
        clock: Time source, injectable for tests.

    Raises:
        RateLimitExceededAppError: From the wrapped callable, when a call is
            rejected and no ``on_limit`` is given.
    """

    limiter = RateLimiter(rate=rate, slot_provider=slot_provider, clock=clock)

    def _rejected(group: str, args: tuple, kwargs: dict) -> Any:
        logger.info(
            "rate_limit.exceeded",
            extra={"key_hash": hash_for_logging(group), "rate": str(limiter.rate)},
        )
        if on_limit is not None:
            return on_limit(*args, **kwargs)
        raise RateLimitExceededAppError(
            code="too_many_requests",
            message="Too many requests",
            details={"retry_after": limiter.retry_after_seconds(group) or 0},
        )

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                group = key(*args, **kwargs)
                if group is None or limiter.apply(group) != RATE_LIMITED:
                    return await func(*args, **kwargs)
                result = _rejected(group, args, kwargs)
                if inspect.isawaitable(result):
                    return await result
                return result

            async_wrapper.limiter = limiter  # type: ignore[attr-defined]
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            group = key(*args, **kwargs)
            if group is None or limiter.apply(group) != RATE_LIMITED:
                return func(*args, **kwargs)
            return _rejected(group, args, kwargs)

        wrapper.limiter = limiter  # type: ignore[attr-defined]
        return wrapper

    return decorator
