"""Sliding-window rate limiting with in-memory or Redis-backed counters."""

from window_limiter.adapters.slots.base import MAX_SAFE_INTEGER, Slot, SlotProvider
from window_limiter.adapters.slots.in_memory import InMemorySlot, InMemorySlotProvider
from window_limiter.adapters.slots.redis_store import RedisSlot, RedisSlotProvider
from window_limiter.core.errors import AppError, ConfigurationAppError, RateLimitExceededAppError
from window_limiter.services.rate import Rate, coerce_rate, parse_rate
from window_limiter.services.rate_limiter import RateLimiter, rate_limit
from window_limiter.services.sliding_window import ALLOWED, RATE_LIMITED, Decision, SlidingWindow
from window_limiter.services.sliding_window_provider import SlidingWindowProvider

__all__ = [
    "ALLOWED",
    "AppError",
    "ConfigurationAppError",
    "Decision",
    "InMemorySlot",
    "InMemorySlotProvider",
    "MAX_SAFE_INTEGER",
    "RATE_LIMITED",
    "Rate",
    "RateLimitExceededAppError",
    "RateLimiter",
    "RedisSlot",
    "RedisSlotProvider",
    "SlidingWindow",
    "SlidingWindowProvider",
    "Slot",
    "SlotProvider",
    "coerce_rate",
    "parse_rate",
    "rate_limit",
]
