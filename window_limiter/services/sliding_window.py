"""Two-bucket sliding window.

Time is split into buckets (slots) of one rate period. New requests are
counted in the current slot. A decision counts every request of the current
slot plus the share of the previous slot that still overlaps the trailing
window::

    |----old----|--current--|
          [=====window=====]
                          ^ now

    requests = C + O * (P - (N - S)) / P

with ``N`` now, ``P`` the period, ``S`` the current slot start, ``O`` and ``C``
the old and current counters. Once a key is over budget the window predicts
when it frees up again and answers from that prediction without touching the
slots, which matters when the slots live in a remote store.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal

from window_limiter.adapters.slots.base import Slot, SlotProvider
from window_limiter.core.errors import ConfigurationAppError
from window_limiter.services.rate import Rate

logger = logging.getLogger(__name__)

Decision = Literal["allowed", "rate-limited"]

ALLOWED: Decision = "allowed"
RATE_LIMITED: Decision = "rate-limited"

# Live slots per window: the current bucket and the previous one.
_LIVE_SLOTS = 2


def _bucket_number(value: float) -> float:
    """Render integral bucket starts as ``int`` so store keys read ``120``, not ``120.0``."""

    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def validate_rate(rate: Rate) -> Rate:
    """Ensure a rate can drive a sliding window.

    Raises:
        ConfigurationAppError: If the period is shorter than one second or
            the request budget is negative.
    """

    period_in_seconds = rate.period_in_seconds
    # Negated comparisons also reject nan coming from a malformed literal
    if not period_in_seconds >= 1:
        raise ConfigurationAppError(
            code="invalid_rate_period",
            message="Sampling period must be at least 1 second",
            details={"period_in_seconds": period_in_seconds},
        )
    if not rate.requests >= 0:
        raise ConfigurationAppError(
            code="invalid_rate_requests",
            message="Rate limit must be a non-negative number of requests",
            details={"requests": rate.requests},
        )
    return rate


class SlidingWindow:
    """Keeps count of the requests of one logical key.

    Raises:
        ConfigurationAppError: See :func:`validate_rate`.
    """

    def __init__(self, *, rate: Rate, slot_provider: SlotProvider, key: str) -> None:
        validate_rate(rate)
        period_in_seconds = rate.period_in_seconds

        self.rate = rate
        self.key = key
        self._period = _bucket_number(float(period_in_seconds))
        self._limit = rate.requests
        self._slot_provider = slot_provider
        self._slots: dict[float, Slot] = {}
        self._rate_limited_until_seconds: float | None = None

    @property
    def rate_limited_until_seconds(self) -> float | None:
        """Predicted epoch seconds until which the key stays blocked, if known."""

        return self._rate_limited_until_seconds

    def is_rate_limited(self, now: datetime, *, increment: bool = True) -> Decision:
        """Decide whether one more request fits in the window.

        Allowed requests are counted (unless ``increment`` is False); rejected
        requests never are.

        Args:
            now: Current time (timezone-aware recommended).
            increment: Count the request when allowed. ``False`` only checks.

        Returns:
            ``"allowed"`` or ``"rate-limited"``.
        """

        now_seconds = now.timestamp()

        if self._rate_limited_until_seconds is not None and now_seconds <= self._rate_limited_until_seconds:
            return RATE_LIMITED
        self._rate_limited_until_seconds = None

        old_slot, current_slot = self._get_slots(now_seconds)
        self._remove_expired_slots()

        old_value = old_slot.value()
        current_value = current_slot.value()
        elapsed = now_seconds - current_slot.starting_time_seconds
        requests = current_value + old_value * (self._period - elapsed) / self._period

        if requests < self._limit:
            if increment:
                current_slot.increment()
            return ALLOWED

        if old_value == 0:
            # Only the current slot is full: wait for the next one
            until = current_slot.starting_time_seconds + self._period
        else:
            # Smallest N satisfying C + O * (P - N + S) / P < L
            until = (
                self._period
                + current_slot.starting_time_seconds
                - ((self._limit - current_value) * self._period) / old_value
            )
        self._rate_limited_until_seconds = until

        logger.debug(
            "sliding_window.blocked",
            extra={
                "estimated_requests": round(requests, 3),
                "limit": self._limit,
                "blocked_for_s": round(until - now_seconds, 3),
            },
        )
        return RATE_LIMITED

    def _get_slot(self, starting_time_seconds: float, now_seconds: float) -> Slot:
        slot = self._slots.get(starting_time_seconds)
        if slot is None:
            slot = self._slot_provider.get_or_create_slot(
                starting_time_seconds=starting_time_seconds,
                duration_seconds=self._period,
                key=self.key,
                now=now_seconds,
            )
            self._slots[starting_time_seconds] = slot
        return slot

    def _get_slots(self, now_seconds: float) -> tuple[Slot, Slot]:
        actual_start = _bucket_number(now_seconds - (now_seconds % self._period))
        old_start = _bucket_number(actual_start - self._period)
        current_slot = self._get_slot(actual_start, now_seconds)
        old_slot = self._get_slot(old_start, now_seconds)
        return old_slot, current_slot

    def _remove_expired_slots(self) -> None:
        if len(self._slots) <= _LIVE_SLOTS:
            return
        stale = sorted(self._slots, reverse=True)[_LIVE_SLOTS:]
        for starting_time_seconds in stale:
            del self._slots[starting_time_seconds]
