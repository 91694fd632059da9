"""In-memory slots.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Not thread-safe: intended for the single event-loop decision path and tests.
"""

from __future__ import annotations

from window_limiter.adapters.slots.base import MAX_SAFE_INTEGER, Slot, SlotProvider


class InMemorySlot(Slot):
    """Slot whose counter lives in process memory."""

    def __init__(self, *, starting_time_seconds: float, duration_seconds: float, key: str) -> None:
        super().__init__(
            starting_time_seconds=starting_time_seconds,
            duration_seconds=duration_seconds,
            key=key,
        )
        self._counter = 0

    def increment(self) -> None:
        if self._counter >= MAX_SAFE_INTEGER:
            return
        self._counter += 1

    def value(self) -> int:
        return self._counter


class InMemorySlotProvider(SlotProvider):
    """Provider of :class:`InMemorySlot` instances.

    Important:
        Counters are not shared between processes. If the service runs with
        multiple workers or machines, use
        :class:`~window_limiter.adapters.slots.redis_store.RedisSlotProvider`.
    """

    def _create_slot(self, *, starting_time_seconds: float, duration_seconds: float, key: str) -> Slot:
        return InMemorySlot(
            starting_time_seconds=starting_time_seconds,
            duration_seconds=duration_seconds,
            key=key,
        )
