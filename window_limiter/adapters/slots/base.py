"""Slot and slot provider interfaces.

The sliding window should depend on these abstractions (not the concrete
storage) so counters can move from process memory to a shared store without
touching the algorithm.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

# Largest integer a counter may hold; increments past it are no-ops.
MAX_SAFE_INTEGER = 2**53 - 1

# A slot stays cached until its bucket is this many durations old.
EVICTION_FACTOR = 3


class Slot(ABC):
    """Counter of the requests seen in one fixed-length time bucket.

    A new slot starts at 0 and only grows. The counter is kept within
    ``[0, MAX_SAFE_INTEGER]``; once the ceiling is reached ``increment`` has
    no effect.

    Attributes:
        starting_time_seconds: Bucket start (a multiple of the duration).
        duration_seconds: Bucket length in seconds.
        key: Logical group the bucket belongs to.
    """

    def __init__(self, *, starting_time_seconds: float, duration_seconds: float, key: str) -> None:
        self.starting_time_seconds = starting_time_seconds
        self.duration_seconds = duration_seconds
        self.key = key

    @abstractmethod
    def increment(self) -> None:
        """Increase the counter by one.

        May complete asynchronously, so the effect is not necessarily visible
        to the next ``value()`` call.
        """
        raise NotImplementedError

    @abstractmethod
    def value(self) -> int:
        """Return the best currently known counter value.

        Implementations backed by a remote store may return a slightly stale
        approximation.
        """
        raise NotImplementedError

    @property
    def expires_at_seconds(self) -> float:
        """Time after which no sliding window can reference this slot."""

        return self.starting_time_seconds + self.duration_seconds * EVICTION_FACTOR

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"{type(self).__name__}(starting_time_seconds={self.starting_time_seconds}, "
            f"duration_seconds={self.duration_seconds}, value={self.value()})"
        )


def slot_index(starting_time_seconds: float, duration_seconds: float, key: str) -> str:
    """Build the cache key identifying one slot inside a provider."""

    return f"{starting_time_seconds}:{duration_seconds}:{key}"


class SlotProvider(ABC):
    """Keyed cache and factory of :class:`Slot` instances.

    At most one slot exists per ``(starting_time_seconds, duration_seconds, key)``
    within a provider. Stale slots are evicted whenever a new one is created.
    Subclasses only decide how a slot is built, via ``_create_slot``.
    """

    def __init__(self) -> None:
        self._slots: dict[str, Slot] = {}

    @property
    def size(self) -> int:
        """Number of cached slots."""

        return len(self._slots)

    def get_or_create_slot(
        self,
        *,
        starting_time_seconds: float,
        duration_seconds: float,
        key: str,
        now: float,
    ) -> Slot:
        """Return the cached slot for the bucket, creating it when missing.

        Args:
            starting_time_seconds: Bucket start in epoch seconds.
            duration_seconds: Bucket length in seconds.
            key: Logical group (e.g. client IP).
            now: Current epoch seconds, used to evict stale slots.

        Returns:
            The unique slot for this bucket.
        """

        index = slot_index(starting_time_seconds, duration_seconds, key)
        slot = self._slots.get(index)
        if slot is not None:
            return slot

        self.evict_expired(now)
        slot = self._create_slot(
            starting_time_seconds=starting_time_seconds,
            duration_seconds=duration_seconds,
            key=key,
        )
        self._slots[index] = slot
        return slot

    def evict_expired(self, now: float) -> int:
        """Drop every slot whose bucket is three durations older than ``now``.

        Returns:
            Number of evicted slots.
        """

        expired = [index for index, slot in self._slots.items() if slot.expires_at_seconds < now]
        for index in expired:
            del self._slots[index]

        if expired:
            logger.debug(
                "slot_provider.evicted",
                extra={"evicted": len(expired), "remaining": len(self._slots)},
            )
        return len(expired)

    @abstractmethod
    def _create_slot(self, *, starting_time_seconds: float, duration_seconds: float, key: str) -> Slot:
        """Build a fresh slot for the given bucket."""
        raise NotImplementedError
