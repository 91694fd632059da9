"""Cache of sliding windows keyed by logical key."""

from __future__ import annotations

import logging
from collections import OrderedDict

from window_limiter.adapters.slots.base import SlotProvider
from window_limiter.services.rate import Rate
from window_limiter.services.sliding_window import SlidingWindow

logger = logging.getLogger(__name__)


class SlidingWindowProvider:
    """Creates and caches one :class:`SlidingWindow` per logical key.

    Every window shares the provider's rate and slot provider. Windows are
    kept for the process lifetime unless ``max_windows`` is set, in which
    case the least recently used one is dropped past that bound. A dropped
    key starts over with empty local state (its Redis counters, if any,
    are picked up again on the next decision).

    Attributes:
        rate: Rate applied to every key.
        slot_provider: Storage shared by every window.
        max_windows: Maximum number of cached windows (None for unlimited).
    """

    def __init__(
        self,
        *,
        rate: Rate,
        slot_provider: SlotProvider,
        max_windows: int | None = None,
    ) -> None:
        self.rate = rate
        self.slot_provider = slot_provider
        self.max_windows = max_windows
        self._windows: OrderedDict[str, SlidingWindow] = OrderedDict()

    @property
    def size(self) -> int:
        return len(self._windows)

    def get(self, key: str) -> SlidingWindow:
        """Return the window for ``key``, creating it on first use."""

        window = self._windows.get(key)
        if window is not None:
            if self.max_windows is not None:
                self._windows.move_to_end(key)
            return window

        window = SlidingWindow(rate=self.rate, slot_provider=self.slot_provider, key=key)
        self._windows[key] = window
        self._evict_if_over_capacity()
        return window

    get_or_create_sliding_window = get

    def _evict_if_over_capacity(self) -> None:
        if self.max_windows is None:
            return

        while len(self._windows) > self.max_windows:
            # popitem(last=False) removes the least recently used window
            self._windows.popitem(last=False)
            logger.debug("sliding_window_provider.evicted", extra={"size": len(self._windows)})
