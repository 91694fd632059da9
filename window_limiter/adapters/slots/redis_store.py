"""Redis-backed slots shared between processes.

Every remote call (read, increment, expiration) runs as a detached asyncio
task: the decision path never waits on Redis. Letting one or two requests
through while a read is in flight is preferred over adding a round trip to
every request. Failures are logged and dropped; the next successful call
refreshes the local value.

Store key layout: ``"<prefix>:<logical key>:<bucket start seconds>"``, e.g.
``"window-limiter:192.168.0.1:6000060"`` then ``"window-limiter:192.168.0.1:6000120"``
for the next one-minute bucket of the same client.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Coroutine

import redis.asyncio as redis

from window_limiter.adapters.slots.base import MAX_SAFE_INTEGER, Slot, SlotProvider
from window_limiter.core.errors import ConfigurationAppError
from window_limiter.core.logging import hash_for_logging

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "window-limiter"


def _to_counter(raw: Any) -> int | None:
    """Convert a Redis reply (bytes, str or int) into a counter value."""

    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


class RedisSlot(Slot):
    """Slot whose counter lives in Redis, with a locally cached value.

    ``value()`` returns the cache, refreshed when the initial read resolves
    and after each successful increment.
    """

    def __init__(
        self,
        *,
        starting_time_seconds: float,
        duration_seconds: float,
        key: str,
        store_key: str,
        provider: "RedisSlotProvider",
    ) -> None:
        super().__init__(
            starting_time_seconds=starting_time_seconds,
            duration_seconds=duration_seconds,
            key=key,
        )
        self.store_key = store_key
        self._provider = provider
        self._counter = 0
        self._expiration_scheduled = False
        provider.spawn(self._fetch(), operation="get", store_key=store_key)

    def increment(self) -> None:
        if self._counter >= MAX_SAFE_INTEGER:
            return
        self._provider.spawn(self._increment(), operation="incr", store_key=self.store_key)

    def value(self) -> int:
        return self._counter

    def _observe(self, raw: Any) -> None:
        counter = _to_counter(raw)
        if counter is None:
            return
        self._counter = min(max(self._counter, counter), MAX_SAFE_INTEGER)

    async def _fetch(self) -> None:
        try:
            raw = await self._provider.client.get(self.store_key)
        except Exception as exc:
            self._provider.log_failure("get", self.store_key, exc)
            return
        self._observe(raw)

    async def _increment(self) -> None:
        try:
            raw = await self._provider.client.incr(self.store_key)
        except Exception as exc:
            self._provider.log_failure("incr", self.store_key, exc)
            return
        if raw is None:
            return

        # The first known remote value means this process created the key
        if self._counter == 0 and not self._expiration_scheduled:
            self._expiration_scheduled = True
            self._provider.spawn(self._expire(), operation="expireat", store_key=self.store_key)
        self._observe(raw)

    async def _expire(self) -> None:
        when = math.ceil(self.expires_at_seconds)
        try:
            await self._provider.client.expireat(
                self.store_key,
                when,
                nx=self._provider.expire_only_if_unset,
            )
        except Exception as exc:
            self._provider.log_failure("expireat", self.store_key, exc)


class RedisSlotProvider(SlotProvider):
    """Provider of :class:`RedisSlot` instances sharing one Redis client.

    Suitable when the service scales horizontally, since counters are shared
    between every process using the same Redis and key prefix.

    Remote calls run on one event loop: the loop given to :meth:`attach_loop`,
    or else the loop the provider was created or first used in. Decisions taken in
    worker threads (sync functions, FastAPI ``def`` routes) hand their calls
    over to that loop.

    Attributes:
        client: ``redis.asyncio.Redis`` (or any object exposing async ``get``,
            ``incr`` and ``expireat``).
        key_prefix: Namespace for store keys.
        expire_only_if_unset: Pass ``NX`` to ``EXPIREAT`` (requires Redis >= 7).
    """

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        *,
        expire_only_if_unset: bool = True,
    ) -> None:
        super().__init__()
        self.client = client
        self.key_prefix = key_prefix
        self.expire_only_if_unset = expire_only_if_unset
        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        self._loop = loop
        self._background_tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._background_tasks)

    def store_key(self, *, key: str, starting_time_seconds: float) -> str:
        return f"{self.key_prefix}:{key}:{starting_time_seconds}"

    def attach_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Bind the loop running Redis calls; defaults to the running loop."""

        self._loop = loop or asyncio.get_running_loop()

    def _create_slot(self, *, starting_time_seconds: float, duration_seconds: float, key: str) -> Slot:
        return RedisSlot(
            starting_time_seconds=starting_time_seconds,
            duration_seconds=duration_seconds,
            key=key,
            store_key=self.store_key(key=key, starting_time_seconds=starting_time_seconds),
            provider=self,
        )

    def spawn(self, coro: Coroutine[Any, Any, None], *, operation: str, store_key: str) -> None:
        """Run ``coro`` in the background without blocking the caller.

        The task is referenced until it finishes so it cannot be garbage
        collected mid-flight.

        Raises:
            ConfigurationAppError: If no event loop can run the call.
        """

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None:
            if self._loop is None:
                self._loop = running
            self._track(running, coro)
            return

        loop = self._loop
        if loop is None or loop.is_closed() or not loop.is_running():
            coro.close()
            logger.error(
                "redis_slot.no_event_loop",
                extra={"operation": operation, "key_hash": hash_for_logging(store_key)},
            )
            raise ConfigurationAppError(
                code="redis_event_loop_missing",
                message="Redis-backed slots need a running event loop",
                details={"hint": "Use the limiter from async code or call attach_loop() from the serving loop"},
            )
        loop.call_soon_threadsafe(self._track, loop, coro)

    def _track(self, loop: asyncio.AbstractEventLoop, coro: Coroutine[Any, Any, None]) -> None:
        task = loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def log_failure(self, operation: str, store_key: str, exc: Exception) -> None:
        logger.warning(
            f"redis_slot.{operation}_failed",
            extra={
                "operation": operation,
                "key_hash": hash_for_logging(store_key),
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )

    async def drain(self) -> None:
        """Wait for every scheduled Redis call, including ones spawned meanwhile."""

        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Flush pending calls, then close the Redis client."""

        logger.info("redis_slot.closing", extra={"pending_tasks": self.pending_tasks})
        await self.drain()
        await self.client.aclose()
