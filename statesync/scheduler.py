"""
StateSync Batching - Deferred Flush Scheduling
==============================================

Every namespace owns a ``PatchBatcher``. Patches are appended to a pending
queue as they are emitted; the first append after a flush schedules exactly one
deferred flush, and later appends in the same cycle only extend the queue. When
the flush runs it takes the whole queue and publishes it as one ordered batch.

    mutation -> enqueue -> (first of cycle) schedule flush
    mutation -> enqueue
    ...
    <cycle ends> -> flush -> publish([p1, p2, ...])

A scheduler only has to offer ``schedule(callback)``: run ``callback`` once,
after the current synchronous burst of calls but before unrelated later work.

- ``AsyncioScheduler``: ``loop.call_soon`` on the running event loop
- ``ManualScheduler``: callbacks wait until ``run_pending()`` is called, for
  synchronous hosts and deterministic tests
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, List, Optional

from .exceptions import SchedulerError
from .patch import Patch

Callback = Callable[[], None]
PublishFn = Callable[[str, List[Patch]], None]


# ============================================================================
# SCHEDULERS
# ============================================================================


class Scheduler:
    """Interface for single-shot deferred tasks."""

    def schedule(self, callback: Callback) -> Any:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    """
    Defer callbacks to the next iteration of an asyncio event loop.

    Args:
        loop: Loop to bind to. When given, callbacks are handed over with
            ``call_soon_threadsafe`` so producers may mutate from other
            threads. When omitted, the loop running in the calling thread is
            used.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def schedule(self, callback: Callback) -> asyncio.Handle:
        if self._loop is not None:
            return self._loop.call_soon_threadsafe(callback)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise SchedulerError(
                "AsyncioScheduler needs a running event loop; bind one "
                "explicitly or use ManualScheduler"
            ) from None
        return loop.call_soon(callback)


class ManualScheduler(Scheduler):
    """Queue callbacks until the host calls ``run_pending()``."""

    def __init__(self) -> None:
        self._pending: Deque[Callback] = deque()
        self._lock = threading.Lock()

    def schedule(self, callback: Callback) -> Callback:
        with self._lock:
            self._pending.append(callback)
        return callback

    @property
    def pending(self) -> int:
        return len(self._pending)

    def run_pending(self) -> int:
        """
        Run every callback queued so far.

        Callbacks scheduled while running wait for the next call, which keeps
        one call equal to one scheduling cycle.

        Returns:
            Number of callbacks run
        """
        with self._lock:
            ready = list(self._pending)
            self._pending.clear()
        for callback in ready:
            callback()
        return len(ready)


# ============================================================================
# BATCHER
# ============================================================================


class PatchBatcher:
    """
    Per-namespace pending-patch queue with a single deferred flush.

    The queue and the schedule handle are private to the batcher and guarded
    by its own lock; batchers of different namespaces never share state.
    """

    def __init__(self, namespace: str, publish: PublishFn, scheduler: Scheduler):
        self.namespace = namespace
        self._publish = publish
        self._scheduler = scheduler
        self._queue: List[Patch] = []
        self._handle: Any = None
        self._lock = threading.RLock()
        self._batches_published = 0

    def enqueue(self, patch: Patch) -> None:
        """
        Append ``patch``; schedule a flush if none is pending.

        Scheduling happens first, so a scheduler error leaves the queue as it
        was.
        """
        with self._lock:
            if self._handle is None:
                self._handle = self._scheduler.schedule(self.flush)
                logging.debug(f"Scheduled flush for namespace '{self.namespace}'")
            self._queue.append(patch)

    def flush(self) -> Optional[List[Patch]]:
        """
        Publish everything queued so far as one batch.

        Returns:
            The published batch, or None when the queue was empty
        """
        with self._lock:
            batch = self._queue
            self._queue = []
            self._handle = None
            if not batch:
                return None
            self._batches_published += 1
            logging.debug(
                f"Publishing {len(batch)} patches for namespace '{self.namespace}'"
            )
            # Publish under the lock so batches leave in queue order
            self._publish(self.namespace, batch)
        return batch

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def is_scheduled(self) -> bool:
        return self._handle is not None

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "pending_patches": len(self._queue),
                "flush_scheduled": self._handle is not None,
                "batches_published": self._batches_published,
            }
