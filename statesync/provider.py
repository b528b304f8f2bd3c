"""
StateSync Provider - Producer-Side Registry
===========================================

The producer owns the authoritative values. Values are organised as items
inside namespaces:

    provider = SyncProvider()
    todos = provider.register("todos")          # idempotent
    board = todos.sync("board", {"columns": []})

    board.handle()["columns"].append("backlog")  # observed -> patch
    board.set({"columns": ["done"]})             # root replacement -> patch

Every patch emitted by an item is queued on its namespace's ``PatchBatcher``;
one flush per scheduling cycle publishes ``("update", namespace, patches)`` on
``provider.bus``. Consumers bootstrap from ``get_state_snapshot`` and then
follow the update stream.

Reading vs. writing:

- ``item.raw`` is the unwrapped root. Reading it is free; mutating it is
  invisible to consumers.
- ``item.handle()`` is the observed handle over the root. Mutations through it
  become patches.
- ``item.set(...)`` replaces the root wholesale and retires older handles:
  mutating a handle obtained before the replacement no longer emits anything.
"""

import copy
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from . import codec
from .bus import EventBus
from .exceptions import DuplicateItemError, ItemNotFoundError, NamespaceNotFoundError
from .observed import observe, unwrap
from .patch import MISSING, Patch, PatchOp
from .scheduler import AsyncioScheduler, PatchBatcher, Scheduler

PatchSink = Callable[[Patch], None]


class SyncItemProvider:
    """One synchronized root value, identified by ``(namespace, key)``."""

    def __init__(
        self,
        key: str,
        on_patch: PatchSink,
        initial_value: Any = MISSING,
        namespace: Optional[str] = None,
    ):
        self.key = key
        self.namespace = namespace
        self._on_patch = on_patch
        self._value: Any = None
        self._handle: Any = None
        self._generation = 0
        self._lock = threading.RLock()
        if initial_value is not MISSING:
            self._install(initial_value)

    @property
    def raw(self) -> Any:
        """The current root value, unwrapped. Mutating it is not tracked."""
        return self._value

    def handle(self) -> Any:
        """
        Return the trackable handle over the current root.

        For container roots this is an observed handle; for leaf roots (ints,
        strings, dates...) it is the value itself, which can only change through
        ``set``.
        """
        return self._handle

    def set(self, value_or_updater: Any) -> None:
        """
        Replace the root value.

        Args:
            value_or_updater: The new root value, or a callable receiving the
                current raw value. A callable's non-None return value becomes
                the new root; returning None changes nothing and emits nothing.

        Raises:
            SchedulerError: If the flush cannot be scheduled; the old root
                stays installed and nothing is queued
        """
        if callable(value_or_updater):
            result = value_or_updater(self._value)
            if result is None:
                return
            value = result
        else:
            value = value_or_updater

        value = unwrap(value)
        with self._lock:
            # Queue first: if queueing fails the old root stays installed
            self._on_patch(
                Patch(op=PatchOp.SET, key=self.key, path=[], value=copy.deepcopy(value))
            )
            self._install(value)

    def snapshot(self) -> Dict[str, Any]:
        """Serialize the current raw root for consumer bootstrap."""
        return codec.serialize(self._value)

    def _install(self, value: Any) -> None:
        value = unwrap(value)
        with self._lock:
            self._generation += 1
            generation = self._generation

            def emit(patch: Patch) -> None:
                if generation != self._generation:
                    logging.debug(f"Dropping {patch!r}: handle of '{self.key}' was retired")
                    return
                self._on_patch(patch)

            self._value = value
            self._handle = observe(value, self.key, [], emit)

    def __repr__(self) -> str:
        return f"SyncItemProvider({self.namespace!r}, {self.key!r})"


class SyncNamespaceProvider:
    """A group of items sharing one batch stream."""

    def __init__(self, name: str, bus: EventBus, scheduler: Scheduler):
        self.name = name
        self._bus = bus
        self._items: Dict[str, SyncItemProvider] = {}
        self._lock = threading.RLock()
        self._batcher = PatchBatcher(name, self._publish, scheduler)

    def sync(self, key: str, initial_value: Any = MISSING) -> SyncItemProvider:
        """
        Register a new item.

        Args:
            key: Item key, unique within this namespace
            initial_value: Optional initial root value; installing it does not
                publish anything

        Raises:
            DuplicateItemError: If ``key`` is already registered
        """
        with self._lock:
            if key in self._items:
                raise DuplicateItemError(self.name, key)
            item = SyncItemProvider(
                key, self._batcher.enqueue, initial_value, namespace=self.name
            )
            self._items[key] = item
            return item

    def item(self, key: str) -> SyncItemProvider:
        """Return a registered item or raise ``ItemNotFoundError``."""
        try:
            return self._items[key]
        except KeyError:
            raise ItemNotFoundError(self.name, key) from None

    def keys(self) -> List[str]:
        return list(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __iter__(self) -> Iterator[SyncItemProvider]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def get_snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Serialized snapshot of every item, keyed by item key."""
        with self._lock:
            return {key: item.snapshot() for key, item in self._items.items()}

    def flush(self) -> Optional[List[Patch]]:
        """Publish pending patches now instead of waiting for the scheduler."""
        return self._batcher.flush()

    @property
    def batcher(self) -> PatchBatcher:
        return self._batcher

    def _publish(self, namespace: str, patches: List[Patch]) -> None:
        self._bus.emit("update", namespace, patches)

    def __repr__(self) -> str:
        return f"SyncNamespaceProvider({self.name!r}, items={len(self._items)})"


class SyncProvider:
    """
    Producer-side registry of namespaces.

    Args:
        scheduler: Deferred-flush scheduler shared by all namespaces
            (default: ``AsyncioScheduler`` on the running loop)
        bus: Event bus batches are published on (default: a new ``EventBus``)
    """

    def __init__(
        self, scheduler: Optional[Scheduler] = None, bus: Optional[EventBus] = None
    ):
        self.bus = bus if bus is not None else EventBus("SyncProvider")
        self.scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self._namespaces: Dict[str, SyncNamespaceProvider] = {}
        self._lock = threading.RLock()

    def register(self, namespace: str) -> SyncNamespaceProvider:
        """Return the namespace, creating and announcing it on first use."""
        with self._lock:
            existing = self._namespaces.get(namespace)
            if existing is not None:
                return existing
            ns = SyncNamespaceProvider(namespace, self.bus, self.scheduler)
            self._namespaces[namespace] = ns
        logging.debug(f"Registered namespace '{namespace}'")
        self.bus.emit("register", namespace)
        return ns

    def namespace(self, namespace: str) -> SyncNamespaceProvider:
        try:
            return self._namespaces[namespace]
        except KeyError:
            raise NamespaceNotFoundError(namespace) from None

    def get_state_snapshot(self, namespace: str, key: Optional[str] = None) -> Any:
        """
        Snapshot for consumer bootstrap.

        Returns:
            The serialized item when ``key`` is given, otherwise a dict of
            every item's serialized snapshot keyed by item key

        Raises:
            NamespaceNotFoundError: Unknown namespace
            ItemNotFoundError: Unknown key
        """
        ns = self.namespace(namespace)
        if key is None:
            return ns.get_snapshot()
        return ns.item(key).snapshot()

    def flush(self) -> None:
        """Flush every namespace immediately."""
        for ns in list(self._namespaces.values()):
            ns.flush()

    def __contains__(self, namespace: object) -> bool:
        return namespace in self._namespaces

    def __repr__(self) -> str:
        return f"SyncProvider(namespaces={list(self._namespaces)})"


def create_provider(
    scheduler: Optional[Scheduler] = None, bus: Optional[EventBus] = None
) -> SyncProvider:
    """
    Create a provider with the given settings.

    Args:
        scheduler: Deferred-flush scheduler (default: ``AsyncioScheduler``)
        bus: Event bus to publish on (default: a new ``EventBus``)

    Returns:
        Configured SyncProvider instance
    """
    return SyncProvider(scheduler=scheduler, bus=bus)
