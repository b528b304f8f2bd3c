"""
StateSync Receiver - Consumer-Side Mirrors
==========================================

The consumer rebuilds producer items as mirrors:

    receiver = SyncReceiver(snapshot_getter)
    todos = await receiver.register("todos")   # fetches the namespace snapshot once
    board = await todos.sync("board")           # mirror from the buffered snapshot
    board.on_update(lambda new, old, patches: render(new))

    transport.on_batch(receiver.apply_patches)  # (namespace, patches)

``snapshot_getter(namespace, key=None)`` is supplied by the integrator and may
be a plain function or a coroutine function. Called with only a namespace it
returns ``{key: snapshot_document}``; called with a key it returns that item's
snapshot document.

Registering a namespace decodes its whole snapshot into a buffer. Items are
materialized from the buffer on ``sync(key)``; keys that were not in the
namespace snapshot are fetched individually at that point. Batches keep
buffered values current, so an item synced late starts from the latest state.

Each batch raises at most one ``update`` per item, carrying the new mirror, a
deep copy of the mirror from before the batch, and the patches applied to it.
"""

import asyncio
import copy
import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from . import codec
from .applier import apply_patch, apply_patches
from .bus import EventBus, Listener, Subscription
from .exceptions import NamespaceNotFoundError, SnapshotDecodeError
from .patch import Patch

SnapshotGetter = Callable[..., Union[Any, Awaitable[Any]]]


async def _fetch(getter: SnapshotGetter, namespace: str, key: Optional[str] = None) -> Any:
    result = getter(namespace) if key is None else getter(namespace, key)
    if inspect.isawaitable(result):
        result = await result
    return result


class SyncItemReceiver:
    """Mirror of one producer item."""

    def __init__(self, key: str, value: Any = None, namespace: Optional[str] = None):
        self.key = key
        self.namespace = namespace
        self._value = value
        self.bus = EventBus(f"{namespace}/{key}")

    @property
    def raw(self) -> Any:
        return self._value

    @property
    def value(self) -> Any:
        return self._value

    def on_update(self, callback: Listener) -> Subscription:
        """
        Subscribe to ``(new_value, old_value, patches)`` notifications.

        Returns:
            Subscription object that can be used to unsubscribe
        """
        return self.bus.on("update", callback)

    def apply_patch(self, patch: Patch) -> Any:
        """Apply a single patch without notifying listeners."""
        self._value = apply_patch(self._value, patch)
        return self._value

    def apply_patches(self, patches: List[Patch]) -> Any:
        """Apply ``patches`` in order, then notify listeners once."""
        old_value = copy.deepcopy(self._value)
        self._value = apply_patches(self._value, patches)
        self.bus.emit("update", self._value, old_value, patches)
        return self._value

    def __repr__(self) -> str:
        return f"SyncItemReceiver({self.namespace!r}, {self.key!r}, {self._value!r})"


class SyncNamespaceReceiver:
    """Mirrors and buffered snapshot values of one namespace."""

    def __init__(self, name: str, snapshot_getter: SnapshotGetter):
        self.name = name
        self._getter = snapshot_getter
        self._buffer: Dict[str, Any] = {}
        self._items: Dict[str, SyncItemReceiver] = {}
        self._lock = threading.RLock()

    def load_snapshot(self, snapshot: Dict[str, Any]) -> None:
        """Decode a whole-namespace snapshot into the buffer."""
        if not isinstance(snapshot, dict):
            raise SnapshotDecodeError(
                f"Namespace snapshot for '{self.name}' must be a dict, "
                f"got {type(snapshot).__name__}"
            )
        decoded = {key: codec.deserialize(document) for key, document in snapshot.items()}
        with self._lock:
            for key, value in decoded.items():
                if key not in self._items:
                    self._buffer[key] = value

    async def sync(self, key: str) -> SyncItemReceiver:
        """
        Return the mirror for ``key``, materializing it on first use.

        Buffered values are used when present; otherwise the single item is
        fetched through the snapshot getter.

        While that fetch is in flight the key is neither buffered nor synced,
        so batches carrying patches for it drop them. The fetched snapshot is
        only as current as the moment the getter produced it.
        """
        with self._lock:
            item = self._items.get(key)
            if item is not None:
                return item
            buffered = key in self._buffer

        value: Any = None

        if not buffered:
            logging.debug(f"Fetching snapshot for '{self.name}/{key}'")
            value = codec.deserialize(await _fetch(self._getter, self.name, key))

        with self._lock:
            # A concurrent sync may have won while we were fetching
            item = self._items.get(key)
            if item is not None:
                return item
            if key in self._buffer:
                value = self._buffer.pop(key)
            item = SyncItemReceiver(key, value, namespace=self.name)
            self._items[key] = item
            return item

    def item(self, key: str) -> Optional[SyncItemReceiver]:
        """Return the mirror for ``key`` if it has been synced."""
        return self._items.get(key)

    def keys(self) -> List[str]:
        return list(self._items)

    def buffered_keys(self) -> List[str]:
        return list(self._buffer)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def apply_patches(self, patches: List[Patch]) -> None:
        """
        Apply one batch.

        Patches are grouped by item key in arrival order. Synced items are
        updated and notified once each; buffered items are updated silently;
        patches for any other key are dropped.
        """
        grouped: Dict[str, List[Patch]] = {}
        for patch in patches:
            grouped.setdefault(patch.key, []).append(patch)

        affected: List[Any] = []
        with self._lock:
            for key, item_patches in grouped.items():
                item = self._items.get(key)
                if item is not None:
                    affected.append((item, item_patches))
                elif key in self._buffer:
                    self._buffer[key] = apply_patches(self._buffer[key], item_patches)
                else:
                    logging.debug(
                        f"Dropping {len(item_patches)} patches for unknown item "
                        f"'{self.name}/{key}'"
                    )

        for item, item_patches in affected:
            item.apply_patches(item_patches)

    def __repr__(self) -> str:
        return (
            f"SyncNamespaceReceiver({self.name!r}, items={len(self._items)}, "
            f"buffered={len(self._buffer)})"
        )


class SyncReceiver:
    """
    Consumer-side registry of namespaces.

    Args:
        snapshot_getter: ``(namespace, key=None)`` function or coroutine
            function returning snapshot documents
        bus: Event bus for ``("register", namespace)`` notifications
            (default: a new ``EventBus``)
    """

    def __init__(self, snapshot_getter: SnapshotGetter, bus: Optional[EventBus] = None):
        if not callable(snapshot_getter):
            raise TypeError("snapshot_getter must be callable")
        self._getter = snapshot_getter
        self.bus = bus if bus is not None else EventBus("SyncReceiver")
        self._namespaces: Dict[str, SyncNamespaceReceiver] = {}
        self._loading: Dict[str, Any] = {}

    async def register(self, namespace: str) -> SyncNamespaceReceiver:
        """Return the namespace, fetching and buffering its snapshot on first use."""
        existing = self._namespaces.get(namespace)
        if existing is not None:
            return existing

        # Concurrent first registrations share one fetch
        pending = self._loading.get(namespace)
        if pending is None:
            pending = self._loading[namespace] = asyncio.ensure_future(
                self._load(namespace)
            )
        try:
            return await pending
        finally:
            self._loading.pop(namespace, None)

    async def _load(self, namespace: str) -> SyncNamespaceReceiver:
        logging.debug(f"Fetching snapshot for namespace '{namespace}'")
        snapshot = await _fetch(self._getter, namespace)
        ns = SyncNamespaceReceiver(namespace, self._getter)
        ns.load_snapshot(snapshot if snapshot is not None else {})
        self._namespaces[namespace] = ns
        self.bus.emit("register", namespace)
        return ns

    def namespace(self, namespace: str) -> SyncNamespaceReceiver:
        try:
            return self._namespaces[namespace]
        except KeyError:
            raise NamespaceNotFoundError(namespace) from None

    def __contains__(self, namespace: object) -> bool:
        return namespace in self._namespaces

    def apply_patches(self, namespace: str, patches: List[Patch]) -> None:
        """Route a batch to its namespace; batches for unknown namespaces are ignored."""
        ns = self._namespaces.get(namespace)
        if ns is None:
            logging.debug(f"Ignoring batch for unregistered namespace '{namespace}'")
            return
        ns.apply_patches(patches)

    def attach(self, bus: EventBus) -> Subscription:
        """Follow ``("update", namespace, patches)`` batches published on ``bus``."""
        return bus.on("update", self.apply_patches)

    def __repr__(self) -> str:
        return f"SyncReceiver(namespaces={list(self._namespaces)})"


def create_receiver(
    snapshot_getter: SnapshotGetter, bus: Optional[EventBus] = None
) -> SyncReceiver:
    """
    Create a receiver with the given settings.

    Args:
        snapshot_getter: ``(namespace, key=None)`` snapshot source, sync or async
        bus: Event bus for register notifications (default: a new ``EventBus``)

    Returns:
        Configured SyncReceiver instance
    """
    return SyncReceiver(snapshot_getter, bus=bus)
