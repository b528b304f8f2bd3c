"""
StateSync Event Bus
===================

Small named-event bus used as the seam between the core and whatever carries
batches between processes. The producer emits:

- ``("register", namespace)`` the first time a namespace is created
- ``("update", namespace, patches)`` once per flushed batch

and consumer items emit ``("update", new_value, old_value, patches)``.

Listeners run synchronously in subscription order. A failing listener is
logged and skipped; it never interrupts the emitter or the other listeners.

Usage:
    bus = EventBus("provider")
    sub = bus.on("update", lambda namespace, patches: transport.send(...))
    sub.pause()     # stop receiving for a while
    sub.resume()
    sub.unsubscribe()
"""

import logging
import threading
import weakref
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

Listener = Callable[..., Any]


class Subscription:
    """
    Handle for one listener registered on an ``EventBus``.

    Provides methods to pause, resume, and unsubscribe.
    """

    def __init__(self, bus: "EventBus", event: str, callback: Listener):
        self.event = event
        self.callback = callback
        self._bus_ref = weakref.ref(bus)
        self.active = True

    def pause(self) -> None:
        """Pause this subscription (stop receiving notifications)."""
        self.active = False

    def resume(self) -> None:
        """Resume this subscription (start receiving notifications again)."""
        self.active = True

    def unsubscribe(self) -> None:
        """Remove this listener from its bus."""
        bus = self._bus_ref()
        if bus is not None:
            bus._remove(self)

    def notify(self, *args: Any) -> None:
        if not self.active:
            return
        try:
            self.callback(*args)
        except Exception as e:
            # Log but don't crash on listener errors
            logging.error(f"Error in {self.event!r} listener {self.callback!r}: {e}")

    def __repr__(self) -> str:
        state = "active" if self.active else "paused"
        return f"Subscription({self.event!r}, {self.callback!r}, {state})"


class EventBus:
    """Synchronous named-event bus with per-event listener lists."""

    def __init__(self, name: Optional[str] = None):
        self.name = name or "bus"
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        self._lock = threading.RLock()

    def on(self, event: str, callback: Listener) -> Subscription:
        """
        Subscribe ``callback`` to ``event``.

        Returns:
            Subscription object that can be used to unsubscribe
        """
        if not callable(callback):
            raise TypeError(f"Listener for {event!r} must be callable")
        subscription = Subscription(self, event, callback)
        with self._lock:
            self._subscriptions[event].append(subscription)
        return subscription

    def off(self, event: str, callback: Listener) -> bool:
        """
        Remove every subscription of ``callback`` to ``event``.

        Returns:
            True if at least one subscription was removed
        """
        with self._lock:
            subscriptions = self._subscriptions.get(event, [])
            kept = [sub for sub in subscriptions if sub.callback != callback]
            removed = len(kept) != len(subscriptions)
            if kept:
                self._subscriptions[event] = kept
            else:
                self._subscriptions.pop(event, None)
            return removed

    def emit(self, event: str, *args: Any) -> None:
        """Call every active listener of ``event`` with ``args``."""
        with self._lock:
            listeners = list(self._subscriptions.get(event, ()))
        for subscription in listeners:
            subscription.notify(*args)

    def listener_count(self, event: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(event, ()))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscriptions = self._subscriptions.get(subscription.event)
            if subscriptions and subscription in subscriptions:
                subscriptions.remove(subscription)
                if not subscriptions:
                    del self._subscriptions[subscription.event]

    def __repr__(self) -> str:
        return f"EventBus({self.name!r})"
