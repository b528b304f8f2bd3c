"""
StateSync Exceptions
====================

Every error raised by the package derives from ``SyncError`` so callers can
catch the whole family at once. The lookup and format errors also subclass the
matching builtin (``KeyError``, ``LookupError``, ``ValueError``) so existing
``except`` clauses keep working.

Errors that are *not* raised on purpose:

- A patch whose parent container is missing on the mirror is dropped silently.
- A failing bus or update listener is logged and skipped.
"""


class SyncError(Exception):
    """Base class for all StateSync errors."""

    pass


class DuplicateItemError(SyncError, KeyError):
    """Raised when an item key is registered twice in the same namespace."""

    def __init__(self, namespace: str, key: str):
        self.namespace = namespace
        self.key = key
        super().__init__(f"Item {key!r} already registered in namespace {namespace!r}")

    def __str__(self) -> str:
        # KeyError would repr() the message otherwise
        return self.args[0]


class NamespaceNotFoundError(SyncError, LookupError):
    """Raised when a namespace was never registered."""

    def __init__(self, namespace: str):
        self.namespace = namespace
        super().__init__(f"Namespace {namespace!r} not found")


class ItemNotFoundError(SyncError, LookupError):
    """Raised when an item key is not registered in a namespace."""

    def __init__(self, namespace: str, key: str):
        self.namespace = namespace
        self.key = key
        super().__init__(f"Item {key!r} not found in namespace {namespace!r}")


class PatchFormatError(SyncError, ValueError):
    """Raised when a wire patch cannot be decoded."""

    pass


class SnapshotEncodeError(SyncError, ValueError):
    """Raised when a value cannot be serialized by the snapshot codec."""

    pass


class SnapshotDecodeError(SyncError, ValueError):
    """Raised when a serialized snapshot cannot be decoded."""

    pass


class SchedulerError(SyncError, RuntimeError):
    """Raised when a deferred flush cannot be scheduled."""

    pass
