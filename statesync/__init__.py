"""
StateSync - One-Way Incremental State Replication

A producer mutates ordinary Python values through observed handles; every
mutation becomes a small patch, patches are coalesced into one ordered batch
per namespace and scheduling cycle, and consumers replay the batches onto
mirrors bootstrapped from a snapshot.
"""

# Producer side
from .provider import (
    SyncItemProvider,
    SyncNamespaceProvider,
    SyncProvider,
    create_provider,
)

# Consumer side
from .receiver import (
    SyncItemReceiver,
    SyncNamespaceReceiver,
    SyncReceiver,
    create_receiver,
)

# Patch model and replay
from .applier import apply_patch, apply_patches
from .observed import (
    ObservedMap,
    ObservedNode,
    ObservedRecord,
    ObservedSequence,
    ObservedSet,
    observe,
    unwrap,
)
from .patch import (
    MISSING,
    ContainerKind,
    Patch,
    PatchOp,
    classify,
    is_opaque,
    navigate_path,
)

# Scheduling and events
from .bus import EventBus, Subscription
from .scheduler import AsyncioScheduler, ManualScheduler, PatchBatcher, Scheduler

# Serialization
from .codec import decode_batch, deserialize, dumps, encode_batch, loads, serialize

# Exceptions
from .exceptions import (
    DuplicateItemError,
    ItemNotFoundError,
    NamespaceNotFoundError,
    PatchFormatError,
    SchedulerError,
    SnapshotDecodeError,
    SnapshotEncodeError,
    SyncError,
)

__version__ = "0.1.0"

__all__ = [
    # Producer
    "SyncProvider",
    "SyncNamespaceProvider",
    "SyncItemProvider",
    "create_provider",
    # Consumer
    "SyncReceiver",
    "SyncNamespaceReceiver",
    "SyncItemReceiver",
    "create_receiver",
    # Patches
    "Patch",
    "PatchOp",
    "MISSING",
    "ContainerKind",
    "classify",
    "is_opaque",
    "navigate_path",
    "apply_patch",
    "apply_patches",
    # Observed handles
    "observe",
    "unwrap",
    "ObservedNode",
    "ObservedRecord",
    "ObservedMap",
    "ObservedSet",
    "ObservedSequence",
    # Scheduling and events
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    "PatchBatcher",
    "EventBus",
    "Subscription",
    # Serialization
    "serialize",
    "deserialize",
    "dumps",
    "loads",
    "encode_batch",
    "decode_batch",
    # Exceptions
    "SyncError",
    "DuplicateItemError",
    "NamespaceNotFoundError",
    "ItemNotFoundError",
    "PatchFormatError",
    "SnapshotEncodeError",
    "SnapshotDecodeError",
    "SchedulerError",
]
