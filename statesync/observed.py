"""
StateSync Observed Handles - Mutation Observer
==============================================

``observe(value, key, path, emit)`` returns a handle that reads exactly like
``value`` but turns every in-place mutation into a ``Patch`` handed to
``emit``. There is one handle class per container kind:

- ``ObservedRecord``: attribute reads, writes and deletes
- ``ObservedMap``: a ``MutableMapping`` over a dict-like map
- ``ObservedSet``: a ``MutableSet`` over a set-like container
- ``ObservedSequence``: a ``MutableSequence`` over a list-like container

Leaves (scalars, dates, compiled patterns, callables, numpy arrays, tuples...)
are returned untouched, so mutating them in place is invisible.

Wrapping is lazy: reading a field or element wraps the current child value in a
fresh handle addressed at ``path + [step]``. Nothing below the root is wrapped
until it is touched, and handles are not cached, so two reads of the same
field give two distinct (but equal) handles.

Emission rules:

- Each primitive mutating call performs its effect first, then emits at most
  one patch, synchronously.
- Calls that find nothing to change (deleting an absent key, adding a present
  element, clearing an empty container) emit nothing.
- Sequence operations that shift many slots (``insert`` before the end,
  ``sort``, ``reverse``, slice assignment) emit a single ``set`` of the whole
  sequence.
- Composite calls inherited from ``collections.abc`` (``update``, ``extend``,
  ``|=``...) are sequences of primitive calls and emit one patch per step.

Patch values are deep copies taken at emission time, so later mutations of the
producer's data never leak into a patch that is already queued.

Example:
    patches = []
    state = observe({"todos": []}, "app", [], patches.append)
    state["todos"].append({"title": "write docs"})
    state["todos"][0]["done"] = True
    # patches == [Patch(SET app['todos', 0] = {...}),
    #             Patch(SET app['todos', 0, 'done'] = True)]
"""

import copy
import types
from collections.abc import MutableMapping, MutableSequence, MutableSet
from typing import Any, Callable, Dict, Iterable, Iterator, Type

from .patch import (
    MISSING,
    ContainerKind,
    Patch,
    PatchOp,
    Path,
    PathStep,
    classify,
    instance_attribute,
)

EmitFn = Callable[[Patch], None]


def unwrap(value: Any) -> Any:
    """Return the raw object behind a handle; other values pass through."""
    if isinstance(value, ObservedNode):
        return object.__getattribute__(value, "_sync_target")
    return value


def observe(value: Any, key: str, path: Path, emit: EmitFn) -> Any:
    """
    Wrap ``value`` so that mutations on it emit patches.

    Args:
        value: Root value or sub-value to observe
        key: Item key stamped on every emitted patch
        path: Path from the item's root to ``value``
        emit: Callback receiving each emitted ``Patch``

    Returns:
        A handle for maps, sequences, sets and records; ``value`` itself for
        leaves.
    """
    value = unwrap(value)
    handle_type = _HANDLE_TYPES.get(classify(value))
    if handle_type is None:
        return value
    return handle_type(value, key, list(path), emit)


# ============================================================================
# BASE HANDLE
# ============================================================================


class ObservedNode:
    """Shared state and plumbing for all handle types."""

    __slots__ = ("_sync_target", "_sync_key", "_sync_path", "_sync_emit")

    def __init__(self, target: Any, key: str, path: Path, emit: EmitFn) -> None:
        # ObservedRecord overrides __setattr__, so bypass it here
        object.__setattr__(self, "_sync_target", target)
        object.__setattr__(self, "_sync_key", key)
        object.__setattr__(self, "_sync_path", path)
        object.__setattr__(self, "_sync_emit", emit)

    def _child_path(self, step: PathStep) -> Path:
        return self._sync_path + [step]

    def _wrap(self, step: PathStep, value: Any) -> Any:
        return observe(value, self._sync_key, self._child_path(step), self._sync_emit)

    def _send(self, op: PatchOp, path: Path, value: Any = MISSING) -> None:
        if value is not MISSING:
            value = copy.deepcopy(value)
        self._sync_emit(Patch(op=op, key=self._sync_key, path=path, value=value))

    def __eq__(self, other: Any) -> bool:
        return self._sync_target == unwrap(other)

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return repr(self._sync_target)

    def __str__(self) -> str:
        return str(self._sync_target)

    def __copy__(self) -> Any:
        return copy.copy(self._sync_target)

    def __deepcopy__(self, memo: Dict[int, Any]) -> Any:
        return copy.deepcopy(self._sync_target, memo)


# ============================================================================
# RECORD
# ============================================================================


class ObservedRecord(ObservedNode):
    """
    Handle over an object with attributes.

    Methods defined on the record's class are re-bound to the handle, so
    ``self.count += 1`` inside a method is observed like any other write.
    Properties run against the raw object and are not observed.
    """

    __slots__ = ()

    def __getattr__(self, name: str) -> Any:
        # Only reached when normal lookup fails, i.e. for record attributes
        if name.startswith("_sync_"):
            raise AttributeError(name)
        target = self._sync_target
        value = getattr(target, name)
        if isinstance(value, types.MethodType) and value.__self__ is target:
            return types.MethodType(value.__func__, self)
        if instance_attribute(target, name) is MISSING:
            # Class-level values (properties, class attributes) are not tracked
            return value
        return self._wrap(name, value)

    def __setattr__(self, name: str, value: Any) -> None:
        value = unwrap(value)
        setattr(self._sync_target, name, value)
        self._send(PatchOp.SET, self._child_path(name), value)

    def __delattr__(self, name: str) -> None:
        delattr(self._sync_target, name)
        self._send(PatchOp.DELETE, self._child_path(name))

    def __dir__(self) -> Iterable[str]:
        return dir(self._sync_target)


# ============================================================================
# MAP
# ============================================================================


class ObservedMap(ObservedNode, MutableMapping):
    """Handle over a key -> value map."""

    __slots__ = ()

    def __getitem__(self, key: Any) -> Any:
        target = self._sync_target
        if key not in target and hasattr(target, "__missing__"):
            # defaultdict-style maps insert on read; publish the insertion
            self[key] = target.__missing__(key)
        return self._wrap(key, target[key])

    def __setitem__(self, key: Any, value: Any) -> None:
        value = unwrap(value)
        self._sync_target[key] = value
        self._send(PatchOp.SET, self._child_path(key), value)

    def __delitem__(self, key: Any) -> None:
        del self._sync_target[key]
        self._send(PatchOp.DELETE, self._child_path(key))

    def __iter__(self) -> Iterator[Any]:
        return iter(self._sync_target)

    def __len__(self) -> int:
        return len(self._sync_target)

    def __contains__(self, key: Any) -> bool:
        return key in self._sync_target

    def get(self, key: Any, default: Any = None) -> Any:
        if key in self._sync_target:
            return self[key]
        return default

    def pop(self, key: Any, default: Any = MISSING) -> Any:
        if key in self._sync_target:
            value = self._sync_target.pop(key)
            self._send(PatchOp.DELETE, self._child_path(key))
            return value
        if default is MISSING:
            raise KeyError(key)
        return default

    def setdefault(self, key: Any, default: Any = None) -> Any:
        if key not in self._sync_target:
            self[key] = default
        return self[key]

    def popitem(self) -> Any:
        key, value = self._sync_target.popitem()
        self._send(PatchOp.DELETE, self._child_path(key))
        return key, value

    def clear(self) -> None:
        if not self._sync_target:
            return
        self._sync_target.clear()
        self._send(PatchOp.CLEAR, list(self._sync_path))

    def copy(self) -> Any:
        return self._sync_target.copy()


# ============================================================================
# SET
# ============================================================================


class ObservedSet(ObservedNode, MutableSet):
    """
    Handle over a set. Iteration yields the raw elements.

    Elements are addressed by value: ``add`` and ``discard`` emit a patch whose
    path is the set itself and whose value is the element.
    """

    __slots__ = ()

    @classmethod
    def _from_iterable(cls, iterable: Iterable[Any]) -> set:
        # Non-mutating operators (|, &, -, ^) return plain sets
        return set(iterable)

    def __contains__(self, value: Any) -> bool:
        return unwrap(value) in self._sync_target

    def __iter__(self) -> Iterator[Any]:
        return iter(self._sync_target)

    def __len__(self) -> int:
        return len(self._sync_target)

    def add(self, value: Any) -> None:
        value = unwrap(value)
        if value in self._sync_target:
            return
        self._sync_target.add(value)
        self._send(PatchOp.ADD, list(self._sync_path), value)

    def discard(self, value: Any) -> None:
        value = unwrap(value)
        if value not in self._sync_target:
            return
        self._sync_target.discard(value)
        self._send(PatchOp.DELETE, list(self._sync_path), value)

    def remove(self, value: Any) -> None:
        if unwrap(value) not in self._sync_target:
            raise KeyError(value)
        self.discard(value)

    def pop(self) -> Any:
        value = self._sync_target.pop()
        self._send(PatchOp.DELETE, list(self._sync_path), value)
        return value

    def clear(self) -> None:
        if not self._sync_target:
            return
        self._sync_target.clear()
        self._send(PatchOp.CLEAR, list(self._sync_path))

    def copy(self) -> Any:
        return self._sync_target.copy()


# ============================================================================
# SEQUENCE
# ============================================================================


class ObservedSequence(ObservedNode, MutableSequence):
    """Handle over an ordered, index-addressed sequence."""

    __slots__ = ()

    def _normalize(self, index: int) -> int:
        return index + len(self._sync_target) if index < 0 else index

    def _send_whole(self) -> None:
        self._send(PatchOp.SET, list(self._sync_path), self._sync_target)

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            return self._sync_target[index]
        value = self._sync_target[index]
        return self._wrap(self._normalize(index), value)

    def __setitem__(self, index: Any, value: Any) -> None:
        if isinstance(index, slice):
            self._sync_target[index] = [unwrap(item) for item in value]
            self._send_whole()
            return
        value = unwrap(value)
        self._sync_target[index] = value
        self._send(PatchOp.SET, self._child_path(self._normalize(index)), value)

    def __delitem__(self, index: Any) -> None:
        if isinstance(index, slice):
            del self._sync_target[index]
            self._send_whole()
            return
        position = self._normalize(index)
        del self._sync_target[index]
        self._send(PatchOp.DELETE, self._child_path(position))

    def __len__(self) -> int:
        return len(self._sync_target)

    def __contains__(self, value: Any) -> bool:
        return unwrap(value) in self._sync_target

    def insert(self, index: int, value: Any) -> None:
        size = len(self._sync_target)
        # Resolve the slot the way list.insert does
        position = max(0, size + index) if index < 0 else min(index, size)
        value = unwrap(value)
        self._sync_target.insert(index, value)
        if position == size:
            self._send(PatchOp.SET, self._child_path(position), value)
        else:
            self._send_whole()

    def pop(self, index: int = -1) -> Any:
        position = self._normalize(index)
        value = self._sync_target.pop(index)
        self._send(PatchOp.DELETE, self._child_path(position))
        return value

    def remove(self, value: Any) -> None:
        del self[self._sync_target.index(unwrap(value))]

    def index(self, value: Any, *args: int) -> int:
        return self._sync_target.index(unwrap(value), *args)

    def count(self, value: Any) -> int:
        return self._sync_target.count(unwrap(value))

    def clear(self) -> None:
        if not self._sync_target:
            return
        self._sync_target.clear()
        self._send(PatchOp.CLEAR, list(self._sync_path))

    def reverse(self) -> None:
        self._sync_target.reverse()
        if len(self._sync_target) > 1:
            self._send_whole()

    def sort(self, *, key: Any = None, reverse: bool = False) -> None:
        self._sync_target.sort(key=key, reverse=reverse)
        if len(self._sync_target) > 1:
            self._send_whole()

    def copy(self) -> Any:
        return self._sync_target.copy()


_HANDLE_TYPES: Dict[ContainerKind, Type[ObservedNode]] = {
    ContainerKind.RECORD: ObservedRecord,
    ContainerKind.MAP: ObservedMap,
    ContainerKind.SET: ObservedSet,
    ContainerKind.SEQUENCE: ObservedSequence,
}
