"""
StateSync Patch Model - Units of Change and Path Addressing
===========================================================

A ``Patch`` is the wire-level description of one mutation:

    {"op": "set" | "delete" | "clear" | "add", "key": item, "path": [...], "value"?: ...}

``key`` names the item the patch belongs to and ``path`` is a list of steps
(map keys, sequence indexes or record attribute names) from that item's root to
the mutation site. An empty path addresses the item itself.

This module also owns the container taxonomy shared by the observer and the
applier:

- **MAP**: any ``MutableMapping`` (usually ``dict``), stepped into by key
- **SEQUENCE**: any ``MutableSequence`` (usually ``list``), stepped into by index
- **SET**: any ``MutableSet``; elements are addressed by value, never by step
- **RECORD**: any other object with instance attributes (dataclasses,
  ``SimpleNamespace``, plain instances), stepped into by attribute name
- **LEAF**: scalars and opaque values (dates, compiled patterns, callables,
  immutable containers, numpy arrays) which are never observed

``navigate_path`` walks a path without raising: the first step that resolves to
nothing yields the ``MISSING`` sentinel, and callers decide what to do with it.
"""

import dataclasses
import datetime
import re
import types
from collections.abc import MutableMapping, MutableSequence, MutableSet
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Hashable, List, Optional

import numpy as np

from .exceptions import PatchFormatError

# Map keys, sequence indexes or record attribute names
PathStep = Hashable
Path = List[PathStep]


# ============================================================================
# SENTINEL
# ============================================================================


class _MissingType:
    """Singleton marking "no value", distinct from ``None``."""

    _instance: Optional["_MissingType"] = None

    def __new__(cls) -> "_MissingType":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "_MissingType":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_MissingType":
        return self

    def __reduce__(self) -> str:
        return "MISSING"


MISSING = _MissingType()


# ============================================================================
# CONTAINER TAXONOMY
# ============================================================================


class ContainerKind(Enum):
    """Classification of a node in a synchronized value tree."""

    MAP = "map"
    SEQUENCE = "sequence"
    SET = "set"
    RECORD = "record"
    LEAF = "leaf"


# Values of these types are never observed. In-place changes to them (e.g.
# writing into a numpy array) are invisible; replacing them is a normal set.
OPAQUE_TYPES = (
    type(None),
    bool,
    int,
    float,
    complex,
    str,
    bytes,
    bytearray,
    tuple,
    frozenset,
    datetime.date,
    datetime.time,
    datetime.timedelta,
    re.Pattern,
    Enum,
    types.ModuleType,
    np.ndarray,
    np.generic,
)


def classify(value: Any) -> ContainerKind:
    """Return the container kind of ``value``."""
    if isinstance(value, OPAQUE_TYPES) or isinstance(value, type):
        return ContainerKind.LEAF
    if isinstance(value, MutableMapping):
        return ContainerKind.MAP
    if isinstance(value, MutableSet):
        return ContainerKind.SET
    if isinstance(value, MutableSequence):
        return ContainerKind.SEQUENCE
    if callable(value):
        return ContainerKind.LEAF
    if dataclasses.is_dataclass(value) or hasattr(value, "__dict__"):
        return ContainerKind.RECORD
    return ContainerKind.LEAF


def is_opaque(value: Any) -> bool:
    """True when ``value`` is a leaf that the observer passes through."""
    return classify(value) is ContainerKind.LEAF


# ============================================================================
# PATH NAVIGATION
# ============================================================================


def _is_attribute_step(step: PathStep) -> bool:
    return isinstance(step, str) and not (step.startswith("__") and step.endswith("__"))


def instance_attribute(node: Any, name: str) -> Any:
    """Look up an attribute stored on the instance itself, or ``MISSING``."""
    if hasattr(node, "__dict__"):
        return vars(node).get(name, MISSING)
    # Slotted dataclasses keep their fields in slots
    if dataclasses.is_dataclass(node) and any(
        f.name == name for f in dataclasses.fields(node)
    ):
        return getattr(node, name, MISSING)
    return MISSING


def get_child(node: Any, step: PathStep) -> Any:
    """Resolve one path step below ``node``, or ``MISSING``."""
    kind = classify(node)
    if kind is ContainerKind.MAP:
        return node[step] if step in node else MISSING
    if kind is ContainerKind.SEQUENCE:
        if isinstance(step, int) and not isinstance(step, bool):
            if 0 <= step < len(node):
                return node[step]
        return MISSING
    if kind is ContainerKind.RECORD and _is_attribute_step(step):
        return instance_attribute(node, step)
    return MISSING


def navigate_path(
    root: Any, path: Path, start: int = 0, end: Optional[int] = None
) -> Any:
    """
    Walk ``path[start:end]`` from ``root``.

    Map nodes are stepped into by key, sequences by index and records by
    attribute name. Returns ``MISSING`` as soon as a step cannot be resolved;
    never raises for an unresolvable path.
    """
    current = root
    for step in path[start:end]:
        if current is None or current is MISSING:
            return MISSING
        current = get_child(current, step)
        if current is MISSING:
            return MISSING
    return current


# ============================================================================
# CONTAINER CAPABILITIES
# ============================================================================
# Each helper returns True when it changed (or idempotently rewrote) the
# container and False when the container could not take the operation.


def set_at(container: Any, step: PathStep, value: Any) -> bool:
    """Assign ``value`` to slot ``step`` of ``container``."""
    kind = classify(container)
    if kind is ContainerKind.MAP:
        container[step] = value
        return True
    if kind is ContainerKind.SEQUENCE:
        if not isinstance(step, int) or isinstance(step, bool):
            return False
        if 0 <= step < len(container):
            container[step] = value
            return True
        if step == len(container):
            container.append(value)
            return True
        return False
    if kind is ContainerKind.RECORD and _is_attribute_step(step):
        setattr(container, step, value)
        return True
    return False


def delete_at(container: Any, step: PathStep) -> bool:
    """Remove slot ``step`` from ``container`` if present."""
    kind = classify(container)
    if kind is ContainerKind.MAP:
        if step in container:
            del container[step]
            return True
        return False
    if kind is ContainerKind.SEQUENCE:
        if isinstance(step, int) and 0 <= step < len(container):
            del container[step]
            return True
        return False
    if kind is ContainerKind.RECORD and _is_attribute_step(step):
        if instance_attribute(container, step) is MISSING:
            return False
        try:
            delattr(container, step)
        except AttributeError:
            return False
        return True
    return False


def add_to_set(container: Any, value: Any) -> bool:
    if classify(container) is not ContainerKind.SET:
        return False
    container.add(value)
    return True


def discard_from_set(container: Any, value: Any) -> bool:
    if classify(container) is not ContainerKind.SET:
        return False
    container.discard(value)
    return True


def clear_container(container: Any) -> bool:
    """Empty a map, set or sequence."""
    if classify(container) in (
        ContainerKind.MAP,
        ContainerKind.SET,
        ContainerKind.SEQUENCE,
    ):
        container.clear()
        return True
    return False


# ============================================================================
# PATCH
# ============================================================================


class PatchOp(str, Enum):
    """Operations a patch can carry."""

    SET = "set"
    DELETE = "delete"
    CLEAR = "clear"
    ADD = "add"


@dataclass
class Patch:
    """
    One replayable mutation of an item.

    Attributes:
        op: The operation (set, delete, clear, add)
        key: The item the patch belongs to
        path: Steps from the item's root to the mutation site. For ``add``,
            ``clear`` and element deletes this addresses the container itself.
        value: Payload for ``set``/``add`` and element ``delete``; ``MISSING``
            when the operation carries none
    """

    op: PatchOp
    key: str
    path: Path = field(default_factory=list)
    value: Any = MISSING

    def __post_init__(self) -> None:
        self.op = PatchOp(self.op)
        self.path = list(self.path)

    @property
    def has_value(self) -> bool:
        return self.value is not MISSING

    @property
    def is_root(self) -> bool:
        return not self.path

    def to_dict(self, encode: Optional[Callable[[Any], Any]] = None) -> Dict[str, Any]:
        """
        Convert to the JSON-compatible wire dict.

        Args:
            encode: Optional transform applied to ``value`` and to every path
                step (e.g. the snapshot codec, so tuple or date map keys
                survive JSON); both pass through unchanged otherwise.
        """
        data: Dict[str, Any] = {
            "op": self.op.value,
            "key": self.key,
            "path": [encode(step) for step in self.path] if encode else list(self.path),
        }
        if self.has_value:
            data["value"] = encode(self.value) if encode else self.value
        return data

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], decode: Optional[Callable[[Any], Any]] = None
    ) -> "Patch":
        """
        Build a Patch from its wire dict, validating its shape.

        Without ``decode`` path steps must be strings or ints. With it, each
        step is decoded like a value and must come out hashable.
        """
        if not isinstance(data, dict):
            raise PatchFormatError(f"Patch must be an object, got {type(data).__name__}")
        try:
            op = PatchOp(data["op"])
        except KeyError:
            raise PatchFormatError("Patch is missing 'op'") from None
        except ValueError:
            raise PatchFormatError(f"Unknown patch op {data['op']!r}") from None

        key = data.get("key")
        if not isinstance(key, str):
            raise PatchFormatError(f"Patch key must be a string, got {key!r}")

        path = data.get("path", [])
        if not isinstance(path, list):
            raise PatchFormatError(f"Patch path must be a list, got {path!r}")
        if decode:
            path = [decode(step) for step in path]
            for step in path:
                try:
                    hash(step)
                except TypeError:
                    raise PatchFormatError(
                        f"Patch path step must be hashable, got {step!r}"
                    ) from None
        elif not all(
            isinstance(step, (str, int)) and not isinstance(step, bool)
            for step in path
        ):
            raise PatchFormatError(f"Patch path must be a list of str|int, got {path!r}")

        value = MISSING
        if "value" in data:
            value = decode(data["value"]) if decode else data["value"]
        return cls(op=op, key=key, path=path, value=value)

    def __repr__(self) -> str:
        target = f"{self.key}{self.path}"
        if self.has_value:
            return f"Patch({self.op.value.upper()} {target} = {self.value!r})"
        return f"Patch({self.op.value.upper()} {target})"
