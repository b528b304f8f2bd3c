"""
StateSync Codec - Snapshots and Wire Batches
============================================

Turns a synchronized value tree into a JSON-compatible document and back.
Plain JSON values (``None``, bools, ints, finite floats, strings, lists and
string-keyed dicts) are stored as themselves; everything else is written as a
tagged object ``{"$type": <tag>, ...}``:

====================  ==========================================
tag                   Python value
====================  ==========================================
``map``               dict with non-string keys (or a ``$type`` key)
``set``/``frozenset`` set / frozenset
``tuple``             tuple
``bytes``             bytes / bytearray (base64)
``float``/``complex`` nan, inf, complex numbers
``datetime``          datetime.datetime / date / time / timedelta
``regexp``            compiled ``re.Pattern``
``ndarray``           ``numpy.ndarray`` (dtype + nested list)
``npscalar``          numpy scalar
``enum``              ``Enum`` member (importable class)
``namespace``         ``types.SimpleNamespace``
``record``            any other attribute object (importable class)
``undefined``         the ``MISSING`` sentinel
====================  ==========================================

A snapshot document is ``{"version": 1, "json": <tagged tree>}``.

Wire batches (``encode_batch``/``decode_batch``) are JSON text of the form
``{"namespace": ..., "patches": [<patch wire dict>, ...]}`` where each patch
value is a tagged tree.
"""

import base64
import dataclasses
import datetime
import importlib
import json
import math
import re
import types
from collections.abc import Mapping, MutableSequence, Set
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
from cachetools import LRUCache

from .exceptions import PatchFormatError, SnapshotDecodeError, SnapshotEncodeError
from .patch import MISSING, ContainerKind, Patch, classify

SNAPSHOT_VERSION = 1
TYPE_TAG = "$type"

# Resolved "module:qualname" record and enum classes
_class_cache: LRUCache = LRUCache(maxsize=256)


# ============================================================================
# ENCODING
# ============================================================================


def _class_path(cls: type) -> str:
    return f"{cls.__module__}:{cls.__qualname__}"


def _record_fields(value: Any) -> Dict[str, Any]:
    if hasattr(value, "__dict__"):
        return dict(vars(value))
    # Slotted dataclasses have no __dict__
    return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}


def encode_value(value: Any) -> Any:
    """Encode one value into a JSON-compatible tagged tree."""
    if value is MISSING:
        return {TYPE_TAG: "undefined"}
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, Enum):
        return {
            TYPE_TAG: "enum",
            "class": _class_path(type(value)),
            "value": encode_value(value.value),
        }
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if math.isfinite(value):
            return value
        return {TYPE_TAG: "float", "value": repr(value)}
    if isinstance(value, complex):
        return {TYPE_TAG: "complex", "value": [value.real, value.imag]}
    if isinstance(value, (bytes, bytearray)):
        return {
            TYPE_TAG: "bytes",
            "value": base64.b64encode(bytes(value)).decode("ascii"),
            "mutable": isinstance(value, bytearray),
        }
    if isinstance(value, datetime.datetime):
        return {TYPE_TAG: "datetime", "kind": "datetime", "value": value.isoformat()}
    if isinstance(value, datetime.date):
        return {TYPE_TAG: "datetime", "kind": "date", "value": value.isoformat()}
    if isinstance(value, datetime.time):
        return {TYPE_TAG: "datetime", "kind": "time", "value": value.isoformat()}
    if isinstance(value, datetime.timedelta):
        return {
            TYPE_TAG: "datetime",
            "kind": "timedelta",
            "value": [value.days, value.seconds, value.microseconds],
        }
    if isinstance(value, re.Pattern):
        if not isinstance(value.pattern, str):
            raise SnapshotEncodeError("Only str patterns can be encoded")
        return {TYPE_TAG: "regexp", "value": value.pattern, "flags": value.flags}
    if isinstance(value, np.ndarray):
        if value.dtype.hasobject:
            raise SnapshotEncodeError("Object arrays cannot be encoded")
        return {TYPE_TAG: "ndarray", "dtype": value.dtype.str, "value": value.tolist()}
    if isinstance(value, np.generic):
        return {TYPE_TAG: "npscalar", "dtype": value.dtype.str, "value": value.item()}
    if isinstance(value, tuple):
        return {TYPE_TAG: "tuple", "value": [encode_value(item) for item in value]}
    if isinstance(value, frozenset):
        return {TYPE_TAG: "frozenset", "value": [encode_value(item) for item in value]}
    if isinstance(value, Set):
        return {TYPE_TAG: "set", "value": [encode_value(item) for item in value]}
    if isinstance(value, Mapping):
        if all(isinstance(k, str) for k in value) and TYPE_TAG not in value:
            return {k: encode_value(v) for k, v in value.items()}
        return {
            TYPE_TAG: "map",
            "value": [[encode_value(k), encode_value(v)] for k, v in value.items()],
        }
    if isinstance(value, MutableSequence):
        return [encode_value(item) for item in value]
    if isinstance(value, types.SimpleNamespace):
        return {
            TYPE_TAG: "namespace",
            "value": {k: encode_value(v) for k, v in vars(value).items()},
        }
    if classify(value) is ContainerKind.RECORD:
        return {
            TYPE_TAG: "record",
            "class": _class_path(type(value)),
            "value": {k: encode_value(v) for k, v in _record_fields(value).items()},
        }
    raise SnapshotEncodeError(f"Cannot encode value of type {type(value).__name__}")


# ============================================================================
# DECODING
# ============================================================================


def _import_class(path: str) -> type:
    cached = _class_cache.get(path, MISSING)
    if cached is not MISSING:
        return cached

    module_name, _, qualname = path.partition(":")
    try:
        target: Any = importlib.import_module(module_name)
        for part in qualname.split("."):
            target = getattr(target, part)
    except (ImportError, AttributeError, ValueError) as e:
        raise SnapshotDecodeError(f"Cannot import class {path!r}: {e}") from e
    if not isinstance(target, type):
        raise SnapshotDecodeError(f"{path!r} is not a class")
    _class_cache[path] = target
    return target


def _decode_datetime(data: Dict[str, Any]) -> Any:
    kind = data.get("kind")
    raw = data["value"]
    if kind == "datetime":
        return datetime.datetime.fromisoformat(raw)
    if kind == "date":
        return datetime.date.fromisoformat(raw)
    if kind == "time":
        return datetime.time.fromisoformat(raw)
    if kind == "timedelta":
        days, seconds, microseconds = raw
        return datetime.timedelta(days=days, seconds=seconds, microseconds=microseconds)
    raise SnapshotDecodeError(f"Unknown datetime kind {kind!r}")


def _decode_record(data: Dict[str, Any]) -> Any:
    cls = _import_class(data["class"])
    record = cls.__new__(cls)
    for name, raw in data["value"].items():
        # object.__setattr__ also restores frozen dataclasses
        object.__setattr__(record, name, decode_value(raw))
    return record


def _decode_tagged(data: Dict[str, Any]) -> Any:
    tag = data[TYPE_TAG]
    if tag == "undefined":
        return MISSING
    if tag == "map":
        return {decode_value(k): decode_value(v) for k, v in data["value"]}
    if tag == "set":
        return {decode_value(item) for item in data["value"]}
    if tag == "frozenset":
        return frozenset(decode_value(item) for item in data["value"])
    if tag == "tuple":
        return tuple(decode_value(item) for item in data["value"])
    if tag == "bytes":
        raw = base64.b64decode(data["value"])
        return bytearray(raw) if data.get("mutable") else raw
    if tag == "float":
        return float(data["value"])
    if tag == "complex":
        real, imag = data["value"]
        return complex(real, imag)
    if tag == "datetime":
        return _decode_datetime(data)
    if tag == "regexp":
        return re.compile(data["value"], data.get("flags", 0))
    if tag == "ndarray":
        return np.array(data["value"], dtype=np.dtype(data["dtype"]))
    if tag == "npscalar":
        return np.dtype(data["dtype"]).type(data["value"])
    if tag == "enum":
        return _import_class(data["class"])(decode_value(data["value"]))
    if tag == "namespace":
        return types.SimpleNamespace(
            **{k: decode_value(v) for k, v in data["value"].items()}
        )
    if tag == "record":
        return _decode_record(data)
    raise SnapshotDecodeError(f"Unknown type tag {tag!r}")


def decode_value(data: Any) -> Any:
    """Decode a tagged tree produced by ``encode_value``."""
    if isinstance(data, list):
        return [decode_value(item) for item in data]
    if isinstance(data, dict):
        if TYPE_TAG in data:
            try:
                return _decode_tagged(data)
            except SnapshotDecodeError:
                raise
            except (KeyError, TypeError, ValueError) as e:
                raise SnapshotDecodeError(f"Malformed {data[TYPE_TAG]!r} value: {e}") from e
        return {k: decode_value(v) for k, v in data.items()}
    return data


# ============================================================================
# SNAPSHOT DOCUMENTS
# ============================================================================


def serialize(value: Any) -> Dict[str, Any]:
    """Serialize a value into a snapshot document."""
    return {"version": SNAPSHOT_VERSION, "json": encode_value(value)}


def deserialize(document: Dict[str, Any]) -> Any:
    """Rebuild a value from a snapshot document."""
    if not isinstance(document, dict) or "json" not in document:
        raise SnapshotDecodeError("Snapshot document must be an object with a 'json' field")
    version = document.get("version", SNAPSHOT_VERSION)
    if version != SNAPSHOT_VERSION:
        raise SnapshotDecodeError(f"Unsupported snapshot version {version!r}")
    return decode_value(document["json"])


def dumps(value: Any) -> str:
    """Serialize a value to JSON text."""
    return json.dumps(serialize(value), separators=(",", ":"))


def loads(text: str) -> Any:
    """Inverse of ``dumps``."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise SnapshotDecodeError(f"Invalid snapshot JSON: {e}") from e
    return deserialize(document)


# ============================================================================
# WIRE BATCHES
# ============================================================================


def encode_batch(namespace: str, patches: Sequence[Patch]) -> str:
    """Encode one published batch as JSON text."""
    payload = {
        "namespace": namespace,
        "patches": [patch.to_dict(encode=encode_value) for patch in patches],
    }
    return json.dumps(payload, separators=(",", ":"))


def decode_batch(text: str) -> Tuple[str, List[Patch]]:
    """
    Decode JSON text produced by ``encode_batch``.

    Returns:
        (namespace, patches) in their original order
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise PatchFormatError(f"Invalid batch JSON: {e}") from e
    if not isinstance(payload, dict) or not isinstance(payload.get("namespace"), str):
        raise PatchFormatError("Batch must be an object with a string 'namespace'")
    raw_patches = payload.get("patches")
    if not isinstance(raw_patches, list):
        raise PatchFormatError("Batch 'patches' must be a list")
    patches = [Patch.from_dict(item, decode=decode_value) for item in raw_patches]
    return payload["namespace"], patches
