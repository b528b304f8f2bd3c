"""
StateSync Applier - Replaying Patches onto Mirrors
==================================================

The consumer keeps a mirror of every item and replays producer patches onto it
in arrival order. Application mutates the mirror in place and returns the
(possibly new) root, which only changes identity on a root ``set``.

Resolution rules:

- ``set`` on the empty path replaces the mirror wholesale
- ``set`` and slot ``delete`` navigate to the parent (``path[:-1]``) and act on
  the final step
- ``add``, element ``delete`` (a delete carrying a value) and ``clear``
  navigate the full path and act on the container found there

Anything that cannot be located, or a container of the wrong kind, turns the
patch into a no-op. The applier never raises for an unresolvable patch, so
applying the same patch twice is always safe.
"""

import copy
import logging
from typing import Any, Iterable

from .patch import (
    MISSING,
    Patch,
    PatchOp,
    add_to_set,
    clear_container,
    delete_at,
    discard_from_set,
    navigate_path,
    set_at,
)


def _drop(patch: Patch, reason: str) -> None:
    logging.debug(f"Dropping {patch!r}: {reason}")


def apply_patch(mirror: Any, patch: Patch) -> Any:
    """
    Apply one patch to ``mirror``.

    Args:
        mirror: Current mirror root
        patch: Patch addressed relative to that root

    Returns:
        The mirror root after application
    """
    op = patch.op
    path = patch.path

    if op is PatchOp.SET and not path:
        return copy.deepcopy(patch.value)

    # Slot operations act on the parent container
    if op is PatchOp.SET or (op is PatchOp.DELETE and not patch.has_value):
        if not path:
            _drop(patch, "cannot delete the item root")
            return mirror
        parent = navigate_path(mirror, path, end=-1)
        if parent is MISSING:
            _drop(patch, "parent not found")
            return mirror
        step = path[-1]
        if op is PatchOp.SET:
            if not set_at(parent, step, copy.deepcopy(patch.value)):
                _drop(patch, f"cannot assign {step!r} on {type(parent).__name__}")
        elif not delete_at(parent, step):
            _drop(patch, f"no slot {step!r} to delete")
        return mirror

    # Element and container operations act on the container itself
    target = navigate_path(mirror, path)
    if target is MISSING:
        _drop(patch, "target not found")
        return mirror

    if op is PatchOp.ADD:
        applied = add_to_set(target, copy.deepcopy(patch.value))
    elif op is PatchOp.DELETE:
        applied = discard_from_set(target, patch.value)
    else:
        applied = clear_container(target)

    if not applied:
        _drop(patch, f"unsupported on {type(target).__name__}")
    return mirror


def apply_patches(mirror: Any, patches: Iterable[Patch]) -> Any:
    """Fold ``patches`` onto ``mirror`` in order and return the final root."""
    for patch in patches:
        mirror = apply_patch(mirror, patch)
    return mirror
