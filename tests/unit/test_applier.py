"""Unit tests for replaying patches onto mirrors."""

import logging
from types import SimpleNamespace

import pytest

from statesync import MISSING, Patch, PatchOp, apply_patch, apply_patches


def p(op, path=(), value=MISSING):
    return Patch(op=op, key="k", path=list(path), value=value)


@pytest.mark.unit
@pytest.mark.applier
class TestRootReplacement:
    def test_root_set_returns_new_value(self):
        assert apply_patch({"old": 1}, p("set", [], {"new": 2})) == {"new": 2}

    def test_root_set_installs_a_copy(self):
        value = {"nested": [1]}
        patch = p("set", [], value)
        mirror = apply_patch(None, patch)
        value["nested"].append(2)
        assert mirror == {"nested": [1]}

    def test_root_set_to_none(self):
        patch = Patch(op=PatchOp.SET, key="k", path=[], value=None)
        assert apply_patch({"a": 1}, patch) is None


@pytest.mark.unit
@pytest.mark.applier
class TestSlotOperations:
    """set and slot delete act on the parent of the final step."""

    def test_map_set_and_delete(self):
        mirror = {"a": 1}
        mirror = apply_patches(mirror, [p("set", ["b"], 2), p("delete", ["a"])])
        assert mirror == {"b": 2}

    def test_nested_set_mutates_in_place(self):
        mirror = {"user": {"name": "a"}}
        inner = mirror["user"]
        result = apply_patch(mirror, p("set", ["user", "name"], "b"))
        assert result is mirror
        assert inner == {"name": "b"}

    def test_sequence_set_at_end_appends(self):
        mirror = {"todos": ["a"]}
        apply_patch(mirror, p("set", ["todos", 1], "b"))
        assert mirror == {"todos": ["a", "b"]}

    def test_sequence_delete_shifts(self):
        mirror = [1, 2, 3]
        apply_patch(mirror, p("delete", [0]))
        assert mirror == [2, 3]

    def test_record_attribute_set_and_delete(self):
        mirror = SimpleNamespace(a=1)
        apply_patch(mirror, p("set", ["b"], 2))
        apply_patch(mirror, p("delete", ["a"]))
        assert vars(mirror) == {"b": 2}

    def test_installed_values_are_copies(self):
        value = {"x": 1}
        patch = p("set", ["cfg"], value)
        mirror = apply_patch({}, patch)
        mirror["cfg"]["x"] = 2
        assert patch.value == {"x": 1}


@pytest.mark.unit
@pytest.mark.applier
class TestContainerOperations:
    """add, element delete and clear act on the container at the full path."""

    def test_set_round_trip(self):
        mirror = {"tags": {1}}
        apply_patch(mirror, p("add", ["tags"], 2))
        assert mirror["tags"] == {1, 2}
        apply_patch(mirror, p("delete", ["tags"], 1))
        assert mirror["tags"] == {2}
        apply_patch(mirror, p("clear", ["tags"]))
        assert mirror["tags"] == set()

    def test_root_level_set_operations(self):
        mirror = {1}
        mirror = apply_patches(mirror, [p("add", [], 2), p("delete", [], 1)])
        assert mirror == {2}

    def test_clear_empties_maps_and_sequences(self):
        mirror = {"a": {"x": 1}, "b": [1, 2]}
        apply_patches(mirror, [p("clear", ["a"]), p("clear", ["b"])])
        assert mirror == {"a": {}, "b": []}

    def test_root_clear(self):
        mirror = {"a": 1}
        assert apply_patch(mirror, p("clear", [])) == {}


@pytest.mark.unit
@pytest.mark.applier
class TestTolerance:
    """Unresolvable patches are silent no-ops."""

    def test_missing_parent_is_dropped_and_later_patches_apply(self, caplog):
        mirror = {"a": 1}
        with caplog.at_level(logging.DEBUG):
            mirror = apply_patches(
                mirror,
                [p("set", ["missing", "deep"], 1), p("set", ["b"], 2)],
            )
        assert mirror == {"a": 1, "b": 2}
        assert "Dropping" in caplog.text

    def test_add_on_non_set_is_a_no_op(self):
        mirror = {"items": [1]}
        apply_patch(mirror, p("add", ["items"], 2))
        assert mirror == {"items": [1]}

    def test_sequence_gap_is_a_no_op(self):
        mirror = [1]
        apply_patch(mirror, p("set", [5], 9))
        assert mirror == [1]

    def test_delete_of_root_slot_is_a_no_op(self):
        mirror = {"a": 1}
        assert apply_patch(mirror, p("delete", [])) == {"a": 1}

    def test_patches_against_uninitialized_mirror_are_dropped(self):
        assert apply_patch(None, p("set", ["a"], 1)) is None
        assert apply_patch(None, p("clear", [])) is None

    def test_clear_on_record_is_a_no_op(self):
        mirror = {"r": SimpleNamespace(a=1)}
        apply_patch(mirror, p("clear", ["r"]))
        assert mirror["r"].a == 1


@pytest.mark.unit
@pytest.mark.applier
@pytest.mark.parametrize(
    "patch, start",
    [
        (Patch(op=PatchOp.SET, key="k", path=["a"], value=1), {"a": 0}),
        (Patch(op=PatchOp.CLEAR, key="k", path=["s"]), {"s": {1, 2}}),
        (Patch(op=PatchOp.ADD, key="k", path=["s"], value=3), {"s": {1}}),
        (Patch(op=PatchOp.DELETE, key="k", path=["s"], value=1), {"s": {1, 2}}),
        (Patch(op=PatchOp.DELETE, key="k", path=["a"]), {"a": 1, "b": 2}),
    ],
)
def test_applying_twice_matches_applying_once(patch, start):
    """Reapplying set, clear and set-element patches never raises or changes the result"""
    import copy

    once = apply_patch(copy.deepcopy(start), patch)
    twice = apply_patch(apply_patch(copy.deepcopy(start), patch), patch)
    assert once == twice
