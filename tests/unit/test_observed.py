"""Unit tests for observed handles and the patches they emit."""

import datetime
from collections import defaultdict
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import List

import numpy as np
import pytest

from statesync import (
    MISSING,
    ObservedMap,
    ObservedRecord,
    ObservedSequence,
    ObservedSet,
    Patch,
    PatchOp,
    observe,
    unwrap,
)


@dataclass
class Counter:
    count: int = 0
    history: List[int] = field(default_factory=list)

    def bump(self):
        self.count += 1
        self.history.append(self.count)


def set_patch(path, value):
    return Patch(op=PatchOp.SET, key="item", path=path, value=value)


def delete_patch(path, value=MISSING):
    return Patch(op=PatchOp.DELETE, key="item", path=path, value=value)


@pytest.fixture
def track(recorder):
    """Observe a value under key 'item' and record its patches."""

    def _track(value):
        return observe(value, "item", [], recorder.append)

    return _track


@pytest.mark.unit
@pytest.mark.observed
class TestObserve:
    """observe() picks a handle per container kind."""

    def test_handle_types_follow_container_kind(self, track):
        assert isinstance(track({}), ObservedMap)
        assert isinstance(track([]), ObservedSequence)
        assert isinstance(track(set()), ObservedSet)
        assert isinstance(track(SimpleNamespace()), ObservedRecord)

    def test_leaves_are_returned_untouched(self, track):
        when = datetime.date(2024, 5, 1)
        assert track(when) is when
        assert track(7) == 7

    def test_unwrap_returns_raw_target(self, track):
        raw = {"a": [1]}
        handle = track(raw)
        assert unwrap(handle) is raw
        assert unwrap(handle["a"]) is raw["a"]
        assert unwrap(raw) is raw

    def test_handles_compare_equal_to_their_targets(self, track):
        handle = track({"a": [1, 2]})
        assert handle == {"a": [1, 2]}
        assert handle["a"] == [1, 2]
        assert handle != {"a": []}

    def test_child_handles_are_not_cached(self, track):
        """Each read wraps afresh; handles are equal but not identical"""
        handle = track({"a": {"b": 1}})
        assert handle["a"] is not handle["a"]
        assert handle["a"] == handle["a"]

    def test_reads_emit_nothing(self, track, recorder):
        handle = track({"a": [1, {"b": 2}], "s": {1}})
        list(handle.items())
        handle["a"][1]["b"]
        len(handle["s"])
        assert recorder == []


@pytest.mark.unit
@pytest.mark.observed
class TestObservedMap:
    """Map handles emit set, delete and clear at key paths."""

    def test_assignment_emits_set(self, track, recorder):
        handle = track({})
        handle["a"] = 1
        assert recorder == [set_patch(["a"], 1)]

    def test_nested_assignment_uses_full_path(self, track, recorder):
        handle = track({"user": {"profile": {}}})
        handle["user"]["profile"]["name"] = "ada"
        assert recorder == [set_patch(["user", "profile", "name"], "ada")]

    def test_delete_emits_delete_without_value(self, track, recorder):
        handle = track({"a": 1})
        del handle["a"]
        assert recorder == [delete_patch(["a"])]

    def test_pop_of_absent_key_emits_nothing(self, track, recorder):
        handle = track({})
        assert handle.pop("x", None) is None
        with pytest.raises(KeyError):
            handle.pop("x")
        assert recorder == []

    def test_clear_emits_single_patch_unless_empty(self, track, recorder):
        handle = track({"a": 1, "b": 2})
        handle.clear()
        handle.clear()
        assert recorder == [Patch(op=PatchOp.CLEAR, key="item", path=[])]

    def test_update_emits_one_set_per_key(self, track, recorder):
        handle = track({})
        handle.update({"a": 1, "b": 2})
        assert recorder == [set_patch(["a"], 1), set_patch(["b"], 2)]

    def test_setdefault_only_emits_when_inserting(self, track, recorder):
        handle = track({"a": 1})
        handle.setdefault("a", 5)
        handle.setdefault("b", 5)
        assert recorder == [set_patch(["b"], 5)]

    def test_setdefault_returns_an_observed_handle(self, track, recorder):
        handle = track({})
        tags = handle.setdefault("tags", [])
        tags.append("x")
        assert isinstance(tags, ObservedSequence)
        assert recorder == [set_patch(["tags"], []), set_patch(["tags", 0], "x")]

    def test_default_factory_insertions_are_emitted(self, track, recorder):
        raw = {"groups": defaultdict(list)}
        handle = track(raw)
        handle["groups"]["a"].append(1)
        assert raw["groups"] == {"a": [1]}
        assert recorder == [set_patch(["groups", "a"], []), set_patch(["groups", "a", 0], 1)]

    def test_get_does_not_run_default_factory(self, track, recorder):
        raw = defaultdict(list)
        handle = track(raw)
        assert handle.get("a") is None
        assert "a" not in raw
        assert recorder == []

    def test_assigning_a_handle_stores_the_raw_value(self, track, recorder):
        raw = {"src": {"x": 1}}
        handle = track(raw)
        handle["copy"] = handle["src"]
        assert type(raw["copy"]) is dict
        assert recorder == [set_patch(["copy"], {"x": 1})]

    def test_non_string_keys_are_path_steps(self, track, recorder):
        handle = track({})
        handle[3] = "three"
        assert recorder == [set_patch([3], "three")]


@pytest.mark.unit
@pytest.mark.observed
class TestObservedSequence:
    """Sequence handles emit per-slot patches or whole-sequence sets."""

    def test_append_sets_next_index(self, track, recorder):
        handle = track({"todos": []})
        handle["todos"].append({"title": "docs"})
        handle["todos"].append({"title": "tests"})
        assert recorder == [
            set_patch(["todos", 0], {"title": "docs"}),
            set_patch(["todos", 1], {"title": "tests"}),
        ]

    def test_extend_appends_each_element(self, track, recorder):
        handle = track([1])
        handle.extend([2, 3])
        assert recorder == [set_patch([1], 2), set_patch([2], 3)]

    def test_negative_index_assignment_is_normalized(self, track, recorder):
        handle = track([1, 2, 3])
        handle[-1] = 30
        assert recorder == [set_patch([2], 30)]

    def test_insert_before_end_sets_whole_sequence(self, track, recorder):
        handle = track([2, 3])
        handle.insert(0, 1)
        assert recorder == [set_patch([], [1, 2, 3])]

    def test_delete_and_pop_emit_slot_deletes(self, track, recorder):
        handle = track([1, 2, 3, 4])
        del handle[0]
        assert handle.pop() == 4
        assert handle.pop(-2) == 2
        assert recorder == [delete_patch([0]), delete_patch([2]), delete_patch([0])]

    def test_remove_deletes_first_match(self, track, recorder):
        handle = track(["a", "b", "a"])
        handle.remove("a")
        assert recorder == [delete_patch([0])]

    def test_slice_operations_set_whole_sequence(self, track, recorder):
        handle = track([1, 2, 3, 4])
        handle[1:3] = [20, 30]
        del handle[:1]
        assert recorder == [
            set_patch([], [1, 20, 30, 4]),
            set_patch([], [20, 30, 4]),
        ]

    def test_sort_and_reverse_set_whole_sequence(self, track, recorder):
        handle = track({"nums": [3, 1, 2]})
        handle["nums"].sort()
        handle["nums"].reverse()
        assert recorder == [
            set_patch(["nums"], [1, 2, 3]),
            set_patch(["nums"], [3, 2, 1]),
        ]

    def test_sort_of_single_element_emits_nothing(self, track, recorder):
        handle = track([1])
        handle.sort()
        handle.reverse()
        assert recorder == []

    def test_iteration_wraps_elements(self, track, recorder):
        handle = track([{"done": False}, {"done": False}])
        for todo in handle:
            todo["done"] = True
        assert recorder == [set_patch([0, "done"], True), set_patch([1, "done"], True)]

    def test_slice_reads_return_raw_values(self, track):
        handle = track([[1], [2]])
        assert handle[:1] == [[1]]
        assert type(handle[:1][0]) is list


@pytest.mark.unit
@pytest.mark.observed
class TestObservedSet:
    """Set handles address elements by value."""

    def test_add_emits_add_at_set_path(self, track, recorder):
        handle = track({"tags": {"a"}})
        handle["tags"].add("b")
        assert recorder == [Patch(op=PatchOp.ADD, key="item", path=["tags"], value="b")]

    def test_adding_present_element_emits_nothing(self, track, recorder):
        handle = track({1})
        handle.add(1)
        assert recorder == []

    def test_discard_emits_delete_with_value(self, track, recorder):
        handle = track({1, 2})
        handle.discard(1)
        handle.discard(99)
        assert recorder == [delete_patch([], 1)]

    def test_remove_of_absent_element_raises(self, track, recorder):
        handle = track(set())
        with pytest.raises(KeyError):
            handle.remove(1)
        assert recorder == []

    def test_in_place_union_adds_each_new_element(self, track, recorder):
        handle = track({1})
        handle |= {1, 2, 3}
        assert {p.value for p in recorder} == {2, 3}
        assert all(p.op is PatchOp.ADD for p in recorder)

    def test_operators_return_plain_sets(self, track):
        handle = track({1, 2})
        result = handle | {3}
        assert type(result) is set
        assert result == {1, 2, 3}

    def test_clear_emits_clear(self, track, recorder):
        handle = track({1})
        handle.clear()
        assert recorder == [Patch(op=PatchOp.CLEAR, key="item", path=[])]


@pytest.mark.unit
@pytest.mark.observed
class TestObservedRecord:
    """Record handles observe attribute writes, including inside methods."""

    def test_attribute_write_emits_set(self, track, recorder):
        handle = track(SimpleNamespace(name="a"))
        handle.name = "b"
        assert recorder == [set_patch(["name"], "b")]

    def test_attribute_delete_emits_delete(self, track, recorder):
        handle = track(SimpleNamespace(name="a"))
        del handle.name
        assert recorder == [delete_patch(["name"])]

    def test_methods_run_against_the_handle(self, track, recorder):
        raw = Counter()
        handle = track(raw)
        handle.bump()
        assert raw.count == 1
        assert recorder == [set_patch(["count"], 1), set_patch(["history", 0], 1)]

    def test_class_level_values_are_not_wrapped(self, track, recorder):
        class Holder:
            shared = ["class"]

            def __init__(self):
                self.own = []

            @property
            def view(self):
                return self.own

        handle = track(Holder())
        assert isinstance(handle.own, ObservedSequence)
        assert type(handle.shared) is list
        assert type(handle.view) is list
        handle.own.append(1)
        assert recorder == [set_patch(["own", 0], 1)]

    def test_missing_attribute_raises_attribute_error(self, track):
        handle = track(SimpleNamespace())
        with pytest.raises(AttributeError):
            handle.nothing


@pytest.mark.unit
@pytest.mark.observed
class TestPatchValueIsolation:
    """Patch values are snapshots taken at emission time."""

    def test_later_mutation_does_not_leak_into_queued_patch(self, track, recorder):
        raw = {}
        handle = track(raw)
        handle["cfg"] = {"retries": 1}
        raw["cfg"]["retries"] = 5
        assert recorder[0].value == {"retries": 1}

    def test_whole_sequence_patch_is_a_copy(self, track, recorder):
        raw = [2, 1]
        handle = track(raw)
        handle.sort()
        raw.append(3)
        assert recorder[0].value == [1, 2]


@pytest.mark.unit
@pytest.mark.observed
class TestOpaqueLeaves:
    """In-place changes to opaque leaves are invisible; replacement is a set."""

    def test_in_place_array_write_emits_nothing(self, track, recorder):
        handle = track({"weights": np.zeros(3)})
        handle["weights"][0] = 1.0
        assert recorder == []

    def test_replacing_array_emits_set(self, track, recorder):
        handle = track({"weights": np.zeros(2)})
        handle["weights"] = np.ones(2)
        assert len(recorder) == 1
        assert recorder[0].path == ["weights"]
        np.testing.assert_array_equal(recorder[0].value, np.ones(2))

    def test_replacing_date_emits_set(self, track, recorder):
        handle = track({"due": datetime.date(2024, 1, 1)})
        handle["due"] = handle["due"] + datetime.timedelta(days=1)
        assert recorder == [set_patch(["due"], datetime.date(2024, 1, 2))]
