"""Tests for SubframeIndex and sub-frame instants."""

import pytest

from src.domain.subframes import SubframeIndex, subframe_instant
from src.domain.time import FrameClock


class TestSubframeIndex:
    """Test bucket construction and lookups."""

    def test_rebuild_groups_by_division(self):
        index = SubframeIndex()
        index.rebuild(["a", "b", "c", "d"], {"a": 2, "b": 0, "c": 4, "d": 2}.get)

        assert index.all_divisions() == (4, 2)
        assert index.objects_at_division(2) == ("a", "d")
        assert index.objects_at_division(4) == ("c",)
        assert len(index) == 3

    def test_global_schedule_objects_are_not_stored(self):
        index = SubframeIndex()
        index.rebuild(["a", "b", "c"], {"a": 0, "b": -3}.get)

        assert index.is_empty
        assert "a" not in index
        assert "c" not in index
        assert index.division_of("b") == 0

    def test_missing_division_is_empty_tuple(self):
        index = SubframeIndex()
        index.rebuild(["a"], lambda obj: 3)
        assert index.objects_at_division(7) == ()

    def test_rebuild_replaces_contents(self):
        index = SubframeIndex()
        index.rebuild(["a", "b"], lambda obj: 2)
        index.rebuild(["c"], lambda obj: 5)

        assert index.all_divisions() == (5,)
        assert "a" not in index
        assert index.division_of("c") == 5

    def test_duplicate_object_keeps_latest_division(self):
        divisions = iter([2, 4])
        index = SubframeIndex()
        index.rebuild(["a", "a"], lambda obj: next(divisions))

        assert index.division_of("a") == 4
        assert index.all_divisions() == (4,)
        assert index.objects_at_division(2) == ()

    def test_clear(self):
        index = SubframeIndex()
        index.rebuild(["a"], lambda obj: 2)
        index.clear()
        assert index.is_empty
        assert index.all_divisions() == ()


class TestSubframeInstant:
    """Test where each division lands inside a render frame."""

    def test_division_one_is_the_frame_itself(self):
        assert subframe_instant(3, 1) == FrameClock(3)

    def test_finer_divisions_land_earlier(self):
        assert subframe_instant(1, 2) == FrameClock(1, 0.5)
        assert subframe_instant(1, 4) == FrameClock(1, 0.25)
        assert subframe_instant(1, 4) < subframe_instant(1, 2)

    def test_non_positive_division_rejected(self):
        with pytest.raises(ValueError):
            subframe_instant(1, 0)
