"""Tests for batch partitioning of listed objects."""

from __future__ import annotations

import pytest

from querybench.lib.partition import BatchGroup, partition, strip_raw_suffix
from querybench.lib.storage.base import SourceObject
from tests.conftest import PARQUET, RAW, make_objects


def _sizes(groups):
    return [[m.size for m in g.members] for g in groups]


class TestSizeBoundedMode:
    def test_packs_consecutive_objects_until_target(self) -> None:
        objects = make_objects(
            RAW, [(f"f{i}.csv.gz", size) for i, size in enumerate([100, 200, 50, 900, 10])]
        )

        groups = partition(objects, PARQUET, target_bytes=250)

        assert _sizes(groups) == [[100], [200, 50], [900], [10]]
        assert [g.index for g in groups] == [0, 1, 2, 3]
        assert [g.destination for g in groups] == [f"{PARQUET}/{i}" for i in range(4)]

    def test_order_is_preserved(self) -> None:
        objects = make_objects(RAW, [(f"f{i}", 40 + i) for i in range(20)])

        groups = partition(objects, PARQUET, target_bytes=100)

        flattened = [m for g in groups for m in g.members]
        assert flattened == objects

    def test_total_equal_to_target_stays_in_group(self) -> None:
        objects = make_objects(RAW, [("a", 100), ("b", 150)])

        groups = partition(objects, PARQUET, target_bytes=250)

        assert len(groups) == 1
        assert groups[0].total_bytes == 250

    def test_oversized_object_sits_alone(self) -> None:
        objects = make_objects(RAW, [("big", 1000), ("small", 1)])

        groups = partition(objects, PARQUET, target_bytes=10)

        assert _sizes(groups) == [[1000], [1]]

    def test_oversized_first_object_does_not_emit_empty_group(self) -> None:
        objects = make_objects(RAW, [("big", 1000)])

        groups = partition(objects, PARQUET, target_bytes=10)

        assert len(groups) == 1
        assert groups[0].members == tuple(objects)

    def test_every_multi_member_group_is_within_target(self) -> None:
        sizes = [5, 70, 30, 1, 99, 100, 3, 45, 60, 12]
        objects = make_objects(RAW, [(f"f{i}", s) for i, s in enumerate(sizes)])

        groups = partition(objects, PARQUET, target_bytes=100)

        for group in groups:
            assert len(group.members) == 1 or group.total_bytes <= 100

    def test_unknown_size_counts_as_zero(self) -> None:
        objects = make_objects(RAW, [("a", 90), ("b", None), ("c", 10)])

        groups = partition(objects, PARQUET, target_bytes=100)

        assert len(groups) == 1

    def test_empty_listing_yields_no_groups(self) -> None:
        assert partition([], PARQUET, target_bytes=100) == []

    def test_trailing_slash_on_destination(self) -> None:
        objects = make_objects(RAW, [("a", 1)])

        groups = partition(objects, PARQUET + "/", target_bytes=100)

        assert groups[0].destination == f"{PARQUET}/0"

    @pytest.mark.parametrize("target", [0, -5])
    def test_non_positive_target_rejected(self, target: int) -> None:
        with pytest.raises(ValueError):
            partition(make_objects(RAW, [("a", 1)]), PARQUET, target_bytes=target)


class TestPassThroughMode:
    def test_one_group_per_object(self) -> None:
        objects = make_objects(RAW, [("a.csv.gz", 10), ("b.csv.gz", 2000)])

        groups = partition(objects, PARQUET)

        assert [g.members for g in groups] == [(objects[0],), (objects[1],)]

    def test_destination_drops_raw_suffix(self) -> None:
        obj = SourceObject(
            name="2021/03/node1.csv.gz",
            uri=f"{RAW}/2021/03/node1.csv.gz",
            size=10,
        )

        (group,) = partition([obj], PARQUET)

        assert group.destination == f"{PARQUET}/2021/03/node1"


class TestStripRawSuffix:
    def test_strips_trailing_suffix(self) -> None:
        assert strip_raw_suffix("logs/a.csv.gz") == "logs/a"

    def test_leaves_inner_occurrence(self) -> None:
        assert strip_raw_suffix("a.csv.gz.bak") == "a.csv.gz.bak"
        assert strip_raw_suffix("x.csv.gz/y.csv.gz") == "x.csv.gz/y"

    def test_without_suffix_unchanged(self) -> None:
        assert strip_raw_suffix("a.parquet") == "a.parquet"


def test_batch_group_requires_members() -> None:
    with pytest.raises(ValueError):
        BatchGroup(index=0, members=(), destination=PARQUET)


def test_batch_group_source_uris() -> None:
    objects = make_objects(RAW, [("a", 1), ("b", 2)])
    group = BatchGroup(index=0, members=tuple(objects), destination=f"{PARQUET}/0")

    assert group.source_uris == [f"{RAW}/a", f"{RAW}/b"]
    assert group.total_bytes == 3
