"""Batch partitioning of listed objects into export groups.

Two modes:

- size-bounded: consecutive objects are packed into a group until adding
  the next one would push the group's byte total past the target; the
  group is then closed and the object opens the next group. Objects are
  never split, so an object larger than the target sits alone.
- pass-through: one group per object.

Both modes preserve listing order: concatenating the members of the
emitted groups gives back the input sequence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import reduce
from typing import Iterable, List, Optional, Sequence, Tuple

from querybench.lib.storage.base import SourceObject

logger = logging.getLogger(__name__)

__all__ = [
    "RAW_SUFFIX",
    "BatchGroup",
    "partition",
    "strip_raw_suffix",
]

# Raw files are gzip-compressed delimited text
RAW_SUFFIX = ".csv.gz"


@dataclass(frozen=True)
class BatchGroup:
    """An ordered, non-empty run of source objects and their destination."""

    index: int
    members: Tuple[SourceObject, ...]
    destination: str

    def __post_init__(self) -> None:
        if not self.members:
            raise ValueError("BatchGroup requires at least one member")

    @property
    def total_bytes(self) -> int:
        return sum(_size_of(m) for m in self.members)

    @property
    def source_uris(self) -> List[str]:
        return [m.uri for m in self.members]


def strip_raw_suffix(name: str, suffix: str = RAW_SUFFIX) -> str:
    """Remove ``suffix`` from the end of ``name``.

    Only a trailing occurrence is removed; the same text elsewhere in the
    name is left alone.
    """
    if suffix and name.endswith(suffix):
        return name[: -len(suffix)]
    return name


def _size_of(obj: SourceObject) -> int:
    # Unknown sizes count as zero bytes
    return obj.size or 0


# Fold state: (closed groups, members of the open group, open group's byte total)
_FoldState = Tuple[Tuple[Tuple[SourceObject, ...], ...], Tuple[SourceObject, ...], int]


def _pack_step(target: int):
    def step(state: _FoldState, obj: SourceObject) -> _FoldState:
        closed, current, total = state
        size = _size_of(obj)
        if current and total + size > target:
            return closed + (current,), (obj,), size
        return closed, current + (obj,), total + size

    return step


def _pack(objects: Iterable[SourceObject], target: int) -> List[Tuple[SourceObject, ...]]:
    initial: _FoldState = ((), (), 0)
    closed, current, _ = reduce(_pack_step(target), objects, initial)
    if current:
        closed = closed + (current,)
    return list(closed)


def partition(
    objects: Sequence[SourceObject],
    destination_root: str,
    target_bytes: Optional[int] = None,
) -> List[BatchGroup]:
    """Group ``objects`` for export.

    Args:
        objects: Listed objects, in listing order
        destination_root: Location the exported groups are written under
        target_bytes: Byte threshold per group; None selects pass-through mode

    Returns:
        Groups numbered from 0 in listing order. In size-bounded mode the
        destination of group ``i`` is ``{destination_root}/{i}``; in
        pass-through mode it is the object's name with the raw suffix removed.
    """
    root = destination_root.rstrip("/")

    if target_bytes is None:
        return [
            BatchGroup(
                index=i,
                members=(obj,),
                destination=f"{root}/{strip_raw_suffix(obj.name)}",
            )
            for i, obj in enumerate(objects)
        ]

    if target_bytes <= 0:
        raise ValueError(f"target_bytes must be positive, got {target_bytes}")

    groups = [
        BatchGroup(index=i, members=members, destination=f"{root}/{i}")
        for i, members in enumerate(_pack(objects, target_bytes))
    ]
    logger.debug(
        "Packed %d objects into %d groups (target %d bytes)",
        len(objects),
        len(groups),
        target_bytes,
    )
    return groups
