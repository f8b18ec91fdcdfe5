"""
Shard planning for parallel workers.

Splits N ordered items into at most K contiguous, non-overlapping
[start, end) ranges that together cover [0, N). Empty shards are never
produced.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence, TypeVar

T = TypeVar('T')


@dataclass(frozen=True)
class Shard:
    """Contiguous slice [start, end) of the work list"""
    index: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start

    def to_dict(self) -> dict:
        return {'index': self.index, 'start': self.start, 'end': self.end}

    @classmethod
    def from_dict(cls, d: dict) -> 'Shard':
        return cls(index=int(d['index']), start=int(d['start']), end=int(d['end']))


def plan_shards(n_items: int, shard_count: int, balanced: bool = True) -> List[Shard]:
    """
    Plan shards for n_items across shard_count workers.

    balanced=True spreads the remainder over the leading shards so sizes
    differ by at most one (237 / 5 -> 48, 48, 47, 47, 47).
    balanced=False uses a fixed ceil(n/k) stride (237 / 5 -> 48 x4, 45),
    dropping shards that would start past the end.
    """
    if shard_count < 1:
        raise ValueError(f"shard_count must be >= 1, got {shard_count}")
    if n_items < 0:
        raise ValueError(f"n_items must be >= 0, got {n_items}")
    if n_items == 0:
        return []

    shards = []

    if balanced:
        k = min(shard_count, n_items)
        base, remainder = divmod(n_items, k)
        start = 0
        for i in range(k):
            end = start + base + (1 if i < remainder else 0)
            shards.append(Shard(i, start, end))
            start = end
        return shards

    chunk_size = math.ceil(n_items / shard_count)
    for i in range(shard_count):
        start = i * chunk_size
        if start >= n_items:
            break
        shards.append(Shard(i, start, min((i + 1) * chunk_size, n_items)))
    return shards


def split_items(items: Sequence[T], shards: List[Shard]) -> List[List[T]]:
    return [list(items[s.start:s.end]) for s in shards]
