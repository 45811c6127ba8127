"""
Bounded Collectors - fixed-memory samples over unbounded streams

ReservoirSample keeps a uniform random sample of N items from a stream of
unknown length (Algorithm R). TopN keeps the K best items under a sort key
without holding or re-sorting the full stream.

Both are used by the aggregation pass so that memory stays flat no matter
how many transactions are folded in.
"""

import bisect
import random
from typing import Callable, Generic, List, Optional, TypeVar

T = TypeVar('T')


class ReservoirSample(Generic[T]):
    """
    Uniform fixed-capacity sample.

    After n >= capacity calls to add(), every item seen has probability
    capacity / n of being present. Pass a seeded random.Random for
    reproducible samples.
    """

    def __init__(self, capacity: int, rng: Optional[random.Random] = None):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.seen = 0
        self._items: List[T] = []
        self._rng = rng or random.Random()

    def add(self, item: T) -> None:
        self.seen += 1
        if len(self._items) < self.capacity:
            self._items.append(item)
            return
        j = self._rng.randrange(self.seen)
        if j < self.capacity:
            self._items[j] = item

    @property
    def items(self) -> List[T]:
        return self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)


class TopN(Generic[T]):
    """
    Keeps the `capacity` smallest items by `key`, always sorted ascending.

    For "most recent first", pass a key that sorts newer items lower
    (e.g. the negated month ordinal). Ties keep arrival order, so the
    result equals a stable full sort of the stream truncated to capacity.
    """

    def __init__(self, capacity: int, key: Callable[[T], object]):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._key = key
        self._items: List[T] = []
        self._keys: list = []

    def add(self, item: T) -> None:
        k = self._key(item)
        if len(self._items) >= self.capacity:
            # Full: only a strictly better item displaces the current worst
            if not k < self._keys[-1]:
                return
            self._items.pop()
            self._keys.pop()
        idx = bisect.bisect_right(self._keys, k)
        self._keys.insert(idx, k)
        self._items.insert(idx, item)

    def result(self) -> List[T]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)
