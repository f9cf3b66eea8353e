from __future__ import annotations

from collections import OrderedDict, deque
from typing import Callable, Deque, Generic, Iterable, Iterator, List, Optional, Tuple, TypeVar

T = TypeVar("T")
V = TypeVar("V")


class RingBuffer(Generic[T]):
    """Fixed-capacity FIFO. Appending past capacity evicts the oldest item.

    Evicted items are handed to ``on_evict`` so callers can route them to cold
    storage instead of losing them.
    """

    def __init__(
        self,
        maxlen: int,
        items: Iterable[T] = (),
        on_evict: Optional[Callable[[T], None]] = None,
    ):
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self.maxlen = maxlen
        self.on_evict = on_evict
        self._items: Deque[T] = deque()
        for item in items:
            self.append(item)

    def append(self, item: T) -> None:
        if len(self._items) >= self.maxlen:
            old = self._items.popleft()
            if self.on_evict is not None:
                self.on_evict(old)
        self._items.append(item)

    def extend(self, items: Iterable[T]) -> None:
        for item in items:
            self.append(item)

    def pop_oldest(self, n: int) -> List[T]:
        """Remove and return up to n oldest items (no eviction callback)."""
        out = []
        for _ in range(min(n, len(self._items))):
            out.append(self._items.popleft())
        return out

    def recent(self, n: int) -> List[T]:
        """Newest first."""
        if n <= 0:
            return []
        return list(reversed(self._items))[:n]

    def tail(self, n: int) -> List[T]:
        """Last n items in insertion order."""
        if n <= 0:
            return []
        items = list(self._items)
        return items[-n:]

    def last(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def to_list(self) -> List[T]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


class LRUMap(Generic[V]):
    """Insertion/touch ordered map with a size cap; the stalest key is evicted."""

    def __init__(self, maxlen: int, items: Iterable[Tuple[str, V]] = ()):
        self.maxlen = maxlen
        self._data: "OrderedDict[str, V]" = OrderedDict()
        for k, v in items:
            self.put(k, v)

    def put(self, key: str, value: V) -> None:
        if key in self._data:
            self._data.move_to_end(key)
        self._data[key] = value
        while len(self._data) > self.maxlen:
            self._data.popitem(last=False)

    def get(self, key: str, default: Optional[V] = None) -> Optional[V]:
        return self._data.get(key, default)

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def items(self) -> List[Tuple[str, V]]:
        return list(self._data.items())

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)
