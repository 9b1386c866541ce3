from __future__ import annotations

from typing import Generic, Iterable, Iterator, TypeVar

from toolrun.errors import InvalidArgument

T = TypeVar("T")

_EMPTY = object()


class RingBuffer(Generic[T]):
    """Fixed-capacity buffer that overwrites its oldest item once full.

    ``last(0)`` is the most recent push, ``last(1)`` the one before it, and so
    on. ``to_list()`` returns everything from oldest to newest, which is also
    the shape accepted as ``seed`` so a buffer can be rebuilt from a snapshot.
    """

    def __init__(self, capacity: int, seed: Iterable[T] | None = None) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise InvalidArgument(f"capacity must be a positive integer, got {capacity!r}")
        self._capacity = capacity
        self._items: list[object] = [_EMPTY] * capacity
        self._head = 0
        self._full = False
        if seed is not None:
            initial = list(seed)
            if len(initial) >= capacity:
                self._items = list(initial[len(initial) - capacity :])
                self._full = True
            else:
                self._items[: len(initial)] = initial
                self._head = len(initial)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def full(self) -> bool:
        return self._full

    def push(self, item: T) -> T:
        """Store ``item``, overwriting the oldest entry when full."""
        self._items[self._head] = item
        self._head += 1
        if self._head >= self._capacity:
            self._head = 0
            self._full = True
        return item

    def last(self, offset: int = 0) -> T | None:
        """Return the item ``offset`` steps back from the newest, or ``None``."""
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidArgument(f"offset must be a non-negative integer, got {offset!r}")
        if offset >= self.size():
            return None
        item = self._items[(self._head - offset - 1) % self._capacity]
        if item is _EMPTY:
            return None
        return item  # type: ignore[return-value]

    def size(self) -> int:
        return self._capacity if self._full else self._head

    def __len__(self) -> int:
        return self.size()

    def __iter__(self) -> Iterator[T]:
        return iter(self.to_list())

    def to_list(self) -> list[T]:
        """Items oldest first."""
        if self._full:
            ordered = self._items[self._head :] + self._items[: self._head]
        else:
            ordered = self._items[: self._head]
        return [item for item in ordered if item is not _EMPTY]  # type: ignore[misc]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RingBuffer):
            return NotImplemented
        return self._capacity == other._capacity and self.to_list() == other.to_list()

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self._capacity}, items={self.to_list()!r})"
