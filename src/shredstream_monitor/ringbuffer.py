# src/shredstream_monitor/ringbuffer.py
"""Bounded history containers.

RingBuffer keeps the last N items in insertion order and evicts oldest-first.
SlotHistory layers a slot-number index on top so each slot appears once and
later reports overwrite earlier ones.
"""

from collections import deque
from collections.abc import Iterator
from typing import Generic, TypeVar

from shredstream_monitor.models import SlotRecord

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Fixed-capacity, insertion-ordered store.

    Pushing into a full buffer drops the oldest item. That is the normal
    steady state, not an error.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._items: deque[T] = deque(maxlen=capacity)

    def __len__(self) -> int:
        """Return number of items in buffer."""
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        """Iterate oldest to newest."""
        return iter(self._items)

    @property
    def capacity(self) -> int:
        """Return maximum number of items the buffer can hold."""
        return self._items.maxlen or 0

    @property
    def is_empty(self) -> bool:
        """Return True if buffer has no items."""
        return len(self._items) == 0

    @property
    def is_full(self) -> bool:
        return len(self._items) == self.capacity

    def iter(self) -> Iterator[T]:
        """Return a fresh oldest-to-newest iterator.

        Each call starts over, so the sequence can be walked any number of
        times. Do not push while an iterator is live.
        """
        return iter(self._items)

    def push(self, item: T) -> T | None:
        """Append an item, returning the evicted item if the buffer was full."""
        evicted = self._items[0] if self.is_full else None
        self._items.append(item)
        return evicted

    def newest(self) -> T | None:
        """Return the most recently pushed item, or None if empty."""
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        """Empty the buffer."""
        self._items.clear()

    def freeze(self) -> tuple[T, ...]:
        """Return an immutable copy of buffer contents, oldest first."""
        return tuple(self._items)


class SlotHistory:
    """Last-N slots, one record per slot number.

    Insertion order is the order slots were first seen. Re-reporting a slot
    replaces its record but keeps its position, so a late final count for an
    old slot never pushes a newer slot out.
    """

    def __init__(self, capacity: int) -> None:
        self._order: RingBuffer[int] = RingBuffer(capacity)
        self._records: dict[int, SlotRecord] = {}

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, slot: object) -> bool:
        return slot in self._records

    @property
    def capacity(self) -> int:
        return self._order.capacity

    def get(self, slot: int) -> SlotRecord | None:
        """Return the stored record for a slot, if still in history."""
        return self._records.get(slot)

    def upsert(self, record: SlotRecord) -> SlotRecord | None:
        """Insert or overwrite the record for ``record.slot``.

        Returns:
            The record it replaced, or None for a newly seen slot.
        """
        previous = self._records.get(record.slot)
        if previous is None:
            evicted = self._order.push(record.slot)
            if evicted is not None:
                del self._records[evicted]
        self._records[record.slot] = record
        return previous

    def iter(self) -> Iterator[SlotRecord]:
        """Iterate records in first-seen order (oldest first)."""
        return (self._records[slot] for slot in self._order)

    def __iter__(self) -> Iterator[SlotRecord]:
        return self.iter()

    def clear(self) -> None:
        self._order.clear()
        self._records.clear()

    def freeze(self) -> tuple[SlotRecord, ...]:
        """Return an immutable copy of the records, oldest first."""
        return tuple(self.iter())
