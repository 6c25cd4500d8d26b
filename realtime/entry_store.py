"""
EntryStore - ordered, deduplicated entries for the monitored file.

Entries are kept in arrival (file) order and never removed one by one;
the only bulk removal is ``clear()``.  Aggregate counts are maintained
incrementally on append.

Readers take an ``EntrySnapshot``: an immutable view bounded by the
length at snapshot time, paired with the counts computed for exactly
that prefix.  Because the backing list is only ever appended to (and
replaced wholesale on ``clear()``), snapshots stay valid and consistent
while the writer keeps appending.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from typing import Iterable, Iterator, overload

from events.log_models import LevelCounts, LogEntry

logger = logging.getLogger(__name__)


class EntrySnapshot(Sequence[LogEntry]):
    """Read-only, fixed-length view over the store's entries."""

    __slots__ = ("_entries", "_length", "counts")

    def __init__(self, entries: list[LogEntry], length: int, counts: LevelCounts) -> None:
        self._entries = entries
        self._length = length
        self.counts = counts

    def __len__(self) -> int:
        return self._length

    @overload
    def __getitem__(self, index: int) -> LogEntry: ...

    @overload
    def __getitem__(self, index: slice) -> list[LogEntry]: ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self._entries[i] for i in range(*index.indices(self._length))]
        if index < 0:
            index += self._length
        if not 0 <= index < self._length:
            raise IndexError("snapshot index out of range")
        return self._entries[index]

    def __iter__(self) -> Iterator[LogEntry]:
        for i in range(self._length):
            yield self._entries[i]


class EntryStore:
    """Append-only entry collection with O(k) incremental counts.

    Thread-safe: the lock is held only while an update is applied.

    Usage::

        store = EntryStore()
        store.append(entries)
        snap = store.snapshot()
        snap.counts.total == len(snap)
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[LogEntry] = []
        self._ids: set[str] = set()
        self._counts = LevelCounts()

    # ── Mutation ────────────────────────────────────────────────────────

    def append(self, entries: Iterable[LogEntry]) -> list[LogEntry]:
        """Append entries in arrival order, skipping ids already stored.

        Returns the entries actually added.
        """
        with self._lock:
            added: list[LogEntry] = []
            for entry in entries:
                if entry.id in self._ids:
                    continue
                self._ids.add(entry.id)
                self._entries.append(entry)
                added.append(entry)
            self._counts = self._counts.add(added)
        return added

    def clear(self) -> None:
        """Drop every entry (reset or explicit reload)."""
        with self._lock:
            # New list object: outstanding snapshots keep the old one
            self._entries = []
            self._ids = set()
            self._counts = LevelCounts()

    def recount(self) -> LevelCounts:
        """Recompute counts by full rescan."""
        with self._lock:
            self._counts = LevelCounts.from_entries(self._entries)
            return self._counts

    # ── Queries ─────────────────────────────────────────────────────────

    def snapshot(self) -> EntrySnapshot:
        with self._lock:
            return EntrySnapshot(self._entries, len(self._entries), self._counts)

    @property
    def counts(self) -> LevelCounts:
        return self._counts

    def __len__(self) -> int:
        return len(self._entries)
