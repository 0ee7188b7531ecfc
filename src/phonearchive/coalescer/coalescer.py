"""Coalescing engine: dedup by content hash, retrieve in timestamp order."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Iterable, Protocol, TypeVar, runtime_checkable

from phonearchive.core.errors import OperationCancelledError

logger = logging.getLogger(__name__)

# Cancellation is polled once per this many entries in bulk operations.
CANCEL_CHECK_INTERVAL = 100


@runtime_checkable
class Entry(Protocol):
    """Anything the coalescer can hold.

    ``hash()`` is the identity (a stable digest of the semantic fields),
    ``timestamp()`` a timezone-aware UTC datetime, ``year()`` its UTC year.
    """

    def hash(self) -> str: ...

    def timestamp(self) -> datetime: ...

    def year(self) -> int: ...


T = TypeVar("T", bound=Entry)


@dataclass
class Summary:
    """Counts for one coalescing session."""

    initial: int = 0
    final: int = 0
    added: int = 0
    duplicates: int = 0
    rejected: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "initial": self.initial,
            "final": self.final,
            "added": self.added,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "errors": self.errors,
        }


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


class Coalescer(Generic[T]):
    """Deduplicating, order-preserving collection of entries.

    Entries are keyed by ``hash()``; the first entry seen for a hash wins.
    Retrieval sorts by timestamp with a stable sort, so entries sharing a
    timestamp come back in insertion order. All methods are safe to call
    from multiple threads.
    """

    def __init__(self):
        self._entries: dict[str, T] = {}
        self._initial = 0
        self._duplicates = 0
        self._lock = threading.Lock()

    def load_existing(
        self, entries: Iterable[T], cancel: threading.Event | None = None,
    ) -> int:
        """Seed the collection with records already in the repository.

        Only net-new hashes count toward ``initial``. Returns the number of
        entries inserted. Raises ``OperationCancelledError`` when ``cancel``
        is set; entries inserted before that point are kept.
        """
        if _cancelled(cancel):
            raise OperationCancelledError("load_existing cancelled")
        inserted = 0
        with self._lock:
            for i, entry in enumerate(entries):
                if i % CANCEL_CHECK_INTERVAL == 0 and _cancelled(cancel):
                    raise OperationCancelledError("load_existing cancelled")
                key = entry.hash()
                if key in self._entries:
                    continue
                self._entries[key] = entry
                self._initial += 1
                inserted += 1
        logger.debug("loaded %d existing entries", inserted)
        return inserted

    def add(self, entry: T, cancel: threading.Event | None = None) -> bool:
        """Insert ``entry`` unless its hash is already present.

        Returns ``True`` on insert. A duplicate returns ``False`` and bumps
        the duplicate counter. A cancelled call returns ``False`` and
        changes nothing.
        """
        if _cancelled(cancel):
            return False
        key = entry.hash()
        with self._lock:
            if key in self._entries:
                self._duplicates += 1
                return False
            self._entries[key] = entry
            return True

    def get_all(self, cancel: threading.Event | None = None) -> list[T]:
        """All entries, ascending by timestamp, ties in insertion order.

        Raises ``OperationCancelledError`` if ``cancel`` is already set.
        """
        if _cancelled(cancel):
            raise OperationCancelledError("get_all cancelled")
        with self._lock:
            snapshot = list(self._entries.values())
        return sorted(snapshot, key=lambda e: e.timestamp())

    def get_by_year(self, year: int, cancel: threading.Event | None = None) -> list[T]:
        """Entries whose UTC year is ``year``, in ``get_all`` order."""
        if _cancelled(cancel):
            raise OperationCancelledError("get_by_year cancelled")
        with self._lock:
            snapshot = [e for e in self._entries.values() if e.year() == year]
        return sorted(snapshot, key=lambda e: e.timestamp())

    def years(self) -> list[int]:
        """Distinct UTC years present, ascending."""
        with self._lock:
            return sorted({e.year() for e in self._entries.values()})

    def get_summary(self) -> Summary:
        with self._lock:
            final = len(self._entries)
            return Summary(
                initial=self._initial,
                final=final,
                added=final - self._initial,
                duplicates=self._duplicates,
            )

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._initial = 0
            self._duplicates = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
