"""Checksum cache shared across validation runs."""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path

from phonearchive.repository.manifest import calculate_file_checksum

DEFAULT_MAX_ENTRIES = 10_000


@dataclass(frozen=True)
class CachedFile:
    checksum: str
    size: int
    mtime_ns: int


class ValidationCache:
    """Path -> last known (checksum, size, mtime).

    A cached checksum is reused only while the file's size and
    modification time are unchanged; anything else forces a re-hash.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries: OrderedDict[str, CachedFile] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def checksum(self, path: Path) -> str:
        """Hex sha256 of ``path``, from cache when the file is provably unchanged."""
        stat = path.stat()
        key = str(path)
        with self._lock:
            cached = self._entries.get(key)
            if (
                cached is not None
                and cached.size == stat.st_size
                and cached.mtime_ns == stat.st_mtime_ns
            ):
                self.hits += 1
                self._entries.move_to_end(key)
                return cached.checksum
            self.misses += 1

        digest = calculate_file_checksum(path)
        with self._lock:
            self._entries[key] = CachedFile(digest, stat.st_size, stat.st_mtime_ns)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return digest

    def get(self, path: Path) -> CachedFile | None:
        with self._lock:
            return self._entries.get(str(path))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
