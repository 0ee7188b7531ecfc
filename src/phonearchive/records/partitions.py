"""Read access to the year-partitioned ``calls/`` and ``sms/`` directories."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator

from phonearchive.core.config import DEFAULT_MAX_XML_SIZE
from phonearchive.records.calls import read_calls
from phonearchive.records.sms import read_messages
from phonearchive.repository import layout
from phonearchive.security.xml import root_attribute

logger = logging.getLogger(__name__)

_READERS = {
    "calls": read_calls,
    "sms": read_messages,
}


class PartitionReader:
    """Iterate records stored under ``<repo>/<kind>/<kind>-YYYY.xml``."""

    def __init__(self, repo_root: Path, kind: str, max_size: int = DEFAULT_MAX_XML_SIZE):
        if kind not in _READERS:
            raise ValueError(f"unknown record kind: {kind!r}")
        self.repo_root = Path(repo_root)
        self.kind = kind
        self.max_size = max_size
        self._pattern = re.compile(rf"^{kind}-(\d{{4}})\.xml$")
        self.skipped = 0

    @property
    def directory(self) -> Path:
        return self.repo_root / layout.PARTITION_DIRS[self.kind]

    def available_years(self) -> list[int]:
        if not self.directory.is_dir():
            return []
        years = []
        for path in self.directory.iterdir():
            match = self._pattern.match(path.name)
            if match and path.is_file():
                years.append(int(match.group(1)))
        return sorted(years)

    def path_for(self, year: int) -> Path:
        return self.directory / layout.partition_filename(self.kind, year)

    def count(self, year: int) -> int:
        """Record count declared on the partition's root element."""
        value = root_attribute(self.path_for(year), "count", max_size=self.max_size)
        return int(value) if value and value.isdigit() else 0

    def iter_year(self, year: int) -> Iterator:
        path = self.path_for(year)
        if not path.exists():
            return iter(())
        return _READERS[self.kind](path, max_size=self.max_size)

    def iter_all(self) -> Iterator:
        """Every well-formed record across all years.

        Records whose fields cannot be parsed are logged and counted in
        ``skipped`` instead of being yielded.
        """
        for year in self.available_years():
            for record in self.iter_year(year):
                problems = record.format_errors()
                if problems:
                    self.skipped += 1
                    logger.warning(
                        "skipping malformed record in %s: %s",
                        self.path_for(year).name, ", ".join(problems),
                    )
                    continue
                yield record
