"""Repository marker file: identifies a directory as a phonearchive repository."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import yaml

from phonearchive import __version__
from phonearchive.core.errors import RepositoryError, atomic_write
from phonearchive.repository import layout

CURRENT_VERSION = "1"
SUPPORTED_VERSIONS = frozenset({CURRENT_VERSION})
REQUIRED_KEYS = ("repository_structure_version", "created_at", "created_by")


@dataclass
class MarkerFile:
    repository_structure_version: str = CURRENT_VERSION
    created_at: str = ""
    created_by: str = ""

    @classmethod
    def new(cls) -> MarkerFile:
        return cls(
            repository_structure_version=CURRENT_VERSION,
            created_at=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            created_by=f"phonearchive v{__version__}",
        )

    def to_dict(self) -> dict:
        return {
            "repository_structure_version": self.repository_structure_version,
            "created_at": self.created_at,
            "created_by": self.created_by,
        }

    @property
    def supported(self) -> bool:
        return self.repository_structure_version in SUPPORTED_VERSIONS


def read_marker_data(repo_root: Path) -> dict:
    """Raw marker contents. Raises ``RepositoryError`` when unreadable."""
    path = Path(repo_root) / layout.MARKER_FILE
    try:
        data = yaml.safe_load(path.read_text())
    except (yaml.YAMLError, OSError, UnicodeDecodeError) as exc:
        raise RepositoryError(f"cannot read marker file: {exc}") from exc
    if not isinstance(data, dict):
        raise RepositoryError("marker file is not a mapping")
    return data


def load_marker(repo_root: Path) -> MarkerFile:
    data = read_marker_data(repo_root)
    return MarkerFile(
        repository_structure_version=str(data.get("repository_structure_version", "")),
        created_at=str(data.get("created_at", "")),
        created_by=str(data.get("created_by", "")),
    )


def write_marker(repo_root: Path, marker: MarkerFile) -> None:
    content = yaml.safe_dump(marker.to_dict(), default_flow_style=False, sort_keys=False)
    atomic_write(Path(repo_root) / layout.MARKER_FILE, content)
