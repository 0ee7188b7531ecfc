"""Create an empty, valid repository."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from phonearchive.core.errors import RepositoryError, atomic_write
from phonearchive.repository import layout
from phonearchive.repository.manifest import generate_manifest
from phonearchive.repository.marker import MarkerFile, write_marker
from phonearchive.repository.summary import RepositoryStats, write_summary

logger = logging.getLogger(__name__)


@dataclass
class InitResult:
    repo_root: Path
    created_dirs: list[str] = field(default_factory=list)
    created_files: list[str] = field(default_factory=list)
    dry_run: bool = False


def initialize_repository(repo_root: str | Path, dry_run: bool = False) -> InitResult:
    """Lay out a new repository at ``repo_root``.

    The target may be missing or an empty directory. An existing
    repository or a non-empty directory is refused.
    """
    repo_root = Path(repo_root)
    if repo_root.exists():
        if not repo_root.is_dir():
            raise RepositoryError(f"{repo_root} exists and is not a directory")
        if (repo_root / layout.MARKER_FILE).exists():
            raise RepositoryError(f"{repo_root} is already a repository")
        if any(repo_root.iterdir()):
            raise RepositoryError(f"{repo_root} is not empty")

    result = InitResult(repo_root=repo_root, dry_run=dry_run)
    result.created_dirs = list(layout.REQUIRED_DIRS)
    result.created_files = [layout.MARKER_FILE, *layout.REQUIRED_FILES]
    if dry_run:
        return result

    repo_root.mkdir(parents=True, exist_ok=True)
    for name in layout.REQUIRED_DIRS:
        (repo_root / name).mkdir(exist_ok=True)
    write_marker(repo_root, MarkerFile.new())
    atomic_write(repo_root / layout.CONTACTS_FILE, "contacts: []\n")
    write_summary(repo_root, RepositoryStats())
    generate_manifest(repo_root)
    logger.info("initialized repository at %s", repo_root)
    return result
