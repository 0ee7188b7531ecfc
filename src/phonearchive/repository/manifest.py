"""Repository manifest (``files.yaml``) and its detached checksum."""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import yaml

from phonearchive import __version__
from phonearchive.core.errors import RepositoryError, atomic_write
from phonearchive.repository import layout

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"
CHECKSUM_PREFIX = "sha256:"

_CHUNK = 1024 * 1024


def calculate_file_checksum(path: Path) -> str:
    """Hex sha256 of a file, read in 1 MiB chunks."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def strip_prefix(checksum: str) -> str:
    if checksum.startswith(CHECKSUM_PREFIX):
        return checksum[len(CHECKSUM_PREFIX):]
    return checksum


@dataclass
class FileEntry:
    """One file recorded in the manifest."""

    name: str
    size: int
    checksum: str  # "sha256:<hex>"
    modified: str = ""

    @property
    def digest(self) -> str:
        return strip_prefix(self.checksum)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size,
            "checksum": self.checksum,
            "modified": self.modified,
        }


@dataclass
class FileManifest:
    version: str = MANIFEST_VERSION
    generated: str = ""
    generator: str = ""
    files: list[FileEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "generated": self.generated,
            "generator": self.generator,
            "files": [f.to_dict() for f in self.files],
        }

    def by_name(self) -> dict[str, FileEntry]:
        return {f.name: f for f in self.files}


def collect_repository_files(repo_root: Path) -> list[str]:
    """Repository-relative paths of every file the manifest should list.

    Symlinks are not followed. Temporary files left by interrupted atomic
    writes are skipped.
    """
    repo_root = Path(repo_root)
    found = []
    for dirpath, dirnames, filenames in os.walk(repo_root):
        dirnames.sort()
        for name in sorted(filenames):
            full = Path(dirpath) / name
            rel = full.relative_to(repo_root).as_posix()
            if rel in layout.MANIFEST_EXCLUDED or name.endswith(".tmp"):
                continue
            if full.is_symlink() or not full.is_file():
                continue
            found.append(rel)
    return sorted(found)


def build_manifest(repo_root: Path) -> FileManifest:
    repo_root = Path(repo_root)
    entries = []
    for rel in collect_repository_files(repo_root):
        path = repo_root / rel
        stat = path.stat()
        entries.append(FileEntry(
            name=rel,
            size=stat.st_size,
            checksum=CHECKSUM_PREFIX + calculate_file_checksum(path),
            modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            .strftime("%Y-%m-%dT%H:%M:%SZ"),
        ))
    return FileManifest(
        version=MANIFEST_VERSION,
        generated=datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        generator=f"phonearchive v{__version__}",
        files=entries,
    )


def write_manifest(repo_root: Path, manifest: FileManifest) -> str:
    """Write ``files.yaml`` then ``files.yaml.sha256``; return the manifest digest."""
    repo_root = Path(repo_root)
    content = yaml.safe_dump(manifest.to_dict(), default_flow_style=False, sort_keys=False)
    manifest_path = repo_root / layout.MANIFEST_FILE
    atomic_write(manifest_path, content)
    digest = hashlib.sha256(content.encode()).hexdigest()
    atomic_write(
        repo_root / layout.MANIFEST_CHECKSUM_FILE,
        f"{digest}  {layout.MANIFEST_FILE}\n",
    )
    logger.info("manifest written with %d entries", len(manifest.files))
    return digest


def generate_manifest(repo_root: Path) -> FileManifest:
    manifest = build_manifest(repo_root)
    write_manifest(repo_root, manifest)
    return manifest


def parse_manifest(data: object) -> FileManifest:
    """Build a ``FileManifest`` from decoded YAML.

    Entries keep whatever values the file holds; format checks are the
    validator's job. Raises ``RepositoryError`` when the document shape
    is wrong.
    """
    if not isinstance(data, dict):
        raise RepositoryError("manifest is not a mapping")
    raw_files = data.get("files") or []
    if not isinstance(raw_files, list):
        raise RepositoryError("manifest 'files' is not a list")
    files = []
    for raw in raw_files:
        if not isinstance(raw, dict):
            raise RepositoryError(f"manifest entry is not a mapping: {raw!r}")
        size = raw.get("size", 0)
        files.append(FileEntry(
            name=str(raw.get("name", "")),
            size=size if isinstance(size, int) else -1,
            checksum=str(raw.get("checksum", "")),
            modified=str(raw.get("modified", "")),
        ))
    return FileManifest(
        version=str(data.get("version", "")),
        generated=str(data.get("generated", "")),
        generator=str(data.get("generator", "")),
        files=files,
    )


def load_manifest(repo_root: Path) -> FileManifest:
    path = Path(repo_root) / layout.MANIFEST_FILE
    try:
        data = yaml.safe_load(path.read_text())
    except (yaml.YAMLError, OSError, UnicodeDecodeError) as exc:
        raise RepositoryError(f"cannot read {layout.MANIFEST_FILE}: {exc}") from exc
    return parse_manifest(data)


def read_manifest_checksum(repo_root: Path) -> str:
    """The hex digest recorded in ``files.yaml.sha256``."""
    path = Path(repo_root) / layout.MANIFEST_CHECKSUM_FILE
    try:
        text = path.read_text().strip()
    except (OSError, UnicodeDecodeError) as exc:
        raise RepositoryError(f"cannot read {layout.MANIFEST_CHECKSUM_FILE}: {exc}") from exc
    return text.split()[0] if text else ""
