"""Content-addressed attachment store.

Blobs live at ``attachments/<hash[:2]>/<hash>/<filename>`` next to a
``metadata.yaml``. The hash is the sha256 of the blob, so a stored blob is
never rewritten: storing the same content twice is a no-op.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import yaml

from phonearchive.core.errors import (
    AttachmentNotFoundError,
    HashMismatchError,
    InvalidHashError,
    PathValidationError,
    atomic_write,
)
from phonearchive.repository import layout
from phonearchive.security.path import PathValidator

logger = logging.getLogger(__name__)

HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")

MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/heif": "heif",
    "video/mp4": "mp4",
    "video/3gpp": "3gp",
    "video/3gpp2": "3g2",
    "video/quicktime": "mov",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
    "audio/amr": "amr",
    "audio/aac": "aac",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "application/pdf": "pdf",
    "application/zip": "zip",
    "text/x-vcard": "vcf",
    "text/vcard": "vcf",
}


def validate_hash(value: str) -> str:
    """Return ``value`` if it is a lowercase sha256 hex digest."""
    if not isinstance(value, str) or not HASH_PATTERN.match(value):
        raise InvalidHashError(f"invalid attachment hash: {value!r}")
    return value


def generate_filename(original_name: str | None, mime_type: str) -> str:
    """Filename for a stored blob: the original name when usable."""
    if original_name and original_name != "null":
        return original_name
    ext = MIME_EXTENSIONS.get((mime_type or "").lower().split(";")[0].strip(), "bin")
    return f"attachment.{ext}"


@dataclass
class AttachmentInfo:
    """Contents of an attachment's ``metadata.yaml``."""

    hash: str
    original_name: str
    mime_type: str
    size: int
    created_at: str = ""
    source_mms: str = ""

    def to_dict(self) -> dict:
        data = {
            "hash": self.hash,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "size": self.size,
            "created_at": self.created_at,
        }
        if self.source_mms:
            data["source_mms"] = self.source_mms
        return data


@dataclass
class StoredAttachment:
    hash: str
    path: str  # repository-relative blob path
    size: int


class AttachmentStore:
    """Read/write access to ``<repo>/attachments``."""

    def __init__(self, repo_root: str | Path):
        self.repo_root = Path(repo_root)
        self.validator = PathValidator(self.repo_root)

    @property
    def root(self) -> Path:
        return self.repo_root / layout.ATTACHMENTS_DIR

    def dir_for(self, hash: str) -> str:
        """Repository-relative directory for ``hash``."""
        validate_hash(hash)
        return f"{layout.ATTACHMENTS_DIR}/{hash[:2]}/{hash}"

    def exists(self, hash: str) -> bool:
        try:
            return self._blob_path(hash) is not None
        except InvalidHashError:
            return False

    def store(self, hash: str, data: bytes, info: AttachmentInfo | None = None) -> str:
        """Store ``data`` under ``hash`` and return the blob's relative path.

        Raises ``InvalidHashError`` for a malformed hash, ``HashMismatchError``
        when the content does not hash to ``hash``, and a
        ``PathValidationError`` for an unsafe filename. Content already
        present is left untouched.
        """
        validate_hash(hash)
        actual = hashlib.sha256(data).hexdigest()
        if actual != hash:
            raise HashMismatchError(hash, actual)

        existing = self._blob_path(hash)
        if existing is not None:
            logger.debug("attachment %s already stored", hash[:12])
            return existing.relative_to(self.repo_root).as_posix()

        info = info or AttachmentInfo(hash=hash, original_name="", mime_type="", size=0)
        filename = generate_filename(info.original_name, info.mime_type)
        if "/" in filename or filename in (".", ".."):
            raise PathValidationError(f"unsafe attachment filename: {filename!r}", path=filename)
        rel_dir = self.validator.validate_path(self.dir_for(hash))
        rel_blob = self.validator.join_and_validate(rel_dir, filename)
        if Path(rel_blob).parent != Path(rel_dir):
            raise PathValidationError(f"unsafe attachment filename: {filename!r}", path=filename)

        target_dir = self.repo_root / rel_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(self.repo_root / rel_blob, data)

        metadata = AttachmentInfo(
            hash=hash,
            original_name=info.original_name,
            mime_type=info.mime_type,
            size=len(data),
            created_at=info.created_at
            or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            source_mms=info.source_mms,
        )
        atomic_write(
            target_dir / layout.METADATA_FILE,
            yaml.safe_dump(metadata.to_dict(), default_flow_style=False, sort_keys=False),
        )
        logger.debug("stored attachment %s (%d bytes)", hash[:12], len(data))
        return Path(rel_blob).as_posix()

    def get(self, hash: str) -> bytes:
        path = self._blob_path(hash)
        if path is None:
            raise AttachmentNotFoundError(f"attachment not found: {hash}")
        return path.read_bytes()

    def get_path(self, hash: str) -> str:
        """Repository-relative blob path."""
        path = self._blob_path(hash)
        if path is None:
            raise AttachmentNotFoundError(f"attachment not found: {hash}")
        return path.relative_to(self.repo_root).as_posix()

    def get_metadata(self, hash: str) -> AttachmentInfo:
        meta_path = self.repo_root / self.dir_for(hash) / layout.METADATA_FILE
        if not meta_path.is_file():
            raise AttachmentNotFoundError(f"attachment metadata not found: {hash}")
        data = yaml.safe_load(meta_path.read_text()) or {}
        return AttachmentInfo(
            hash=str(data.get("hash", hash)),
            original_name=str(data.get("original_name", "")),
            mime_type=str(data.get("mime_type", "")),
            size=int(data.get("size", 0)),
            created_at=str(data.get("created_at", "")),
            source_mms=str(data.get("source_mms", "")),
        )

    def verify(self, hash: str) -> bool:
        """True when the stored blob still hashes to ``hash``."""
        return hashlib.sha256(self.get(hash)).hexdigest() == hash

    def iter_attachments(self) -> Iterator[StoredAttachment]:
        """Every well-formed ``<prefix>/<hash>/<blob>`` entry, sorted by hash."""
        if not self.root.is_dir():
            return
        for prefix_dir in sorted(self.root.iterdir()):
            if not prefix_dir.is_dir() or len(prefix_dir.name) != 2:
                continue
            for hash_dir in sorted(prefix_dir.iterdir()):
                if not hash_dir.is_dir() or not HASH_PATTERN.match(hash_dir.name):
                    continue
                if not hash_dir.name.startswith(prefix_dir.name):
                    continue
                blob = _find_blob(hash_dir)
                if blob is None:
                    continue
                yield StoredAttachment(
                    hash=hash_dir.name,
                    path=blob.relative_to(self.repo_root).as_posix(),
                    size=blob.stat().st_size,
                )

    def _blob_path(self, hash: str) -> Path | None:
        directory = self.repo_root / self.dir_for(hash)
        if not directory.is_dir():
            return None
        return _find_blob(directory)


def _find_blob(directory: Path) -> Path | None:
    for child in sorted(directory.iterdir()):
        if child.name == layout.METADATA_FILE or child.name.endswith(".tmp"):
            continue
        if child.is_file() and not child.is_symlink():
            return child
    return None
