"""Find and remove stored attachments that no message references."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from phonearchive.attachments.store import AttachmentStore, StoredAttachment
from phonearchive.core.config import DEFAULT_MAX_XML_SIZE
from phonearchive.core.errors import OperationCancelledError, PathValidationError
from phonearchive.repository import layout

logger = logging.getLogger(__name__)


@dataclass
class FailedRemoval:
    path: str
    error: str


@dataclass
class OrphanRemovalResult:
    attachments_scanned: int = 0
    orphans_found: int = 0
    orphans_removed: int = 0
    bytes_freed: int = 0
    removal_failures: int = 0
    failed_removals: list[FailedRemoval] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict:
        data = {
            "attachments_scanned": self.attachments_scanned,
            "orphans_found": self.orphans_found,
            "orphans_removed": self.orphans_removed,
            "bytes_freed": self.bytes_freed,
            "removal_failures": self.removal_failures,
            "dry_run": self.dry_run,
        }
        if self.failed_removals:
            data["failed_removals"] = [
                {"path": f.path, "error": f.error} for f in self.failed_removals
            ]
        return data


def referenced_hashes(repo_root: Path, max_size: int = DEFAULT_MAX_XML_SIZE) -> set[str]:
    """Hashes referenced by any MMS part in the ``sms/`` partitions.

    An unreadable partition raises ``XMLSecurityError``: an incomplete
    reference set would make referenced attachments look orphaned.
    """
    from phonearchive.records.partitions import PartitionReader
    from phonearchive.records.sms import attachment_references

    reader = PartitionReader(repo_root, "sms", max_size)
    refs: set[str] = set()
    for year in reader.available_years():
        for message in reader.iter_year(year):
            refs.update(attachment_references(message))
    return refs


def find_orphans(
    repo_root: Path, max_size: int = DEFAULT_MAX_XML_SIZE,
) -> tuple[list[StoredAttachment], int]:
    """Return ``(orphans, total stored)``."""
    refs = referenced_hashes(repo_root, max_size)
    stored = list(AttachmentStore(repo_root).iter_attachments())
    return [a for a in stored if a.hash not in refs], len(stored)


def remove_orphan_attachments(
    repo_root: Path,
    dry_run: bool = False,
    max_size: int = DEFAULT_MAX_XML_SIZE,
    cancel: threading.Event | None = None,
) -> OrphanRemovalResult:
    """Delete every unreferenced attachment directory.

    A dry run only reports what would be removed. After a real removal
    ``summary.yaml`` and the manifest are regenerated so the repository
    stays valid.
    """
    repo_root = Path(repo_root)
    orphans, total = find_orphans(repo_root, max_size)
    result = OrphanRemovalResult(
        attachments_scanned=total, orphans_found=len(orphans), dry_run=dry_run,
    )
    if dry_run:
        result.orphans_removed = len(orphans)
        result.bytes_freed = sum(a.size for a in orphans)
        return result

    store = AttachmentStore(repo_root)
    for attachment in orphans:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("orphan removal cancelled")
        try:
            _remove(store, attachment)
        except (OSError, PathValidationError) as exc:
            logger.warning("could not remove %s: %s", attachment.path, exc)
            result.removal_failures += 1
            result.failed_removals.append(FailedRemoval(attachment.path, str(exc)))
            continue
        result.orphans_removed += 1
        result.bytes_freed += attachment.size
        logger.debug("removed orphaned attachment %s", attachment.hash[:12])

    if result.orphans_removed:
        from phonearchive.repository.manifest import generate_manifest
        from phonearchive.repository.summary import calculate_stats, write_summary

        write_summary(repo_root, calculate_stats(repo_root))
        generate_manifest(repo_root)
    logger.info(
        "removed %d of %d orphaned attachment(s)", result.orphans_removed, result.orphans_found,
    )
    return result


def _remove(store: AttachmentStore, attachment: StoredAttachment) -> None:
    rel_dir = store.validator.validate_path(store.dir_for(attachment.hash))
    directory = store.repo_root / rel_dir
    for child in directory.iterdir():
        if child.is_dir() and not child.is_symlink():
            raise OSError(f"unexpected directory {child.name} in {rel_dir}")
    for child in directory.iterdir():
        child.unlink()
    directory.rmdir()
    prefix_dir = directory.parent
    if prefix_dir.parent.name == layout.ATTACHMENTS_DIR and not any(prefix_dir.iterdir()):
        prefix_dir.rmdir()
