"""Phase 3: recompute content hashes. Mismatches are reported, never repaired."""

from __future__ import annotations

import hashlib
import re

from phonearchive.attachments.store import AttachmentStore
from phonearchive.core.errors import PathValidationError, RepositoryError
from phonearchive.repository import layout
from phonearchive.repository.manifest import load_manifest, read_manifest_checksum
from phonearchive.validation.context import ValidationContext
from phonearchive.validation.types import ViolationType, error

PHASE = "checksum"

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def check_manifest_digest(ctx: ValidationContext) -> None:
    manifest_path = ctx.repo_root / layout.MANIFEST_FILE
    if not manifest_path.is_file() or not (ctx.repo_root / layout.MANIFEST_CHECKSUM_FILE).is_file():
        return  # reported by the structure phase
    try:
        recorded = read_manifest_checksum(ctx.repo_root)
    except RepositoryError as exc:
        ctx.emit(PHASE, error(ViolationType.INVALID_FORMAT, layout.MANIFEST_CHECKSUM_FILE, str(exc)))
        return
    if not _HEX64.match(recorded):
        ctx.emit(PHASE, error(
            ViolationType.INVALID_FORMAT, layout.MANIFEST_CHECKSUM_FILE,
            "manifest checksum file does not hold a sha256 hex digest",
        ))
        return
    actual = hashlib.sha256(manifest_path.read_bytes()).hexdigest()
    if actual != recorded:
        ctx.emit(PHASE, error(
            ViolationType.CHECKSUM_MISMATCH, layout.MANIFEST_FILE,
            "manifest does not match files.yaml.sha256",
            expected=recorded, actual=actual,
        ))


def check_entries(ctx: ValidationContext) -> set[str]:
    """Verify every manifest entry present on disk. Returns names flagged."""
    flagged: set[str] = set()
    if not (ctx.repo_root / layout.MANIFEST_FILE).is_file():
        return flagged
    try:
        manifest = load_manifest(ctx.repo_root)
    except RepositoryError:
        return flagged  # reported by the manifest phase

    seen: set[str] = set()
    for entry in manifest.files:
        ctx.checkpoint()
        if entry.name in seen or entry.name in layout.MANIFEST_EXCLUDED:
            continue
        seen.add(entry.name)
        expected = entry.digest
        if not _HEX64.match(expected):
            continue
        try:
            path = ctx.paths.get_safe_path(entry.name)
        except PathValidationError:
            continue
        if not path.is_file() or path.is_symlink():
            continue  # missing files belong to the manifest phase

        actual = ctx.checksum(path)
        ctx.count_file()
        if actual != expected:
            flagged.add(entry.name)
            ctx.emit(PHASE, error(
                ViolationType.CHECKSUM_MISMATCH, entry.name,
                "content does not match the recorded checksum",
                expected=expected, actual=actual,
            ))
        elif entry.size > 0 and path.stat().st_size != entry.size:
            flagged.add(entry.name)
            ctx.emit(PHASE, error(
                ViolationType.SIZE_MISMATCH, entry.name,
                "file size does not match the recorded size",
                expected=str(entry.size), actual=str(path.stat().st_size),
            ))
    return flagged


def check_attachment_blobs(ctx: ValidationContext, already_flagged: set[str]) -> None:
    """Every stored blob must hash to the name of its directory."""
    for attachment in AttachmentStore(ctx.repo_root).iter_attachments():
        ctx.checkpoint()
        if attachment.path in already_flagged:
            continue
        actual = ctx.checksum(ctx.repo_root / attachment.path)
        if actual != attachment.hash:
            ctx.emit(PHASE, error(
                ViolationType.CHECKSUM_MISMATCH, attachment.path,
                "attachment content does not match its content address",
                expected=attachment.hash, actual=actual,
            ))


def check_checksums(ctx: ValidationContext) -> None:
    check_manifest_digest(ctx)
    flagged = check_entries(ctx)
    check_attachment_blobs(ctx, flagged)
