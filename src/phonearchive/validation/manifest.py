"""Phase 2: the manifest lists every file exactly once, in a sane format."""

from __future__ import annotations

import os
import re

from phonearchive.core.errors import PathValidationError, RepositoryError
from phonearchive.repository import layout
from phonearchive.repository.manifest import (
    collect_repository_files,
    load_manifest,
    strip_prefix,
)
from phonearchive.validation.context import ValidationContext
from phonearchive.validation.types import ViolationType, error

PHASE = "manifest"

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def check_manifest(ctx: ValidationContext) -> None:
    if not (ctx.repo_root / layout.MANIFEST_FILE).is_file():
        return  # reported by the structure phase
    try:
        manifest = load_manifest(ctx.repo_root)
    except RepositoryError as exc:
        ctx.emit(PHASE, error(ViolationType.INVALID_FORMAT, layout.MANIFEST_FILE, str(exc)))
        return

    seen: set[str] = set()
    listed: set[str] = set()
    for entry in manifest.files:
        ctx.checkpoint()
        name = entry.name
        if not name:
            ctx.emit(PHASE, error(
                ViolationType.INVALID_FORMAT, layout.MANIFEST_FILE, "manifest entry without a name",
            ))
            continue
        if name in seen:
            ctx.emit(PHASE, error(
                ViolationType.INVALID_FORMAT, name, "duplicate manifest entry",
            ))
            continue
        seen.add(name)

        if name in layout.MANIFEST_EXCLUDED:
            ctx.emit(PHASE, error(
                ViolationType.INVALID_FORMAT, name, "manifest must not list itself",
            ))
            continue
        if not _path_ok(ctx, name):
            continue
        listed.add(name)

        if not _HEX64.match(strip_prefix(entry.checksum)):
            ctx.emit(PHASE, error(
                ViolationType.INVALID_FORMAT, name,
                "checksum is not a 64-character hex sha256",
                actual=entry.checksum,
            ))
        if entry.size <= 0:
            ctx.emit(PHASE, error(
                ViolationType.INVALID_FORMAT, name,
                "recorded size must be positive",
                actual=str(entry.size),
            ))

    on_disk = set(collect_repository_files(ctx.repo_root))
    ctx.count_file(len(on_disk))

    for name in sorted(on_disk - seen):
        ctx.checkpoint()
        ctx.emit(PHASE, error(
            ViolationType.EXTRA_FILE, name, "file is not listed in the manifest",
        ))
    for name in sorted(listed - on_disk):
        ctx.checkpoint()
        ctx.emit(PHASE, error(
            ViolationType.MISSING_FILE, name, "manifest lists a file that does not exist",
        ))


def _path_ok(ctx: ValidationContext, name: str) -> bool:
    if os.path.isabs(name) or ".." in name.split("/"):
        ctx.emit(PHASE, error(
            ViolationType.INVALID_FORMAT, name,
            "manifest path must be relative and free of '..'",
        ))
        return False
    try:
        ctx.paths.validate_path(name)
    except PathValidationError as exc:
        ctx.emit(PHASE, error(ViolationType.INVALID_FORMAT, name, str(exc)))
        return False
    return True
