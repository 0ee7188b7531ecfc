"""Phase 1: required layout and the repository marker."""

from __future__ import annotations

import re
from datetime import datetime

from phonearchive.core.errors import RepositoryError
from phonearchive.repository import layout
from phonearchive.repository.marker import REQUIRED_KEYS, SUPPORTED_VERSIONS, read_marker_data
from phonearchive.validation.context import ValidationContext
from phonearchive.validation.types import ViolationType, error

PHASE = "structure"


def _is_rfc3339(value) -> bool:
    if isinstance(value, datetime):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return "T" in value


def check_marker(ctx: ValidationContext) -> str | None:
    """Validate the marker file; return the declared version if unsupported."""
    path = ctx.repo_root / layout.MARKER_FILE
    if not path.exists():
        # A repository predating the marker is still readable as version 1.
        ctx.emit(PHASE, error(
            ViolationType.MISSING_MARKER_FILE, layout.MARKER_FILE,
            "repository marker file is missing",
        ))
        return None
    try:
        data = read_marker_data(ctx.repo_root)
    except RepositoryError as exc:
        ctx.emit(PHASE, error(ViolationType.INVALID_FORMAT, layout.MARKER_FILE, str(exc)))
        return None

    for key in REQUIRED_KEYS:
        if key not in data or data[key] in (None, ""):
            ctx.emit(PHASE, error(
                ViolationType.INVALID_FORMAT, layout.MARKER_FILE,
                f"marker file is missing required key {key!r}",
            ))

    if "created_at" in data and data["created_at"] and not _is_rfc3339(data["created_at"]):
        ctx.emit(PHASE, error(
            ViolationType.INVALID_FORMAT, layout.MARKER_FILE,
            "created_at is not an RFC 3339 timestamp",
            actual=str(data["created_at"]),
        ))

    version = data.get("repository_structure_version")
    if version not in (None, "") and str(version) not in SUPPORTED_VERSIONS:
        ctx.emit(PHASE, error(
            ViolationType.UNSUPPORTED_VERSION, layout.MARKER_FILE,
            f"unsupported repository_structure_version {version!r}",
            expected=", ".join(sorted(SUPPORTED_VERSIONS)),
            actual=str(version),
        ))
        return str(version)
    return None


def check_layout(ctx: ValidationContext) -> None:
    for name in layout.REQUIRED_DIRS:
        ctx.checkpoint()
        path = ctx.repo_root / name
        if not path.is_dir():
            ctx.emit(PHASE, error(
                ViolationType.STRUCTURE_VIOLATION, name + "/",
                f"required directory {name}/ is missing",
            ))

    for name in layout.REQUIRED_FILES:
        ctx.checkpoint()
        if not (ctx.repo_root / name).is_file():
            ctx.emit(PHASE, error(
                ViolationType.MISSING_FILE, name, f"required file {name} is missing",
            ))

    for kind, dirname in layout.PARTITION_DIRS.items():
        directory = ctx.repo_root / dirname
        if not directory.is_dir():
            continue
        pattern = re.compile(rf"^{kind}-\d{{4}}\.xml$")
        for child in sorted(directory.iterdir()):
            ctx.checkpoint()
            if not child.is_file() or not pattern.match(child.name):
                ctx.emit(PHASE, error(
                    ViolationType.STRUCTURE_VIOLATION, f"{dirname}/{child.name}",
                    f"unexpected entry in {dirname}/ (expected {kind}-YYYY.xml)",
                ))


def check_structure(ctx: ValidationContext) -> str | None:
    """Run phase 1. Returns the unsupported version string, if any."""
    unsupported = check_marker(ctx)
    if unsupported is not None:
        return unsupported
    check_layout(ctx)
    return None
