"""phonearchive error types and utilities."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from phonearchive.validation.types import Report


def atomic_write(path: Path, content: str | bytes) -> None:
    """Write content to a file atomically using temp file + rename.

    Writes to a temporary file in the same directory, fsyncs it,
    then atomically replaces the target path.
    """
    path = Path(path)
    data = content.encode() if isinstance(content, str) else content
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        os.write(fd, data)
        os.fsync(fd)
        os.close(fd)
        os.replace(tmp, str(path))
    except BaseException:
        try:
            os.close(fd)
        except OSError:
            pass
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class ArchiveError(Exception):
    """Base exception for phonearchive."""

    pass


# -- Path validation --


class PathValidationError(ArchiveError):
    """A user-supplied path was rejected."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class InvalidPathError(PathValidationError):
    """Path is malformed: empty, null byte, backslash or encoded traversal."""

    pass


class PathOutsideRepositoryError(PathValidationError):
    """Path resolves outside the repository root."""

    pass


class PathTooLongError(PathValidationError):
    """Path exceeds the maximum allowed length."""

    pass


# -- XML decoding --


class XMLSecurityError(ArchiveError):
    """An XML document could not be decoded safely."""

    pass


class XMLSizeLimitError(XMLSecurityError):
    """An XML document exceeded the configured size limit."""

    def __init__(self, limit: int):
        super().__init__(f"XML document exceeds size limit of {limit} bytes")
        self.limit = limit


# -- Records --


class RecordFormatError(ArchiveError):
    """A record attribute holds a value that cannot be interpreted."""

    pass


# -- Attachments --


class AttachmentError(ArchiveError):
    """Error in attachment storage or retrieval."""

    pass


class InvalidHashError(AttachmentError):
    """Attachment hash is not a lowercase 64-character hex digest."""

    pass


class HashMismatchError(AttachmentError):
    """Attachment content does not hash to the declared digest."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"hash mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class AttachmentNotFoundError(AttachmentError):
    """No attachment is stored under the requested hash."""

    pass


# -- Repository / import --


class RepositoryError(ArchiveError):
    """Repository is missing, malformed or cannot be written."""

    pass


class ImportFailedError(ArchiveError):
    """An import run could not complete."""

    pass


class OperationCancelledError(ArchiveError):
    """A long-running operation observed its cancellation token."""

    pass


# -- Validation --


class ValidationAbortedError(ArchiveError):
    """Validation stopped before producing a complete report."""

    pass


class ValidationCancelledError(ValidationAbortedError):
    """Validation was cancelled by the caller."""

    pass


class ValidationTimeoutError(ValidationCancelledError):
    """Validation exceeded its configured timeout."""

    def __init__(self, timeout: float):
        super().__init__(f"validation timed out after {timeout:g}s")
        self.timeout = timeout


class EarlyTerminationError(ValidationAbortedError):
    """Validation stopped at the first critical violation.

    ``report`` holds every violation collected up to that point.
    """

    def __init__(self, stage: str, report: Report):
        critical = [v for v in report.violations if v.severity == "error"]
        super().__init__(
            f"validation terminated early in {stage} phase "
            f"with {len(critical)} error(s)"
        )
        self.stage = stage
        self.report = report

    @property
    def violations(self):
        return self.report.violations


class UnsupportedVersionError(ValidationAbortedError):
    """Repository declares a structure version this build cannot read."""

    def __init__(self, version: str, report: Report):
        super().__init__(f"unsupported repository_structure_version: {version!r}")
        self.version = version
        self.report = report
