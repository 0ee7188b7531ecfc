"""Violation and report types produced by repository validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class ViolationType(str, Enum):
    MISSING_FILE = "missing_file"
    EXTRA_FILE = "extra_file"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    INVALID_FORMAT = "invalid_format"
    ORPHANED_ATTACHMENT = "orphaned_attachment"
    COUNT_MISMATCH = "count_mismatch"
    SIZE_MISMATCH = "size_mismatch"
    STRUCTURE_VIOLATION = "structure_violation"
    MISSING_MARKER_FILE = "missing_marker_file"
    UNSUPPORTED_VERSION = "unsupported_version"

    def __str__(self) -> str:
        return self.value


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"

    def __str__(self) -> str:
        return self.value


class ValidationStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Violation:
    """A typed, severity-tagged validation finding."""

    type: ViolationType
    severity: Severity
    file: str
    message: str
    expected: str | None = None
    actual: str | None = None
    line: int | None = None

    def to_dict(self) -> dict:
        data = {
            "type": str(self.type),
            "severity": str(self.severity),
            "file": self.file,
            "message": self.message,
        }
        if self.expected is not None:
            data["expected"] = self.expected
        if self.actual is not None:
            data["actual"] = self.actual
        if self.line is not None:
            data["line"] = self.line
        return data


def error(type: ViolationType, file: str, message: str, **kwargs) -> Violation:
    return Violation(type=type, severity=Severity.ERROR, file=file, message=message, **kwargs)


def warning(type: ViolationType, file: str, message: str, **kwargs) -> Violation:
    return Violation(type=type, severity=Severity.WARNING, file=file, message=message, **kwargs)


@dataclass(frozen=True)
class Report:
    """Complete validation report."""

    timestamp: datetime
    repository_path: str
    status: ValidationStatus
    violations: tuple[Violation, ...] = field(default_factory=tuple)

    @classmethod
    def build(cls, repository_path: str, violations) -> Report:
        violations = tuple(violations)
        invalid = any(v.severity == Severity.ERROR for v in violations)
        return cls(
            timestamp=datetime.now(timezone.utc),
            repository_path=repository_path,
            status=ValidationStatus.INVALID if invalid else ValidationStatus.VALID,
            violations=violations,
        )

    @property
    def passed(self) -> bool:
        return self.status == ValidationStatus.VALID

    @property
    def errors(self) -> list[Violation]:
        return [v for v in self.violations if v.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Violation]:
        return [v for v in self.violations if v.severity == Severity.WARNING]

    def of_type(self, type: ViolationType) -> list[Violation]:
        return [v for v in self.violations if v.type == type]

    @property
    def summary(self) -> str:
        if not self.violations:
            return "Repository is valid"
        return (
            f"{self.status.value}: {len(self.errors)} error(s), "
            f"{len(self.warnings)} warning(s)"
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "repository_path": self.repository_path,
            "status": str(self.status),
            "summary": self.summary,
            "violations": [v.to_dict() for v in self.violations],
        }
