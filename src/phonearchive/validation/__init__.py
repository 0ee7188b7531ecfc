"""Five-phase repository integrity validation."""

from phonearchive.core.config import ValidationOptions
from phonearchive.validation.cache import ValidationCache
from phonearchive.validation.types import (
    Report,
    Severity,
    ValidationStatus,
    Violation,
    ViolationType,
)
from phonearchive.validation.validator import PHASES, RepositoryValidator, ValidationMetrics

__all__ = [
    "PHASES",
    "Report",
    "RepositoryValidator",
    "Severity",
    "ValidationCache",
    "ValidationMetrics",
    "ValidationOptions",
    "ValidationStatus",
    "Violation",
    "ViolationType",
]
