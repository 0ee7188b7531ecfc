"""Shared state for one validation run."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from phonearchive.repository.manifest import calculate_file_checksum
from phonearchive.security.path import PathValidator
from phonearchive.validation.cache import ValidationCache
from phonearchive.validation.types import Severity, Violation


class PhaseInterrupted(Exception):
    """Raised inside a phase when the run has been told to stop."""


@dataclass
class ContentFacts:
    """Facts re-derived from the partitions themselves."""

    calls_by_year: dict[int, int] = field(default_factory=dict)
    sms_by_year: dict[int, int] = field(default_factory=dict)
    referenced_attachments: dict[str, list[str]] = field(default_factory=dict)  # hash -> files
    violations: list[Violation] = field(default_factory=list)


class ValidationContext:
    """Per-run state handed to every phase.

    Phases emit violations through ``emit`` and call ``checkpoint``
    between sub-checks; ``checkpoint`` raises ``PhaseInterrupted`` once the
    run is cancelled, timed out or early-terminated.
    """

    def __init__(
        self,
        repo_root: Path,
        cache: ValidationCache | None = None,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
        early_termination: bool = False,
        critical_types: frozenset[str] = frozenset(),
    ):
        self.repo_root = Path(repo_root)
        self.paths = PathValidator(self.repo_root)
        self.cache = cache
        self.cancel = cancel
        self.deadline = deadline
        self.early_termination = early_termination
        self.critical_types = critical_types
        self.stop = threading.Event()
        self.stop_reason: str | None = None
        self.stop_stage: str | None = None
        self.files_processed = 0
        self._violations: dict[str, list[Violation]] = {}
        self._lock = threading.Lock()
        self._facts: ContentFacts | None = None
        self._facts_lock = threading.Lock()

    # -- Violations --

    def emit(self, phase: str, violation: Violation) -> None:
        with self._lock:
            self._violations.setdefault(phase, []).append(violation)
        if (
            self.early_termination
            and violation.severity == Severity.ERROR
            and str(violation.type) in self.critical_types
        ):
            self.request_stop("early_termination", phase)

    def violations(self, phase_order: list[str]) -> list[Violation]:
        """All violations so far, grouped by phase in ``phase_order``."""
        with self._lock:
            collected = []
            for phase in phase_order:
                collected.extend(self._violations.get(phase, []))
            return collected

    # -- Stopping --

    def request_stop(self, reason: str, stage: str | None = None) -> None:
        with self._lock:
            if self.stop_reason is None:
                self.stop_reason = reason
                self.stop_stage = stage
        self.stop.set()

    def poll(self) -> None:
        """Translate cancellation and deadline into a stop request."""
        if self.stop.is_set():
            return
        if self.cancel is not None and self.cancel.is_set():
            self.request_stop("cancelled")
        elif self.deadline is not None and time.monotonic() >= self.deadline:
            self.request_stop("timeout")

    def checkpoint(self) -> None:
        self.poll()
        if self.stop.is_set():
            raise PhaseInterrupted(self.stop_reason)

    def count_file(self, n: int = 1) -> None:
        with self._lock:
            self.files_processed += n

    # -- Shared derived data --

    def content_facts(self, derive: Callable[[ValidationContext], ContentFacts]) -> ContentFacts:
        """Derive content facts at most once per run."""
        with self._facts_lock:
            if self._facts is None:
                self._facts = derive(self)
            return self._facts

    def checksum(self, path: Path) -> str:
        if self.cache is not None:
            return self.cache.checksum(path)
        return calculate_file_checksum(path)
