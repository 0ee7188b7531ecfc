"""Repository integrity validator: five phases, sequential or bounded-parallel."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

from phonearchive.core.config import ValidationOptions
from phonearchive.core.errors import (
    EarlyTerminationError,
    RepositoryError,
    UnsupportedVersionError,
    ValidationCancelledError,
    ValidationTimeoutError,
)
from phonearchive.validation.cache import ValidationCache
from phonearchive.validation.checksum import check_checksums
from phonearchive.validation.consistency import check_consistency
from phonearchive.validation.content import check_content
from phonearchive.validation.context import PhaseInterrupted, ValidationContext
from phonearchive.validation.manifest import check_manifest
from phonearchive.validation.structure import check_structure
from phonearchive.validation.types import Report, Violation

logger = logging.getLogger(__name__)

PHASES = ("structure", "manifest", "checksum", "content", "consistency")

_PHASE_FUNCS: dict[str, Callable[[ValidationContext], object]] = {
    "structure": check_structure,
    "manifest": check_manifest,
    "checksum": check_checksums,
    "content": check_content,
    "consistency": check_consistency,
}

# How often the coordinating thread re-checks cancellation and the deadline.
_POLL_INTERVAL = 0.05


@dataclass
class ValidationMetrics:
    """Timing and I/O counters for the most recent run."""

    phase_durations: dict[str, float] = field(default_factory=dict)
    total_duration: float = 0.0
    files_processed: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    def to_dict(self) -> dict:
        return {
            "phase_durations": {k: round(v, 4) for k, v in self.phase_durations.items()},
            "total_duration": round(self.total_duration, 4),
            "files_processed": self.files_processed,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
        }


class RepositoryValidator:
    """Validate a repository on disk.

    ``validate`` returns a ``Report`` for a run that completed, valid or not.
    It raises instead when validation itself could not finish:
    ``UnsupportedVersionError`` (structure version gate),
    ``EarlyTerminationError`` (critical violation with early termination on,
    carrying the partial report), ``ValidationCancelledError`` and its
    subclass ``ValidationTimeoutError``.

    The validator keeps a checksum cache across runs. Pass
    ``use_cache=False`` to always re-hash.
    """

    def __init__(
        self,
        repo_root: str | Path,
        cache: ValidationCache | None = None,
        use_cache: bool = True,
    ):
        self.repo_root = Path(repo_root)
        if not self.repo_root.is_dir():
            raise RepositoryError(f"repository directory does not exist: {self.repo_root}")
        if cache is None and use_cache:
            cache = ValidationCache()
        self.cache = cache
        self._metrics = ValidationMetrics()
        self._metrics_lock = threading.Lock()

    def metrics(self) -> ValidationMetrics:
        with self._metrics_lock:
            return replace(
                self._metrics, phase_durations=dict(self._metrics.phase_durations),
            )

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def run_phase(self, name: str) -> list[Violation]:
        """Run one phase on its own, without the version gate or stop handling."""
        if name not in _PHASE_FUNCS:
            raise ValueError(f"unknown validation phase: {name!r}")
        ctx = self._context(ValidationOptions(early_termination=False), cancel=None)
        _PHASE_FUNCS[name](ctx)
        return ctx.violations([name])

    def validate(
        self,
        options: ValidationOptions | None = None,
        cancel: threading.Event | None = None,
    ) -> Report:
        options = options or ValidationOptions()
        started = time.monotonic()
        ctx = self._context(options, cancel, started)
        durations: dict[str, float] = {}
        hits0, misses0 = self._cache_counters()
        completed: list[str] = []

        def report_progress(phase: str) -> None:
            completed.append(phase)
            if options.progress_callback is not None:
                options.progress_callback(phase, len(completed) / len(PHASES))

        logger.info(
            "validating %s (%s)", self.repo_root,
            f"parallel x{options.max_concurrency}" if options.parallel else "sequential",
        )
        try:
            unsupported = self._run_phase(ctx, "structure", durations)
            if not ctx.stop.is_set():
                report_progress("structure")
                if unsupported is not None:
                    report = self._report(ctx)
                    raise UnsupportedVersionError(unsupported, report)

                remaining = [p for p in PHASES if p != "structure"]
                if options.parallel:
                    self._run_parallel(ctx, remaining, durations, options, report_progress)
                else:
                    self._run_sequential(ctx, remaining, durations, report_progress)
        finally:
            self._record_metrics(ctx, durations, started, hits0, misses0)

        if ctx.stop_reason == "cancelled":
            raise ValidationCancelledError("validation cancelled")
        if ctx.stop_reason == "timeout":
            raise ValidationTimeoutError(options.timeout or 0)
        report = self._report(ctx)
        if ctx.stop_reason == "early_termination":
            logger.warning("validation terminated early in %s phase", ctx.stop_stage)
            raise EarlyTerminationError(ctx.stop_stage or "unknown", report)
        logger.info("validation finished: %s", report.summary)
        return report

    # -- Internals --

    def _context(
        self, options: ValidationOptions, cancel: threading.Event | None,
        started: float | None = None,
    ) -> ValidationContext:
        deadline = None
        if options.timeout and started is not None:
            deadline = started + options.timeout
        return ValidationContext(
            self.repo_root,
            cache=self.cache,
            cancel=cancel,
            deadline=deadline,
            early_termination=options.early_termination,
            critical_types=options.critical_types,
        )

    def _report(self, ctx: ValidationContext) -> Report:
        return Report.build(str(self.repo_root), ctx.violations(list(PHASES)))

    def _run_phase(self, ctx: ValidationContext, name: str, durations: dict[str, float]):
        phase_start = time.monotonic()
        try:
            return _PHASE_FUNCS[name](ctx)
        except PhaseInterrupted:
            logger.debug("%s phase interrupted (%s)", name, ctx.stop_reason)
            return None
        finally:
            durations[name] = time.monotonic() - phase_start

    def _run_sequential(self, ctx, phases, durations, report_progress) -> None:
        for name in phases:
            ctx.poll()
            if ctx.stop.is_set():
                return
            self._run_phase(ctx, name, durations)
            if not ctx.stop.is_set():
                report_progress(name)

    def _run_parallel(self, ctx, phases, durations, options, report_progress) -> None:
        with ThreadPoolExecutor(max_workers=options.max_concurrency) as pool:
            futures = {
                pool.submit(self._run_phase, ctx, name, durations): name
                for name in phases
            }
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for future in done:
                    try:
                        future.result()
                    except BaseException:
                        ctx.request_stop("error")
                        raise
                    if not ctx.stop.is_set():
                        report_progress(futures[future])
                ctx.poll()

    def _cache_counters(self) -> tuple[int, int]:
        if self.cache is None:
            return 0, 0
        return self.cache.hits, self.cache.misses

    def _record_metrics(self, ctx, durations, started, hits0, misses0) -> None:
        hits, misses = self._cache_counters()
        with self._metrics_lock:
            self._metrics = ValidationMetrics(
                phase_durations=dict(durations),
                total_duration=time.monotonic() - started,
                files_processed=ctx.files_processed,
                cache_hits=max(hits - hits0, 0),
                cache_misses=max(misses - misses0, 0),
            )
