"""Structured logging and verbosity levels for import and validation runs."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any

from rich.console import Console


def setup_logging(verbose: bool, quiet: bool = False) -> None:
    """Configure logging based on verbosity; quiet keeps warnings and errors only."""
    level = logging.DEBUG if verbose else logging.INFO
    if quiet:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


class Verbosity(IntEnum):
    """Verbosity levels for console output."""

    DEFAULT = 0   # Summary table only
    VERBOSE = 1   # + per-file and per-phase progress
    DEBUG = 2     # + per-record decisions, timing


@dataclass
class StepLog:
    """Per-step statistics (one input file or one validation phase)."""

    name: str
    processed: int = 0
    added: int = 0
    duplicates: int = 0
    rejected: int = 0
    violations: int = 0
    time_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "processed": self.processed,
            "added": self.added,
            "duplicates": self.duplicates,
            "rejected": self.rejected,
            "violations": self.violations,
            "time_seconds": self.time_seconds,
        }


@dataclass
class RunLog:
    """Structured log of a complete run.

    The dict format is::

        {
            "run_id": "20240315T101500Z",
            "kind": "import",
            "steps": {
                "calls-backup.xml": {"processed": 10, "added": 8, ...},
                ...
            },
            "total_time": 1.2,
            "total_processed": 10,
        }
    """

    run_id: str = ""
    kind: str = ""
    steps: dict[str, StepLog] = field(default_factory=dict)
    total_time: float = 0.0
    total_processed: int = 0

    def get_or_create_step(self, name: str) -> StepLog:
        """Get existing step log or create a new one."""
        if name not in self.steps:
            self.steps[name] = StepLog(name=name)
        return self.steps[name]

    def finalize(self) -> None:
        self.total_processed = sum(s.processed for s in self.steps.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "kind": self.kind,
            "steps": {name: step.to_dict() for name, step in self.steps.items()},
            "total_time": self.total_time,
            "total_processed": self.total_processed,
        }


class RunLogger:
    """Structured logger for import and validation runs.

    Writes JSONL log files to ``log_dir`` and optionally emits console
    output via Rich based on verbosity level. The log directory must live
    outside the repository, otherwise the manifest would list log files.
    """

    def __init__(
        self,
        kind: str,
        verbosity: Verbosity = Verbosity.DEFAULT,
        log_dir: Path | None = None,
        console: Console | None = None,
    ):
        self.verbosity = verbosity
        self.log_dir = log_dir
        self.console = console or Console(stderr=True)
        self.run_log = RunLog(
            run_id=datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ"),
            kind=kind,
        )
        self._log_file = None
        self._log_path: Path | None = None
        self._step_starts: dict[str, float] = {}
        self._run_start = time.time()

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            self._log_path = log_dir / f"{kind}-{self.run_log.run_id}.jsonl"
            self._log_file = open(self._log_path, "a")

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def _write_event(self, event: dict[str, Any]) -> None:
        if self._log_file is not None:
            event["timestamp"] = datetime.now(timezone.utc).isoformat()
            self._log_file.write(json.dumps(event, default=str) + "\n")
            self._log_file.flush()

    def _console_print(self, message: str, min_verbosity: Verbosity) -> None:
        if self.verbosity >= min_verbosity:
            self.console.print(message)

    # -- Run events --

    def run_start(self, target: str, **extra: Any) -> None:
        self._run_start = time.time()
        self._write_event({"event": "run_start", "kind": self.run_log.kind,
                           "target": target, **extra})
        self._console_print(
            f"[bold]{self.run_log.kind.capitalize()}:[/bold] {target}",
            Verbosity.VERBOSE,
        )

    def run_finish(self, **extra: Any) -> None:
        self.run_log.total_time = time.time() - self._run_start
        self.run_log.finalize()
        self._write_event({
            "event": "run_finish",
            "total_time": round(self.run_log.total_time, 3),
            "total_processed": self.run_log.total_processed,
            **extra,
        })

    # -- Step events --

    def step_start(self, name: str) -> None:
        self._step_starts[name] = time.time()
        self.run_log.get_or_create_step(name)
        self._write_event({"event": "step_start", "step": name})
        self._console_print(f"  [dim]→[/dim] {name}", Verbosity.VERBOSE)

    def step_finish(self, name: str, **counts: int) -> StepLog:
        step = self.run_log.get_or_create_step(name)
        started = self._step_starts.pop(name, None)
        if started is not None:
            step.time_seconds = time.time() - started
        for key, value in counts.items():
            setattr(step, key, getattr(step, key) + value)
        self._write_event({
            "event": "step_finish",
            **step.to_dict(),
            "time_seconds": round(step.time_seconds, 3),
        })
        self._console_print(
            f"  [green]✓[/green] {name} ({step.time_seconds:.2f}s)",
            Verbosity.VERBOSE,
        )
        return step

    def record_decision(self, step: str, record_hash: str, decision: str) -> None:
        """Per-record trace: ``added``, ``duplicate`` or ``rejected``."""
        self._write_event({
            "event": "record",
            "step": step,
            "hash": record_hash,
            "decision": decision,
        })
        self._console_print(
            f"    [dim]{decision}[/dim] {record_hash[:12]}", Verbosity.DEBUG,
        )

    def warning(self, message: str) -> None:
        self._write_event({"event": "warning", "message": message})
        self._console_print(f"  [yellow]warning:[/yellow] {message}", Verbosity.DEFAULT)

    def close(self) -> None:
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

    def __enter__(self) -> RunLogger:
        return self

    def __exit__(self, *exc) -> None:
        self.close()
