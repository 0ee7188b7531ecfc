"""Validate command — check repository integrity."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich import box
from rich.table import Table

from phonearchive.cli.main import (
    EXIT_ERROR,
    EXIT_INVALID,
    EXIT_OK,
    SEVERITY_STYLES,
    console,
    fail,
    repo_root_option,
)
from phonearchive.validation.validator import PHASES


def _violation_table(report) -> Table:
    table = Table(title="Violations", box=box.ROUNDED)
    table.add_column("Severity", justify="center")
    table.add_column("Type", style="bold")
    table.add_column("File")
    table.add_column("Message")
    for v in report.violations:
        style = SEVERITY_STYLES.get(str(v.severity), "white")
        table.add_row(f"[{style}]{v.severity}[/{style}]", str(v.type), v.file, v.message)
    return table


def _show_metrics(metrics) -> None:
    table = Table(title="Metrics", box=box.ROUNDED)
    table.add_column("Phase", style="bold")
    table.add_column("Seconds", justify="right")
    for name in PHASES:
        if name in metrics.phase_durations:
            table.add_row(name, f"{metrics.phase_durations[name]:.3f}")
    table.caption = (
        f"total {metrics.total_duration:.3f}s, {metrics.files_processed} file(s), "
        f"cache {metrics.cache_hits} hit(s) / {metrics.cache_misses} miss(es)"
    )
    console.print(table)


def _print_orphan_removal(result) -> None:
    verb = "Would remove" if result.dry_run else "Removed"
    console.print(
        f"{verb} {result.orphans_removed} of {result.orphans_found} orphaned attachment(s) "
        f"({result.bytes_freed} bytes), {result.attachments_scanned} scanned"
    )
    for failure in result.failed_removals:
        console.print(f"[red]  failed to remove {failure.path}: {failure.error}[/red]")


def _print_report(report) -> None:
    console.print()
    if report.violations:
        console.print(_violation_table(report))
    style = "green" if report.passed else "red"
    console.print(f"\n[bold {style}]{report.summary}[/bold {style}]")


@click.command()
@repo_root_option
@click.option("--sequential", is_flag=True, help="Run phases one after another")
@click.option("--early-termination", is_flag=True,
              help="Stop at the first checksum mismatch or structure violation")
@click.option("--max-concurrency", type=int, default=None, help="Worker threads for parallel phases")
@click.option("--timeout", type=float, default=None, help="Give up after this many seconds")
@click.option("--phase", type=click.Choice(PHASES), default=None, help="Run a single phase only")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--show-metrics", is_flag=True, help="Print phase timings and cache counters")
@click.option("--remove-orphan-attachments", is_flag=True,
              help="Delete stored attachments no message references")
@click.option("--dry-run", is_flag=True,
              help="With --remove-orphan-attachments, only report what would be removed")
def validate(repo_root: Path, sequential: bool, early_termination: bool,
             max_concurrency: int | None, timeout: float | None, phase: str | None,
             output_json: bool, show_metrics: bool, remove_orphan_attachments: bool,
             dry_run: bool):
    """Validate repository integrity.

    Phases: structure, manifest, checksum, content, consistency.

    Exits 0 when the repository is valid, 1 when it has errors and 2 when
    validation could not complete. Orphan removal runs after validation and
    does not change the exit code.
    """
    from phonearchive.attachments.orphans import remove_orphan_attachments as remove_orphans
    from phonearchive.core.config import ValidationOptions
    from phonearchive.core.errors import (
        ArchiveError,
        EarlyTerminationError,
    )
    from phonearchive.validation.types import Report
    from phonearchive.validation.validator import RepositoryValidator

    def on_progress(name: str, fraction: float) -> None:
        if not output_json:
            console.print(f"[dim]  {name} done ({fraction:.0%})[/dim]")

    try:
        validator = RepositoryValidator(repo_root)
        if phase:
            report = Report.build(str(repo_root), validator.run_phase(phase))
        else:
            data = {
                "early_termination": early_termination,
                "max_concurrency": max_concurrency,
                "timeout": timeout,
                "progress_callback": on_progress,
            }
            if sequential:
                data["parallel"] = False
            report = validator.validate(ValidationOptions.from_dict(data))
    except EarlyTerminationError as exc:
        if output_json:
            out = exc.report.to_dict()
            out["terminated_early"] = exc.stage
            click.echo(json.dumps(out, indent=2))
        else:
            _print_report(exc.report)
            console.print(f"[red]Stopped early in the {exc.stage} phase[/red]")
        sys.exit(EXIT_INVALID)
    except (ArchiveError, ValueError) as exc:
        fail(str(exc), EXIT_ERROR)

    orphans = None
    if remove_orphan_attachments:
        try:
            orphans = remove_orphans(repo_root, dry_run=dry_run)
        except (ArchiveError, OSError) as exc:
            fail(f"orphan removal failed: {exc}", EXIT_ERROR)

    if output_json:
        out = report.to_dict()
        if show_metrics:
            out["metrics"] = validator.metrics().to_dict()
        if orphans is not None:
            out["orphan_removal"] = orphans.to_dict()
        click.echo(json.dumps(out, indent=2))
        sys.exit(EXIT_OK if report.passed else EXIT_INVALID)

    _print_report(report)
    if show_metrics:
        _show_metrics(validator.metrics())
    if orphans is not None:
        _print_orphan_removal(orphans)
    sys.exit(EXIT_OK if report.passed else EXIT_INVALID)
