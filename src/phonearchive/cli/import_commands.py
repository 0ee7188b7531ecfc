"""Import command — coalesce backup files into a repository."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich import box
from rich.table import Table

from phonearchive.cli.main import EXIT_ERROR, EXIT_INVALID, console, fail, repo_root_option


def _entity_table(title: str, stats) -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Year", style="bold")
    table.add_column("Initial", justify="right")
    table.add_column("Added", justify="right", style="green")
    table.add_column("Duplicates", justify="right", style="dim")
    table.add_column("Final", justify="right")
    for year, stat in sorted(stats.years.items()):
        table.add_row(str(year), str(stat.initial), str(stat.added),
                      str(stat.duplicates), str(stat.final))
    total = stats.total
    table.add_row(
        "[bold]Total[/bold]", str(total.initial), str(total.added),
        str(total.duplicates), str(total.final),
    )
    if total.rejected or total.errors:
        table.caption = f"rejected: {total.rejected}  errors: {total.errors}"
    return table


@click.command()
@repo_root_option
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--dry-run", is_flag=True, help="Process input without writing to the repository")
@click.option("--filter", "entity_filter", type=click.Choice(["calls", "sms"]),
              default=None, help="Only import one record kind")
@click.option("--max-xml-size", default=None, help="Per-file size limit, e.g. 500MB")
@click.option("--max-message-size", default=None,
              help="Reject single messages larger than this, e.g. 10MB")
@click.option("--no-error-on-rejects", is_flag=True,
              help="Exit 0 even when records were rejected")
@click.option("--log-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Write a JSONL run log here (outside the repository)")
@click.option("--json", "output_json", is_flag=True, help="Output the import summary as JSON")
@click.option("--verbose", "-v", "verbosity", count=True,
              help="Verbosity level: -v per-file, -vv per-record decisions")
def import_backups(repo_root: Path, paths: tuple[Path, ...], dry_run: bool,
                   entity_filter: str | None, max_xml_size: str | None,
                   max_message_size: str | None, no_error_on_rejects: bool,
                   log_dir: Path | None, output_json: bool, verbosity: int):
    """Import call and SMS/MMS backup files from PATHS.

    Directories are scanned for calls*.xml and sms*.xml files. Records
    already in the repository are skipped; invalid records are written to
    rejected/.
    """
    from phonearchive.core.config import ImportOptions
    from phonearchive.core.errors import ArchiveError
    from phonearchive.importer import Importer

    try:
        options = ImportOptions.from_dict({
            "repo_root": repo_root,
            "paths": list(paths),
            "dry_run": dry_run,
            "filter": entity_filter,
            "max_xml_size": max_xml_size,
            "max_message_size": max_message_size,
            "log_dir": log_dir,
            "verbosity": verbosity,
        })
        summary = Importer(options).run()
    except (ArchiveError, OSError, ValueError) as exc:
        fail(str(exc), EXIT_ERROR)

    rejected = summary.total_rejected and not no_error_on_rejects
    exit_code = EXIT_INVALID if rejected or summary.total_errors else 0

    if output_json:
        click.echo(json.dumps(summary.to_dict(), indent=2))
        raise SystemExit(exit_code)

    if dry_run:
        console.print("[yellow]Dry run — repository not modified[/yellow]")
    console.print(_entity_table("Calls", summary.calls))
    console.print(_entity_table("Messages", summary.sms))
    att = summary.attachments
    console.print(
        f"Attachments: [green]{att.extracted}[/green] extracted, "
        f"{att.referenced} already stored, {att.skipped} parts left inline"
    )
    for path in summary.rejection_files:
        console.print(f"[yellow]Rejected records written to[/yellow] {path}")
    console.print(f"[dim]{len(summary.files_processed)} file(s) in {summary.duration:.2f}s[/dim]")
    raise SystemExit(exit_code)
