"""Reprocess-contacts command — re-collect contact names from stored partitions."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich import box
from rich.table import Table

from phonearchive.cli.main import EXIT_ERROR, console, fail, repo_root_option


@click.command()
@repo_root_option
@click.option("--dry-run", is_flag=True, help="Show what would be added without writing")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def reprocess_contacts(repo_root: Path, dry_run: bool, output_json: bool):
    """Scan stored calls and messages for contact names.

    Names not in contacts.yaml are added to its unprocessed section;
    confirmed contacts are left alone. The manifest is regenerated.
    """
    from phonearchive.core.errors import ArchiveError
    from phonearchive.repository.contacts import reprocess_contacts as run_reprocess

    try:
        result = run_reprocess(repo_root, dry_run=dry_run)
    except (ArchiveError, OSError) as exc:
        fail(str(exc), EXIT_ERROR)

    if output_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if dry_run:
        console.print("[yellow]Dry run — contacts.yaml not modified[/yellow]")
    table = Table(title="Contacts Reprocessed", box=box.ROUNDED)
    table.add_column("Kind", style="bold")
    table.add_column("Files", justify="right")
    table.add_column("Records", justify="right")
    for kind in ("calls", "sms"):
        table.add_row(
            kind, str(result.files_processed[kind]), str(result.records_processed[kind]),
        )
    console.print(table)
    for path in result.failed_files:
        console.print(f"[yellow]Skipped unreadable partition[/yellow] {path}")
    if not result.added:
        console.print("No new contacts found")
        return
    verb = "Would add" if dry_run else "Added"
    console.print(f"{verb} {result.added_count} unprocessed contact name(s):")
    for number, names in result.added.items():
        console.print(f"  {number}: {', '.join(names)}")
