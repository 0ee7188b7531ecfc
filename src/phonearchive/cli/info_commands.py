"""Info command — show what a repository holds."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich import box
from rich.table import Table

from phonearchive.cli.main import EXIT_ERROR, console, fail, repo_root_option


@click.command()
@repo_root_option
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def info(repo_root: Path, output_json: bool):
    """Show repository marker and summary statistics."""
    from phonearchive.core.errors import RepositoryError
    from phonearchive.repository.marker import load_marker
    from phonearchive.repository.summary import load_summary

    try:
        marker = load_marker(repo_root)
        summary = load_summary(repo_root)
    except RepositoryError as exc:
        fail(f"{repo_root} is not a readable repository: {exc}", EXIT_ERROR)

    if output_json:
        click.echo(json.dumps({
            "marker": marker.to_dict(),
            "last_updated": summary.last_updated,
            "total_calls": summary.total_calls,
            "total_sms": summary.total_sms,
            "total_attachments": summary.total_attachments,
            "total_attachment_bytes": summary.total_attachment_bytes,
            "calls_by_year": {str(y): n for y, n in sorted(summary.calls_by_year.items())},
            "sms_by_year": {str(y): n for y, n in sorted(summary.sms_by_year.items())},
        }, indent=2))
        return

    console.print(f"\n[bold]Repository:[/bold] {repo_root}")
    console.print(f"  Structure version: {marker.repository_structure_version}")
    console.print(f"  Created: {marker.created_at} by {marker.created_by}")
    console.print(f"  Last updated: {summary.last_updated or '-'}")

    table = Table(title="Records by Year", box=box.ROUNDED)
    table.add_column("Year", style="bold")
    table.add_column("Calls", justify="right")
    table.add_column("Messages", justify="right")
    for year in sorted(set(summary.calls_by_year) | set(summary.sms_by_year)):
        table.add_row(
            str(year),
            str(summary.calls_by_year.get(year, 0)),
            str(summary.sms_by_year.get(year, 0)),
        )
    table.add_row("[bold]Total[/bold]", str(summary.total_calls), str(summary.total_sms))
    console.print()
    console.print(table)
    console.print(
        f"\nAttachments: {summary.total_attachments} "
        f"({summary.total_attachment_bytes} bytes)"
    )
