"""Init command — create an empty repository."""

from __future__ import annotations

from pathlib import Path

import click
from rich.tree import Tree

from phonearchive.cli.main import EXIT_ERROR, console, fail


@click.command()
@click.argument("repo_root", type=click.Path(file_okay=False, path_type=Path))
@click.option("--dry-run", is_flag=True, help="Show what would be created without writing")
def init(repo_root: Path, dry_run: bool):
    """Create a new, empty repository at REPO_ROOT."""
    from phonearchive.core.errors import RepositoryError
    from phonearchive.repository.creator import initialize_repository

    try:
        result = initialize_repository(repo_root, dry_run=dry_run)
    except (RepositoryError, OSError) as exc:
        fail(str(exc), EXIT_ERROR)

    verb = "Would create" if dry_run else "Created"
    tree = Tree(f"[bold]{repo_root}[/bold]")
    for name in result.created_dirs:
        tree.add(f"[blue]{name}/[/blue]")
    for name in result.created_files:
        tree.add(name)
    console.print(f"{verb} repository:")
    console.print(tree)
