"""phonearchive CLI — main entry point and shared utilities."""

from __future__ import annotations

import os
from pathlib import Path

import click
from rich.console import Console

from phonearchive.core.logging import setup_logging

console = Console()
err_console = Console(stderr=True)

# Exit codes shared by every command.
EXIT_OK = 0
EXIT_INVALID = 1
EXIT_ERROR = 2

SEVERITY_STYLES = {
    "error": "red",
    "warning": "yellow",
}


def default_repo_root() -> str:
    return os.environ.get("PHONEARCHIVE_REPO_ROOT", ".")


def repo_root_option(fn):
    """Shared ``--repo-root`` option, defaulting to $PHONEARCHIVE_REPO_ROOT or cwd."""
    return click.option(
        "--repo-root",
        "-r",
        type=click.Path(file_okay=False, path_type=Path),
        default=default_repo_root,
        show_default="$PHONEARCHIVE_REPO_ROOT or .",
        help="Repository directory",
    )(fn)


def fail(message: str, code: int = EXIT_ERROR) -> None:
    err_console.print(f"[red]Error:[/red] {message}")
    raise SystemExit(code)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-error output")
@click.version_option(package_name="phonearchive")
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool) -> None:
    """phonearchive — deduplicated archive of call and SMS/MMS backups."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    console.quiet = quiet
    setup_logging(verbose, quiet)


def cli():
    """Entrypoint that loads .env before running the CLI."""
    from dotenv import load_dotenv

    load_dotenv()
    main()


# Import subcommand modules to register commands
from phonearchive.cli.contacts_commands import reprocess_contacts  # noqa: E402
from phonearchive.cli.import_commands import import_backups  # noqa: E402
from phonearchive.cli.info_commands import info  # noqa: E402
from phonearchive.cli.init_commands import init  # noqa: E402
from phonearchive.cli.validate_commands import validate  # noqa: E402

main.add_command(init)
main.add_command(import_backups, name="import")
main.add_command(validate)
main.add_command(info)
main.add_command(reprocess_contacts, name="reprocess-contacts")
