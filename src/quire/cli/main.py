"""Quire CLI — main entry point and shared utilities."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console

from quire.core.errors import ProjectError
from quire.core.models import Book

console = Console()

# Status styles shared by the summary tables
STATUS_STYLES = {
    "built": "green",
    "cached": "cyan",
    "failed": "red",
    "success": "green",
    "transient": "yellow",
    "permanent": "red",
    "draft": "yellow",
    "published": "green",
}


def styled(status: str) -> str:
    """Wrap a status label in its Rich style."""
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def setup_logging(debug: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def book_option(fn):
    """Shared Click option for the project file, defaulting to ./book.py."""
    return click.option(
        "--book",
        "-b",
        "book_path",
        default="book.py",
        show_default=True,
        help="Path to the project definition",
    )(fn)


def load_project(book_path: str) -> Book:
    """Load book.py, printing the error and exiting 1 on failure."""
    from quire.build.project import load_book

    if not Path(book_path).exists():
        console.print(
            f"[red]Error:[/red] [bold]{book_path}[/bold] not found. "
            "Run [bold]quire init[/bold] to create a project."
        )
        sys.exit(1)
    try:
        return load_book(book_path)
    except ProjectError as e:
        console.print(f"[red]Error loading book:[/red] {e}")
        sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool):
    """Quire — build and release a manuscript in many formats."""
    setup_logging(debug)


def cli():
    """Entrypoint that loads .env before running the CLI."""
    from dotenv import load_dotenv

    load_dotenv()
    main()


# Import subcommand modules to register commands
from quire.cli.build_commands import build, resolve, validate  # noqa: E402
from quire.cli.clean_commands import clean  # noqa: E402
from quire.cli.init_commands import init  # noqa: E402
from quire.cli.release_commands import publish, release, releases  # noqa: E402
from quire.cli.sync_commands import status, sync  # noqa: E402

# Register commands
main.add_command(init)
main.add_command(resolve)
main.add_command(validate)
main.add_command(build)
main.add_command(release)
main.add_command(publish)
main.add_command(releases)
main.add_command(sync)
main.add_command(status)
main.add_command(clean)
