"""Clean command — remove build artifacts."""

from __future__ import annotations

import shutil
from pathlib import Path

import click

from quire.cli.main import book_option, console, load_project


@click.command()
@book_option
@click.option("--build-dir", default=None, help="Override build directory")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt")
def clean(book_path: str, build_dir: str | None, yes: bool):
    """Remove all build artifacts for a book.

    Deletes the entire build directory. Releases are never touched.
    """
    book = load_project(book_path)
    build_path = Path(build_dir or book.build_dir)

    if not build_path.exists():
        console.print("[dim]Nothing to clean, build directory does not exist.[/dim]")
        return

    if not yes:
        console.print(f"This will delete [bold]{build_path}[/bold] and all its contents.")
        if not click.confirm("Continue?"):
            console.print("[dim]Aborted.[/dim]")
            return

    shutil.rmtree(build_path)
    console.print(f"[green]Cleaned:[/green] {build_path}")
