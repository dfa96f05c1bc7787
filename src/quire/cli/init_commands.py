"""Init command — scaffold a new Quire book project."""

from __future__ import annotations

import shutil
import sys
from pathlib import Path

import click

from quire.cli.main import console


def _get_template_dir() -> Path:
    """Return the path to the bundled project template."""
    return Path(__file__).resolve().parent.parent / "templates" / "init"


@click.command()
@click.argument("project_dir", default="book")
@click.option("--title", default=None, help="Book title written into book.py")
@click.option("--author", default=None, help="Author written into book.py")
def init(project_dir: str, title: str | None, author: str | None):
    """Create a new book project with sample fragments and manifests.

    PROJECT_DIR is the directory to create (default: book).
    """
    target = Path(project_dir)
    if target.exists() and any(target.iterdir()):
        console.print(f"[red]Error:[/red] Directory [bold]{project_dir}[/bold] already exists and is not empty.")
        sys.exit(1)

    template_dir = _get_template_dir()
    if not template_dir.is_dir():
        console.print("[red]Error:[/red] Project template not found in this installation.")
        sys.exit(1)

    shutil.copytree(template_dir, target, dirs_exist_ok=True)

    book_file = target / "book.py"
    text = book_file.read_text()
    if title:
        text = text.replace('title="Untitled Book"', f"title={title!r}")
    if author:
        text = text.replace('author="Anonymous"', f"author={author!r}")
    book_file.write_text(text)

    console.print(
        f"[green]Created project[/green] [bold]{project_dir}/[/bold]\n"
        f"\n"
        f"  cd {project_dir}\n"
        f"  quire validate\n"
        f"  quire build all markdown\n"
        f"  quire release 0.1.0 -m 'First draft'"
    )
