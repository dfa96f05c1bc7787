"""Build commands — quire resolve, quire validate, quire build."""

from __future__ import annotations

import sys

import click
from rich import box
from rich.panel import Panel
from rich.table import Table

from quire.cli.main import book_option, console, load_project, styled
from quire.core.errors import ManifestError, QuireError
from quire.core.models import Book


def _human_size(size: int) -> str:
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _expand_targets(book: Book, target: str) -> list[str]:
    if target == "all":
        return list(book.targets)
    return [t.strip() for t in target.split(",") if t.strip()]


@click.command()
@click.argument("target")
@book_option
def resolve(target: str, book_path: str):
    """Show the ordered fragments a target's manifest resolves to."""
    from quire.build.runner import resolver_for

    book = load_project(book_path)
    try:
        fragments = resolver_for(book).resolve(target)
    except ManifestError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    table = Table(title=f"Manifest: {target}", box=box.ROUNDED)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Fragment", style="bold")
    table.add_column("Kind")
    table.add_column("Title")
    for index, fragment in enumerate(fragments, start=1):
        table.add_row(str(index), fragment.identifier, fragment.kind.value, fragment.title)
    console.print(table)
    console.print(f"\n[bold]{len(fragments)}[/bold] fragments")


@click.command()
@book_option
def validate(book_path: str):
    """Check every target's manifest and the sample-of-full ordering.

    Fragments on disk that no manifest lists are reported as warnings.
    """
    from quire.build.runner import resolver_for

    book = load_project(book_path)
    resolver = resolver_for(book)

    table = Table(title="Manifest Validation", box=box.ROUNDED)
    table.add_column("Target", style="bold")
    table.add_column("Status", justify="center", no_wrap=True)
    table.add_column("Detail")

    failed = False
    for target, outcome in resolver.validate_manifests(list(book.targets)).items():
        if isinstance(outcome, ManifestError):
            failed = True
            table.add_row(target, "[red]FAIL[/red]", str(outcome))
            continue
        table.add_row(target, "[green]PASS[/green]", f"{len(outcome)} fragments")
    console.print(table)

    try:
        unlisted = resolver.unlisted()
    except ManifestError:
        unlisted = []
    for identifier in unlisted:
        console.print(f"[yellow]Warning:[/yellow] {identifier} is not listed in any manifest")

    if failed:
        sys.exit(1)


@click.command()
@click.argument("target")
@click.argument("formats", nargs=-1)
@book_option
@click.option("--build-dir", default=None, help="Override build directory")
@click.option("--label", default=None, help="Version label stamped into the output (default: book version)")
@click.option("--force", is_flag=True, help="Re-render even when a cached artifact matches")
@click.option("--concurrency", "-j", default=None, type=int, help="Formats rendered in parallel")
@click.option("--verbose", "-v", count=True, help="Verbosity level: -v per-format, -vv converter details")
def build(
    target: str,
    formats: tuple[str, ...],
    book_path: str,
    build_dir: str | None,
    label: str | None,
    force: bool,
    concurrency: int | None,
    verbose: int,
):
    """Render TARGET in one or more FORMATS.

    TARGET may be a single target, a comma-separated list, or "all".
    FORMATS default to every format declared in book.py.
    """
    from quire.build.converter import PandocConverter
    from quire.build.runner import run as run_build
    from quire.config import get_settings

    settings = get_settings()
    book = load_project(book_path)
    targets = _expand_targets(book, target)
    format_ids = list(formats) or list(book.formats) or ["markdown"]
    if build_dir is None and settings.build_dir is not None:
        build_dir = str(settings.build_dir)
    concurrency = concurrency or settings.render_concurrency

    console.print(
        Panel(
            f"[bold]Book:[/bold] {book.title}\n"
            f"[bold]Targets:[/bold] {', '.join(targets)}\n"
            f"[bold]Formats:[/bold] {', '.join(format_ids)}\n"
            f"[bold]Build:[/bold] {build_dir or book.build_dir}",
            title="[bold cyan]Quire Build[/bold cyan]",
            border_style="cyan",
        )
    )

    converter = PandocConverter(settings.pandoc_path, settings.pdf_engine)
    try:
        result = run_build(
            book,
            targets,
            format_ids,
            build_dir=build_dir,
            converter=converter,
            concurrency=concurrency,
            force=force,
            version=label,
            verbosity=verbose,
        )
    except QuireError as e:
        console.print(f"\n[red]Build failed:[/red] {e}")
        sys.exit(1)

    table = Table(title="Build Summary", box=box.ROUNDED)
    table.add_column("Target", style="bold", no_wrap=True)
    table.add_column("Format")
    table.add_column("Status", justify="center", no_wrap=True)
    table.add_column("Size", justify="right")
    table.add_column("Hash / Error")

    for target_result in result.targets:
        if target_result.error is not None:
            table.add_row(target_result.target, "-", styled("failed"), "", str(target_result.error))
            continue
        for format_id, fr in target_result.results.items():
            if fr.ok:
                status = "cached" if fr.cached else "built"
                table.add_row(
                    target_result.target,
                    format_id,
                    styled(status),
                    _human_size(fr.artifact.size),
                    f"[dim]{fr.artifact.content_hash[:19]}[/dim]",
                )
            else:
                cause = fr.error.cause if fr.error is not None else "not rendered"
                table.add_row(target_result.target, format_id, styled("failed"), "", str(cause))

    console.print()
    console.print(table)
    console.print(
        f"\n[bold]Total:[/bold] {result.built} built, {result.cached} cached, {result.failed} failed"
    )
    console.print(f"[bold]Time:[/bold] {result.total_time:.1f}s")

    if not result.ok:
        sys.exit(1)
