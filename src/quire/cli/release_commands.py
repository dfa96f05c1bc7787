"""Release commands — quire release, quire publish, quire releases."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich import box
from rich.table import Table

from quire.cli.main import book_option, console, load_project, styled
from quire.core.errors import QuireError, ReleaseError


def _changelog_text(changelog: str | None, changelog_file: str | None) -> str:
    if changelog_file:
        return Path(changelog_file).read_text()
    return changelog or ""


@click.command()
@click.argument("version", required=False)
@book_option
@click.option("--bump", type=click.Choice(["major", "minor", "patch"]), default=None,
              help="Bump the latest release instead of naming a version")
@click.option("--changelog", "-m", default=None, help="Changelog entry text")
@click.option("--changelog-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Read the changelog entry from a file")
@click.option("--target", "targets", multiple=True, help="Targets to include (default: all)")
@click.option("--format", "formats", multiple=True, help="Formats to include (default: declared)")
@click.option("--build-dir", default=None, help="Override build directory")
@click.option("--strict", is_flag=True, help="Refuse to release artifacts built from older sources")
@click.option("--publish", "publish_now", is_flag=True, help="Publish immediately after creating")
def release(
    version: str | None,
    book_path: str,
    bump: str | None,
    changelog: str | None,
    changelog_file: str | None,
    targets: tuple[str, ...],
    formats: tuple[str, ...],
    build_dir: str | None,
    strict: bool,
    publish_now: bool,
):
    """Create a draft release VERSION from the latest built artifacts."""
    from quire.build.artifacts import ArtifactStore
    from quire.config import get_settings
    from quire.release import ReleaseManager, check_manifests, collect_artifacts, find_stale_artifacts

    if (version is None) == (bump is None):
        console.print("[red]Error:[/red] give either a VERSION or --bump")
        sys.exit(1)

    settings = get_settings()
    book = load_project(book_path)
    build_path = build_dir or (str(settings.build_dir) if settings.build_dir else book.build_dir)
    store = ArtifactStore(build_path)
    manager = ReleaseManager(settings, changelog_path=Path(book_path).resolve().parent / "CHANGELOG.md")

    target_ids = list(targets) or list(book.targets)
    format_ids = list(formats) or list(book.formats)
    if not format_ids:
        format_ids = sorted({e["format_id"] for e in store.entries().values()})

    try:
        check_manifests(book, target_ids)
        artifacts = collect_artifacts(store, target_ids, format_ids)
        stale = find_stale_artifacts(book, artifacts)
        if stale:
            for problem in stale:
                label = "[red]Error:[/red]" if strict else "[yellow]Warning:[/yellow]"
                console.print(f"{label} {problem}")
            if strict:
                sys.exit(1)

        release_version = version if version is not None else manager.next_version(bump)
        created = manager.create_release(
            artifacts, release_version, _changelog_text(changelog, changelog_file)
        )
        if publish_now:
            created = manager.publish(created.version)
    except ReleaseError as e:
        console.print(f"[red]Release failed:[/red] {e}")
        sys.exit(1)

    table = Table(title=f"Release {created.version}", box=box.ROUNDED)
    table.add_column("Target", style="bold")
    table.add_column("Format")
    table.add_column("File")
    table.add_column("Hash", style="dim")
    for artifact in created.artifacts:
        table.add_row(artifact.target, artifact.format_id, artifact.filename, artifact.content_hash[:19])
    console.print(table)
    console.print(
        f"\n[bold]{created.version}[/bold] {styled(created.status.value)} "
        f"[dim]({manager.release_dir(created.version)})[/dim]"
    )


@click.command()
@click.argument("version")
def publish(version: str):
    """Mark release VERSION as published (one way)."""
    from quire.config import get_settings
    from quire.release import ReleaseManager

    manager = ReleaseManager(get_settings())
    try:
        released = manager.publish(version)
    except ReleaseError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]Published[/green] [bold]{released.version}[/bold]")


@click.command()
def releases():
    """List every release, oldest first."""
    from quire.config import get_settings
    from quire.release import ReleaseManager

    try:
        history = ReleaseManager(get_settings()).list_releases()
    except QuireError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if not history:
        console.print("[dim]No releases yet.[/dim]")
        return

    table = Table(title="Releases", box=box.ROUNDED)
    table.add_column("Version", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Created")
    table.add_column("Published")
    table.add_column("Artifacts", justify="right")
    for rel in history:
        table.add_row(
            str(rel.version),
            styled(rel.status.value),
            rel.created_at.strftime("%Y-%m-%d %H:%M"),
            rel.published_at.strftime("%Y-%m-%d %H:%M") if rel.published_at else "-",
            str(len(rel.artifacts)),
        )
    console.print(table)
