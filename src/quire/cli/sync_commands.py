"""Sync commands — quire sync, quire status."""

from __future__ import annotations

import sys

import click
from rich import box
from rich.table import Table

from quire.cli.main import book_option, console, load_project, styled
from quire.core.errors import ReleaseError


@click.command()
@click.argument("channels", nargs=-1)
@book_option
@click.option("--all", "sync_all", is_flag=True, help="Sync every declared channel")
@click.option("--version", "version", default=None, help="Release to sync (default: latest published)")
@click.option("--retries", default=0, type=int, help="Retries for transient failures")
@click.option("--timeout", default=None, type=float, help="Seconds allowed per channel push")
@click.option("--concurrency", "-j", default=None, type=int, help="Channels synced in parallel")
@click.option("--verbose", "-v", count=True, help="Verbosity level")
def sync(
    channels: tuple[str, ...],
    book_path: str,
    sync_all: bool,
    version: str | None,
    retries: int,
    timeout: float | None,
    concurrency: int | None,
    verbose: int,
):
    """Push a published release to CHANNELS.

    Each channel succeeds or fails on its own; the command exits non-zero
    if any channel failed.
    """
    from quire.config import get_settings
    from quire.core.logging import QuireLogger, Verbosity
    from quire.release import ReleaseManager
    from quire.sync.service import sync_channels

    settings = get_settings()
    book = load_project(book_path)

    if sync_all:
        descriptors = list(book.channels)
    else:
        descriptors = []
        for name in channels:
            descriptor = book.channel(name)
            if descriptor is None:
                known = ", ".join(c.name for c in book.channels) or "none declared"
                console.print(f"[red]Error:[/red] unknown channel [bold]{name}[/bold] (channels: {known})")
                sys.exit(1)
            descriptors.append(descriptor)
    if not descriptors:
        console.print("[red]Error:[/red] name one or more channels, or pass --all")
        sys.exit(1)

    manager = ReleaseManager(settings)
    try:
        target_release = manager.get(version) if version else manager.latest_published()
    except ReleaseError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    if target_release is None:
        what = f"release {version}" if version else "published release"
        console.print(f"[red]Error:[/red] no {what} found")
        sys.exit(1)

    run_logger = QuireLogger(
        verbosity=Verbosity(min(verbose, Verbosity.DEBUG)),
        build_dir=settings.storage_dir,
        console=console,
    )
    run_logger.run_start("sync", version=str(target_release.version), channels=[d.name for d in descriptors])
    try:
        results = sync_channels(
            target_release,
            descriptors,
            manager.release_dir(target_release.version),
            settings=settings,
            concurrency=concurrency,
            timeout=timeout,
            retries=retries,
            source_dir=book.source_dir,
            run_logger=run_logger,
        )
    except ReleaseError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        run_logger.run_finish()

    table = Table(title=f"Sync {target_release.version}", box=box.ROUNDED)
    table.add_column("Channel", style="bold")
    table.add_column("Outcome", justify="center")
    table.add_column("Attempts", justify="right")
    table.add_column("Location / Error")
    for result in results:
        detail = result.location if result.success else (result.error or "")
        table.add_row(result.channel, styled(result.outcome), str(result.attempts), detail)
    console.print(table)

    failed = [r for r in results if not r.success]
    if failed:
        console.print(f"\n[red]{len(failed)} of {len(results)} channels failed[/red]")
        sys.exit(1)


@click.command()
@book_option
def status(book_path: str):
    """Show releases and each channel's sync state."""
    from quire.config import get_settings
    from quire.release import ReleaseManager
    from quire.sync.service import get_channel_state

    settings = get_settings()
    book = load_project(book_path)
    manager = ReleaseManager(settings)
    latest = manager.latest()
    published = manager.latest_published()

    console.print(f"[bold]Book:[/bold] {book.title}")
    console.print(f"[bold]Latest release:[/bold] {latest.version if latest else '-'}"
                  + (f" {styled(latest.status.value)}" if latest else ""))
    console.print(f"[bold]Latest published:[/bold] {published.version if published else '-'}")

    if not book.channels:
        console.print("\n[dim]No channels declared.[/dim]")
        return

    table = Table(title="Channels", box=box.ROUNDED)
    table.add_column("Channel", style="bold")
    table.add_column("Kind")
    table.add_column("Synced", no_wrap=True)
    table.add_column("At")
    table.add_column("State", justify="center", no_wrap=True)
    table.add_column("Last error")
    for descriptor in book.channels:
        state = get_channel_state(descriptor.name, settings)
        if state.last_synced_version is None:
            label = "[dim]never synced[/dim]"
        elif state.is_stale(published.version if published else None):
            label = "[yellow]stale[/yellow]"
        else:
            label = "[green]current[/green]"
        table.add_row(
            descriptor.name,
            descriptor.kind,
            str(state.last_synced_version) if state.last_synced_version else "-",
            state.last_synced_at.strftime("%Y-%m-%d %H:%M") if state.last_synced_at else "-",
            label,
            state.last_error or "",
        )
    console.print(table)
