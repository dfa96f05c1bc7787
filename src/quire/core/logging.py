"""Structured logging and verbosity levels for Quire runs."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from pathlib import Path
from typing import Any

from rich.console import Console


class Verbosity(IntEnum):
    """Verbosity levels for console output."""

    DEFAULT = 0   # Summary table only
    VERBOSE = 1   # + per-format and per-channel progress
    DEBUG = 2     # + converter commands, timing


@dataclass
class StageLog:
    """Per-target (or per-release) statistics."""

    name: str
    rendered: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    time_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "rendered": list(self.rendered),
            "cached": list(self.cached),
            "failed": dict(self.failed),
            "time_seconds": self.time_seconds,
        }


@dataclass
class RunLog:
    """Structured log of one CLI invocation.

    The dict format is::

        {
            "run_id": "20261017T101500Z",
            "stages": {
                "full": {"rendered": ["pdf"], "cached": ["markdown"], "failed": {}, ...},
            },
            "total_rendered": 1,
            "total_cached": 1,
            "total_failed": 0,
            "total_time": 2.4,
        }
    """

    run_id: str = ""
    stages: dict[str, StageLog] = field(default_factory=dict)
    total_time: float = 0.0
    total_rendered: int = 0
    total_cached: int = 0
    total_failed: int = 0

    def get_or_create_stage(self, name: str) -> StageLog:
        if name not in self.stages:
            self.stages[name] = StageLog(name=name)
        return self.stages[name]

    def finalize(self) -> None:
        self.total_rendered = sum(len(s.rendered) for s in self.stages.values())
        self.total_cached = sum(len(s.cached) for s in self.stages.values())
        self.total_failed = sum(len(s.failed) for s in self.stages.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stages": {name: stage.to_dict() for name, stage in self.stages.items()},
            "total_rendered": self.total_rendered,
            "total_cached": self.total_cached,
            "total_failed": self.total_failed,
            "total_time": self.total_time,
        }


class QuireLogger:
    """Structured logger for Quire runs.

    Writes JSONL log files to build_dir/logs/ and optionally emits
    console output via Rich based on verbosity level. Safe to call from
    render and sync worker threads.
    """

    def __init__(
        self,
        verbosity: Verbosity = Verbosity.DEFAULT,
        build_dir: Path | None = None,
        console: Console | None = None,
    ):
        self.verbosity = verbosity
        self.build_dir = build_dir
        self.console = console or Console()
        self.run_log = RunLog(
            run_id=datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ"),
        )
        self._lock = threading.Lock()
        self._log_file = None
        self._log_path: Path | None = None
        self._run_start = time.time()

        if build_dir is not None:
            logs_dir = build_dir / "logs"
            logs_dir.mkdir(parents=True, exist_ok=True)
            self._log_path = logs_dir / f"{self.run_log.run_id}.jsonl"
            self._log_file = open(self._log_path, "a")

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    def _write_event(self, event: dict[str, Any]) -> None:
        """Write a JSON event to the JSONL log file."""
        with self._lock:
            if self._log_file is not None:
                event["timestamp"] = datetime.now(timezone.utc).isoformat()
                self._log_file.write(json.dumps(event) + "\n")
                self._log_file.flush()

    def _console_print(self, message: str, min_verbosity: Verbosity) -> None:
        if self.verbosity >= min_verbosity:
            self.console.print(message)

    # -- Resolution and assembly --

    def target_resolved(self, target: str, fragment_count: int) -> None:
        self.run_log.get_or_create_stage(target)
        self._write_event({"event": "target_resolved", "target": target, "fragments": fragment_count})
        self._console_print(
            f"  [bold]Resolved:[/bold] {target} ({fragment_count} fragments)",
            Verbosity.VERBOSE,
        )

    def target_assembled(self, target: str, source_digest: str) -> None:
        self._write_event({"event": "target_assembled", "target": target, "source_digest": source_digest})
        self._console_print(f"  [dim]Assembled {target}: {source_digest[:19]}[/dim]", Verbosity.DEBUG)

    # -- Render events --

    def format_start(self, target: str, format_id: str) -> float:
        """Log the start of a render. Returns start time for pairing with format_finish."""
        self._write_event({"event": "format_start", "target": target, "format": format_id})
        self._console_print(f"    [dim]Rendering {target}/{format_id}...[/dim]", Verbosity.DEBUG)
        return time.time()

    def format_finish(self, target: str, format_id: str, content_hash: str, size: int, start_time: float) -> None:
        elapsed = time.time() - start_time
        with self._lock:
            self.run_log.get_or_create_stage(target).rendered.append(format_id)
        self._write_event({
            "event": "format_finish",
            "target": target,
            "format": format_id,
            "content_hash": content_hash,
            "size": size,
            "duration_seconds": round(elapsed, 3),
        })
        self._console_print(
            f"      [green]+[/green] {target}/{format_id} ({size} bytes, {elapsed:.1f}s)",
            Verbosity.VERBOSE,
        )

    def format_cached(self, target: str, format_id: str, content_hash: str) -> None:
        with self._lock:
            self.run_log.get_or_create_stage(target).cached.append(format_id)
        self._write_event({
            "event": "format_cached",
            "target": target,
            "format": format_id,
            "content_hash": content_hash,
        })
        self._console_print(f"      [cyan]=[/cyan] {target}/{format_id} (cached)", Verbosity.VERBOSE)

    def format_invalidated(self, target: str, format_id: str, reasons: list[str]) -> None:
        """Record why a (target, format) pair could not be served from cache."""
        self._write_event({
            "event": "format_invalidated",
            "target": target,
            "format": format_id,
            "reasons": reasons,
        })
        self._console_print(
            f"      [yellow]~[/yellow] {target}/{format_id}: {', '.join(reasons)}",
            Verbosity.VERBOSE,
        )

    def format_failed(self, target: str, format_id: str, error: str) -> None:
        with self._lock:
            self.run_log.get_or_create_stage(target).failed[format_id] = error
        self._write_event({"event": "format_failed", "target": target, "format": format_id, "error": error})
        self._console_print(f"      [red]x[/red] {target}/{format_id}: {error}", Verbosity.VERBOSE)

    # -- Release events --

    def release_created(self, version: str, artifact_count: int) -> None:
        self._write_event({"event": "release_created", "version": version, "artifacts": artifact_count})
        self._console_print(f"  [bold]Release {version}[/bold] drafted ({artifact_count} artifacts)", Verbosity.VERBOSE)

    def release_published(self, version: str) -> None:
        self._write_event({"event": "release_published", "version": version})
        self._console_print(f"  [bold]Release {version}[/bold] published", Verbosity.VERBOSE)

    # -- Sync events --

    def channel_synced(self, channel: str, version: str) -> None:
        self._write_event({"event": "channel_synced", "channel": channel, "version": version})
        self._console_print(f"      [green]+[/green] {channel} <- {version}", Verbosity.VERBOSE)

    def channel_failed(self, channel: str, version: str, outcome: str, error: str) -> None:
        self._write_event({
            "event": "channel_failed",
            "channel": channel,
            "version": version,
            "outcome": outcome,
            "error": error,
        })
        self._console_print(f"      [red]x[/red] {channel} ({outcome}): {error}", Verbosity.VERBOSE)

    # -- Run lifecycle --

    def run_start(self, command: str, **details: Any) -> None:
        self._run_start = time.time()
        self._write_event({"event": "run_start", "command": command, **details})

    def run_finish(self) -> None:
        self.run_log.total_time = time.time() - self._run_start
        self.run_log.finalize()
        self._write_event({
            "event": "run_finish",
            "total_time": round(self.run_log.total_time, 3),
            "total_rendered": self.run_log.total_rendered,
            "total_cached": self.run_log.total_cached,
            "total_failed": self.run_log.total_failed,
        })
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._log_file is not None:
                self._log_file.close()
                self._log_file = None
