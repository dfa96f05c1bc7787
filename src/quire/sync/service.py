"""Sync service — push published releases to channels and track their state."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path

from sqlalchemy import func

from quire.config import Settings, get_settings
from quire.core.errors import (
    PermanentSyncFailure,
    ReleaseStateError,
    TransientSyncFailure,
)
from quire.core.logging import QuireLogger
from quire.core.models import ChannelDescriptor, ChannelState, Release, Version
from quire.db.engine import get_session, init_database
from quire.db.models import ChannelStateRow, SyncAttemptRow
from quire.sync.base import Channel, SyncResult, get_channel

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_TRANSIENT = "transient"
OUTCOME_PERMANENT = "permanent"


# -- Channel state ------------------------------------------------------------


def get_channel_state(name: str, settings: Settings | None = None) -> ChannelState:
    """Last successful sync of a channel, plus the newest failure since then."""
    init_database(settings)
    with get_session(settings) as session:
        row = session.get(ChannelStateRow, name)
        last_success_id = (
            session.query(func.max(SyncAttemptRow.id))
            .filter(SyncAttemptRow.channel == name, SyncAttemptRow.outcome == OUTCOME_SUCCESS)
            .scalar()
        )
        failures = session.query(SyncAttemptRow).filter(
            SyncAttemptRow.channel == name, SyncAttemptRow.outcome != OUTCOME_SUCCESS
        )
        if last_success_id is not None:
            failures = failures.filter(SyncAttemptRow.id > last_success_id)
        last_failure = failures.order_by(SyncAttemptRow.id.desc()).first()

        return ChannelState(
            name=name,
            last_synced_version=(
                Version.parse(row.last_synced_version)
                if row is not None and row.last_synced_version
                else None
            ),
            last_synced_at=row.last_synced_at if row is not None else None,
            last_error=last_failure.message if last_failure is not None else None,
        )


def list_attempts(name: str, limit: int = 20, settings: Settings | None = None) -> list[dict]:
    """Most recent sync attempts for a channel, newest first."""
    init_database(settings)
    with get_session(settings) as session:
        rows = (
            session.query(SyncAttemptRow)
            .filter(SyncAttemptRow.channel == name)
            .order_by(SyncAttemptRow.id.desc())
            .limit(limit)
            .all()
        )
        return [
            {
                "channel": r.channel,
                "version": r.version,
                "outcome": r.outcome,
                "message": r.message,
                "attempt": r.attempt,
                "attempted_at": r.attempted_at,
            }
            for r in rows
        ]


def record_success(
    name: str, version: Version, attempt: int = 1, settings: Settings | None = None
) -> ChannelState:
    """Advance the channel's success record and log the attempt."""
    now = datetime.now()
    with get_session(settings) as session:
        row = session.get(ChannelStateRow, name)
        if row is None:
            row = ChannelStateRow(name=name)
            session.add(row)
        row.last_synced_version = str(version)
        row.last_synced_at = now
        session.add(
            SyncAttemptRow(
                channel=name,
                version=str(version),
                outcome=OUTCOME_SUCCESS,
                attempt=attempt,
                attempted_at=now,
            )
        )
    return ChannelState(name=name, last_synced_version=version, last_synced_at=now)


def record_failure(
    name: str,
    version: Version,
    outcome: str,
    message: str,
    attempt: int = 1,
    settings: Settings | None = None,
) -> None:
    """Log a failed attempt. The channel's success record is left untouched."""
    with get_session(settings) as session:
        session.add(
            SyncAttemptRow(
                channel=name,
                version=str(version),
                outcome=outcome,
                message=message,
                attempt=attempt,
                attempted_at=datetime.now(),
            )
        )


# -- Sync ---------------------------------------------------------------------


def _push_with_timeout(channel: Channel, release: Release, release_dir: Path, timeout: float) -> str:
    """Run a push, treating an overrun of `timeout` seconds as transient.

    The push runs in a daemon thread that is abandoned on timeout, so a hung
    channel never holds the process open at exit. It cannot advance channel
    state because state is only written by the caller after a return.
    """
    outcome: dict[str, object] = {}

    def _push() -> None:
        try:
            outcome["location"] = channel.push(release, release_dir, timeout)
        except Exception as e:
            outcome["error"] = e

    worker = threading.Thread(target=_push, name=f"sync-{channel.name}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise TransientSyncFailure(channel.name, f"timed out after {timeout:g}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["location"]


def sync_channel(
    release: Release,
    descriptor: ChannelDescriptor,
    release_dir: Path,
    *,
    settings: Settings | None = None,
    timeout: float | None = None,
    retries: int = 0,
    backoff: float = 1.0,
    source_dir: str | Path | None = None,
    run_logger: QuireLogger | None = None,
) -> SyncResult:
    """Push one published release to one channel.

    Transient failures are retried up to `retries` times with linear backoff.
    Every attempt is logged; ChannelState only changes on success.
    """
    if not release.is_published:
        raise ReleaseStateError(f"Release {release.version} is not published")

    settings = settings or get_settings()
    timeout = timeout if timeout is not None else settings.sync_timeout
    init_database(settings)
    start = time.time()

    try:
        channel = get_channel(descriptor, settings, source_dir)
    except ValueError as e:
        record_failure(descriptor.name, release.version, OUTCOME_PERMANENT, str(e), settings=settings)
        return _failed(descriptor.name, release.version, OUTCOME_PERMANENT, str(e), 1, start, run_logger)

    attempt = 0
    while True:
        attempt += 1
        try:
            location = _push_with_timeout(channel, release, release_dir, timeout)
        except TransientSyncFailure as e:
            record_failure(channel.name, release.version, OUTCOME_TRANSIENT, e.message, attempt, settings)
            if attempt <= retries:
                delay = backoff * attempt
                logger.info("Channel %s: %s; retrying in %.1fs", channel.name, e.message, delay)
                time.sleep(delay)
                continue
            return _failed(channel.name, release.version, OUTCOME_TRANSIENT, e.message, attempt, start, run_logger)
        except PermanentSyncFailure as e:
            record_failure(channel.name, release.version, OUTCOME_PERMANENT, e.message, attempt, settings)
            return _failed(channel.name, release.version, OUTCOME_PERMANENT, e.message, attempt, start, run_logger)
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            logger.exception("Channel %s raised unexpectedly", channel.name)
            record_failure(channel.name, release.version, OUTCOME_PERMANENT, message, attempt, settings)
            return _failed(channel.name, release.version, OUTCOME_PERMANENT, message, attempt, start, run_logger)

        record_success(channel.name, release.version, attempt, settings)
        if run_logger is not None:
            run_logger.channel_synced(channel.name, str(release.version))
        return SyncResult(
            channel=channel.name,
            version=release.version,
            success=True,
            location=location,
            attempts=attempt,
            time_seconds=time.time() - start,
        )


def _failed(
    name: str,
    version: Version,
    outcome: str,
    message: str,
    attempts: int,
    start: float,
    run_logger: QuireLogger | None,
) -> SyncResult:
    logger.warning("Channel %s failed (%s): %s", name, outcome, message)
    if run_logger is not None:
        run_logger.channel_failed(name, str(version), outcome, message)
    return SyncResult(
        channel=name,
        version=version,
        success=False,
        outcome=outcome,
        error=message,
        attempts=attempts,
        time_seconds=time.time() - start,
    )


def sync_channels(
    release: Release,
    descriptors: Sequence[ChannelDescriptor],
    release_dir: Path,
    *,
    settings: Settings | None = None,
    concurrency: int | None = None,
    timeout: float | None = None,
    retries: int = 0,
    backoff: float = 1.0,
    source_dir: str | Path | None = None,
    run_logger: QuireLogger | None = None,
) -> list[SyncResult]:
    """Sync several channels concurrently; one channel's failure never blocks another.

    Results are returned in the order of `descriptors`.
    """
    if not release.is_published:
        raise ReleaseStateError(f"Release {release.version} is not published")
    if not descriptors:
        return []

    settings = settings or get_settings()
    init_database(settings)
    workers = max(1, min(concurrency or settings.sync_concurrency, len(descriptors)))

    def _one(descriptor: ChannelDescriptor) -> SyncResult:
        return sync_channel(
            release,
            descriptor,
            release_dir,
            settings=settings,
            timeout=timeout,
            retries=retries,
            backoff=backoff,
            source_dir=source_dir,
            run_logger=run_logger,
        )

    results: list[SyncResult] = []
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [(d, pool.submit(_one, d)) for d in descriptors]
        for descriptor, future in futures:
            try:
                results.append(future.result())
            except Exception as e:
                results.append(
                    SyncResult(
                        channel=descriptor.name,
                        version=release.version,
                        success=False,
                        outcome=OUTCOME_PERMANENT,
                        error=f"{type(e).__name__}: {e}",
                    )
                )
    return results
