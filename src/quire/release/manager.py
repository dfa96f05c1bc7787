"""Release manager — immutable, strictly increasing releases with changelog."""

from __future__ import annotations

import fcntl
import logging
import shutil
import threading
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from sqlalchemy.exc import IntegrityError

from quire.config import Settings, get_settings
from quire.core.errors import ReleaseStateError, VersionRegression, atomic_write
from quire.core.logging import QuireLogger
from quire.core.models import Artifact, Release, ReleaseArtifact, ReleaseStatus, Version
from quire.db.engine import get_session, init_database
from quire.db.models import ReleaseRow

logger = logging.getLogger(__name__)

CHANGELOG_HEADER = "# Changelog\n"

# Serializes threads within this process before they contend for the file lock.
_release_lock = threading.Lock()


@contextmanager
def ledger_lock(settings: Settings) -> Iterator[None]:
    """Exclusive write lock on the release ledger, shared by every process.

    Version checks and inserts happen under this lock, so two concurrent
    `quire release` runs cannot commit versions out of order.
    """
    settings.ensure_storage_dir()
    lock_path = settings.storage_dir / "releases.lock"
    with _release_lock, lock_path.open("a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def release_filename(artifact: Artifact, version: Version) -> str:
    """Artifact filename with the build label swapped for the release version."""
    suffix = Path(artifact.filename).suffix
    label = f"-{artifact.version}{suffix}"
    if artifact.version and artifact.filename.endswith(label):
        return artifact.filename[: -len(label)] + f"-{version}{suffix}"
    return artifact.filename


def format_changelog_entry(version: Version, text: str, when: datetime) -> str:
    body = text.strip() or "No changes recorded."
    return f"## {version} ({when.date().isoformat()})\n\n{body}\n"


def prepend_changelog(path: Path, entry: str) -> None:
    """Insert an entry below the changelog header, newest first."""
    existing = path.read_text() if path.exists() else ""
    if existing.startswith(CHANGELOG_HEADER):
        rest = existing[len(CHANGELOG_HEADER):].lstrip("\n")
    else:
        rest = existing.lstrip("\n")
    content = f"{CHANGELOG_HEADER}\n{entry}"
    if rest:
        content += f"\n{rest}"
    atomic_write(path, content)


class ReleaseManager:
    """Creates, publishes and queries releases in the ledger.

    Artifact payloads are copied into ``<releases_dir>/<version>/`` when the
    release is created and are never modified afterwards.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        changelog_path: str | Path = "CHANGELOG.md",
        run_logger: QuireLogger | None = None,
    ):
        self.settings = settings or get_settings()
        self.changelog_path = Path(changelog_path)
        self.run_logger = run_logger
        init_database(self.settings)

    @property
    def releases_dir(self) -> Path:
        return self.settings.releases_dir

    def release_dir(self, version: Version | str) -> Path:
        return self.releases_dir / str(version)

    def artifact_path(self, artifact: ReleaseArtifact) -> Path:
        return self.releases_dir / artifact.path

    # -- Writes --

    def create_release(
        self,
        artifacts: Sequence[Artifact],
        version: Version | str,
        changelog: str = "",
    ) -> Release:
        """Record a new draft release.

        Raises VersionRegression if `version` is not greater than every
        existing release; nothing is written in that case.
        """
        if isinstance(version, str):
            version = Version.parse(version)
        if not artifacts:
            raise ReleaseStateError(f"Release {version} has no artifacts")

        with ledger_lock(self.settings):
            latest = self.latest()
            if latest is not None and version <= latest.version:
                raise VersionRegression(version, latest.version)

            created_at = datetime.now()
            staging = self.releases_dir / f".staging-{version}-{uuid.uuid4().hex[:8]}"
            refs = self._stage_artifacts(artifacts, version, staging)

            try:
                with get_session(self.settings) as session:
                    row = ReleaseRow(
                        version=str(version),
                        major=version.major,
                        minor=version.minor,
                        patch=version.patch,
                        status=ReleaseStatus.DRAFT.value,
                        changelog=changelog,
                        created_at=created_at,
                    )
                    row.artifacts = [ref.to_dict() for ref in refs]
                    session.add(row)
                    session.flush()
                    final_dir = self.release_dir(version)
                    if final_dir.exists():
                        shutil.rmtree(final_dir)
                    staging.rename(final_dir)
            except IntegrityError:
                shutil.rmtree(staging, ignore_errors=True)
                current = self.latest()
                raise VersionRegression(version, current.version if current else version) from None
            except Exception:
                shutil.rmtree(staging, ignore_errors=True)
                raise

            prepend_changelog(self.changelog_path, format_changelog_entry(version, changelog, created_at))

        logger.info("Created release %s with %d artifacts", version, len(refs))
        if self.run_logger is not None:
            self.run_logger.release_created(str(version), len(refs))

        return Release(
            version=version,
            artifacts=tuple(refs),
            changelog=changelog,
            created_at=created_at,
        )

    def _stage_artifacts(
        self, artifacts: Sequence[Artifact], version: Version, staging: Path
    ) -> list[ReleaseArtifact]:
        refs = []
        for artifact in artifacts:
            filename = release_filename(artifact, version)
            atomic_write(staging / filename, artifact.payload)
            refs.append(
                ReleaseArtifact(
                    target=artifact.target,
                    format_id=artifact.format_id,
                    filename=filename,
                    content_hash=artifact.content_hash,
                    size=artifact.size,
                    path=f"{version}/{filename}",
                )
            )
        return refs

    def publish(self, version: Version | str) -> Release:
        """One-way draft -> published transition."""
        if isinstance(version, str):
            version = Version.parse(version)

        with ledger_lock(self.settings), get_session(self.settings) as session:
            row = session.get(ReleaseRow, str(version))
            if row is None:
                raise ReleaseStateError(f"No release {version}")
            if row.status == ReleaseStatus.PUBLISHED.value:
                raise ReleaseStateError(f"Release {version} is already published")
            row.status = ReleaseStatus.PUBLISHED.value
            row.published_at = datetime.now()
            release = _to_release(row)

        logger.info("Published release %s", version)
        if self.run_logger is not None:
            self.run_logger.release_published(str(version))
        return release

    # -- Queries --

    def get(self, version: Version | str) -> Release | None:
        if isinstance(version, str):
            version = Version.parse(version)
        with get_session(self.settings) as session:
            row = session.get(ReleaseRow, str(version))
            return _to_release(row) if row is not None else None

    def latest(self) -> Release | None:
        """Newest release by version, draft or published."""
        with get_session(self.settings) as session:
            row = (
                session.query(ReleaseRow)
                .order_by(ReleaseRow.major.desc(), ReleaseRow.minor.desc(), ReleaseRow.patch.desc())
                .first()
            )
            return _to_release(row) if row is not None else None

    def latest_published(self) -> Release | None:
        with get_session(self.settings) as session:
            row = (
                session.query(ReleaseRow)
                .filter(ReleaseRow.status == ReleaseStatus.PUBLISHED.value)
                .order_by(ReleaseRow.major.desc(), ReleaseRow.minor.desc(), ReleaseRow.patch.desc())
                .first()
            )
            return _to_release(row) if row is not None else None

    def list_releases(self) -> list[Release]:
        """All releases, oldest first."""
        with get_session(self.settings) as session:
            rows = (
                session.query(ReleaseRow)
                .order_by(ReleaseRow.major, ReleaseRow.minor, ReleaseRow.patch)
                .all()
            )
            return [_to_release(row) for row in rows]

    def next_version(self, part: str = "patch") -> Version:
        """Bump the latest release; 0.1.0 when there is none yet."""
        latest = self.latest()
        if latest is None:
            return Version(0, 1, 0)
        return latest.version.bump(part)


def _to_release(row: ReleaseRow) -> Release:
    return Release(
        version=Version(row.major, row.minor, row.patch),
        artifacts=tuple(ReleaseArtifact.from_dict(a) for a in row.artifacts),
        changelog=row.changelog,
        created_at=row.created_at,
        status=ReleaseStatus(row.status),
        published_at=row.published_at,
    )
