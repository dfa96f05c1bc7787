"""Release ledger database models for Quire.

These models track everything that must survive between invocations:
- ReleaseRow: immutable release records (version, artifacts, changelog)
- ChannelStateRow: last successful sync per channel
- SyncAttemptRow: append-only log of every sync attempt
"""

import json
from datetime import datetime
from typing import Any, ClassVar

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class LedgerBase(DeclarativeBase):
    """Base class for release ledger models."""

    type_annotation_map: ClassVar[dict[type, Any]] = {}


class ReleaseRow(LedgerBase):
    """One release. Rows are inserted once; only status/published_at change."""

    __tablename__ = "releases"

    version: Mapped[str] = mapped_column(String(64), primary_key=True)
    major: Mapped[int] = mapped_column(Integer, nullable=False)
    minor: Mapped[int] = mapped_column(Integer, nullable=False)
    patch: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")  # draft/published
    changelog: Mapped[str] = mapped_column(Text, nullable=False, default="")
    artifacts_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def artifacts(self) -> list[dict[str, Any]]:
        """Get deserialized artifact references."""
        return json.loads(self.artifacts_json)  # type: ignore[no-any-return]

    @artifacts.setter
    def artifacts(self, value: list[dict[str, Any]]) -> None:
        """Set serialized artifact references."""
        self.artifacts_json = json.dumps(value)

    __table_args__ = (
        UniqueConstraint("major", "minor", "patch", name="uq_release_semver"),
        Index("idx_releases_semver", "major", "minor", "patch"),
    )


class ChannelStateRow(LedgerBase):
    """Last successful sync of a channel. Written only on success."""

    __tablename__ = "channel_states"

    name: Mapped[str] = mapped_column(String(256), primary_key=True)
    last_synced_version: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class SyncAttemptRow(LedgerBase):
    """One push of a release to a channel, successful or not."""

    __tablename__ = "sync_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel: Mapped[str] = mapped_column(String(256), nullable=False)
    version: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)  # success/transient/permanent
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    attempted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index("idx_sync_attempts_channel", "channel"),
        Index("idx_sync_attempts_attempted_at", "attempted_at"),
    )
