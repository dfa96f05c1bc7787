"""Artifact storage — save/load/query rendered artifacts (filesystem-backed)."""

from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path

from quire.build.fingerprint import Fingerprint
from quire.core.errors import atomic_write
from quire.core.models import Artifact


class ArtifactStore:
    """Filesystem-backed artifact storage with an index of the latest build.

    Payloads live under ``artifacts/<target>/<format>/<stamp>-<hash>/`` and
    are never rewritten; ``index.json`` maps ``target/format`` to the most
    recent build of that pair.
    """

    def __init__(self, build_dir: str | Path):
        self.build_dir = Path(build_dir)
        self.build_dir.mkdir(parents=True, exist_ok=True)
        self._index_path = self.build_dir / "index.json"
        self._index: dict[str, dict] = self._load_index()
        self._lock = threading.Lock()

    def _load_index(self) -> dict[str, dict]:
        if self._index_path.exists():
            return json.loads(self._index_path.read_text())
        return {}

    def _save_index(self) -> None:
        atomic_write(self._index_path, json.dumps(self._index, indent=2, sort_keys=True))

    def save_artifact(self, artifact: Artifact, fingerprint: Fingerprint | None = None) -> Path:
        """Write the payload to a fresh directory and point the index at it.

        The render fingerprint is stored alongside so a later cache miss can
        say which input changed.
        """
        stamp = artifact.generated_at.strftime("%Y%m%dT%H%M%S%f")
        digest = artifact.content_hash.removeprefix("sha256:")[:12]
        rel_path = f"artifacts/{artifact.target}/{artifact.format_id}/{stamp}-{digest}/{artifact.filename}"
        path = self.build_dir / rel_path

        with self._lock:
            atomic_write(path, artifact.payload)
            self._index[artifact.key] = {
                "path": rel_path,
                "target": artifact.target,
                "format_id": artifact.format_id,
                "version": artifact.version,
                "filename": artifact.filename,
                "media_type": artifact.media_type,
                "content_hash": artifact.content_hash,
                "source_digest": artifact.source_digest,
                "fingerprint": artifact.fingerprint,
                "build_fingerprint": fingerprint.to_dict() if fingerprint is not None else None,
                "size": artifact.size,
                "generated_at": artifact.generated_at.isoformat(),
            }
            self._save_index()
        return path

    def get_entry(self, target: str, format_id: str) -> dict | None:
        return self._index.get(f"{target}/{format_id}")

    def path_for(self, target: str, format_id: str) -> Path | None:
        entry = self.get_entry(target, format_id)
        if entry is None:
            return None
        return self.build_dir / entry["path"]

    def load_artifact(self, target: str, format_id: str) -> Artifact | None:
        """Load the latest artifact for a pair. Returns None if not found."""
        entry = self.get_entry(target, format_id)
        if entry is None:
            return None

        path = self.build_dir / entry["path"]
        if not path.exists():
            return None

        return Artifact(
            target=entry["target"],
            format_id=entry["format_id"],
            version=entry["version"],
            payload=path.read_bytes(),
            content_hash=entry["content_hash"],
            filename=entry["filename"],
            media_type=entry.get("media_type", "application/octet-stream"),
            source_digest=entry.get("source_digest", ""),
            fingerprint=entry.get("fingerprint", ""),
            generated_at=datetime.fromisoformat(entry["generated_at"]),
        )

    def stored_fingerprint(self, target: str, format_id: str) -> Fingerprint | None:
        entry = self.get_entry(target, format_id)
        return Fingerprint.from_dict(entry.get("build_fingerprint")) if entry else None

    def find_cached(self, target: str, format_id: str, fingerprint: Fingerprint) -> tuple[Artifact | None, list[str]]:
        """Latest artifact for the pair if it was built from the same inputs.

        Returns (artifact, reasons); on a miss the artifact is None and
        reasons explain why the pair must be rendered again.
        """
        if self.get_entry(target, format_id) is None:
            return None, ["new artifact"]
        stored = self.stored_fingerprint(target, format_id)
        if not fingerprint.matches(stored):
            return None, fingerprint.explain_diff(stored)
        artifact = self.load_artifact(target, format_id)
        if artifact is None:
            return None, ["payload missing"]
        return artifact, []

    def entries(self) -> dict[str, dict]:
        return dict(self._index)
