"""Directory channel — copy release artifacts into a local or mounted folder."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

from quire.core.errors import PermanentSyncFailure, TransientSyncFailure, atomic_write
from quire.sync.base import Channel, register_channel


@register_channel("directory")
class DirectoryChannel(Channel):
    """Copy artifacts to ``<path>/<version>/``.

    Options:
    - path — destination root (required)
    - include_source — also copy the manuscript tree, manifests included
    - latest — write ``latest.json`` pointing at the newest synced version
    """

    def push(self, release, release_dir, timeout):
        dest_root = Path(self.require_option("path")).expanduser()
        dest = dest_root / str(release.version)

        try:
            dest.mkdir(parents=True, exist_ok=True)
            for artifact in release.artifacts:
                src = release_dir / artifact.filename
                if not src.exists():
                    raise PermanentSyncFailure(self.name, f"release file missing: {src}")
                shutil.copy2(src, dest / artifact.filename)

            if self.options.get("include_source"):
                if self.source_dir is None or not self.source_dir.is_dir():
                    raise PermanentSyncFailure(self.name, "include_source set but no manuscript directory")
                shutil.copytree(self.source_dir, dest / "source", dirs_exist_ok=True)

            listing = {
                "version": str(release.version),
                "artifacts": [a.to_dict() for a in release.artifacts],
            }
            atomic_write(dest / "release.json", json.dumps(listing, indent=2))
            if self.options.get("latest", True):
                atomic_write(dest_root / "latest.json", json.dumps(listing, indent=2))
        except PermissionError as e:
            raise PermanentSyncFailure(self.name, str(e)) from e
        except OSError as e:
            raise TransientSyncFailure(self.name, str(e)) from e

        return str(dest)
