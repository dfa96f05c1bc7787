"""Release ledger: versioned, immutable bundles of built artifacts."""

from quire.release.checks import check_manifests, collect_artifacts, find_stale_artifacts
from quire.release.manager import ReleaseManager

__all__ = ["ReleaseManager", "check_manifests", "collect_artifacts", "find_stale_artifacts"]
