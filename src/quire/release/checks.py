"""Pre-release checks — gather built artifacts and detect stale ones."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from quire.build.artifacts import ArtifactStore
from quire.build.runner import prepare_document, resolver_for
from quire.core.errors import ManifestError, QuireError, ReleaseStateError, StaleArtifact
from quire.core.models import Artifact, Book

logger = logging.getLogger(__name__)


def check_manifests(book: Book, targets: Sequence[str]) -> None:
    """Refuse a release while any target's manifest is invalid.

    Raises ReleaseStateError listing each failing target and its error.
    """
    outcomes = resolver_for(book).validate_manifests(targets)
    problems = [f"{t}: {o}" for t, o in outcomes.items() if isinstance(o, ManifestError)]
    if problems:
        raise ReleaseStateError("Invalid manifests; " + "; ".join(problems))

def collect_artifacts(
    store: ArtifactStore,
    targets: Sequence[str],
    format_ids: Sequence[str],
) -> list[Artifact]:
    """Latest built artifact for every (target, format) pair.

    Raises ReleaseStateError naming every pair that has never been built.
    """
    artifacts = []
    missing = []
    for target in targets:
        for format_id in format_ids:
            artifact = store.load_artifact(target, format_id)
            if artifact is None:
                missing.append(f"{target}/{format_id}")
            else:
                artifacts.append(artifact)
    if missing:
        raise ReleaseStateError(f"Not built yet: {', '.join(missing)}. Run 'quire build' first.")
    return artifacts


def find_stale_artifacts(book: Book, artifacts: Sequence[Artifact]) -> list[StaleArtifact]:
    """Artifacts whose sources changed since they were built.

    Each target is re-resolved with the build label the artifact carries and
    its source digest compared with the one recorded at build time.
    """
    current: dict[tuple[str, str], str | None] = {}
    stale = []
    for artifact in artifacts:
        key = (artifact.target, artifact.version)
        if key not in current:
            try:
                current[key] = prepare_document(book, artifact.target, artifact.version).source_digest
            except QuireError as e:
                logger.warning("Cannot re-resolve target %s: %s", artifact.target, e)
                current[key] = None
        if current[key] != artifact.source_digest:
            stale.append(StaleArtifact(artifact.target, artifact.format_id))
    return stale
