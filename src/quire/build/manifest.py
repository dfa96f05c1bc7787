"""Manifest resolution — turn a target's manifest file into ordered fragments."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from quire.build.fragments import FragmentStore, normalize_identifier
from quire.core.errors import (
    DuplicateEntry,
    FragmentNotFound,
    ManifestError,
    ManifestNotFound,
    MissingFragment,
    SubsequenceViolation,
    UnreadableFragment,
)
from quire.core.models import FULL_TARGET, Fragment, Manifest

logger = logging.getLogger(__name__)

MANIFEST_SUFFIX = ".txt"


def parse_manifest(target: str, text: str, path: str = "") -> Manifest:
    """Parse a one-identifier-per-line manifest.

    Blank lines and ``#`` comments are skipped. Raises DuplicateEntry on
    the second occurrence of any identifier.
    """
    entries: list[str] = []
    seen: dict[str, int] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        ident = normalize_identifier(stripped)
        if ident in seen:
            raise DuplicateEntry(ident, target, (seen[ident], lineno))
        seen[ident] = lineno
        entries.append(ident)
    return Manifest(target=target, entries=tuple(entries), path=path)


def manifest_path(manifest_dir: str | Path, target: str) -> Path:
    return Path(manifest_dir) / f"{target}{MANIFEST_SUFFIX}"


def load_manifest(target: str, manifest_dir: str | Path) -> Manifest:
    path = manifest_path(manifest_dir, target)
    if not path.is_file():
        raise ManifestNotFound(target, path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise UnreadableFragment(str(path), e) from e
    return parse_manifest(target, text, str(path))


def first_subsequence_violation(sub: Sequence[str], full: Sequence[str]) -> str | None:
    """Return the first entry of `sub` that breaks the ordered-subsequence relation."""
    position = 0
    for ident in sub:
        try:
            position = full.index(ident, position) + 1
        except ValueError:
            return ident
    return None


def is_subsequence(sub: Sequence[str], full: Sequence[str]) -> bool:
    """True when every entry of `sub` appears in `full` in the same relative order."""
    return first_subsequence_violation(sub, full) is None


def check_subsequence(sub: Manifest, full: Manifest) -> None:
    offending = first_subsequence_violation(sub.entries, full.entries)
    if offending is not None:
        raise SubsequenceViolation(sub.target, full.target, offending)


class ManifestResolver:
    """Resolves target manifests against a fragment store.

    Resolution preserves manifest order exactly and has no side effects.
    """

    def __init__(
        self,
        store: FragmentStore,
        manifest_dir: str | Path,
        full_target: str = FULL_TARGET,
    ):
        self.store = store
        self.manifest_dir = Path(manifest_dir)
        self.full_target = full_target

    def manifest(self, target: str) -> Manifest:
        return load_manifest(target, self.manifest_dir)

    def resolve(self, target: str) -> list[Fragment]:
        """Return the target's fragments in manifest order.

        Any target other than the full one must list an ordered subsequence
        of the full manifest. Raises ManifestNotFound, DuplicateEntry,
        MissingFragment, UnreadableFragment, UnknownSectionKind or
        SubsequenceViolation.
        """
        manifest = self.manifest(target)
        fragments: list[Fragment] = []
        for ident in manifest.entries:
            try:
                fragments.append(self.store.read(ident))
            except FragmentNotFound:
                raise MissingFragment(ident, target) from None
        if target != self.full_target:
            check_subsequence(manifest, self.manifest(self.full_target))
        logger.debug("Resolved %s: %d fragments", target, len(fragments))
        return fragments

    def validate_manifests(self, targets: Sequence[str]) -> dict[str, list[Fragment] | ManifestError]:
        """Resolve every target, keeping each target's fragments or its error."""
        outcomes: dict[str, list[Fragment] | ManifestError] = {}
        for target in targets:
            try:
                outcomes[target] = self.resolve(target)
            except ManifestError as e:
                outcomes[target] = e
        return outcomes

    def unlisted(self) -> list[str]:
        """Fragments on disk that the full manifest never mentions."""
        full = set(self.manifest(self.full_target).entries)
        root = self.store.root.resolve()
        manifest_files: set[str] = set()
        for path in self.manifest_dir.glob(f"*{MANIFEST_SUFFIX}"):
            resolved = path.resolve()
            if resolved.is_relative_to(root):
                manifest_files.add(resolved.relative_to(root).as_posix())
        return [i for i in self.store.list_identifiers(exclude=manifest_files) if i not in full]
