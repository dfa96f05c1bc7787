"""Quire error types and utilities."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write(path: Path, content: str | bytes) -> None:
    """Write content to a file atomically using temp file + rename.

    Writes to a temporary file in the same directory, fsyncs it,
    then atomically replaces the target path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode() if isinstance(content, str) else content
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    closed = False
    try:
        os.write(fd, data)
        os.fsync(fd)
        os.close(fd)
        closed = True
        os.replace(tmp, str(path))
    except BaseException:
        if not closed:
            os.close(fd)
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class QuireError(Exception):
    """Base exception for Quire."""

    pass


class ProjectError(QuireError):
    """Error loading or validating a book project definition."""

    pass


# -- Manifest resolution ------------------------------------------------------


class ManifestError(QuireError):
    """Error resolving a manifest into fragments."""

    pass


class ManifestNotFound(ManifestError):
    """No manifest file exists for the requested target."""

    def __init__(self, target: str, path: Path | str):
        self.target = target
        self.path = str(path)
        super().__init__(f"No manifest for target '{target}' (expected {self.path})")


class MissingFragment(ManifestError):
    """A manifest entry names a fragment that does not exist."""

    def __init__(self, identifier: str, target: str | None = None):
        self.identifier = identifier
        self.target = target
        where = f" in manifest '{target}'" if target else ""
        super().__init__(f"Missing fragment{where}: {identifier}")


class FragmentNotFound(MissingFragment):
    """Raised by the fragment store when a path does not exist."""

    pass


class UnreadableFragment(ManifestError):
    """A fragment or manifest exists but cannot be read or decoded."""

    def __init__(self, identifier: str, cause: BaseException):
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"Cannot read {identifier}: {cause}")


class DuplicateEntry(ManifestError):
    """A manifest lists the same fragment more than once."""

    def __init__(self, identifier: str, target: str, lines: tuple[int, int]):
        self.identifier = identifier
        self.target = target
        self.lines = lines
        super().__init__(
            f"Duplicate entry in manifest '{target}': {identifier} "
            f"(lines {lines[0]} and {lines[1]})"
        )


class UnknownSectionKind(ManifestError):
    """A fragment declares a section kind outside the known set."""

    def __init__(self, identifier: str, kind: str):
        self.identifier = identifier
        self.kind = kind
        super().__init__(f"Unknown section kind '{kind}' for fragment {identifier}")


class SubsequenceViolation(ManifestError):
    """A partial manifest is not an ordered subsequence of the full manifest."""

    def __init__(self, target: str, full_target: str, identifier: str):
        self.target = target
        self.full_target = full_target
        self.identifier = identifier
        super().__init__(
            f"Manifest '{target}' is not a subsequence of '{full_target}': "
            f"{identifier} is absent or out of order"
        )


# -- Assembly and rendering ---------------------------------------------------


class AssemblyError(QuireError):
    """Error assembling fragments into a document."""

    pass


class EmptyManifest(AssemblyError):
    """Assembly was requested for zero fragments."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"Manifest '{target}' resolved to zero fragments")


class RenderFailure(QuireError):
    """A single output format failed to render."""

    def __init__(self, format_id: str, cause: BaseException | str):
        self.format_id = format_id
        self.cause = cause
        super().__init__(f"{format_id}: {cause}")


class ConverterUnavailable(QuireError):
    """The external document converter cannot be found."""

    pass


class ConverterError(QuireError):
    """The external document converter exited with an error."""

    def __init__(self, command: str, returncode: int, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(f"{command} exited with {returncode}: {detail}")


# -- Releases -----------------------------------------------------------------


class ReleaseError(QuireError):
    """Error creating, publishing or querying a release."""

    pass


class InvalidVersion(ReleaseError):
    """A version string is not major.minor.patch."""

    pass


class VersionRegression(ReleaseError):
    """Proposed release version is not greater than the latest release."""

    def __init__(self, proposed: object, latest: object):
        self.proposed = proposed
        self.latest = latest
        super().__init__(f"Version {proposed} must be greater than latest release {latest}")


class ReleaseStateError(ReleaseError):
    """Release is missing or in the wrong state for the requested operation."""

    pass


class StaleArtifact(ReleaseError):
    """Fragments changed after the artifact was built."""

    def __init__(self, target: str, format_id: str):
        self.target = target
        self.format_id = format_id
        super().__init__(
            f"Artifact {target}/{format_id} was built from older sources; rebuild before releasing"
        )


# -- Channel sync -------------------------------------------------------------


class SyncError(QuireError):
    """Error pushing a release to a distribution channel."""

    def __init__(self, channel: str, message: str, status_code: int | None = None):
        self.channel = channel
        self.message = message
        self.status_code = status_code
        super().__init__(f"{channel}: {message}")


class TransientSyncFailure(SyncError):
    """Retryable failure (network, availability, timeout)."""

    pass


class PermanentSyncFailure(SyncError):
    """Non-retryable failure requiring operator action."""

    pass
