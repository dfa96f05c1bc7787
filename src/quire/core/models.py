"""Core data models for Quire."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from quire.core.errors import InvalidVersion, UnknownSectionKind

FULL_TARGET = "full"
SAMPLE_TARGET = "sample"


class SectionKind(str, Enum):
    """Where a fragment sits in the book."""

    FRONT_MATTER = "front-matter"
    CHAPTER = "chapter"
    APPENDIX = "appendix"
    BACK_MATTER = "back-matter"

    @classmethod
    def parse(cls, value: str, identifier: str = "") -> SectionKind:
        """Parse a kind name, accepting underscores and missing hyphens."""
        normalized = value.strip().lower().replace("_", "-")
        aliases = {"frontmatter": "front-matter", "backmatter": "back-matter"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise UnknownSectionKind(identifier or "<unknown>", value) from None


@dataclass(frozen=True)
class Fragment:
    """One content file, read-only once loaded."""

    identifier: str  # path relative to the fragment root, forward slashes
    content: str
    kind: SectionKind = SectionKind.CHAPTER
    order_key: int | str = ""
    title: str = ""


@dataclass(frozen=True)
class Manifest:
    """Ordered list of fragment identifiers for one target."""

    target: str
    entries: tuple[str, ...]
    path: str = ""

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class TargetMetadata:
    """Title block values injected into an assembled document."""

    target: str
    title: str
    author: str = ""
    subtitle: str = ""
    version: str = "dev"
    copyright_year: int | None = None
    language: str = "en"

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "title": self.title,
            "author": self.author,
            "subtitle": self.subtitle,
            "version": self.version,
            "copyright_year": self.copyright_year,
            "language": self.language,
        }


@dataclass(frozen=True)
class AssembledDocument:
    """Manifest-ordered concatenation of fragments for one render pass."""

    target: str
    metadata: TargetMetadata
    preamble: str  # metadata block + title page
    title_page: str
    sections: tuple[Fragment, ...]
    text: str
    source_digest: str


@dataclass(frozen=True)
class FormatConfig:
    """Explicit per-format render settings."""

    format_id: str
    page_size: str = "a5"
    toc_depth: int = 2
    number_sections: bool = False
    options: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "format_id": self.format_id,
            "page_size": self.page_size,
            "toc_depth": self.toc_depth,
            "number_sections": self.number_sections,
            "options": dict(self.options),
        }


@dataclass(frozen=True)
class Artifact:
    """One rendered output for a (target, format, version) triple."""

    target: str
    format_id: str
    version: str
    payload: bytes = field(repr=False)
    content_hash: str
    filename: str
    media_type: str = "application/octet-stream"
    source_digest: str = ""
    fingerprint: str = ""
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def key(self) -> str:
        return f"{self.target}/{self.format_id}"


_VERSION_RE = re.compile(r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")


@dataclass(frozen=True, order=True)
class Version:
    """Semantic version, ordered by (major, minor, patch)."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, value: str) -> Version:
        match = _VERSION_RE.match(value.strip())
        if match is None:
            raise InvalidVersion(f"Not a major.minor.patch version: {value!r}")
        return cls(*(int(part) for part in match.groups()))

    def bump(self, part: str) -> Version:
        if part == "major":
            return Version(self.major + 1, 0, 0)
        if part == "minor":
            return Version(self.major, self.minor + 1, 0)
        if part == "patch":
            return Version(self.major, self.minor, self.patch + 1)
        raise InvalidVersion(f"Unknown version part: {part!r} (expected major, minor or patch)")

    @property
    def tag(self) -> str:
        return f"v{self}"

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class ReleaseStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


@dataclass(frozen=True)
class ReleaseArtifact:
    """Reference to an artifact file stored with a release."""

    target: str
    format_id: str
    filename: str
    content_hash: str
    size: int
    path: str

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "format_id": self.format_id,
            "filename": self.filename,
            "content_hash": self.content_hash,
            "size": self.size,
            "path": self.path,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ReleaseArtifact:
        return cls(
            target=data["target"],
            format_id=data["format_id"],
            filename=data["filename"],
            content_hash=data["content_hash"],
            size=data["size"],
            path=data["path"],
        )


@dataclass(frozen=True)
class Release:
    """Immutable, versioned bundle of artifacts plus changelog."""

    version: Version
    artifacts: tuple[ReleaseArtifact, ...]
    changelog: str
    created_at: datetime
    status: ReleaseStatus = ReleaseStatus.DRAFT
    published_at: datetime | None = None

    @property
    def is_published(self) -> bool:
        return self.status is ReleaseStatus.PUBLISHED


@dataclass(frozen=True)
class ChannelDescriptor:
    """Named distribution endpoint and its kind-specific options."""

    name: str
    kind: str
    options: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ChannelState:
    """Last successful sync of a channel, plus the latest failure after it."""

    name: str
    last_synced_version: Version | None = None
    last_synced_at: datetime | None = None
    last_error: str | None = None

    def is_stale(self, version: Version | None) -> bool:
        """True unless the channel has synced `version` or something newer."""
        if version is None:
            return False
        if self.last_synced_version is None:
            return True
        return self.last_synced_version < version


@dataclass
class Book:
    """The declared book project: metadata, formats and channels.

    Usage (in book.py):
        book = Book(title="Field Notes", author="A. Writer", copyright_year=2026)
        book.add_format("pdf", page_size="a5", number_sections=True)
        book.add_format("epub", toc_depth=1)
        book.add_channel("site", kind="directory", path="public/downloads")
    """

    title: str
    author: str = ""
    subtitle: str = ""
    copyright_year: int | None = None
    language: str = "en"
    version: str = "dev"
    source_dir: str = "./manuscript"
    manifest_dir: str | None = None
    build_dir: str = "./build"
    targets: dict[str, dict] = field(
        default_factory=lambda: {FULL_TARGET: {}, SAMPLE_TARGET: {"subtitle": "Sample"}}
    )
    formats: dict[str, FormatConfig] = field(default_factory=dict)
    channels: list[ChannelDescriptor] = field(default_factory=list)

    def add_format(self, format_id: str, **options) -> FormatConfig:
        known = {"page_size", "toc_depth", "number_sections"}
        config = FormatConfig(
            format_id=format_id,
            **{k: v for k, v in options.items() if k in known},
            options={k: v for k, v in options.items() if k not in known},
        )
        self.formats[format_id] = config
        return config

    def add_channel(self, name: str, *, kind: str, **options) -> ChannelDescriptor:
        descriptor = ChannelDescriptor(name=name, kind=kind, options=options)
        self.channels.append(descriptor)
        return descriptor

    def add_target(self, name: str, **overrides) -> None:
        self.targets[name] = overrides

    def format_config(self, format_id: str) -> FormatConfig:
        """Declared config for a format, or defaults for an undeclared one."""
        return self.formats.get(format_id) or FormatConfig(format_id=format_id)

    def channel(self, name: str) -> ChannelDescriptor | None:
        return next((c for c in self.channels if c.name == name), None)

    def target_metadata(self, target: str, version: str | None = None) -> TargetMetadata:
        overrides = self.targets.get(target, {})
        return TargetMetadata(
            target=target,
            title=overrides.get("title", self.title),
            author=overrides.get("author", self.author),
            subtitle=overrides.get("subtitle", self.subtitle),
            version=version or overrides.get("version", self.version),
            copyright_year=overrides.get("copyright_year", self.copyright_year) or date.today().year,
            language=overrides.get("language", self.language),
        )
