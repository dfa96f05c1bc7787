"""Fragment store — read-only access to manuscript content files."""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath

from quire.core.errors import FragmentNotFound, UnreadableFragment
from quire.core.models import Fragment, SectionKind

logger = logging.getLogger(__name__)

FRAGMENT_SUFFIXES = (".md", ".markdown", ".txt")

# First directory component -> section kind
DIRECTORY_KINDS: dict[str, SectionKind] = {
    "front": SectionKind.FRONT_MATTER,
    "frontmatter": SectionKind.FRONT_MATTER,
    "front-matter": SectionKind.FRONT_MATTER,
    "chapters": SectionKind.CHAPTER,
    "appendix": SectionKind.APPENDIX,
    "appendices": SectionKind.APPENDIX,
    "back": SectionKind.BACK_MATTER,
    "backmatter": SectionKind.BACK_MATTER,
    "back-matter": SectionKind.BACK_MATTER,
}

_DIRECTIVE_RE = re.compile(r"^\s*<!--\s*quire:(?P<body>.*?)-->\s*\n?", re.DOTALL)
_HEADING_RE = re.compile(r"^#{1,6}\s+(?P<title>.+?)\s*#*\s*$", re.MULTILINE)
_ORDER_PREFIX_RE = re.compile(r"^(?P<num>\d+)[-_. ]*")


def normalize_identifier(identifier: str) -> str:
    """Canonical form: forward slashes, no leading ./ or surrounding space."""
    ident = identifier.strip().replace("\\", "/")
    while ident.startswith("./"):
        ident = ident[2:]
    return ident


def parse_directive(content: str) -> tuple[dict[str, str], str]:
    """Split a leading ``<!-- quire: key=value ... -->`` comment from content."""
    match = _DIRECTIVE_RE.match(content)
    if match is None:
        return {}, content
    options: dict[str, str] = {}
    for token in match.group("body").split():
        if "=" in token:
            key, value = token.split("=", 1)
            options[key.strip().lower()] = value.strip()
    return options, content[match.end():]


def order_key_for(path: PurePosixPath) -> int | str:
    """Numeric filename prefix when present, otherwise the lexical stem."""
    match = _ORDER_PREFIX_RE.match(path.stem)
    if match:
        return int(match.group("num"))
    return path.stem


def title_for(path: PurePosixPath, content: str) -> str:
    match = _HEADING_RE.search(content)
    if match:
        return match.group("title").strip()
    stem = _ORDER_PREFIX_RE.sub("", path.stem) or path.stem
    return re.sub(r"[-_]+", " ", stem).strip().title()


class FragmentStore:
    """Read-only, path-addressed access to fragments under a root directory."""

    def __init__(self, root: str | Path, encoding: str = "utf-8"):
        self.root = Path(root)
        self.encoding = encoding
        self._cache: dict[str, Fragment] = {}

    def _path_for(self, identifier: str) -> Path | None:
        ident = normalize_identifier(identifier)
        if not ident or PurePosixPath(ident).is_absolute() or ".." in PurePosixPath(ident).parts:
            return None
        return self.root / ident

    def read(self, identifier: str) -> Fragment:
        """Load a fragment by identifier.

        Raises FragmentNotFound when the path is missing, not a file, or
        escapes the fragment root. Raises UnreadableFragment when the file
        cannot be read or decoded, and UnknownSectionKind when a directive
        names a kind outside SectionKind.
        """
        ident = normalize_identifier(identifier)
        cached = self._cache.get(ident)
        if cached is not None:
            return cached

        path = self._path_for(ident)
        if path is None or not path.is_file():
            raise FragmentNotFound(ident)

        try:
            raw = path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            raise UnreadableFragment(ident, e) from e
        directive, content = parse_directive(raw)
        rel = PurePosixPath(ident)

        kind_name = directive.get("kind")
        if kind_name is not None:
            kind = SectionKind.parse(kind_name, ident)
        elif len(rel.parts) > 1:
            kind = DIRECTORY_KINDS.get(rel.parts[0].lower(), SectionKind.CHAPTER)
        else:
            kind = SectionKind.CHAPTER

        order_value = directive.get("order")
        if order_value is not None:
            order_key: int | str = int(order_value) if order_value.isdigit() else order_value
        else:
            order_key = order_key_for(rel)

        fragment = Fragment(
            identifier=ident,
            content=content,
            kind=kind,
            order_key=order_key,
            title=directive.get("title", "").replace("_", " ") or title_for(rel, content),
        )
        self._cache[ident] = fragment
        logger.debug("Read fragment %s (%s, %d chars)", ident, kind.value, len(content))
        return fragment

    def list_identifiers(self, exclude: set[str] | None = None) -> list[str]:
        """All fragment identifiers under the root, sorted lexically."""
        exclude = exclude or set()
        if not self.root.is_dir():
            return []
        found = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.suffix.lower() not in FRAGMENT_SUFFIXES:
                continue
            ident = path.relative_to(self.root).as_posix()
            if ident not in exclude:
                found.append(ident)
        return sorted(found)
