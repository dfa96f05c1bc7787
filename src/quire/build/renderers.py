"""Format adapters and registry — turn an assembled document into artifacts."""

from __future__ import annotations

import io
import re
import tempfile
import zipfile
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from quire.build.assembler import TOC_MARKER
from quire.build.converter import PandocConverter
from quire.build.fingerprint import compute_render_fingerprint, hash_bytes
from quire.core.errors import RenderFailure
from quire.core.models import AssembledDocument, Artifact, FormatConfig, SectionKind

UNNUMBERED_KINDS = (SectionKind.FRONT_MATTER, SectionKind.BACK_MATTER)

_HEADING_RE = re.compile(r"^(?P<hashes>#{1,6})\s+(?P<title>.+?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^(```|~~~)")
_ATTRS_RE = re.compile(r"\s*(?P<attrs>\{[^{}]*\})$")
_ID_RE = re.compile(r"#(?P<id>[\w:.-]+)")


def slugify(text: str) -> str:
    """Anchor/file slug in the style pandoc uses for heading identifiers."""
    slug = re.sub(r"[^\w\s-]", "", text.lower(), flags=re.UNICODE)
    slug = re.sub(r"\s+", "-", slug.strip())
    return slug.strip("-") or "section"


def split_attributes(title: str) -> tuple[str, str]:
    """Split a trailing pandoc attribute block such as ``{#id .class}`` off a heading."""
    match = _ATTRS_RE.search(title)
    if match is None:
        return title, ""
    return title[: match.start()], match.group("attrs")


def iter_headings(content: str):
    """Yield (level, title, line_index) for ATX headings outside fenced code."""
    in_fence = False
    for index, line in enumerate(content.splitlines()):
        if _FENCE_RE.match(line.strip()):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(line)
        if match:
            yield len(match.group("hashes")), match.group("title"), index


class BaseRenderer(ABC):
    """Abstract base for format adapters.

    Subclasses declare `volatile_patterns`: byte regexes for fields that
    legitimately change between identical builds (generation timestamps).
    They are removed before hashing so content hashes compare across builds.
    """

    format_id: str = ""
    extension: str = ""
    media_type: str = "application/octet-stream"
    renderer_version: str = "1"
    volatile_patterns: tuple[bytes, ...] = ()

    def __init__(self, converter: PandocConverter | None = None):
        self.converter = converter or PandocConverter()

    @property
    def renderer_id(self) -> str:
        return f"{self.format_id}:v{self.renderer_version}"

    @abstractmethod
    def render_payload(
        self,
        document: AssembledDocument,
        config: FormatConfig,
        generated_at: datetime,
    ) -> bytes:
        """Produce the output bytes for one document."""
        ...

    def canonical_bytes(self, payload: bytes) -> bytes:
        for pattern in self.volatile_patterns:
            payload = re.sub(pattern, b"", payload)
        return payload

    def content_hash(self, payload: bytes) -> str:
        return hash_bytes(self.canonical_bytes(payload))

    def filename(self, document: AssembledDocument) -> str:
        meta = document.metadata
        return f"{slugify(meta.title)}-{meta.target}-{meta.version}{self.extension}"


# Renderer registry
_RENDERERS: dict[str, type[BaseRenderer]] = {}


def register_renderer(format_id: str):
    """Decorator to register a format adapter class."""

    def wrapper(cls):
        cls.format_id = format_id
        _RENDERERS[format_id] = cls
        return cls

    return wrapper


def get_renderer(format_id: str, converter: PandocConverter | None = None) -> BaseRenderer:
    """Get an instantiated renderer by format id."""
    if format_id not in _RENDERERS:
        raise ValueError(f"Unknown format: {format_id}. Available: {sorted(_RENDERERS)}")
    return _RENDERERS[format_id](converter)


def available_formats() -> list[str]:
    return sorted(_RENDERERS)


# -- Shared helpers -----------------------------------------------------------


def pandoc_source(document: AssembledDocument, config: FormatConfig) -> str:
    """Assembled text for pandoc: TOC marker dropped, matter headings unnumbered."""
    parts = [document.preamble]
    for section in document.sections:
        content = section.content.replace("\r\n", "\n").strip("\n")
        if config.number_sections and section.kind in UNNUMBERED_KINDS:
            content = _mark_unnumbered(content)
        parts.append(content)
    return "\n\n".join(parts) + "\n"


def _mark_unnumbered(content: str) -> str:
    lines = content.splitlines()
    for _level, _title, index in list(iter_headings(content)):
        line = lines[index].rstrip()
        if not line.endswith("}"):
            lines[index] = f"{line} {{.unnumbered}}"
    return "\n".join(lines)


def _toc_args(config: FormatConfig) -> list[str]:
    args = ["--toc", f"--toc-depth={config.toc_depth}"]
    if config.number_sections:
        args.append("--number-sections")
    return args


# -- Adapters -----------------------------------------------------------------


@register_renderer("markdown")
class MarkdownRenderer(BaseRenderer):
    """Single assembled Markdown file with an expanded table of contents."""

    extension = ".md"
    media_type = "text/markdown"
    volatile_patterns = (rb"<!-- generated: [^>]*-->\n?",)

    def render_payload(self, document, config, generated_at):
        entries: list[str] = []
        sections: list[str] = []
        counters = [0] * 6
        appendix_index = 0

        for section in document.sections:
            content = section.content.replace("\r\n", "\n").strip("\n")
            lines = content.splitlines()
            if section.kind is SectionKind.APPENDIX:
                appendix_index += 1
            for level, title, index in list(iter_headings(content)):
                label, attrs = split_attributes(title)
                if config.number_sections and section.kind not in UNNUMBERED_KINDS:
                    number = self._number(section.kind, level, counters, appendix_index)
                    label = f"{number} {label}"
                    lines[index] = f"{'#' * level} {label} {attrs}".rstrip()
                if level <= config.toc_depth:
                    explicit = _ID_RE.search(attrs)
                    anchor = explicit.group("id") if explicit else slugify(label)
                    entries.append(f"{'  ' * (level - 1)}- [{label}](#{anchor})")
            sections.append("\n".join(lines))

        toc = "## Contents\n\n" + "\n".join(entries) if entries else ""
        text = document.text
        if config.number_sections:
            body = "\n\n".join(sections)
            text = f"{document.preamble}\n{TOC_MARKER}\n\n{body}\n"
        text = text.replace(TOC_MARKER, toc, 1)
        return f"<!-- generated: {generated_at.isoformat()} -->\n{text}".encode("utf-8")

    @staticmethod
    def _number(kind: SectionKind, level: int, counters: list[int], appendix_index: int) -> str:
        # skipped parent levels count from 1, never 0
        first = 1 if kind is SectionKind.APPENDIX else 0
        for i in range(first, level - 1):
            counters[i] = counters[i] or 1
        if kind is SectionKind.APPENDIX:
            if level == 1:
                counters[1:] = [0] * 5
                return f"{chr(ord('A') + appendix_index - 1)}."
            counters[level - 1] += 1
            counters[level:] = [0] * (6 - level)
            tail = ".".join(str(c) for c in counters[1:level])
            return f"{chr(ord('A') + appendix_index - 1)}.{tail}"
        counters[level - 1] += 1
        counters[level:] = [0] * (6 - level)
        return ".".join(str(c) for c in counters[:level])


@register_renderer("html")
class HtmlRenderer(BaseRenderer):
    """Standalone single-page HTML via pandoc."""

    extension = ".html"
    media_type = "text/html"
    volatile_patterns = (
        rb'<meta name="dcterms\.date" content="[^"]*"\s*/?>\n?',
        rb'<p class="date">[^<]*</p>\n?',
    )

    def render_payload(self, document, config, generated_at):
        args = ["--standalone", *_toc_args(config), f"--metadata=date:{generated_at.isoformat()}"]
        css = config.options.get("css")
        if css:
            args.append(f"--css={css}")
        if config.options.get("embed_resources"):
            args.append("--embed-resources")
        return self.converter.convert(pandoc_source(document, config), "html5", args)


@register_renderer("pdf")
class PdfRenderer(BaseRenderer):
    """Paginated PDF via pandoc and a LaTeX engine."""

    extension = ".pdf"
    media_type = "application/pdf"
    volatile_patterns = (
        rb"/CreationDate\s*\([^)]*\)",
        rb"/ModDate\s*\([^)]*\)",
        rb"/ID\s*\[\s*<[0-9A-Fa-f]*>\s*<[0-9A-Fa-f]*>\s*\]",
    )

    def render_payload(self, document, config, generated_at):
        args = [*_toc_args(config), f"--variable=papersize:{config.page_size}"]
        margin = config.options.get("margin")
        if margin:
            args.append(f"--variable=geometry:margin={margin}")
        env = {"SOURCE_DATE_EPOCH": str(int(generated_at.timestamp())), "FORCE_SOURCE_DATE": "1"}
        return self.converter.convert(
            pandoc_source(document, config), "pdf", args, binary_suffix=".pdf", env=env,
        )


@register_renderer("epub")
class EpubRenderer(BaseRenderer):
    """Reflowable EPUB package built with ebooklib, one document per fragment."""

    extension = ".epub"
    media_type = "application/epub+zip"
    volatile_patterns = (rb'<meta property="dcterms:modified">[^<]*</meta>',)

    def render_payload(self, document, config, generated_at):
        from ebooklib import epub

        meta = document.metadata
        book = epub.EpubBook()
        book.set_identifier(f"urn:quire:{document.source_digest.removeprefix('sha256:')[:32]}")
        book.set_title(meta.title)
        book.set_language(meta.language)
        if meta.author:
            book.add_author(meta.author)
        book.add_metadata("DC", "rights", f"Copyright © {meta.copyright_year} {meta.author}".strip())

        style = self._stylesheet(config)
        if style is not None:
            book.add_item(style)

        items = []
        if document.title_page:
            title_item = self._chapter(
                "title.xhtml", meta.title, meta.language,
                self.converter.convert(document.title_page, "html", []).decode("utf-8"), style,
            )
            book.add_item(title_item)
            items.append(title_item)

        toc = []
        chapter_number = 0
        for index, section in enumerate(document.sections, start=1):
            args: list[str] = []
            if config.number_sections and section.kind is SectionKind.CHAPTER:
                chapter_number += 1
                args = ["--number-sections", f"--number-offset={chapter_number - 1}"]
            body = self.converter.convert(section.content, "html", args).decode("utf-8")
            item = self._chapter(f"s{index:03d}.xhtml", section.title, meta.language, body, style)
            book.add_item(item)
            items.append(item)
            if config.toc_depth > 0:
                toc.append(epub.Link(item.file_name, section.title, f"s{index:03d}"))

        book.toc = toc
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.spine = [items[0], "nav", *items[1:]] if document.title_page else ["nav", *items]

        with tempfile.TemporaryDirectory(prefix="quire-epub-") as tmp:
            out_path = Path(tmp) / "book.epub"
            epub.write_epub(str(out_path), book, {})
            return out_path.read_bytes()

    def _chapter(self, file_name: str, title: str, language: str, body: str, style):
        from ebooklib import epub

        item = epub.EpubHtml(title=title, file_name=file_name, lang=language)
        item.content = f"<section>{body.strip() or '<p></p>'}</section>"
        if style is not None:
            item.add_item(style)
        return item

    def _stylesheet(self, config: FormatConfig):
        from ebooklib import epub

        css = config.options.get("css")
        if not css:
            return None
        return epub.EpubItem(
            uid="style",
            file_name="style/book.css",
            media_type="text/css",
            content=Path(css).read_bytes(),
        )

    def canonical_bytes(self, payload: bytes) -> bytes:
        """Sorted archive members with volatile fields stripped; ZIP timestamps ignored."""
        out = io.BytesIO()
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            for name in sorted(archive.namelist()):
                out.write(name.encode("utf-8") + b"\x00")
                out.write(super().canonical_bytes(archive.read(name)))
                out.write(b"\x00")
        return out.getvalue()


# -- Entry point --------------------------------------------------------------


def render(
    document: AssembledDocument,
    config: FormatConfig,
    converter: PandocConverter | None = None,
    generated_at: datetime | None = None,
) -> Artifact:
    """Render one format. Every failure surfaces as RenderFailure for that format."""
    generated_at = generated_at or datetime.now().astimezone()
    try:
        renderer = get_renderer(config.format_id, converter)
        payload = renderer.render_payload(document, config, generated_at)
        content_hash = renderer.content_hash(payload)
    except RenderFailure:
        raise
    except Exception as e:
        raise RenderFailure(config.format_id, e) from e

    fingerprint = compute_render_fingerprint(document.source_digest, config, renderer.renderer_id)
    return Artifact(
        target=document.target,
        format_id=config.format_id,
        version=document.metadata.version,
        payload=payload,
        content_hash=content_hash,
        filename=renderer.filename(document),
        media_type=renderer.media_type,
        source_digest=document.source_digest,
        fingerprint=fingerprint.digest,
        generated_at=generated_at,
    )

