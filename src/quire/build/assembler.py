"""Document assembly — concatenate resolved fragments behind a title preamble."""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from quire.build.fingerprint import compute_source_digest
from quire.core.errors import EmptyManifest
from quire.core.models import AssembledDocument, Fragment, TargetMetadata

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
PREAMBLE_TEMPLATE = "preamble.md.j2"

TOC_MARKER = "<!-- quire:toc -->"

_TITLE_PAGE_RE = re.compile(
    r"<!-- quire:title-page -->\n(?P<body>.*?)<!-- /quire:title-page -->",
    re.DOTALL,
)


def _environment(template_dir: Path) -> Environment:
    return Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


def render_preamble(metadata: TargetMetadata, template_dir: Path | None = None) -> str:
    """Render the metadata block and title page for a target."""
    env = _environment(Path(template_dir) if template_dir else TEMPLATES_DIR)
    template = env.get_template(PREAMBLE_TEMPLATE)
    return template.render(**metadata.to_dict()).strip() + "\n"


def extract_title_page(preamble: str) -> str:
    match = _TITLE_PAGE_RE.search(preamble)
    return match.group("body").strip() if match else ""


def assemble(
    fragments: Sequence[Fragment],
    metadata: TargetMetadata,
    template_dir: Path | None = None,
) -> AssembledDocument:
    """Concatenate fragments in the given order behind a preamble and TOC marker.

    Fragments are neither reordered nor deduplicated. Raises EmptyManifest
    when there is nothing to assemble.
    """
    if not fragments:
        raise EmptyManifest(metadata.target)

    preamble = render_preamble(metadata, template_dir)
    body = "\n\n".join(f.content.replace("\r\n", "\n").strip("\n") for f in fragments)
    text = f"{preamble}\n{TOC_MARKER}\n\n{body}\n"

    return AssembledDocument(
        target=metadata.target,
        metadata=metadata,
        preamble=preamble,
        title_page=extract_title_page(preamble),
        sections=tuple(fragments),
        text=text,
        source_digest=compute_source_digest(fragments, metadata),
    )
