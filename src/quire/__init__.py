"""Quire - build a manuscript into many formats and release it to many channels.

Usage (book.py):
    from quire import Book

    book = Book(title="Field Notes", author="A. Writer", copyright_year=2026)
    book.add_format("markdown")
    book.add_format("epub", toc_depth=1)
    book.add_format("pdf", page_size="a5", number_sections=True)
    book.add_channel("site", kind="directory", path="public/downloads")
    book.add_channel("github", kind="github", repo="writer/field-notes")

Manuscript fragments live under manuscript/ and each target lists them, in
order, in manuscript/<target>.txt.
"""

from quire.core.errors import QuireError
from quire.core.models import (
    Artifact,
    AssembledDocument,
    Book,
    ChannelDescriptor,
    ChannelState,
    FormatConfig,
    Fragment,
    Manifest,
    Release,
    SectionKind,
    Version,
)

__all__ = [
    "Artifact",
    "AssembledDocument",
    "Book",
    "ChannelDescriptor",
    "ChannelState",
    "FormatConfig",
    "Fragment",
    "Manifest",
    "QuireError",
    "Release",
    "SectionKind",
    "Version",
]
