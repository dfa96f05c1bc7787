"""Book project loading — import book.py and extract the `book` definition."""

from __future__ import annotations

import importlib.util
import sys
from dataclasses import replace
from pathlib import Path

from quire.build.renderers import available_formats
from quire.core.errors import ProjectError
from quire.core.models import FULL_TARGET, Book
from quire.sync.base import available_channels

DEFAULT_BOOK_FILE = "book.py"


def load_book(path: str | Path = DEFAULT_BOOK_FILE) -> Book:
    """Import a Python book module and extract the `book` variable.

    Relative directories declared in the module are resolved against the
    directory containing the file, so commands behave the same from any cwd.
    """
    filepath = Path(path).resolve()
    if not filepath.exists():
        raise ProjectError(f"Book file not found: {path}")

    module_name = f"_quire_book_{filepath.stem}"
    spec = importlib.util.spec_from_file_location(module_name, filepath)
    if spec is None or spec.loader is None:
        raise ProjectError(f"Cannot load book module: {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ProjectError(f"Error executing {path}: {e}") from e

    book = getattr(module, "book", None)
    if book is None:
        raise ProjectError(f"Book module {path} must define a 'book' variable")
    if not isinstance(book, Book):
        raise ProjectError(f"'book' variable must be a Book instance, got {type(book).__name__}")

    anchor_paths(book, filepath.parent)
    validate_book(book)
    return book


def anchor_paths(book: Book, root: Path) -> None:
    """Make the book's directories, and directory channel paths, absolute."""

    def _anchor(value: str) -> str:
        p = Path(value).expanduser()
        return str(p if p.is_absolute() else (root / p).resolve())

    book.source_dir = _anchor(book.source_dir)
    book.build_dir = _anchor(book.build_dir)
    if book.manifest_dir:
        book.manifest_dir = _anchor(book.manifest_dir)
    book.channels = [
        replace(c, options={**c.options, "path": _anchor(c.options["path"])})
        if c.kind == "directory" and c.options.get("path")
        else c
        for c in book.channels
    ]


def validate_book(book: Book) -> None:
    """Validate book configuration."""
    if not book.title.strip():
        raise ProjectError("Book must have a title")

    if FULL_TARGET not in book.targets:
        raise ProjectError(f"Book must declare a '{FULL_TARGET}' target")

    known = set(available_formats())
    for format_id in book.formats:
        if format_id not in known:
            raise ProjectError(
                f"Unknown format '{format_id}'. Available formats: {sorted(known)}"
            )

    channel_kinds = set(available_channels())
    seen: set[str] = set()
    for channel in book.channels:
        if channel.name in seen:
            raise ProjectError(f"Duplicate channel name: '{channel.name}'")
        if channel.kind not in channel_kinds:
            raise ProjectError(
                f"Channel '{channel.name}' has unknown kind '{channel.kind}'. "
                f"Available kinds: {sorted(channel_kinds)}"
            )
        seen.add(channel.name)
