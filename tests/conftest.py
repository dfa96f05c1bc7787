"""Shared test fixtures for Quire."""

from __future__ import annotations

import html
import textwrap
from datetime import datetime
from pathlib import Path

import pytest

from quire.build.converter import PandocConverter
from quire.config import get_settings, reset_settings
from quire.core.models import Artifact, Book
from quire.db.engine import reset_engine


MANUSCRIPT_FILES = {
    "front/title.md": "# Title Page\n\nA dedication.\n",
    "front/preface.md": "# Preface\n\nWhy this book exists.\n",
    "chapters/01-ch1.md": "# Chapter One\n\nIt begins.\n\n## A Detail\n\nMore text.\n",
    "chapters/02-ch2.md": "# Chapter Two\n\nIt continues.\n",
    "appendix/notes.md": "# Notes\n\n## Sources\n\nA list.\n",
    "back/thanks.md": "# Thanks\n\nTo everyone.\n",
}

FULL_MANIFEST = """\
# full edition
front/title.md
front/preface.md
chapters/01-ch1.md
chapters/02-ch2.md
"""

SAMPLE_MANIFEST = """\
front/preface.md
chapters/01-ch1.md
"""


class FakeConverter(PandocConverter):
    """Deterministic stand-in for pandoc that records its calls."""

    def __init__(self):
        super().__init__(executable="fake-pandoc")
        self.calls: list[dict] = []

    def available(self) -> bool:
        return True

    def convert(self, source, to, args=(), *, binary_suffix=None, env=None):
        self.calls.append({"to": to, "args": list(args), "binary_suffix": binary_suffix, "env": env})
        date = next((a.split(":", 1)[1] for a in args if a.startswith("--metadata=date:")), None)
        head = f'<meta name="dcterms.date" content="{date}" />\n' if date else ""
        if to == "pdf":
            stamp = (env or {}).get("SOURCE_DATE_EPOCH", "0")
            return f"%PDF-1.5\n/CreationDate (D:{stamp})\n{source}\n%%EOF\n".encode()
        return f"{head}<p>{html.escape(source)}</p>".encode()


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Run every test in its own directory with its own ledger."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("QUIRE_STORAGE_DIR", str(tmp_path / ".quire"))
    for var in ("QUIRE_BUILD_DIR", "QUIRE_PANDOC_PATH", "QUIRE_GITHUB_TOKEN", "QUIRE_WEBHOOK_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    reset_settings()
    reset_engine()
    yield
    reset_engine()
    reset_settings()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def fake_converter():
    return FakeConverter()


@pytest.fixture
def missing_converter():
    """A converter whose executable is not on PATH."""
    return PandocConverter(executable="quire-missing-pandoc-binary")


def write_manuscript(root: Path, files: dict[str, str] | None = None, manifests: dict[str, str] | None = None) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for ident, content in (files if files is not None else MANUSCRIPT_FILES).items():
        path = root / ident
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    if manifests is None:
        manifests = {"full": FULL_MANIFEST, "sample": SAMPLE_MANIFEST}
    for target, text in manifests.items():
        (root / f"{target}.txt").write_text(text)
    return root


@pytest.fixture
def manuscript(tmp_path):
    """Fragment tree with full and sample manifests."""
    return write_manuscript(tmp_path / "manuscript")


@pytest.fixture
def book(tmp_path, manuscript):
    b = Book(
        title="Test Book",
        author="Ada Writer",
        copyright_year=2026,
        source_dir=str(manuscript),
        build_dir=str(tmp_path / "build"),
    )
    b.add_format("markdown")
    return b


@pytest.fixture
def book_file(tmp_path, manuscript):
    """A book.py next to the manuscript, with one directory channel."""
    f = tmp_path / "book.py"
    f.write_text(textwrap.dedent("""\
        from quire import Book

        book = Book(title="Test Book", author="Ada Writer", copyright_year=2026)
        book.add_format("markdown")
        book.add_channel("site", kind="directory", path="./public")
    """))
    return f


def make_artifact(
    target: str = "full",
    format_id: str = "markdown",
    payload: bytes = b"# Test Book\n",
    version: str = "dev",
    source_digest: str = "sha256:abc",
) -> Artifact:
    from quire.build.fingerprint import hash_bytes

    ext = {"markdown": ".md", "html": ".html", "epub": ".epub", "pdf": ".pdf"}.get(format_id, ".bin")
    return Artifact(
        target=target,
        format_id=format_id,
        version=version,
        payload=payload,
        content_hash=hash_bytes(payload),
        filename=f"test-book-{target}-{version}{ext}",
        source_digest=source_digest,
        fingerprint="f" * 64,
        generated_at=datetime(2026, 10, 17, 12, 0, 0),
    )


@pytest.fixture
def artifact_factory():
    return make_artifact
