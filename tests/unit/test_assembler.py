"""Tests for document assembly."""

from __future__ import annotations

import pytest

from quire.build.assembler import TOC_MARKER, assemble, render_preamble
from quire.core.errors import EmptyManifest
from quire.core.models import Fragment, SectionKind, TargetMetadata


@pytest.fixture
def metadata():
    return TargetMetadata(
        target="full",
        title="Test Book",
        author="Ada Writer",
        subtitle="A Novel",
        version="1.2.0",
        copyright_year=2026,
    )


@pytest.fixture
def fragments():
    return [
        Fragment("front/preface.md", "# Preface\n\nHello.\n", SectionKind.FRONT_MATTER),
        Fragment("chapters/01.md", "# One\n\nFirst.\n", SectionKind.CHAPTER),
        Fragment("chapters/02.md", "# Two\n\nSecond.\n", SectionKind.CHAPTER),
    ]


class TestPreamble:
    def test_title_block_values(self, metadata):
        preamble = render_preamble(metadata)
        assert 'title: "Test Book"' in preamble
        assert 'author: "Ada Writer"' in preamble
        assert "Version 1.2.0" in preamble
        assert "Copyright © 2026 Ada Writer. All rights reserved." in preamble

    def test_optional_fields_omitted(self):
        preamble = render_preamble(TargetMetadata(target="full", title="Bare", copyright_year=2025))
        assert "subtitle:" not in preamble
        assert "author:" not in preamble
        assert "Copyright © 2025. All rights reserved." in preamble


class TestAssemble:
    def test_preamble_then_marker_then_fragments(self, fragments, metadata):
        doc = assemble(fragments, metadata)
        text = doc.text
        assert text.index("Version 1.2.0") < text.index(TOC_MARKER) < text.index("# Preface")
        assert text.index("# Preface") < text.index("# One") < text.index("# Two")

    def test_title_page_extracted(self, fragments, metadata):
        doc = assemble(fragments, metadata)
        assert doc.title_page.startswith("**Test Book**: A Novel")
        assert "<!--" not in doc.title_page

    def test_sections_keep_order_and_duplicates(self, fragments, metadata):
        doubled = [fragments[1], fragments[0], fragments[1]]
        doc = assemble(doubled, metadata)
        assert [s.identifier for s in doc.sections] == ["chapters/01.md", "front/preface.md", "chapters/01.md"]
        assert doc.text.count("# One") == 2

    def test_empty_manifest_raises(self, metadata):
        with pytest.raises(EmptyManifest) as exc:
            assemble([], metadata)
        assert exc.value.target == "full"

    def test_source_digest_stable(self, fragments, metadata):
        assert assemble(fragments, metadata).source_digest == assemble(list(fragments), metadata).source_digest

    def test_source_digest_tracks_order_content_and_metadata(self, fragments, metadata):
        base = assemble(fragments, metadata).source_digest
        reordered = assemble([fragments[0], fragments[2], fragments[1]], metadata).source_digest
        edited = assemble(
            [fragments[0], Fragment("chapters/01.md", "# One\n\nChanged.\n"), fragments[2]], metadata
        ).source_digest
        relabeled = assemble(
            fragments,
            TargetMetadata(target="full", title="Test Book", author="Ada Writer",
                           subtitle="A Novel", version="1.3.0", copyright_year=2026),
        ).source_digest
        assert len({base, reordered, edited, relabeled}) == 4
        assert base.startswith("sha256:")
