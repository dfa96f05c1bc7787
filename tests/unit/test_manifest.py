"""Tests for manifest parsing and resolution."""

from __future__ import annotations

import pytest

from quire.build.fragments import FragmentStore
from quire.build.manifest import (
    ManifestResolver,
    check_subsequence,
    is_subsequence,
    load_manifest,
    parse_manifest,
)
from quire.core.errors import (
    DuplicateEntry,
    ManifestNotFound,
    MissingFragment,
    SubsequenceViolation,
    UnreadableFragment,
)
from quire.core.models import Manifest


@pytest.fixture
def resolver(manuscript):
    return ManifestResolver(FragmentStore(manuscript), manuscript)


class TestParseManifest:
    def test_comments_and_blank_lines_skipped(self):
        manifest = parse_manifest("full", "# heading\n\nfront/a.md\n  chapters/b.md  \n\n")
        assert manifest.entries == ("front/a.md", "chapters/b.md")

    def test_duplicate_entry_reports_both_lines(self):
        with pytest.raises(DuplicateEntry) as exc:
            parse_manifest("full", "a.md\nb.md\n./a.md\n")
        assert exc.value.identifier == "a.md"
        assert exc.value.lines == (1, 3)

    def test_missing_manifest_file(self, tmp_path):
        with pytest.raises(ManifestNotFound) as exc:
            load_manifest("print", tmp_path)
        assert exc.value.target == "print"
        assert exc.value.path.endswith("print.txt")


class TestResolve:
    def test_resolve_preserves_manifest_order(self, resolver):
        fragments = resolver.resolve("full")
        assert [f.identifier for f in fragments] == [
            "front/title.md",
            "front/preface.md",
            "chapters/01-ch1.md",
            "chapters/02-ch2.md",
        ]

    def test_order_is_never_sorted(self, manuscript, tmp_path):
        manifests = tmp_path / "manifests"
        manifests.mkdir()
        (manifests / "full.txt").write_text("chapters/02-ch2.md\nchapters/01-ch1.md\nfront/title.md\n")
        fragments = ManifestResolver(FragmentStore(manuscript), manifests).resolve("full")
        assert [f.identifier for f in fragments] == [
            "chapters/02-ch2.md",
            "chapters/01-ch1.md",
            "front/title.md",
        ]

    def test_missing_fragment_names_identifier_and_target(self, manuscript, resolver):
        (manuscript / "broken.txt").write_text("front/preface.md\nchapters/03-ch3.md\n")
        with pytest.raises(MissingFragment) as exc:
            resolver.resolve("broken")
        assert exc.value.identifier == "chapters/03-ch3.md"
        assert exc.value.target == "broken"

    def test_reordered_sample_is_not_resolved(self, manuscript, resolver):
        (manuscript / "sample.txt").write_text("chapters/01-ch1.md\nfront/preface.md\n")
        with pytest.raises(SubsequenceViolation) as exc:
            resolver.resolve("sample")
        assert exc.value.identifier == "front/preface.md"
        assert exc.value.full_target == "full"

    def test_sample_entry_absent_from_full(self, manuscript, resolver):
        (manuscript / "sample.txt").write_text("front/preface.md\nappendix/notes.md\n")
        with pytest.raises(SubsequenceViolation) as exc:
            resolver.resolve("sample")
        assert exc.value.identifier == "appendix/notes.md"

    def test_undecodable_manifest(self, manuscript, resolver):
        (manuscript / "sample.txt").write_bytes(b"\xff\xfefront/preface.md\n")
        with pytest.raises(UnreadableFragment):
            resolver.resolve("sample")

    def test_resolve_has_no_side_effects(self, manuscript, resolver):
        before = sorted(p.name for p in manuscript.rglob("*"))
        resolver.resolve("full")
        resolver.resolve("sample")
        assert sorted(p.name for p in manuscript.rglob("*")) == before

    def test_separate_manifest_dir(self, manuscript, tmp_path):
        manifests = tmp_path / "manifests"
        manifests.mkdir()
        (manifests / "full.txt").write_text("chapters/02-ch2.md\n")
        resolver = ManifestResolver(FragmentStore(manuscript), manifests)
        assert [f.identifier for f in resolver.resolve("full")] == ["chapters/02-ch2.md"]


class TestSubsequence:
    FULL = ["title", "preface", "ch1", "ch2"]

    def test_in_order_subset_is_valid(self):
        assert is_subsequence(["preface", "ch1"], self.FULL)

    def test_out_of_order_subset_is_invalid(self):
        assert not is_subsequence(["ch1", "preface"], self.FULL)

    def test_foreign_entry_is_invalid(self):
        assert not is_subsequence(["preface", "epilogue"], self.FULL)

    def test_empty_and_identical(self):
        assert is_subsequence([], self.FULL)
        assert is_subsequence(self.FULL, self.FULL)

    def test_check_subsequence_names_offender(self):
        full = Manifest("full", tuple(self.FULL))
        sample = Manifest("sample", ("ch1", "preface"))
        with pytest.raises(SubsequenceViolation) as exc:
            check_subsequence(sample, full)
        assert exc.value.identifier == "preface"
        assert exc.value.target == "sample"


class TestValidate:
    def test_valid_targets(self, resolver):
        resolved = resolver.validate_manifests(["full", "sample"])
        assert len(resolved["full"]) == 4
        assert len(resolved["sample"]) == 2

    def test_reordered_sample_rejected(self, manuscript, resolver):
        (manuscript / "sample.txt").write_text("chapters/01-ch1.md\nfront/preface.md\n")
        resolved = resolver.validate_manifests(["full", "sample"])
        assert len(resolved["full"]) == 4
        assert isinstance(resolved["sample"], SubsequenceViolation)

    def test_unlisted_fragments(self, resolver):
        assert resolver.unlisted() == ["appendix/notes.md", "back/thanks.md"]
