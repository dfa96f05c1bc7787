"""Tests for the build runner: isolation, caching and concurrency."""

from __future__ import annotations

import json

from quire.build.artifacts import ArtifactStore
from quire.build.runner import build_target, prepare_document, render_formats, run
from quire.core.errors import (
    ConverterUnavailable,
    ManifestNotFound,
    RenderFailure,
    SubsequenceViolation,
    UnreadableFragment,
)
from quire.core.models import Artifact, FormatConfig


class TestRenderFormats:
    def test_failure_is_isolated(self, book, missing_converter):
        document = prepare_document(book, "full")
        results = render_formats(
            document, [FormatConfig("markdown"), FormatConfig("html")], converter=missing_converter,
        )
        assert list(results) == ["markdown", "html"]
        assert isinstance(results["markdown"], Artifact)
        assert isinstance(results["html"], RenderFailure)
        assert isinstance(results["html"].cause, ConverterUnavailable)

    def test_empty_configs(self, book):
        assert render_formats(prepare_document(book, "full"), []) == {}


class TestRun:
    def test_partial_failure_keeps_successful_artifacts(self, book, missing_converter, tmp_path):
        result = run(book, ["full"], ["markdown", "html"], converter=missing_converter)
        target = result.targets[0]
        assert not result.ok
        assert target.results["markdown"].ok
        assert target.results["markdown"].path.exists()
        assert target.results["html"].error.format_id == "html"
        assert result.built == 1
        assert result.failed == 1

        store = ArtifactStore(tmp_path / "build")
        assert store.load_artifact("full", "markdown") is not None
        assert store.get_entry("full", "html") is None

    def test_multiple_targets(self, book, fake_converter):
        result = run(book, ["full", "sample"], ["markdown", "html"], converter=fake_converter)
        assert result.ok
        assert [t.target for t in result.targets] == ["full", "sample"]
        assert result.built == 4
        assert result.targets[1].fragment_count == 2

    def test_second_build_is_cached(self, book):
        run(book, ["full"], ["markdown"])
        second = run(book, ["full"], ["markdown"])
        assert second.cached == 1
        assert second.built == 0
        assert second.targets[0].results["markdown"].cached

    def test_force_rerenders(self, book):
        run(book, ["full"], ["markdown"])
        forced = run(book, ["full"], ["markdown"], force=True)
        assert forced.built == 1
        assert forced.cached == 0

    def test_edited_fragment_rebuilds(self, book, manuscript):
        first = run(book, ["full"], ["markdown"])
        (manuscript / "chapters" / "02-ch2.md").write_text("# Chapter Two\n\nIt changed.\n")
        second = run(book, ["full"], ["markdown"])
        assert second.built == 1
        assert second.targets[0].source_digest != first.targets[0].source_digest

    def test_config_change_rebuilds(self, book):
        run(book, ["full"], ["markdown"])
        book.add_format("markdown", number_sections=True)
        assert run(book, ["full"], ["markdown"]).built == 1

    def test_label_stamped_into_artifacts(self, book):
        result = run(book, ["full"], ["markdown"], version="1.2.0")
        artifact = result.targets[0].results["markdown"].artifact
        assert artifact.version == "1.2.0"
        assert artifact.filename == "test-book-full-1.2.0.md"
        assert b"Version 1.2.0" in artifact.payload

    def test_missing_manifest_fails_only_that_target(self, book):
        result = run(book, ["full", "print"], ["markdown"])
        full, printed = result.targets
        assert full.ok
        assert isinstance(printed.error, ManifestNotFound)
        assert not result.ok

    def test_reordered_sample_fails_only_that_target(self, book, manuscript, tmp_path):
        (manuscript / "sample.txt").write_text("chapters/01-ch1.md\nfront/preface.md\n")
        result = run(book, ["full", "sample"], ["markdown"])
        full, sample = result.targets
        assert full.ok
        assert isinstance(sample.error, SubsequenceViolation)
        assert sample.results == {}
        assert ArtifactStore(tmp_path / "build").get_entry("sample", "markdown") is None
        assert result.failed == 1

    def test_undecodable_fragment_fails_only_that_target(self, book, manuscript):
        (manuscript / "chapters" / "01-ch1.md").write_bytes(b"\xff\xfe# Chapter One\n")
        (manuscript / "full.txt").write_text("front/title.md\nfront/preface.md\nchapters/02-ch2.md\n")
        (manuscript / "sample.txt").write_text("front/preface.md\n")
        (manuscript / "broken.txt").write_text("chapters/01-ch1.md\n")

        result = run(book, ["full", "broken"], ["markdown"])
        full, broken = result.targets
        assert full.ok
        assert full.results["markdown"].path.exists()
        assert isinstance(broken.error, UnreadableFragment)
        assert broken.error.identifier == "chapters/01-ch1.md"

    def test_cache_miss_reasons_logged(self, book, manuscript, tmp_path):
        run(book, ["full"], ["markdown"])
        (manuscript / "chapters" / "02-ch2.md").write_text("# Chapter Two\n\nIt changed.\n")
        run(book, ["full"], ["markdown"])

        events = []
        for log in (tmp_path / "build" / "logs").glob("*.jsonl"):
            events.extend(json.loads(line) for line in log.read_text().splitlines())
        reasons = [e["reasons"] for e in events if e["event"] == "format_invalidated"]
        assert ["new artifact"] in reasons
        assert ["source changed"] in reasons

    def test_run_log_totals(self, book, missing_converter):
        result = run(book, ["full"], ["markdown", "html"], converter=missing_converter)
        assert result.run_log["total_rendered"] == 1
        assert result.run_log["total_failed"] == 1
        assert "html" in result.run_log["stages"]["full"]["failed"]

    def test_logs_written_to_build_dir(self, book, tmp_path):
        run(book, ["full"], ["markdown"])
        logs = list((tmp_path / "build" / "logs").glob("*.jsonl"))
        assert logs
        assert '"event": "format_finish"' in logs[0].read_text()


class TestBuildTarget:
    def test_unknown_format_is_a_format_error(self, book, tmp_path):
        store = ArtifactStore(tmp_path / "build")
        result = build_target(book, "full", ["markdown", "docx"], store)
        assert result.results["markdown"].ok
        assert isinstance(result.results["docx"].error, RenderFailure)
        assert not result.ok
