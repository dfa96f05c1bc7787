"""Tests for release creation, publishing and ordering."""

from __future__ import annotations

import subprocess
import sys
import threading
from datetime import datetime

import pytest

from quire.core.errors import InvalidVersion, ReleaseStateError, VersionRegression
from quire.core.models import ReleaseStatus, Version
from quire.release.manager import ReleaseManager, format_changelog_entry, prepend_changelog, release_filename


@pytest.fixture
def manager(settings, tmp_path):
    return ReleaseManager(settings, changelog_path=tmp_path / "CHANGELOG.md")


class TestCreateRelease:
    def test_create_draft(self, manager, artifact_factory):
        release = manager.create_release([artifact_factory()], "1.0.0", "First edition.")
        assert release.version == Version(1, 0, 0)
        assert release.status is ReleaseStatus.DRAFT
        assert release.published_at is None
        assert len(release.artifacts) == 1
        assert manager.get("1.0.0") == release

    def test_files_copied_under_release_names(self, manager, artifact_factory):
        release = manager.create_release([artifact_factory(payload=b"body")], "1.0.0")
        ref = release.artifacts[0]
        assert ref.filename == "test-book-full-1.0.0.md"
        assert ref.path == "1.0.0/test-book-full-1.0.0.md"
        assert manager.artifact_path(ref).read_bytes() == b"body"
        assert not list(manager.releases_dir.glob(".staging-*"))

    def test_versions_must_increase(self, manager, artifact_factory):
        manager.create_release([artifact_factory()], "1.0.0")
        with pytest.raises(VersionRegression) as exc:
            manager.create_release([artifact_factory()], "1.0.0")
        assert exc.value.latest == Version(1, 0, 0)
        with pytest.raises(VersionRegression):
            manager.create_release([artifact_factory()], "0.9.0")
        manager.create_release([artifact_factory()], "1.0.1")
        assert [str(r.version) for r in manager.list_releases()] == ["1.0.0", "1.0.1"]

    def test_rejected_release_writes_nothing(self, manager, artifact_factory, tmp_path):
        manager.create_release([artifact_factory()], "1.0.0", "one")
        changelog = (tmp_path / "CHANGELOG.md").read_text()
        with pytest.raises(VersionRegression):
            manager.create_release([artifact_factory()], "0.9.0", "nope")
        assert (tmp_path / "CHANGELOG.md").read_text() == changelog
        assert not manager.release_dir("0.9.0").exists()
        assert manager.get("0.9.0") is None

    def test_no_artifacts(self, manager):
        with pytest.raises(ReleaseStateError):
            manager.create_release([], "1.0.0")

    def test_invalid_version(self, manager, artifact_factory):
        with pytest.raises(InvalidVersion):
            manager.create_release([artifact_factory()], "1.0")

    def test_numeric_not_lexical_ordering(self, manager, artifact_factory):
        manager.create_release([artifact_factory()], "1.9.0")
        manager.create_release([artifact_factory()], "1.10.0")
        assert manager.latest().version == Version(1, 10, 0)
        with pytest.raises(VersionRegression):
            manager.create_release([artifact_factory()], "1.9.5")

    def test_concurrent_same_version(self, manager, artifact_factory):
        barrier = threading.Barrier(2)
        outcomes: list[str] = []

        def attempt():
            barrier.wait()
            try:
                manager.create_release([artifact_factory()], "2.0.0")
                outcomes.append("ok")
            except VersionRegression:
                outcomes.append("rejected")

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "rejected"]
        assert len(manager.list_releases()) == 1



RELEASE_SCRIPT = """\
import sys

from quire.core.models import Artifact
from quire.release import ReleaseManager

artifact = Artifact(
    target="full",
    format_id="markdown",
    version="dev",
    payload=b"other",
    content_hash="sha256:other",
    filename="book-full-dev.md",
)
ReleaseManager(changelog_path=sys.argv[1]).create_release([artifact], sys.argv[2])
"""


class TestCrossProcess:
    def test_other_process_waits_for_version_check(self, manager, artifact_factory, tmp_path, monkeypatch):
        manager.create_release([artifact_factory()], "1.0.0")
        others: list[subprocess.Popen] = []
        stage = ReleaseManager._stage_artifacts

        def stage_while_another_release_starts(self, artifacts, version, staging):
            # 1.0.2 has passed its version check; 1.0.3 must not commit first
            proc = subprocess.Popen(
                [sys.executable, "-c", RELEASE_SCRIPT, str(tmp_path / "CHANGELOG.md"), "1.0.3"]
            )
            others.append(proc)
            with pytest.raises(subprocess.TimeoutExpired):
                proc.wait(timeout=3)
            return stage(self, artifacts, version, staging)

        monkeypatch.setattr(ReleaseManager, "_stage_artifacts", stage_while_another_release_starts)
        manager.create_release([artifact_factory()], "1.0.2")
        assert others[0].wait(timeout=60) == 0

        by_creation = sorted(manager.list_releases(), key=lambda r: r.created_at)
        assert [str(r.version) for r in by_creation] == ["1.0.0", "1.0.2", "1.0.3"]
        changelog = (tmp_path / "CHANGELOG.md").read_text()
        assert changelog.index("## 1.0.3") < changelog.index("## 1.0.2")

    def test_lower_version_from_another_process_is_rejected(self, manager, artifact_factory, tmp_path):
        manager.create_release([artifact_factory()], "1.0.3")
        proc = subprocess.run(
            [sys.executable, "-c", RELEASE_SCRIPT, str(tmp_path / "CHANGELOG.md"), "1.0.2"],
            capture_output=True,
            text=True,
            timeout=60,
        )
        assert proc.returncode != 0
        assert "VersionRegression" in proc.stderr
        assert [str(r.version) for r in manager.list_releases()] == ["1.0.3"]


class TestChangelog:
    def test_newest_first(self, manager, artifact_factory, tmp_path):
        manager.create_release([artifact_factory()], "1.0.0", "First.")
        manager.create_release([artifact_factory()], "1.1.0", "Second.")
        text = (tmp_path / "CHANGELOG.md").read_text()
        assert text.startswith("# Changelog\n")
        assert text.index("## 1.1.0") < text.index("## 1.0.0")
        assert "Second." in text

    def test_entry_format(self):
        entry = format_changelog_entry(Version(1, 2, 0), "  Fixed typos.  ", datetime(2026, 10, 17))
        assert entry == "## 1.2.0 (2026-10-17)\n\nFixed typos.\n"
        assert "No changes recorded." in format_changelog_entry(Version(1, 0, 0), "", datetime(2026, 1, 1))

    def test_prepend_keeps_existing_history(self, tmp_path):
        path = tmp_path / "CHANGELOG.md"
        path.write_text("Old notes without a header.\n")
        prepend_changelog(path, "## 1.0.0 (2026-10-17)\n\nNew.\n")
        text = path.read_text()
        assert text.startswith("# Changelog\n\n## 1.0.0")
        assert text.endswith("Old notes without a header.\n")


class TestPublish:
    def test_publish_transition(self, manager, artifact_factory):
        manager.create_release([artifact_factory()], "1.0.0")
        released = manager.publish("1.0.0")
        assert released.is_published
        assert released.published_at is not None
        assert manager.latest_published().version == Version(1, 0, 0)

    def test_publish_is_one_way(self, manager, artifact_factory):
        manager.create_release([artifact_factory()], "1.0.0")
        manager.publish("1.0.0")
        with pytest.raises(ReleaseStateError, match="already published"):
            manager.publish("1.0.0")

    def test_publish_unknown(self, manager):
        with pytest.raises(ReleaseStateError, match="No release"):
            manager.publish("3.0.0")

    def test_latest_published_skips_drafts(self, manager, artifact_factory):
        manager.create_release([artifact_factory()], "1.0.0")
        manager.publish("1.0.0")
        manager.create_release([artifact_factory()], "1.1.0")
        assert manager.latest().version == Version(1, 1, 0)
        assert manager.latest_published().version == Version(1, 0, 0)


class TestQueries:
    def test_empty_ledger(self, manager):
        assert manager.latest() is None
        assert manager.latest_published() is None
        assert manager.list_releases() == []
        assert manager.next_version() == Version(0, 1, 0)

    def test_next_version(self, manager, artifact_factory):
        manager.create_release([artifact_factory()], "1.2.3")
        assert manager.next_version() == Version(1, 2, 4)
        assert manager.next_version("minor") == Version(1, 3, 0)
        assert manager.next_version("major") == Version(2, 0, 0)

    def test_state_survives_new_manager(self, manager, settings, artifact_factory, tmp_path):
        manager.create_release([artifact_factory()], "1.0.0")
        again = ReleaseManager(settings, changelog_path=tmp_path / "CHANGELOG.md")
        assert again.latest().version == Version(1, 0, 0)


def test_release_filename_keeps_unlabelled_names(artifact_factory):
    artifact = artifact_factory()
    assert release_filename(artifact, Version(1, 0, 0)) == "test-book-full-1.0.0.md"
    odd = artifact_factory(version="")
    assert release_filename(odd, Version(1, 0, 0)) == odd.filename
