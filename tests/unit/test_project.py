"""Tests for book.py loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from quire.build.project import load_book, validate_book
from quire.core.errors import ProjectError
from quire.core.models import Book


class TestLoadBook:
    def test_load_and_anchor_paths(self, book_file, tmp_path):
        book = load_book(book_file)
        assert book.title == "Test Book"
        assert Path(book.source_dir) == (tmp_path / "manuscript").resolve()
        assert Path(book.build_dir) == (tmp_path / "build").resolve()
        assert Path(book.channel("site").options["path"]) == (tmp_path / "public").resolve()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ProjectError, match="not found"):
            load_book(tmp_path / "nope.py")

    def test_module_error(self, tmp_path):
        f = tmp_path / "broken.py"
        f.write_text("raise RuntimeError('boom')\n")
        with pytest.raises(ProjectError, match="boom"):
            load_book(f)

    def test_missing_book_variable(self, tmp_path):
        f = tmp_path / "empty.py"
        f.write_text("x = 1\n")
        with pytest.raises(ProjectError, match="'book' variable"):
            load_book(f)

    def test_wrong_type(self, tmp_path):
        f = tmp_path / "wrong.py"
        f.write_text("book = 'not a book'\n")
        with pytest.raises(ProjectError, match="Book instance"):
            load_book(f)


class TestValidateBook:
    def test_unknown_format(self):
        book = Book(title="T")
        book.add_format("docx")
        with pytest.raises(ProjectError, match="Unknown format"):
            validate_book(book)

    def test_unknown_channel_kind(self):
        book = Book(title="T")
        book.add_channel("ftp", kind="ftp", host="example.org")
        with pytest.raises(ProjectError, match="unknown kind"):
            validate_book(book)

    def test_duplicate_channel(self):
        book = Book(title="T")
        book.add_channel("site", kind="directory", path="a")
        book.add_channel("site", kind="directory", path="b")
        with pytest.raises(ProjectError, match="Duplicate channel"):
            validate_book(book)

    def test_full_target_required(self):
        book = Book(title="T", targets={"sample": {}})
        with pytest.raises(ProjectError, match="'full' target"):
            validate_book(book)

    def test_title_required(self):
        with pytest.raises(ProjectError, match="title"):
            validate_book(Book(title="  "))
