"""Tests for file utility functions."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path

from docrag.utils.files import (
    compute_sha256,
    generate_blob_path,
    iter_input_files,
    sanitize_filename,
)

SUFFIXES = (".pdf", ".txt")


class TestIterInputFiles:
    """Test iter_input_files function."""

    def test_single_file(self, tmp_path: Path) -> None:
        doc = tmp_path / "test.pdf"
        doc.write_text("dummy")

        assert list(iter_input_files([doc], suffixes=SUFFIXES)) == [doc]

    def test_directory_filters_suffixes(self, tmp_path: Path) -> None:
        """Should find supported files and ignore the rest."""
        (tmp_path / "doc1.pdf").write_text("dummy1")
        (tmp_path / "notes.txt").write_text("text")
        (tmp_path / "image.png").write_bytes(b"\x89PNG")

        names = {p.name for p in iter_input_files([tmp_path], suffixes=SUFFIXES)}

        assert names == {"doc1.pdf", "notes.txt"}

    def test_nested_directories(self, tmp_path: Path) -> None:
        subdir = tmp_path / "subdir"
        subdir.mkdir()
        (tmp_path / "root.pdf").write_text("root")
        (subdir / "nested.txt").write_text("nested")

        names = {p.name for p in iter_input_files([tmp_path], suffixes=SUFFIXES)}

        assert names == {"root.pdf", "nested.txt"}

    def test_case_insensitive_suffix(self, tmp_path: Path) -> None:
        (tmp_path / "DOC.PDF").write_text("dummy")

        paths = list(iter_input_files([tmp_path], suffixes=SUFFIXES))

        assert [p.name for p in paths] == ["DOC.PDF"]

    def test_nonexistent_file(self, tmp_path: Path) -> None:
        """Should skip nonexistent files."""
        assert list(iter_input_files([tmp_path / "missing.pdf"], suffixes=SUFFIXES)) == []


class TestBlobNames:
    """Test sanitize_filename and generate_blob_path."""

    def test_sanitize_replaces_unsafe_characters(self) -> None:
        assert sanitize_filename("my report (v2).pdf") == "my_report__v2_.pdf"
        assert sanitize_filename("../etc/passwd") == ".._etc_passwd"

    def test_blob_path_is_date_partitioned(self) -> None:
        now = datetime(2024, 3, 7, tzinfo=timezone.utc)

        path = generate_blob_path("file.txt", now=now)

        assert re.fullmatch(r"2024/03/07/[0-9a-f-]{36}_file\.txt", path)

    def test_blob_paths_are_unique(self) -> None:
        assert generate_blob_path("a.txt") != generate_blob_path("a.txt")


class TestComputeSha256:
    """Test compute_sha256 function."""

    def test_compute_hash_simple(self) -> None:
        expected = "dffd6021bb2bd5b0af676290809ec3a53191dd81c7f70a4b28688a362182986f"
        assert compute_sha256(b"Hello, World!") == expected

    def test_compute_hash_empty(self) -> None:
        expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert compute_sha256(b"") == expected

    def test_different_content_different_hash(self) -> None:
        assert compute_sha256(b"Content 1") != compute_sha256(b"Content 2")
