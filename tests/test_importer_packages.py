"""Tests for package validation, extraction and retention."""

import zipfile
from pathlib import Path

import pytest

from chat_strata.errors import ValidationError
from chat_strata.importer.packages import (
    extract_package,
    remove_package,
    retain_package,
    safe_extractall,
    sanitize_filename,
    validate_package,
)


def make_zip(path: Path, members: dict[str, bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in members.items():
            archive.writestr(name, data)
    return path


class TestSanitizeFilename:
    """Tests for sanitize_filename function."""

    def test_replaces_unsafe_characters(self) -> None:
        assert sanitize_filename("my export (1).json") == "my_export__1_.json"

    def test_strips_leading_dots(self) -> None:
        assert sanitize_filename("..hidden.md") == "hidden.md"

    def test_empty_fallback(self) -> None:
        assert sanitize_filename("...") == "payload"


class TestValidatePackage:
    """Tests for validate_package function."""

    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError, match="does not exist"):
            validate_package(tmp_path / "nope.zip")

    def test_unsupported_suffix(self, tmp_path: Path) -> None:
        path = tmp_path / "export.tar.gz"
        path.write_bytes(b"x")
        with pytest.raises(ValidationError, match="Unsupported package type"):
            validate_package(path)

    def test_invalid_zip(self, tmp_path: Path) -> None:
        path = tmp_path / "export.zip"
        path.write_bytes(b"not a zip")
        with pytest.raises(ValidationError, match="not a valid zip"):
            validate_package(path)

    def test_accepts_zip_file_and_directory(self, tmp_path: Path) -> None:
        archive = make_zip(tmp_path / "export.zip", {"conversations.json": b"[]"})
        payload = tmp_path / "chat.md"
        payload.write_text("## User\nhi")
        assert validate_package(archive) == archive.resolve()
        assert validate_package(payload) == payload.resolve()
        assert validate_package(tmp_path) == tmp_path.resolve()

    def test_accepts_json_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "history.jsonl"
        path.write_text('{"role": "user", "text": "hi"}\n')
        assert validate_package(path) == path.resolve()
        assert extract_package(path, tmp_path / "out") == 1
        assert (tmp_path / "out" / "history.jsonl").exists()


class TestExtractPackage:
    """Tests for extract_package and safe_extractall."""

    def test_zip(self, tmp_path: Path) -> None:
        archive = make_zip(tmp_path / "export.zip", {"conversations.json": b"[]", "files/a.png": b"png"})
        dest = tmp_path / "out"
        assert extract_package(archive, dest) == 2
        assert (dest / "conversations.json").read_bytes() == b"[]"
        assert (dest / "files" / "a.png").read_bytes() == b"png"

    def test_single_file_sanitized(self, tmp_path: Path) -> None:
        payload = tmp_path / "my chat.md"
        payload.write_text("## User\nhi")
        dest = tmp_path / "out"
        assert extract_package(payload, dest) == 1
        assert (dest / "my_chat.md").read_text() == "## User\nhi"

    def test_directory(self, tmp_path: Path) -> None:
        source = tmp_path / "export"
        (source / "nested").mkdir(parents=True)
        (source / "a.json").write_text("[]")
        (source / "nested" / "b.json").write_text("[]")
        dest = tmp_path / "out"
        assert extract_package(source, dest) == 2
        assert (dest / "nested" / "b.json").exists()

    def test_blocks_path_traversal(self, tmp_path: Path) -> None:
        """An archive member escaping the target is rejected before anything is written."""
        archive = make_zip(tmp_path / "evil.zip", {"ok.json": b"[]", "../escaped.json": b"[]"})
        dest = tmp_path / "out"
        with pytest.raises(ValidationError, match="unsafe archive entry"):
            extract_package(archive, dest)
        assert not (tmp_path / "escaped.json").exists()
        assert not (dest / "ok.json").exists()

    def test_safe_extractall_counts_files_only(self, tmp_path: Path) -> None:
        path = make_zip(tmp_path / "x.zip", {"dir/": b"", "dir/f.txt": b"x"})
        with zipfile.ZipFile(path) as archive:
            assert safe_extractall(archive, tmp_path / "out") == 1


class TestRetention:
    """Tests for retain_package and remove_package."""

    def test_retain_file(self, tmp_path: Path) -> None:
        archive = make_zip(tmp_path / "export.zip", {"a.json": b"[]"})
        raw_root = tmp_path / "raw" / "job_1"
        dest = retain_package(archive, raw_root)
        assert dest == raw_root / "download-artifact.zip"
        assert dest.read_bytes() == archive.read_bytes()

    def test_retain_directory(self, tmp_path: Path) -> None:
        source = tmp_path / "export"
        source.mkdir()
        (source / "a.json").write_text("[]")
        dest = retain_package(source, tmp_path / "raw" / "job_1")
        assert dest.name == "download-artifact"
        assert (dest / "a.json").exists()

    def test_remove(self, tmp_path: Path) -> None:
        path = tmp_path / "a.json"
        path.write_text("[]")
        directory = tmp_path / "dir"
        directory.mkdir()
        (directory / "b.json").write_text("[]")
        remove_package(path)
        remove_package(directory)
        assert not path.exists()
        assert not directory.exists()
