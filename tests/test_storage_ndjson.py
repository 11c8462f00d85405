"""Tests for NDJSON and JSON file helpers."""

import json
from pathlib import Path

import pytest

from chat_strata.errors import WriteFailure
from chat_strata.storage.ndjson import (
    append_ndjson_line,
    atomic_write_text,
    dumps_line,
    read_json,
    read_ndjson,
    write_json,
    write_ndjson,
)


class TestDumpsLine:
    """Tests for dumps_line function."""

    def test_compact(self) -> None:
        assert dumps_line({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'

    def test_keeps_unicode(self) -> None:
        assert dumps_line({"text": "héllo"}) == '{"text":"héllo"}'


class TestWriteNdjson:
    """Tests for write_ndjson function."""

    def test_one_object_per_line_with_trailing_newline(self, tmp_path: Path) -> None:
        path = tmp_path / "out" / "rows.ndjson"
        count = write_ndjson(path, [{"id": "a"}, {"id": "b"}])
        assert count == 2
        assert path.read_text(encoding="utf-8") == '{"id":"a"}\n{"id":"b"}\n'

    def test_empty_rows_give_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.ndjson"
        assert write_ndjson(path, []) == 0
        assert path.exists()
        assert path.read_bytes() == b""

    def test_replaces_existing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rows.ndjson"
        write_ndjson(path, [{"id": "old"}])
        write_ndjson(path, [{"id": "new"}])
        assert read_ndjson(path) == [{"id": "new"}]

    def test_leaves_no_temp_files(self, tmp_path: Path) -> None:
        write_ndjson(tmp_path / "rows.ndjson", [{"id": "a"}])
        assert [p.name for p in tmp_path.iterdir()] == ["rows.ndjson"]


class TestReadNdjson:
    """Tests for read_ndjson function."""

    def test_missing_file(self, tmp_path: Path) -> None:
        assert read_ndjson(tmp_path / "missing.ndjson") == []

    def test_skips_blank_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "rows.ndjson"
        path.write_text('{"id":"a"}\n\n{"id":"b"}\n', encoding="utf-8")
        assert read_ndjson(path) == [{"id": "a"}, {"id": "b"}]


class TestAppendNdjsonLine:
    """Tests for append_ndjson_line function."""

    def test_appends(self, tmp_path: Path) -> None:
        path = tmp_path / "errors" / "job.ndjson"
        append_ndjson_line(path, {"n": 1})
        append_ndjson_line(path, {"n": 2})
        assert read_ndjson(path) == [{"n": 1}, {"n": 2}]


class TestJsonDocuments:
    """Tests for read_json/write_json."""

    def test_pretty_printed(self, tmp_path: Path) -> None:
        path = tmp_path / "job.json"
        write_json(path, {"job_id": "j", "status": "NORMALIZED"})
        text = path.read_text(encoding="utf-8")
        assert text.endswith("\n")
        assert '\n  "job_id": "j"' in text
        assert json.loads(text) == {"job_id": "j", "status": "NORMALIZED"}

    def test_read_default(self, tmp_path: Path) -> None:
        assert read_json(tmp_path / "missing.json", default={}) == {}


class TestAtomicWrite:
    """Tests for atomic write failures."""

    def test_unwritable_target_raises_write_failure(self, tmp_path: Path) -> None:
        """A file in place of the parent directory should surface as WriteFailure."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(WriteFailure):
            atomic_write_text(blocker / "child.txt", "data")
