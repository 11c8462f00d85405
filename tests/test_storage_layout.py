"""Tests for the data root layout."""

import json
from pathlib import Path

import pytest

from chat_strata.errors import ValidationError
from chat_strata.storage.layout import (
    SCHEMA_NAME,
    SCHEMA_VERSION,
    DataLayout,
    ensure_layout,
    resolve_layout,
    write_catalog,
)


@pytest.fixture
def layout(tmp_path: Path) -> DataLayout:
    return resolve_layout(tmp_path / "data")


class TestDataLayout:
    """Tests for DataLayout paths."""

    def test_entity_files(self, layout: DataLayout) -> None:
        assert layout.canonical_file("messages") == layout.root / "canonical" / "messages.ndjson"
        assert layout.provider_file("claude", "attachments") == (
            layout.root / "provider" / "claude" / "attachments.ndjson"
        )

    def test_job_paths(self, layout: DataLayout) -> None:
        assert layout.job_file("job_1") == layout.root / "jobs" / "job_1.json"
        assert layout.error_log("job_1") == layout.root / "errors" / "job_1.ndjson"
        assert layout.job_raw_root("chatgpt", "2026", "02", "job_1") == (
            layout.root / "raw" / "chatgpt" / "2026" / "02" / "job_1"
        )

    def test_relative(self, layout: DataLayout) -> None:
        assert layout.relative(layout.root / "raw" / "x" / "y.json") == "raw/x/y.json"

    def test_resolve_expands_user(self) -> None:
        assert resolve_layout("~/somewhere").root == Path.home().resolve() / "somewhere"


class TestEnsureLayout:
    """Tests for ensure_layout function."""

    def test_creates_areas_and_marker(self, layout: DataLayout) -> None:
        ensure_layout(layout)
        for path in layout.areas().values():
            assert path.is_dir()
        marker = json.loads(layout.schema_marker.read_text())
        assert marker["schema"] == SCHEMA_NAME
        assert marker["version"] == SCHEMA_VERSION
        assert layout.catalog_path.exists()

    def test_idempotent(self, layout: DataLayout) -> None:
        ensure_layout(layout)
        ensure_layout(layout)
        assert layout.schema_marker.exists()

    def test_rejects_other_major_version(self, layout: DataLayout) -> None:
        layout.root.mkdir(parents=True)
        layout.schema_marker.write_text(json.dumps({"schema": SCHEMA_NAME, "version": "2.0.0"}))
        with pytest.raises(ValidationError):
            ensure_layout(layout)

    def test_rejects_other_schema(self, layout: DataLayout) -> None:
        layout.root.mkdir(parents=True)
        layout.schema_marker.write_text(json.dumps({"schema": "something-else", "version": SCHEMA_VERSION}))
        with pytest.raises(ValidationError):
            ensure_layout(layout)

    def test_accepts_same_major_version(self, layout: DataLayout) -> None:
        """A minor version difference should be accepted and the marker updated."""
        layout.root.mkdir(parents=True)
        layout.schema_marker.write_text(json.dumps({"schema": SCHEMA_NAME, "version": "1.0.0-alpha"}))
        ensure_layout(layout)
        assert json.loads(layout.schema_marker.read_text())["version"] == SCHEMA_VERSION


class TestWriteCatalog:
    """Tests for write_catalog function."""

    def test_lists_relative_roots(self, layout: DataLayout) -> None:
        ensure_layout(layout)
        write_catalog(layout)
        catalog = json.loads(layout.catalog_path.read_text())
        assert catalog["roots"]["canonical"] == "canonical"
        assert catalog["roots"]["blobs"] == "blobs"
        assert set(catalog["roots"]) == set(layout.areas())
