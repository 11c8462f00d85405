"""Data root layout.

All paths produced by the importer are resolved from a single data root::

    schema-version.json
    catalog.json
    raw/<provider>/<yyyy>/<mm>/<job_id>/extracted/
    provider/<provider>/{conversations,messages,attachments}.ndjson
    canonical/{conversations,messages,attachments}.ndjson
    blobs/sha256/<aa>/<bb>/<hash><ext>
    indexes/by-provider/<provider>/messages.ndjson
    indexes/by-date/<yyyy>/<mm>/<dd>/messages.ndjson
    jobs/<job_id>.json
    errors/<job_id>.ndjson
"""

from dataclasses import dataclass
from pathlib import Path

from chat_strata.errors import ValidationError
from chat_strata.logging import get_logger
from chat_strata.storage.ndjson import read_json, write_json
from chat_strata.timestamps import now_iso

logger = get_logger("layout")

SCHEMA_NAME = "chat-strata-filesystem"
SCHEMA_VERSION = "1.0.0"

ENTITY_FILES = {
    "conversations": "conversations.ndjson",
    "messages": "messages.ndjson",
    "attachments": "attachments.ndjson",
}


@dataclass(frozen=True)
class DataLayout:
    """Resolved paths of every area under a data root."""

    root: Path

    @property
    def raw_root(self) -> Path:
        return self.root / "raw"

    @property
    def provider_root(self) -> Path:
        return self.root / "provider"

    @property
    def canonical_root(self) -> Path:
        return self.root / "canonical"

    @property
    def blobs_root(self) -> Path:
        return self.root / "blobs"

    @property
    def indexes_root(self) -> Path:
        return self.root / "indexes"

    @property
    def jobs_root(self) -> Path:
        return self.root / "jobs"

    @property
    def errors_root(self) -> Path:
        return self.root / "errors"

    @property
    def schema_marker(self) -> Path:
        return self.root / "schema-version.json"

    @property
    def catalog_path(self) -> Path:
        return self.root / "catalog.json"

    @property
    def lock_path(self) -> Path:
        return self.root / ".import.lock"

    def canonical_file(self, entity: str) -> Path:
        """Path of a canonical dataset file ("conversations", "messages", "attachments")."""
        return self.canonical_root / ENTITY_FILES[entity]

    def provider_file(self, provider: str, entity: str) -> Path:
        """Path of a provider-scoped dataset file."""
        return self.provider_root / provider / ENTITY_FILES[entity]

    def job_raw_root(self, provider: str, year: str, month: str, job_id: str) -> Path:
        return self.raw_root / provider / year / month / job_id

    def job_file(self, job_id: str) -> Path:
        return self.jobs_root / f"{job_id}.json"

    def error_log(self, job_id: str) -> Path:
        return self.errors_root / f"{job_id}.ndjson"

    def relative(self, path: Path) -> str:
        """Path relative to the data root, with forward slashes."""
        return path.relative_to(self.root).as_posix()

    def areas(self) -> dict[str, Path]:
        return {
            "raw": self.raw_root,
            "provider": self.provider_root,
            "canonical": self.canonical_root,
            "blobs": self.blobs_root,
            "indexes": self.indexes_root,
            "jobs": self.jobs_root,
            "errors": self.errors_root,
        }


def resolve_layout(root: Path | str) -> DataLayout:
    """Resolve a DataLayout for a data root path."""
    return DataLayout(Path(root).expanduser().resolve())


def _major(version: str) -> str:
    return str(version).split(".", 1)[0]


def ensure_layout(layout: DataLayout) -> None:
    """Create every area, the schema marker and the catalog.

    Raises:
        ValidationError: If the data root was written by an incompatible
            schema major version
    """
    marker = read_json(layout.schema_marker)
    existing = str(marker.get("version", "")) if isinstance(marker, dict) else None
    if marker is not None and (
        not isinstance(marker, dict)
        or marker.get("schema") != SCHEMA_NAME
        or _major(existing) != _major(SCHEMA_VERSION)
    ):
        raise ValidationError(
            f"Data root {layout.root} uses an incompatible schema marker {marker!r}, "
            f"expected {SCHEMA_NAME} {SCHEMA_VERSION}"
        )

    layout.root.mkdir(parents=True, exist_ok=True)
    for path in layout.areas().values():
        path.mkdir(parents=True, exist_ok=True)

    if existing != SCHEMA_VERSION:
        write_json(
            layout.schema_marker,
            {"schema": SCHEMA_NAME, "version": SCHEMA_VERSION, "updated_at": now_iso()},
        )
        if existing is None:
            logger.info("Initialized data root: root=%s version=%s", layout.root, SCHEMA_VERSION)
        else:
            logger.info("Updated schema marker: from=%s to=%s", existing, SCHEMA_VERSION)

    if not layout.catalog_path.exists():
        write_catalog(layout)


def write_catalog(layout: DataLayout) -> None:
    """Write catalog.json listing the relative root of every area."""
    write_json(
        layout.catalog_path,
        {
            "schema": SCHEMA_NAME,
            "version": SCHEMA_VERSION,
            "updated_at": now_iso(),
            "roots": {name: layout.relative(path) for name, path in layout.areas().items()},
        },
    )
