"""Canonical data models."""

from dataclasses import dataclass, field, fields
from typing import Any, Self

PROVIDERS = ("chatgpt", "claude", "gemini", "cursor")

ROLES = ("user", "assistant", "system", "unknown")

# Attachment storage modes
STORAGE_BLOB = "blob"
STORAGE_URL = "url"
STORAGE_MISSING = "missing"

# Attachment statuses
STATUS_EMBEDDED = "embedded"
STATUS_LINKED = "linked"
STATUS_MISSING = "missing"

PROVENANCE_FIELDS = (
    "source_job_id",
    "source_path",
    "first_seen_job_id",
    "last_seen_job_id",
    "seen_in_jobs",
)


@dataclass(kw_only=True)
class Record:
    """Provenance shared by every canonical entity."""

    source_job_id: str = ""
    source_path: str | None = None  # Payload file, relative to the data root
    first_seen_job_id: str | None = None
    last_seen_job_id: str | None = None
    seen_in_jobs: list[str] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        """Convert to an NDJSON row.

        Entity fields come first, provenance last. None values are omitted.
        """
        names = [f.name for f in fields(self)]
        ordered = [n for n in names if n not in PROVENANCE_FIELDS] + list(PROVENANCE_FIELDS)
        row: dict[str, Any] = {}
        for name in ordered:
            value = getattr(self, name)
            if value is None:
                continue
            row[name] = list(value) if isinstance(value, list) else value
        return row

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> Self:
        """Build an instance from an NDJSON row, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in known})


@dataclass
class Conversation(Record):
    """One conversation thread from a provider export."""

    id: str
    provider: str
    provider_conversation_id: str
    title: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Message(Record):
    """A normalized message from any provider export."""

    id: str
    conversation_id: str
    provider: str
    role: str  # user, assistant, system, unknown
    text: str
    provider_message_id: str | None = None
    model: str | None = None
    created_at: str | None = None
    attachment_ids: list[str] = field(default_factory=list)


@dataclass
class Attachment(Record):
    """A reference to binary or external content owned by a message."""

    id: str
    provider: str
    message_id: str
    storage: str = STORAGE_MISSING  # blob, url, missing
    status: str = STATUS_MISSING  # embedded, linked, missing
    provider_attachment_id: str | None = None
    kind: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    blob_sha256: str | None = None
    url: str | None = None
    local_relpath: str | None = None  # Relative to the extraction root

    def classify(self) -> None:
        """Set provisional storage/status from the references present."""
        if self.local_relpath:
            self.storage, self.status = STORAGE_BLOB, STATUS_EMBEDDED
        elif self.url:
            self.storage, self.status = STORAGE_URL, STATUS_LINKED
        else:
            self.storage, self.status = STORAGE_MISSING, STATUS_MISSING


@dataclass
class ExtractionResult:
    """Provisional canonical records produced by one extractor run."""

    provider: str
    conversations: list[Conversation] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
