"""Dedupe/upsert engine.

Merges the rows of one import run into an existing dataset keyed by
canonical id. Rows are plain NDJSON dicts. Each entity kind is upserted
independently with its own merge rules; provenance is restamped on every
row the run touches.
"""

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from chat_strata.errors import RecordRejected
from chat_strata.logging import get_logger
from chat_strata.models import PROVENANCE_FIELDS, STATUS_EMBEDDED, STORAGE_BLOB
from chat_strata.timestamps import is_newer

logger = get_logger("dedupe")

Row = dict[str, Any]
MergeFn = Callable[[Row, Row], Row]


@dataclass
class UpsertStats:
    """Per-entity merge counters."""

    new: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class UpsertResult:
    rows: list[Row] = field(default_factory=list)
    stats: UpsertStats = field(default_factory=UpsertStats)


def with_provenance(row: Row, job_id: str) -> Row:
    """Return a copy of row stamped as seen by job_id.

    first_seen_job_id is kept when present; seen_in_jobs only grows.
    """
    seen = list(row.get("seen_in_jobs") or [])
    if job_id not in seen:
        seen.append(job_id)
    stamped = dict(row)
    stamped["first_seen_job_id"] = row.get("first_seen_job_id") or job_id
    stamped["last_seen_job_id"] = job_id
    stamped["seen_in_jobs"] = seen
    return stamped


def stable_signature(row: Row) -> str:
    """Serialize a row without provenance, for change detection."""
    clone = {k: v for k, v in row.items() if k not in PROVENANCE_FIELDS}
    return json.dumps(clone, sort_keys=True, ensure_ascii=False)


def merge_text(prev: str | None, next_: str | None) -> str | None:
    """Keep the non-empty value; between two, the longer (ties to incoming)."""
    if not next_:
        return prev
    if not prev:
        return next_
    return next_ if len(next_) >= len(prev) else prev


def merge_optional(prev: Any, next_: Any) -> Any:
    """Incoming replaces previous only when it is non-empty."""
    if next_ is None:
        return prev
    if isinstance(next_, str) and not next_.strip():
        return prev
    return next_


def merge_defined(prev: Any, next_: Any) -> Any:
    """Incoming replaces previous whenever it is defined."""
    return prev if next_ is None else next_


def merge_union(prev: list[str] | None, next_: list[str] | None) -> list[str]:
    """Ordered union of two id lists."""
    combined: list[str] = []
    for item in (prev or []) + (next_ or []):
        if item not in combined:
            combined.append(item)
    return combined


def earliest(prev: str | None, next_: str | None) -> str | None:
    """First observation wins for created_at."""
    if is_newer(prev, next_):
        return next_ or prev
    return prev or next_


def latest(prev: str | None, next_: str | None) -> str | None:
    """Most recent observation wins for updated_at."""
    if is_newer(next_, prev):
        return next_
    return prev or next_


def _set(row: Row, key: str, value: Any) -> None:
    if value is None:
        row.pop(key, None)
    else:
        row[key] = value


def _merge_source(prev: Row, next_: Row) -> Row:
    merged = dict(prev)
    merged["source_job_id"] = next_.get("source_job_id") or prev.get("source_job_id")
    _set(merged, "source_path", next_.get("source_path") or prev.get("source_path"))
    return merged


def merge_conversation(prev: Row, next_: Row) -> Row:
    merged = _merge_source(prev, next_)
    _set(merged, "title", merge_text(prev.get("title"), next_.get("title")))
    _set(merged, "created_at", earliest(prev.get("created_at"), next_.get("created_at")))
    _set(merged, "updated_at", latest(prev.get("updated_at"), next_.get("updated_at")))
    return merged


def merge_message(prev: Row, next_: Row) -> Row:
    merged = _merge_source(prev, next_)
    _set(merged, "provider_message_id", merge_optional(prev.get("provider_message_id"), next_.get("provider_message_id")))
    _set(merged, "model", merge_optional(prev.get("model"), next_.get("model")))
    merged["role"] = next_.get("role") or prev.get("role") or "unknown"
    merged["text"] = merge_text(prev.get("text"), next_.get("text")) or ""
    _set(merged, "created_at", earliest(prev.get("created_at"), next_.get("created_at")))
    attachment_ids = merge_union(prev.get("attachment_ids"), next_.get("attachment_ids"))
    _set(merged, "attachment_ids", attachment_ids or prev.get("attachment_ids"))
    return merged


def _is_materialized(row: Row) -> bool:
    return (
        row.get("storage") == STORAGE_BLOB
        and row.get("status") == STATUS_EMBEDDED
        and bool(row.get("blob_sha256"))
    )


def merge_attachment(prev: Row, next_: Row) -> Row:
    merged = _merge_source(prev, next_)
    for key in ("provider_attachment_id", "kind", "mime_type", "blob_sha256", "local_relpath"):
        _set(merged, key, merge_optional(prev.get(key), next_.get(key)))
    for key in ("size_bytes", "url"):
        _set(merged, key, merge_defined(prev.get(key), next_.get(key)))

    if _is_materialized(prev) and not _is_materialized(next_):
        # A stored blob never regresses to missing/linked
        merged["storage"] = prev["storage"]
        merged["status"] = prev["status"]
    else:
        merged["storage"] = merge_defined(prev.get("storage"), next_.get("storage"))
        merged["status"] = merge_defined(prev.get("status"), next_.get("status"))
    return merged


def _require(row: Row, keys: tuple[str, ...]) -> None:
    for key in keys:
        if not row.get(key):
            raise RecordRejected(key)


def upsert_rows(
    existing: list[Row],
    incoming: list[Row],
    job_id: str,
    merge: MergeFn,
    required: tuple[str, ...],
    entity: str = "rows",
) -> UpsertResult:
    """Upsert incoming rows into existing rows.

    Args:
        existing: Rows currently stored
        incoming: Rows produced by this run
        job_id: Current job id, stamped into provenance
        merge: Entity-specific merge function (prev, next) -> merged
        required: Key fields an incoming row must carry
        entity: Entity name for logging

    Returns:
        UpsertResult with the full row set (existing order, new rows
        appended) and the merge counters
    """
    stats = UpsertStats()
    index: dict[str, Row] = {row["id"]: row for row in existing if row.get("id")}

    for raw in incoming:
        try:
            _require(raw, required)
        except RecordRejected as exc:
            stats.failed += 1
            logger.debug("Rejected %s row: %s", entity, exc)
            continue

        next_row = with_provenance(raw, job_id)
        prev = index.get(next_row["id"])
        if prev is None:
            index[next_row["id"]] = next_row
            stats.new += 1
            continue

        merged = with_provenance(merge(prev, next_row), job_id)
        if stable_signature(prev) == stable_signature(merged):
            stats.unchanged += 1
        else:
            stats.updated += 1
        index[next_row["id"]] = merged

    if stats.failed:
        logger.warning("Rejected %s rows missing key fields: count=%d", entity, stats.failed)

    return UpsertResult(rows=list(index.values()), stats=stats)


def upsert_conversations(existing: list[Row], incoming: list[Row], job_id: str) -> UpsertResult:
    return upsert_rows(existing, incoming, job_id, merge_conversation, ("id",), "conversation")


def upsert_messages(existing: list[Row], incoming: list[Row], job_id: str) -> UpsertResult:
    return upsert_rows(existing, incoming, job_id, merge_message, ("id", "conversation_id"), "message")


def upsert_attachments(existing: list[Row], incoming: list[Row], job_id: str) -> UpsertResult:
    return upsert_rows(existing, incoming, job_id, merge_attachment, ("id", "message_id"), "attachment")
