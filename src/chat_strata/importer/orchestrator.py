"""Import orchestrator.

Drives one import through the job lifecycle:

    PACKAGE_SELECTED -> PACKAGE_VALIDATED -> EXTRACTED_TO_RAW
    -> PARSED_PROVIDER_RECORDS -> MAPPED_CANONICAL_RECORDS
    -> DEDUPED_UPSERTED -> NORMALIZED

with FAILED reachable from every non-terminal state. The job record is
written after every transition. The whole run holds the data root lock.
"""

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from chat_strata.errors import ValidationError
from chat_strata.importer.dedupe import (
    UpsertResult,
    upsert_attachments,
    upsert_conversations,
    upsert_messages,
)
from chat_strata.importer.extractors import Extractor, ExtractorRegistry
from chat_strata.importer.indexes import rebuild_message_indexes
from chat_strata.importer.jobs import JobRecord, JobStatus, JobStore
from chat_strata.importer.materializer import materialize_attachments
from chat_strata.importer.packages import extract_package, remove_package, retain_package, validate_package
from chat_strata.logging import get_logger
from chat_strata.models import ExtractionResult
from chat_strata.storage.layout import DataLayout, ensure_layout, resolve_layout, write_catalog
from chat_strata.storage.lock import DataRootLock
from chat_strata.storage.ndjson import append_ndjson_line, read_ndjson, write_ndjson
from chat_strata.timestamps import now_iso, parse_iso

logger = get_logger("orchestrator")

ENTITY_UPSERTS = {
    "conversations": upsert_conversations,
    "messages": upsert_messages,
    "attachments": upsert_attachments,
}


@dataclass
class ImportRequest:
    """One import requested by a caller."""

    provider: str
    package_path: Path
    data_root: Path
    retain_package: bool = False
    # The caller hands the package over; it is deleted after a successful
    # run unless retain_package is set
    consume_package: bool = False
    lock_timeout_seconds: float = 0.0
    hash_workers: int = 4


def get_extractor(provider: str) -> Extractor:
    """Look up the extractor for a provider.

    Raises:
        ValidationError: If no extractor is registered for provider
    """
    extractor = ExtractorRegistry.get(provider)
    if extractor is None:
        raise ValidationError(
            f"Unknown provider {provider!r}: expected one of {', '.join(ExtractorRegistry.all_providers())}"
        )
    return extractor


def upsert_dataset(
    files: dict[str, Path],
    records: dict[str, list[dict[str, Any]]],
    job_id: str,
) -> dict[str, UpsertResult]:
    """Upsert one run's rows into a dataset (canonical or provider-scoped).

    Args:
        files: NDJSON path per entity
        records: Incoming rows per entity
        job_id: Current job id

    Returns:
        UpsertResult per entity
    """
    results = {}
    for entity, upsert in ENTITY_UPSERTS.items():
        existing = read_ndjson(files[entity])
        result = upsert(existing, records.get(entity, []), job_id)
        write_ndjson(files[entity], result.rows)
        results[entity] = result
    return results


class ImportRun:
    """State of one import while it moves through the lifecycle."""

    def __init__(self, request: ImportRequest, layout: DataLayout, extractor: Extractor) -> None:
        self.request = request
        self.layout = layout
        self.extractor = extractor
        self.store = JobStore(layout)
        self.job = JobRecord.create(request.provider)

        self.package: Path = request.package_path
        self.job_raw_root: Path | None = None
        self.extracted_root: Path | None = None
        self.extraction: ExtractionResult | None = None
        self.records: dict[str, list[dict[str, Any]]] = {}

    def run(self) -> JobRecord:
        """Run every stage, converting the first fatal error into FAILED."""
        self.store.save(self.job)
        logger.info(
            "Import started: job_id=%s provider=%s package=%s",
            self.job.job_id,
            self.job.provider,
            self.package,
        )

        stages = (
            (JobStatus.PACKAGE_VALIDATED, self.validate),
            (JobStatus.EXTRACTED_TO_RAW, self.extract),
            (JobStatus.PARSED_PROVIDER_RECORDS, self.parse),
            (JobStatus.MAPPED_CANONICAL_RECORDS, self.map_records),
            (JobStatus.DEDUPED_UPSERTED, self.upsert),
            (JobStatus.NORMALIZED, self.finalize),
        )
        try:
            for status, stage in stages:
                stage()
                self.advance(status)
        except Exception as exc:
            logger.exception(
                "Import failed: job_id=%s stage=%s", self.job.job_id, self.job.status.value
            )
            self.fail(str(exc) or exc.__class__.__name__)
            return self.job

        self.release_package()
        logger.info(
            "Import complete: job_id=%s conversations=%s messages=%s attachments=%s",
            self.job.job_id,
            self.job.summary.get("conversations"),
            self.job.summary.get("messages"),
            self.job.summary.get("attachments"),
        )
        return self.job

    def advance(self, status: JobStatus) -> None:
        # The in-memory record only moves once the new state is on disk.
        candidate = copy.deepcopy(self.job)
        candidate.advance(status)
        self.store.save(candidate)
        self.job = candidate
        logger.info("Job transition: job_id=%s status=%s", self.job.job_id, status.value)

    def fail(self, message: str) -> None:
        stage = self.job.status.value
        if not self.job.status.is_terminal:
            self.job.fail(message)
        self.store.save(self.job)
        append_ndjson_line(
            self.layout.error_log(self.job.job_id),
            {"at": now_iso(), "level": "error", "stage": stage, "message": message},
        )

    def validate(self) -> None:
        self.package = validate_package(self.request.package_path)

    def extract(self) -> None:
        started = parse_iso(self.job.started_at)
        year, month = started.strftime("%Y"), started.strftime("%m")
        self.job_raw_root = self.layout.job_raw_root(self.job.provider, year, month, self.job.job_id)
        self.extracted_root = self.job_raw_root / "extracted"
        self.job.raw_root_path = self.layout.relative(self.extracted_root)

        extract_package(self.package, self.extracted_root)
        if self.request.retain_package:
            retain_package(self.package, self.job_raw_root)
            self.job.download_artifact_retained = True

    def parse(self) -> None:
        self.extraction = self.extractor.extract(
            self.extracted_root,
            self.job.job_id,
            source_prefix=self.layout.relative(self.extracted_root),
        )
        self.job.warnings.extend(self.extraction.warnings)
        for warning in self.extraction.warnings:
            logger.warning("Extraction warning: job_id=%s warning=%s", self.job.job_id, warning)

    def map_records(self) -> None:
        events = materialize_attachments(
            self.extraction.attachments,
            self.extracted_root,
            self.layout.blobs_root,
            max_workers=self.request.hash_workers,
        )
        for event in events:
            self.job.warnings.append(event["message"])
            append_ndjson_line(self.layout.error_log(self.job.job_id), event)

        self.records = {
            "conversations": [c.to_record() for c in self.extraction.conversations],
            "messages": [m.to_record() for m in self.extraction.messages],
            "attachments": [a.to_record() for a in self.extraction.attachments],
        }

    def upsert(self) -> None:
        job_id = self.job.job_id
        canonical = upsert_dataset(
            {entity: self.layout.canonical_file(entity) for entity in ENTITY_UPSERTS},
            self.records,
            job_id,
        )
        self.job.summary = {entity: result.stats.as_dict() for entity, result in canonical.items()}
        self.job.canonical_records = {entity: len(result.rows) for entity, result in canonical.items()}

        for entity, result in canonical.items():
            if result.stats.failed:
                self.job.warnings.append(f"Rejected {result.stats.failed} {entity} missing key fields.")

        provider = upsert_dataset(
            {entity: self.layout.provider_file(self.job.provider, entity) for entity in ENTITY_UPSERTS},
            self.records,
            job_id,
        )
        for entity, result in provider.items():
            logger.info(
                "Provider dataset upserted: job_id=%s provider=%s entity=%s stats=%s",
                job_id,
                self.job.provider,
                entity,
                result.stats.as_dict(),
            )

    def finalize(self) -> None:
        rebuild_message_indexes(self.layout, read_ndjson(self.layout.canonical_file("messages")))
        write_catalog(self.layout)

    def release_package(self) -> None:
        """Delete the package when ownership was handed over and it was not retained."""
        if not self.request.consume_package or self.request.retain_package:
            return
        try:
            remove_package(self.package)
        except OSError:
            logger.warning("Could not remove consumed package: package=%s", self.package, exc_info=True)


def run_import(request: ImportRequest) -> JobRecord:
    """Import one provider export package into a data root.

    Args:
        request: Provider, package and options for this import

    Returns:
        The final job record (NORMALIZED or FAILED)

    Raises:
        ValidationError: If the provider is unknown or the data root was
            written by an incompatible schema version
        ImportBusyError: If another import holds the data root lock past
            the timeout; no job is created
    """
    extractor = get_extractor(request.provider)
    layout = resolve_layout(request.data_root)
    ensure_layout(layout)

    with DataRootLock(layout.lock_path, timeout=request.lock_timeout_seconds):
        return ImportRun(request, layout, extractor).run()


def rebuild_indexes(data_root: Path, lock_timeout_seconds: float = 0.0) -> dict[str, int]:
    """Rebuild indexes from the canonical messages of a data root."""
    layout = resolve_layout(data_root)
    ensure_layout(layout)
    with DataRootLock(layout.lock_path, timeout=lock_timeout_seconds):
        stats = rebuild_message_indexes(layout, read_ndjson(layout.canonical_file("messages")))
        write_catalog(layout)
    return stats
