"""Import job records and their persistence."""

import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Self

from chat_strata.errors import JobStateError
from chat_strata.logging import get_logger
from chat_strata.storage.layout import DataLayout
from chat_strata.storage.lock import is_locked
from chat_strata.storage.ndjson import read_json, write_json
from chat_strata.timestamps import now_iso

logger = get_logger("jobs")


class JobStatus(str, Enum):
    """Job lifecycle states, in the only order a job may move through them."""

    PACKAGE_SELECTED = "PACKAGE_SELECTED"
    PACKAGE_VALIDATED = "PACKAGE_VALIDATED"
    EXTRACTED_TO_RAW = "EXTRACTED_TO_RAW"
    PARSED_PROVIDER_RECORDS = "PARSED_PROVIDER_RECORDS"
    MAPPED_CANONICAL_RECORDS = "MAPPED_CANONICAL_RECORDS"
    DEDUPED_UPSERTED = "DEDUPED_UPSERTED"
    NORMALIZED = "NORMALIZED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.NORMALIZED, JobStatus.FAILED)


PIPELINE = [status for status in JobStatus if status is not JobStatus.FAILED]


def new_job_id(now: datetime | None = None) -> str:
    """Time-derived unique job id: job_<yyyymmddHHMMSS>_<6 hex chars>."""
    now = now or datetime.now(timezone.utc)
    return f"job_{now.strftime('%Y%m%d%H%M%S')}_{secrets.token_hex(3)}"


@dataclass
class JobRecord:
    """Persistent record of one import run.

    Created at PACKAGE_SELECTED and moved forward only through advance() and
    fail(). Once NORMALIZED or FAILED the record no longer changes.
    raw_root_path is the job's extraction directory relative to the data
    root (raw/<provider>/<yyyy>/<mm>/<job_id>/extracted); a retained
    package sits next to it in the parent directory.
    """

    job_id: str
    provider: str
    status: JobStatus = JobStatus.PACKAGE_SELECTED
    started_at: str = field(default_factory=now_iso)
    ended_at: str | None = None
    raw_root_path: str | None = None
    download_artifact_retained: bool = False
    summary: dict[str, dict[str, int]] = field(default_factory=dict)
    canonical_records: dict[str, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    transitions: list[dict[str, str]] = field(default_factory=list)
    failed_stage: str | None = None

    def __post_init__(self) -> None:
        self.status = JobStatus(self.status)
        if not self.transitions:
            self.transitions.append({"status": self.status.value, "at": self.started_at})

    @classmethod
    def create(cls, provider: str) -> Self:
        return cls(job_id=new_job_id(), provider=provider)

    def advance(self, status: JobStatus) -> None:
        """Move to the next pipeline state.

        Raises:
            JobStateError: If status is not the immediate successor of the
                current state
        """
        if self.status.is_terminal:
            raise JobStateError(f"Job {self.job_id} is already {self.status.value}")
        expected = PIPELINE[PIPELINE.index(self.status) + 1]
        if JobStatus(status) is not expected:
            raise JobStateError(
                f"Job {self.job_id} cannot move from {self.status.value} to {JobStatus(status).value}"
            )
        self._transition(expected)

    def fail(self, message: str) -> None:
        """Move to FAILED, recording the error and the last reached stage."""
        if self.status.is_terminal:
            raise JobStateError(f"Job {self.job_id} is already {self.status.value}")
        self.failed_stage = self.status.value
        self.errors.append(message)
        self._transition(JobStatus.FAILED)

    def _transition(self, status: JobStatus) -> None:
        at = now_iso()
        self.status = status
        self.transitions.append({"status": status.value, "at": at})
        if status.is_terminal:
            self.ended_at = at

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        known = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in known})


class JobStore:
    """Job records stored as jobs/<job_id>.json under a data root."""

    def __init__(self, layout: DataLayout) -> None:
        self._layout = layout

    def save(self, record: JobRecord) -> None:
        """Atomically persist a job record."""
        write_json(self._layout.job_file(record.job_id), record.to_dict())

    def load(self, job_id: str) -> JobRecord | None:
        """Load a job record by id.

        Returns:
            JobRecord if found, None otherwise
        """
        data = read_json(self._layout.job_file(job_id))
        if data is None:
            return None
        return JobRecord.from_dict(data)

    def list_jobs(self, limit: int | None = None) -> list[JobRecord]:
        """List job records, newest first."""
        if not self._layout.jobs_root.exists():
            return []
        records = []
        for path in self._layout.jobs_root.glob("*.json"):
            data = read_json(path)
            if isinstance(data, dict):
                records.append(JobRecord.from_dict(data))
        records.sort(key=lambda r: (r.started_at, r.job_id), reverse=True)
        return records[:limit] if limit is not None else records

    def find_abandoned(self) -> list[JobRecord]:
        """Non-terminal jobs left behind by an importer that is no longer running.

        Abandoned jobs are only reported, never cancelled.
        """
        if is_locked(self._layout.lock_path):
            return []
        abandoned = [record for record in self.list_jobs() if not record.status.is_terminal]
        for record in abandoned:
            logger.warning("Abandoned job: job_id=%s status=%s", record.job_id, record.status.value)
        return abandoned
