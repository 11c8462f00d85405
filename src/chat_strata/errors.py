"""Error hierarchy for the import engine.

Fatal errors (ValidationError, ExtractionFailure, WriteFailure) move a job to
FAILED. RecordRejected and AttachmentUnresolved are raised and caught inside the
engine and only ever surface as counters or warning events.
"""


class StrataError(Exception):
    """Base class for all chat-strata errors."""


class ValidationError(StrataError):
    """Import package (or data root) is unreadable or unsupported."""


class ExtractionFailure(StrataError):
    """No usable payload for the provider was found under the extraction root."""


class WriteFailure(StrataError):
    """A filesystem write failed; aborts the run."""


class RecordRejected(StrataError):
    """An incoming record is missing a required key field."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Record is missing required field: {field}")
        self.field = field


class AttachmentUnresolved(StrataError):
    """An attachment points at a local file that does not exist."""

    def __init__(self, attachment_id: str, local_relpath: str) -> None:
        super().__init__(f"Attachment {attachment_id} references missing file {local_relpath}")
        self.attachment_id = attachment_id
        self.local_relpath = local_relpath


class JobStateError(StrataError):
    """Illegal job lifecycle transition."""


class ImportBusyError(StrataError):
    """Another import currently holds the data root lock."""
