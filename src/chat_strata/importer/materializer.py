"""Attachment materializer.

Resolves attachment payloads found in an extracted export into the
content-addressed blob store::

    blobs/sha256/<aa>/<bb>/<sha256><ext>

Identical bytes always land at the same path, so a blob is written at most
once no matter how many attachments, jobs, or providers reference it.
"""

import hashlib
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath
from typing import Any

from chat_strata.errors import AttachmentUnresolved, WriteFailure
from chat_strata.logging import get_logger
from chat_strata.models import (
    STATUS_EMBEDDED,
    STATUS_LINKED,
    STATUS_MISSING,
    STORAGE_BLOB,
    STORAGE_MISSING,
    STORAGE_URL,
    Attachment,
)
from chat_strata.timestamps import now_iso

logger = get_logger("materializer")

CHUNK_SIZE = 65536

MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "application/pdf": ".pdf",
    "application/json": ".json",
    "text/plain": ".txt",
    "text/markdown": ".md",
}

MISSING_CODE = "ATTACHMENT_PATH_MISSING"


def compute_sha256(path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        path: Path to file to hash

    Returns:
        Hex-encoded SHA-256 hash string
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def blob_extension(local_relpath: str | None, mime_type: str | None) -> str:
    """Extension for a blob: the source file's suffix, else one derived from the mime type."""
    if local_relpath:
        suffix = PurePosixPath(local_relpath).suffix.lower()
        if 1 < len(suffix) <= 10 and suffix[1:].isalnum():
            return suffix
    if mime_type:
        return MIME_EXTENSIONS.get(mime_type.split(";", 1)[0].strip().lower(), "")
    return ""


def blob_path(blobs_root: Path, sha256: str, ext: str = "") -> Path:
    """Content-addressed path for a blob."""
    return blobs_root / "sha256" / sha256[:2] / sha256[2:4] / f"{sha256}{ext}"


def resolve_local(extracted_root: Path, attachment: Attachment) -> Path:
    """Resolve an attachment's local path inside the extraction root.

    Raises:
        AttachmentUnresolved: If the path escapes the root or no file exists
    """
    relpath = attachment.local_relpath or ""
    root = extracted_root.resolve()
    candidate = (root / relpath.lstrip("/\\")).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        raise AttachmentUnresolved(attachment.id, relpath)
    return candidate


def store_blob(source: Path, dest: Path) -> bool:
    """Copy source to dest via temp file + rename, unless dest already exists.

    Returns:
        True if a new blob was written, False if it was already present

    Raises:
        WriteFailure: If the blob cannot be written
    """
    if dest.exists():
        return False
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as out, open(source, "rb") as src:
                shutil.copyfileobj(src, out, CHUNK_SIZE)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp_name, dest)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise WriteFailure(f"Failed to write blob {dest}: {exc}") from exc
    return True


def _missing_event(exc: AttachmentUnresolved) -> dict[str, Any]:
    return {
        "at": now_iso(),
        "level": "warn",
        "code": MISSING_CODE,
        "attachment_id": exc.attachment_id,
        "local_relpath": exc.local_relpath,
        "message": str(exc),
    }


def materialize_attachments(
    attachments: list[Attachment],
    extracted_root: Path,
    blobs_root: Path,
    max_workers: int = 4,
) -> list[dict[str, Any]]:
    """Materialize attachments into the blob store, updating them in place.

    - local path resolving to a file: stored as a blob, storage=blob,
      status=embedded, blob_sha256 set, size_bytes filled in if unknown
    - local path missing or escaping the root: storage=missing,
      status=missing, one warning event
    - url only: storage=url, status=linked

    Hashing runs in a thread pool; blob writes happen sequentially.

    Args:
        attachments: Provisional attachments from an extractor
        extracted_root: Directory the export was extracted to
        blobs_root: Blob store root
        max_workers: Hashing threads

    Returns:
        Structured warning events, one per unresolved attachment
    """
    events: list[dict[str, Any]] = []
    resolved: dict[str, Path] = {}

    for attachment in attachments:
        if attachment.local_relpath:
            try:
                resolved[attachment.id] = resolve_local(extracted_root, attachment)
            except AttachmentUnresolved as exc:
                attachment.storage, attachment.status = STORAGE_MISSING, STATUS_MISSING
                events.append(_missing_event(exc))
                logger.warning(
                    "Attachment file missing: attachment_id=%s path=%s", exc.attachment_id, exc.local_relpath
                )
        elif attachment.url:
            attachment.storage, attachment.status = STORAGE_URL, STATUS_LINKED
        else:
            attachment.storage, attachment.status = STORAGE_MISSING, STATUS_MISSING

    unique_paths = sorted(set(resolved.values()))
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        hashes = dict(zip(unique_paths, executor.map(compute_sha256, unique_paths)))

    written = 0
    for attachment in attachments:
        source = resolved.get(attachment.id)
        if source is None:
            continue
        sha256 = hashes[source]
        ext = blob_extension(attachment.local_relpath, attachment.mime_type)
        if store_blob(source, blob_path(blobs_root, sha256, ext)):
            written += 1
        attachment.storage, attachment.status = STORAGE_BLOB, STATUS_EMBEDDED
        attachment.blob_sha256 = sha256
        if attachment.size_bytes is None:
            attachment.size_bytes = source.stat().st_size

    logger.info(
        "Materialized attachments: total=%d embedded=%d new_blobs=%d missing=%d",
        len(attachments),
        len(resolved),
        written,
        len(events),
    )
    return events
