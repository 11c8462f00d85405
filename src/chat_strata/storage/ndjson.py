"""NDJSON and JSON file helpers.

Every write goes to a temporary file in the target directory and is renamed
over the target, so readers never observe a partially written file. OSErrors
on write are raised as WriteFailure.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable

from chat_strata.errors import WriteFailure
from chat_strata.logging import get_logger

logger = get_logger("storage")


def dumps_line(row: Any) -> str:
    """Serialize one record as a compact JSON line (without newline)."""
    return json.dumps(row, ensure_ascii=False, separators=(",", ":"))


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write bytes to path via temp file + rename.

    Raises:
        WriteFailure: If the directory or file cannot be written
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise WriteFailure(f"Failed to write {path}: {exc}") from exc


def atomic_write_text(path: Path, text: str) -> None:
    """Write UTF-8 text to path via temp file + rename."""
    atomic_write_bytes(path, text.encode("utf-8"))


def read_ndjson(path: Path) -> list[dict[str, Any]]:
    """Read all records from an NDJSON file.

    Returns an empty list if the file does not exist. Blank lines are skipped.
    """
    if not path.exists():
        return []

    rows: list[dict[str, Any]] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            rows.append(json.loads(line))
    return rows


def write_ndjson(path: Path, rows: Iterable[Any]) -> int:
    """Atomically replace an NDJSON file with the given records.

    An empty iterable produces an empty file.

    Returns:
        Number of records written
    """
    lines = [dumps_line(row) for row in rows]
    payload = "".join(f"{line}\n" for line in lines)
    atomic_write_text(path, payload)
    logger.debug("Wrote NDJSON: path=%s rows=%d", path, len(lines))
    return len(lines)


def append_ndjson_line(path: Path, row: Any) -> None:
    """Append one record to an append-only NDJSON log."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(dumps_line(row) + "\n")
    except OSError as exc:
        raise WriteFailure(f"Failed to append to {path}: {exc}") from exc


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON document, returning default if the file does not exist."""
    if not path.exists():
        return default
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def write_json(path: Path, payload: Any) -> None:
    """Atomically write a pretty-printed JSON document."""
    atomic_write_text(path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
