"""UTC timestamp helpers.

Every timestamp written to the dataset is UTC ISO 8601 with millisecond
precision and a trailing "Z", e.g. "2026-02-03T10:15:00.000Z".
"""

import re
from datetime import datetime, timezone

_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")

# Values above this are treated as epoch milliseconds
_MILLIS_THRESHOLD = 1e12


def format_iso(dt: datetime) -> str:
    """Format a datetime as UTC ISO 8601 with a Z suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_iso() -> str:
    """Current time as a dataset timestamp."""
    return format_iso(datetime.now(timezone.utc))


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string into an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None for empty or
    unparseable input.
    """
    if not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _from_epoch(value: float) -> datetime | None:
    seconds = value / 1000 if value > _MILLIS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def to_iso(value: object) -> str | None:
    """Normalize a provider timestamp into a dataset timestamp.

    Accepts epoch seconds or milliseconds (as numbers or numeric strings)
    and ISO 8601 strings. Anything else yields None.
    """
    # bool is an int subclass and never a timestamp
    if isinstance(value, bool):
        return None

    dt: datetime | None = None
    if isinstance(value, (int, float)):
        dt = _from_epoch(float(value))
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if _NUMERIC_RE.match(text):
            dt = _from_epoch(float(text))
        else:
            dt = parse_iso(text)

    return format_iso(dt) if dt is not None else None


def is_newer(candidate: str | None, reference: str | None) -> bool:
    """True if candidate is strictly later than reference.

    A present candidate is newer than a missing or unparseable reference.
    """
    candidate_dt = parse_iso(candidate)
    if candidate_dt is None:
        return False
    reference_dt = parse_iso(reference)
    if reference_dt is None:
        return True
    return candidate_dt > reference_dt


def utc_day(value: str | None) -> tuple[str, str, str] | None:
    """Split a timestamp into zero-padded UTC (year, month, day) parts."""
    dt = parse_iso(value)
    if dt is None:
        return None
    return f"{dt.year:04d}", f"{dt.month:02d}", f"{dt.day:02d}"
