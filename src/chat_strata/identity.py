"""Deterministic canonical identifiers.

Ids have the form ``<provider>:<prefix>:<token>``. The token is the sanitized
provider-native id when one exists, otherwise a truncated SHA256 of a
fallback seed built from the record's content.
"""

import hashlib
import re

__all__ = ["canonical_id", "content_hash", "sanitize", "seed"]

FALLBACK_HASH_LENGTH = 20

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")


def sanitize(raw_id: str) -> str:
    """Replace every character outside [A-Za-z0-9_-] with an underscore."""
    return _UNSAFE_RE.sub("_", raw_id)


def content_hash(content: str | bytes, length: int | None = None) -> str:
    """Compute the SHA256 hex digest of content, optionally truncated.

    Args:
        content: Text (encoded as UTF-8) or raw bytes
        length: Number of leading hex characters to keep

    Returns:
        Hex-encoded SHA256 digest
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    digest = hashlib.sha256(content).hexdigest()
    return digest[:length] if length else digest


def seed(*parts: object) -> str:
    """Join fallback seed parts into a single string, None as empty."""
    return ":".join("" if part is None else str(part) for part in parts)


def canonical_id(
    prefix: str,
    provider: str,
    raw_id: str | None = None,
    fallback_seed: str | None = None,
) -> str:
    """Generate a stable canonical id.

    Args:
        prefix: Entity prefix ("cnv", "msg", "att")
        provider: Provider name (e.g. "chatgpt")
        raw_id: Provider-native id, used verbatim (sanitized) when non-empty
        fallback_seed: Content seed hashed when raw_id is absent

    Returns:
        Canonical id string
    """
    if isinstance(raw_id, str) and raw_id.strip():
        return f"{provider}:{prefix}:{sanitize(raw_id)}"
    token = content_hash(fallback_seed or "missing", FALLBACK_HASH_LENGTH)
    return f"{provider}:{prefix}:{token}"
