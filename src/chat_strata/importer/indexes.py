"""Derived message indexes.

Indexes are disposable views over the canonical messages::

    indexes/by-provider/<provider>/messages.ndjson
    indexes/by-date/<yyyy>/<mm>/<dd>/messages.ndjson
    indexes/by-date/unknown/messages.ndjson

Every rebuild writes a complete new tree next to the old one and swaps it
in, so partitions that no longer have messages disappear.
"""

import secrets
import shutil
from pathlib import Path
from typing import Any

from chat_strata.errors import WriteFailure
from chat_strata.logging import get_logger
from chat_strata.storage.layout import DataLayout
from chat_strata.storage.ndjson import write_ndjson
from chat_strata.timestamps import utc_day

logger = get_logger("indexes")

UNKNOWN_BUCKET = "unknown"
INDEX_FILE = "messages.ndjson"


def partition_messages(
    messages: list[dict[str, Any]],
) -> tuple[dict[str, list[dict[str, Any]]], dict[tuple[str, ...], list[dict[str, Any]]]]:
    """Group messages by provider and by UTC day of created_at.

    Messages without a parseable created_at go to the "unknown" date bucket.
    Input order is preserved inside each partition.
    """
    by_provider: dict[str, list[dict[str, Any]]] = {}
    by_date: dict[tuple[str, ...], list[dict[str, Any]]] = {}

    for message in messages:
        provider = message.get("provider") or UNKNOWN_BUCKET
        by_provider.setdefault(provider, []).append(message)
        day = utc_day(message.get("created_at"))
        by_date.setdefault(day or (UNKNOWN_BUCKET,), []).append(message)

    return by_provider, by_date


def _swap_in(staging: Path, target: Path) -> None:
    retired = target.with_name(f".{target.name}.old-{secrets.token_hex(4)}")
    try:
        if target.exists():
            target.rename(retired)
        staging.rename(target)
    except OSError as exc:
        if retired.exists() and not target.exists():
            retired.rename(target)
        raise WriteFailure(f"Failed to replace index tree {target}: {exc}") from exc
    shutil.rmtree(retired, ignore_errors=True)


def rebuild_message_indexes(layout: DataLayout, messages: list[dict[str, Any]]) -> dict[str, int]:
    """Rebuild the whole index tree from canonical messages.

    Args:
        layout: Data root layout
        messages: Canonical message rows

    Returns:
        Dict with counts: {"messages": N, "providers": P, "days": D}
    """
    by_provider, by_date = partition_messages(messages)

    staging = layout.root / f".indexes.tmp-{secrets.token_hex(4)}"
    try:
        for provider, rows in by_provider.items():
            write_ndjson(staging / "by-provider" / provider / INDEX_FILE, rows)
        for parts, rows in by_date.items():
            write_ndjson(staging.joinpath("by-date", *parts, INDEX_FILE), rows)
        staging.mkdir(parents=True, exist_ok=True)
        _swap_in(staging, layout.indexes_root)
    finally:
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)

    stats = {
        "messages": len(messages),
        "providers": len(by_provider),
        "days": sum(1 for parts in by_date if parts != (UNKNOWN_BUCKET,)),
    }
    logger.info(
        "Rebuilt message indexes: messages=%d providers=%d days=%d",
        stats["messages"],
        stats["providers"],
        stats["days"],
    )
    return stats
