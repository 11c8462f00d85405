"""Shared helpers for provider extractors.

Payload files are loaded as documents and classified into one of three
shapes by an ordered list of recognizers; the first recognizer that
matches wins:

- FlatMessageList: messages with no conversation wrapper, or carrying a
  conversation reference of their own
- NestedConversationGraph: conversation objects holding message buckets
  or a mapping graph
- MarkdownTranscript: a text transcript split on role headers
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

from chat_strata.identity import canonical_id, seed
from chat_strata.models import ROLES, Attachment

JSON_SUFFIXES = (".json",)
JSON_LINES_SUFFIXES = (".ndjson", ".jsonl")
MARKDOWN_SUFFIXES = (".md", ".markdown")


@dataclass
class JsonDocument:
    """A parsed JSON payload file."""

    path: Path
    rel_path: str  # Relative to the extraction root, forward slashes
    value: Any


@dataclass
class TextDocument:
    """A text payload file."""

    path: Path
    rel_path: str
    text: str


Document = JsonDocument | TextDocument


@dataclass
class Turn:
    """One role-attributed block of a markdown transcript."""

    role: str
    text: str


@dataclass
class FlatMessageList:
    document: Document
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class NestedConversationGraph:
    document: Document
    conversations: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class MarkdownTranscript:
    document: Document
    title: str | None = None
    turns: list[Turn] = field(default_factory=list)


Shape = FlatMessageList | NestedConversationGraph | MarkdownTranscript
Recognizer = Callable[[Document], Shape | None]


def recognize(document: Document, recognizers: Iterable[Recognizer]) -> Shape | None:
    """Return the shape from the first recognizer that matches the document."""
    for recognizer in recognizers:
        shape = recognizer(document)
        if shape is not None:
            return shape
    return None


def list_files(root: Path) -> list[Path]:
    """List all files under root, sorted by relative path."""
    if not root.exists():
        return []
    return sorted((p for p in root.rglob("*") if p.is_file()), key=lambda p: p.relative_to(root).as_posix())


def relative_path(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def load_json_documents(root: Path) -> list[JsonDocument]:
    """Load every JSON (and JSON lines) file under root.

    JSON lines files are loaded as an array of their records. Malformed
    files and lines are skipped; callers report when nothing usable remains.
    """
    docs: list[JsonDocument] = []
    for path in list_files(root):
        suffix = path.suffix.lower()
        try:
            if suffix in JSON_SUFFIXES:
                value = json.loads(path.read_text(encoding="utf-8-sig"))
            elif suffix in JSON_LINES_SUFFIXES:
                value = _load_json_lines(path)
            else:
                continue
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            continue
        docs.append(JsonDocument(path=path, rel_path=relative_path(root, path), value=value))
    return docs


def _load_json_lines(path: Path) -> list[Any]:
    rows: list[Any] = []
    with open(path, encoding="utf-8-sig") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return rows


def load_text_documents(root: Path, suffixes: Iterable[str] = MARKDOWN_SUFFIXES + (".txt",)) -> list[TextDocument]:
    """Load text files with the given suffixes under root."""
    wanted = {s.lower() for s in suffixes}
    docs: list[TextDocument] = []
    for path in list_files(root):
        if path.suffix.lower() not in wanted:
            continue
        try:
            text = path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError):
            continue
        docs.append(TextDocument(path=path, rel_path=relative_path(root, path), text=text))
    return docs


def get_object(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def get_array(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def records(value: Any) -> list[dict[str, Any]]:
    """The dict items of a list, or an empty list."""
    return [item for item in get_array(value) if isinstance(item, dict)]


def first_str(*values: Any) -> str:
    """First non-empty string (numbers converted), stripped; else ""."""
    for value in values:
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def first_value(*values: Any) -> Any:
    """First value that is not None, empty string, or empty container."""
    for value in values:
        if value is None or value == "" or value == [] or value == {}:
            continue
        return value
    return None


def first_int(*values: Any) -> int | None:
    for value in values:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    return None


def text_from_unknown(value: Any) -> str:
    """Best-effort text from strings, lists, and content-like objects."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return "\n".join(text for text in (text_from_unknown(item) for item in value) if text)
    if isinstance(value, dict):
        for key in ("text", "value", "content"):
            if isinstance(value.get(key), str):
                return value[key]
        if isinstance(value.get("parts"), list):
            return text_from_unknown(value["parts"])
    return ""


def normalize_role(raw: Any, aliases: dict[str, str]) -> str:
    """Map a provider role onto user/assistant/system/unknown."""
    role = raw.strip().lower() if isinstance(raw, str) else ""
    if role in aliases:
        return aliases[role]
    return role if role in ROLES else "unknown"


def message_model(msg: dict[str, Any]) -> str | None:
    """Model identifier from the common places providers put it."""
    metadata = get_object(msg.get("metadata")) or {}
    meta = get_object(msg.get("meta")) or {}
    author = get_object(msg.get("author")) or {}
    model = first_str(
        msg.get("model"),
        msg.get("model_name"),
        msg.get("modelName"),
        metadata.get("model"),
        metadata.get("model_slug"),
        meta.get("model"),
        author.get("model"),
    )
    return model or None


# Recognizer factories shared by the heuristic (gemini, cursor) extractors

MessagePredicate = Callable[[dict[str, Any]], bool]


def message_bucket(conv: dict[str, Any], bucket_keys: Iterable[str], is_message: MessagePredicate) -> list[dict[str, Any]]:
    """Messages of a conversation object from the first non-empty bucket.

    The special key "mapping" reads a node graph whose values hold a
    "message" object (or are messages themselves).
    """
    for key in bucket_keys:
        if key == "mapping":
            mapping = get_object(conv.get("mapping"))
            if not mapping:
                continue
            rows = [get_object(node.get("message")) or node for node in mapping.values() if isinstance(node, dict)]
        else:
            rows = records(conv.get(key))
        rows = [row for row in rows if is_message(row)]
        if rows:
            return rows
    return []


def conversation_array(bucket_keys: tuple[str, ...], is_message: MessagePredicate) -> Recognizer:
    """Top-level array of conversations holding message buckets."""

    def recognizer(doc: Document) -> Shape | None:
        if not isinstance(doc, JsonDocument) or not isinstance(doc.value, list):
            return None
        convs = [row for row in records(doc.value) if message_bucket(row, bucket_keys, is_message)]
        return NestedConversationGraph(doc, convs) if convs else None

    return recognizer


def bare_message_array(is_message: MessagePredicate) -> Recognizer:
    """Top-level array of messages with no conversation wrapper."""

    def recognizer(doc: Document) -> Shape | None:
        if not isinstance(doc, JsonDocument) or not isinstance(doc.value, list):
            return None
        rows = [row for row in records(doc.value) if is_message(row)]
        return FlatMessageList(doc, rows) if rows else None

    return recognizer


def wrapped_conversations(
    wrapper_keys: tuple[str, ...],
    bucket_keys: tuple[str, ...],
    is_message: MessagePredicate,
    flat_fallback: bool = False,
) -> Recognizer:
    """Object holding a conversation array under one of wrapper_keys.

    With flat_fallback, a wrapped array of bare messages is accepted too.
    """

    def recognizer(doc: Document) -> Shape | None:
        if not isinstance(doc, JsonDocument) or not isinstance(doc.value, dict):
            return None
        for key in wrapper_keys:
            rows = records(doc.value.get(key))
            convs = [row for row in rows if message_bucket(row, bucket_keys, is_message)]
            if convs:
                return NestedConversationGraph(doc, convs)
            if flat_fallback:
                messages = [row for row in rows if is_message(row)]
                if messages:
                    return FlatMessageList(doc, messages)
        return None

    return recognizer


def single_conversation(bucket_keys: tuple[str, ...], is_message: MessagePredicate) -> Recognizer:
    """A document that is itself one conversation."""

    def recognizer(doc: Document) -> Shape | None:
        if not isinstance(doc, JsonDocument) or not isinstance(doc.value, dict):
            return None
        if message_bucket(doc.value, bucket_keys, is_message):
            return NestedConversationGraph(doc, [doc.value])
        return None

    return recognizer


def single_message(is_message: MessagePredicate) -> Recognizer:
    """A document that is itself one message."""

    def recognizer(doc: Document) -> Shape | None:
        if not isinstance(doc, JsonDocument) or not isinstance(doc.value, dict):
            return None
        return FlatMessageList(doc, [doc.value]) if is_message(doc.value) else None

    return recognizer


LOCAL_PATH_KEYS = ("path", "local_path", "filepath")


def attachment_from_object(
    provider: str,
    raw: dict[str, Any],
    message_id: str,
    job_id: str,
    source_path: str,
    id_keys: tuple[str, ...] = ("id", "uuid", "asset_id", "pointer"),
    default_kind: str = "attachment",
) -> Attachment:
    """Build a provisional attachment from a generic attachment object.

    Without a provider id, the attachment id is hashed from the owning
    message id and the raw object.
    """
    provider_attachment_id = first_str(*(raw.get(key) for key in id_keys))
    attachment_id = canonical_id(
        "att",
        provider,
        provider_attachment_id or None,
        seed(message_id, json.dumps(raw, sort_keys=True, ensure_ascii=False)),
    )
    kind = first_str(raw.get("kind"), raw.get("type"))
    attachment = Attachment(
        id=attachment_id,
        provider=provider,
        message_id=message_id,
        provider_attachment_id=provider_attachment_id or None,
        kind=kind or default_kind,
        mime_type=first_str(raw.get("mime_type"), raw.get("mimeType"), raw.get("media_type")) or None,
        size_bytes=first_int(raw.get("size_bytes"), raw.get("file_size"), raw.get("size")),
        url=raw.get("url") if isinstance(raw.get("url"), str) else None,
        local_relpath=first_str(*(raw.get(key) for key in LOCAL_PATH_KEYS)) or None,
        source_job_id=job_id,
        source_path=source_path,
    )
    attachment.classify()
    return attachment
