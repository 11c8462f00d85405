"""Extractor for Claude data exports.

Claude exports arrive in two shapes, often side by side in one package:

Nested conversations (conversations.json):
    [{"uuid": "...", "name": "...", "created_at": "...", "updated_at": "...",
      "chat_messages": [{"uuid": "...", "sender": "human", "text": "...",
                         "content": [{"type": "text", "text": "..."}],
                         "attachments": [...], "files": [...]}]}]

Flat message lists, each message carrying its conversation reference:
    [{"id": "...", "conversation_id": "...", "role": "assistant", "text": "..."}]

Both are merged by identity: a message present in both places becomes one
record with the longer text and the union of its attachments. Conversations
that only appear through flat messages get a synthetic conversation record.
"""

from pathlib import Path
from typing import Any

from chat_strata.errors import ExtractionFailure
from chat_strata.identity import canonical_id, seed
from chat_strata.importer.extractors.base import Extractor, RecordCollector
from chat_strata.importer.extractors.common import (
    LOCAL_PATH_KEYS,
    Document,
    FlatMessageList,
    JsonDocument,
    NestedConversationGraph,
    Shape,
    attachment_from_object,
    first_str,
    get_object,
    load_json_documents,
    message_model,
    normalize_role,
    records,
    text_from_unknown,
)
from chat_strata.models import Conversation, ExtractionResult, Message
from chat_strata.timestamps import to_iso

ROLE_ALIASES = {
    "human": "user",
    "user": "user",
    "assistant": "assistant",
    "ai": "assistant",
    "model": "assistant",
    "claude": "assistant",
    "system": "system",
}

CONVERSATION_WRAPPER_KEYS = ("conversations", "threads", "chats", "items", "data")
MESSAGE_WRAPPER_KEYS = ("messages", "items", "data", "entries")
MESSAGE_BUCKET_KEYS = ("chat_messages", "messages", "entries", "turns", "items")
ATTACHMENT_BLOCK_TYPES = ("image", "file", "attachment", "document")


def _conversation_ref(msg: dict[str, Any]) -> str:
    return first_str(
        msg.get("conversation_id"),
        msg.get("conversationId"),
        msg.get("conversation_uuid"),
        msg.get("thread_id"),
        msg.get("threadId"),
        msg.get("chat_id"),
    )


def _conversation_key(conv: dict[str, Any]) -> str:
    return first_str(conv.get("uuid"), conv.get("id"), conv.get("conversation_id"), conv.get("thread_id"))


def _raw_role(msg: dict[str, Any]) -> Any:
    author = get_object(msg.get("author")) or {}
    return msg.get("sender") or msg.get("role") or author.get("role") or author.get("type") or msg.get("from")


def _looks_like_message(row: dict[str, Any]) -> bool:
    return bool(_conversation_ref(row) or _raw_role(row) or row.get("message_id"))


def _message_rows(conv: dict[str, Any]) -> list[dict[str, Any]]:
    for key in MESSAGE_BUCKET_KEYS:
        rows = records(conv.get(key))
        if rows:
            return rows
    return []


def _looks_like_conversation(row: dict[str, Any]) -> bool:
    if not _conversation_key(row) or _looks_like_message(row):
        return False
    if _message_rows(row):
        return True
    return isinstance(row.get("title"), str) or isinstance(row.get("name"), str) or any(
        row.get(key) is not None
        for key in ("created_at", "createdAt", "created_time", "updated_at", "updatedAt", "updated_time")
    )


def _nested_conversations(doc: Document) -> Shape | None:
    """Conversation objects, top-level or under a wrapper key."""
    if not isinstance(doc, JsonDocument):
        return None
    if isinstance(doc.value, list):
        candidates = [records(doc.value)]
    elif isinstance(doc.value, dict):
        candidates = [records(doc.value.get(key)) for key in CONVERSATION_WRAPPER_KEYS]
    else:
        return None
    for rows in candidates:
        convs = [row for row in rows if _looks_like_conversation(row)]
        if convs:
            return NestedConversationGraph(doc, convs)
    return None


def _flat_messages(doc: Document) -> Shape | None:
    """Messages carrying their own conversation reference."""
    if not isinstance(doc, JsonDocument):
        return None
    if isinstance(doc.value, list):
        candidates = [records(doc.value)]
    elif isinstance(doc.value, dict):
        candidates = [records(doc.value.get(key)) for key in MESSAGE_WRAPPER_KEYS]
    else:
        return None
    for rows in candidates:
        messages = [row for row in rows if _conversation_ref(row)]
        if messages:
            return FlatMessageList(doc, messages)
    return None


def _message_text(msg: dict[str, Any]) -> str:
    lines = []
    for block in records(msg.get("content")):
        if isinstance(block.get("text"), str):
            lines.append(block["text"])
        elif isinstance(block.get("content"), str):
            lines.append(block["content"])
        else:
            lines.append(text_from_unknown(block))
    lines = [line for line in lines if line]
    if lines:
        return "\n".join(lines)
    return text_from_unknown(msg.get("text") or msg.get("content") or msg.get("body") or msg.get("message"))


def _is_attachment_block(block: dict[str, Any]) -> bool:
    if isinstance(block.get("url"), str) or any(isinstance(block.get(k), str) for k in LOCAL_PATH_KEYS):
        return True
    return str(block.get("type") or "").lower() in ATTACHMENT_BLOCK_TYPES


class ClaudeExtractor(Extractor):
    """Extractor for Claude conversation exports."""

    provider = "claude"
    label = "Claude"

    recognizers = (_nested_conversations, _flat_messages)

    def extract(self, extracted_root: Path, job_id: str, source_prefix: str = "") -> ExtractionResult:
        docs = load_json_documents(extracted_root)
        if not docs:
            raise ExtractionFailure("Claude extractor found no JSON payload files.")

        nested: list[tuple[dict[str, Any], str]] = []
        flat_groups: dict[str, list[tuple[dict[str, Any], str]]] = {}

        for doc in docs:
            source_path = self.source_path(source_prefix, doc.rel_path)
            # A document may hold both shapes; every recognizer sees it.
            for recognizer in self.recognizers:
                shape = recognizer(doc)
                if isinstance(shape, NestedConversationGraph):
                    nested.extend((conv, source_path) for conv in shape.conversations)
                elif isinstance(shape, FlatMessageList):
                    for msg in shape.messages:
                        flat_groups.setdefault(_conversation_ref(msg), []).append((msg, source_path))

        collector = RecordCollector()

        for conv, source_path in nested:
            provider_conversation_id = _conversation_key(conv)
            conversation_id = canonical_id("cnv", self.provider, provider_conversation_id, provider_conversation_id)
            title = first_str(conv.get("title"), conv.get("name")) or None
            collector.add_conversation(
                Conversation(
                    id=conversation_id,
                    provider=self.provider,
                    provider_conversation_id=provider_conversation_id,
                    title=title,
                    created_at=to_iso(conv.get("created_at") or conv.get("createdAt") or conv.get("created_time")),
                    updated_at=to_iso(conv.get("updated_at") or conv.get("updatedAt") or conv.get("updated_time")),
                    source_job_id=job_id,
                    source_path=source_path,
                )
            )
            for ordinal, msg in enumerate(_message_rows(conv)):
                self._add_message(msg, ordinal, conversation_id, job_id, source_path, collector)

        for provider_conversation_id, group in flat_groups.items():
            conversation_id = canonical_id("cnv", self.provider, provider_conversation_id, provider_conversation_id)
            if not collector.has_conversation(conversation_id):
                collector.add_conversation(
                    Conversation(
                        id=conversation_id,
                        provider=self.provider,
                        provider_conversation_id=provider_conversation_id,
                        source_job_id=job_id,
                        source_path=group[0][1],
                    )
                )
            for ordinal, (msg, source_path) in enumerate(group):
                self._add_message(msg, ordinal, conversation_id, job_id, source_path, collector)

        return collector.result(self.provider, self.label)

    def _add_message(
        self,
        msg: dict[str, Any],
        ordinal: int,
        conversation_id: str,
        job_id: str,
        source_path: str,
        collector: RecordCollector,
    ) -> None:
        provider_message_id = first_str(msg.get("uuid"), msg.get("id"), msg.get("message_id"))
        text = _message_text(msg)
        if not provider_message_id and not text:
            return

        role = normalize_role(_raw_role(msg), ROLE_ALIASES)
        created_at = to_iso(msg.get("created_at") or msg.get("createdAt") or msg.get("timestamp"))
        message_id = canonical_id(
            "msg",
            self.provider,
            provider_message_id or None,
            seed(conversation_id, ordinal, role, text, created_at),
        )

        attachment_ids = []
        for raw in self._raw_attachments(msg):
            attachment = collector.add_attachment(
                attachment_from_object(
                    self.provider,
                    raw,
                    message_id,
                    job_id,
                    source_path,
                    id_keys=("id", "uuid", "file_uuid", "asset_id", "pointer"),
                )
            )
            if attachment.id not in attachment_ids:
                attachment_ids.append(attachment.id)

        collector.add_message(
            Message(
                id=message_id,
                conversation_id=conversation_id,
                provider=self.provider,
                provider_message_id=provider_message_id or None,
                role=role,
                text=text,
                model=message_model(msg),
                created_at=created_at,
                attachment_ids=attachment_ids,
                source_job_id=job_id,
                source_path=source_path,
            )
        )

    @staticmethod
    def _raw_attachments(msg: dict[str, Any]) -> list[dict[str, Any]]:
        raw = records(msg.get("attachments")) + records(msg.get("files"))
        raw.extend(block for block in records(msg.get("content")) if _is_attachment_block(block))
        return raw
