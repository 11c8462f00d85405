"""Extractor for Gemini exports.

Gemini payloads have no single canonical layout. Recognized shapes, in
order of preference:

- an array of conversations holding a message bucket (messages, turns,
  history, entries, items, events) or a mapping graph
- a bare array of messages
- an object holding such conversations under conversations/threads/chats/
  items/data
- an object that is itself one conversation, including Gemini CLI session
  files:
      {"sessionId": "...", "startTime": "...", "lastUpdated": "...",
       "messages": [{"id": "...", "type": "user" | "gemini" | "info",
                     "content": "...", "toolCalls": [...]}]}
- an object that is itself one message

API-style responses carry their text in candidates[].content.parts.
"""

from pathlib import Path
from typing import Any

from chat_strata.errors import ExtractionFailure
from chat_strata.identity import canonical_id, sanitize, seed
from chat_strata.importer.extractors.base import Extractor, RecordCollector
from chat_strata.importer.extractors.common import (
    FlatMessageList,
    NestedConversationGraph,
    attachment_from_object,
    bare_message_array,
    conversation_array,
    first_str,
    get_object,
    load_json_documents,
    message_bucket,
    message_model,
    normalize_role,
    recognize,
    records,
    single_conversation,
    single_message,
    text_from_unknown,
    wrapped_conversations,
)
from chat_strata.models import Conversation, ExtractionResult, Message
from chat_strata.timestamps import to_iso

ROLE_ALIASES = {
    "model": "assistant",
    "assistant": "assistant",
    "ai": "assistant",
    "bot": "assistant",
    "gemini": "assistant",
    "user": "user",
    "human": "user",
    "prompt": "user",
    "customer": "user",
    "you": "user",
    "system": "system",
}

# Gemini CLI status lines, not conversation turns
SKIPPED_MESSAGE_TYPES = ("info", "error")

BUCKET_KEYS = ("messages", "turns", "history", "entries", "items", "events", "mapping")
WRAPPER_KEYS = ("conversations", "threads", "chats", "items", "data")

TOOL_RESULT_PREVIEW_CHARS = 200


def _is_message(row: dict[str, Any]) -> bool:
    return any(
        row.get(key)
        for key in ("role", "author", "sender", "type", "text", "content", "parts", "message", "response", "candidates")
    )


def _raw_role(msg: dict[str, Any]) -> Any:
    author = get_object(msg.get("author")) or {}
    return (
        msg.get("role")
        or msg.get("sender")
        or author.get("role")
        or author.get("type")
        or msg.get("from")
        or msg.get("type")
    )


def _tool_call_text(msg: dict[str, Any]) -> list[str]:
    """Gemini CLI tool calls rendered as short descriptive lines."""
    lines = []
    for call in records(msg.get("toolCalls")):
        name = call.get("displayName") or call.get("name") or "unknown"
        lines.append(f"[Tool: {name}]")
        for result in records(call.get("result")):
            response = get_object((get_object(result.get("functionResponse")) or {}).get("response")) or {}
            output = response.get("output")
            if isinstance(output, str) and output:
                if len(output) > TOOL_RESULT_PREVIEW_CHARS:
                    output = output[:TOOL_RESULT_PREVIEW_CHARS] + "..."
                lines.append(f"[Tool Result: {output}]")
    return lines


def _message_text(msg: dict[str, Any]) -> str:
    direct = text_from_unknown(
        msg.get("text")
        or msg.get("content")
        or msg.get("parts")
        or msg.get("message")
        or msg.get("response")
        or msg.get("output")
        or msg.get("value")
    ).strip()

    lines = [direct] if direct else []
    lines.extend(_tool_call_text(msg))
    if lines:
        return "\n".join(lines)

    candidates = []
    for candidate in records(msg.get("candidates")):
        content = get_object(candidate.get("content")) or {}
        text = text_from_unknown(
            content.get("parts") or candidate.get("content") or candidate.get("text") or candidate.get("message")
        ).strip()
        if text:
            candidates.append(text)
    return "\n\n".join(candidates)


class GeminiExtractor(Extractor):
    """Extractor for Gemini conversation exports and CLI sessions."""

    provider = "gemini"
    label = "Gemini"

    recognizers = (
        conversation_array(BUCKET_KEYS, _is_message),
        bare_message_array(_is_message),
        wrapped_conversations(WRAPPER_KEYS, BUCKET_KEYS, _is_message),
        single_conversation(BUCKET_KEYS, _is_message),
        single_message(_is_message),
    )

    def extract(self, extracted_root: Path, job_id: str, source_prefix: str = "") -> ExtractionResult:
        docs = load_json_documents(extracted_root)
        if not docs:
            raise ExtractionFailure("Gemini extractor could not find a usable JSON file.")

        collector = RecordCollector()
        for doc in docs:
            shape = recognize(doc, self.recognizers)
            if isinstance(shape, NestedConversationGraph):
                convs = [(conv, message_bucket(conv, BUCKET_KEYS, _is_message)) for conv in shape.conversations]
            elif isinstance(shape, FlatMessageList):
                convs = [({}, shape.messages)]
            else:
                continue

            source_path = self.source_path(source_prefix, doc.rel_path)
            for index, (conv, rows) in enumerate(convs):
                provider_conversation_id = first_str(
                    conv.get("id"),
                    conv.get("uuid"),
                    conv.get("conversation_id"),
                    conv.get("chat_id"),
                    conv.get("thread_id"),
                    conv.get("sessionId"),
                ) or f"gemini_{sanitize(doc.rel_path)}_{index}"
                self._extract_conversation(conv, rows, provider_conversation_id, job_id, source_path, collector)

        return collector.result(self.provider, self.label)

    def _extract_conversation(
        self,
        conv: dict[str, Any],
        rows: list[dict[str, Any]],
        provider_conversation_id: str,
        job_id: str,
        source_path: str,
        collector: RecordCollector,
    ) -> None:
        conversation_id = canonical_id("cnv", self.provider, provider_conversation_id, provider_conversation_id)
        collector.add_conversation(
            Conversation(
                id=conversation_id,
                provider=self.provider,
                provider_conversation_id=provider_conversation_id,
                title=first_str(conv.get("title"), conv.get("name"), conv.get("subject")) or None,
                created_at=to_iso(
                    conv.get("created_at") or conv.get("create_time") or conv.get("createdAt") or conv.get("startTime")
                ),
                updated_at=to_iso(
                    conv.get("updated_at")
                    or conv.get("update_time")
                    or conv.get("updatedAt")
                    or conv.get("lastUpdated")
                ),
                source_job_id=job_id,
                source_path=source_path,
            )
        )

        for ordinal, row in enumerate(rows):
            if str(row.get("type") or "").lower() in SKIPPED_MESSAGE_TYPES:
                continue

            text = _message_text(row)
            provider_message_id = first_str(
                row.get("id"), row.get("uuid"), row.get("message_id"), row.get("turn_id"), row.get("event_id")
            )
            if not provider_message_id and not text:
                continue

            role = normalize_role(_raw_role(row), ROLE_ALIASES)
            created_at = to_iso(
                row.get("created_at")
                or row.get("create_time")
                or row.get("createdAt")
                or row.get("timestamp")
                or row.get("time")
            )
            message_id = canonical_id(
                "msg",
                self.provider,
                provider_message_id or None,
                seed(conversation_id, ordinal, role, text, created_at),
            )

            attachment_ids = []
            for raw in records(row.get("attachments")) + records(row.get("files")):
                attachment = collector.add_attachment(
                    attachment_from_object(self.provider, raw, message_id, job_id, source_path)
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
                    model=message_model(row),
                    created_at=created_at,
                    attachment_ids=attachment_ids,
                    source_job_id=job_id,
                    source_path=source_path,
                )
            )
