"""Extractor for ChatGPT data exports.

A ChatGPT export zip contains:
    conversations.json      Array of conversation objects
    file-<id>-<name>.<ext>  Uploaded files and generated images
    (plus chat.html, user.json, message_feedback.json, ...)

Each conversation object has:
- id / conversation_id: UUID
- title, create_time, update_time (epoch seconds)
- mapping: node graph {node_id: {id, parent, children, message}}
  - message.author.role: "user", "assistant", "system", "tool"
  - message.content.parts: strings or typed parts (image_asset_pointer, ...)
  - message.metadata.attachments: uploaded file descriptors
  - message.metadata.model_slug: model used for assistant turns
"""

import json
from pathlib import Path
from typing import Any

from chat_strata.errors import ExtractionFailure
from chat_strata.identity import canonical_id, seed
from chat_strata.importer.extractors.base import Extractor, RecordCollector
from chat_strata.importer.extractors.common import (
    Document,
    JsonDocument,
    NestedConversationGraph,
    Shape,
    first_int,
    first_str,
    get_array,
    get_object,
    list_files,
    load_json_documents,
    message_model,
    normalize_role,
    records,
    relative_path,
    text_from_unknown,
)
from chat_strata.models import Attachment, Conversation, ExtractionResult, Message
from chat_strata.timestamps import to_iso

ROLE_ALIASES = {
    "user": "user",
    "assistant": "assistant",
    "system": "system",
    # Tool output is part of the assistant's turn
    "tool": "assistant",
}

ASSET_POINTER_SCHEMES = ("file-service://", "sediment://")


def _conversations_file(doc: Document) -> Shape | None:
    """conversations.json anywhere in the export."""
    if not isinstance(doc, JsonDocument) or not doc.rel_path.lower().endswith("conversations.json"):
        return None
    if not isinstance(doc.value, list):
        return None
    return NestedConversationGraph(doc, records(doc.value))


def _conversation_array(doc: Document) -> Shape | None:
    """Any array whose items look like conversations."""
    if not isinstance(doc, JsonDocument) or not isinstance(doc.value, list):
        return None
    rows = records(doc.value)
    if any(get_object(row.get("mapping")) is not None or isinstance(row.get("id"), str) for row in rows):
        return NestedConversationGraph(doc, rows)
    return None


class FileIndex:
    """Looks up exported files by the file id embedded in their names."""

    def __init__(self, root: Path) -> None:
        self._names = [(path.name, relative_path(root, path)) for path in list_files(root)]

    def find(self, file_id: str) -> str | None:
        if not file_id:
            return None
        for name, rel in self._names:
            if name == file_id or name.startswith(f"{file_id}-") or name.startswith(f"{file_id}."):
                return rel
        return None


def _strip_pointer(pointer: str) -> str:
    for scheme in ASSET_POINTER_SCHEMES:
        if pointer.startswith(scheme):
            return pointer[len(scheme):]
    return pointer


def _ordered_nodes(mapping: dict[str, Any]) -> list[dict[str, Any]]:
    """Mapping nodes in thread order: depth-first from the roots.

    Nodes not reachable from a root are appended in document order.
    """
    nodes = {key: node for key, node in mapping.items() if isinstance(node, dict)}
    ordered: list[dict[str, Any]] = []
    visited: set[str] = set()

    roots = [key for key, node in nodes.items() if node.get("parent") not in nodes]
    stack = list(reversed(roots))
    while stack:
        key = stack.pop()
        if key in visited or key not in nodes:
            continue
        visited.add(key)
        ordered.append(nodes[key])
        children = [c for c in get_array(nodes[key].get("children")) if isinstance(c, str)]
        stack.extend(reversed(children))

    ordered.extend(node for key, node in nodes.items() if key not in visited)
    return ordered


def _message_text(msg: dict[str, Any]) -> str:
    content = get_object(msg.get("content"))
    if content is None:
        return text_from_unknown(msg.get("content"))
    parts = get_array(content.get("parts"))
    if parts:
        # Asset pointer parts are attachments, not text
        return text_from_unknown([p for p in parts if not isinstance(p, dict) or "asset_pointer" not in p])
    return text_from_unknown(content.get("text") or content.get("result") or "")


class ChatGPTExtractor(Extractor):
    """Extractor for ChatGPT conversations.json exports."""

    provider = "chatgpt"
    label = "ChatGPT"

    recognizers = (_conversations_file, _conversation_array)

    def extract(self, extracted_root: Path, job_id: str, source_prefix: str = "") -> ExtractionResult:
        docs = load_json_documents(extracted_root)

        shape: Shape | None = None
        for recognizer in self.recognizers:
            shape = next((s for s in map(recognizer, docs) if s is not None), None)
            if shape is not None:
                break

        if not isinstance(shape, NestedConversationGraph):
            raise ExtractionFailure("ChatGPT extractor could not find a usable conversations JSON file.")

        files = FileIndex(extracted_root)
        collector = RecordCollector()
        source_path = self.source_path(source_prefix, shape.document.rel_path)

        for conv in shape.conversations:
            self._extract_conversation(conv, job_id, source_path, files, collector)

        return collector.result(self.provider, self.label)

    def _extract_conversation(
        self,
        conv: dict[str, Any],
        job_id: str,
        source_path: str,
        files: FileIndex,
        collector: RecordCollector,
    ) -> None:
        provider_conversation_id = first_str(conv.get("id"), conv.get("conversation_id"))
        if not provider_conversation_id:
            return

        conversation_id = canonical_id("cnv", self.provider, provider_conversation_id, provider_conversation_id)
        title = conv.get("title")
        collector.add_conversation(
            Conversation(
                id=conversation_id,
                provider=self.provider,
                provider_conversation_id=provider_conversation_id,
                title=title if isinstance(title, str) and title.strip() else None,
                created_at=to_iso(conv.get("create_time")),
                updated_at=to_iso(conv.get("update_time")),
                source_job_id=job_id,
                source_path=source_path,
            )
        )

        mapping = get_object(conv.get("mapping")) or {}
        ordinal = 0
        for node in _ordered_nodes(mapping):
            msg = get_object(node.get("message"))
            if msg is None:
                continue

            provider_message_id = first_str(msg.get("id"), node.get("id"))
            if not provider_message_id:
                continue

            author = get_object(msg.get("author")) or {}
            role = normalize_role(author.get("role"), ROLE_ALIASES)
            text = _message_text(msg)
            created_at = to_iso(msg.get("create_time") or node.get("create_time"))

            message_id = canonical_id(
                "msg",
                self.provider,
                provider_message_id,
                seed(conversation_id, ordinal, role, text, created_at),
            )
            ordinal += 1

            attachment_ids = []
            for attachment in self._attachments(msg, message_id, job_id, source_path, files):
                collector.add_attachment(attachment)
                if attachment.id not in attachment_ids:
                    attachment_ids.append(attachment.id)

            collector.add_message(
                Message(
                    id=message_id,
                    conversation_id=conversation_id,
                    provider=self.provider,
                    provider_message_id=provider_message_id,
                    role=role,
                    text=text,
                    model=message_model(msg),
                    created_at=created_at,
                    attachment_ids=attachment_ids,
                    source_job_id=job_id,
                    source_path=source_path,
                )
            )

    def _attachments(
        self,
        msg: dict[str, Any],
        message_id: str,
        job_id: str,
        source_path: str,
        files: FileIndex,
    ) -> list[Attachment]:
        metadata = get_object(msg.get("metadata")) or {}
        content = get_object(msg.get("content")) or {}

        raw_items: list[tuple[dict[str, Any], str]] = [
            (item, "attachment") for item in records(metadata.get("attachments"))
        ]
        raw_items.extend(
            (part, "image")
            for part in records(content.get("parts"))
            if isinstance(part.get("asset_pointer"), str)
        )

        attachments = []
        for raw, default_kind in raw_items:
            pointer = raw.get("asset_pointer") if isinstance(raw.get("asset_pointer"), str) else ""
            provider_attachment_id = first_str(raw.get("id"), _strip_pointer(pointer))
            attachment_id = canonical_id(
                "att",
                self.provider,
                provider_attachment_id or None,
                seed(message_id, json.dumps(raw, sort_keys=True, ensure_ascii=False)),
            )

            url = raw.get("url") if isinstance(raw.get("url"), str) else None
            local_relpath = first_str(raw.get("path"), raw.get("local_path")) or files.find(provider_attachment_id)

            kind = raw.get("type") if isinstance(raw.get("type"), str) else None
            attachment = Attachment(
                id=attachment_id,
                provider=self.provider,
                message_id=message_id,
                provider_attachment_id=provider_attachment_id or None,
                kind=kind or default_kind,
                mime_type=first_str(raw.get("mime_type"), raw.get("mimeType")) or None,
                size_bytes=first_int(raw.get("size_bytes"), raw.get("size")),
                url=url,
                local_relpath=local_relpath or None,
                source_job_id=job_id,
                source_path=source_path,
            )
            attachment.classify()
            attachments.append(attachment)
        return attachments
