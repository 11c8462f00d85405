"""Extractor for Cursor chat exports.

Cursor exports come either as JSON (conversation arrays, wrapped
conversations, bare message lists) or as markdown transcripts where each
turn starts with a role header:

    # Refactor the parser

    ## User
    How do I split this function?

    **Assistant**
    Extract the loop body first.

    User:
    Thanks.

    > AI:
    You're welcome.

Transcripts without header lines fall back to inline "Role: text" markers.
"""

import re
from pathlib import Path
from typing import Any

from chat_strata.errors import ExtractionFailure
from chat_strata.identity import canonical_id, sanitize, seed
from chat_strata.importer.extractors.base import Extractor, RecordCollector
from chat_strata.importer.extractors.common import (
    MARKDOWN_SUFFIXES,
    Document,
    FlatMessageList,
    MarkdownTranscript,
    NestedConversationGraph,
    Shape,
    TextDocument,
    Turn,
    bare_message_array,
    conversation_array,
    first_str,
    get_object,
    load_json_documents,
    load_text_documents,
    message_bucket,
    message_model,
    normalize_role,
    recognize,
    single_conversation,
    single_message,
    text_from_unknown,
    wrapped_conversations,
)
from chat_strata.models import Conversation, ExtractionResult, Message
from chat_strata.timestamps import to_iso

ROLE_ALIASES = {
    "assistant": "assistant",
    "ai": "assistant",
    "cursor": "assistant",
    "model": "assistant",
    "bot": "assistant",
    "user": "user",
    "human": "user",
    "you": "user",
    "me": "user",
    "system": "system",
}

BUCKET_KEYS = ("messages", "turns", "entries", "items", "chat_messages")
WRAPPER_KEYS = ("conversations", "threads", "chats", "items", "data")

_ROLE_WORDS = r"(user|assistant|ai|system|human|you|cursor)"

ROLE_HEADER_PATTERNS = (
    re.compile(rf"^#{{1,6}}\s*[^a-zA-Z0-9]*{_ROLE_WORDS}\b.*$", re.IGNORECASE),
    re.compile(rf"^\*\*{_ROLE_WORDS}\*\*:?\s*$", re.IGNORECASE),
    re.compile(rf"^{_ROLE_WORDS}\s*:\s*$", re.IGNORECASE),
    re.compile(rf"^>\s*{_ROLE_WORDS}\s*:?\s*$", re.IGNORECASE),
)

INLINE_ROLE_MARKER = re.compile(rf"(?:^|\n){_ROLE_WORDS}\s*:\s*", re.IGNORECASE)
TITLE_HEADING = re.compile(r"^#\s+(.+)$")


def _is_message(row: dict[str, Any]) -> bool:
    return any(row.get(key) for key in ("role", "author", "sender", "text", "content", "parts", "message"))


def _role_header(line: str) -> str | None:
    stripped = line.strip()
    if not stripped:
        return None
    for pattern in ROLE_HEADER_PATTERNS:
        match = pattern.match(stripped)
        if match:
            return normalize_role(match.group(1), ROLE_ALIASES)
    return None


def _first_heading(text: str) -> str | None:
    for line in text.splitlines():
        match = TITLE_HEADING.match(line.strip())
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def split_turns(text: str) -> list[Turn]:
    """Split a markdown transcript into role-attributed turns.

    Lines before the first role header are ignored. Turns with an empty
    body are dropped.
    """
    turns: list[Turn] = []
    role: str | None = None
    buffer: list[str] = []

    def flush() -> None:
        body = "\n".join(buffer).strip()
        if role and body:
            turns.append(Turn(role=role, text=body))

    for line in text.replace("\r\n", "\n").split("\n"):
        header = _role_header(line)
        if header:
            flush()
            role, buffer = header, []
        elif role:
            buffer.append(line)
    flush()

    if turns:
        return turns

    markers = list(INLINE_ROLE_MARKER.finditer(text))
    for i, marker in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
        body = text[marker.end():end].strip()
        if body:
            turns.append(Turn(role=normalize_role(marker.group(1), ROLE_ALIASES), text=body))
    return turns


def markdown_transcript(doc: Document) -> Shape | None:
    """A markdown file holding at least one role-attributed turn."""
    if not isinstance(doc, TextDocument):
        return None
    turns = split_turns(doc.text)
    if not turns:
        return None
    return MarkdownTranscript(doc, title=_first_heading(doc.text) or doc.path.stem, turns=turns)


def _raw_role(msg: dict[str, Any]) -> Any:
    author = get_object(msg.get("author")) or {}
    return msg.get("role") or msg.get("sender") or msg.get("from") or author.get("role") or author.get("type")


class CursorExtractor(Extractor):
    """Extractor for Cursor JSON exports and markdown transcripts."""

    provider = "cursor"
    label = "Cursor"

    recognizers = (
        conversation_array(BUCKET_KEYS, _is_message),
        bare_message_array(_is_message),
        wrapped_conversations(WRAPPER_KEYS, BUCKET_KEYS, _is_message, flat_fallback=True),
        single_conversation(BUCKET_KEYS, _is_message),
        single_message(_is_message),
        markdown_transcript,
    )

    def extract(self, extracted_root: Path, job_id: str, source_prefix: str = "") -> ExtractionResult:
        docs: list[Document] = [
            *load_json_documents(extracted_root),
            *load_text_documents(extracted_root, MARKDOWN_SUFFIXES),
        ]
        if not docs:
            raise ExtractionFailure("Cursor extractor found no JSON or markdown payload files.")

        collector = RecordCollector()
        for doc in docs:
            shape = recognize(doc, self.recognizers)
            source_path = self.source_path(source_prefix, doc.rel_path)

            if isinstance(shape, MarkdownTranscript):
                self._extract_transcript(shape, job_id, source_path, collector)
                continue

            if isinstance(shape, NestedConversationGraph):
                convs = [(conv, message_bucket(conv, BUCKET_KEYS, _is_message)) for conv in shape.conversations]
            elif isinstance(shape, FlatMessageList):
                convs = [({}, shape.messages)]
            else:
                continue

            for index, (conv, rows) in enumerate(convs):
                provider_conversation_id = first_str(
                    conv.get("id"), conv.get("uuid"), conv.get("conversation_id"), conv.get("thread_id")
                ) or f"cursor_{sanitize(doc.rel_path)}_{index}"
                conversation_id = canonical_id(
                    "cnv", self.provider, provider_conversation_id, provider_conversation_id
                )
                collector.add_conversation(
                    Conversation(
                        id=conversation_id,
                        provider=self.provider,
                        provider_conversation_id=provider_conversation_id,
                        title=first_str(conv.get("title"), conv.get("name")) or None,
                        created_at=to_iso(conv.get("created_at") or conv.get("createdAt") or conv.get("create_time")),
                        updated_at=to_iso(conv.get("updated_at") or conv.get("updatedAt") or conv.get("update_time")),
                        source_job_id=job_id,
                        source_path=source_path,
                    )
                )
                for ordinal, msg in enumerate(rows):
                    text = text_from_unknown(
                        msg.get("text") or msg.get("content") or msg.get("parts") or msg.get("message") or msg.get("body")
                    ).strip()
                    self._add_message(
                        conversation_id,
                        ordinal,
                        normalize_role(_raw_role(msg), ROLE_ALIASES),
                        text,
                        job_id,
                        source_path,
                        collector,
                        provider_message_id=first_str(msg.get("id"), msg.get("uuid"), msg.get("message_id")) or None,
                        model=message_model(msg),
                        created_at=to_iso(msg.get("created_at") or msg.get("createdAt") or msg.get("timestamp")),
                    )

        return collector.result(self.provider, self.label)

    def _extract_transcript(
        self,
        shape: MarkdownTranscript,
        job_id: str,
        source_path: str,
        collector: RecordCollector,
    ) -> None:
        provider_conversation_id = f"cursor_md_{sanitize(shape.document.rel_path)}"
        conversation_id = canonical_id("cnv", self.provider, provider_conversation_id, provider_conversation_id)
        collector.add_conversation(
            Conversation(
                id=conversation_id,
                provider=self.provider,
                provider_conversation_id=provider_conversation_id,
                title=shape.title,
                source_job_id=job_id,
                source_path=source_path,
            )
        )
        for ordinal, turn in enumerate(shape.turns):
            self._add_message(conversation_id, ordinal, turn.role, turn.text, job_id, source_path, collector)

    def _add_message(
        self,
        conversation_id: str,
        ordinal: int,
        role: str,
        text: str,
        job_id: str,
        source_path: str,
        collector: RecordCollector,
        provider_message_id: str | None = None,
        model: str | None = None,
        created_at: str | None = None,
    ) -> None:
        # Cursor turns without text carry nothing worth keeping
        if not text:
            return
        collector.add_message(
            Message(
                id=canonical_id(
                    "msg",
                    self.provider,
                    provider_message_id,
                    seed(conversation_id, ordinal, role, text, created_at),
                ),
                conversation_id=conversation_id,
                provider=self.provider,
                provider_message_id=provider_message_id,
                role=role,
                text=text,
                model=model,
                created_at=created_at,
                source_job_id=job_id,
                source_path=source_path,
            )
        )
