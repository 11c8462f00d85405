"""Tests for the Cursor extractor."""

import json
from pathlib import Path

import pytest

from chat_strata.errors import ExtractionFailure
from chat_strata.importer.extractors.cursor import CursorExtractor, split_turns

TRANSCRIPT = """# Refactor the parser

## User
How do I split this function?

**Assistant**
Extract the loop body first.

User:
Thanks.

> AI:
You're welcome.
"""


class TestSplitTurns:
    """Tests for split_turns function."""

    def test_header_styles(self) -> None:
        turns = split_turns(TRANSCRIPT)
        assert [(t.role, t.text) for t in turns] == [
            ("user", "How do I split this function?"),
            ("assistant", "Extract the loop body first."),
            ("user", "Thanks."),
            ("assistant", "You're welcome."),
        ]

    def test_multiline_body_kept(self) -> None:
        turns = split_turns("### Assistant\nline one\n\n```python\nx = 1\n```\n")
        assert turns[0].text == "line one\n\n```python\nx = 1\n```"

    def test_preamble_and_empty_turns_dropped(self) -> None:
        turns = split_turns("Exported from Cursor\n\n## User\n\n## Assistant\nonly answer\n")
        assert [(t.role, t.text) for t in turns] == [("assistant", "only answer")]

    def test_inline_markers_fallback(self) -> None:
        turns = split_turns("User: what is 2+2?\nAssistant: 4")
        assert [(t.role, t.text) for t in turns] == [("user", "what is 2+2?"), ("assistant", "4")]

    def test_crlf(self) -> None:
        turns = split_turns("## User\r\nhello\r\n## Cursor\r\nhi\r\n")
        assert [(t.role, t.text) for t in turns] == [("user", "hello"), ("assistant", "hi")]

    def test_no_roles(self) -> None:
        assert split_turns("# Notes\n\nJust some notes.") == []


class TestCursorExtractor:
    """Tests for CursorExtractor."""

    def test_markdown_transcript(self, tmp_path: Path) -> None:
        (tmp_path / "chats").mkdir()
        (tmp_path / "chats" / "refactor.md").write_text(TRANSCRIPT)
        result = CursorExtractor().extract(tmp_path, "job_1", "raw/cursor/2026/01/job_1/extracted")

        assert len(result.conversations) == 1
        conv = result.conversations[0]
        assert conv.id == "cursor:cnv:cursor_md_chats_refactor_md"
        assert conv.title == "Refactor the parser"
        assert conv.source_path == "raw/cursor/2026/01/job_1/extracted/chats/refactor.md"

        assert [m.role for m in result.messages] == ["user", "assistant", "user", "assistant"]
        assert all(m.conversation_id == conv.id for m in result.messages)
        assert all(m.provider_message_id is None for m in result.messages)
        assert result.attachments == []

    def test_markdown_title_falls_back_to_stem(self, tmp_path: Path) -> None:
        (tmp_path / "session-42.md").write_text("## User\nhi\n")
        result = CursorExtractor().extract(tmp_path, "job_1")
        assert result.conversations[0].title == "session-42"

    def test_transcript_ids_stable(self, tmp_path: Path) -> None:
        (tmp_path / "chat.md").write_text(TRANSCRIPT)
        first = [m.id for m in CursorExtractor().extract(tmp_path, "job_1").messages]
        second = [m.id for m in CursorExtractor().extract(tmp_path, "job_2").messages]
        assert first == second
        assert len(set(first)) == 4

    def test_json_conversations(self, tmp_path: Path) -> None:
        (tmp_path / "export.json").write_text(
            json.dumps(
                {
                    "conversations": [
                        {
                            "id": "tab-1",
                            "title": "Fix tests",
                            "createdAt": 1767225600000,
                            "messages": [
                                {"id": "b1", "role": "user", "text": "why does this fail?"},
                                {"id": "b2", "role": "assistant", "text": "", "model": "claude-sonnet"},
                                {"id": "b3", "role": "assistant", "text": "A missing import.", "model": "gpt-5"},
                            ],
                        }
                    ]
                }
            )
        )
        result = CursorExtractor().extract(tmp_path, "job_1")
        conv = result.conversations[0]
        assert conv.id == "cursor:cnv:tab-1"
        assert conv.created_at == "2026-01-01T00:00:00.000Z"
        assert [m.id for m in result.messages] == ["cursor:msg:b1", "cursor:msg:b3"]
        assert result.messages[1].model == "gpt-5"

    def test_wrapped_flat_messages(self, tmp_path: Path) -> None:
        (tmp_path / "chat.json").write_text(json.dumps({"items": [{"role": "user", "text": "hi"}]}))
        result = CursorExtractor().extract(tmp_path, "job_1")
        assert [c.id for c in result.conversations] == ["cursor:cnv:cursor_chat_json_0"]
        assert [m.text for m in result.messages] == ["hi"]

    def test_json_and_markdown_together(self, tmp_path: Path) -> None:
        (tmp_path / "a.json").write_text(json.dumps([{"role": "user", "text": "from json"}]))
        (tmp_path / "b.md").write_text("## User\nfrom markdown\n")
        result = CursorExtractor().extract(tmp_path, "job_1")
        assert len(result.conversations) == 2
        assert sorted(m.text for m in result.messages) == ["from json", "from markdown"]

    def test_markdown_without_roles_warns(self, tmp_path: Path) -> None:
        (tmp_path / "notes.md").write_text("# Notes\n\nnothing attributed")
        result = CursorExtractor().extract(tmp_path, "job_1")
        assert result.conversations == []
        assert result.warnings == [
            "No conversations parsed from Cursor export payload.",
            "No messages parsed from Cursor export payload.",
        ]

    def test_no_payload_files(self, tmp_path: Path) -> None:
        (tmp_path / "image.png").write_bytes(b"\x89PNG")
        with pytest.raises(ExtractionFailure):
            CursorExtractor().extract(tmp_path, "job_1")
