"""Tests for the ChatGPT extractor."""

import json
from pathlib import Path
from typing import Any

import pytest

from chat_strata.errors import ExtractionFailure
from chat_strata.importer.extractors.chatgpt import ChatGPTExtractor, FileIndex, _ordered_nodes


def node(node_id: str, parent: str | None, children: list[str], message: dict[str, Any] | None) -> dict[str, Any]:
    return {"id": node_id, "parent": parent, "children": children, "message": message}


def chat_message(msg_id: str, role: str, parts: list[Any], **extra: Any) -> dict[str, Any]:
    message = {
        "id": msg_id,
        "author": {"role": role},
        "content": {"content_type": "text", "parts": parts},
        "create_time": 1700000000,
    }
    message.update(extra)
    return message


@pytest.fixture
def export_dir(tmp_path: Path) -> Path:
    """A ChatGPT export with one conversation, an upload and an image."""
    root = tmp_path / "extracted"
    root.mkdir()
    conversation = {
        "id": "conv-1",
        "title": "Trip planning",
        "create_time": 1700000000,
        "update_time": 1700000500.5,
        "mapping": {
            "root": node("root", None, ["u1"], None),
            "u1": node(
                "u1",
                "root",
                ["a1"],
                chat_message(
                    "msg-u1",
                    "user",
                    ["Plan a trip", {"content_type": "image_asset_pointer", "asset_pointer": "file-service://file-img1"}],
                    metadata={"attachments": [{"id": "file-doc1", "name": "itinerary.pdf", "size": 4}]},
                ),
            ),
            "a1": node(
                "a1",
                "u1",
                [],
                chat_message("msg-a1", "assistant", ["Sure, here is a plan."], metadata={"model_slug": "gpt-4o"}),
            ),
        },
    }
    (root / "conversations.json").write_text(json.dumps([conversation]))
    (root / "file-doc1-itinerary.pdf").write_bytes(b"%PDF")
    (root / "file-img1.png").write_bytes(b"\x89PNG")
    return root


class TestChatGPTExtractor:
    """Tests for ChatGPTExtractor."""

    def test_conversation(self, export_dir: Path) -> None:
        result = ChatGPTExtractor().extract(export_dir, "job_1", "raw/chatgpt/2026/01/job_1/extracted")
        assert len(result.conversations) == 1
        conv = result.conversations[0]
        assert conv.id == "chatgpt:cnv:conv-1"
        assert conv.title == "Trip planning"
        assert conv.created_at == "2023-11-14T22:13:20.000Z"
        assert conv.updated_at == "2023-11-14T22:21:40.500Z"
        assert conv.source_path == "raw/chatgpt/2026/01/job_1/extracted/conversations.json"
        assert result.warnings == []

    def test_messages_in_thread_order(self, export_dir: Path) -> None:
        result = ChatGPTExtractor().extract(export_dir, "job_1")
        assert [m.id for m in result.messages] == ["chatgpt:msg:msg-u1", "chatgpt:msg:msg-a1"]
        user, assistant = result.messages
        assert user.role == "user"
        assert user.text == "Plan a trip"
        assert assistant.model == "gpt-4o"
        assert assistant.source_job_id == "job_1"

    def test_attachments_resolved_from_file_index(self, export_dir: Path) -> None:
        result = ChatGPTExtractor().extract(export_dir, "job_1")
        by_id = {a.id: a for a in result.attachments}
        assert set(by_id) == {"chatgpt:att:file-doc1", "chatgpt:att:file-img1"}

        doc = by_id["chatgpt:att:file-doc1"]
        assert doc.local_relpath == "file-doc1-itinerary.pdf"
        assert doc.kind == "attachment"
        assert doc.size_bytes == 4
        assert (doc.storage, doc.status) == ("blob", "embedded")

        image = by_id["chatgpt:att:file-img1"]
        assert image.local_relpath == "file-img1.png"
        assert image.kind == "image"

        user = result.messages[0]
        assert user.attachment_ids == ["chatgpt:att:file-doc1", "chatgpt:att:file-img1"]

    def test_unresolvable_attachment_is_missing(self, tmp_path: Path) -> None:
        conversation = {
            "id": "c",
            "mapping": {
                "n": node("n", None, [], chat_message("m", "user", ["x"], metadata={"attachments": [{"id": "file-zz"}]}))
            },
        }
        (tmp_path / "conversations.json").write_text(json.dumps([conversation]))
        attachment = ChatGPTExtractor().extract(tmp_path, "job_1").attachments[0]
        assert (attachment.storage, attachment.status) == ("missing", "missing")

    def test_tool_role_maps_to_assistant(self, tmp_path: Path) -> None:
        conversation = {"id": "c", "mapping": {"n": node("n", None, [], chat_message("m", "tool", ["out"]))}}
        (tmp_path / "conversations.json").write_text(json.dumps([conversation]))
        assert ChatGPTExtractor().extract(tmp_path, "job_1").messages[0].role == "assistant"

    def test_conversation_array_under_other_name(self, tmp_path: Path) -> None:
        conversation = {"id": "c", "mapping": {"n": node("n", None, [], chat_message("m", "user", ["hello"]))}}
        (tmp_path / "export.json").write_text(json.dumps([conversation]))
        result = ChatGPTExtractor().extract(tmp_path, "job_1")
        assert [m.text for m in result.messages] == ["hello"]

    def test_ids_are_stable_across_runs(self, export_dir: Path) -> None:
        first = ChatGPTExtractor().extract(export_dir, "job_1")
        second = ChatGPTExtractor().extract(export_dir, "job_2")
        assert [m.id for m in first.messages] == [m.id for m in second.messages]
        assert [a.id for a in first.attachments] == [a.id for a in second.attachments]

    def test_no_usable_payload(self, tmp_path: Path) -> None:
        (tmp_path / "user.json").write_text(json.dumps({"email": "x@example.com"}))
        with pytest.raises(ExtractionFailure):
            ChatGPTExtractor().extract(tmp_path, "job_1")

    def test_empty_conversations_warn(self, tmp_path: Path) -> None:
        (tmp_path / "conversations.json").write_text("[]")
        result = ChatGPTExtractor().extract(tmp_path, "job_1")
        assert "No conversations parsed from ChatGPT export payload." in result.warnings


class TestOrderedNodes:
    """Tests for _ordered_nodes function."""

    def test_depth_first_from_each_root(self) -> None:
        mapping = {
            "detached": {"parent": "gone", "children": []},
            "root": {"parent": None, "children": ["b", "a"]},
            "a": {"parent": "root", "children": []},
            "b": {"parent": "root", "children": ["c"]},
            "c": {"parent": "b", "children": []},
        }
        order = [key for node in _ordered_nodes(mapping) for key, value in mapping.items() if value is node]
        assert order == ["detached", "root", "b", "c", "a"]

    def test_unreachable_nodes_appended(self) -> None:
        mapping = {
            "root": {"parent": None, "children": []},
            "x": {"parent": "y", "children": ["y"]},
            "y": {"parent": "x", "children": ["x"]},
        }
        order = [key for node in _ordered_nodes(mapping) for key, value in mapping.items() if value is node]
        assert order == ["root", "x", "y"]


class TestFileIndex:
    """Tests for FileIndex."""

    def test_find(self, tmp_path: Path) -> None:
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "file-abc-photo.jpg").write_bytes(b"x")
        index = FileIndex(tmp_path)
        assert index.find("file-abc") == "sub/file-abc-photo.jpg"
        assert index.find("file-ab") is None
        assert index.find("") is None
