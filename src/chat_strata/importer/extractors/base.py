"""Base extractor interface and registry."""

from abc import ABC, abstractmethod
from pathlib import Path

from chat_strata.importer.dedupe import merge_attachment, merge_conversation, merge_message
from chat_strata.models import Attachment, Conversation, ExtractionResult, Message

__all__ = ["Extractor", "ExtractorRegistry", "RecordCollector"]


class RecordCollector:
    """Accumulates records for one extraction, merging duplicates by id.

    Records seen twice within the same payload set (for example a message
    present both nested in its conversation and in a flat message list) are
    merged with the same rules the upsert engine applies across jobs.
    Insertion order is preserved.
    """

    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}
        self.messages: dict[str, Message] = {}
        self.attachments: dict[str, Attachment] = {}

    def has_conversation(self, conversation_id: str) -> bool:
        return conversation_id in self.conversations

    def add_conversation(self, conversation: Conversation) -> Conversation:
        prev = self.conversations.get(conversation.id)
        if prev is not None:
            conversation = Conversation.from_record(
                merge_conversation(prev.to_record(), conversation.to_record())
            )
        self.conversations[conversation.id] = conversation
        return conversation

    def add_message(self, message: Message) -> Message:
        prev = self.messages.get(message.id)
        if prev is not None:
            message = Message.from_record(merge_message(prev.to_record(), message.to_record()))
        self.messages[message.id] = message
        return message

    def add_attachment(self, attachment: Attachment) -> Attachment:
        prev = self.attachments.get(attachment.id)
        if prev is not None:
            attachment = Attachment.from_record(
                merge_attachment(prev.to_record(), attachment.to_record())
            )
        self.attachments[attachment.id] = attachment
        return attachment

    def result(self, provider: str, label: str, warnings: list[str] | None = None) -> ExtractionResult:
        """Build the extraction result, warning when nothing was found.

        Args:
            provider: Provider name
            label: Human-readable provider name used in warnings
            warnings: Warnings collected while extracting
        """
        warnings = list(warnings or [])
        if not self.conversations:
            warnings.append(f"No conversations parsed from {label} export payload.")
        if not self.messages:
            warnings.append(f"No messages parsed from {label} export payload.")
        return ExtractionResult(
            provider=provider,
            conversations=list(self.conversations.values()),
            messages=list(self.messages.values()),
            attachments=list(self.attachments.values()),
            warnings=warnings,
        )


class Extractor(ABC):
    """Base class for provider extractors.

    Subclasses must set the `provider` and `label` class attributes and
    implement `extract()` to convert an extracted export payload into
    provisional canonical records. Extractors are pure: they read the
    extraction root and never write anywhere.
    """

    provider: str
    label: str

    @abstractmethod
    def extract(self, extracted_root: Path, job_id: str, source_prefix: str = "") -> ExtractionResult:
        """Extract canonical records from an extracted export.

        Args:
            extracted_root: Directory holding the decompressed payload
            job_id: Current job id, stamped as source_job_id
            source_prefix: Path of extracted_root relative to the data root,
                prepended to each record's source_path

        Returns:
            ExtractionResult with conversations, messages, attachments
            and warnings

        Raises:
            ExtractionFailure: If no usable payload format is present
        """

    @staticmethod
    def source_path(source_prefix: str, rel_path: str) -> str:
        if not source_prefix:
            return rel_path
        return f"{source_prefix.rstrip('/')}/{rel_path}"


class ExtractorRegistry:
    """Registry of extractors by provider name."""

    _extractors: dict[str, Extractor] = {}

    @classmethod
    def register(cls, extractor: Extractor) -> None:
        """Register an extractor."""
        cls._extractors[extractor.provider] = extractor

    @classmethod
    def get(cls, provider: str) -> Extractor | None:
        """Get extractor by provider name."""
        return cls._extractors.get(provider)

    @classmethod
    def all_providers(cls) -> list[str]:
        """List all registered provider names."""
        return list(cls._extractors.keys())
