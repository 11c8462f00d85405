"""Extractors for provider chat-export payloads."""

from .base import Extractor, ExtractorRegistry, RecordCollector
from .chatgpt import ChatGPTExtractor
from .claude import ClaudeExtractor
from .cursor import CursorExtractor
from .gemini import GeminiExtractor

__all__ = [
    "ChatGPTExtractor",
    "ClaudeExtractor",
    "CursorExtractor",
    "Extractor",
    "ExtractorRegistry",
    "GeminiExtractor",
    "RecordCollector",
]

# Register extractors
ExtractorRegistry.register(ChatGPTExtractor())
ExtractorRegistry.register(ClaudeExtractor())
ExtractorRegistry.register(GeminiExtractor())
ExtractorRegistry.register(CursorExtractor())
