"""Tests for canonical identifiers."""

import hashlib

from chat_strata.identity import FALLBACK_HASH_LENGTH, canonical_id, content_hash, sanitize, seed


class TestSanitize:
    """Tests for sanitize function."""

    def test_keeps_safe_characters(self) -> None:
        """Letters, digits, underscore and hyphen should pass through."""
        assert sanitize("abc-DEF_123") == "abc-DEF_123"

    def test_replaces_unsafe_characters(self) -> None:
        """Every other character should become an underscore."""
        assert sanitize("a.b/c d:e") == "a_b_c_d_e"


class TestContentHash:
    """Tests for content_hash function."""

    def test_matches_sha256(self) -> None:
        """content_hash should be the SHA256 hex digest of UTF-8 text."""
        assert content_hash("hello") == hashlib.sha256(b"hello").hexdigest()

    def test_bytes_and_text_agree(self) -> None:
        """Text is hashed as its UTF-8 encoding."""
        assert content_hash("héllo") == content_hash("héllo".encode("utf-8"))

    def test_truncates(self) -> None:
        """length should keep only the leading hex characters."""
        assert content_hash("hello", 8) == hashlib.sha256(b"hello").hexdigest()[:8]


class TestSeed:
    """Tests for seed function."""

    def test_joins_with_colons(self) -> None:
        assert seed("cnv", 0, "user", "hi") == "cnv:0:user:hi"

    def test_none_is_empty(self) -> None:
        assert seed("a", None, "b") == "a::b"


class TestCanonicalId:
    """Tests for canonical_id function."""

    def test_uses_raw_id(self) -> None:
        """A provider-native id should be used, sanitized."""
        assert canonical_id("msg", "chatgpt", "abc.123") == "chatgpt:msg:abc_123"

    def test_raw_id_sanitized_as_given(self) -> None:
        """Surrounding whitespace is part of the raw id and becomes underscores."""
        assert canonical_id("cnv", "claude", " thread_99 ") == "claude:cnv:_thread_99_"

    def test_falls_back_to_seed_hash(self) -> None:
        """Without a raw id the token should be a truncated seed hash."""
        result = canonical_id("msg", "cursor", None, "seed-value")
        expected = hashlib.sha256(b"seed-value").hexdigest()[:FALLBACK_HASH_LENGTH]
        assert result == f"cursor:msg:{expected}"

    def test_blank_raw_id_falls_back(self) -> None:
        """A whitespace-only raw id counts as absent."""
        assert canonical_id("msg", "gemini", "   ", "s") == canonical_id("msg", "gemini", None, "s")

    def test_missing_seed_defaults(self) -> None:
        """With neither raw id nor seed the hash of "missing" is used."""
        expected = hashlib.sha256(b"missing").hexdigest()[:FALLBACK_HASH_LENGTH]
        assert canonical_id("att", "claude") == f"claude:att:{expected}"

    def test_deterministic(self) -> None:
        """Same inputs should always yield the same id."""
        first = canonical_id("msg", "chatgpt", None, seed("c", 1, "user", "hi", None))
        second = canonical_id("msg", "chatgpt", None, seed("c", 1, "user", "hi", None))
        assert first == second

    def test_different_seeds_differ(self) -> None:
        assert canonical_id("msg", "chatgpt", None, "a") != canonical_id("msg", "chatgpt", None, "b")

    def test_provider_scopes_id(self) -> None:
        """The same raw id under two providers should not collide."""
        assert canonical_id("cnv", "chatgpt", "x") != canonical_id("cnv", "claude", "x")
