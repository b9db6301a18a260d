"""Tests for content hashing."""

import hashlib

import pytest

from mneme.errors import EmptyInputError, ValidationError
from mneme.memory.hashing import hash_content, is_valid_hash, normalize_text


class TestNormalizeText:
    def test_trims_lowercases_and_collapses_whitespace(self):
        assert normalize_text("  Hello\n\tWORLD   again ") == "hello world again"

    def test_empty_after_trim(self):
        assert normalize_text(" \n\t ") == ""


class TestHashContent:
    """Tests for hash_content."""

    def test_is_sha256_of_normalized_text(self):
        expected = hashlib.sha256(b"paid the acme invoice").hexdigest()
        assert hash_content("Paid the Acme invoice") == expected

    def test_case_and_whitespace_insensitive(self):
        """Texts that differ only in case or whitespace share a hash."""
        assert hash_content("Hello   World") == hash_content("  hello\nworld ")

    def test_different_content_different_hash(self):
        assert hash_content("hello world") != hash_content("hello there")

    def test_output_is_64_lowercase_hex(self):
        digest = hash_content("anything at all")
        assert len(digest) == 64
        assert digest == digest.lower()
        assert is_valid_hash(digest)

    @pytest.mark.parametrize("text", ["", "   ", "\n\t  \n"])
    def test_empty_input_rejected(self, text):
        with pytest.raises(EmptyInputError):
            hash_content(text)

    def test_non_string_rejected(self):
        with pytest.raises(EmptyInputError):
            hash_content(None)  # type: ignore[arg-type]

    def test_empty_input_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            hash_content("")


class TestIsValidHash:
    def test_accepts_uppercase_hex(self):
        assert is_valid_hash("A" * 64)

    @pytest.mark.parametrize(
        "value",
        ["", "abc", "g" * 64, "a" * 63, "a" * 65, "a" * 64 + "\n", None, 42],
    )
    def test_rejects_malformed(self, value):
        assert not is_valid_hash(value)
