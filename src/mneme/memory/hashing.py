"""Content hashing for memory deduplication.

Two texts that differ only in case or whitespace produce the same hash.
"""

import hashlib
import re

from mneme.errors import EmptyInputError

_WHITESPACE = re.compile(r"\s+")
_HASH_PATTERN = re.compile(r"[a-f0-9]{64}", re.IGNORECASE)


def normalize_text(text: str) -> str:
    """Trim, lowercase, and collapse every whitespace run to a single space."""
    return _WHITESPACE.sub(" ", text.strip().lower())


def hash_content(text: str) -> str:
    """Return the SHA-256 hex digest of the normalized text.

    Raises:
        EmptyInputError: If text is empty, not a string, or blank once normalized.
    """
    if not isinstance(text, str) or not text:
        raise EmptyInputError("Content must be a non-empty string")

    normalized = normalize_text(text)
    if not normalized:
        raise EmptyInputError("Content is empty after normalization")

    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def is_valid_hash(value: object) -> bool:
    """Check whether value looks like a hash produced by hash_content."""
    return isinstance(value, str) and _HASH_PATTERN.fullmatch(value) is not None
