"""Token cost approximation for context budgeting."""

from __future__ import annotations

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per 4 characters, rounded up.

    Deterministic and monotonic in the length of ``text``; the empty string
    costs zero.
    """
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


def chars_for_tokens(tokens: int) -> int:
    """Largest character count whose estimate fits within ``tokens``."""
    return max(tokens, 0) * CHARS_PER_TOKEN
