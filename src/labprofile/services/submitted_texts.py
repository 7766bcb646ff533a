"""Validation for the free-text priorities researchers attach to a profile."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from labprofile.models import UserSubmittedText
from labprofile.utils import utcnow

MAX_ENTRIES = 5
MAX_WORDS_PER_ENTRY = 2000


def count_words(text: str) -> int:
    return len(text.split())


def validate_submitted_texts(entries: Sequence[UserSubmittedText]) -> list[str]:
    """Human-readable problems with ``entries``; empty when they can be saved."""
    errors: list[str] = []
    if len(entries) > MAX_ENTRIES:
        errors.append(f"Maximum {MAX_ENTRIES} submitted texts allowed (currently {len(entries)}).")
    for index, entry in enumerate(entries, start=1):
        if not entry.label.strip():
            errors.append(f"Entry {index}: label is required.")
        if not entry.content.strip():
            errors.append(f"Entry {index}: content is required.")
            continue
        words = count_words(entry.content)
        if words > MAX_WORDS_PER_ENTRY:
            errors.append(
                f"Entry {index}: content exceeds {MAX_WORDS_PER_ENTRY} word limit (currently {words})."
            )
    return errors


def to_stored_entries(
    entries: Sequence[UserSubmittedText], submitted_at: datetime | None = None
) -> list[dict[str, Any]]:
    stamp = (submitted_at or utcnow()).isoformat()
    return [
        {"label": entry.label.strip(), "content": entry.content.strip(), "submitted_at": stamp}
        for entry in entries
    ]
