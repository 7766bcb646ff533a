"""Utility helpers for identifier normalization and batching."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from collections.abc import Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")

DOI_PATTERN = re.compile(r"(10\.\d{4,9}/[\w.;()/:<>+-]+)", flags=re.IGNORECASE)
PMC_PREFIX_PATTERN = re.compile(r"^PMC", flags=re.IGNORECASE)


def extract_doi(identifier: str | None) -> str | None:
    """Return a normalized DOI if the identifier contains one."""
    if not identifier:
        return None
    match = DOI_PATTERN.search(identifier.strip())
    if not match:
        return None
    return match.group(1).lower()


def strip_pmc_prefix(pmcid: str) -> str:
    """``PMC1234567`` and ``pmc1234567`` both become ``1234567``."""
    return PMC_PREFIX_PATTERN.sub("", pmcid.strip())


def normalize_pmcid(pmcid: str) -> str:
    """Canonical upper-case ``PMC``-prefixed form used as a lookup key."""
    return f"PMC{strip_pmc_prefix(pmcid)}".upper()


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def utcnow() -> datetime:
    """Timezone-aware current UTC time; stored timestamps are never naive."""
    return datetime.now(timezone.utc)
