"""
Filtering Policy
================
Deterministic pre-filter applied before any unit is dispatched.

A candidate year is derived from the document identifier and checked
against the allowed years of the extraction context:

    allowed years empty           -> process
    year found, allowed           -> process
    year found, not allowed       -> skip ("year mismatch")
    no year, strict disabled      -> process
    no year, strict enabled       -> skip

The second filtering stage (content verification) happens in-band,
inside the extraction call itself; see ``prompts`` and ``response_parser``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import ExtractionContext

logger = logging.getLogger(__name__)

# ─── Year Patterns ────────────────────────────────────────────────────────────

# Digit lookarounds instead of \b so "ssc_cgl_2023" still matches.
YEAR_PATTERNS = [
    re.compile(r"(?<!\d)((?:19|20)\d{2})(?!\d)"),
    re.compile(r"(?<!\d)(\d{2})(?!\d)"),
    re.compile(r"year[_-]?(\d{2,4})", re.IGNORECASE),
    re.compile(r"(\d{4})[_-]?paper", re.IGNORECASE),
]

KNOWN_CATEGORY_KEYS = (
    "chsl", "cgl", "po", "clerk", "ssc", "ibps", "rrb", "upsc",
    "neet", "jee", "cat", "gate", "railways", "banking", "defence",
)

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class FilterDecision:
    """Result of the pre-filter for one document."""
    should_process: bool
    reason: Optional[str] = None
    detected_year: Optional[str] = None


def normalize_year(year: str) -> str:
    """Expand a 2-digit year (``<= 30`` -> 20xx, else 19xx)."""
    year = year.strip()
    if len(year) == 2 and year.isdigit():
        return f"20{year}" if int(year) <= 30 else f"19{year}"
    return year


def extract_year(identifier: str) -> Optional[str]:
    """Return the first year-like token of ``identifier``, normalized."""
    stem = Path(identifier).stem
    for pattern in YEAR_PATTERNS:
        match = pattern.search(stem)
        if match:
            return normalize_year(match.group(1))
    return None


def should_process(
    identifier: str,
    context: ExtractionContext,
) -> FilterDecision:
    """Apply the year pre-filter to a document identifier."""
    if not context.allowed_years:
        return FilterDecision(should_process=True)

    detected = extract_year(identifier)
    allowed = ", ".join(sorted(context.allowed_years))

    if detected is None:
        if context.strict_filtering:
            return FilterDecision(
                should_process=False,
                reason="no year detected, strict filtering enabled",
            )
        return FilterDecision(
            should_process=True,
            reason="no year detected, filtering disabled",
        )

    if detected in context.allowed_years:
        return FilterDecision(
            should_process=True,
            reason=f"year {detected} in allowed years: {allowed}",
            detected_year=detected,
        )

    return FilterDecision(
        should_process=False,
        reason=f"year mismatch: {detected} not in allowed years: {allowed}",
        detected_year=detected,
    )


def identifier_tokens(identifier: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT.split(Path(identifier).stem.lower()) if t]


def detect_category_key(
    identifier: str,
    context: Optional[ExtractionContext] = None,
) -> Optional[str]:
    """
    Find a category key in the identifier: configured keys first,
    then the built-in list. Falls back to the context's primary key.
    """
    tokens = identifier_tokens(identifier)
    configured = sorted(context.exam_keys) if context else []

    for key in list(configured) + list(KNOWN_CATEGORY_KEYS):
        if key in tokens:
            return key

    return context.primary_key if context else None


def precheck(
    identifiers: list[str],
    context: ExtractionContext,
) -> tuple[int, int]:
    """Estimate (to_process, to_skip) counts before dispatch."""
    decisions = [should_process(i, context) for i in identifiers]
    will_process = sum(1 for d in decisions if d.should_process)
    return will_process, len(decisions) - will_process
