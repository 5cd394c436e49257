"""
Response Parser
===============
Interprets the free-text reply of the extraction service.

A reply must contain exactly one structured JSON value:
    - a skip object:  {"skip": true, "scope": "document"|"chunk", "reason": ...}
    - an array of question objects
    - an object with a "questions" / "items" array (or any array field)

Skip objects are recognized before any item parsing and take
precedence over items appearing in the same value.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Union

from .exceptions import ResponseParseError

logger = logging.getLogger(__name__)

FENCED_BLOCK_PATTERN = re.compile(
    r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE
)

YEAR_MISMATCH_PATTERN = re.compile(
    r"\byears?\b.*\b(mismatch|not match|doesn't match|does not match|"
    r"not in|outside|different|wrong|not allowed)\b"
    r"|\b(mismatch|wrong|different)\b.*\byears?\b",
    re.IGNORECASE,
)

DOCUMENT_SCOPES = {"document", "doc", "file", "pdf"}
CHUNK_SCOPES = {"chunk", "unit", "section", "pages", "page"}

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class SkipResponse:
    scope: str
    reason: str

    @property
    def is_document_scope(self) -> bool:
        return self.scope == "document"


@dataclass(frozen=True)
class ItemsResponse:
    items: list[dict[str, Any]] = field(default_factory=list)


ParsedResponse = Union[SkipResponse, ItemsResponse]


def _candidates(text: str) -> Iterator[Any]:
    for match in FENCED_BLOCK_PATTERN.finditer(text):
        try:
            yield json.loads(match.group(1))
        except json.JSONDecodeError:
            continue

    for index, char in enumerate(text):
        if char not in "[{":
            continue
        try:
            value, _ = _decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        yield value


def _item_list(value: Any) -> Optional[list[Any]]:
    try:
        return find_items(value)
    except ResponseParseError:
        return None


def extract_json(text: str) -> Any:
    """
    Locate the structured value in ``text``: fenced blocks first, then
    every ``[`` / ``{`` position that decodes as JSON.

    The first skip object, or item list holding at least one object,
    wins. Values like ``[2]`` in surrounding prose are passed over. An
    empty item list is returned only when nothing better is found.

    Raises:
        ResponseParseError: If no usable JSON value can be found.
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty response from extraction service")

    empty = None
    for value in _candidates(text):
        if is_skip_object(value):
            return value
        items = _item_list(value)
        if items is None:
            continue
        if any(isinstance(item, dict) for item in items):
            return value
        if not items and empty is None:
            empty = value

    if empty is not None:
        return empty
    raise ResponseParseError("No usable JSON found in service response")


def is_skip_object(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    flag = value.get("skip")
    if isinstance(flag, str):
        return flag.strip().lower() in {"true", "yes", "1"}
    return bool(flag)


def classify_scope(scope: Optional[str], reason: str) -> str:
    """
    Resolve a skip scope. An explicit scope wins; otherwise a reason
    describing a year mismatch means the whole document, anything else
    only the current chunk.
    """
    if isinstance(scope, str):
        normalized = scope.strip().lower()
        if normalized in DOCUMENT_SCOPES:
            return "document"
        if normalized in CHUNK_SCOPES:
            return "chunk"
    if YEAR_MISMATCH_PATTERN.search(reason or ""):
        return "document"
    return "chunk"


def find_items(value: Any) -> list[Any]:
    """Locate the question list in a parsed value."""
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in ("questions", "items"):
            if isinstance(value.get(key), list):
                return value[key]
        for item in value.values():
            if isinstance(item, list):
                return item
    raise ResponseParseError(
        "Parsed response does not contain a questions array"
    )


def parse_response(text: str) -> ParsedResponse:
    """Turn raw service text into a skip or an item list."""
    value = extract_json(text)

    # A lone skip object wrapped in a list is still a skip.
    candidate = value
    if isinstance(value, list) and len(value) == 1:
        candidate = value[0]

    if is_skip_object(candidate):
        reason = str(candidate.get("reason") or "no reason given").strip()
        scope = classify_scope(candidate.get("scope"), reason)
        return SkipResponse(scope=scope, reason=reason)

    raw_items = find_items(value)
    items = [item for item in raw_items if isinstance(item, dict)]
    dropped = len(raw_items) - len(items)
    if dropped:
        logger.warning(f"Ignored {dropped} non-object entries in response")
    return ItemsResponse(items=items)
