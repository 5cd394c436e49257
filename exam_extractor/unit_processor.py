"""
Unit Processor
==============
Sends one unit to the extraction service and classifies the reply:

    1. Build the unit instruction (absolute page range embedded)
    2. Call the service, retrying transport and parse failures
       with linear backoff
    3. Skip object  -> UnitSkip / DocumentSkip
       Item list    -> Items (normalized Question records)
       Retries used -> UnitError

Apart from the service call the processor has no side effects.
"""

from __future__ import annotations

import logging
import math
import re
import time
from typing import Any, Callable, Optional

from .llm_client import ExtractionRequest, ExtractionService
from .models import (
    Difficulty,
    Document,
    ExtractionContext,
    Provenance,
    Question,
    QuestionType,
    Unit,
)
from .observer import ProgressObserver
from .outcomes import DocumentSkip, Items, UnitError, UnitOutcome, UnitSkip
from .prompts import build_system_prompt, build_unit_prompt
from .response_parser import (
    ItemsResponse,
    ParsedResponse,
    SkipResponse,
    parse_response,
)
from .retry import RETRYABLE_ERRORS, call_with_retry

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8

QUESTION_TYPE_ALIASES = {
    "mcq": QuestionType.MCQ,
    "multiplechoice": QuestionType.MCQ,
    "singlechoice": QuestionType.MCQ,
    "descriptive": QuestionType.DESCRIPTIVE,
    "essay": QuestionType.DESCRIPTIVE,
    "subjective": QuestionType.DESCRIPTIVE,
    "truefalse": QuestionType.TRUE_FALSE,
    "boolean": QuestionType.TRUE_FALSE,
    "fillblank": QuestionType.FILL_IN,
    "fillintheblank": QuestionType.FILL_IN,
    "fillin": QuestionType.FILL_IN,
    "integer": QuestionType.INTEGER,
    "numerical": QuestionType.INTEGER,
    "numeric": QuestionType.INTEGER,
    "matching": QuestionType.MATCHING,
    "matchthefollowing": QuestionType.MATCHING,
}

PAGE_KEYS = ("pageNumber", "page", "page_no", "pageNo", "page_number")
TEXT_KEYS = ("questionText", "text", "question", "question_text")

_NON_ALNUM = re.compile(r"[^a-z0-9]")


# ─── Field Normalization ──────────────────────────────────────────────────────


def map_question_type(value: Any) -> QuestionType:
    """Coerce a reported type; anything unrecognized becomes MCQ."""
    if isinstance(value, QuestionType):
        return value
    key = _NON_ALNUM.sub("", str(value or "").lower())
    return QUESTION_TYPE_ALIASES.get(key, QuestionType.MCQ)


def map_difficulty(value: Any) -> Difficulty:
    if value is None or (isinstance(value, str) and not value.strip()):
        return Difficulty.MEDIUM
    try:
        return Difficulty(str(value).strip().lower())
    except ValueError:
        return Difficulty.UNKNOWN


def coerce_confidence(value: Any) -> float:
    """Numeric values are clamped to [0, 1]; anything else defaults."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_CONFIDENCE
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(number):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, number))


def coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def normalize_page(raw_page: Any, unit: Unit) -> int:
    """
    Map a reported page to document-absolute coordinates.

    Values inside ``[1, unit.length]`` are taken as unit-relative and
    shifted; other positive values are trusted as already absolute.
    """
    page = coerce_int(raw_page)
    if page is None or page < 1:
        return unit.from_page
    if page <= unit.length:
        return unit.from_page + page - 1
    return page


def _first(raw: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _string_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    return []


def normalize_item(
    raw: dict,
    unit: Unit,
    document: Document,
    position: int,
    exam_key: Optional[str] = None,
    year: Optional[str] = None,
) -> Optional[Question]:
    """
    Build a Question from one raw item. Returns None when the item
    carries no question text.
    """
    text = _first(raw, TEXT_KEYS)
    if text is None or not str(text).strip():
        return None

    page = normalize_page(_first(raw, PAGE_KEYS), unit)

    question_id = raw.get("id")
    if question_id in (None, ""):
        question_id = f"{document.stem}_u{unit.index + 1}_q{position + 1}"

    answer = _first(raw, ("correctAnswer", "answer", "correct_answer"))
    options = raw.get("options")
    if not isinstance(options, list):
        options = raw.get("choices")

    return Question(
        id=str(question_id),
        text=str(text).strip(),
        options=_string_list(options) if isinstance(options, list) else [],
        answer=str(answer) if answer is not None else None,
        question_type=map_question_type(
            _first(raw, ("questionType", "type", "question_type"))
        ),
        subject=str(raw.get("subject") or "Unknown"),
        topics=_string_list(raw.get("topics")),
        difficulty=map_difficulty(raw.get("difficulty")),
        extra_tags=_string_list(
            _first(raw, ("extraTags", "extra_tags", "tags"))
        ),
        confidence=coerce_confidence(raw.get("confidence")),
        exam_key=str(raw.get("examKey") or exam_key or "") or None,
        year=str(raw.get("year") or year or "") or None,
        file_name=document.identifier,
        page_number=page,
        provenance=Provenance(
            source=document.path,
            file_name=document.identifier,
            page_number=page,
            char_offset_start=coerce_int(
                _first(raw, ("charOffsetStart", "char_offset_start"))
            ),
            char_offset_end=coerce_int(
                _first(raw, ("charOffsetEnd", "char_offset_end"))
            ),
        ),
    )


# ─── Processor ────────────────────────────────────────────────────────────────


class UnitProcessor:
    """
    Processes the units of one document. Instances are callable with
    the ``(unit, index)`` signature expected by the dispatcher.
    """

    def __init__(
        self,
        service: ExtractionService,
        document: Document,
        context: ExtractionContext,
        total_pages: int,
        max_retries: int = 1,
        retry_base_delay: float = 1.0,
        unit_delay: float = 0.0,
        sleep: Optional[Callable[[float], None]] = None,
        observer: Optional[ProgressObserver] = None,
    ):
        self.service = service
        self.document = document
        self.context = context
        self.total_pages = total_pages
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.unit_delay = unit_delay
        self.sleep = sleep or time.sleep
        self.observer = observer or ProgressObserver()

        self.exam_key = document.category_key or context.primary_key
        self.year = document.detected_year or context.year
        self.system_prompt = build_system_prompt(
            context, document.detected_year
        )

    def __call__(self, unit: Unit, index: int) -> UnitOutcome:
        if index > 0 and self.unit_delay > 0:
            self.sleep(self.unit_delay)
        return self.process(unit)

    def process(self, unit: Unit) -> UnitOutcome:
        request = ExtractionRequest(
            system_prompt=self.system_prompt,
            user_prompt=build_unit_prompt(
                self.document.identifier, unit, self.total_pages
            ),
            document_b64=unit.encoded(),
            context=self.context,
        )
        attempts = 0

        def _attempt() -> ParsedResponse:
            nonlocal attempts
            attempts += 1
            logger.info(
                f"{self.document.identifier}: sending {unit.label} "
                f"(attempt {attempts})"
            )
            self.observer.on_unit_attempt(self.document.identifier, unit, attempts)
            return parse_response(self.service.extract(request))

        try:
            parsed = call_with_retry(
                _attempt,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                sleep=self.sleep,
            )
        except RETRYABLE_ERRORS as e:
            logger.warning(
                f"{self.document.identifier}: {unit.label} failed after "
                f"{attempts} attempt(s): {e}"
            )
            outcome: UnitOutcome = UnitError(unit=unit, message=str(e))
        else:
            outcome = self._classify(parsed, unit)

        self.observer.on_unit_done(self.document.identifier, outcome)
        return outcome

    def _classify(self, parsed: ParsedResponse, unit: Unit) -> UnitOutcome:
        if isinstance(parsed, SkipResponse):
            logger.info(
                f"{self.document.identifier}: {unit.label} skipped "
                f"({parsed.scope}): {parsed.reason}"
            )
            if parsed.is_document_scope:
                return DocumentSkip(unit=unit, reason=parsed.reason)
            return UnitSkip(unit=unit, reason=parsed.reason)

        if isinstance(parsed, ItemsResponse):
            questions = []
            for position, raw in enumerate(parsed.items):
                question = normalize_item(
                    raw,
                    unit,
                    self.document,
                    position,
                    exam_key=self.exam_key,
                    year=self.year,
                )
                if question is not None:
                    questions.append(question)

            dropped = len(parsed.items) - len(questions)
            if dropped:
                logger.warning(
                    f"{self.document.identifier}: {unit.label} dropped "
                    f"{dropped} item(s) without question text"
                )
            logger.info(
                f"{self.document.identifier}: {unit.label} returned "
                f"{len(questions)} question(s)"
            )
            return Items(unit=unit, questions=questions)

        raise TypeError(f"Unhandled response kind: {type(parsed).__name__}")
