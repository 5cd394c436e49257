"""
Reconciler
==========
Merges the ordered unit outcomes of one document into a DocumentResult.

    DocumentSkip  -> stop; the document is skipped, nothing is kept
    UnitSkip      -> recorded as a skip note, document continues
    UnitError     -> recorded as a document error, document continues
    Items         -> concatenated in unit order, then deduplicated

Deduplication keys on (absolute page, first N characters of text) and
keeps the first occurrence.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .models import (
    Document,
    DocumentMetadata,
    DocumentResult,
    ExtractionContext,
    Question,
    SkipStage,
)
from .outcomes import (
    DocumentSkip,
    Items,
    UnitError,
    UnitOutcome,
    UnitSkip,
    unhandled_outcome,
)

logger = logging.getLogger(__name__)

DEFAULT_DEDUP_PREFIX = 120
STRICT_EMPTY_REASON = "extraction yielded nothing under strict mode"


def deduplicate(
    questions: Sequence[Question],
    prefix_length: int = DEFAULT_DEDUP_PREFIX,
) -> list[Question]:
    """Drop questions whose (page, text prefix) key was already seen."""
    seen: set[tuple[int, str]] = set()
    unique = []
    for q in questions:
        key = q.dedup_key(prefix_length)
        if key in seen:
            continue
        seen.add(key)
        unique.append(q)
    return unique


class Reconciler:
    """Builds the DocumentResult for one document from its unit outcomes."""

    def __init__(
        self,
        context: ExtractionContext,
        dedup_prefix_length: int = DEFAULT_DEDUP_PREFIX,
    ):
        self.context = context
        self.dedup_prefix_length = dedup_prefix_length

    def reconcile(
        self,
        document: Document,
        outcomes: Sequence[UnitOutcome],
        total_pages: int = 0,
    ) -> DocumentResult:
        metadata = DocumentMetadata(
            exam_key=document.category_key or self.context.primary_key,
            year=document.detected_year or self.context.year,
            total_pages=total_pages,
            total_units=len(outcomes),
        )
        collected: list[Question] = []
        errors: list[str] = []
        skip_notes: list[str] = []

        for outcome in outcomes:
            if isinstance(outcome, DocumentSkip):
                logger.info(
                    f"{document.identifier}: document skipped by "
                    f"{outcome.unit.label}: {outcome.reason}"
                )
                metadata.skipped_reason = outcome.reason
                metadata.skip_stage = SkipStage.CONTENT
                return DocumentResult(
                    file_name=document.identifier,
                    file_path=document.path,
                    errors=errors,
                    skip_notes=skip_notes,
                    metadata=metadata,
                )
            elif isinstance(outcome, UnitSkip):
                skip_notes.append(f"{outcome.unit.label} skipped: {outcome.reason}")
            elif isinstance(outcome, UnitError):
                errors.append(f"{outcome.unit.label} failed: {outcome.message}")
            elif isinstance(outcome, Items):
                collected.extend(outcome.questions)
            else:
                unhandled_outcome(outcome)

        questions = deduplicate(collected, self.dedup_prefix_length)
        duplicates = len(collected) - len(questions)
        if duplicates:
            logger.info(
                f"{document.identifier}: removed {duplicates} duplicate "
                f"question(s)"
            )

        if not questions and self.context.strict_filtering:
            metadata.skipped_reason = STRICT_EMPTY_REASON
            metadata.skip_stage = SkipStage.STRICT_EMPTY
            return DocumentResult(
                file_name=document.identifier,
                file_path=document.path,
                errors=errors,
                skip_notes=skip_notes,
                metadata=metadata,
            )

        if not questions:
            errors.append("No questions extracted")

        metadata.total_questions = len(questions)
        return DocumentResult(
            success=len(questions) > 0,
            file_name=document.identifier,
            file_path=document.path,
            questions=questions,
            errors=errors,
            skip_notes=skip_notes,
            metadata=metadata,
        )


def reconcile(
    document: Document,
    outcomes: Sequence[UnitOutcome],
    context: ExtractionContext,
    total_pages: int = 0,
    dedup_prefix_length: Optional[int] = None,
) -> DocumentResult:
    """Functional shorthand for ``Reconciler(...).reconcile(...)``."""
    reconciler = Reconciler(
        context, dedup_prefix_length or DEFAULT_DEDUP_PREFIX
    )
    return reconciler.reconcile(document, outcomes, total_pages)
