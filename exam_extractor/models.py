"""
Data Models
===========
Pydantic models for extraction input, per-question records and
per-document / per-batch results. Everything that leaves the pipeline
is serializable to JSON.
"""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from pydantic import (
    BaseModel,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from .filters import detect_category_key, extract_year, normalize_year


# ─── Enums ────────────────────────────────────────────────────────────────────


class QuestionType(str, Enum):
    """Supported question formats."""
    MCQ = "MCQ"
    DESCRIPTIVE = "Descriptive"
    TRUE_FALSE = "TrueFalse"
    FILL_IN = "FillIn"
    INTEGER = "Integer"
    MATCHING = "Matching"


class Difficulty(str, Enum):
    """Difficulty rating reported by the extraction service."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    UNKNOWN = "unknown"


class SkipStage(str, Enum):
    """Which filtering stage excluded a document."""
    PRE_FILTER = "pre_filter"
    CONTENT = "content"
    STRICT_EMPTY = "strict_empty"


# ─── Input Value Objects ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Document:
    """One input PDF, read once at pipeline start."""

    identifier: str
    path: str
    content: bytes
    detected_year: Optional[str] = None
    category_key: Optional[str] = None

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        context: Optional[ExtractionContext] = None,
    ) -> Document:
        """Read a PDF and derive year / category hints from its file name."""
        path = os.path.abspath(str(path))
        identifier = os.path.basename(path)
        with open(path, "rb") as f:
            content = f.read()
        return cls(
            identifier=identifier,
            path=path,
            content=content,
            detected_year=extract_year(identifier),
            category_key=detect_category_key(identifier, context),
        )

    @property
    def stem(self) -> str:
        return Path(self.identifier).stem


@dataclass(frozen=True)
class Unit:
    """
    A contiguous page range of a Document, carried as a standalone PDF.
    Page numbers are document-absolute and 1-based (inclusive).
    """

    index: int
    from_page: int
    to_page: int
    content: bytes

    @property
    def length(self) -> int:
        return self.to_page - self.from_page + 1

    @property
    def label(self) -> str:
        return f"Unit {self.index + 1} (pages {self.from_page}-{self.to_page})"

    def encoded(self) -> str:
        """Base64 form of the unit content for the service request."""
        return base64.b64encode(self.content).decode("ascii")


# ─── Extraction Context ───────────────────────────────────────────────────────


class ExtractionContext(BaseModel):
    """
    Target exam category and filtering policy.

    Only ``allowed_years`` and ``strict_filtering`` affect control flow;
    the remaining fields are passed into the service prompt.
    """
    exam_name: str = ""
    exam_keys: set[str] = Field(default_factory=set)
    full_name: str = ""
    year: Optional[str] = None
    description: str = ""
    known_subjects: list[str] = Field(default_factory=list)
    common_topics: list[str] = Field(default_factory=list)
    allowed_years: set[str] = Field(default_factory=set)
    strict_filtering: bool = False

    @field_validator("exam_keys", mode="before")
    @classmethod
    def _normalize_exam_keys(cls, value):
        # Profiles may give a single key, a list, or a space/comma list.
        if value is None:
            return set()
        if isinstance(value, str):
            value = [value]
        tokens = set()
        for item in value:
            for token in str(item).replace(",", " ").split():
                tokens.add(token.strip().lower())
        return {t for t in tokens if t}

    @field_validator("allowed_years", mode="before")
    @classmethod
    def _normalize_allowed_years(cls, value):
        if value is None:
            return set()
        if isinstance(value, (str, int)):
            value = [value]
        return {normalize_year(str(y).strip()) for y in value if str(y).strip()}

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        if self.exam_name:
            return self.exam_name
        if self.exam_keys:
            return " ".join(sorted(self.exam_keys)).upper()
        return "Competitive Examination"

    @property
    def primary_key(self) -> Optional[str]:
        if not self.exam_keys:
            return None
        return sorted(self.exam_keys)[0]

    def matches_category(self, text: str) -> bool:
        """True when every exam key token occurs in ``text``."""
        lowered = text.lower()
        return all(token in lowered for token in self.exam_keys)


# ─── Question Model ───────────────────────────────────────────────────────────


class Provenance(BaseModel):
    """Where a question was found."""
    source: str = ""
    file_name: str = ""
    page_number: int = Field(ge=1)
    char_offset_start: Optional[int] = None
    char_offset_end: Optional[int] = None


class Question(BaseModel):
    """A single extracted exam question with its tags."""
    id: str
    text: str
    options: list[str] = Field(default_factory=list)
    answer: Optional[str] = None
    question_type: QuestionType = QuestionType.MCQ
    subject: str = "Unknown"
    topics: list[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.MEDIUM
    extra_tags: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    exam_key: Optional[str] = None
    year: Optional[str] = None
    file_name: str = ""
    page_number: int = Field(ge=1)
    provenance: Provenance
    processed_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def dedup_key(self, prefix_length: int = 120) -> tuple[int, str]:
        return (self.page_number, self.text.strip()[:prefix_length])


# ─── Result Models ────────────────────────────────────────────────────────────


class DocumentMetadata(BaseModel):
    """Bookkeeping for one processed (or skipped) document."""
    exam_key: Optional[str] = None
    year: Optional[str] = None
    total_pages: int = 0
    total_units: int = 0
    total_questions: int = 0
    processing_time: float = 0.0
    skipped_reason: Optional[str] = None
    skip_stage: Optional[SkipStage] = None


class DocumentResult(BaseModel):
    """Outcome of processing one document."""
    success: bool = False
    file_name: str
    file_path: str = ""
    questions: list[Question] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    skip_notes: list[str] = Field(default_factory=list)
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)

    @model_validator(mode="after")
    def _skipped_documents_are_empty(self):
        if self.metadata.skipped_reason:
            if self.questions:
                raise ValueError("skipped document cannot carry questions")
            if self.success:
                raise ValueError("skipped document cannot be successful")
        return self

    @property
    def skipped(self) -> bool:
        return bool(self.metadata.skipped_reason)


class BatchResult(BaseModel):
    """Aggregate over all documents of one run."""
    success: bool = False
    results: list[DocumentResult] = Field(default_factory=list)
    files_found: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    files_succeeded: int = 0
    files_failed: int = 0
    total_questions: int = 0
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_results(
        cls,
        results: list[DocumentResult],
        files_found: Optional[int] = None,
        errors: Optional[list[str]] = None,
    ) -> BatchResult:
        """Fold document results into batch counts."""
        processed = [r for r in results if not r.skipped]
        skipped = [r for r in results if r.skipped]
        succeeded = [r for r in processed if r.success]

        all_errors = list(errors or [])
        for r in results:
            all_errors.extend(f"{r.file_name}: {e}" for e in r.errors)

        return cls(
            success=len(succeeded) > 0,
            results=results,
            files_found=len(results) if files_found is None else files_found,
            files_processed=len(processed),
            files_skipped=len(skipped),
            files_succeeded=len(succeeded),
            files_failed=len(processed) - len(succeeded),
            total_questions=sum(len(r.questions) for r in succeeded),
            errors=all_errors,
        )

    def all_questions(self) -> list[Question]:
        """Questions of all successful documents, in document order."""
        return [
            q
            for r in self.results
            if r.success and not r.skipped
            for q in r.questions
        ]


class QuestionStatistics(BaseModel):
    """Counts over a set of extracted questions."""
    total_questions: int = 0
    by_subject: dict[str, int] = Field(default_factory=dict)
    by_difficulty: dict[str, int] = Field(default_factory=dict)
    by_question_type: dict[str, int] = Field(default_factory=dict)
    top_topics: list[dict[str, Union[str, int]]] = Field(default_factory=list)
    average_confidence: float = 0.0
    questions_with_options: int = 0
    questions_with_answers: int = 0
    exam_keys: list[str] = Field(default_factory=list)
    years: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def answer_coverage(self) -> float:
        if self.total_questions == 0:
            return 0.0
        return round(
            self.questions_with_answers / self.total_questions * 100, 2
        )
