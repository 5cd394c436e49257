"""
Prompt Templates
================
System prompt describing the exam context, output schema and the skip
contract, plus the per-unit instruction that pins the absolute page range.
"""

from __future__ import annotations

from typing import Optional

from .models import ExtractionContext, Unit

SYSTEM_PROMPT_TEMPLATE = """You are an expert in analyzing {display_name} examination PDFs. Your job is to extract all questions and provide structured JSON.

EXAM CONTEXT:
- Exam: {display_name}{keys}
- Year: {year}{year_info}
- Known Subjects: {subjects}
- Common Topics: {topics}

CONTENT VERIFICATION:
Before extracting, check that the visible pages belong to this exam{year_clause}.
If they do not, return ONLY this JSON object instead of questions:
{{"skip": true, "scope": "document", "reason": "<short reason>"}}
Use "scope": "chunk" instead when only these pages should be skipped
(for example an answer-key-only section, instructions or a syllabus),
but the rest of the document may still contain relevant questions.

INSTRUCTIONS:
1. Read the provided PDF pages carefully and extract every question.
2. For each question return: questionText, options (if any), correctAnswer (if present), pageNumber, questionType, subject, topics, difficulty, confidence (0-1).
3. questionType is one of: MCQ, Descriptive, TrueFalse, FillIn, Integer, Matching.
4. difficulty is one of: easy, medium, hard.
5. Return VALID JSON (either an array or an object with a "questions" array). Do NOT include commentary outside JSON.

RESPONSE FORMAT EXAMPLE:
{{
  "questions": [
    {{
      "questionNumber": 1,
      "pageNumber": 12,
      "questionText": "....",
      "questionType": "MCQ",
      "options": ["A", "B", "C", "D"],
      "correctAnswer": "B",
      "subject": "Quantitative Aptitude",
      "topics": ["Percentages"],
      "difficulty": "medium",
      "confidence": 0.85
    }}
  ]
}}

Be precise, consistent, and return only JSON."""

UNIT_PROMPT_TEMPLATE = """Please analyze the attached PDF pages from "{file_name}" and extract ALL examination questions with tags. Return well-formed JSON matching the system prompt schema.

NOTE: This request contains pages {from_page}-{to_page} of the original document ({total_pages} pages in total). Page numbers in your answer must refer to the original document, i.e. between {from_page} and {to_page}."""


def build_system_prompt(
    context: ExtractionContext,
    detected_year: Optional[str] = None,
) -> str:
    year_info = ""
    year_clause = ""
    if context.allowed_years:
        years = ", ".join(sorted(context.allowed_years))
        year_info = f"\n- Target Years: {years}"
        year_clause = f" and to one of the years {years}"
        if detected_year:
            year_info += f"\n- Detected Year: {detected_year}"

    keys = ""
    if context.exam_keys:
        keys = f" ({', '.join(sorted(context.exam_keys)).upper()})"

    return SYSTEM_PROMPT_TEMPLATE.format(
        display_name=context.display_name,
        keys=keys,
        year=context.year or "Not specified",
        year_info=year_info,
        year_clause=year_clause,
        subjects=", ".join(context.known_subjects) or "Not specified",
        topics=", ".join(context.common_topics) or "Not specified",
    )


def build_unit_prompt(file_name: str, unit: Unit, total_pages: int) -> str:
    return UNIT_PROMPT_TEMPLATE.format(
        file_name=file_name,
        from_page=unit.from_page,
        to_page=unit.to_page,
        total_pages=total_pages,
    )
