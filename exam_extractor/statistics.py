"""
Statistics
==========
Summaries over extracted questions, for one document or a whole batch:
    - Counts by subject, difficulty and question type
    - Top topics
    - Average confidence
    - Questions with options / answers
    - Distinct exam keys and years

Also renders the human-readable summary written next to the results.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Optional, Sequence

from .models import BatchResult, DocumentResult, Question, QuestionStatistics

logger = logging.getLogger(__name__)

TOP_TOPICS_LIMIT = 20


class StatisticsEngine:
    """Computes QuestionStatistics for a list of questions."""

    def compute(
        self,
        questions: Sequence[Question],
        log_summary: bool = False,
    ) -> QuestionStatistics:
        stats = QuestionStatistics()

        if not questions:
            return stats

        stats.total_questions = len(questions)

        stats.by_subject = dict(Counter(q.subject or "Unknown" for q in questions))
        stats.by_difficulty = dict(Counter(q.difficulty.value for q in questions))
        stats.by_question_type = dict(
            Counter(q.question_type.value for q in questions)
        )

        topic_counts = Counter(t for q in questions for t in q.topics)
        stats.top_topics = [
            {"topic": topic, "count": count}
            for topic, count in topic_counts.most_common(TOP_TOPICS_LIMIT)
        ]

        stats.average_confidence = round(
            sum(q.confidence for q in questions) / len(questions), 2
        )
        stats.questions_with_options = sum(1 for q in questions if q.options)
        stats.questions_with_answers = sum(1 for q in questions if q.answer)
        stats.exam_keys = sorted({q.exam_key for q in questions if q.exam_key})
        stats.years = sorted({q.year for q in questions if q.year})

        if log_summary:
            self._log_summary(stats)

        return stats

    def _log_summary(self, stats: QuestionStatistics) -> None:
        logger.info("=" * 60)
        logger.info("QUESTION STATISTICS")
        logger.info("=" * 60)
        logger.info(f"Total Questions: {stats.total_questions}")
        logger.info(f"With Options: {stats.questions_with_options}")
        logger.info(
            f"With Answers: {stats.questions_with_answers} "
            f"({stats.answer_coverage}%)"
        )
        logger.info(f"Average Confidence: {stats.average_confidence}")
        if stats.by_question_type:
            logger.info("Question Types:")
            for qtype, count in sorted(stats.by_question_type.items()):
                logger.info(f"  • {qtype}: {count}")
        logger.info("=" * 60)


def _breakdown(title: str, counts: dict[str, int]) -> list[str]:
    lines = [f"  {title}:"]
    for key, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
        lines.append(f"    {key}: {count}")
    lines.append("")
    return lines


def render_document_summary(
    result: DocumentResult,
    stats: QuestionStatistics,
) -> str:
    """Plain-text summary for one processed document."""
    meta = result.metadata
    lines = [
        "=" * 60,
        f"EXTRACTION SUMMARY: {result.file_name}",
        "=" * 60,
        "",
        f"Status: {'success' if result.success else 'failed'}",
        f"Exam Key: {meta.exam_key or 'Unknown'}",
        f"Year: {meta.year or 'Unknown'}",
        f"Pages: {meta.total_pages}",
        f"Units: {meta.total_units}",
        f"Questions: {stats.total_questions}",
        f"Processing Time: {meta.processing_time:.1f}s",
        "",
    ]
    lines += _breakdown("Question Types", stats.by_question_type)
    lines += _breakdown("Subjects", stats.by_subject)
    lines += _breakdown("Difficulty", stats.by_difficulty)

    if result.skip_notes:
        lines.append("SKIPPED UNITS:")
        lines += [f"  - {note}" for note in result.skip_notes]
        lines.append("")
    if result.errors:
        lines.append("ERRORS:")
        lines += [f"  - {error}" for error in result.errors]
        lines.append("")

    lines.append("=" * 60)
    return "\n".join(lines)


def render_batch_summary(
    batch: BatchResult,
    stats: QuestionStatistics,
    input_dir: Optional[str] = None,
    output_dir: Optional[str] = None,
) -> str:
    """Plain-text summary for a whole run."""
    success_rate = (
        batch.files_succeeded / batch.files_processed * 100
        if batch.files_processed
        else 0.0
    )
    avg_per_file = (
        batch.total_questions / batch.files_succeeded
        if batch.files_succeeded
        else 0.0
    )
    lines = [
        "=" * 60,
        "EXAM QUESTION EXTRACTION SUMMARY",
        "=" * 60,
        "",
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if input_dir:
        lines.append(f"Input Directory: {input_dir}")
    if output_dir:
        lines.append(f"Output Directory: {output_dir}")
    lines += [
        "",
        "PDF PROCESSING:",
        f"  Files Found: {batch.files_found}",
        f"  Processed: {batch.files_processed}",
        f"  Skipped: {batch.files_skipped}",
        f"  Successful: {batch.files_succeeded}",
        f"  Failed: {batch.files_failed}",
        f"  Success Rate: {success_rate:.1f}%",
        f"  Total Questions: {batch.total_questions}",
        f"  Average Questions/PDF: {avg_per_file:.1f}",
        "",
        "QUESTION ANALYSIS:",
        f"  Questions with Options: {stats.questions_with_options}",
        f"  Questions with Answers: {stats.questions_with_answers}",
        f"  Average Confidence: {stats.average_confidence}",
        f"  Exam Keys Found: {', '.join(stats.exam_keys) or 'None'}",
        f"  Years Found: {', '.join(stats.years) or 'None'}",
        "",
    ]
    lines += _breakdown("Question Types", stats.by_question_type)
    lines += _breakdown("Subjects Identified", stats.by_subject)
    lines += _breakdown("Difficulty Distribution", stats.by_difficulty)

    lines.append("  Top 10 Topics:")
    for rank, entry in enumerate(stats.top_topics[:10], 1):
        lines.append(f"    {rank}. {entry['topic']}: {entry['count']}")
    lines.append("")

    skipped = [r for r in batch.results if r.skipped]
    if skipped:
        lines.append("SKIPPED FILES:")
        for r in skipped:
            lines.append(f"  - {r.file_name}: {r.metadata.skipped_reason}")
        lines.append("")

    if batch.errors:
        lines.append("ERRORS/WARNINGS:")
        lines += [f"  - {error}" for error in batch.errors]
        lines.append("")

    lines += ["=" * 60, "End of Summary", "=" * 60]
    return "\n".join(lines)
