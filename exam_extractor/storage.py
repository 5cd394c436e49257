"""
Result Storage
==============
Writes extraction artifacts to the output directory.

Directory Layout:
    output/
    ├── documents/
    │   ├── {stem}_questions.json    # Ordered question records
    │   ├── {stem}_statistics.json   # Counts by subject/difficulty/type/topic
    │   └── {stem}_summary.txt       # Human-readable summary
    ├── tagged-questions.json        # All questions of successful documents
    ├── pipeline-statistics.json
    ├── batch-result.json
    └── summary.txt
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Union

from .models import BatchResult, DocumentResult, QuestionStatistics
from .statistics import (
    StatisticsEngine,
    render_batch_summary,
    render_document_summary,
)

logger = logging.getLogger(__name__)

DOCUMENTS_SUBDIR = "documents"


def _safe_stem(name: str) -> str:
    clean = "".join(c if c.isalnum() or c in "-_" else "_" for c in name)
    return clean[:80] or "document"


def artifact_stem(
    result: DocumentResult,
    input_dir: Optional[Union[str, Path]] = None,
) -> str:
    """
    Artifact name for one document: its path relative to ``input_dir``
    with folders joined by ``__`` (``tier1/paper.pdf`` -> ``tier1__paper``),
    or the bare file stem when no root applies.
    """
    name = Path(result.file_name).stem
    if input_dir and result.file_path:
        try:
            relative = Path(result.file_path).relative_to(
                Path(input_dir).resolve()
            )
        except ValueError:
            relative = None
        # A single-file input resolves to "." and keeps the plain stem.
        if relative is not None and relative.name:
            name = "__".join(relative.with_suffix("").parts)
    return _safe_stem(name)


def save_json(data, filepath: Path) -> Optional[Path]:
    """Write JSON; failures are logged and reported as None."""
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        logger.info(f"Saved JSON: {filepath}")
        return filepath
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to save JSON {filepath}: {e}")
        return None


def save_text(text: str, filepath: Path) -> Optional[Path]:
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_text(text, encoding="utf-8")
        logger.info(f"Saved text: {filepath}")
        return filepath
    except OSError as e:
        logger.error(f"Failed to save text {filepath}: {e}")
        return None


def write_document_artifacts(
    result: DocumentResult,
    output_dir: Union[str, Path],
    stats: Optional[QuestionStatistics] = None,
    stem: Optional[str] = None,
) -> dict[str, Optional[Path]]:
    """Write questions, statistics and summary for one document."""
    doc_dir = Path(output_dir) / DOCUMENTS_SUBDIR
    stem = stem or artifact_stem(result)
    stats = stats or StatisticsEngine().compute(result.questions)

    return {
        "questions": save_json(
            [q.model_dump(mode="json") for q in result.questions],
            doc_dir / f"{stem}_questions.json",
        ),
        "statistics": save_json(
            stats.model_dump(mode="json"),
            doc_dir / f"{stem}_statistics.json",
        ),
        "summary": save_text(
            render_document_summary(result, stats),
            doc_dir / f"{stem}_summary.txt",
        ),
    }


def write_batch_artifacts(
    batch: BatchResult,
    output_dir: Union[str, Path],
    input_dir: Optional[str] = None,
) -> dict[str, Optional[Path]]:
    """Write per-document artifacts plus the batch-level files."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    engine = StatisticsEngine()

    used: set[str] = set()
    for result in batch.results:
        if result.skipped:
            continue
        stem = base = artifact_stem(result, input_dir)
        suffix = 2
        while stem in used:
            stem = f"{base}_{suffix}"
            suffix += 1
        if stem != base:
            logger.warning(
                f"Artifact name {base} already taken, writing "
                f"{result.file_name} as {stem}"
            )
        used.add(stem)
        write_document_artifacts(
            result, output_dir, engine.compute(result.questions), stem=stem
        )

    questions = batch.all_questions()
    stats = engine.compute(questions, log_summary=True)

    return {
        "questions": save_json(
            [q.model_dump(mode="json") for q in questions],
            output_dir / "tagged-questions.json",
        ),
        "statistics": save_json(
            stats.model_dump(mode="json"),
            output_dir / "pipeline-statistics.json",
        ),
        "batch": save_json(
            batch.model_dump(mode="json"),
            output_dir / "batch-result.json",
        ),
        "summary": save_text(
            render_batch_summary(
                batch, stats, input_dir=input_dir, output_dir=str(output_dir)
            ),
            output_dir / "summary.txt",
        ),
    }
