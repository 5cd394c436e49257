"""
Extraction Engine
=================
Main orchestrator combining pre-filtering, segmentation, bounded
concurrent unit extraction and reconciliation into a batch pipeline.

Usage:
    engine = ExtractionEngine(config, context=context)
    batch = engine.run("downloads/ssc_cgl", "output/ssc_cgl")

Architecture:
    PDFs → pre-filter → Segmenter → Units →
    Dispatcher(UnitProcessor, unit concurrency) → UnitOutcomes →
    Reconciler → DocumentResult
    Dispatcher(documents, document concurrency) → BatchResult
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from .dispatcher import run_with_concurrency
from .exceptions import SegmentationError
from .filters import detect_category_key, precheck, should_process
from .llm_client import (
    DEFAULT_MODEL,
    AnthropicExtractionService,
    ExtractionService,
)
from .models import (
    BatchResult,
    Document,
    DocumentMetadata,
    DocumentResult,
    ExtractionContext,
    SkipStage,
)
from .observer import ProgressObserver
from .outcomes import UnitError
from .reconciler import DEFAULT_DEDUP_PREFIX, Reconciler
from .segmenter import DEFAULT_PAGES_PER_CHUNK, Segmenter
from .storage import write_batch_artifacts
from .unit_processor import UnitProcessor

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ExtractorConfig:
    """Configuration for the extraction engine."""

    # Segmentation
    pages_per_chunk: int = DEFAULT_PAGES_PER_CHUNK

    # Retry policy
    max_retries_per_chunk: int = 1
    retry_base_delay: float = 1.0

    # Rate limiting
    unit_delay: float = 0.5
    document_delay: float = 1.0
    unit_concurrency: int = 8
    document_concurrency: int = 4

    # Extraction service
    model: str = DEFAULT_MODEL
    max_tokens: int = 16000
    temperature: float = 0.1
    request_timeout: float = 300.0

    # Processing
    max_files: Optional[int] = None
    dedup_prefix_length: int = DEFAULT_DEDUP_PREFIX

    # Output
    output_dir: str = "output"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


def find_documents(root: Union[str, Path]) -> list[str]:
    """Recursively list PDF files under ``root`` (or ``root`` itself)."""
    root = Path(root)
    if root.is_file():
        return [str(root.resolve())] if root.suffix.lower() == ".pdf" else []
    return sorted(
        str(p.resolve())
        for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() == ".pdf"
    )


class ExtractionEngine:
    """
    Batch extraction pipeline.

    Orchestrates, per document:
        1. Year pre-filter on the file name
        2. Segmentation into page-range units
        3. Concurrent unit extraction with retries
        4. Reconciliation (skip handling, page order, dedup)

    and runs documents concurrently under a separate bound.
    """

    def __init__(
        self,
        config: Optional[ExtractorConfig] = None,
        context: Optional[ExtractionContext] = None,
        service: Optional[ExtractionService] = None,
        observer: Optional[ProgressObserver] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.config = config or ExtractorConfig()
        self.context = context or ExtractionContext()
        self.observer = observer or ProgressObserver()
        self.sleep = sleep or time.sleep
        self.segmenter = Segmenter(self.config.pages_per_chunk)
        self.reconciler = Reconciler(
            self.context, self.config.dedup_prefix_length
        )
        self._service = service
        self._setup_logging()

    @property
    def service(self) -> ExtractionService:
        # Created on first use so filter-only runs need no API key.
        if self._service is None:
            self._service = AnthropicExtractionService(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                timeout=self.config.request_timeout,
            )
        return self._service

    def ensure_service(self) -> ExtractionService:
        """
        Create the extraction client now.

        Raises:
            ConfigurationError: If the API key is not configured.
        """
        return self.service

    def _setup_logging(self):
        """Configure the package logger based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        package_logger = logging.getLogger("exam_extractor")
        package_logger.setLevel(log_level)

        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
            package_logger.addHandler(console)

        if self.config.log_file:
            log_path = os.path.abspath(self.config.log_file)
            already = any(
                isinstance(h, logging.FileHandler)
                and getattr(h, "baseFilename", None) == log_path
                for h in package_logger.handlers
            )
            if not already:
                Path(log_path).parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(
                    logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
                )
                package_logger.addHandler(file_handler)

    # ─── Single Document ──────────────────────────────────────────────────

    def process_document(
        self,
        pdf_path: Union[str, Path],
        index: int = 0,
        total: int = 1,
    ) -> DocumentResult:
        """
        Extract questions from one PDF.

        Never raises for document-level problems: pre-filter skips,
        unreadable files and segmentation errors are reported on the
        returned DocumentResult.
        """
        start_time = time.time()
        pdf_path = os.path.abspath(str(pdf_path))
        identifier = os.path.basename(pdf_path)
        self.observer.on_document_start(identifier, index, total)

        decision = should_process(identifier, self.context)
        if not decision.should_process:
            logger.info(f"Skipping {identifier}: {decision.reason}")
            result = DocumentResult(
                file_name=identifier,
                file_path=pdf_path,
                metadata=DocumentMetadata(
                    exam_key=detect_category_key(identifier, self.context),
                    year=decision.detected_year,
                    skipped_reason=decision.reason,
                    skip_stage=SkipStage.PRE_FILTER,
                ),
            )
            return self._finish(result, start_time)

        if decision.detected_year:
            logger.info(
                f"Processing {identifier} (detected year: "
                f"{decision.detected_year})"
            )
        else:
            logger.info(f"Processing {identifier} (no year restrictions)")

        try:
            document = Document.from_path(pdf_path, self.context)
        except OSError as e:
            return self._finish(
                self._failed(identifier, pdf_path, f"Cannot read file: {e}"),
                start_time,
            )

        try:
            units = self.segmenter.segment(document.content)
        except SegmentationError as e:
            logger.error(f"{identifier}: segmentation failed: {e}")
            return self._finish(
                self._failed(identifier, pdf_path, f"Segmentation failed: {e}"),
                start_time,
            )

        total_pages = units[-1].to_page
        self.observer.on_units_planned(identifier, len(units))
        logger.info(
            f"{identifier}: {total_pages} page(s) split into {len(units)} "
            f"unit(s) (pages_per_chunk={self.config.pages_per_chunk})"
        )

        processor = UnitProcessor(
            service=self.service,
            document=document,
            context=self.context,
            total_pages=total_pages,
            max_retries=self.config.max_retries_per_chunk,
            retry_base_delay=self.config.retry_base_delay,
            unit_delay=self.config.unit_delay,
            sleep=self.sleep,
            observer=self.observer,
        )
        dispatched = run_with_concurrency(
            units,
            processor,
            self.config.unit_concurrency,
            name=f"units-{document.stem[:20]}",
        )
        outcomes = [
            d.value if d.ok
            else UnitError(unit=units[d.index], message=f"Unexpected error: {d.error}")
            for d in dispatched
        ]

        result = self.reconciler.reconcile(document, outcomes, total_pages)
        logger.info(
            f"Total extracted from {identifier}: {len(result.questions)}"
        )
        return self._finish(result, start_time)

    def _failed(self, identifier: str, pdf_path: str, error: str) -> DocumentResult:
        return DocumentResult(
            file_name=identifier,
            file_path=pdf_path,
            errors=[error],
            metadata=DocumentMetadata(
                exam_key=detect_category_key(identifier, self.context),
            ),
        )

    def _finish(self, result: DocumentResult, start_time: float) -> DocumentResult:
        result.metadata.processing_time = round(time.time() - start_time, 3)
        self.observer.on_document_done(result)
        return result

    # ─── Batch ────────────────────────────────────────────────────────────

    def process_batch(self, input_dir: Union[str, Path]) -> BatchResult:
        """Extract questions from every PDF under ``input_dir``."""
        pdf_files = find_documents(input_dir)
        if not pdf_files:
            logger.warning(f"No PDF files found in {input_dir}")
            return BatchResult(errors=[f"No PDF files found in {input_dir}"])

        to_process = (
            pdf_files[: self.config.max_files]
            if self.config.max_files
            else pdf_files
        )
        logger.info(
            f"Found {len(pdf_files)} PDF(s). Processing up to "
            f"{len(to_process)} file(s)."
        )

        if self.context.allowed_years:
            will_process, will_skip = precheck(
                [os.path.basename(p) for p in to_process], self.context
            )
            logger.info(
                f"Year filtering enabled: "
                f"{', '.join(sorted(self.context.allowed_years))} "
                f"(strict: {'yes' if self.context.strict_filtering else 'no'})"
            )
            logger.info(
                f"Pre-check: {will_process} file(s) to process, "
                f"{will_skip} file(s) to skip"
            )

        total = len(to_process)
        self.observer.on_batch_start(total)

        def _run(path: str, index: int) -> DocumentResult:
            if index > 0 and self.config.document_delay > 0:
                self.sleep(self.config.document_delay)
            return self.process_document(path, index, total)

        dispatched = run_with_concurrency(
            to_process,
            _run,
            self.config.document_concurrency,
            name="documents",
        )
        results = []
        for d in dispatched:
            if d.ok:
                results.append(d.value)
            else:
                path = to_process[d.index]
                results.append(
                    self._failed(os.path.basename(path), path, d.error)
                )

        batch = BatchResult.from_results(results, files_found=total)
        self._log_batch_summary(batch)
        self.observer.on_batch_done(batch)
        return batch

    def run(
        self,
        input_dir: Union[str, Path],
        output_dir: Optional[Union[str, Path]] = None,
    ) -> BatchResult:
        """Process a directory and write all result artifacts."""
        output_dir = Path(output_dir or self.config.output_dir)
        batch = self.process_batch(input_dir)
        write_batch_artifacts(batch, output_dir, input_dir=str(input_dir))
        logger.info(f"Output saved to: {output_dir}")
        return batch

    def _log_batch_summary(self, batch: BatchResult) -> None:
        logger.info("=" * 60)
        logger.info("PROCESSING COMPLETE")
        logger.info("=" * 60)
        logger.info(f"Total files found: {batch.files_found}")
        logger.info(f"Files processed: {batch.files_processed}")
        logger.info(f"Files skipped: {batch.files_skipped}")
        logger.info(f"Successful: {batch.files_succeeded}")
        logger.info(f"Failed: {batch.files_failed}")
        logger.info(f"Total questions extracted: {batch.total_questions}")

        skipped = [r for r in batch.results if r.skipped]
        if skipped:
            logger.info("Skipped files:")
            for r in skipped:
                logger.info(f"  • {r.file_name}: {r.metadata.skipped_reason}")
        logger.info("=" * 60)
