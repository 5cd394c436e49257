"""
CLI Interface
=============
Command-line interface for the exam question extractor.

Usage:
    python -m exam_extractor batch <directory> [options]
    python -m exam_extractor extract <pdf_path> [options]
    python -m exam_extractor check <directory> [options]
    python -m exam_extractor info <pdf_path>
"""

from __future__ import annotations

import json
import os
import sys
import threading
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .config import load_exam_context
from .engine import ExtractionEngine, ExtractorConfig, find_documents
from .exceptions import ExtractorError
from .filters import should_process
from .models import ExtractionContext
from .observer import ProgressObserver
from .segmenter import Segmenter, plan_page_ranges
from .statistics import StatisticsEngine
from .storage import write_document_artifacts

console = Console()


class RichProgressObserver(ProgressObserver):
    """Drives a rich progress bar from pipeline callbacks."""

    def __init__(self, progress: Progress):
        self.progress = progress
        self.documents_task = None
        self.units_task = progress.add_task("Units", total=0)
        self.planned_units = 0
        self._lock = threading.Lock()

    def on_batch_start(self, total_documents: int) -> None:
        self.documents_task = self.progress.add_task(
            "Processing PDFs...", total=total_documents
        )

    def on_units_planned(self, identifier: str, total_units: int) -> None:
        with self._lock:
            self.planned_units += total_units
            self.progress.update(self.units_task, total=self.planned_units)

    def on_unit_done(self, identifier, outcome) -> None:
        self.progress.advance(self.units_task)

    def on_document_done(self, result) -> None:
        if self.documents_task is not None:
            self.progress.update(
                self.documents_task,
                advance=1,
                description=f"Done: {result.file_name}",
            )


# ─── Shared Options ───────────────────────────────────────────────────────────


def _context_options(fn):
    options = [
        click.option("--config", "config_path", default=None,
                     type=click.Path(), help="Exam profile JSON file"),
        click.option("--exam", "-e", "exam_name", default=None,
                     help="Exam name used to pick the profile"),
        click.option("--years", "-y", default=None,
                     help="Allowed years, comma separated (overrides profile)"),
        click.option("--strict/--no-strict", default=None,
                     help="Skip documents without a detectable year "
                          "(overrides profile)"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _pipeline_options(fn):
    options = [
        click.option("--output", "-o", default="output",
                     help="Output directory"),
        click.option("--pages-per-chunk", default=10, type=int,
                     help="Pages per unit sent to the service"),
        click.option("--max-retries", default=1, type=int,
                     help="Extra attempts per unit after a failure"),
        click.option("--unit-concurrency", default=8, type=int,
                     help="Units in flight per document"),
        click.option("--document-concurrency", "-j", default=4, type=int,
                     help="Documents in flight"),
        click.option("--unit-delay", default=0.5, type=float,
                     help="Seconds to wait before each unit call"),
        click.option("--document-delay", default=1.0, type=float,
                     help="Seconds to wait before each document"),
        click.option("--model", default=None, help="Model name"),
        click.option("--timeout", default=300.0, type=float,
                     help="Per-request timeout in seconds"),
        click.option("--log-level", default="INFO",
                     type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
                     help="Logging level"),
        click.option("--log-file", default=None, help="Path to log file"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _build_context(config_path, exam_name, years, strict) -> ExtractionContext:
    context = load_exam_context(
        config_path, exam_name, strict_filtering=bool(strict)
    )
    update = {}
    if strict is not None:
        update["strict_filtering"] = strict
    if years:
        update["allowed_years"] = [y for y in years.split(",") if y.strip()]
    # Re-validate so overridden years are normalized.
    return ExtractionContext.model_validate(
        {**context.model_dump(), **update}
    )


def _build_config(output, pages_per_chunk, max_retries, unit_concurrency,
                  document_concurrency, unit_delay, document_delay, model,
                  timeout, log_level, log_file, max_files=None) -> ExtractorConfig:
    config = ExtractorConfig(
        pages_per_chunk=pages_per_chunk,
        max_retries_per_chunk=max_retries,
        unit_concurrency=unit_concurrency,
        document_concurrency=document_concurrency,
        unit_delay=unit_delay,
        document_delay=document_delay,
        request_timeout=timeout,
        max_files=max_files,
        output_dir=output,
        log_level=log_level,
        log_file=log_file,
    )
    if model:
        config.model = model
    return config


# ─── Commands ─────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="exam-extractor")
def cli():
    """Exam Extractor: LLM-backed question extraction from exam PDFs."""
    pass


@cli.command()
@click.argument("directory", type=click.Path(exists=True))
@_context_options
@_pipeline_options
@click.option("--max-files", "-f", default=None, type=int,
              help="Maximum number of PDFs to process")
@click.option("--json-output", is_flag=True, default=False,
              help="Print the batch result as JSON (for programmatic use)")
def batch(directory, config_path, exam_name, years, strict, output,
          pages_per_chunk, max_retries, unit_concurrency, document_concurrency,
          unit_delay, document_delay, model, timeout, log_level, log_file,
          max_files, json_output):
    """Extract questions from every PDF under a directory."""

    if json_output:
        log_level = "ERROR"

    try:
        context = _build_context(config_path, exam_name, years, strict)
        config = _build_config(
            output, pages_per_chunk, max_retries, unit_concurrency,
            document_concurrency, unit_delay, document_delay, model,
            timeout, log_level, log_file, max_files,
        )

        if json_output:
            engine = ExtractionEngine(config, context=context)
            engine.ensure_service()
            result = engine.run(directory, output)
            print(json.dumps(result.model_dump(mode="json"), indent=2,
                             ensure_ascii=False, default=str))
            sys.exit(0 if result.success else 1)

        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Exam Extractor v{__version__}[/]\n"
                f"[dim]Exam: {context.display_name}[/]\n"
                f"[dim]Input: {directory}[/]",
                border_style="cyan",
            )
        )
        console.print()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            engine = ExtractionEngine(
                config,
                context=context,
                observer=RichProgressObserver(progress),
            )
            engine.ensure_service()
            result = engine.run(directory, output)

        _display_batch_summary(result)
        if not result.success:
            sys.exit(1)

    except ExtractorError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@_context_options
@_pipeline_options
def extract(pdf_path, config_path, exam_name, years, strict, output,
            pages_per_chunk, max_retries, unit_concurrency, document_concurrency,
            unit_delay, document_delay, model, timeout, log_level, log_file):
    """Extract questions from a single PDF."""

    try:
        context = _build_context(config_path, exam_name, years, strict)
        config = _build_config(
            output, pages_per_chunk, max_retries, unit_concurrency,
            document_concurrency, unit_delay, document_delay, model,
            timeout, log_level, log_file,
        )
        engine = ExtractionEngine(config, context=context)

        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Exam Extractor v{__version__}[/]\n"
                f"[dim]Extracting: {os.path.basename(pdf_path)}[/]",
                border_style="cyan",
            )
        )
        console.print()

        if should_process(os.path.basename(pdf_path), context).should_process:
            engine.ensure_service()

        with console.status("Extracting questions..."):
            result = engine.process_document(pdf_path)

        if result.skipped:
            console.print(
                f"[yellow]Skipped:[/] {result.metadata.skipped_reason}"
            )
            return

        stats = StatisticsEngine().compute(result.questions, log_summary=True)
        paths = write_document_artifacts(result, output, stats)
        _display_document_result(result, stats)
        if paths.get("questions"):
            console.print(f"[dim]Questions saved to {paths['questions']}[/]")
        if not result.success:
            sys.exit(1)

    except ExtractorError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True))
@_context_options
def check(directory, config_path, exam_name, years, strict):
    """Dry-run the year pre-filter without calling the service."""

    try:
        context = _build_context(config_path, exam_name, years, strict)
    except ExtractorError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    pdf_files = find_documents(directory)
    if not pdf_files:
        console.print(f"[yellow]No PDF files found in: {directory}[/]")
        return

    table = Table(title="Pre-filter Check", border_style="cyan")
    table.add_column("PDF", style="bold")
    table.add_column("Year", justify="center")
    table.add_column("Decision", justify="center")
    table.add_column("Reason")

    will_process = 0
    for path in pdf_files:
        name = os.path.basename(path)
        decision = should_process(name, context)
        will_process += decision.should_process
        table.add_row(
            name,
            decision.detected_year or "-",
            "[green]process[/]" if decision.should_process else "[yellow]skip[/]",
            decision.reason or "",
        )

    console.print()
    console.print(table)
    console.print(
        f"[bold]Pre-check:[/] {will_process} to process, "
        f"{len(pdf_files) - will_process} to skip"
    )
    console.print()


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--pages-per-chunk", default=10, type=int,
              help="Pages per unit sent to the service")
def info(pdf_path, pages_per_chunk):
    """Display page count and the unit plan for a PDF."""

    try:
        content = Path(pdf_path).read_bytes()
        pages = Segmenter(pages_per_chunk).page_count(content)
        ranges = plan_page_ranges(pages, pages_per_chunk)
    except ExtractorError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    console.print()
    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("File", os.path.basename(pdf_path))
    table.add_row("Pages", str(pages))
    table.add_row("File Size", f"{len(content) / 1024 / 1024:.2f} MB")
    table.add_row("Units", str(len(ranges)))
    table.add_row(
        "Unit Ranges",
        ", ".join(f"{start}-{end}" for start, end in ranges),
    )
    console.print(table)
    console.print()


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_document_result(result, stats):
    console.print()
    meta = result.metadata
    table = Table(title="Extraction Result", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")
    table.add_row("File", result.file_name)
    table.add_row("Exam Key", meta.exam_key or "(unknown)")
    table.add_row("Year", meta.year or "(unknown)")
    table.add_row("Pages / Units", f"{meta.total_pages} / {meta.total_units}")
    table.add_row("Questions", str(len(result.questions)))
    table.add_row("With Answers", f"{stats.questions_with_answers} "
                  f"({stats.answer_coverage}%)")
    table.add_row("Avg Confidence", str(stats.average_confidence))
    table.add_row("Time", f"{meta.processing_time:.1f}s")
    console.print(table)

    for note in result.skip_notes:
        console.print(f"[yellow]⚠[/] {note}")
    for error in result.errors:
        console.print(f"[red]✗[/] {error}")
    console.print()


def _display_batch_summary(batch):
    console.print()

    table = Table(title="Batch Processing Summary", border_style="cyan")
    table.add_column("PDF", style="bold")
    table.add_column("Questions", justify="right")
    table.add_column("Units", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Status", justify="center")

    for result in batch.results:
        if result.skipped:
            status = "[yellow]⏭ SKIPPED[/]"
        elif result.success:
            status = "[green]✓[/]"
        else:
            status = "[red]✗ FAILED[/]"
        table.add_row(
            result.file_name,
            str(len(result.questions)) if not result.skipped else "-",
            str(result.metadata.total_units or "-"),
            str(len(result.errors)),
            status,
        )

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {batch.total_questions} questions from "
        f"{batch.files_succeeded}/{batch.files_processed} processed PDFs, "
        f"{batch.files_skipped} skipped, {batch.files_failed} failed"
    )

    skipped = [r for r in batch.results if r.skipped]
    if skipped:
        console.print()
        console.print("[bold]Skipped files:[/]")
        for r in skipped:
            console.print(f"  - {r.file_name}: {r.metadata.skipped_reason}")

    if batch.errors:
        console.print()
        console.print(f"[yellow]⚠ {len(batch.errors)} warnings/errors:[/]")
        for error in batch.errors[:5]:
            console.print(f"  - {error}")
        if len(batch.errors) > 5:
            console.print(f"  ... and {len(batch.errors) - 5} more (see logs)")
    console.print()


# ─── Entry point (for python -m exam_extractor.cli) ───────────────────────────


if __name__ == "__main__":
    cli()
