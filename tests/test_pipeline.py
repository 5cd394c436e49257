"""
Test Suite for the Extraction Pipeline
======================================
Integration tests for the engine, batch folding, configuration,
statistics, result storage and the CLI.
"""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from conftest import ScriptedService, item, write_pdf
from exam_extractor.cli import cli
from exam_extractor.config import find_profile, load_exam_context
from exam_extractor.engine import ExtractionEngine, ExtractorConfig, find_documents
from exam_extractor.exceptions import ConfigurationError, ExtractionServiceError
from exam_extractor.models import (
    BatchResult,
    DocumentMetadata,
    DocumentResult,
    ExtractionContext,
    Provenance,
    Question,
    SkipStage,
)
from exam_extractor.observer import LoggingObserver
from exam_extractor.reconciler import STRICT_EMPTY_REASON
from exam_extractor.statistics import StatisticsEngine, render_batch_summary
from exam_extractor.storage import write_batch_artifacts, write_document_artifacts


def _question(text: str, page: int, **fields) -> Question:
    return Question(
        id=f"q{page}",
        text=text,
        page_number=page,
        provenance=Provenance(file_name="x.pdf", page_number=page),
        **fields,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT PIPELINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestProcessDocument:
    """Test single-document extraction through the engine."""

    def test_end_to_end_twenty_pages(self, make_pdf, make_engine):
        path = make_pdf("ssc_cgl_2023.pdf", 20)
        service = ScriptedService({
            1: [item(f"Unit one question {n}", n) for n in range(1, 6)],
            9: {"skip": True, "scope": "chunk", "reason": "answer key section"},
            17: [
                item("Unit three question A", 1),
                item("Unit three question B", 2),
                item("Unit one question 5", 5),
            ],
        })
        engine = make_engine(service, pages_per_chunk=8)

        result = engine.process_document(path)

        assert sorted(service.calls) == [(1, 8), (9, 16), (17, 20)]
        assert result.success
        assert not result.skipped
        assert len(result.questions) == 7
        assert [q.page_number for q in result.questions] == [1, 2, 3, 4, 5, 17, 18]
        assert result.skip_notes == ["Unit 2 (pages 9-16) skipped: answer key section"]
        assert result.errors == []
        assert result.metadata.total_pages == 20
        assert result.metadata.total_units == 3
        assert result.metadata.total_questions == 7
        assert result.metadata.year == "2023"
        assert result.metadata.exam_key == "cgl"

    def test_pre_filter_skip_never_calls_service(self, make_pdf, make_engine):
        path = make_pdf("ssc_cgl_2019.pdf", 4)
        service = ScriptedService({1: [item("Q", 1)]})
        engine = make_engine(service, ExtractionContext(allowed_years=["2023"]))

        result = engine.process_document(path)

        assert service.calls == []
        assert result.skipped
        assert not result.success
        assert result.metadata.skip_stage == SkipStage.PRE_FILTER
        assert result.metadata.skipped_reason.startswith("year mismatch")

    def test_content_document_skip(self, make_pdf, make_engine):
        path = make_pdf("paper_2023.pdf", 16)
        service = ScriptedService({
            1: [item("Q1", 1)],
            9: {"skip": True, "reason": "Year mismatch: paper is from 2018"},
        })
        result = make_engine(service).process_document(path)

        assert result.skipped
        assert result.questions == []
        assert result.metadata.skip_stage == SkipStage.CONTENT
        assert result.metadata.skipped_reason == "Year mismatch: paper is from 2018"

    def test_strict_mode_zero_items(self, make_pdf, make_engine):
        path = make_pdf("paper_2023.pdf", 4)
        context = ExtractionContext(allowed_years=["2023"], strict_filtering=True)
        result = make_engine(ScriptedService({1: []}), context).process_document(path)

        assert result.skipped
        assert result.metadata.skipped_reason == STRICT_EMPTY_REASON
        assert result.metadata.skip_stage == SkipStage.STRICT_EMPTY

    def test_unit_errors_after_retries(self, make_pdf, make_engine, sleeps):
        path = make_pdf("paper.pdf", 4)
        service = ScriptedService({1: ExtractionServiceError("service unavailable")})
        result = make_engine(service, max_retries_per_chunk=1).process_document(path)

        assert len(service.calls) == 2
        assert sleeps == [1.0]
        assert not result.success
        assert not result.skipped
        assert result.errors == [
            "Unit 1 (pages 1-4) failed: service unavailable",
            "No questions extracted",
        ]

    def test_corrupt_pdf(self, tmp_path, make_engine):
        path = tmp_path / "broken_2023.pdf"
        path.write_bytes(b"definitely not a pdf")
        service = ScriptedService({})

        result = make_engine(service).process_document(path)

        assert service.calls == []
        assert not result.success
        assert not result.skipped
        assert result.errors[0].startswith("Segmentation failed")

    def test_ensure_service(self, make_engine, monkeypatch):
        service = ScriptedService({})
        assert make_engine(service).ensure_service() is service

        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            ExtractionEngine(ExtractorConfig()).ensure_service()

    def test_unit_delay_between_units(self, make_pdf, make_engine, sleeps):
        path = make_pdf("paper.pdf", 3)
        engine = make_engine(
            ScriptedService({}), pages_per_chunk=1, unit_delay=0.25, unit_concurrency=1
        )
        engine.process_document(path)
        assert sleeps == [0.25, 0.25]


# ═══════════════════════════════════════════════════════════════════════════════
# BATCH TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestBatch:
    """Test batch orchestration and folding."""

    @pytest.fixture
    def papers(self, tmp_path):
        root = tmp_path / "papers"
        write_pdf(root / "a_2023.pdf", 4)
        write_pdf(root / "c_2023.PDF", 4)
        write_pdf(root / "sub" / "b_2019.pdf", 4)
        (root / "notes.txt").write_text("not a paper")
        return root

    @pytest.fixture
    def service(self):
        return ScriptedService({
            ("a_2023.pdf", 1): [item("Q1", 1), item("Q2", 2)],
            ("c_2023.PDF", 1): ExtractionServiceError("down"),
        })

    def test_find_documents(self, papers):
        found = find_documents(papers)
        assert [p.split("/")[-1] for p in found] == [
            "a_2023.pdf", "c_2023.PDF", "b_2019.pdf",
        ]

    def test_batch_counts(self, papers, service, make_engine):
        context = ExtractionContext(allowed_years=["2023"])
        batch = make_engine(service, context).process_batch(papers)

        assert batch.success
        assert batch.files_found == 3
        assert batch.files_processed == 2
        assert batch.files_skipped == 1
        assert batch.files_succeeded == 1
        assert batch.files_failed == 1
        assert batch.total_questions == 2
        assert "c_2023.PDF: Unit 1 (pages 1-4) failed: down" in batch.errors
        assert [r.file_name for r in batch.results] == [
            "a_2023.pdf", "c_2023.PDF", "b_2019.pdf",
        ]

    def test_batch_fails_when_nothing_succeeds(self, papers, make_engine):
        service = ScriptedService({1: ExtractionServiceError("down")})
        batch = make_engine(service, max_retries_per_chunk=0).process_batch(papers)

        assert not batch.success
        assert batch.files_failed == 3
        assert batch.total_questions == 0

    def test_max_files(self, papers, service, make_engine):
        batch = make_engine(service, max_files=2).process_batch(papers)
        assert batch.files_found == 2
        assert len(batch.results) == 2

    def test_empty_directory(self, tmp_path, make_engine):
        batch = make_engine(ScriptedService({})).process_batch(tmp_path)
        assert not batch.success
        assert batch.results == []
        assert batch.errors[0].startswith("No PDF files found")

    def test_document_delay(self, papers, service, make_engine, sleeps):
        engine = make_engine(
            service,
            ExtractionContext(allowed_years=["2023"]),
            document_delay=2.0,
            document_concurrency=1,
            max_retries_per_chunk=0,
        )
        engine.process_batch(papers)
        assert sleeps == [2.0, 2.0]

    def test_logging_observer_counts(self, papers, service, make_engine):
        engine = make_engine(service, max_retries_per_chunk=0)
        engine.observer = LoggingObserver()
        engine.process_batch(papers)

        assert engine.observer.documents_done == 3
        assert engine.observer.units_done == 3

    def test_from_results_fold(self):
        ok = DocumentResult(success=True, file_name="a.pdf", questions=[_question("Q", 1)])
        failed = DocumentResult(file_name="b.pdf", errors=["boom"])
        skipped = DocumentResult(
            file_name="c.pdf", metadata=DocumentMetadata(skipped_reason="year mismatch")
        )
        batch = BatchResult.from_results([ok, failed, skipped])

        assert batch.success
        assert (batch.files_processed, batch.files_skipped) == (2, 1)
        assert (batch.files_succeeded, batch.files_failed) == (1, 1)
        assert batch.errors == ["b.pdf: boom"]
        assert len(batch.all_questions()) == 1

    def test_run_writes_artifacts(self, papers, service, make_engine, tmp_path):
        out = tmp_path / "out"
        context = ExtractionContext(allowed_years=["2023"])
        make_engine(service, context, max_retries_per_chunk=0).run(papers, out)

        tagged = json.loads((out / "tagged-questions.json").read_text(encoding="utf-8"))
        assert [q["text"] for q in tagged] == ["Q1", "Q2"]
        assert tagged[0]["page_number"] == 1
        assert tagged[0]["provenance"]["file_name"] == "a_2023.pdf"

        stats = json.loads((out / "pipeline-statistics.json").read_text(encoding="utf-8"))
        assert stats["total_questions"] == 2

        batch = json.loads((out / "batch-result.json").read_text(encoding="utf-8"))
        assert batch["files_skipped"] == 1

        docs = out / "documents"
        assert (docs / "a_2023_questions.json").exists()
        assert (docs / "a_2023_statistics.json").exists()
        assert (docs / "a_2023_summary.txt").exists()
        assert (docs / "c_2023_questions.json").exists()
        assert not (docs / "sub__b_2019_questions.json").exists()

        summary = (out / "summary.txt").read_text(encoding="utf-8")
        assert "Files Found: 3" in summary
        assert "b_2019.pdf: year mismatch" in summary

    def test_same_file_name_in_sibling_folders(self, tmp_path, make_engine):
        root = tmp_path / "papers"
        write_pdf(root / "tier1" / "paper_2023.pdf", 2)
        write_pdf(root / "tier2" / "paper_2023.pdf", 2)
        out = tmp_path / "out"
        service = ScriptedService({1: [item("Shared question", 1)]})

        batch = make_engine(service).run(root, out)

        assert batch.files_succeeded == 2
        docs = out / "documents"
        assert sorted(p.name for p in docs.iterdir()) == [
            "tier1__paper_2023_questions.json",
            "tier1__paper_2023_statistics.json",
            "tier1__paper_2023_summary.txt",
            "tier2__paper_2023_questions.json",
            "tier2__paper_2023_statistics.json",
            "tier2__paper_2023_summary.txt",
        ]
        for tier in ("tier1", "tier2"):
            data = json.loads(
                (docs / f"{tier}__paper_2023_questions.json").read_text(encoding="utf-8")
            )
            assert data[0]["provenance"]["source"].endswith(
                f"{tier}/paper_2023.pdf"
            )

    def test_colliding_artifact_names_get_suffix(self, tmp_path):
        results = [
            DocumentResult(success=True, file_name="paper_2023.pdf",
                           questions=[_question("Q1", 1)]),
            DocumentResult(success=True, file_name="paper_2023.pdf",
                           questions=[_question("Q2", 1)]),
        ]
        write_batch_artifacts(BatchResult.from_results(results), tmp_path)

        docs = tmp_path / "documents"
        first = json.loads((docs / "paper_2023_questions.json").read_text(encoding="utf-8"))
        second = json.loads((docs / "paper_2023_2_questions.json").read_text(encoding="utf-8"))
        assert [q["text"] for q in first + second] == ["Q1", "Q2"]


# ═══════════════════════════════════════════════════════════════════════════════
# CONFIGURATION TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestConfig:
    """Test exam profile loading."""

    PROFILES = [
        {"examName": "IBPS PO", "examKey": "ibps po", "years": ["2022"]},
        {
            "examName": "SSC CGL",
            "examKey": ["ssc", "cgl"],
            "years": ["23", "2024"],
            "fullName": "SSC Combined Graduate Level",
            "knownSubjects": ["Quantitative Aptitude"],
        },
    ]

    def test_load_named_profile(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"exams": self.PROFILES}), encoding="utf-8")

        context = load_exam_context(path, "ssc cgl", strict_filtering=True)

        assert context.exam_keys == {"ssc", "cgl"}
        assert context.allowed_years == {"2023", "2024"}
        assert context.display_name == "SSC Combined Graduate Level"
        assert context.known_subjects == ["Quantitative Aptitude"]
        assert context.strict_filtering

    def test_find_profile_by_keys(self):
        assert find_profile(self.PROFILES, "cgl ssc tier 1")["examName"] == "SSC CGL"
        assert find_profile(self.PROFILES, "IBPS")["examName"] == "IBPS PO"
        assert find_profile(self.PROFILES, None)["examName"] == "IBPS PO"
        assert find_profile([], "anything") is None

    def test_default_profile(self):
        context = load_exam_context(exam_name="RRB NTPC")
        assert context.display_name == "RRB NTPC"
        assert context.allowed_years == set()
        assert "Reasoning" in context.known_subjects

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_exam_context(tmp_path / "missing.json")

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_exam_context(path)

    def test_file_without_exams(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"profiles": []}), encoding="utf-8")
        with pytest.raises(ConfigurationError):
            load_exam_context(path)


# ═══════════════════════════════════════════════════════════════════════════════
# STATISTICS & STORAGE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestStatistics:
    """Test question statistics and summaries."""

    def test_compute(self):
        questions = [
            _question("Q1", 1, subject="Reasoning", topics=["Series", "Coding"],
                      answer="A", options=["A", "B"], confidence=0.9,
                      exam_key="cgl", year="2023"),
            _question("Q2", 2, subject="Reasoning", topics=["Series"], confidence=0.7),
            _question("Q3", 3, subject="English", difficulty="hard", confidence=0.8),
        ]
        stats = StatisticsEngine().compute(questions)

        assert stats.total_questions == 3
        assert stats.by_subject == {"Reasoning": 2, "English": 1}
        assert stats.by_difficulty == {"medium": 2, "hard": 1}
        assert stats.top_topics[0] == {"topic": "Series", "count": 2}
        assert stats.average_confidence == 0.8
        assert stats.questions_with_answers == 1
        assert stats.questions_with_options == 1
        assert stats.answer_coverage == 33.33
        assert stats.exam_keys == ["cgl"]
        assert stats.years == ["2023"]

    def test_empty(self):
        stats = StatisticsEngine().compute([])
        assert stats.total_questions == 0
        assert stats.answer_coverage == 0.0

    def test_batch_summary_lists_skips(self):
        skipped = DocumentResult(
            file_name="old_2019.pdf",
            metadata=DocumentMetadata(skipped_reason="year mismatch"),
        )
        batch = BatchResult.from_results([skipped])
        text = render_batch_summary(batch, StatisticsEngine().compute([]))

        assert "SKIPPED FILES:" in text
        assert "old_2019.pdf: year mismatch" in text

    def test_write_document_artifacts(self, tmp_path):
        result = DocumentResult(
            success=True,
            file_name="ssc cgl (2023).pdf",
            questions=[_question("Q1", 1), _question("Q2", 4)],
            skip_notes=["Unit 2 (pages 9-16) skipped: answer key"],
        )
        paths = write_document_artifacts(result, tmp_path)

        data = json.loads(paths["questions"].read_text(encoding="utf-8"))
        assert [q["page_number"] for q in data] == [1, 4]
        assert paths["questions"].name == "ssc_cgl__2023__questions.json"
        assert "answer key" in paths["summary"].read_text(encoding="utf-8")


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:
    """Test commands that need no extraction service."""

    def test_check(self, tmp_path):
        write_pdf(tmp_path / "ssc_2023.pdf", 1)
        write_pdf(tmp_path / "ssc_2019.pdf", 1)

        result = CliRunner().invoke(cli, ["check", str(tmp_path), "--years", "2023"])

        assert result.exit_code == 0
        assert "Pre-check: 1 to process, 1 to skip" in result.output

    def test_strict_flag_overrides_profile(self, tmp_path):
        config = tmp_path / "config.json"
        config.write_text(json.dumps({"exams": [{
            "examName": "SSC CGL", "years": ["2023"], "strictFiltering": True,
        }]}), encoding="utf-8")
        papers = tmp_path / "papers"
        write_pdf(papers / "ssc_paper.pdf", 1)
        runner = CliRunner()

        from_profile = runner.invoke(cli, ["check", str(papers), "--config", str(config)])
        relaxed = runner.invoke(
            cli, ["check", str(papers), "--config", str(config), "--no-strict"]
        )

        assert from_profile.exit_code == 0
        assert "Pre-check: 0 to process, 1 to skip" in from_profile.output
        assert relaxed.exit_code == 0
        assert "Pre-check: 1 to process, 0 to skip" in relaxed.output

    def test_info(self, tmp_path):
        path = write_pdf(tmp_path / "paper.pdf", 3)

        result = CliRunner().invoke(cli, ["info", str(path), "--pages-per-chunk", "2"])

        assert result.exit_code == 0
        assert "1-2, 3-3" in result.output

    def test_batch_without_api_key(self, tmp_path, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        write_pdf(tmp_path / "paper.pdf", 1)

        result = CliRunner().invoke(
            cli, ["batch", str(tmp_path), "--output", str(tmp_path / "out")]
        )

        assert result.exit_code == 1
        assert "ANTHROPIC_API_KEY" in result.output


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
