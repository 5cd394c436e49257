"""Shared fixtures: synthetic PDFs and a scripted extraction service."""

from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from typing import Callable, Union

import fitz  # PyMuPDF
import pytest

from exam_extractor.engine import ExtractionEngine, ExtractorConfig
from exam_extractor.llm_client import ExtractionRequest
from exam_extractor.models import ExtractionContext

_PAGE_RANGE = re.compile(r"pages (\d+)-(\d+) of the original document")
_FILE_NAME = re.compile(r'PDF pages from "([^"]+)"')


def write_pdf(path: Path, pages: int) -> Path:
    """Write a PDF with ``pages`` numbered text pages."""
    path.parent.mkdir(parents=True, exist_ok=True)
    doc = fitz.open()
    for number in range(1, pages + 1):
        page = doc.new_page()
        page.insert_text((72, 72), f"Page {number}: Question {number}")
    doc.save(str(path))
    doc.close()
    return path


def item(text: str, page: int, **extra) -> dict:
    raw = {
        "questionText": text,
        "pageNumber": page,
        "options": ["A", "B", "C", "D"],
        "correctAnswer": "A",
        "questionType": "MCQ",
        "subject": "Reasoning",
        "topics": ["Series"],
        "difficulty": "easy",
        "confidence": 0.9,
    }
    raw.update(extra)
    return raw


class ScriptedService:
    """
    Extraction service double. ``script`` maps a unit's first page, or a
    ``(file_name, first_page)`` pair, to a reply: a string, a list/dict
    (sent as JSON), an exception instance (raised), or a callable taking
    the attempt number.
    """

    def __init__(self, script: dict[object, Union[str, list, dict, Exception, Callable]]):
        self.script = script
        self.calls: list[tuple[int, int]] = []
        self.files: list[str] = []
        self._lock = threading.Lock()

    def extract(self, request: ExtractionRequest) -> str:
        match = _PAGE_RANGE.search(request.user_prompt)
        from_page, to_page = int(match.group(1)), int(match.group(2))
        file_name = _FILE_NAME.search(request.user_prompt).group(1)
        with self._lock:
            self.calls.append((from_page, to_page))
            self.files.append(file_name)
            attempt = sum(
                1 for c, f in zip(self.calls, self.files)
                if c[0] == from_page and f == file_name
            )

        reply = self.script.get((file_name, from_page), self.script.get(from_page, []))
        if callable(reply) and not isinstance(reply, Exception):
            reply = reply(attempt)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return reply
        return json.dumps(reply)


@pytest.fixture
def make_pdf(tmp_path):
    def _make(name: str, pages: int) -> Path:
        return write_pdf(tmp_path / name, pages)
    return _make


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_engine(sleeps):
    """Engine with delays disabled and a recording sleep."""

    def _make(service, context=None, **overrides) -> ExtractionEngine:
        settings = dict(
            pages_per_chunk=8,
            unit_delay=0.0,
            document_delay=0.0,
            retry_base_delay=1.0,
            unit_concurrency=4,
            document_concurrency=2,
        )
        settings.update(overrides)
        return ExtractionEngine(
            ExtractorConfig(**settings),
            context=context or ExtractionContext(),
            service=service,
            sleep=sleeps.append,
        )

    return _make
