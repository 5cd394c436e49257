"""
Segmenter
=========
Splits a PDF into bounded page-range units using PyMuPDF (fitz).
Each unit is a standalone PDF small enough for one service request.
"""

from __future__ import annotations

import logging

import fitz  # PyMuPDF

from .exceptions import SegmentationError
from .models import Unit

logger = logging.getLogger(__name__)

DEFAULT_PAGES_PER_CHUNK = 10


def plan_page_ranges(
    total_pages: int,
    pages_per_chunk: int = DEFAULT_PAGES_PER_CHUNK,
) -> list[tuple[int, int]]:
    """
    Partition ``[1, total_pages]`` into consecutive ranges of at most
    ``pages_per_chunk`` pages. The last range may be shorter.
    """
    if pages_per_chunk < 1:
        raise SegmentationError(
            f"pages_per_chunk must be >= 1, got {pages_per_chunk}"
        )
    if total_pages < 1:
        raise SegmentationError("Document has no extractable pages")

    ranges = []
    for start in range(1, total_pages + 1, pages_per_chunk):
        end = min(start + pages_per_chunk - 1, total_pages)
        ranges.append((start, end))
    return ranges


class Segmenter:
    """Turns document bytes into an ordered list of Units."""

    def __init__(self, pages_per_chunk: int = DEFAULT_PAGES_PER_CHUNK):
        self.pages_per_chunk = pages_per_chunk

    def page_count(self, content: bytes) -> int:
        with self._open(content) as doc:
            return doc.page_count

    def segment(self, content: bytes) -> list[Unit]:
        """
        Split PDF bytes into units.

        Raises:
            SegmentationError: If the PDF is unreadable or has no pages.
        """
        with self._open(content) as doc:
            ranges = plan_page_ranges(doc.page_count, self.pages_per_chunk)
            units = []
            for index, (from_page, to_page) in enumerate(ranges):
                with fitz.open() as part:
                    # insert_pdf takes 0-based inclusive page indices
                    part.insert_pdf(
                        doc, from_page=from_page - 1, to_page=to_page - 1
                    )
                    data = part.tobytes()
                units.append(Unit(
                    index=index,
                    from_page=from_page,
                    to_page=to_page,
                    content=data,
                ))

        logger.debug(
            f"Segmented {ranges[-1][1]} pages into {len(units)} unit(s) "
            f"of <= {self.pages_per_chunk} pages"
        )
        return units

    def _open(self, content: bytes) -> fitz.Document:
        if not content:
            raise SegmentationError("Document is empty")
        try:
            return fitz.open(stream=content, filetype="pdf")
        except Exception as e:
            raise SegmentationError(f"Cannot open PDF: {e}") from e
