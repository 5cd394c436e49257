"""
Exam Extractor
==============
LLM-backed extraction of structured questions from exam-paper PDFs.

Architecture:
    - Filtering Policy: Year pre-filter on the document file name
    - Segmenter: Splits each PDF into bounded page-range units
    - Dispatcher: Bounded-concurrency runner for units and documents
    - Unit Processor: Service call, retry, skip/items classification
    - Reconciler: Skip handling, page-ordered merge and deduplication
    - Extraction Engine: Batch orchestration and result artifacts

Version: 1.0.0
"""

__version__ = "1.0.0"
