"""
Progress observers. The pipeline reports progress through these hooks
only; the default observer does nothing so core logic stays silent
under test. Hooks may be called from worker threads.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BatchResult, DocumentResult, Unit
    from .outcomes import UnitOutcome

logger = logging.getLogger(__name__)


class ProgressObserver:
    """No-op base observer."""

    def on_batch_start(self, total_documents: int) -> None:
        pass

    def on_document_start(self, identifier: str, index: int, total: int) -> None:
        pass

    def on_units_planned(self, identifier: str, total_units: int) -> None:
        pass

    def on_unit_attempt(self, identifier: str, unit: Unit, attempt: int) -> None:
        pass

    def on_unit_done(self, identifier: str, outcome: UnitOutcome) -> None:
        pass

    def on_document_done(self, result: DocumentResult) -> None:
        pass

    def on_batch_done(self, result: BatchResult) -> None:
        pass


class LoggingObserver(ProgressObserver):
    """Narrates progress to the log with approximate running counters."""

    def __init__(self):
        self._lock = threading.Lock()
        self.documents_done = 0
        self.units_done = 0
        self.total_documents = 0

    def on_batch_start(self, total_documents: int) -> None:
        self.total_documents = total_documents
        logger.info(f"Dispatching {total_documents} document(s)")

    def on_document_start(self, identifier: str, index: int, total: int) -> None:
        logger.info(f"[{index + 1}/{total}] Checking {identifier}")

    def on_units_planned(self, identifier: str, total_units: int) -> None:
        logger.info(f"{identifier}: split into {total_units} unit(s)")

    def on_unit_done(self, identifier: str, outcome: UnitOutcome) -> None:
        with self._lock:
            self.units_done += 1

    def on_document_done(self, result: DocumentResult) -> None:
        with self._lock:
            self.documents_done += 1
            done = self.documents_done
        if result.skipped:
            status = f"skipped ({result.metadata.skipped_reason})"
        elif result.success:
            status = f"{len(result.questions)} question(s)"
        else:
            status = "failed"
        logger.info(
            f"Finished {result.file_name} [{done}/{self.total_documents}]: "
            f"{status}"
        )
