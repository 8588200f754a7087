"""Batch processing on top of the failover orchestrator.

Documents run in chunks of ``concurrency``; each chunk finishes before the
next starts.  A failing document never aborts the batch: its slot holds a
failed :class:`OCRResult` carrying the error message.
"""

from __future__ import annotations

import time

from booking_ocr.models.ocr import OCRDocument, OCRResult, ProcessOptions
from booking_ocr.models.provider import BatchItemResult, BatchResult, BatchSummary
from booking_ocr.services.ocr_service import OCRMultiProviderService
from booking_ocr.utils.concurrency import gather_in_chunks
from booking_ocr.utils.logging import get_logger

DEFAULT_BATCH_CONCURRENCY = 3


class BatchCoordinator:
    """Runs many documents through one :class:`OCRMultiProviderService`."""

    def __init__(
        self,
        service: OCRMultiProviderService,
        max_documents: int = 10,
        default_concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> None:
        self._service = service
        self._max_documents = max_documents
        self._default_concurrency = default_concurrency
        self._logger = get_logger(__name__)

    @property
    def max_documents(self) -> int:
        return self._max_documents

    async def batch_process(
        self,
        documents: list[OCRDocument],
        concurrency: int | None = None,
        options: ProcessOptions | None = None,
    ) -> BatchResult:
        """Process *documents*, returning one result per input in input order.

        Args:
            documents: Documents to process.
            concurrency: Chunk size; defaults to the coordinator's setting.
            options: Applied to every document.

        Raises:
            ValueError: If *concurrency* is below 1.
        """
        if concurrency is None:
            concurrency = self._default_concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self._logger.info("batch_started", documents=len(documents), concurrency=concurrency)
        start = time.perf_counter()

        def factory(document: OCRDocument):
            return lambda: self._service.process_document(document, options)

        outcomes = await gather_in_chunks([factory(d) for d in documents], concurrency)

        items: list[BatchItemResult] = []
        for document, outcome in zip(documents, outcomes):
            if isinstance(outcome, Exception):
                self._logger.warning(
                    "batch_document_failed",
                    document_id=document.id,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                outcome = OCRResult.failure(str(outcome), provider="none")
            elif isinstance(outcome, BaseException):
                raise outcome
            items.append(BatchItemResult(document_id=document.id, filename=document.filename, result=outcome))

        elapsed_ms = (time.perf_counter() - start) * 1000
        successful = sum(1 for item in items if item.result.success)
        summary = BatchSummary(
            total=len(items),
            successful=successful,
            failed=len(items) - successful,
            processing_time_ms=round(elapsed_ms, 1),
            average_time_per_document_ms=round(elapsed_ms / len(items), 1) if items else 0.0,
        )
        self._logger.info(
            "batch_finished",
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            duration_ms=summary.processing_time_ms,
        )
        return BatchResult(summary=summary, results=items)
