"""PyMuPDF helpers for PDF page counting, text extraction and rasterisation.

All functions are synchronous and CPU-bound; async callers run them through
``asyncio.to_thread``.
"""

from __future__ import annotations

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from booking_ocr.utils.errors import UnsupportedDocumentError

logger = structlog.get_logger(logger_name=__name__)

PDF_MIME_TYPE = "application/pdf"


def _open(data: bytes) -> fitz.Document:
    try:
        return fitz.open(stream=data, filetype="pdf")
    except Exception as exc:
        raise UnsupportedDocumentError(f"Unreadable PDF: {exc}") from exc


def count_pages(data: bytes) -> int:
    """Return the number of pages in the PDF, or ``0`` when it cannot be read."""
    try:
        doc = _open(data)
    except UnsupportedDocumentError:
        logger.warning("pdf_page_count_failed", size=len(data))
        return 0
    try:
        return doc.page_count
    finally:
        doc.close()


def extract_text(data: bytes, max_pages: int | None = None) -> tuple[str, int]:
    """Extract the embedded text layer of a PDF.

    Parameters
    ----------
    data:
        Raw PDF bytes.
    max_pages:
        Stop after this many pages when set.

    Returns
    -------
    tuple[str, int]
        ``(text, page_count)`` where text pages are joined with blank lines.

    Raises
    ------
    UnsupportedDocumentError
        If the bytes are not a readable PDF.
    """
    doc = _open(data)
    try:
        pages: list[str] = []
        for index, page in enumerate(doc):
            if max_pages is not None and index >= max_pages:
                break
            pages.append(page.get_text("text").strip())
        return "\n\n".join(p for p in pages if p), doc.page_count
    finally:
        doc.close()


def render_pages_png(data: bytes, max_pages: int = 5, dpi: int = 150) -> list[bytes]:
    """Rasterise the first *max_pages* pages of a PDF to PNG bytes."""
    doc = _open(data)
    try:
        images: list[bytes] = []
        for index, page in enumerate(doc):
            if index >= max_pages:
                break
            pixmap = page.get_pixmap(dpi=dpi)
            images.append(pixmap.tobytes("png"))
        return images
    finally:
        doc.close()
