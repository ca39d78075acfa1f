"""
PDF page-chunk splitter.

Bank statements are sent to the extraction model a few pages at a time so
that each response stays well inside the model's output limit.
"""

import io
import logging
from dataclasses import dataclass

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

logger = logging.getLogger(__name__)


class StatementReadError(Exception):
    """The statement PDF cannot be opened or has no pages."""

    pass


@dataclass
class PdfChunk:
    """A contiguous page range of the source PDF.

    Pages are 1-based and inclusive; index is the 0-based chunk position.
    """

    index: int
    start_page: int
    end_page: int
    data: bytes

    @property
    def page_label(self) -> str:
        return f"{self.start_page}-{self.end_page}"


@dataclass
class SplitResult:
    chunks: list[PdfChunk]
    total_pages: int

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)


def split_pdf(pdf_bytes: bytes, pages_per_chunk: int = 2) -> SplitResult:
    """
    Split a PDF into consecutive chunks of ``pages_per_chunk`` pages.

    A document that fits in a single chunk is returned unchanged (the
    original bytes, not a re-serialized copy).

    Raises:
        StatementReadError: If the PDF is unreadable or empty
        ValueError: If pages_per_chunk < 1
    """
    if pages_per_chunk < 1:
        raise ValueError(f"pages_per_chunk must be >= 1, got: {pages_per_chunk}")

    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        total_pages = len(reader.pages)
    except (PyPdfError, ValueError, OSError) as e:
        raise StatementReadError(f"Unreadable PDF: {e}") from e

    if total_pages == 0:
        raise StatementReadError("PDF has no pages")

    if total_pages <= pages_per_chunk:
        return SplitResult(
            chunks=[PdfChunk(index=0, start_page=1, end_page=total_pages, data=pdf_bytes)],
            total_pages=total_pages,
        )

    chunks: list[PdfChunk] = []
    for index, first in enumerate(range(0, total_pages, pages_per_chunk)):
        last = min(first + pages_per_chunk, total_pages)
        writer = PdfWriter()
        for page_number in range(first, last):
            writer.add_page(reader.pages[page_number])
        buffer = io.BytesIO()
        writer.write(buffer)
        chunks.append(
            PdfChunk(index=index, start_page=first + 1, end_page=last, data=buffer.getvalue())
        )

    logger.info(
        "PDF split into %d chunks (%d pages, %d/chunk)", len(chunks), total_pages, pages_per_chunk
    )
    return SplitResult(chunks=chunks, total_pages=total_pages)
