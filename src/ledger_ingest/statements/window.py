"""
Server-side window processor.

Handles one window request: split the PDF, run a bounded number of chunks
starting at the requested cursor, stream progress events, and finish with a
single done event carrying the window's candidates and the next cursor.
"""

import logging
import math
import time
from typing import Any, Callable, Iterator, Optional

from .adapter import ChunkExtractionAdapter
from .normalize import dedupe_candidates
from .progress import ChunkErrorEvent, DoneEvent, Event, ProgressEvent
from .splitter import SplitResult, split_pdf

logger = logging.getLogger(__name__)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return math.floor(number)


class WindowProcessor:
    """Produce the event stream of one extraction window."""

    def __init__(
        self,
        adapter: ChunkExtractionAdapter,
        chunk_pages: int = 2,
        max_chunks_cap: int = 8,
        default_max_chunks: int = 3,
        inter_chunk_delay: float = 0.25,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.adapter = adapter
        self.chunk_pages = chunk_pages
        self.max_chunks_cap = max_chunks_cap
        self.default_max_chunks = default_max_chunks
        self.inter_chunk_delay = inter_chunk_delay
        self._sleep = sleep

    def close(self) -> None:
        """Close the extraction model's HTTP client."""
        self.adapter.model.close()

    def clamp_request(self, start_chunk: Any, max_chunks: Any) -> tuple[int, int]:
        """
        Sanitize the requested cursor.

        Returns:
            (start_chunk >= 0, max_chunks within [1, max_chunks_cap])
        """
        start = _as_int(start_chunk)
        start = max(0, start) if start is not None else 0

        count = _as_int(max_chunks)
        if count is None:
            count = self.default_max_chunks
        count = min(self.max_chunks_cap, max(1, count))
        return start, count

    def process(self, pdf_bytes: bytes, start_chunk: Any = 0, max_chunks: Any = None) -> Iterator[Event]:
        """
        Split the PDF and return the window's event iterator.

        The PDF is split eagerly so that an unreadable document raises
        StatementReadError here, before any event is produced.
        """
        split = split_pdf(pdf_bytes, self.chunk_pages)
        start, count = self.clamp_request(start_chunk, max_chunks)
        return self._run(split, start, count)

    def _run(self, split: SplitResult, start: int, count: int) -> Iterator[Event]:
        total = split.total_chunks

        if start >= total:
            yield DoneEvent(
                transactions=[],
                total_chunks=total,
                start_chunk=start,
                end_chunk=start,
                has_more=False,
            )
            return

        end = min(total, start + count)
        found: list[dict] = []
        failed_chunks: list[int] = []
        warnings: list[str] = []

        for i in range(start, end):
            chunk = split.chunks[i]
            yield ProgressEvent(
                chunk=i + 1,
                total=total,
                found=len(found),
                message=f"Analyzing pages {chunk.page_label}...",
            )
            logger.info("Processing chunk %d/%d (pages %s)", i + 1, total, chunk.page_label)

            result = yield from self.adapter.iter_extract(chunk)

            if result.ok:
                found.extend(result.candidates)
                warnings.extend(result.warnings)
            else:
                failed_chunks.append(i + 1)
                yield ChunkErrorEvent(chunk=i + 1, error=result.error or "Unknown error")

            if i < end - 1:
                self._sleep(self.inter_chunk_delay)

        found = dedupe_candidates(found)
        has_more = end < total

        logger.info(
            "Window %d-%d: %d transactions, %d failed chunks", start, end, len(found), len(failed_chunks)
        )
        yield DoneEvent(
            transactions=found,
            total_chunks=total,
            start_chunk=start,
            end_chunk=end,
            has_more=has_more,
            next_start_chunk=end if has_more else None,
            failed_chunks=failed_chunks,
            warnings=warnings,
        )
