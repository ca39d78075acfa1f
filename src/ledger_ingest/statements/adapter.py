"""
Chunk extraction adapter.

Runs the extraction model on one PDF chunk with bounded retries and turns
its raw output into sanitized transaction candidates. A chunk that cannot be
extracted is reported as failed; the adapter itself never raises for model
errors.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Generator, Optional

from .model_client import ExtractionModel, ModelError
from .normalize import dedupe_candidates, sanitize_candidate
from .progress import WaitingEvent
from .prompts import StatementPrompt
from .repair import repair_transactions
from .splitter import PdfChunk

logger = logging.getLogger(__name__)


@dataclass
class ChunkResult:
    """Outcome of one chunk. ``error`` is set only when the chunk failed."""

    chunk_number: int  # 1-based
    candidates: list[dict] = field(default_factory=list)
    finish_reason: str = ""
    raw_length: int = 0
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class ChunkExtractionAdapter:
    """
    Extract candidates from PDF chunks through an ExtractionModel.

    Retry policy:
    - Rate limits (429) and transient failures (5xx, deadline) are retried
    - Wait before retry n is backoff_seconds * 2**(n-1)
    - Other errors, or running out of attempts, fail the chunk
    """

    def __init__(
        self,
        model: ExtractionModel,
        prompt: Optional[StatementPrompt] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {max_attempts}")
        self.model = model
        self.prompt = prompt or StatementPrompt()
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def backoff_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        return self.backoff_seconds * 2 ** (attempt - 1)

    def iter_extract(self, chunk: PdfChunk) -> Generator[WaitingEvent, None, ChunkResult]:
        """
        Extract one chunk, yielding a WaitingEvent before every backoff sleep.

        Use with ``yield from`` to forward the waiting events; the generator's
        return value is the ChunkResult.
        """
        number = chunk.index + 1

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.model.generate(chunk.data, self.prompt.text)
            except ModelError as e:
                if e.retryable and attempt < self.max_attempts:
                    wait = self.backoff_for(attempt)
                    logger.warning(
                        "Chunk %d attempt %d/%d failed (%s). Waiting %gs...",
                        number,
                        attempt,
                        self.max_attempts,
                        e,
                        wait,
                    )
                    yield WaitingEvent(
                        chunk=number,
                        wait_sec=wait,
                        message=f"Retry chunk {number} in {wait:g}s...",
                    )
                    self._sleep(wait)
                    continue

                logger.error("Chunk %d failed (attempt %d/%d): %s", number, attempt, self.max_attempts, e)
                return ChunkResult(chunk_number=number, error=str(e), attempts=attempt)

            raw = repair_transactions(response.text)
            sanitized = [c for c in (sanitize_candidate(item) for item in raw) if c is not None]
            candidates = dedupe_candidates(sanitized)

            warnings = []
            if response.truncated:
                warnings.append(f"Chunk {number}: output truncated (MAX_TOKENS).")
            if not candidates:
                warnings.append(f"Chunk {number}: no transactions extracted.")

            logger.info(
                "Chunk %d: %d transactions (finishReason=%s, chars=%d, prompt=%s)",
                number,
                len(candidates),
                response.finish_reason,
                len(response.text),
                self.prompt.version,
            )
            return ChunkResult(
                chunk_number=number,
                candidates=candidates,
                finish_reason=response.finish_reason,
                raw_length=len(response.text),
                warnings=warnings,
                attempts=attempt,
            )

        # Unreachable: the last attempt always returns
        return ChunkResult(chunk_number=number, error="no attempts made", attempts=self.max_attempts)

    def extract_chunk(
        self,
        chunk: PdfChunk,
        on_event: Optional[Callable[[WaitingEvent], None]] = None,
    ) -> ChunkResult:
        """Extract one chunk, reporting waiting events through ``on_event``."""
        steps = self.iter_extract(chunk)
        while True:
            try:
                event = next(steps)
            except StopIteration as stop:
                return stop.value
            if on_event:
                on_event(event)
