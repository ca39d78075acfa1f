"""
Extraction-window orchestrator (client side).

A statement is extracted through a sequence of windows. Each window is one
round trip to the window endpoint that processes at most
``max_chunks_per_window`` chunks and answers with a terminal ``done`` event
carrying the next cursor. The orchestrator loops until the server reports
``hasMore = false``, then normalizes and deduplicates everything it received.

Protocol invariants (violations raise WindowProtocolError):
- every window ends with exactly one done event
- when hasMore is true, nextStartChunk is a finite integer strictly greater
  than the window's start
- at most ``max_windows`` round trips per statement (circuit breaker)
"""

import base64
import binascii
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ledger_ingest.schemas.transactions import BankTransaction

from .normalize import normalize_and_dedupe
from .progress import SSEDecoder
from .window import WindowProcessor

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict], None]

WINDOW_ENDPOINT = "/api/statements/parse/"


class WindowError(Exception):
    """Base exception for window protocol errors."""

    pass


class WindowProtocolError(WindowError):
    """The window endpoint violated the cursor protocol."""

    pass


class WindowTimeoutError(WindowError):
    """A window round trip exceeded its deadline. The import can be retried."""

    pass


class WindowTransportError(WindowError):
    """The window endpoint could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Window endpoint error {status_code}: {message}" if status_code else message)


@dataclass
class ExtractionWindow:
    """Client-side cursor state for one statement. Not persisted."""

    start_chunk: int = 0
    max_chunks_per_window: int = 3
    total_chunks: Optional[int] = None
    transactions: list[dict] = field(default_factory=list)
    failed_chunks: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    has_more: bool = True
    next_start_chunk: Optional[int] = 0
    windows_completed: int = 0


@dataclass
class StatementParseResult:
    """Final outcome of a statement extraction."""

    transactions: list[BankTransaction]
    total_chunks: int
    windows: int
    candidates_received: int
    failed_chunks: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        return [f"Chunk {n} failed" for n in self.failed_chunks]

    def to_dict(self) -> dict:
        return {
            "transactions": [tx.to_dict() for tx in self.transactions],
            "count": len(self.transactions),
            "total_chunks": self.total_chunks,
            "windows": self.windows,
            "candidates_received": self.candidates_received,
            "failed_chunks": self.failed_chunks,
            "warnings": self.warnings,
        }


class WindowTransport(ABC):
    """Carries one window request and returns its done event."""

    @abstractmethod
    def request_window(
        self,
        pdf_b64: str,
        start_chunk: int,
        max_chunks: int,
        on_event: Optional[EventCallback] = None,
    ) -> Optional[dict]:
        """
        Run one window.

        Non-terminal events are passed to ``on_event`` as they arrive.

        Returns:
            The done event, or None if the stream ended without one
        """
        pass

    def close(self) -> None:
        """Release resources held by the transport."""
        pass


class LocalWindowTransport(WindowTransport):
    """Runs windows in-process through a WindowProcessor."""

    def __init__(self, processor: WindowProcessor) -> None:
        self.processor = processor

    def close(self) -> None:
        self.processor.close()

    def request_window(
        self,
        pdf_b64: str,
        start_chunk: int,
        max_chunks: int,
        on_event: Optional[EventCallback] = None,
    ) -> Optional[dict]:
        try:
            pdf_bytes = base64.b64decode(pdf_b64)
        except (binascii.Error, ValueError) as e:
            raise WindowTransportError(f"Invalid PDF payload: {e}") from e

        done = None
        for event in self.processor.process(pdf_bytes, start_chunk, max_chunks):
            data = event.to_dict()
            if data["type"] == "done":
                done = data
            elif on_event:
                on_event(data)
        return done


class HttpWindowTransport(WindowTransport):
    """
    Window endpoint client (requests, streamed SSE response).

    The window request is not retried automatically: a retry would re-run
    model calls. Only connection establishment is retried.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 300,
        connect_retries: int = 2,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the transport.

        Args:
            base_url: Server URL (e.g., "http://localhost:8080")
            token: Optional bearer token
            timeout_seconds: Total deadline for one window round trip
            connect_retries: Retries for failed connection attempts
            session: Optional preconfigured session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "text/event-stream"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

        retry_strategy = Retry(
            total=connect_retries,
            connect=connect_retries,
            read=0,
            status=0,
            other=0,
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def close(self) -> None:
        """Close HTTP session."""
        self.session.close()

    def request_window(
        self,
        pdf_b64: str,
        start_chunk: int,
        max_chunks: int,
        on_event: Optional[EventCallback] = None,
    ) -> Optional[dict]:
        url = f"{self.base_url}{WINDOW_ENDPOINT}"
        deadline = time.monotonic() + self.timeout_seconds

        try:
            response = self.session.post(
                url,
                json={"pdfBase64": pdf_b64, "startChunk": start_chunk, "maxChunks": max_chunks},
                stream=True,
                timeout=(10, self.timeout_seconds),
            )
        except requests.exceptions.Timeout as e:
            raise WindowTimeoutError(f"Window request timed out: {e}") from e
        except requests.exceptions.ConnectionError as e:
            raise WindowTransportError(f"Failed to connect to {self.base_url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise WindowTransportError(f"Request failed: {e}") from e

        with response:
            if not response.ok:
                body = response.text
                message = response.reason or "error"
                try:
                    payload = response.json()
                except ValueError:
                    payload = None
                if isinstance(payload, dict) and payload.get("error"):
                    message = str(payload["error"])
                raise WindowTransportError(message, status_code=response.status_code, response_body=body)

            decoder = SSEDecoder()
            done = None
            try:
                for data in response.iter_content(chunk_size=None):
                    for event in decoder.feed(data):
                        if event.get("type") == "done":
                            done = event
                        elif on_event:
                            on_event(event)
                    if time.monotonic() > deadline:
                        raise WindowTimeoutError(
                            f"Window starting at chunk {start_chunk} exceeded {self.timeout_seconds}s"
                        )
            except requests.exceptions.Timeout as e:
                raise WindowTimeoutError(f"Window stream timed out: {e}") from e
            except requests.exceptions.RequestException as e:
                raise WindowTransportError(f"Window stream broken: {e}") from e

            for event in decoder.flush():
                if event.get("type") == "done":
                    done = event

        return done


def _valid_cursor(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and int(value) == value


class WindowOrchestrator:
    """Drives windows until the statement is fully processed."""

    def __init__(
        self,
        transport: WindowTransport,
        max_chunks_per_window: int = 3,
        max_windows: int = 50,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        self.transport = transport
        self.max_chunks_per_window = max_chunks_per_window
        self.max_windows = max_windows
        self.on_event = on_event

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "WindowOrchestrator":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def advance(self, window: ExtractionWindow, pdf_b64: str) -> ExtractionWindow:
        """
        Perform exactly one window round trip and update the cursor state.

        Raises:
            WindowProtocolError: Missing done event, bad cursor, or too many windows
            WindowTimeoutError: The round trip exceeded its deadline
            WindowTransportError: The endpoint failed
        """
        if window.windows_completed >= self.max_windows:
            raise WindowProtocolError(
                f"Circuit breaker: {window.windows_completed} windows without completion"
            )

        start = window.start_chunk
        logger.debug("Requesting window at chunk %d (max %d)", start, window.max_chunks_per_window)

        done = self.transport.request_window(
            pdf_b64, start, window.max_chunks_per_window, on_event=self.on_event
        )
        if done is None:
            raise WindowProtocolError(f"Window at chunk {start} ended without a done event")

        has_more = done.get("hasMore")
        if not isinstance(has_more, bool):
            raise WindowProtocolError(f"Window at chunk {start}: hasMore missing or not a boolean")

        next_start = done.get("nextStartChunk")
        if has_more:
            if not _valid_cursor(next_start):
                raise WindowProtocolError(
                    f"Window at chunk {start}: invalid nextStartChunk {next_start!r}"
                )
            next_start = int(next_start)
            if next_start <= start:
                raise WindowProtocolError(
                    f"Window at chunk {start}: non-increasing nextStartChunk {next_start}"
                )

        transactions = done.get("transactions") or []
        if not isinstance(transactions, list):
            raise WindowProtocolError(f"Window at chunk {start}: transactions is not a list")

        window.total_chunks = done.get("totalChunks", window.total_chunks)
        window.transactions.extend(transactions)
        window.failed_chunks.extend(done.get("failedChunks") or [])
        window.warnings.extend(done.get("warnings") or [])
        window.windows_completed += 1
        window.has_more = has_more

        if has_more:
            window.next_start_chunk = next_start
            window.start_chunk = next_start
        else:
            window.next_start_chunk = None

        logger.info(
            "Window %d done: chunks %s-%s of %s, %d transactions",
            window.windows_completed,
            done.get("startChunk", start),
            done.get("endChunk"),
            window.total_chunks,
            len(transactions),
        )
        return window

    def run(self, pdf_bytes: bytes) -> StatementParseResult:
        """Extract a whole statement and return normalized, deduplicated transactions."""
        pdf_b64 = base64.b64encode(pdf_bytes).decode("ascii")
        window = ExtractionWindow(max_chunks_per_window=self.max_chunks_per_window)

        while window.has_more:
            self.advance(window, pdf_b64)

        transactions = normalize_and_dedupe(window.transactions)

        logger.info(
            "Statement extracted: %d transactions from %d candidates in %d windows (%d failed chunks)",
            len(transactions),
            len(window.transactions),
            window.windows_completed,
            len(window.failed_chunks),
        )
        return StatementParseResult(
            transactions=transactions,
            total_chunks=window.total_chunks or 0,
            windows=window.windows_completed,
            candidates_received=len(window.transactions),
            failed_chunks=list(window.failed_chunks),
            warnings=list(window.warnings),
        )
