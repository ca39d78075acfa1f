"""
Streaming progress channel.

Events are serialized as server-sent events: one ``data: <json>`` line
followed by a blank line. Keys on the wire are camelCase; chunk numbers in
progress/waiting/chunk_error events are 1-based, the window cursor
(startChunk / nextStartChunk) is 0-based.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

MAX_CHUNK_ERROR_LENGTH = 200


@dataclass
class ProgressEvent:
    chunk: int
    total: int
    found: int
    message: str

    type = "progress"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "chunk": self.chunk,
            "total": self.total,
            "found": self.found,
            "message": self.message,
        }


@dataclass
class WaitingEvent:
    chunk: int
    wait_sec: float
    message: str

    type = "waiting"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "chunk": self.chunk,
            "waitSec": self.wait_sec,
            "message": self.message,
        }


@dataclass
class ChunkErrorEvent:
    chunk: int
    error: str

    type = "chunk_error"

    def __post_init__(self) -> None:
        self.error = self.error[:MAX_CHUNK_ERROR_LENGTH]

    def to_dict(self) -> dict:
        return {"type": self.type, "chunk": self.chunk, "error": self.error}


@dataclass
class DoneEvent:
    """Terminal event of a window; carries the window's results and cursor."""

    transactions: list[dict]
    total_chunks: int
    start_chunk: int
    end_chunk: int
    has_more: bool
    next_start_chunk: Optional[int] = None
    failed_chunks: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    type = "done"

    @property
    def count(self) -> int:
        return len(self.transactions)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "type": self.type,
            "transactions": self.transactions,
            "count": self.count,
            "totalChunks": self.total_chunks,
            "startChunk": self.start_chunk,
            "endChunk": self.end_chunk,
            "hasMore": self.has_more,
        }
        if self.has_more:
            data["nextStartChunk"] = self.next_start_chunk
        if self.failed_chunks:
            data["failedChunks"] = self.failed_chunks
        if self.warnings:
            data["warnings"] = self.warnings
        return data


Event = Union[ProgressEvent, WaitingEvent, ChunkErrorEvent, DoneEvent]


def encode_sse(event: Union[Event, dict]) -> bytes:
    """Serialize one event as an SSE ``data:`` frame."""
    payload = event if isinstance(event, dict) else event.to_dict()
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _normalize_newlines(data: bytes) -> bytes:
    return data.replace(b"\r\n", b"\n").replace(b"\r", b"\n")


class SSEDecoder:
    """
    Incremental SSE frame decoder.

    Bytes may arrive split at arbitrary positions (even inside a UTF-8
    sequence); feed() returns the events completed so far and keeps the
    remainder buffered. Frames that are not JSON are skipped.
    Lines may end in LF, CRLF or a bare CR.
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, data: bytes) -> list[dict]:
        buffer = self._buffer + data
        # A trailing CR may be the first half of a CRLF split across reads.
        held = b"\r" if buffer.endswith(b"\r") else b""
        if held:
            buffer = buffer[:-1]
        buffer = _normalize_newlines(buffer)
        events = []
        while b"\n\n" in buffer:
            frame, buffer = buffer.split(b"\n\n", 1)
            event = self._parse_frame(frame)
            if event is not None:
                events.append(event)
        self._buffer = buffer + held
        return events

    def flush(self) -> list[dict]:
        """Parse whatever is left when the stream ends without a blank line."""
        frame, self._buffer = _normalize_newlines(self._buffer), b""
        event = self._parse_frame(frame)
        return [event] if event is not None else []

    @staticmethod
    def _parse_frame(frame: bytes) -> Optional[dict]:
        lines = frame.decode("utf-8", errors="replace").split("\n")
        data = "\n".join(line[5:].lstrip(" ") for line in lines if line.startswith("data:"))
        if not data.strip():
            return None
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON SSE frame (%d bytes)", len(frame))
            return None
        return event if isinstance(event, dict) else None
