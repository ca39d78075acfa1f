"""
Chunked, model-assisted bank statement extraction.
"""

from .adapter import ChunkExtractionAdapter, ChunkResult
from .model_client import (
    ExtractionModel,
    GeminiExtractionModel,
    ModelAPIError,
    ModelError,
    ModelResponse,
    RateLimitedError,
    TransientModelError,
)
from .normalize import (
    normalize_and_dedupe,
    normalize_transaction,
    parse_italian_date,
    sanitize_candidate,
    to_number,
)
from .orchestrator import (
    ExtractionWindow,
    HttpWindowTransport,
    LocalWindowTransport,
    StatementParseResult,
    WindowError,
    WindowOrchestrator,
    WindowProtocolError,
    WindowTimeoutError,
    WindowTransport,
    WindowTransportError,
)
from .pipeline import build_orchestrator, build_window_processor
from .progress import SSEDecoder, encode_sse
from .prompts import StatementPrompt
from .repair import repair_transactions
from .splitter import PdfChunk, SplitResult, StatementReadError, split_pdf
from .window import WindowProcessor

__all__ = [
    # Splitting
    "split_pdf",
    "PdfChunk",
    "SplitResult",
    "StatementReadError",
    # Model
    "ExtractionModel",
    "GeminiExtractionModel",
    "ModelResponse",
    "ModelError",
    "RateLimitedError",
    "TransientModelError",
    "ModelAPIError",
    "StatementPrompt",
    # Chunk processing
    "ChunkExtractionAdapter",
    "ChunkResult",
    "WindowProcessor",
    "repair_transactions",
    "sanitize_candidate",
    "to_number",
    "parse_italian_date",
    "normalize_transaction",
    "normalize_and_dedupe",
    # Progress channel
    "encode_sse",
    "SSEDecoder",
    # Orchestration
    "ExtractionWindow",
    "StatementParseResult",
    "WindowOrchestrator",
    "WindowTransport",
    "HttpWindowTransport",
    "LocalWindowTransport",
    "WindowError",
    "WindowProtocolError",
    "WindowTimeoutError",
    "WindowTransportError",
    "build_window_processor",
    "build_orchestrator",
]
