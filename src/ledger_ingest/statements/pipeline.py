"""
Construction of the statement extraction pipeline from configuration.

Both the window endpoint and the CLI build their processors and
orchestrators here so that every knob comes from the same Config.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .adapter import ChunkExtractionAdapter
from .model_client import ExtractionModel, GeminiExtractionModel
from .orchestrator import (
    EventCallback,
    HttpWindowTransport,
    LocalWindowTransport,
    WindowOrchestrator,
    WindowTransport,
)
from .window import WindowProcessor

if TYPE_CHECKING:
    from ledger_ingest.config import Config


def build_window_processor(config: Config, model: Optional[ExtractionModel] = None) -> WindowProcessor:
    """
    Build the server-side window processor.

    Raises:
        ConfigValidationError: No model given and no API key configured
    """
    if model is None:
        config.require_model_key()
        model = GeminiExtractionModel(config.model)

    st = config.statements
    adapter = ChunkExtractionAdapter(
        model,
        max_attempts=st.max_attempts,
        backoff_seconds=st.backoff_seconds,
    )
    return WindowProcessor(
        adapter,
        chunk_pages=st.chunk_pages,
        max_chunks_cap=st.max_chunks_cap,
        default_max_chunks=st.max_chunks_per_window,
        inter_chunk_delay=st.inter_chunk_delay,
    )


def build_orchestrator(
    config: Config,
    remote: bool = False,
    on_event: Optional[EventCallback] = None,
    model: Optional[ExtractionModel] = None,
) -> WindowOrchestrator:
    """
    Build a client orchestrator.

    With ``remote`` the windows go to the configured window endpoint;
    otherwise they run in-process.
    """
    transport: WindowTransport
    if remote:
        transport = HttpWindowTransport(
            config.server.base_url,
            token=config.server.token,
            timeout_seconds=config.statements.window_timeout_seconds,
        )
    else:
        transport = LocalWindowTransport(build_window_processor(config, model=model))

    return WindowOrchestrator(
        transport,
        max_chunks_per_window=config.statements.max_chunks_per_window,
        max_windows=config.statements.max_windows,
        on_event=on_event,
    )
