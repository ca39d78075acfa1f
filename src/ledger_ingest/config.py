"""
Configuration management (SSOT).

This module defines ALL configuration for the ingestion pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- The extraction model API key is an explicit config value handed to the
  model client at construction time. Nothing reads it from global state.
- The chunk cursor limits (max_chunks_cap, max_windows) are always finite.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class ExtractionModelConfig:
    """Extraction model (Gemini) configuration.

    SSOT for model settings:
    - api_key: injected into GeminiExtractionModel, never global
    - max_output_tokens: larger values reduce truncation but slow chunks down
    """

    api_key: str = ""
    model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    # Request timeout (seconds) for a single chunk
    timeout_seconds: int = 120
    max_output_tokens: int = 32768
    temperature: float = 0.0


@dataclass
class StatementConfig:
    """Bank statement chunking, retry and window settings."""

    # Pages per PDF chunk sent to the model
    chunk_pages: int = 2
    # Chunks requested per window round trip
    max_chunks_per_window: int = 3
    # Server-side hard cap on chunks per window
    max_chunks_cap: int = 8
    # Client circuit breaker
    max_windows: int = 50
    # Deadline for one window round trip (seconds)
    window_timeout_seconds: int = 300
    # Attempts per chunk (first call + retries)
    max_attempts: int = 3
    # Base wait before the first retry, doubled on each further retry
    backoff_seconds: float = 15.0
    # Proactive pause between chunk requests
    inter_chunk_delay: float = 0.25
    # Rows per persistence batch
    save_batch_size: int = 50
    # Error strings kept in an import summary
    max_reported_errors: int = 20


@dataclass
class ServerConfig:
    """Window endpoint configuration.

    - base_url: where the client orchestrator sends window requests
    - token: optional bearer token for proxied deployments
    """

    base_url: str = "http://localhost:8080"
    token: str | None = None
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    model: ExtractionModelConfig = field(default_factory=ExtractionModelConfig)
    statements: StatementConfig = field(default_factory=StatementConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/ledger.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        st = self.statements
        if st.chunk_pages < 1:
            errors.append("statements.chunk_pages must be >= 1")
        if st.max_chunks_per_window < 1:
            errors.append("statements.max_chunks_per_window must be >= 1")
        if st.max_chunks_cap < st.max_chunks_per_window:
            errors.append("statements.max_chunks_cap must be >= max_chunks_per_window")
        if st.max_windows < 1:
            errors.append("statements.max_windows must be >= 1")
        if st.max_attempts < 1:
            errors.append("statements.max_attempts must be >= 1")
        if st.save_batch_size < 1:
            errors.append("statements.save_batch_size must be >= 1")

        if not self.server.base_url:
            errors.append("server.base_url is required")

        return errors

    def require_model_key(self) -> str:
        """Return the model API key or raise if it is not configured."""
        if not self.model.api_key:
            raise ConfigValidationError(
                "model.api_key is not configured (set GEMINI_API_KEY or model.api_key)"
            )
        return self.model.api_key


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name, "")
    if not value:
        return int(default)
    try:
        return int(value)
    except ValueError:
        return int(default)


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - GEMINI_API_KEY
    - GEMINI_MODEL
    - GEMINI_MAX_OUTPUT_TOKENS
    - PDF_CHUNK_PAGES
    - LEDGER_INGEST_URL (window endpoint base URL)
    - LEDGER_INGEST_TOKEN
    - LEDGER_STATE_DB
    """
    config_path = Path(config_path)
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Model config
    model_data = data.get("model", {})
    model = ExtractionModelConfig(
        api_key=os.environ.get("GEMINI_API_KEY", model_data.get("api_key", "")) or "",
        model=os.environ.get("GEMINI_MODEL", model_data.get("model", "gemini-2.5-flash")),
        base_url=model_data.get("base_url", "https://generativelanguage.googleapis.com/v1beta"),
        timeout_seconds=model_data.get("timeout_seconds", 120),
        max_output_tokens=_int_env(
            "GEMINI_MAX_OUTPUT_TOKENS", model_data.get("max_output_tokens", 32768)
        ),
        temperature=model_data.get("temperature", 0.0),
    )

    # Statement pipeline config
    st_data = data.get("statements", {})
    statements = StatementConfig(
        chunk_pages=_int_env("PDF_CHUNK_PAGES", st_data.get("chunk_pages", 2)),
        max_chunks_per_window=st_data.get("max_chunks_per_window", 3),
        max_chunks_cap=st_data.get("max_chunks_cap", 8),
        max_windows=st_data.get("max_windows", 50),
        window_timeout_seconds=st_data.get("window_timeout_seconds", 300),
        max_attempts=st_data.get("max_attempts", 3),
        backoff_seconds=st_data.get("backoff_seconds", 15.0),
        inter_chunk_delay=st_data.get("inter_chunk_delay", 0.25),
        save_batch_size=st_data.get("save_batch_size", 50),
        max_reported_errors=st_data.get("max_reported_errors", 20),
    )

    # Server config
    server_data = data.get("server", {})
    server = ServerConfig(
        base_url=os.environ.get(
            "LEDGER_INGEST_URL", server_data.get("base_url", "http://localhost:8080")
        ),
        token=os.environ.get("LEDGER_INGEST_TOKEN", server_data.get("token")),
        host=server_data.get("host", "127.0.0.1"),
        port=server_data.get("port", 8080),
    )

    state_db = os.environ.get("LEDGER_STATE_DB", data.get("state_db_path", "data/ledger.db"))

    return Config(
        model=model,
        statements=statements,
        server=server,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Ledger ingestion pipeline configuration
#
# The model API key can also be supplied via GEMINI_API_KEY.

model:
  api_key: ""                              # Gemini API key
  model: "gemini-2.5-flash"
  timeout_seconds: 120                     # Per-chunk request timeout
  max_output_tokens: 32768                 # Raise if chunks get truncated
  temperature: 0.0

# Bank statement extraction
statements:
  chunk_pages: 2                           # Pages per model request
  max_chunks_per_window: 3                 # Chunks per server round trip
  max_chunks_cap: 8                        # Server-side cap per window
  max_windows: 50                          # Client circuit breaker
  window_timeout_seconds: 300              # Deadline per window request
  max_attempts: 3                          # Attempts per chunk
  backoff_seconds: 15                      # First retry wait, doubled afterwards
  inter_chunk_delay: 0.25                  # Pause between chunk requests
  save_batch_size: 50                      # Rows per persistence batch
  max_reported_errors: 20

# Window endpoint (used by --remote imports and by `serve`)
server:
  base_url: "http://localhost:8080"
  token: null
  host: "127.0.0.1"
  port: 8080

# State database path
state_db_path: "data/ledger.db"
"""

    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
