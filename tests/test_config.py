"""
Tests for configuration loading and validation.
"""

from pathlib import Path

import pytest

from ledger_ingest.config import (
    Config,
    ConfigValidationError,
    StatementConfig,
    create_default_config,
    load_config,
)

ENV_VARS = [
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "GEMINI_MAX_OUTPUT_TOKENS",
    "PDF_CHUNK_PAGES",
    "LEDGER_INGEST_URL",
    "LEDGER_INGEST_TOKEN",
    "LEDGER_STATE_DB",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.model.api_key == ""
        assert config.model.model == "gemini-2.5-flash"
        assert config.statements.chunk_pages == 2
        assert config.statements.max_chunks_per_window == 3
        assert config.statements.max_chunks_cap == 8
        assert config.statements.max_windows == 50
        assert config.statements.backoff_seconds == 15.0
        assert config.server.base_url == "http://localhost:8080"
        assert config.state_db_path == Path("data/ledger.db")

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
model:
  api_key: "from-file"
  max_output_tokens: 8192
statements:
  chunk_pages: 3
  max_windows: 10
server:
  base_url: "https://ingest.example.org"
  token: "abc"
state_db_path: "/var/lib/ledger/state.db"
"""
        )

        config = load_config(path)

        assert config.model.api_key == "from-file"
        assert config.model.max_output_tokens == 8192
        assert config.statements.chunk_pages == 3
        assert config.statements.max_windows == 10
        assert config.server.base_url == "https://ingest.example.org"
        assert config.server.token == "abc"
        assert config.state_db_path == Path("/var/lib/ledger/state.db")

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text('model:\n  api_key: "from-file"\nstatements:\n  chunk_pages: 3\n')
        monkeypatch.setenv("GEMINI_API_KEY", "from-env")
        monkeypatch.setenv("GEMINI_MAX_OUTPUT_TOKENS", "4096")
        monkeypatch.setenv("PDF_CHUNK_PAGES", "4")
        monkeypatch.setenv("LEDGER_INGEST_URL", "http://ingest:9000")
        monkeypatch.setenv("LEDGER_STATE_DB", str(tmp_path / "env.db"))

        config = load_config(path)

        assert config.model.api_key == "from-env"
        assert config.model.max_output_tokens == 4096
        assert config.statements.chunk_pages == 4
        assert config.server.base_url == "http://ingest:9000"
        assert config.state_db_path == tmp_path / "env.db"

    def test_malformed_int_env_falls_back(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PDF_CHUNK_PAGES", "two")
        assert load_config(tmp_path / "missing.yaml").statements.chunk_pages == 2

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(path).statements.max_attempts == 3


class TestValidate:
    def test_defaults_are_valid(self):
        assert Config().validate() == []

    def test_invalid_statement_settings(self):
        config = Config(
            statements=StatementConfig(
                chunk_pages=0, max_chunks_per_window=4, max_chunks_cap=2, max_windows=0, max_attempts=0
            )
        )

        errors = config.validate()

        assert "statements.chunk_pages must be >= 1" in errors
        assert "statements.max_chunks_cap must be >= max_chunks_per_window" in errors
        assert "statements.max_windows must be >= 1" in errors
        assert "statements.max_attempts must be >= 1" in errors

    def test_require_model_key(self):
        config = Config()
        with pytest.raises(ConfigValidationError, match="api_key"):
            config.require_model_key()

        config.model.api_key = "k"
        assert config.require_model_key() == "k"


class TestDefaultConfig:
    def test_created_file_loads_to_defaults(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"

        create_default_config(path)

        assert path.exists()
        config = load_config(path)
        assert config.validate() == []
        assert config.statements.backoff_seconds == 15
        assert config.server.token is None
