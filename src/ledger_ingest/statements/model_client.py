"""
Extraction model boundary.

The statement pipeline only depends on ExtractionModel.generate(). The Gemini
implementation below posts the PDF chunk inline together with the prompt and
asks for a JSON response.

Privacy constraints:
- The API key travels as a query parameter and is never logged
- Model output is only logged at DEBUG level
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from ledger_ingest.config import ExtractionModelConfig

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
TRANSIENT_STATUSES = frozenset({500, 502, 503, 504})

FINISH_REASON_MAX_TOKENS = "MAX_TOKENS"
FINISH_REASON_UNKNOWN = "UNKNOWN"


class ModelError(Exception):
    """Base exception for extraction model errors."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"[{status_code}] {message}" if status_code else message)


class RateLimitedError(ModelError):
    """The model API answered 429."""

    retryable = True


class TransientModelError(ModelError):
    """Server-side or deadline failure that is worth retrying."""

    retryable = True


class ModelAPIError(ModelError):
    """Non-retryable API failure (bad request, auth, malformed body...)."""

    retryable = False


@dataclass
class ModelResponse:
    text: str
    finish_reason: str = FINISH_REASON_UNKNOWN

    @property
    def truncated(self) -> bool:
        return self.finish_reason == FINISH_REASON_MAX_TOKENS


class ExtractionModel(ABC):
    """Abstract document extraction model."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Model identifier for logs."""
        pass

    @abstractmethod
    def generate(self, pdf_bytes: bytes, prompt: str) -> ModelResponse:
        """
        Run the model on one PDF chunk.

        Raises:
            ModelError: Typed by retryability
        """
        pass

    def close(self) -> None:
        """Release resources held by the model (no-op by default)."""
        pass


class GeminiExtractionModel(ExtractionModel):
    """Gemini generateContent client (httpx)."""

    def __init__(self, config: ExtractionModelConfig, client: httpx.Client | None = None) -> None:
        """
        Initialize the client.

        Args:
            config: Model configuration (api_key must be set)
            client: Optional preconfigured httpx.Client (tests inject a MockTransport)
        """
        if not config.api_key:
            raise ValueError("Gemini API key is required")

        self.config = config
        # Use explicit timeout configuration:
        # - read: full per-chunk timeout for the model response
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
        )

    @property
    def name(self) -> str:
        return self.config.model

    def _url(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/models/{self.config.model}:generateContent"

    def _build_payload(self, pdf_bytes: bytes, prompt: str) -> dict:
        return {
            "contents": [
                {
                    "parts": [
                        {
                            "inlineData": {
                                "mimeType": "application/pdf",
                                "data": base64.b64encode(pdf_bytes).decode("ascii"),
                            }
                        },
                        {"text": prompt},
                    ]
                }
            ],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
                "responseMimeType": "application/json",
                "thinkingConfig": {"thinkingBudget": 0},
            },
        }

    def generate(self, pdf_bytes: bytes, prompt: str) -> ModelResponse:
        logger.debug("Calling %s with %d PDF bytes", self.config.model, len(pdf_bytes))

        try:
            response = self._client.post(
                self._url(),
                params={"key": self.config.api_key},
                json=self._build_payload(pdf_bytes, prompt),
            )
        except httpx.TimeoutException as e:
            raise TransientModelError(f"deadline exceeded: {e}") from e
        except httpx.RequestError as e:
            raise TransientModelError(f"request failed: {e}") from e

        if response.status_code == RATE_LIMIT_STATUS:
            raise RateLimitedError(
                "rate limited", status_code=response.status_code, response_body=response.text[:500]
            )
        if response.status_code in TRANSIENT_STATUSES:
            raise TransientModelError(
                "service unavailable", status_code=response.status_code, response_body=response.text[:500]
            )
        if response.status_code >= 400:
            logger.error("Gemini API error %s: %s", response.status_code, response.text[:500])
            raise ModelAPIError(
                "Gemini API error", status_code=response.status_code, response_body=response.text[:500]
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelAPIError(f"Invalid JSON from model API: {e}", status_code=response.status_code) from e

        if not isinstance(data, dict):
            raise ModelAPIError("Unexpected response shape", status_code=response.status_code)

        candidates = data.get("candidates") or [{}]
        candidate = candidates[0] if isinstance(candidates, list) else None
        content = (candidate.get("content") or {}) if isinstance(candidate, dict) else None
        parts = (content.get("parts") or []) if isinstance(content, dict) else None
        if not isinstance(parts, list) or not all(isinstance(p, dict) for p in parts):
            raise ModelAPIError("Unexpected response shape", status_code=response.status_code)

        finish_reason = candidate.get("finishReason") or FINISH_REASON_UNKNOWN
        text = "\n".join(p["text"] for p in parts if isinstance(p.get("text"), str)).strip()

        logger.debug("Gemini chunk: %d chars, finishReason: %s", len(text), finish_reason)
        return ModelResponse(text=text, finish_reason=finish_reason)

    def close(self) -> None:
        """Close HTTP client."""
        self._client.close()

    def __enter__(self) -> GeminiExtractionModel:
        return self

    def __exit__(self, *args) -> None:
        self.close()
