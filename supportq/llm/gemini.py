"""
Gemini model access.

Two backends:
  1. Vertex AI SDK (server credentials) - GOOGLE_CLOUD_PROJECT + service account
  2. Gemini REST API with an API key - a per-user key from settings, or
     GOOGLE_API_KEY when no Cloud project is configured

Vertex models are cached per model name. REST calls go through
fetch_with_retry so they share the HTTP retry policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from supportq.infrastructure import settings
from supportq.infrastructure.http import fetch_with_retry, safe_json
from supportq.observability.logging import get_logger

logger = get_logger(__name__)

GEMINI_REST_BASE = "https://generativelanguage.googleapis.com/v1beta"

# Provider names accepted in user settings; anything else is not a Gemini backend
GEMINI_PROVIDERS = frozenset({"", "gemini", "google", "vertex"})


class GeminiInitializationError(RuntimeError):
    """Raised when no Gemini backend can be used."""


class GeminiRequestError(RuntimeError):
    """Raised when the Gemini REST API rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class LlmOptions:
    """Per-user LLM selection resolved from settings."""

    provider: str = ""
    model: str = ""
    base_url: str = ""
    api_key: str = ""

    @property
    def model_name(self) -> str:
        return self.model or settings.GEMINI_MODEL

    @property
    def uses_rest(self) -> bool:
        return bool(self.api_key) or (
            not settings.GOOGLE_CLOUD_PROJECT and bool(settings.GOOGLE_API_KEY)
        )


@lru_cache(maxsize=8)
def get_vertex_model(model_name: str):
    """
    Shared Vertex AI GenerativeModel for model_name.

    Raises:
        GeminiInitializationError: If GOOGLE_CLOUD_PROJECT is unset or init fails
    """
    if not settings.GOOGLE_CLOUD_PROJECT:
        raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")

    import vertexai
    from vertexai.generative_models import GenerativeModel

    try:
        vertexai.init(project=settings.GOOGLE_CLOUD_PROJECT, location=settings.GEMINI_LOCATION)
        model = GenerativeModel(model_name)
    except Exception as e:
        logger.error("Failed to initialize Vertex AI model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e

    logger.info(
        "Initialized Gemini model (Vertex AI): location=%s, model=%s",
        settings.GEMINI_LOCATION,
        model_name,
    )
    return model


def generate_via_rest(prompt: str, options: LlmOptions, generation_config: dict[str, Any]) -> str:
    """
    Call models/{model}:generateContent with an API key

    Raises:
        GeminiInitializationError: If no API key is available
        GeminiRequestError: On a non-OK response or an empty candidate list
    """
    api_key = options.api_key or settings.GOOGLE_API_KEY
    if not api_key:
        raise GeminiInitializationError("No Gemini API key configured")

    base_url = (options.base_url or GEMINI_REST_BASE).rstrip("/")
    response = fetch_with_retry(
        f"{base_url}/models/{options.model_name}:generateContent",
        "POST",
        headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
        json={
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": generation_config.get("temperature"),
                "maxOutputTokens": generation_config.get("max_output_tokens"),
                "responseMimeType": generation_config.get("response_mime_type", "text/plain"),
            },
        },
    )
    body = safe_json(response)
    if not response.is_success or not isinstance(body, dict):
        raise GeminiRequestError(
            f"Gemini request failed: {response.status_code}", status_code=response.status_code
        )

    try:
        parts = body["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError) as e:
        raise GeminiRequestError("Gemini response has no candidates") from e
    return "".join(part.get("text", "") for part in parts)


def clear_model_cache() -> None:
    """Drop cached Vertex models (tests, reconfiguration)."""
    get_vertex_model.cache_clear()
