"""Single LLM entry point with retry.

call_llm() picks the backend from LlmOptions and retries transient
failures with tenacity. Callers wrap it in their own try/except to fall
back to heuristics.
"""

from __future__ import annotations

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from supportq.config import LLM_MAX_RETRIES, LLM_TIMEOUT_SECONDS
from supportq.infrastructure.settings import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE
from supportq.llm.gemini import (
    GEMINI_PROVIDERS,
    GeminiInitializationError,
    GeminiRequestError,
    LlmOptions,
    generate_via_rest,
    get_vertex_model,
)
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter

logger = get_logger(__name__)


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TimeoutError, ConnectionError)),
    reraise=True,
)
def call_llm(prompt: str, options: LlmOptions | None = None, json_output: bool = True) -> str:
    """Send prompt to Gemini and return the response text.

    Raises:
        GeminiInitializationError: Unsupported provider or no usable backend
        TimeoutError / ConnectionError: Transient Vertex failures (retried)
        GeminiRequestError: REST call rejected, or any other Google API error
    """
    options = options or LlmOptions()
    if options.provider.lower() not in GEMINI_PROVIDERS:
        raise GeminiInitializationError(f"Unsupported LLM provider: {options.provider}")

    generation_config = {
        "temperature": GEMINI_TEMPERATURE,
        "max_output_tokens": GEMINI_MAX_TOKENS,
    }
    if json_output:
        generation_config["response_mime_type"] = "application/json"

    if options.uses_rest:
        counter("llm.rest.calls")
        return generate_via_rest(prompt, options, generation_config)

    from google.api_core.exceptions import (
        DeadlineExceeded,
        GoogleAPICallError,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    model = get_vertex_model(options.model_name)
    counter("llm.vertex.calls")
    try:
        response = model.generate_content(prompt, generation_config=generation_config)
        return response.text
    except DeadlineExceeded as e:
        counter("llm.timeout")
        logger.warning("LLM call timed out after %ds", LLM_TIMEOUT_SECONDS)
        raise TimeoutError(f"LLM call timed out: {e}") from e
    except (ServiceUnavailable, InternalServerError) as e:
        counter("llm.unavailable")
        logger.warning("LLM service error, will retry: %s", e)
        raise ConnectionError(f"LLM service error: {e}") from e
    except ResourceExhausted as e:
        counter("llm.rate_limited")
        logger.warning("LLM rate limited, will retry: %s", e)
        raise ConnectionError(f"LLM rate limited: {e}") from e
    except GoogleAPICallError as e:
        counter("llm.rejected")
        logger.warning("LLM request rejected: %s", type(e).__name__)
        raise GeminiRequestError(f"Gemini request failed: {e}", status_code=e.code) from e
