"""Provider registry for LLM adapters.

Routes model IDs to the correct adapter implementation based on the model
ID prefix: "gemini-" to Vertex AI, "ollama/" to Ollama, anything else to
the OpenAI chat completions API.
"""

import logging

from storyreel.config import Settings
from storyreel.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


def _is_ollama_model(model_id: str) -> bool:
    """Return True if the model ID uses the ollama/ prefix."""
    return model_id.startswith("ollama/")


def _is_gemini_model(model_id: str) -> bool:
    """Return True if the model ID uses the gemini- prefix."""
    return model_id.startswith("gemini-")


def get_adapter(model_id: str, settings: Settings) -> LLMAdapter:
    """Return the appropriate LLM adapter for the given model ID.

    Args:
        model_id: Model identifier string (e.g., "gpt-5-mini",
                  "gemini-2.5-flash", "ollama/llama3.1").
        settings: Settings carrying provider credentials and endpoints.

    Returns:
        Configured LLMAdapter instance ready for use.

    Raises:
        ValueError: If the OpenAI route is selected without an API key
    """
    providers = settings.providers
    max_retries = settings.pipeline.retry_max_attempts

    if _is_ollama_model(model_id):
        from storyreel.services.llm.ollama_adapter import OllamaAdapter

        logger.debug(
            "Routing %s to OllamaAdapter (base_url=%s, has_key=%s)",
            model_id,
            providers.ollama_endpoint,
            bool(providers.ollama_api_key),
        )
        return OllamaAdapter(
            model_id=model_id,
            base_url=providers.ollama_endpoint,
            api_key=providers.ollama_api_key,
            max_retries=max_retries,
        )

    if _is_gemini_model(model_id):
        from storyreel.services.llm.vertex_adapter import VertexAIAdapter

        logger.debug("Routing %s to VertexAIAdapter", model_id)
        return VertexAIAdapter(model_id=model_id, settings=settings, max_retries=max_retries)

    from storyreel.services.llm.openai_adapter import OpenAIAdapter

    if not providers.openai_api_key:
        raise ValueError(
            f"OpenAI API key not configured for model {model_id}. "
            "Set STORYREEL_PROVIDERS__OPENAI_API_KEY."
        )
    logger.debug("Routing %s to OpenAIAdapter", model_id)
    return OpenAIAdapter(
        model_id=model_id,
        api_key=providers.openai_api_key,
        base_url=providers.openai_base_url,
        timeout=settings.pipeline.http_timeout_seconds,
        max_retries=max_retries,
    )
