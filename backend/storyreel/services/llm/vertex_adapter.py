"""Vertex AI adapter for the LLM abstraction layer.

Wraps google-genai client with location-aware routing and JSON output mode.
"""

import logging
from typing import Optional

from google.genai import types as genai_types

from storyreel.config import Settings
from storyreel.services.llm.base import LLMAdapter
from storyreel.services.retrying import transient_retry
from storyreel.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)


class VertexAIAdapter(LLMAdapter):
    """LLM adapter backed by Google Vertex AI (google-genai SDK)."""

    def __init__(self, model_id: str, settings: Settings, max_retries: int = 3) -> None:
        self.model_id = model_id
        self._settings = settings
        self._max_retries = max_retries

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        response_schema: Optional[dict] = None,
    ) -> str:
        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            response_mime_type="application/json",
            system_instruction=system_prompt,
        )

        @transient_retry(max_attempts=self._max_retries)
        async def _call() -> str:
            client = get_vertex_client(
                self._settings,
                location=location_for_model(self.model_id, self._settings),
            )
            response = await client.aio.models.generate_content(
                model=self.model_id,
                contents=prompt,
                config=config,
            )
            logger.debug("Vertex generate_content model=%s complete", self.model_id)
            return response.text or ""

        return await _call()
