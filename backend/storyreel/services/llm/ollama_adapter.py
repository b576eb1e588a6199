"""Ollama adapter for the LLM abstraction layer.

Connects via ollama.AsyncClient with optional auth headers. A response
schema, when given, is passed as the structured-output format so the
reply is constrained to it. Used for local or self-hosted planning models.
"""

import logging
from typing import Optional

from ollama import AsyncClient

from storyreel.services.llm.base import LLMAdapter
from storyreel.services.retrying import transient_retry

logger = logging.getLogger(__name__)


class OllamaAdapter(LLMAdapter):
    """LLM adapter backed by a local or cloud Ollama instance.

    Strips the "ollama/" prefix from model IDs before passing to the ollama
    library. Always passes stream=False to avoid async generator responses.
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
        max_retries: int = 3,
    ) -> None:
        self.model_id = model_id
        self._ollama_model = model_id.removeprefix("ollama/")
        self._max_retries = max_retries
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        response_schema: Optional[dict] = None,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        @transient_retry(max_attempts=self._max_retries)
        async def _call() -> str:
            response = await self._client.chat(
                model=self._ollama_model,
                messages=messages,
                format=response_schema,
                options={"temperature": temperature},
                stream=False,
            )
            return response.message.content or ""

        return await _call()
