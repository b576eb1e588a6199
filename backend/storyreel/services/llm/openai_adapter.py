"""OpenAI chat-completions adapter for the LLM abstraction layer.

Talks to the REST endpoint directly over httpx. The reply is requested as
plain text and parsed by the caller, which lets the same adapter serve
prompts whose contract is a top-level JSON array.
"""

import logging
from typing import Optional

import httpx

from storyreel.services.llm.base import LLMAdapter
from storyreel.services.retrying import transient_retry

logger = logging.getLogger(__name__)


class OpenAIAdapter(LLMAdapter):
    """LLM adapter backed by the OpenAI chat completions API."""

    def __init__(
        self,
        model_id: str,
        api_key: str,
        base_url: str = "https://api.openai.com",
        timeout: float = 120.0,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.model_id = model_id.removeprefix("openai/")
        self._max_retries = max_retries
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(timeout, connect=30.0),
            transport=transport,
        )

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

        payload = {
            "model": self.model_id,
            "messages": messages,
            "response_format": {"type": "text"},
        }
        # gpt-5 family only accepts the default temperature
        if not self.model_id.startswith("gpt-5"):
            payload["temperature"] = temperature

        @transient_retry(max_attempts=self._max_retries)
        async def _call() -> str:
            response = await self._client.post("/v1/chat/completions", json=payload)
            logger.info(
                "POST /v1/chat/completions model=%s HTTP %d",
                self.model_id, response.status_code,
            )
            response.raise_for_status()
            try:
                data = response.json()
            except ValueError as e:
                raise httpx.DecodingError(
                    f"Chat completion reply is not JSON: {e}", request=response.request
                ) from e
            choices = data.get("choices") or [{}]
            content = (choices[0].get("message") or {}).get("content")
            if not isinstance(content, str):
                return ""
            return content

        return await _call()

    async def close(self) -> None:
        await self._client.aclose()
