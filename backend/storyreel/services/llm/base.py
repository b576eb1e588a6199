"""Abstract base class for LLM provider adapters.

Adapters return the model's raw text. Parsing and validating that text
against a schema is the caller's job, so a malformed answer surfaces as the
caller's own error instead of being repaired inside the transport layer.
"""

from abc import ABC, abstractmethod
from typing import Optional


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters.

    All adapters implement complete() with the same async signature and
    ask their provider for JSON output where the provider supports it.
    """

    model_id: str

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        response_schema: Optional[dict] = None,
    ) -> str:
        """Generate a text completion for a prompt.

        Args:
            prompt: The user prompt to send to the model.
            system_prompt: Optional system/instruction prompt.
            temperature: Sampling temperature (0.0-1.0). Lower = more deterministic.
            response_schema: Optional JSON schema of the expected reply, used by
                providers that constrain decoding to a schema.

        Returns:
            The raw text content of the model's reply.
        """
        ...

    async def close(self) -> None:
        return None
