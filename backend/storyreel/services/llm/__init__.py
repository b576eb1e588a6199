"""LLM provider abstraction layer.

Provides a unified async completion interface across providers
(OpenAI, Vertex AI, Ollama).

Usage:
    from storyreel.services.llm import get_adapter, LLMAdapter

    adapter = get_adapter("gpt-5-mini", settings)
    text = await adapter.complete(prompt, system_prompt=...)
"""

from storyreel.services.llm.base import LLMAdapter
from storyreel.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
