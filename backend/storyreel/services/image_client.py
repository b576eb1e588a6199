"""Image-generation clients.

Two providers are supported:
- OpenAIImageClient: OpenAI images endpoint over httpx. Depending on the
  model the reply carries either a hosted URL or base64 bytes.
- GeminiImageClient: Gemini image models on Vertex AI, which return the
  image inline in the response parts.

Both return a GeneratedImage; the image stage normalizes it to bytes.
"""

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from google.genai import errors as genai_errors
from google.genai import types

from storyreel.config import Settings
from storyreel.errors import ImageGenError
from storyreel.services.retrying import transient_retry
from storyreel.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)


@dataclass
class GeneratedImage:
    """Either a URL to fetch or the image bytes themselves."""

    url: Optional[str] = None
    data: Optional[bytes] = None


class ImageGenClient(ABC):
    model_id: str

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        size: str = "1024x1024",
        quality: str = "auto",
    ) -> GeneratedImage:
        """Generate one image for ``prompt``.

        Raises:
            ImageGenError: If the service fails or returns no image
        """
        ...

    async def close(self) -> None:
        return None


class OpenAIImageClient(ImageGenClient):
    """Client for POST /v1/images/generations."""

    def __init__(
        self,
        model_id: str,
        api_key: str,
        base_url: str = "https://api.openai.com",
        timeout: float = 120.0,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model_id = model_id
        self._max_retries = max_retries
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(timeout, connect=30.0),
            transport=transport,
        )

    async def generate(
        self,
        prompt: str,
        *,
        size: str = "1024x1024",
        quality: str = "auto",
    ) -> GeneratedImage:
        payload = {
            "model": self.model_id,
            "prompt": prompt,
            "n": 1,
            "size": size,
            "quality": quality,
        }

        @transient_retry(max_attempts=self._max_retries)
        async def _call() -> dict:
            response = await self._client.post("/v1/images/generations", json=payload)
            logger.info(
                "POST /v1/images/generations model=%s HTTP %d",
                self.model_id, response.status_code,
            )
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as e:
                raise httpx.DecodingError(
                    f"Image generation reply is not JSON: {e}", request=response.request
                ) from e

        try:
            data = await _call()
        except httpx.HTTPStatusError as e:
            raise ImageGenError(
                f"Image generation failed: HTTP {e.response.status_code} "
                f"{e.response.text[:300]}"
            ) from e
        except httpx.HTTPError as e:
            raise ImageGenError(f"Image generation request failed: {e}") from e

        items = data.get("data") or []
        if not items:
            raise ImageGenError("Image generation returned no images")

        first = items[0]
        if first.get("url"):
            return GeneratedImage(url=first["url"])
        if first.get("b64_json"):
            try:
                return GeneratedImage(data=base64.b64decode(first["b64_json"]))
            except (binascii.Error, ValueError) as e:
                raise ImageGenError(f"Image payload is not valid base64: {e}") from e
        raise ImageGenError("Image generation returned neither url nor b64_json")

    async def close(self) -> None:
        await self._client.aclose()


class GeminiImageClient(ImageGenClient):
    """Gemini image generation via generate_content with IMAGE modality."""

    def __init__(self, model_id: str, settings: Settings, max_retries: int = 3):
        self.model_id = model_id
        self._settings = settings
        self._max_retries = max_retries

    async def generate(
        self,
        prompt: str,
        *,
        size: str = "1024x1024",
        quality: str = "auto",
    ) -> GeneratedImage:
        # Gemini takes an aspect ratio rather than pixel dimensions
        try:
            width, height = (int(v) for v in size.lower().split("x", 1))
        except ValueError:
            width = height = 1
        if width == height:
            aspect_ratio = "1:1"
        else:
            aspect_ratio = "16:9" if width > height else "9:16"

        @transient_retry(max_attempts=self._max_retries)
        async def _call():
            client = get_vertex_client(
                self._settings,
                location=location_for_model(self.model_id, self._settings),
            )
            return await client.aio.models.generate_content(
                model=self.model_id,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE"],
                    image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
                ),
            )

        try:
            response = await _call()
        except genai_errors.APIError as e:
            raise ImageGenError(f"Gemini image generation failed: {e}") from e

        for candidate in response.candidates or []:
            if candidate.content is None:
                continue
            for part in candidate.content.parts or []:
                if part.inline_data and part.inline_data.data:
                    return GeneratedImage(data=part.inline_data.data)

        raise ImageGenError("No image generated in response")


def _is_gemini_image_model(model_id: str) -> bool:
    return model_id.startswith("gemini-") and "image" in model_id


def get_image_client(settings: Settings) -> ImageGenClient:
    """Build the image client for the configured image model."""
    model_id = settings.models.image_gen
    max_retries = settings.pipeline.retry_max_attempts

    if _is_gemini_image_model(model_id):
        return GeminiImageClient(model_id, settings, max_retries=max_retries)

    if not settings.providers.openai_api_key:
        raise ValueError(
            f"OpenAI API key not configured for image model {model_id}. "
            "Set STORYREEL_PROVIDERS__OPENAI_API_KEY."
        )
    return OpenAIImageClient(
        model_id,
        settings.providers.openai_api_key,
        base_url=settings.providers.openai_base_url,
        timeout=settings.pipeline.http_timeout_seconds,
        max_retries=max_retries,
    )
