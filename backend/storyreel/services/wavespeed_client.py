"""WaveSpeed image-to-video API client.

Provides:
- Job submission for an image-to-video model (returns the job id)
- Single status poll for a job (no retries, see poll())
- Download of the finished clip from its output URL

Usage:
    client = VideoGenClient(base_url, api_key, model_id)
    job_id = await client.submit(image_url, prompt, duration=10, seed=-1)
    status = await client.poll(job_id)
    if status.status == "completed":
        data = await client.download(status.outputs[0])
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from storyreel.config import Settings
from storyreel.errors import PollError, VideoGenError
from storyreel.services.retrying import transient_retry

logger = logging.getLogger(__name__)


@dataclass
class JobStatus:
    """One poll result. ``status`` is lower-cased as received."""

    job_id: str
    status: str
    outputs: list[str] = field(default_factory=list)
    error: Optional[str] = None


class VideoGenClient:
    """Async client for the WaveSpeed v3 prediction API.

    The API key is sent per request rather than as a client default so that
    output downloads from the CDN never carry it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model_id: str,
        timeout: float = 120.0,
        max_retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model_id = model_id.strip("/")
        self._auth = {"Authorization": f"Bearer {api_key}"}
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                follow_redirects=True,
                timeout=httpx.Timeout(self._timeout, connect=30.0),
                transport=self._transport,
            )
        return self._client

    async def submit(
        self,
        image_url: str,
        prompt: Optional[str] = None,
        *,
        duration: int = 10,
        seed: int = -1,
        camera_fixed: bool = False,
    ) -> str:
        """Submit an image-to-video job and return its id.

        Transient failures (429, 5xx, transport) are retried; anything else
        raises VideoGenError.
        """
        body = {
            "image": image_url,
            "duration": duration,
            "camera-fixed": camera_fixed,
            "seed": seed,
        }
        if prompt:
            body["prompt"] = prompt

        path = f"/api/v3/{self.model_id}"

        @transient_retry(max_attempts=self._max_retries)
        async def _call() -> dict:
            logger.info("POST %s%s image=%s", self.base_url, path, image_url)
            response = await self.client.post(path, json=body, headers=self._auth)
            logger.info("  submit response: HTTP %d", response.status_code)
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as e:
                raise httpx.DecodingError(
                    f"Video job submission reply is not JSON: {e}", request=response.request
                ) from e

        try:
            data = await _call()
        except httpx.HTTPStatusError as e:
            raise VideoGenError(
                f"Video job submission failed: HTTP {e.response.status_code} "
                f"{e.response.text[:300]}"
            ) from e
        except httpx.HTTPError as e:
            raise VideoGenError(f"Video job submission failed: {e}") from e

        job_id = (data.get("data") or {}).get("id")
        if not job_id:
            raise VideoGenError(f"Video job submission returned no job id: {data}")
        logger.info("  job_id: %s", job_id)
        return job_id

    async def poll(self, job_id: str) -> JobStatus:
        """Fetch the job's current status once.

        A non-2xx response or a transport failure abandons the job: it raises
        PollError and is never retried here.
        """
        path = f"/api/v3/predictions/{job_id}/result"
        try:
            response = await self.client.get(path, headers=self._auth)
        except httpx.HTTPError as e:
            raise PollError(job_id, str(e)) from e

        logger.debug("GET %s%s HTTP %d", self.base_url, path, response.status_code)
        if not response.is_success:
            raise PollError(
                job_id,
                f"HTTP {response.status_code} {response.text[:300]}",
                status_code=response.status_code,
            )

        try:
            data = response.json().get("data") or {}
        except ValueError as e:
            raise PollError(job_id, f"invalid JSON in poll response: {e}") from e

        outputs = data.get("outputs") or []
        return JobStatus(
            job_id=job_id,
            status=str(data.get("status", "unknown")).lower(),
            outputs=[o for o in outputs if isinstance(o, str)],
            error=data.get("error") or None,
        )

    async def download(self, url: str) -> bytes:
        """Download a finished clip by its absolute output URL."""
        logger.info("GET %s", url)
        try:
            response = await self.client.get(url)
            logger.info(
                "  download response: HTTP %d, %d bytes",
                response.status_code, len(response.content),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise VideoGenError(f"Failed to download video from {url}: {e}") from e
        return response.content

    async def close(self):
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def get_video_client(settings: Settings) -> VideoGenClient:
    """Build the WaveSpeed client from settings."""
    api_key = settings.providers.wavespeed_api_key
    if not api_key:
        raise ValueError(
            "WaveSpeed API key not configured. Set STORYREEL_PROVIDERS__WAVESPEED_API_KEY."
        )
    return VideoGenClient(
        settings.providers.wavespeed_base_url,
        api_key,
        settings.models.video_gen,
        timeout=settings.pipeline.http_timeout_seconds,
        max_retries=settings.pipeline.retry_max_attempts,
    )
