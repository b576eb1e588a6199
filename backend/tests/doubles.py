"""Test doubles for the pipeline.

Remote services are replaced either by small fakes (LLM, image client,
transcoder, clock) or by httpx.MockTransport handlers that speak the real
wire format (WaveSpeed, CDN downloads).
"""

import asyncio
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx

from storyreel.errors import ImageGenError, TranscodeError
from storyreel.services.image_client import GeneratedImage, ImageGenClient
from storyreel.services.llm.base import LLMAdapter
from storyreel.services.transcoder import Transcoder

PUBLIC_BASE = "http://testserver/artifacts"
WAVESPEED_BASE = "https://wavespeed.test"
CDN_BASE = "https://cdn.test"

class FakeClock:
    """Virtual clock: sleep() advances time instantly and is recorded."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        self._monotonic = 0.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._monotonic += seconds
        # Let sibling tasks run, as a real sleep would
        await asyncio.sleep(0)


class FakeLLM(LLMAdapter):
    """Returns canned replies in order; the last one repeats."""

    def __init__(self, *replies: str, model_id: str = "fake-llm"):
        self.model_id = model_id
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def complete(
        self, prompt, *, system_prompt=None, temperature=0.7, response_schema=None
    ) -> str:
        self.calls.append(
            {
                "prompt": prompt,
                "system_prompt": system_prompt,
                "temperature": temperature,
                "response_schema": response_schema,
            }
        )
        index = min(len(self.calls), len(self.replies)) - 1
        return self.replies[index]


class FakeImageClient(ImageGenClient):
    """Returns PNG-ish bytes per prompt; prompts in ``fail_on`` raise."""

    def __init__(self, fail_on: tuple[str, ...] = (), url_for: Optional[dict] = None):
        self.model_id = "fake-image"
        self.fail_on = fail_on
        self.url_for = url_for or {}
        self.prompts: list[str] = []

    async def generate(self, prompt, *, size="1024x1024", quality="auto") -> GeneratedImage:
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        if any(marker in prompt for marker in self.fail_on):
            raise ImageGenError(f"upstream refused: {prompt}")
        if prompt in self.url_for:
            return GeneratedImage(url=self.url_for[prompt])
        return GeneratedImage(data=b"\x89PNG " + prompt.encode())


class FakeTranscoder(Transcoder):
    """Records the manifest and writes a stand-in output file."""

    def __init__(self, returncode: int = 0):
        super().__init__()
        self.returncode = returncode
        self.calls: list[dict] = []

    async def concat(self, manifest_path: Path, output_path: Path) -> None:
        lines = manifest_path.read_text().splitlines()
        paths = [re.match(r"file '(.*)'$", line).group(1) for line in lines]
        self.calls.append(
            {
                "manifest": manifest_path,
                "workdir": manifest_path.parent,
                "paths": paths,
                "contents": [Path(p).read_bytes() for p in paths],
            }
        )
        if self.returncode != 0:
            raise TranscodeError(self.returncode, "Invalid data found when processing input")
        output_path.write_bytes(b"FINAL:" + b"|".join(Path(p).read_bytes() for p in paths))


class WaveSpeedFake:
    """MockTransport handler for the WaveSpeed API and its output CDN.

    ``scripts`` maps a scene number to the sequence of statuses its job
    reports; the last entry repeats. A status of "http500" answers the poll
    with HTTP 500. The scene number is read from the submitted image URL.
    """

    def __init__(self, scripts: dict[int, list[str]]):
        self.scripts = scripts
        self.submissions: list[dict] = []
        self.polls: dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(CDN_BASE):
            name = url.rsplit("/", 1)[-1]
            return httpx.Response(200, content=f"video:{name}".encode())

        if request.method == "POST" and "/api/v3/" in url:
            body = json.loads(request.content)
            self.submissions.append(body)
            match = re.search(r"_(\d+)_\d+\.png$", body["image"])
            job_id = f"job-{match.group(1) if match else len(self.submissions)}"
            return httpx.Response(200, json={"code": 200, "data": {"id": job_id}})

        match = re.search(r"/api/v3/predictions/([^/]+)/result$", url)
        if request.method == "GET" and match:
            job_id = match.group(1)
            count = self.polls.get(job_id, 0)
            self.polls[job_id] = count + 1
            script = self.scripts.get(int(job_id.split("-")[1]), ["processing"])
            status = script[min(count, len(script) - 1)]
            if status == "http500":
                return httpx.Response(500, text="internal error")
            data = {"id": job_id, "status": status, "outputs": []}
            if status == "completed":
                data["outputs"] = [f"{CDN_BASE}/{job_id}.mp4"]
            if status == "failed":
                data["error"] = "content policy violation"
            return httpx.Response(200, json={"code": 200, "data": data})

        return httpx.Response(404, text=f"unexpected request {request.method} {url}")


def cdn_handler(request: httpx.Request) -> httpx.Response:
    """Serves any GET under the CDN with bytes naming the file."""
    url = str(request.url)
    if url.startswith(CDN_BASE):
        return httpx.Response(200, content=f"video:{url.rsplit('/', 1)[-1]}".encode())
    return httpx.Response(404)


def plan_reply(count: int, subject: str = "a small silver robot") -> str:
    """A well-formed planner reply with ``count`` scenes."""
    return json.dumps(
        [
            {
                "scene_prompt": f"Scene {i}: {subject} keeps exploring.",
                "image_prompt": f"{subject}, scene {i}, misty forest, soft morning light",
                "video_prompt": f"{subject} walks forward slowly, camera tracks (scene {i})",
            }
            for i in range(1, count + 1)
        ]
    )
