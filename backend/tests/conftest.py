"""Shared fixtures.

Every test gets its own SQLite database and local artifact directory under
tmp_path, plus a PipelineContext factory wired to the doubles in doubles.py.
"""

from typing import Callable, Optional

import httpx
import pytest
import pytest_asyncio

from storyreel.config import PipelineConfig, Settings, StorageConfig
from storyreel.context import PipelineContext
from storyreel.db.repository import MetadataStore
from storyreel.services.image_client import ImageGenClient
from storyreel.services.llm.base import LLMAdapter
from storyreel.services.storage import LocalArtifactStore
from storyreel.services.transcoder import Transcoder
from storyreel.services.wavespeed_client import VideoGenClient

from doubles import (
    PUBLIC_BASE,
    WAVESPEED_BASE,
    FakeClock,
    FakeImageClient,
    FakeTranscoder,
    WaveSpeedFake,
    cdn_handler,
)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        storage=StorageConfig(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
            local_root=tmp_path / "artifacts",
            public_base_url=PUBLIC_BASE,
            tmp_dir=tmp_path / "scratch",
        ),
        pipeline=PipelineConfig(planner_max_attempts=3),
    )


@pytest_asyncio.fixture
async def metadata(settings):
    store = MetadataStore.from_url(settings.storage.database_url)
    await store.init_schema()
    yield store
    await store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def make_ctx(settings, metadata, clock):
    """Factory for a PipelineContext wired to doubles."""
    opened: list[PipelineContext] = []

    def _make(
        *,
        planner: Optional[LLMAdapter] = None,
        images: Optional[ImageGenClient] = None,
        wavespeed: Optional[WaveSpeedFake] = None,
        transcoder: Optional[Transcoder] = None,
        http_handler: Callable[[httpx.Request], httpx.Response] = cdn_handler,
    ) -> PipelineContext:
        videos = None
        if wavespeed is not None:
            videos = VideoGenClient(
                WAVESPEED_BASE,
                "test-key",
                settings.models.video_gen,
                transport=httpx.MockTransport(wavespeed.handler),
            )
        ctx = PipelineContext(
            settings=settings,
            metadata=metadata,
            artifacts=LocalArtifactStore(settings.storage.local_root, PUBLIC_BASE),
            http=httpx.AsyncClient(transport=httpx.MockTransport(http_handler)),
            planner=planner,
            images=images or FakeImageClient(),
            videos=videos,
            transcoder=transcoder or FakeTranscoder(),
            clock=clock,
        )
        opened.append(ctx)
        return ctx

    yield _make

    for ctx in opened:
        await ctx.http.aclose()
        if ctx.videos is not None:
            await ctx.videos.close()
