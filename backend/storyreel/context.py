"""Explicitly constructed dependencies shared by the pipeline stages.

Stages never reach for module-level clients; they receive a PipelineContext.
Production code builds one with open_context(); tests construct the
dataclass directly with doubles.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import httpx

from storyreel.clock import Clock
from storyreel.config import Settings
from storyreel.db.repository import MetadataStore
from storyreel.services.image_client import ImageGenClient, get_image_client
from storyreel.services.llm import LLMAdapter, get_adapter
from storyreel.services.storage import ArtifactStore, get_artifact_store
from storyreel.services.transcoder import Transcoder
from storyreel.services.wavespeed_client import VideoGenClient, get_video_client

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    settings: Settings
    metadata: MetadataStore
    artifacts: ArtifactStore
    http: httpx.AsyncClient
    planner: Optional[LLMAdapter] = None
    images: Optional[ImageGenClient] = None
    videos: Optional[VideoGenClient] = None
    transcoder: Transcoder = field(default_factory=Transcoder)
    clock: Clock = field(default_factory=Clock)


@asynccontextmanager
async def open_context(
    settings: Settings, *, remote: bool = True
) -> AsyncIterator[PipelineContext]:
    """Build production dependencies and close them on exit.

    Args:
        settings: Loaded application settings
        remote: Build the planner, image and video clients. Read-only
            callers (status, listing) pass False and need no API keys.
    """
    metadata = MetadataStore.from_url(settings.storage.database_url)
    await metadata.init_schema()
    artifacts = get_artifact_store(settings)
    http = httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.pipeline.http_timeout_seconds, connect=30.0),
    )

    ctx = PipelineContext(
        settings=settings,
        metadata=metadata,
        artifacts=artifacts,
        http=http,
        transcoder=Transcoder(settings.transcode),
    )
    try:
        if remote:
            ctx.planner = get_adapter(settings.models.planner_llm, settings)
            ctx.images = get_image_client(settings)
            ctx.videos = get_video_client(settings)
        yield ctx
    finally:
        for client in (ctx.planner, ctx.images, ctx.videos):
            if client is not None:
                await client.close()
        await http.aclose()
        await artifacts.close()
        await metadata.close()
        logger.debug("Pipeline context closed")
