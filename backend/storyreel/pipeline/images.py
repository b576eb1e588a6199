"""Still-image synthesis, one image per scene.

Each scene's image prompt goes to the image-generation service. Whatever
comes back (a hosted URL or inline bytes) is normalized to bytes and
uploaded to the Artifact Store at a path derived from the chat id, the
scene number and the scene row's creation time, so a retry overwrites the
same object.
"""

import asyncio
import logging
from typing import Sequence

import httpx

from storyreel.clock import epoch_millis
from storyreel.context import PipelineContext
from storyreel.errors import ImageGenError, MetadataWriteError, StorageError
from storyreel.pipeline.outcome import SceneOutcome
from storyreel.schemas.plan import SceneDescriptor
from storyreel.services.image_client import GeneratedImage
from storyreel.services.storage import scene_image_path

logger = logging.getLogger(__name__)


async def _image_bytes(ctx: PipelineContext, image: GeneratedImage) -> bytes:
    if image.data is not None:
        return image.data
    if not image.url:
        raise ImageGenError("Image generation returned neither url nor data")

    try:
        response = await ctx.http.get(image.url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise ImageGenError(f"Failed to fetch generated image from {image.url}: {e}") from e
    return response.content


async def synthesize_image(ctx: PipelineContext, chat_id, descriptor: SceneDescriptor) -> str:
    """Generate, store and record the image for one scene.

    Args:
        ctx: Pipeline context
        chat_id: Owning chat
        descriptor: Scene to render

    Returns:
        Public URL of the stored PNG

    Raises:
        ImageGenError: Generation failed or returned nothing usable
        StorageError: The upload was rejected
    """
    n = descriptor.scene_number
    scene = await ctx.metadata.get_scene_by_number(chat_id, n)
    created_at = scene.created_at if scene is not None else ctx.clock.now()

    try:
        generated = await ctx.images.generate(
            descriptor.image_prompt,
            size=ctx.settings.pipeline.image_size,
            quality=ctx.settings.pipeline.image_quality,
        )
        data = await _image_bytes(ctx, generated)

        path = scene_image_path(chat_id, n, epoch_millis(created_at))
        await ctx.artifacts.upload(path, data, "image/png", overwrite=True)
        url = ctx.artifacts.public_url(path)
    except (ImageGenError, StorageError) as e:
        logger.error(f"Chat {chat_id} scene {n}: image synthesis failed: {e}")
        if scene is not None:
            await _mark_failed(ctx, scene.id, str(e))
        raise

    try:
        recorded = await ctx.metadata.set_scene_image_url(chat_id, n, url)
    except MetadataWriteError as e:
        logger.error(f"Chat {chat_id} scene {n}: image stored at {url} but not recorded: {e}")
        return url
    if recorded is None:
        logger.warning(f"Chat {chat_id} scene {n}: no scene row, image URL not recorded")
    logger.info(f"Chat {chat_id} scene {n}: image ready at {url}")
    return url


async def _mark_failed(ctx: PipelineContext, scene_id, message: str) -> None:
    try:
        await ctx.metadata.mark_scene_failed(scene_id, message)
    except MetadataWriteError as e:
        logger.error(f"Scene {scene_id}: could not record failure: {e}")


async def synthesize_images(
    ctx: PipelineContext, chat_id, descriptors: Sequence[SceneDescriptor]
) -> list[SceneOutcome]:
    """Synthesize all scenes' images concurrently.

    A failing scene never cancels its siblings; its error is returned in
    that scene's outcome.
    """
    results = await asyncio.gather(
        *[synthesize_image(ctx, chat_id, d) for d in descriptors],
        return_exceptions=True,
    )

    outcomes = []
    for descriptor, result in zip(descriptors, results):
        if isinstance(result, BaseException):
            if not isinstance(result, (ImageGenError, StorageError)):
                logger.error(
                    f"Chat {chat_id} scene {descriptor.scene_number}: unexpected image error",
                    exc_info=result,
                )
            outcomes.append(SceneOutcome(descriptor.scene_number, error=result))
        else:
            outcomes.append(SceneOutcome(descriptor.scene_number, url=result))

    ready = sum(1 for o in outcomes if o.ok)
    logger.info(f"Chat {chat_id}: {ready}/{len(outcomes)} images ready")
    return outcomes
