"""Per-chat pipeline orchestrator with idempotent, resumable execution.

Drives a persisted chat through
    planning -> images_pending -> videos_pending -> stitching -> done
and tolerates partial failure: a scene that fails keeps its sibling scenes
usable, and the chat simply stays in videos_pending until every scene has a
video. Rerunning a chat only reprocesses scenes that are not done yet,
unless forced.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from storyreel.context import PipelineContext
from storyreel.errors import ChatNotFoundError, PlanningError
from storyreel.orchestrator.state import (
    CHAT_DONE,
    CHAT_IMAGES_PENDING,
    CHAT_PLANNING,
    CHAT_VIDEOS_PENDING,
    SCENE_VIDEO_READY,
    can_stitch,
    scene_state,
)
from storyreel.pipeline.images import synthesize_images
from storyreel.pipeline.planner import plan_scenes
from storyreel.pipeline.stitcher import stitch_chat
from storyreel.pipeline.video_gen import synthesize_videos
from storyreel.schemas.plan import SceneDescriptor

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


@dataclass
class PipelineRunResult:
    """What one run_chat() pass left behind."""

    chat_id: uuid.UUID
    status: str
    scene_states: Dict[int, str] = field(default_factory=dict)
    scene_errors: Dict[int, str] = field(default_factory=dict)
    final_video_url: Optional[str] = None
    step_timings: Dict[str, float] = field(default_factory=dict)


def _stale(final, scenes) -> bool:
    """True when a scene changed after the final video was stitched."""
    return any(s.updated_at > final.updated_at for s in scenes)


async def run_chat(
    ctx: PipelineContext,
    chat_id,
    *,
    force: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
) -> PipelineRunResult:
    """Run or resume the pipeline for a persisted chat.

    Args:
        ctx: Pipeline context
        chat_id: Chat to drive
        force: Regenerate images and videos even for scenes that have them
        progress_callback: Optional callable receiving progress messages

    Returns:
        Final chat status, per-scene states and step timings

    Raises:
        ChatNotFoundError: Unknown chat id
        PlanningError: The plan could not be produced (nothing else runs)
        DownloadError, TranscodeError, StorageError: Stitching failed; the
            chat is back in videos_pending and can be rerun
    """
    def _progress(message: str) -> None:
        logger.info(message)
        if progress_callback:
            progress_callback(message)

    chat = await ctx.metadata.get_chat(chat_id)
    if chat is None:
        raise ChatNotFoundError(f"Chat {chat_id} not found")

    logger.info(f"Starting pipeline for chat {chat.id}, current status: {chat.status}")
    result = PipelineRunResult(chat_id=chat.id, status=chat.status)
    pipeline_start = ctx.clock.monotonic()

    # Step 1: planning
    scenes = await ctx.metadata.list_scenes(chat.id)
    if not scenes:
        await ctx.metadata.set_chat_status(chat.id, CHAT_PLANNING)
        step_start = ctx.clock.monotonic()
        _progress(f"Planning {chat.scene_count} scenes...")
        try:
            descriptors = await plan_scenes(ctx, chat.prompt, chat.scene_count)
        except (PlanningError, ValueError) as e:
            await ctx.metadata.set_chat_status(chat.id, CHAT_PLANNING, str(e)[:1000])
            logger.error(f"Chat {chat.id}: planning failed: {e}")
            raise
        scenes = await ctx.metadata.create_scenes(chat.id, descriptors)
        result.step_timings["planning"] = ctx.clock.monotonic() - step_start
        logger.info(f"Planning step completed in {result.step_timings['planning']:.2f}s")

    # Step 2: one image per scene
    await ctx.metadata.set_chat_status(chat.id, CHAT_IMAGES_PENDING)
    needs_image = [s for s in scenes if force or not s.image_url]
    if needs_image:
        step_start = ctx.clock.monotonic()
        _progress(f"Synthesizing {len(needs_image)} scene images...")
        outcomes = await synthesize_images(
            ctx,
            chat.id,
            [
                SceneDescriptor(
                    s.scene_number, s.scene_prompt, s.scene_image_prompt, s.video_prompt
                )
                for s in needs_image
            ],
        )
        for outcome in outcomes:
            if outcome.error is not None:
                result.scene_errors[outcome.scene_number] = str(outcome.error)
        result.step_timings["images"] = ctx.clock.monotonic() - step_start
        logger.info(f"Image step completed in {result.step_timings['images']:.2f}s")
        scenes = await ctx.metadata.list_scenes(chat.id)

    # Step 3: one video per scene that has an image
    await ctx.metadata.set_chat_status(chat.id, CHAT_VIDEOS_PENDING)
    needs_video = [s for s in scenes if s.image_url and (force or not s.video_url)]
    if needs_video:
        step_start = ctx.clock.monotonic()
        _progress(f"Synthesizing {len(needs_video)} scene videos...")
        outcomes = await synthesize_videos(ctx, chat.id, chat.user_id, needs_video)
        for outcome in outcomes:
            if outcome.error is not None:
                result.scene_errors[outcome.scene_number] = str(outcome.error)
        result.step_timings["videos"] = ctx.clock.monotonic() - step_start
        logger.info(f"Video step completed in {result.step_timings['videos']:.2f}s")

    # Step 4: stitch only when every scene has a video
    scenes = await ctx.metadata.list_scenes(chat.id)
    result.scene_states = {
        s.scene_number: scene_state(s.image_url, s.video_url, s.status) for s in scenes
    }
    final = await ctx.metadata.get_final_video(chat.id)

    if not can_stitch(result.scene_states.values()):
        ready = sum(1 for s in result.scene_states.values() if s == SCENE_VIDEO_READY)
        _progress(
            f"{ready}/{len(result.scene_states)} scene videos ready; "
            "stitching skipped"
        )
        await ctx.metadata.set_chat_status(chat.id, CHAT_VIDEOS_PENDING)
        result.status = CHAT_VIDEOS_PENDING
    elif final is not None and not force and not needs_video and not _stale(final, scenes):
        # Nothing changed since the last stitch
        await ctx.metadata.set_chat_status(chat.id, CHAT_DONE)
        result.status = CHAT_DONE
        result.final_video_url = final.video_url
    else:
        step_start = ctx.clock.monotonic()
        _progress(f"Stitching {len(result.scene_states)} scene videos...")
        result.final_video_url = await stitch_chat(ctx, chat.id)
        result.status = CHAT_DONE
        result.step_timings["stitching"] = ctx.clock.monotonic() - step_start
        logger.info(f"Stitching step completed in {result.step_timings['stitching']:.2f}s")

    total = ctx.clock.monotonic() - pipeline_start
    logger.info(f"Pipeline for chat {chat.id} finished as {result.status} in {total:.2f}s")
    return result


async def create_and_run(
    ctx: PipelineContext,
    user_id: str,
    prompt: str,
    scene_count: Optional[int] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> PipelineRunResult:
    """Create a chat for ``prompt`` and run the whole pipeline on it.

    Raises:
        ValueError: Blank prompt or scene count out of bounds (no chat is created)
    """
    chat = await create_chat(ctx, user_id, prompt, scene_count)
    return await run_chat(ctx, chat.id, progress_callback=progress_callback)


async def create_chat(
    ctx: PipelineContext, user_id: str, prompt: str, scene_count: Optional[int] = None
):
    """Validate inputs and persist a new chat in the planning state."""
    cfg = ctx.settings.pipeline
    if scene_count is None:
        scene_count = cfg.default_scene_count
    if not prompt or not prompt.strip():
        raise ValueError("prompt must not be empty")
    if not cfg.min_scenes <= scene_count <= cfg.max_scenes:
        raise ValueError(
            f"scene_count must be between {cfg.min_scenes} and {cfg.max_scenes}, "
            f"got {scene_count}"
        )
    return await ctx.metadata.create_chat(user_id, prompt.strip(), scene_count)
