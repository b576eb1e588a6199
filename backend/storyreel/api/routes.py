"""API route handlers and Pydantic request/response schemas.

Field names are camelCase on the wire (chatId, sceneNumber, ...) and
snake_case in Python.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storyreel.context import PipelineContext
from storyreel.errors import ChatNotFoundError, StoryreelError
from storyreel.orchestrator.pipeline import create_chat, run_chat
from storyreel.orchestrator.state import derive_chat_state, scene_state
from storyreel.pipeline.images import synthesize_image
from storyreel.pipeline.planner import plan_scenes
from storyreel.pipeline.stitcher import stitch_chat, stitch_videos
from storyreel.pipeline.video_gen import synthesize_video
from storyreel.schemas.plan import SceneDescriptor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_context(request: Request) -> PipelineContext:
    return request.app.state.ctx


# ============================================================================
# Pydantic Schemas
# ============================================================================

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateChatRequest(ApiModel):
    user_id: str = Field(min_length=1, max_length=64)
    prompt: str = Field(min_length=1)
    scene_count: Optional[int] = None


class ChatAccepted(ApiModel):
    chat_id: str
    status: str
    status_url: str


class SceneResponse(ApiModel):
    id: str
    chat_id: str
    scene_number: int
    scene_prompt: Optional[str] = None
    scene_image_prompt: str
    video_prompt: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    state: str
    error_message: Optional[str] = None
    created_at: datetime


class ChatSummary(ApiModel):
    id: str
    user_id: str
    title: str
    scene_count: int
    status: str
    created_at: datetime
    updated_at: datetime


class ChatDetail(ChatSummary):
    prompt: str
    error_message: Optional[str] = None
    scenes: list[SceneResponse] = []
    final_video_url: Optional[str] = None
    resume_from: str


class ResumeRequest(ApiModel):
    force: bool = False


class PlanRequest(ApiModel):
    prompt: str = Field(min_length=1)
    scene_count: int


class PlannedScene(ApiModel):
    scene_number: int
    scene_prompt: str
    scene_image_prompt: str
    video_prompt: Optional[str] = None


class PlanResponse(ApiModel):
    scenes: list[PlannedScene]


class GenImageRequest(ApiModel):
    chat_id: uuid.UUID
    scene_number: int = Field(ge=1)
    prompt: Optional[str] = None


class GenImageResponse(ApiModel):
    image_url: str


class GenVideoRequest(ApiModel):
    image_url: str
    scene_id: str
    user_id: str = Field(min_length=1, max_length=64)
    chat_id: uuid.UUID
    prompt: Optional[str] = None


class GenVideoResponse(ApiModel):
    video_url: str


class StitchRequest(ApiModel):
    chat_id: uuid.UUID
    user_id: Optional[str] = None
    video_urls: Optional[list[str]] = None


class StitchResponse(ApiModel):
    final_video_url: str


class FinalVideoResponse(ApiModel):
    id: str
    chat_id: str
    video_url: str
    created_at: datetime
    updated_at: datetime


def _scene_response(scene) -> SceneResponse:
    return SceneResponse(
        id=str(scene.id),
        chat_id=str(scene.chat_id),
        scene_number=scene.scene_number,
        scene_prompt=scene.scene_prompt,
        scene_image_prompt=scene.scene_image_prompt,
        video_prompt=scene.video_prompt,
        image_url=scene.image_url,
        video_url=scene.video_url,
        state=scene_state(scene.image_url, scene.video_url, scene.status),
        error_message=scene.error_message,
        created_at=scene.created_at,
    )


def _chat_summary(chat) -> ChatSummary:
    return ChatSummary(
        id=str(chat.id),
        user_id=chat.user_id,
        title=chat.title,
        scene_count=chat.scene_count,
        status=chat.status,
        created_at=chat.created_at,
        updated_at=chat.updated_at,
    )


async def run_chat_background(ctx: PipelineContext, chat_id: uuid.UUID, force: bool = False):
    """Run the pipeline outside the request; failures are persisted on the chat."""
    try:
        await run_chat(ctx, chat_id, force=force)
    except StoryreelError as e:
        logger.error(f"Background pipeline for chat {chat_id} failed: {e}")
    except Exception:
        logger.exception(f"Background pipeline for chat {chat_id} crashed")


# ============================================================================
# Chats
# ============================================================================

@router.post("/chats", status_code=202, response_model=ChatAccepted)
async def create_chat_endpoint(
    request: CreateChatRequest,
    background_tasks: BackgroundTasks,
    ctx: PipelineContext = Depends(get_context),
):
    """Create a chat and start its pipeline in the background."""
    chat = await create_chat(ctx, request.user_id, request.prompt, request.scene_count)
    logger.info(f"Created chat {chat.id} for prompt: {request.prompt[:50]}...")

    # Add background task AFTER committing the chat
    background_tasks.add_task(run_chat_background, ctx, chat.id)

    return ChatAccepted(
        chat_id=str(chat.id),
        status=chat.status,
        status_url=f"/api/chats/{chat.id}",
    )


@router.get("/chats", response_model=list[ChatSummary])
async def list_chats(
    user_id: Optional[str] = Query(None, alias="userId"),
    ctx: PipelineContext = Depends(get_context),
):
    return [_chat_summary(c) for c in await ctx.metadata.list_chats(user_id)]


@router.get("/chats/{chat_id}", response_model=ChatDetail)
async def get_chat(chat_id: uuid.UUID, ctx: PipelineContext = Depends(get_context)):
    """Chat detail with its scenes and final video."""
    chat = await ctx.metadata.get_chat(chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")

    scenes = await ctx.metadata.list_scenes(chat.id)
    final = await ctx.metadata.get_final_video(chat.id)
    summary = _chat_summary(chat)
    scene_responses = [_scene_response(s) for s in scenes]
    return ChatDetail(
        **summary.model_dump(),
        prompt=chat.prompt,
        error_message=chat.error_message,
        scenes=scene_responses,
        final_video_url=final.video_url if final else None,
        resume_from=derive_chat_state(
            bool(scenes), [s.state for s in scene_responses], final is not None
        ),
    )


@router.delete("/chats/{chat_id}", status_code=204)
async def delete_chat(chat_id: uuid.UUID, ctx: PipelineContext = Depends(get_context)):
    """Delete a chat together with its scenes and final video record."""
    if not await ctx.metadata.delete_chat(chat_id):
        raise HTTPException(status_code=404, detail="Chat not found")
    return Response(status_code=204)


@router.post("/chats/{chat_id}/resume", status_code=202, response_model=ChatAccepted)
async def resume_chat(
    chat_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    request: Optional[ResumeRequest] = None,
    ctx: PipelineContext = Depends(get_context),
):
    """Rerun a chat; only unfinished scenes are reprocessed unless forced."""
    chat = await ctx.metadata.get_chat(chat_id)
    if not chat:
        raise HTTPException(status_code=404, detail="Chat not found")

    force = request.force if request else False
    background_tasks.add_task(run_chat_background, ctx, chat.id, force)
    return ChatAccepted(
        chat_id=str(chat.id),
        status=chat.status,
        status_url=f"/api/chats/{chat.id}",
    )


@router.get("/scenes", response_model=list[SceneResponse])
async def list_scenes(
    chat_id: uuid.UUID = Query(..., alias="chatId"),
    ctx: PipelineContext = Depends(get_context),
):
    return [_scene_response(s) for s in await ctx.metadata.list_scenes(chat_id)]


@router.get("/final-videos", response_model=list[FinalVideoResponse])
async def list_final_videos(
    user_id: str = Query(..., alias="userId"),
    ctx: PipelineContext = Depends(get_context),
):
    return [
        FinalVideoResponse(
            id=str(f.id),
            chat_id=str(f.chat_id),
            video_url=f.video_url,
            created_at=f.created_at,
            updated_at=f.updated_at,
        )
        for f in await ctx.metadata.list_final_videos(user_id)
    ]


# ============================================================================
# Stage entry points
# ============================================================================

@router.post("/plan", response_model=PlanResponse)
async def plan(request: PlanRequest, ctx: PipelineContext = Depends(get_context)):
    """Plan scenes for a prompt without persisting anything."""
    scenes = await plan_scenes(ctx, request.prompt, request.scene_count)
    return PlanResponse(
        scenes=[
            PlannedScene(
                scene_number=d.scene_number,
                scene_prompt=d.scene_prompt,
                scene_image_prompt=d.image_prompt,
                video_prompt=d.video_prompt,
            )
            for d in scenes
        ]
    )


@router.post("/genImage", response_model=GenImageResponse)
async def gen_image(request: GenImageRequest, ctx: PipelineContext = Depends(get_context)):
    """Synthesize (or re-synthesize) the image for one scene."""
    scene = await ctx.metadata.get_scene_by_number(request.chat_id, request.scene_number)
    if scene is None and not request.prompt:
        raise HTTPException(status_code=404, detail="Scene not found and no prompt given")

    descriptor = SceneDescriptor(
        scene_number=request.scene_number,
        scene_prompt=scene.scene_prompt if scene else "",
        image_prompt=request.prompt or scene.scene_image_prompt,
        video_prompt=scene.video_prompt if scene else None,
    )
    url = await synthesize_image(ctx, request.chat_id, descriptor)
    return GenImageResponse(image_url=url)


@router.post("/genVideo", response_model=GenVideoResponse)
async def gen_video(request: GenVideoRequest, ctx: PipelineContext = Depends(get_context)):
    """Synthesize the video for one scene from its image."""
    url = await synthesize_video(
        ctx,
        request.image_url,
        request.prompt,
        request.chat_id,
        request.scene_id,
        request.user_id,
    )
    return GenVideoResponse(video_url=url)


@router.post("/stitch", response_model=StitchResponse)
async def stitch(request: StitchRequest, ctx: PipelineContext = Depends(get_context)):
    """Stitch explicit video URLs, or the chat's own scene videos when none are given."""
    if request.video_urls is None:
        url = await stitch_chat(ctx, request.chat_id)
        return StitchResponse(final_video_url=url)

    user_id = request.user_id
    if user_id is None:
        chat = await ctx.metadata.get_chat(request.chat_id)
        if chat is None:
            raise ChatNotFoundError(f"Chat {request.chat_id} not found")
        user_id = chat.user_id
    url = await stitch_videos(ctx, request.video_urls, user_id, request.chat_id)
    return StitchResponse(final_video_url=url)


@router.get("/health")
async def health():
    return {"status": "ok"}
