"""Image-to-video synthesis with a bounded polling state machine.

Each scene submits one remote job and then polls it to a terminal state:

    submitted -> polling -> completed | failed | timed_out

VideoJobPoller performs exactly one poll per call and enforces the poll
budget itself; run_poller drives it on a fixed cadence through an
injectable Clock, so the loop can be cancelled between polls and tested
without real sleeps. A non-2xx poll response abandons the job (PollError);
the job is never resubmitted.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Union

from storyreel.clock import Clock, epoch_millis
from storyreel.context import PipelineContext
from storyreel.db.models import Scene
from storyreel.db.repository import is_uuid
from storyreel.errors import (
    MetadataWriteError,
    PollError,
    StorageError,
    VideoGenError,
    VideoGenFailedError,
    VideoGenTimeoutError,
)
from storyreel.pipeline.outcome import SceneOutcome
from storyreel.services.storage import scene_video_path
from storyreel.services.wavespeed_client import VideoGenClient

logger = logging.getLogger(__name__)

_COMPLETED_STATUSES = frozenset({"completed"})
_FAILED_STATUSES = frozenset({"failed"})


class VideoJobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class StillRunning:
    """The job reported a non-terminal status."""

    status: str
    attempt: int


@dataclass(frozen=True)
class TerminalState:
    state: VideoJobState
    output_url: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


PollResult = Union[TerminalState, StillRunning]


class VideoJobPoller:
    """Polls one submitted job, one request per poll() call."""

    def __init__(self, client: VideoGenClient, job_id: str, max_attempts: int = 120):
        self.client = client
        self.job_id = job_id
        self.max_attempts = max_attempts
        self.attempts = 0
        self.state = VideoJobState.SUBMITTED

    async def poll(self) -> PollResult:
        """Issue one poll request and advance the state machine.

        Raises:
            PollError: The poll request failed; the poller is left FAILED
        """
        if self.state not in (VideoJobState.SUBMITTED, VideoJobState.POLLING):
            raise RuntimeError(f"Job {self.job_id} is already {self.state.value}")
        if self.attempts >= self.max_attempts:
            return self._finish(VideoJobState.TIMED_OUT)

        self.state = VideoJobState.POLLING
        self.attempts += 1
        try:
            status = await self.client.poll(self.job_id)
        except PollError:
            self.state = VideoJobState.FAILED
            raise

        if status.status in _COMPLETED_STATUSES:
            if not status.outputs:
                return self._finish(
                    VideoJobState.FAILED, error="job completed without outputs"
                )
            return self._finish(VideoJobState.COMPLETED, output_url=status.outputs[0])
        if status.status in _FAILED_STATUSES:
            return self._finish(
                VideoJobState.FAILED, error=status.error or "unknown upstream error"
            )
        if self.attempts >= self.max_attempts:
            return self._finish(VideoJobState.TIMED_OUT)

        logger.debug(
            f"Job {self.job_id}: status={status.status} "
            f"(poll {self.attempts}/{self.max_attempts})"
        )
        return StillRunning(status.status, self.attempts)

    def _finish(
        self,
        state: VideoJobState,
        output_url: Optional[str] = None,
        error: Optional[str] = None,
    ) -> TerminalState:
        self.state = state
        logger.info(f"Job {self.job_id}: {state.value} after {self.attempts} polls")
        return TerminalState(state, output_url=output_url, error=error, attempts=self.attempts)


async def run_poller(poller: VideoJobPoller, clock: Clock, interval: float) -> TerminalState:
    """Drive ``poller`` until it reaches a terminal state.

    Sleeps ``interval`` seconds between polls, never after the last one.
    """
    while True:
        result = await poller.poll()
        if isinstance(result, TerminalState):
            return result
        await clock.sleep(interval)


async def synthesize_video(
    ctx: PipelineContext,
    image_url: str,
    prompt: Optional[str],
    chat_id,
    scene_id,
    user_id: str,
) -> str:
    """Turn one scene image into a stored video clip.

    Args:
        ctx: Pipeline context
        image_url: Public URL of the scene's still image
        prompt: Optional motion description
        chat_id: Owning chat
        scene_id: Scene row id; a malformed id skips the metadata write
        user_id: Requesting user (first path segment of the artifact)

    Returns:
        Public URL of the stored MP4

    Raises:
        VideoGenError: Submission, polling or download failed, the job failed,
            or it timed out
        StorageError: The upload was rejected
    """
    cfg = ctx.settings.pipeline
    scene: Optional[Scene] = None
    if is_uuid(scene_id):
        scene = await ctx.metadata.get_scene(scene_id)
    created_at = scene.created_at if scene is not None else ctx.clock.now()

    try:
        job_id = await ctx.videos.submit(
            image_url,
            prompt,
            duration=cfg.video_duration,
            seed=cfg.video_seed,
            camera_fixed=cfg.video_camera_fixed,
        )
        poller = VideoJobPoller(ctx.videos, job_id, max_attempts=cfg.video_poll_max)
        terminal = await run_poller(poller, ctx.clock, cfg.video_poll_interval)

        if terminal.state == VideoJobState.TIMED_OUT:
            raise VideoGenTimeoutError(job_id, terminal.attempts)
        if terminal.state == VideoJobState.FAILED:
            raise VideoGenFailedError(f"Video job {job_id} failed: {terminal.error}")

        data = await ctx.videos.download(terminal.output_url)
        path = scene_video_path(user_id, chat_id, epoch_millis(created_at))
        await ctx.artifacts.upload(path, data, "video/mp4", overwrite=True)
        url = ctx.artifacts.public_url(path)
    except (VideoGenError, StorageError) as e:
        logger.error(f"Chat {chat_id} scene {scene_id}: video synthesis failed: {e}")
        if scene is not None:
            try:
                await ctx.metadata.mark_scene_failed(scene.id, str(e))
            except MetadataWriteError as write_error:
                logger.error(f"Scene {scene_id}: could not record failure: {write_error}")
        raise

    if not is_uuid(scene_id):
        logger.warning(
            f"Chat {chat_id}: scene id {scene_id!r} is not a UUID; "
            f"video stored at {url} but not recorded on any scene"
        )
    else:
        try:
            recorded = await ctx.metadata.set_scene_video_url(scene_id, url)
        except MetadataWriteError as e:
            logger.error(f"Chat {chat_id} scene {scene_id}: video stored at {url} but not recorded: {e}")
            return url
        if not recorded:
            logger.warning(f"Chat {chat_id}: scene {scene_id} not found; video URL not recorded")
        else:
            logger.info(f"Chat {chat_id} scene {scene_id}: video ready at {url}")
    return url


async def synthesize_videos(
    ctx: PipelineContext, chat_id, user_id: str, scenes: Sequence[Scene]
) -> list[SceneOutcome]:
    """Synthesize videos for every given scene concurrently.

    Scenes must already have an image URL. Each scene polls independently;
    a timeout or failure in one never cancels another.
    """
    results = await asyncio.gather(
        *[
            synthesize_video(
                ctx, s.image_url, s.video_prompt, chat_id, s.id, user_id
            )
            for s in scenes
        ],
        return_exceptions=True,
    )

    outcomes = []
    for scene, result in zip(scenes, results):
        if isinstance(result, BaseException):
            if not isinstance(result, (VideoGenError, StorageError)):
                logger.error(
                    f"Chat {chat_id} scene {scene.scene_number}: unexpected video error",
                    exc_info=result,
                )
            outcomes.append(SceneOutcome(scene.scene_number, scene.id, error=result))
        else:
            outcomes.append(SceneOutcome(scene.scene_number, scene.id, url=result))

    ready = sum(1 for o in outcomes if o.ok)
    logger.info(f"Chat {chat_id}: {ready}/{len(outcomes)} videos ready")
    return outcomes
