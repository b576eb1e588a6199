"""Video stitching with the ffmpeg concat demuxer.

Downloads every scene clip into a scoped temporary directory, writes a
concat manifest in scene order, re-encodes everything into one MP4, uploads
it and records it as the chat's FinalVideo. The temporary directory is
removed on every exit path.

There are no internal retries: a failed stitch is retried by calling it
again with the same inputs. Storage paths and the FinalVideo upsert are
both keyed by chat, so a rerun overwrites instead of duplicating.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import Sequence

import httpx

from storyreel.clock import epoch_millis
from storyreel.context import PipelineContext
from storyreel.errors import (
    ChatNotFoundError,
    DownloadError,
    InsufficientInputError,
    MetadataWriteError,
)
from storyreel.orchestrator.state import (
    CHAT_DONE,
    CHAT_STITCHING,
    CHAT_VIDEOS_PENDING,
    MIN_STITCH_INPUTS,
    can_stitch,
    scene_state,
)
from storyreel.services.storage import final_video_path

logger = logging.getLogger(__name__)


async def _download(ctx: PipelineContext, url: str, dest: Path) -> Path:
    """Fetch one clip into ``dest``, reading local artifacts directly."""
    local = ctx.artifacts.local_path(url)
    try:
        if local is not None:
            await asyncio.to_thread(shutil.copyfile, local, dest)
            return dest

        async with ctx.http.stream("GET", url) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
    except (httpx.HTTPError, OSError) as e:
        raise DownloadError(f"Failed to download {url}: {e}") from e
    return dest


def _write_manifest(manifest_path: Path, clip_paths: Sequence[Path]) -> None:
    with open(manifest_path, "w") as f:
        for clip_path in clip_paths:
            # Concat demuxer quoting: close quote, escaped quote, reopen
            escaped = str(clip_path.resolve()).replace("'", "'\\''")
            f.write(f"file '{escaped}'\n")


async def stitch_videos(
    ctx: PipelineContext, video_urls: Sequence[str], user_id: str, chat_id
) -> str:
    """Concatenate ``video_urls`` (in order) into the chat's final video.

    Args:
        ctx: Pipeline context
        video_urls: Scene clip URLs in scene-number order
        user_id: Owning user (first path segment of the artifact)
        chat_id: Owning chat

    Returns:
        Public URL of the final video

    Raises:
        InsufficientInputError: Fewer than two URLs, before any download
        DownloadError: Any input could not be fetched
        TranscodeError: ffmpeg exited non-zero
        StorageError: The upload was rejected
    """
    if len(video_urls) < MIN_STITCH_INPUTS:
        raise InsufficientInputError(
            f"Stitching needs at least {MIN_STITCH_INPUTS} videos, got {len(video_urls)}"
        )

    chat = await ctx.metadata.get_chat(chat_id)
    created_at = chat.created_at if chat is not None else ctx.clock.now()

    tmp_root = ctx.settings.storage.tmp_dir
    if tmp_root is not None:
        tmp_root.mkdir(parents=True, exist_ok=True)

    started = ctx.clock.monotonic()
    with tempfile.TemporaryDirectory(prefix="storyreel-stitch-", dir=tmp_root) as workdir:
        work = Path(workdir)
        logger.info(f"Chat {chat_id}: stitching {len(video_urls)} clips in {work}")

        results = await asyncio.gather(
            *[
                _download(ctx, url, work / f"scene_{i:03d}.mp4")
                for i, url in enumerate(video_urls, start=1)
            ],
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        clip_paths = list(results)

        manifest_path = work / "concat_list.txt"
        _write_manifest(manifest_path, clip_paths)

        output_path = work / "final.mp4"
        await ctx.transcoder.concat(manifest_path, output_path)
        data = await asyncio.to_thread(output_path.read_bytes)

    path = final_video_path(user_id, chat_id, epoch_millis(created_at))
    await ctx.artifacts.upload(path, data, "video/mp4", overwrite=True)
    url = ctx.artifacts.public_url(path)

    try:
        await ctx.metadata.upsert_final_video(chat_id, url)
    except MetadataWriteError as e:
        # The artifact stays in storage; a rerun rewrites both
        logger.error(f"Chat {chat_id}: final video stored at {url} but not recorded: {e}")

    elapsed = ctx.clock.monotonic() - started
    logger.info(f"Chat {chat_id}: final video ready at {url} ({elapsed:.1f}s)")
    return url


async def stitch_chat(ctx: PipelineContext, chat_id) -> str:
    """Stitch a persisted chat's scene videos in scene-number order.

    Every scene of the chat must have a video. The chat moves to
    ``stitching`` for the duration, then to ``done``; on failure it returns
    to ``videos_pending`` and the error is re-raised.

    Raises:
        ChatNotFoundError: Unknown chat id
        InsufficientInputError: Not every scene has a video, or fewer than two
    """
    chat = await ctx.metadata.get_chat(chat_id)
    if chat is None:
        raise ChatNotFoundError(f"Chat {chat_id} not found")

    scenes = await ctx.metadata.list_scenes(chat.id)
    states = [scene_state(s.image_url, s.video_url, s.status) for s in scenes]
    if not can_stitch(states):
        ready = sum(1 for s in scenes if s.video_url)
        raise InsufficientInputError(
            f"Chat {chat.id}: {ready} of {len(scenes)} scene videos ready; "
            f"stitching needs all of them and at least {MIN_STITCH_INPUTS}"
        )

    await ctx.metadata.set_chat_status(chat.id, CHAT_STITCHING)
    try:
        url = await stitch_videos(
            ctx, [s.video_url for s in scenes], chat.user_id, chat.id
        )
    except Exception as e:
        await ctx.metadata.set_chat_status(chat.id, CHAT_VIDEOS_PENDING, str(e)[:1000])
        raise

    await ctx.metadata.set_chat_status(chat.id, CHAT_DONE)
    return url
