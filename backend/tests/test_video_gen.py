"""Video synthesis: polling state machine, per-scene isolation, metadata guard."""

import logging

import pytest

from storyreel.errors import PollError, VideoGenFailedError, VideoGenTimeoutError
from storyreel.orchestrator.state import SCENE_FAILED, SCENE_VIDEO_READY
from storyreel.pipeline.video_gen import (
    StillRunning,
    TerminalState,
    VideoJobPoller,
    VideoJobState,
    run_poller,
    synthesize_video,
    synthesize_videos,
)
from storyreel.schemas.plan import SceneDescriptor
from storyreel.services.wavespeed_client import JobStatus

from doubles import CDN_BASE, PUBLIC_BASE, WaveSpeedFake


async def _scenes_with_images(metadata, count: int, user_id: str = "user-1"):
    chat = await metadata.create_chat(user_id, "a robot explores a forest", count)
    await metadata.create_scenes(
        chat.id,
        [
            SceneDescriptor(n, f"scene {n}", f"robot, scene {n}", f"robot walks (scene {n})")
            for n in range(1, count + 1)
        ],
    )
    for n in range(1, count + 1):
        await metadata.set_scene_image_url(
            chat.id, n, f"{PUBLIC_BASE}/scene_{chat.id}_{n}_1714564800000.png"
        )
    return chat, list(await metadata.list_scenes(chat.id))


class ScriptedClient:
    """Stands in for VideoGenClient.poll with a fixed status sequence."""

    def __init__(self, *statuses: JobStatus):
        self.statuses = list(statuses)
        self.calls = 0

    async def poll(self, job_id: str) -> JobStatus:
        status = self.statuses[min(self.calls, len(self.statuses) - 1)]
        self.calls += 1
        return status


class TestVideoJobPoller:
    @pytest.mark.asyncio
    async def test_one_request_per_poll(self):
        client = ScriptedClient(
            JobStatus("j", "processing"),
            JobStatus("j", "completed", outputs=[f"{CDN_BASE}/j.mp4"]),
        )
        poller = VideoJobPoller(client, "j", max_attempts=5)

        first = await poller.poll()
        assert first == StillRunning("processing", 1)
        assert poller.state == VideoJobState.POLLING

        second = await poller.poll()
        assert second == TerminalState(
            VideoJobState.COMPLETED, output_url=f"{CDN_BASE}/j.mp4", attempts=2
        )
        assert client.calls == 2

    @pytest.mark.asyncio
    async def test_completed_without_outputs_is_failure(self):
        poller = VideoJobPoller(ScriptedClient(JobStatus("j", "completed")), "j")

        result = await poller.poll()

        assert result.state == VideoJobState.FAILED
        assert "without outputs" in result.error

    @pytest.mark.asyncio
    async def test_poll_after_terminal_state_is_rejected(self):
        poller = VideoJobPoller(ScriptedClient(JobStatus("j", "failed", error="nsfw")), "j")
        await poller.poll()

        with pytest.raises(RuntimeError):
            await poller.poll()

    @pytest.mark.asyncio
    async def test_run_poller_sleeps_between_polls_only(self, clock):
        client = ScriptedClient(JobStatus("j", "queued"))
        poller = VideoJobPoller(client, "j", max_attempts=4)

        result = await run_poller(poller, clock, interval=2.5)

        assert result.state == VideoJobState.TIMED_OUT
        assert result.attempts == 4
        assert client.calls == 4
        assert clock.sleeps == [2.5, 2.5, 2.5]


@pytest.mark.asyncio
async def test_completed_job_is_stored_and_recorded(make_ctx, metadata, settings):
    wavespeed = WaveSpeedFake({1: ["created", "processing", "completed"]})
    ctx = make_ctx(wavespeed=wavespeed)
    chat, (scene,) = await _scenes_with_images(metadata, 1)

    url = await synthesize_video(
        ctx, scene.image_url, scene.video_prompt, chat.id, scene.id, chat.user_id
    )

    assert url.startswith(f"{PUBLIC_BASE}/user-1/{chat.id}/scene_video_")
    assert ctx.artifacts.local_path(url).read_bytes() == b"video:job-1.mp4"
    assert wavespeed.polls == {"job-1": 3}
    assert ctx.clock.sleeps == [settings.pipeline.video_poll_interval] * 2

    body = wavespeed.submissions[0]
    assert body["image"] == scene.image_url
    assert body["prompt"] == "robot walks (scene 1)"
    assert body["duration"] == settings.pipeline.video_duration

    stored = await metadata.get_scene(scene.id)
    assert stored.video_url == url
    assert stored.status == SCENE_VIDEO_READY


@pytest.mark.asyncio
async def test_failed_job_marks_scene_failed(make_ctx, metadata):
    ctx = make_ctx(wavespeed=WaveSpeedFake({1: ["processing", "failed"]}))
    chat, (scene,) = await _scenes_with_images(metadata, 1)

    with pytest.raises(VideoGenFailedError, match="content policy violation"):
        await synthesize_video(ctx, scene.image_url, None, chat.id, scene.id, chat.user_id)

    stored = await metadata.get_scene(scene.id)
    assert stored.video_url is None
    assert stored.status == SCENE_FAILED


@pytest.mark.asyncio
async def test_poll_http_error_abandons_job(make_ctx, metadata):
    wavespeed = WaveSpeedFake({1: ["processing", "http500", "completed"]})
    ctx = make_ctx(wavespeed=wavespeed)
    chat, (scene,) = await _scenes_with_images(metadata, 1)

    with pytest.raises(PollError) as excinfo:
        await synthesize_video(ctx, scene.image_url, None, chat.id, scene.id, chat.user_id)

    assert excinfo.value.status_code == 500
    assert wavespeed.polls == {"job-1": 2}
    assert len(wavespeed.submissions) == 1
    assert (await metadata.get_scene(scene.id)).video_url is None


@pytest.mark.asyncio
async def test_timeout_after_poll_budget(make_ctx, metadata, settings):
    wavespeed = WaveSpeedFake({1: ["processing"]})
    ctx = make_ctx(wavespeed=wavespeed)
    chat, (scene,) = await _scenes_with_images(metadata, 1)

    with pytest.raises(VideoGenTimeoutError) as excinfo:
        await synthesize_video(ctx, scene.image_url, None, chat.id, scene.id, chat.user_id)

    assert excinfo.value.attempts == 120
    assert wavespeed.polls == {"job-1": 120}
    assert len(ctx.clock.sleeps) == 119
    stored = await metadata.get_scene(scene.id)
    assert stored.video_url is None
    assert stored.status == SCENE_FAILED


@pytest.mark.asyncio
async def test_malformed_scene_id_skips_metadata_write(make_ctx, metadata, caplog):
    ctx = make_ctx(wavespeed=WaveSpeedFake({1: ["completed"]}))
    chat, (scene,) = await _scenes_with_images(metadata, 1)

    with caplog.at_level(logging.WARNING, logger="storyreel.pipeline.video_gen"):
        url = await synthesize_video(
            ctx, scene.image_url, None, chat.id, "scene-one", chat.user_id
        )

    assert ctx.artifacts.local_path(url) is not None
    assert "not a UUID" in caplog.text
    assert (await metadata.get_scene(scene.id)).video_url is None


@pytest.mark.asyncio
async def test_one_scene_timing_out_does_not_affect_siblings(make_ctx, metadata):
    wavespeed = WaveSpeedFake(
        {
            1: ["processing", "completed"],
            2: ["processing"],
            3: ["queued", "processing", "processing", "completed"],
        }
    )
    ctx = make_ctx(wavespeed=wavespeed)
    chat, scenes = await _scenes_with_images(metadata, 3)

    outcomes = await synthesize_videos(ctx, chat.id, chat.user_id, scenes)

    assert [o.scene_number for o in outcomes] == [1, 2, 3]
    assert outcomes[0].ok and outcomes[2].ok
    assert isinstance(outcomes[1].error, VideoGenTimeoutError)
    assert wavespeed.polls == {"job-1": 2, "job-2": 120, "job-3": 4}

    stored = {s.scene_number: s for s in await metadata.list_scenes(chat.id)}
    assert stored[1].video_url == outcomes[0].url
    assert stored[3].video_url == outcomes[2].url
    assert stored[1].video_url != stored[3].video_url
    assert stored[2].video_url is None
    assert ctx.artifacts.local_path(stored[3].video_url).read_bytes() == b"video:job-3.mp4"
