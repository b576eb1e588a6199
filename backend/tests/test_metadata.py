"""Metadata Store behaviour on SQLite."""

import uuid

import pytest

from storyreel.db.repository import is_uuid, parse_uuid
from storyreel.errors import MetadataWriteError
from storyreel.orchestrator.state import (
    CHAT_PLANNING,
    CHAT_STITCHING,
    SCENE_FAILED,
    SCENE_IMAGE_READY,
    SCENE_NONE,
    SCENE_VIDEO_READY,
)
from storyreel.schemas.plan import SceneDescriptor


def _plan(count: int, tag: str = "v1") -> list[SceneDescriptor]:
    return [
        SceneDescriptor(n, f"{tag} scene {n}", f"{tag} image {n}", f"{tag} motion {n}")
        for n in range(1, count + 1)
    ]


@pytest.mark.parametrize(
    "value,expected",
    [
        (uuid.uuid4(), True),
        (str(uuid.uuid4()), True),
        ("scene-1", False),
        ("", False),
        (None, False),
    ],
)
def test_is_uuid(value, expected):
    assert is_uuid(value) is expected


def test_parse_uuid_rejects_garbage():
    with pytest.raises(ValueError):
        parse_uuid("not-a-uuid")


@pytest.mark.asyncio
async def test_new_chat_starts_in_planning(metadata):
    chat = await metadata.create_chat("user-1", "a robot explores a forest", 3)

    stored = await metadata.get_chat(chat.id)
    assert stored.status == CHAT_PLANNING
    assert stored.title == "a robot explores a forest"
    assert stored.scene_count == 3


@pytest.mark.asyncio
async def test_list_chats_filters_by_user(metadata):
    await metadata.create_chat("alice", "first", 2)
    await metadata.create_chat("bob", "second", 2)

    assert [c.prompt for c in await metadata.list_chats("alice")] == ["first"]
    assert len(await metadata.list_chats()) == 2


@pytest.mark.asyncio
async def test_create_scenes_is_idempotent(metadata):
    chat = await metadata.create_chat("user-1", "prompt", 2)

    first = await metadata.create_scenes(chat.id, _plan(2, "v1"))
    second = await metadata.create_scenes(chat.id, _plan(2, "v2"))

    assert [s.id for s in first] == [s.id for s in second]
    scenes = await metadata.list_scenes(chat.id)
    assert [s.scene_number for s in scenes] == [1, 2]
    assert [s.scene_image_prompt for s in scenes] == ["v2 image 1", "v2 image 2"]
    assert all(s.status == SCENE_NONE for s in scenes)


@pytest.mark.asyncio
async def test_scene_creation_times_are_distinct(metadata):
    chat = await metadata.create_chat("user-1", "prompt", 5)

    scenes = await metadata.create_scenes(chat.id, _plan(5))

    assert len({s.created_at for s in scenes}) == 5


@pytest.mark.asyncio
async def test_image_then_video_updates_status(metadata):
    chat = await metadata.create_chat("user-1", "prompt", 1)
    (scene,) = await metadata.create_scenes(chat.id, _plan(1))

    await metadata.set_scene_image_url(chat.id, 1, "http://x/img.png")
    assert (await metadata.get_scene(scene.id)).status == SCENE_IMAGE_READY

    assert await metadata.set_scene_video_url(str(scene.id), "http://x/clip.mp4") is True
    stored = await metadata.get_scene(scene.id)
    assert stored.status == SCENE_VIDEO_READY
    assert stored.image_url == "http://x/img.png"


@pytest.mark.asyncio
async def test_set_image_for_missing_scene_returns_none(metadata):
    chat = await metadata.create_chat("user-1", "prompt", 1)

    assert await metadata.set_scene_image_url(chat.id, 7, "http://x/img.png") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("scene_id", ["scene-1", "1234", str(uuid.uuid4())])
async def test_set_video_url_guards_unknown_ids(metadata, scene_id):
    assert await metadata.set_scene_video_url(scene_id, "http://x/clip.mp4") is False


@pytest.mark.asyncio
async def test_mark_failed_keeps_urls(metadata):
    chat = await metadata.create_chat("user-1", "prompt", 1)
    (scene,) = await metadata.create_scenes(chat.id, _plan(1))
    await metadata.set_scene_image_url(chat.id, 1, "http://x/img.png")

    assert await metadata.mark_scene_failed(scene.id, "boom") is True

    stored = await metadata.get_scene(scene.id)
    assert stored.status == SCENE_FAILED
    assert stored.error_message == "boom"
    assert stored.image_url == "http://x/img.png"


@pytest.mark.asyncio
async def test_final_video_upsert_keeps_one_row(metadata):
    chat = await metadata.create_chat("user-1", "prompt", 2)

    first = await metadata.upsert_final_video(chat.id, "http://x/final_1.mp4")
    second = await metadata.upsert_final_video(chat.id, "http://x/final_2.mp4")

    assert first.id == second.id
    finals = await metadata.list_final_videos("user-1")
    assert [f.video_url for f in finals] == ["http://x/final_2.mp4"]
    assert await metadata.list_final_videos("someone-else") == []


@pytest.mark.asyncio
async def test_chat_status_and_error(metadata):
    chat = await metadata.create_chat("user-1", "prompt", 2)

    await metadata.set_chat_status(chat.id, CHAT_STITCHING, "retrying")

    stored = await metadata.get_chat(chat.id)
    assert stored.status == CHAT_STITCHING
    assert stored.error_message == "retrying"


@pytest.mark.asyncio
async def test_status_for_unknown_chat_is_write_error(metadata):
    with pytest.raises(MetadataWriteError):
        await metadata.set_chat_status(uuid.uuid4(), CHAT_STITCHING)


@pytest.mark.asyncio
async def test_delete_chat_cascades(metadata):
    chat = await metadata.create_chat("user-1", "prompt", 2)
    await metadata.create_scenes(chat.id, _plan(2))
    await metadata.upsert_final_video(chat.id, "http://x/final.mp4")

    assert await metadata.delete_chat(chat.id) is True

    assert await metadata.get_chat(chat.id) is None
    assert await metadata.list_scenes(chat.id) == []
    assert await metadata.get_final_video(chat.id) is None
    assert await metadata.delete_chat(chat.id) is False
