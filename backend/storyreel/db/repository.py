"""Metadata Store: row-level access to Chat, Scene and FinalVideo.

Every method opens its own short-lived session so concurrent per-scene tasks
never share a session. Writes are scoped by chat/scene identifiers; there is
no cross-row locking, and FinalVideo is upserted by chat id.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from storyreel.db.engine import create_engine, create_session_factory
from storyreel.db.models import Base, Chat, FinalVideo, Scene
from storyreel.errors import MetadataWriteError
from storyreel.orchestrator.state import SCENE_FAILED, SCENE_IMAGE_READY, SCENE_VIDEO_READY
from storyreel.schemas.plan import SceneDescriptor

logger = logging.getLogger(__name__)

IdLike = Union[uuid.UUID, str]


def parse_uuid(value: IdLike) -> uuid.UUID:
    """Coerce ``value`` to a UUID, raising ValueError when malformed."""
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def is_uuid(value: IdLike) -> bool:
    try:
        parse_uuid(value)
    except (ValueError, TypeError, AttributeError):
        return False
    return True


class MetadataStore:
    """Async repository over the relational metadata schema."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session = create_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str) -> "MetadataStore":
        return cls(create_engine(database_url))

    async def init_schema(self) -> None:
        """Create tables on first run (idempotent)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of engine and close all connections."""
        await self.engine.dispose()

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    async def create_chat(
        self,
        user_id: str,
        prompt: str,
        scene_count: int,
        title: Optional[str] = None,
    ) -> Chat:
        chat = Chat(
            user_id=user_id,
            title=title or prompt[:80],
            prompt=prompt,
            scene_count=scene_count,
        )
        try:
            async with self._session() as session:
                session.add(chat)
                await session.commit()
        except SQLAlchemyError as e:
            raise MetadataWriteError(f"Failed to create chat: {e}") from e
        logger.info(f"Chat {chat.id}: created for user {user_id} ({scene_count} scenes)")
        return chat

    async def get_chat(self, chat_id: IdLike) -> Optional[Chat]:
        async with self._session() as session:
            return await session.get(Chat, parse_uuid(chat_id))

    async def list_chats(self, user_id: Optional[str] = None) -> Sequence[Chat]:
        stmt = select(Chat).order_by(Chat.created_at.desc())
        if user_id is not None:
            stmt = stmt.where(Chat.user_id == user_id)
        async with self._session() as session:
            result = await session.execute(stmt)
            return result.scalars().all()

    async def delete_chat(self, chat_id: IdLike) -> bool:
        """Delete a chat; scenes and final video go with it via FK cascade."""
        try:
            async with self._session() as session:
                result = await session.execute(
                    delete(Chat).where(Chat.id == parse_uuid(chat_id))
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise MetadataWriteError(f"Failed to delete chat {chat_id}: {e}") from e
        return result.rowcount > 0

    async def set_chat_status(
        self, chat_id: IdLike, status: str, error_message: Optional[str] = None
    ) -> None:
        try:
            async with self._session() as session:
                chat = await session.get(Chat, parse_uuid(chat_id))
                if chat is None:
                    raise MetadataWriteError(f"Chat {chat_id} not found")
                chat.status = status
                chat.error_message = error_message
                await session.commit()
        except SQLAlchemyError as e:
            raise MetadataWriteError(f"Failed to update chat {chat_id}: {e}") from e

    # ------------------------------------------------------------------
    # Scenes
    # ------------------------------------------------------------------

    async def create_scenes(
        self, chat_id: IdLike, descriptors: Iterable[SceneDescriptor]
    ) -> list[Scene]:
        """Insert one Scene row per descriptor.

        Rows that already exist for the same scene number get their prompt
        text refreshed instead of a duplicate insert.
        """
        chat_uuid = parse_uuid(chat_id)
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(Scene).where(Scene.chat_id == chat_uuid)
                )
                existing = {s.scene_number: s for s in result.scalars().all()}
                # One millisecond apart per scene number: artifact paths embed it
                base = datetime.now(timezone.utc)

                for desc in descriptors:
                    scene = existing.get(desc.scene_number)
                    if scene is None:
                        scene = Scene(
                            chat_id=chat_uuid,
                            scene_number=desc.scene_number,
                            created_at=base + timedelta(milliseconds=desc.scene_number),
                        )
                        session.add(scene)
                        existing[desc.scene_number] = scene
                    scene.scene_prompt = desc.scene_prompt
                    scene.scene_image_prompt = desc.image_prompt
                    scene.video_prompt = desc.video_prompt

                await session.commit()
        except SQLAlchemyError as e:
            raise MetadataWriteError(f"Failed to create scenes for chat {chat_id}: {e}") from e

        return sorted(existing.values(), key=lambda s: s.scene_number)

    async def list_scenes(self, chat_id: IdLike) -> Sequence[Scene]:
        async with self._session() as session:
            result = await session.execute(
                select(Scene)
                .where(Scene.chat_id == parse_uuid(chat_id))
                .order_by(Scene.scene_number)
            )
            return result.scalars().all()

    async def get_scene(self, scene_id: IdLike) -> Optional[Scene]:
        async with self._session() as session:
            return await session.get(Scene, parse_uuid(scene_id))

    async def get_scene_by_number(self, chat_id: IdLike, scene_number: int) -> Optional[Scene]:
        async with self._session() as session:
            result = await session.execute(
                select(Scene)
                .where(Scene.chat_id == parse_uuid(chat_id))
                .where(Scene.scene_number == scene_number)
            )
            return result.scalar_one_or_none()

    async def set_scene_image_url(
        self, chat_id: IdLike, scene_number: int, image_url: str
    ) -> Optional[Scene]:
        """Record a synthesized image; returns None when the row does not exist."""
        try:
            async with self._session() as session:
                result = await session.execute(
                    select(Scene)
                    .where(Scene.chat_id == parse_uuid(chat_id))
                    .where(Scene.scene_number == scene_number)
                )
                scene = result.scalar_one_or_none()
                if scene is None:
                    return None
                scene.image_url = image_url
                scene.error_message = None
                if scene.video_url is None:
                    scene.status = SCENE_IMAGE_READY
                await session.commit()
                return scene
        except SQLAlchemyError as e:
            raise MetadataWriteError(
                f"Failed to set image for chat {chat_id} scene {scene_number}: {e}"
            ) from e

    async def set_scene_video_url(self, scene_id: IdLike, video_url: str) -> bool:
        """Record a synthesized video for the scene row ``scene_id``.

        Returns False without writing when ``scene_id`` is not a well-formed
        UUID or matches no row; the caller logs that as an anomaly.
        """
        if not is_uuid(scene_id):
            return False
        try:
            async with self._session() as session:
                scene = await session.get(Scene, parse_uuid(scene_id))
                if scene is None:
                    return False
                scene.video_url = video_url
                scene.status = SCENE_VIDEO_READY
                scene.error_message = None
                # Same path on regeneration, so bump explicitly
                scene.updated_at = datetime.now(timezone.utc)
                await session.commit()
                return True
        except SQLAlchemyError as e:
            raise MetadataWriteError(f"Failed to set video for scene {scene_id}: {e}") from e

    async def mark_scene_failed(self, scene_id: IdLike, message: str) -> bool:
        """Flag a scene as failed without touching its URL columns."""
        if not is_uuid(scene_id):
            return False
        try:
            async with self._session() as session:
                scene = await session.get(Scene, parse_uuid(scene_id))
                if scene is None:
                    return False
                scene.status = SCENE_FAILED
                scene.error_message = message[:1000]
                await session.commit()
                return True
        except SQLAlchemyError as e:
            raise MetadataWriteError(f"Failed to mark scene {scene_id} failed: {e}") from e

    # ------------------------------------------------------------------
    # Final videos
    # ------------------------------------------------------------------

    async def get_final_video(self, chat_id: IdLike) -> Optional[FinalVideo]:
        async with self._session() as session:
            result = await session.execute(
                select(FinalVideo).where(FinalVideo.chat_id == parse_uuid(chat_id))
            )
            return result.scalar_one_or_none()

    async def list_final_videos(self, user_id: str) -> Sequence[FinalVideo]:
        async with self._session() as session:
            result = await session.execute(
                select(FinalVideo)
                .join(Chat, FinalVideo.chat_id == Chat.id)
                .where(Chat.user_id == user_id)
                .order_by(FinalVideo.updated_at.desc())
            )
            return result.scalars().all()

    async def upsert_final_video(self, chat_id: IdLike, video_url: str) -> FinalVideo:
        """Insert or overwrite the chat's single FinalVideo row."""
        chat_uuid = parse_uuid(chat_id)
        try:
            return await self._upsert_final_video(chat_uuid, video_url)
        except IntegrityError:
            # A concurrent rerun inserted first; the row now exists, update it
            logger.info(f"Chat {chat_uuid}: final video inserted concurrently, updating")
            try:
                return await self._upsert_final_video(chat_uuid, video_url)
            except SQLAlchemyError as e:
                raise MetadataWriteError(f"Failed to upsert final video for {chat_id}: {e}") from e
        except SQLAlchemyError as e:
            raise MetadataWriteError(f"Failed to upsert final video for {chat_id}: {e}") from e

    async def _upsert_final_video(self, chat_uuid: uuid.UUID, video_url: str) -> FinalVideo:
        async with self._session() as session:
            result = await session.execute(
                select(FinalVideo).where(FinalVideo.chat_id == chat_uuid)
            )
            final = result.scalar_one_or_none()
            if final is None:
                final = FinalVideo(chat_id=chat_uuid, video_url=video_url)
                session.add(final)
            else:
                final.video_url = video_url
                final.updated_at = datetime.now(timezone.utc)
            await session.commit()
            return final
