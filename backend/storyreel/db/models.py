"""SQLAlchemy 2.0 ORM models for the Metadata Store."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class Chat(Base):
    """Unit of work: one prompt, its ordered scenes and an optional final video.

    ``status`` follows the orchestrator state machine
    (planning -> images_pending -> videos_pending -> stitching -> done).
    """
    __tablename__ = "chats"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(Text)
    prompt: Mapped[str] = mapped_column(Text)
    scene_count: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="planning")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow)

    scenes: Mapped[list["Scene"]] = relationship(
        back_populates="chat",
        order_by="Scene.scene_number",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    final_video: Mapped[Optional["FinalVideo"]] = relationship(
        back_populates="chat",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Scene(Base):
    """One narrative beat of a chat.

    URL columns stay NULL until the matching stage succeeds; ``status`` is
    one of none, image_ready, video_ready, failed.
    """
    __tablename__ = "scenes"
    __table_args__ = (
        UniqueConstraint("chat_id", "scene_number", name="uq_scenes_chat_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    chat_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("chats.id", ondelete="CASCADE"), index=True
    )
    scene_number: Mapped[int] = mapped_column(Integer)
    scene_prompt: Mapped[str] = mapped_column(Text)
    scene_image_prompt: Mapped[str] = mapped_column(Text)
    video_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    video_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="none")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow)

    chat: Mapped["Chat"] = relationship(back_populates="scenes")


class FinalVideo(Base):
    """Stitched output of a chat; at most one row per chat."""
    __tablename__ = "final_videos"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    chat_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("chats.id", ondelete="CASCADE"), unique=True
    )
    video_url: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow)

    chat: Mapped["Chat"] = relationship(back_populates="final_video")
