"""
Database module for storyreel.

Provides the async SQLAlchemy engine helpers, ORM models and the
MetadataStore repository used by every pipeline stage.
"""
from storyreel.db.engine import create_engine, create_session_factory
from storyreel.db.models import Base, Chat, FinalVideo, Scene
from storyreel.db.repository import MetadataStore, is_uuid, parse_uuid

__all__ = [
    "Base",
    "Chat",
    "Scene",
    "FinalVideo",
    "MetadataStore",
    "create_engine",
    "create_session_factory",
    "is_uuid",
    "parse_uuid",
]
