"""Pydantic schemas for the scene plan returned by the planner LLM.

The model is asked for a JSON array with exactly one object per scene;
each object becomes a SceneDescriptor numbered from 1.
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class ScenePlanItem(BaseModel):
    """One scene as emitted by the language model."""

    scene_prompt: str = Field(
        default="",
        description="Short narrative description of the scene (2-3 sentences)",
    )
    image_prompt: str = Field(
        description="Detailed still-image prompt: main subject, setting, mood, lighting, framing"
    )
    video_prompt: str = Field(
        default="",
        description="Motion description for animating the still image into a short clip",
    )

    @field_validator("image_prompt")
    @classmethod
    def image_prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("image_prompt must not be empty")
        return v.strip()


ScenePlanItems = TypeAdapter(list[ScenePlanItem])


def plan_json_schema(scene_count: int) -> dict:
    """JSON schema of a reply holding exactly ``scene_count`` scene objects."""
    return {
        "type": "array",
        "items": ScenePlanItem.model_json_schema(),
        "minItems": scene_count,
        "maxItems": scene_count,
    }


@dataclass(frozen=True)
class SceneDescriptor:
    """Ordered scene descriptor handed to the synthesis stages."""

    scene_number: int
    scene_prompt: str
    image_prompt: str
    video_prompt: Optional[str] = None
