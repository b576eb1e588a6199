"""Scene planning via a structured-generation LLM call.

Turns a free-text prompt and a scene count N into N ordered scene
descriptors. The model must answer with a JSON array of exactly N objects;
anything else is a PlanningError. A partial plan is never accepted.

The whole call is retried a few times with decreasing temperature before
giving up, since malformed output is usually a sampling accident.
"""

import json
import logging

import httpx
import ollama
from google.genai import errors as genai_errors
from pydantic import ValidationError
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt

from storyreel.context import PipelineContext
from storyreel.errors import PlanningError
from storyreel.schemas.plan import SceneDescriptor, ScenePlanItems, plan_json_schema

logger = logging.getLogger(__name__)


PLANNER_SYSTEM_PROMPT = """You are StoryMaker AI, a master storyteller and visual designer.
Your task is to break the user's story idea into exactly {scene_count} consecutive scenes
that will each become one still image and one short video clip.

Every scene must:
1. Advance the story: introduce action, emotion, or character development.
2. Feature the SAME main subject as every other scene. Describe the main subject's
   appearance identically in every image prompt so the images stay consistent.
3. Provide three outputs:
   - scene_prompt: a short narrative description of the scene (2-3 sentences).
   - image_prompt: an expanded visual description for image generation (main subject,
     setting, mood, lighting, framing, key details).
   - video_prompt: a one or two sentence description of the motion that should animate
     the still image (subject action and camera movement).

Respond with ONLY a JSON array of exactly {scene_count} objects, in story order,
with no commentary and no code fences:

[
  {{"scene_prompt": "...", "image_prompt": "...", "video_prompt": "..."}}
]
"""


def _strip_code_fences(raw: str) -> str:
    """Unwrap a reply that the model wrapped in Markdown code fences."""
    stripped = raw.strip()
    if stripped.startswith("```"):
        # Remove opening fence (```json or ```)
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else ""
        if stripped.endswith("```"):
            stripped = stripped[:-3]
    return stripped.strip()


def parse_plan(raw: str, scene_count: int) -> list[SceneDescriptor]:
    """Parse a model reply into exactly ``scene_count`` descriptors.

    Raises:
        PlanningError: If the reply is not a JSON array of exactly
            ``scene_count`` valid scene objects
    """
    try:
        data = json.loads(_strip_code_fences(raw))
    except json.JSONDecodeError as e:
        raise PlanningError(f"Planner reply is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise PlanningError(
            f"Planner reply must be a JSON array, got {type(data).__name__}"
        )

    try:
        items = ScenePlanItems.validate_python(data)
    except ValidationError as e:
        raise PlanningError(f"Planner reply does not match the scene schema: {e}") from e

    if len(items) != scene_count:
        raise PlanningError(
            f"Planner returned {len(items)} scenes, expected {scene_count}"
        )

    return [
        SceneDescriptor(
            scene_number=i,
            scene_prompt=item.scene_prompt.strip(),
            image_prompt=item.image_prompt,
            video_prompt=item.video_prompt.strip() or None,
        )
        for i, item in enumerate(items, start=1)
    ]


async def plan_scenes(
    ctx: PipelineContext, prompt: str, scene_count: int
) -> list[SceneDescriptor]:
    """Plan ``scene_count`` scenes for ``prompt``.

    Args:
        ctx: Pipeline context carrying the planner LLM adapter and settings
        prompt: Free-text story idea
        scene_count: Number of scenes to plan

    Returns:
        Descriptors numbered 1..scene_count in story order

    Raises:
        ValueError: If the prompt is blank or scene_count is out of bounds
        PlanningError: If no valid plan was produced
    """
    cfg = ctx.settings.pipeline
    if not prompt or not prompt.strip():
        raise ValueError("prompt must not be empty")
    if not cfg.min_scenes <= scene_count <= cfg.max_scenes:
        raise ValueError(
            f"scene_count must be between {cfg.min_scenes} and {cfg.max_scenes}, "
            f"got {scene_count}"
        )

    llm = ctx.planner
    system_prompt = PLANNER_SYSTEM_PROMPT.format(scene_count=scene_count)
    user_prompt = f"Story idea: {prompt.strip()}\nNumber of scenes: {scene_count}"
    response_schema = plan_json_schema(scene_count)

    # Reduce temperature by 0.15 on each retry
    attempt = 0
    base_temperature = cfg.planner_temperature

    @retry(
        stop=stop_after_attempt(cfg.planner_max_attempts),
        retry=retry_if_exception_type(PlanningError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def generate_with_retry() -> list[SceneDescriptor]:
        nonlocal attempt
        temperature = max(0.0, base_temperature - (attempt * 0.15))
        attempt += 1
        try:
            raw = await llm.complete(
                user_prompt,
                system_prompt=system_prompt,
                temperature=temperature,
                response_schema=response_schema,
            )
        except httpx.DecodingError as e:
            raise PlanningError(f"Planner reply from {llm.model_id} was unreadable: {e}") from e
        return parse_plan(raw, scene_count)

    try:
        scenes = await generate_with_retry()
    except (httpx.HTTPError, genai_errors.APIError, ollama.ResponseError) as e:
        raise PlanningError(f"Planner call to {llm.model_id} failed: {e}") from e

    logger.info(f"Planned {len(scenes)} scenes with {llm.model_id} in {attempt} attempt(s)")
    return scenes
