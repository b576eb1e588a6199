"""State machine constants and transition logic for the pipeline orchestrator.

A chat moves through an ordered sequence of states while each of its scenes
carries its own sub-state. Chat-level progress is derived from the scene
sub-states so a rerun can pick up where the last one stopped.
"""

from typing import Dict, Iterable

# Chat states in execution order
CHAT_PLANNING = "planning"
CHAT_IMAGES_PENDING = "images_pending"
CHAT_VIDEOS_PENDING = "videos_pending"
CHAT_STITCHING = "stitching"
CHAT_DONE = "done"

CHAT_STATES = {
    CHAT_PLANNING: "Planning scenes from the prompt",
    CHAT_IMAGES_PENDING: "Synthesizing one still image per scene",
    CHAT_VIDEOS_PENDING: "Synthesizing one video clip per scene",
    CHAT_STITCHING: "Concatenating scene clips into the final video",
    CHAT_DONE: "Final video recorded",
}

# Per-scene sub-states
SCENE_NONE = "none"
SCENE_IMAGE_READY = "image_ready"
SCENE_VIDEO_READY = "video_ready"
SCENE_FAILED = "failed"

SCENE_STATES = {SCENE_NONE, SCENE_IMAGE_READY, SCENE_VIDEO_READY, SCENE_FAILED}

# Stitching needs at least this many clips
MIN_STITCH_INPUTS = 2


def scene_state(image_url, video_url, status: str) -> str:
    """Effective sub-state of a scene.

    The URL columns are the source of truth for readiness; the stored
    status only distinguishes "never attempted" from "failed".
    """
    if video_url:
        return SCENE_VIDEO_READY
    if status == SCENE_FAILED:
        return SCENE_FAILED
    if image_url:
        return SCENE_IMAGE_READY
    return SCENE_NONE


def summarize_scenes(states: Iterable[str]) -> Dict[str, int]:
    """Count scenes per sub-state (all four keys always present)."""
    counts = {state: 0 for state in SCENE_STATES}
    for state in states:
        counts[state] += 1
    return counts


def can_stitch(states: Iterable[str]) -> bool:
    """Stitch only when every scene has a video and there are at least two."""
    states = list(states)
    return len(states) >= MIN_STITCH_INPUTS and all(
        state == SCENE_VIDEO_READY for state in states
    )


def derive_chat_state(has_plan: bool, states: Iterable[str], has_final_video: bool) -> str:
    """Determine the chat state implied by persisted data.

    Args:
        has_plan: Scene rows exist for the chat
        states: Effective sub-state of every scene
        has_final_video: A FinalVideo row exists

    Returns:
        The chat state a rerun should resume from.

    Examples:
        >>> derive_chat_state(False, [], False)
        'planning'
        >>> derive_chat_state(True, ["video_ready", "failed"], False)
        'videos_pending'
    """
    if not has_plan:
        return CHAT_PLANNING
    states = list(states)
    if has_final_video and can_stitch(states):
        return CHAT_DONE
    if SCENE_NONE in states:
        return CHAT_IMAGES_PENDING
    if can_stitch(states):
        return CHAT_STITCHING
    return CHAT_VIDEOS_PENDING
