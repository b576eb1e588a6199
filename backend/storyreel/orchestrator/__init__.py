"""Pipeline orchestrator module.

Provides the per-chat state machine and the driver that runs the planning,
image, video and stitching stages with partial-failure tolerance.
"""

from storyreel.orchestrator.state import CHAT_STATES, SCENE_STATES

__all__ = ["CHAT_STATES", "SCENE_STATES"]
