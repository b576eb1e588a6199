"""Per-scene result of a fan-out stage."""

import uuid
from dataclasses import dataclass
from typing import Optional


@dataclass
class SceneOutcome:
    """URL produced for one scene, or the error that stopped it.

    Fan-out stages return one outcome per scene so a failure in one scene
    is reported alongside its siblings' results instead of replacing them.
    """

    scene_number: int
    scene_id: Optional[uuid.UUID] = None
    url: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.url is not None
