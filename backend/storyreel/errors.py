"""Error taxonomy for the generative media pipeline.

Per-scene errors (image, poll, video) stay inside their own scene's scope;
planning and stitching errors escape to the caller of that stage.
"""

from typing import Optional


class StoryreelError(Exception):
    """Base class for all pipeline errors."""


class PlanningError(StoryreelError):
    """The language model did not return a usable scene plan."""


class ImageGenError(StoryreelError):
    """The image-generation service failed or returned no image."""


class StorageError(StoryreelError):
    """An Artifact Store upload was rejected or could not be made."""


class VideoGenError(StoryreelError):
    """Base for per-scene video synthesis failures."""


class VideoGenTimeoutError(VideoGenError):
    """The video job did not reach a terminal state within the poll budget."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(f"Video job {job_id} did not complete after {attempts} polls")
        self.job_id = job_id
        self.attempts = attempts


class PollError(VideoGenError):
    """A poll request failed; the job is abandoned, not resubmitted."""

    def __init__(self, job_id: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"Polling job {job_id} failed: {message}")
        self.job_id = job_id
        self.status_code = status_code


class VideoGenFailedError(VideoGenError):
    """The remote job reached the failed state."""


class InsufficientInputError(StoryreelError):
    """Stitching needs at least two input videos."""


class DownloadError(StoryreelError):
    """An input video for stitching could not be downloaded."""


class TranscodeError(StoryreelError):
    """ffmpeg exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str = ""):
        tail = stderr[-500:] if stderr else "No error output"
        super().__init__(f"ffmpeg exited with status {returncode}: {tail}")
        self.returncode = returncode
        self.stderr = stderr


class MetadataWriteError(StoryreelError):
    """A Metadata Store write failed."""


class ChatNotFoundError(StoryreelError, LookupError):
    """No chat exists with the requested id."""
