"""Storyreel - prompt-to-video generative media pipeline.

Plans narrative scenes from a prompt, synthesizes one still image and one
video clip per scene through remote generation services, and stitches the
clips into a single output video with ffmpeg.

Call validate_dependencies() during application startup.
"""

import logging
import subprocess

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies(ffmpeg_binary: str = "ffmpeg") -> None:
    """Validate required system dependencies are available.

    Fails fast with installation instructions when ffmpeg is missing,
    since the stitching stage cannot run without it.

    Raises:
        RuntimeError: If ffmpeg is not found or not functional.
    """
    try:
        result = subprocess.run(
            [ffmpeg_binary, '-version'],
            capture_output=True,
            check=True,
            text=True
        )
        version_line = result.stdout.split('\n')[0]
        logger.info(f"ffmpeg validated: {version_line}")
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        raise RuntimeError(
            f"{ffmpeg_binary} not found on PATH. Install ffmpeg to stitch scene videos.\n"
            "Ubuntu/Debian: sudo apt-get install ffmpeg\n"
            "macOS: brew install ffmpeg\n"
            "Windows: https://ffmpeg.org/download.html"
        ) from e
