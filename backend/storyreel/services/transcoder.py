"""ffmpeg wrapper for concatenating scene clips into one video.

Uses the concat demuxer to read a manifest of local files and re-encodes
every input with one fixed set of parameters. Stream copy is not an option:
per-scene clips can differ in codec parameters, and copying them would
produce a desynchronized or unplayable file.
"""

import asyncio
import logging
from pathlib import Path

from storyreel.config import TranscodeConfig
from storyreel.errors import TranscodeError

logger = logging.getLogger(__name__)


class Transcoder:
    """Runs ffmpeg as a child process scoped to a single call."""

    def __init__(self, config: TranscodeConfig | None = None):
        self.config = config or TranscodeConfig()

    def build_command(self, manifest_path: Path, output_path: Path) -> list[str]:
        cfg = self.config
        cmd = [
            cfg.ffmpeg_binary,
            "-y",  # Overwrite output file
            "-f", "concat",
            "-safe", "0",  # Allow absolute paths in the manifest
            "-i", str(manifest_path),
            "-c:v", cfg.video_codec,
            "-crf", str(cfg.crf),
            "-preset", cfg.preset,
            "-c:a", cfg.audio_codec,
        ]
        if cfg.faststart:
            cmd += ["-movflags", "+faststart"]
        cmd.append(str(output_path))
        return cmd

    async def concat(self, manifest_path: Path, output_path: Path) -> None:
        """Concatenate the files listed in ``manifest_path`` into ``output_path``.

        Raises:
            TranscodeError: ffmpeg exited non-zero or could not be started
        """
        cmd = self.build_command(manifest_path, output_path)
        logger.info(f"Running ffmpeg concat: {manifest_path} -> {output_path}")
        logger.debug("ffmpeg command: %s", " ".join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(-1, f"failed to start {cmd[0]}: {e}") from e

        try:
            # communicate() drains both pipes so ffmpeg never blocks on a full buffer
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        stderr_text = stderr.decode(errors="replace") if stderr else ""
        if process.returncode != 0:
            logger.error(f"ffmpeg exited with {process.returncode}: {stderr_text[-500:]}")
            raise TranscodeError(process.returncode, stderr_text)

        logger.info(f"ffmpeg concat complete: {output_path}")
