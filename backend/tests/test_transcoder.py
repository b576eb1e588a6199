"""ffmpeg invocation: fixed encode parameters and exit-status handling.

The subprocess tests swap the ffmpeg binary for a small shell script.
"""

import stat
import sys
from pathlib import Path

import pytest

from storyreel.config import TranscodeConfig
from storyreel.errors import TranscodeError
from storyreel.services.transcoder import Transcoder

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs /bin/sh")


def _fake_ffmpeg(tmp_path: Path, body: str) -> str:
    script = tmp_path / "ffmpeg"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


def test_command_reencodes_with_fixed_parameters():
    transcoder = Transcoder(TranscodeConfig(crf=20, preset="medium"))

    cmd = transcoder.build_command(Path("/w/concat_list.txt"), Path("/w/final.mp4"))

    assert cmd == [
        "ffmpeg", "-y",
        "-f", "concat", "-safe", "0", "-i", "/w/concat_list.txt",
        "-c:v", "libx264", "-crf", "20", "-preset", "medium",
        "-c:a", "aac",
        "-movflags", "+faststart",
        "/w/final.mp4",
    ]
    assert "copy" not in cmd


def test_command_without_faststart():
    cmd = Transcoder(TranscodeConfig(faststart=False)).build_command(Path("m"), Path("o"))

    assert "-movflags" not in cmd
    assert cmd[-1] == "o"


@posix_only
@pytest.mark.asyncio
async def test_successful_run_writes_output(tmp_path):
    binary = _fake_ffmpeg(tmp_path, 'for last; do :; done\nprintf joined > "$last"\n')
    manifest = tmp_path / "concat_list.txt"
    manifest.write_text("file '/dev/null'\n")

    await Transcoder(TranscodeConfig(ffmpeg_binary=binary)).concat(
        manifest, tmp_path / "final.mp4"
    )

    assert (tmp_path / "final.mp4").read_text() == "joined"


@posix_only
@pytest.mark.asyncio
async def test_non_zero_exit_is_transcode_error(tmp_path):
    binary = _fake_ffmpeg(tmp_path, 'echo "concat_list.txt: Invalid data" >&2\nexit 3\n')

    with pytest.raises(TranscodeError) as excinfo:
        await Transcoder(TranscodeConfig(ffmpeg_binary=binary)).concat(
            tmp_path / "concat_list.txt", tmp_path / "final.mp4"
        )

    assert excinfo.value.returncode == 3
    assert "Invalid data" in excinfo.value.stderr


@pytest.mark.asyncio
async def test_missing_binary_is_transcode_error(tmp_path):
    transcoder = Transcoder(TranscodeConfig(ffmpeg_binary=str(tmp_path / "no-such-ffmpeg")))

    with pytest.raises(TranscodeError) as excinfo:
        await transcoder.concat(tmp_path / "m.txt", tmp_path / "o.mp4")

    assert excinfo.value.returncode == -1
