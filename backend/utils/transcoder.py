import os
import asyncio
import logging

import ffmpeg

from .errors import TranscodeError

logger = logging.getLogger(__name__)

MAX_WIDTH = 1920
MAX_HEIGHT = 1080

# Fit inside 1920x1080, keep aspect ratio, never upscale, keep even dimensions for yuv420p
SCALE_FILTER = (
    f"scale='min({MAX_WIDTH},iw)':'min({MAX_HEIGHT},ih)'"
    ":force_original_aspect_ratio=decrease:force_divisible_by=2"
)

OUTPUT_PROFILE = {
    "vcodec": "libx264",
    "preset": "medium",
    "crf": 23,
    "pix_fmt": "yuv420p",
    "vf": SCALE_FILTER,
    "acodec": "aac",
    "audio_bitrate": "128k",
    "ac": 2,
    "movflags": "+faststart",
}

# Keep the tail of ffmpeg's stderr; the banner at the top is noise
STDERR_TAIL = 4000
# Shorter tail carried in the error message shown to users and stored in records
MESSAGE_TAIL = 500


def _failure_message(returncode, diagnostics):
    message = f"FFmpeg exited with status {returncode}"
    tail = diagnostics.strip()[-MESSAGE_TAIL:]
    if tail:
        message = f"{message}: {tail}"
    return message


class Transcoder:
    def __init__(self, ffmpeg_binary="ffmpeg"):
        self.ffmpeg_binary = ffmpeg_binary

    def build_command(self, input_path, output_path):
        stream = ffmpeg.input(input_path).output(output_path, **OUTPUT_PROFILE)
        return stream.compile(cmd=self.ffmpeg_binary, overwrite_output=True)

    async def transcode(self, input_path: str, output_path: str) -> str:
        """Transcode ``input_path`` to a web-playable MP4 at ``output_path``."""
        cmd = self.build_command(input_path, output_path)
        logger.info(f"Running FFmpeg command: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"Failed to start {self.ffmpeg_binary}: {str(e)}") from e

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            # never leave ffmpeg writing into a workspace that is about to be removed
            if process.returncode is None:
                process.kill()
            await process.wait()
            logger.warning(f"FFmpeg (pid {process.pid}) killed after cancellation")
            raise
        diagnostics = stderr.decode("utf-8", errors="ignore")[-STDERR_TAIL:]

        if process.returncode != 0:
            logger.error(f"FFmpeg exited with status {process.returncode}: {diagnostics}")
            raise TranscodeError(_failure_message(process.returncode, diagnostics), stderr=diagnostics)

        if not os.path.exists(output_path):
            raise TranscodeError(f"FFmpeg did not produce an output file: {output_path}", stderr=diagnostics)

        if diagnostics:
            logger.debug(f"FFmpeg stderr: {diagnostics}")
        logger.info(f"Transcoding complete: {output_path} ({os.path.getsize(output_path)} bytes)")
        return output_path
