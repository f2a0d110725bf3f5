import asyncio
import logging
from typing import Optional

from kfbot.logging_config import get_logger
from kfbot.services.errors import AudioConversionError

# ffmpeg output arguments per target format
_OUTPUT_ARGS = {
    "pcm": ["-f", "s16le", "-acodec", "pcm_s16le", "-ar", "16000", "-ac", "1"],
    "mp3": ["-f", "mp3", "-acodec", "libmp3lame", "-ar", "16000", "-ac", "1"],
    "amr": ["-f", "amr", "-acodec", "libopencore_amrnb", "-ar", "8000", "-ac", "1"],
}

_INPUT_FORMATS = {"amr": "amr", "mp3": "mp3", "pcm": "s16le"}


class AudioConverter:
    """Transcode audio buffers through an ffmpeg pipe."""

    def __init__(
        self,
        binary: str = "ffmpeg",
        timeout_seconds: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.binary = binary
        self.timeout_seconds = timeout_seconds
        self.logger = logger or get_logger("audio_service")

    def build_command(self, from_format: str, to_format: str) -> list[str]:
        if from_format not in _INPUT_FORMATS:
            raise AudioConversionError(f"Unsupported input format: {from_format}")
        if to_format not in _OUTPUT_ARGS:
            raise AudioConversionError(f"Unsupported output format: {to_format}")
        command = [self.binary, "-hide_banner", "-loglevel", "error", "-f", _INPUT_FORMATS[from_format]]
        if from_format == "pcm":
            command += ["-ar", "16000", "-ac", "1"]
        command += ["-i", "pipe:0", *_OUTPUT_ARGS[to_format], "pipe:1"]
        return command

    async def convert(self, data: bytes, from_format: str, to_format: str) -> bytes:
        if not data:
            raise AudioConversionError("Audio buffer is empty")
        command = self.build_command(from_format, to_format)
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise AudioConversionError(f"Failed to start {self.binary}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(input=data), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise AudioConversionError(f"ffmpeg timed out after {self.timeout_seconds}s") from exc

        if proc.returncode != 0 or not stdout:
            detail = stderr.decode("utf-8", errors="replace")[:300]
            self.logger.error(
                f"ffmpeg {from_format}->{to_format} failed",
                extra={"context": {"returncode": proc.returncode, "stderr": detail}},
            )
            raise AudioConversionError(f"ffmpeg {from_format}->{to_format} failed: {detail}")

        self.logger.debug(
            f"Converted audio {from_format}->{to_format}",
            extra={"context": {"in_bytes": len(data), "out_bytes": len(stdout)}},
        )
        return stdout

    async def amr_to_pcm(self, data: bytes) -> bytes:
        return await self.convert(data, "amr", "pcm")

    async def amr_to_mp3(self, data: bytes) -> bytes:
        return await self.convert(data, "amr", "mp3")

    async def mp3_to_amr(self, data: bytes) -> bytes:
        return await self.convert(data, "mp3", "amr")
