"""Capture device encoded to WebM by an ffmpeg subprocess."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from session_replay.services.capture import MediaSource, MediaSourceError

_logger = logging.getLogger(__name__)

_READ_SIZE = 64 * 1024


@dataclass
class FfmpegMediaSource(MediaSource):
    """Runs ffmpeg with WebM on stdout and buffers its output between reads.

    ``input_args`` selects the device, for example
    ``["-f", "v4l2", "-i", "/dev/video0"]``.
    """

    input_args: list[str]
    ffmpeg_path: str = "ffmpeg"
    output_args: list[str] = field(
        default_factory=lambda: ["-c:v", "libvpx", "-b:v", "1M", "-an"]
    )
    stop_timeout_seconds: float = 5.0
    _process: asyncio.subprocess.Process | None = field(
        default=None, init=False, repr=False
    )
    _reader: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _buffer: bytearray = field(default_factory=bytearray, init=False, repr=False)

    def command(self) -> list[str]:
        """Full ffmpeg command line."""
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            *self.input_args,
            *self.output_args,
            "-f",
            "webm",
            "pipe:1",
        ]

    async def open(self) -> None:
        """Start the encoder process."""
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            raise MediaSourceError(f"ffmpeg not found at {self.ffmpeg_path}") from exc
        self._buffer.clear()
        self._reader = asyncio.create_task(self._read_output())
        _logger.info("ffmpeg started (pid=%s)", self._process.pid)

    async def read_segment(self) -> bytes:
        """Return the bytes encoded since the previous read."""
        if self._process is None:
            raise MediaSourceError("ffmpeg is not running")
        if self._process.returncode not in (None, 0) and not self._buffer:
            raise MediaSourceError(
                f"ffmpeg exited with status {self._process.returncode}"
            )
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    async def close(self) -> bytes:
        """Ask ffmpeg to finish and return the remaining output."""
        process, self._process = self._process, None
        if process is None:
            return b""
        if process.returncode is None and process.stdin is not None:
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                process.stdin.write(b"q")
                await process.stdin.drain()
                process.stdin.close()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout_seconds)
        except TimeoutError:
            _logger.warning("ffmpeg did not stop in time; killing pid %s", process.pid)
            process.kill()
            await process.wait()
        if self._reader is not None:
            await self._reader
            self._reader = None
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    async def _read_output(self) -> None:
        process = self._process
        if process is None or process.stdout is None:
            return
        while True:
            data = await process.stdout.read(_READ_SIZE)
            if not data:
                return
            self._buffer.extend(data)
