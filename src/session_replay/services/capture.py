"""Chunked capture of a live media source."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from session_replay.domain.recording import CaptureSummary, Chunk
from session_replay.domain.sequencing import epoch_ms

_logger = logging.getLogger(__name__)


class MediaSourceError(RuntimeError):
    """Raised when a capture device or encoder cannot produce media."""


class MediaSource(Protocol):
    """Encoder that buffers media between reads."""

    async def open(self) -> None:
        """Acquire the device and start encoding."""

    async def read_segment(self) -> bytes:
        """Return the bytes encoded since the previous read."""

    async def close(self) -> bytes:
        """Stop encoding and return any buffered partial segment."""


class ChunkSink(Protocol):
    """Receiver of captured chunks, in capture order."""

    def submit(self, chunk: Chunk) -> None:
        """Accept a chunk without blocking the capture loop."""


@dataclass
class Capturer:
    """Turns a media source into indexed, fixed-duration chunks.

    Recording is best-effort: device and encoder failures are logged and
    kept on ``error`` but never raised to the caller.
    """

    session_id: str
    sink: ChunkSink
    clock: Callable[[], int] = epoch_ms
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    error: Exception | None = field(default=None, init=False)
    _source: MediaSource | None = field(default=None, init=False, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _chunk_index: int = field(default=0, init=False, repr=False)
    _start_time: int = field(default=0, init=False, repr=False)
    _chunk_start: int = field(default=0, init=False, repr=False)
    _recording: bool = field(default=False, init=False, repr=False)

    @property
    def is_recording(self) -> bool:
        """Whether the timeslice loop is running."""
        return self._recording

    @property
    def chunks_captured(self) -> int:
        """Number of chunks emitted so far."""
        return self._chunk_index

    async def start(self, source: MediaSource, chunk_duration_ms: int) -> bool:
        """Open the source and emit a chunk every ``chunk_duration_ms``."""
        if self._recording:
            _logger.warning("Capture already running for session %s", self.session_id)
            return False
        if chunk_duration_ms <= 0:
            raise ValueError("chunk_duration_ms must be positive")
        try:
            await source.open()
        except Exception as exc:
            self.error = exc
            _logger.exception("Failed to start capture for session %s", self.session_id)
            return False

        self._source = source
        self._chunk_index = 0
        self.error = None
        self._start_time = self.clock()
        self._chunk_start = self._start_time
        self._recording = True
        self._task = asyncio.create_task(self._run(chunk_duration_ms))
        _logger.info(
            "Capture started: session=%s chunk_duration_ms=%s",
            self.session_id,
            chunk_duration_ms,
        )
        return True

    async def stop(self) -> CaptureSummary:
        """Flush the partial segment as a final chunk and return totals."""
        if self._source is None:
            _logger.warning("Capture not running for session %s", self.session_id)
            return CaptureSummary.empty()

        self._recording = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        source, self._source = self._source, None
        try:
            tail = await source.close()
        except Exception as exc:
            self.error = self.error or exc
            _logger.exception("Failed to flush capture for session %s", self.session_id)
            tail = b""
        if self.error is None:
            self._emit(tail)

        end_time = self.clock()
        summary = CaptureSummary(
            total_chunks=self._chunk_index,
            total_duration_ms=end_time - self._start_time,
            start_time=self._start_time,
            end_time=end_time,
        )
        _logger.info(
            "Capture stopped: session=%s chunks=%s duration_ms=%s",
            self.session_id,
            summary.total_chunks,
            summary.total_duration_ms,
        )
        return summary

    async def _run(self, chunk_duration_ms: int) -> None:
        while self._recording and self._source is not None:
            await self.sleep(chunk_duration_ms / 1000)
            try:
                data = await self._source.read_segment()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.error = exc
                self._recording = False
                _logger.exception(
                    "Encoder failed for session %s; recording unavailable",
                    self.session_id,
                )
                return
            if not self._emit(data):
                self._recording = False
                return

    def _emit(self, data: bytes) -> bool:
        """Cut a chunk from ``data``; no awaits so cancellation cannot split it."""
        if not data:
            return True
        now = self.clock()
        chunk = Chunk(
            session_id=self.session_id,
            chunk_index=self._chunk_index,
            capture_start_timestamp=self._chunk_start,
            duration_ms=now - self._chunk_start,
            payload=data,
        )
        try:
            self.sink.submit(chunk)
        except Exception as exc:
            self.error = exc
            _logger.warning(
                "Chunk %s rejected for session %s: %s",
                chunk.chunk_index,
                self.session_id,
                exc,
            )
            return False
        self._chunk_index += 1
        self._chunk_start = now
        _logger.debug(
            "Chunk %s captured: session=%s size=%s",
            chunk.chunk_index,
            self.session_id,
            chunk.size,
        )
        return True
