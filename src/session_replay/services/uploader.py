"""Ordered, single-in-flight delivery of captured chunks."""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from session_replay.domain.recording import (
    CaptureSummary,
    Chunk,
    RecordingMetadata,
    UploadState,
)

_logger = logging.getLogger(__name__)


class UploadFailedError(RuntimeError):
    """Raised when the recording can no longer be delivered in full."""


class UploadQueueFullError(UploadFailedError):
    """Raised when the local backlog exceeds its configured bound."""


class ChunkStore(Protocol):
    """Durable store accepting chunks and the finalization record."""

    async def upload_chunk(self, chunk: Chunk) -> None:
        """Persist a chunk; raise on any failure."""

    async def finalize_recording(
        self, metadata: RecordingMetadata
    ) -> RecordingMetadata:
        """Write the recording metadata and return the stored record."""


@dataclass
class Uploader:
    """Drains chunks to the store strictly in capture order.

    A failed chunk goes back to the head of the queue and draining stops
    until the next trigger, so chunk N+1 is never stored before chunk N.
    """

    session_id: str
    store: ChunkStore
    max_attempts: int | None = None
    max_pending_chunks: int | None = None
    poll_interval_seconds: float = 0.1
    finalize_retry_attempts: int = 3
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    _queue: deque[Chunk] = field(default_factory=deque, init=False, repr=False)
    _draining: bool = field(default=False, init=False, repr=False)
    _drain_task: asyncio.Task[bool] | None = field(
        default=None, init=False, repr=False
    )
    _attempts: int = field(default=0, init=False, repr=False)
    _uploaded_count: int = field(default=0, init=False, repr=False)
    _failure: UploadFailedError | None = field(default=None, init=False, repr=False)
    _metadata: RecordingMetadata | None = field(default=None, init=False, repr=False)

    @property
    def pending_count(self) -> int:
        """Chunks captured but not yet acknowledged by the store."""
        return len(self._queue)

    @property
    def uploaded_count(self) -> int:
        """Chunks acknowledged by the store."""
        return self._uploaded_count

    @property
    def failure(self) -> UploadFailedError | None:
        """Session-level failure, if the bound policy was exceeded."""
        return self._failure

    def submit(self, chunk: Chunk) -> None:
        """Queue a chunk and trigger a drain in the background."""
        if self._failure is not None:
            raise self._failure
        if self._metadata is not None:
            raise UploadFailedError(f"Recording {self.session_id} already finalized")
        if (
            self.max_pending_chunks is not None
            and len(self._queue) >= self.max_pending_chunks
        ):
            self._fail(
                UploadQueueFullError(
                    f"{len(self._queue)} chunks pending for session {self.session_id}"
                )
            )
            raise self._failure  # type: ignore[misc]
        self._queue.append(chunk)
        self._schedule_drain()

    async def drain(self) -> bool:
        """Upload queued chunks in order; return True when the queue is empty."""
        if self._draining or self._failure is not None:
            return not self._queue
        self._draining = True
        try:
            while self._queue and self._failure is None:
                chunk = self._queue.popleft()
                try:
                    await self.store.upload_chunk(chunk)
                except asyncio.CancelledError:
                    self._queue.appendleft(chunk)
                    raise
                except Exception as exc:
                    self._queue.appendleft(chunk)
                    chunk.upload_state = UploadState.FAILED
                    self._attempts += 1
                    _logger.warning(
                        "Chunk %s upload failed (attempt %s, session=%s): %s",
                        chunk.chunk_index,
                        self._attempts,
                        self.session_id,
                        exc,
                    )
                    if (
                        self.max_attempts is not None
                        and self._attempts >= self.max_attempts
                    ):
                        self._fail(
                            UploadFailedError(
                                f"Chunk {chunk.chunk_index} failed "
                                f"{self._attempts} times for session {self.session_id}"
                            )
                        )
                    return False
                self._attempts = 0
                chunk.mark_uploaded()
                self._uploaded_count += 1
                _logger.debug(
                    "Chunk %s uploaded for session %s",
                    chunk.chunk_index,
                    self.session_id,
                )
            return True
        finally:
            self._draining = False

    async def wait_drained(self) -> None:
        """Poll until every queued chunk is acknowledged."""
        while self._queue:
            if self._failure is not None:
                raise self._failure
            if not self._draining and await self.drain():
                break
            if self._failure is not None:
                raise self._failure
            await self.sleep(self.poll_interval_seconds)

    async def finish(self, summary: CaptureSummary) -> RecordingMetadata:
        """Wait for the queue to drain, then write the metadata exactly once."""
        if self._metadata is not None:
            return self._metadata
        await self.wait_drained()
        metadata = RecordingMetadata(
            session_id=self.session_id,
            total_chunks=summary.total_chunks,
            total_duration_ms=summary.total_duration_ms,
            start_time=summary.start_time,
            end_time=summary.end_time,
        )
        self._metadata = await self._finalize_with_retry(metadata)
        _logger.info(
            "Recording finalized: session=%s chunks=%s duration_ms=%s",
            self.session_id,
            metadata.total_chunks,
            metadata.total_duration_ms,
        )
        return self._metadata

    async def abort(self) -> None:
        """Cancel the in-flight upload and give up on the queued chunks."""
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
        self._fail(UploadFailedError(f"Recording {self.session_id} aborted"))

    def _schedule_drain(self) -> None:
        if self._draining:
            return
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.create_task(self.drain())

    def _fail(self, error: UploadFailedError) -> None:
        if self._failure is None:
            self._failure = error
            _logger.error("Upload stopped for session %s: %s", self.session_id, error)
        for chunk in self._queue:
            chunk.upload_state = UploadState.FAILED

    async def _finalize_with_retry(
        self, metadata: RecordingMetadata
    ) -> RecordingMetadata:
        attempt = 0
        while True:
            try:
                return await self.store.finalize_recording(metadata)
            except Exception as exc:
                attempt += 1
                _logger.warning(
                    "Finalize failed for session %s (attempt %s/%s): %s",
                    self.session_id,
                    attempt,
                    self.finalize_retry_attempts + 1,
                    exc,
                )
                if attempt > self.finalize_retry_attempts:
                    raise
                await self.sleep(self.poll_interval_seconds)
