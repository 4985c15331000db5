"""Session-scoped recording: capture, upload and event logging together."""

import logging
from dataclasses import dataclass, field

from session_replay.config import ClientSettings
from session_replay.domain.events import EventType
from session_replay.domain.recording import RecordingMetadata
from session_replay.services.capture import Capturer, MediaSource
from session_replay.services.event_logger import EventLogger, EventTransport
from session_replay.services.uploader import ChunkStore, Uploader

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordingResult:
    """Outcome of a recording, reported without interrupting the workflow."""

    session_id: str
    available: bool
    metadata: RecordingMetadata | None = None
    error: str | None = None


@dataclass
class RecordingSession:
    """Owns the capturer, uploader and event logger of one session."""

    session_id: str
    capturer: Capturer
    uploader: Uploader
    event_logger: EventLogger
    chunk_duration_ms: int = 3000
    _result: RecordingResult | None = field(default=None, init=False, repr=False)

    @classmethod
    def create(
        cls,
        session_id: str,
        store: ChunkStore,
        transport: EventTransport,
        settings: ClientSettings,
    ) -> "RecordingSession":
        """Wire a recording session from client settings."""
        uploader = Uploader(
            session_id=session_id,
            store=store,
            max_attempts=settings.upload_max_attempts,
            max_pending_chunks=settings.upload_max_pending_chunks,
            poll_interval_seconds=settings.upload_poll_interval_ms / 1000,
            finalize_retry_attempts=settings.finalize_retry_attempts,
        )
        return cls(
            session_id=session_id,
            capturer=Capturer(session_id=session_id, sink=uploader),
            uploader=uploader,
            event_logger=EventLogger(
                transport=transport,
                flush_interval_seconds=settings.event_flush_interval_ms / 1000,
            ),
            chunk_duration_ms=settings.chunk_duration_ms,
        )

    async def begin(self, source: MediaSource) -> bool:
        """Start event logging and capture; False if capture is unavailable."""
        self.event_logger.initialize(self.session_id)
        started = await self.capturer.start(source, self.chunk_duration_ms)
        if started:
            self.event_logger.log_event(EventType.CAMERA_STARTED)
        else:
            self.event_logger.log_event(
                EventType.RECORDING_UNAVAILABLE,
                {"message": str(self.capturer.error or "capture already running")},
            )
        return started

    async def finish(self) -> RecordingResult:
        """Stop capture, drain uploads, finalize and flush events."""
        if self._result is not None:
            return self._result
        summary = await self.capturer.stop()
        self.event_logger.log_event(EventType.CAMERA_STOPPED)

        metadata: RecordingMetadata | None = None
        error: str | None = None
        if self.capturer.error is not None:
            error = f"capture failed: {self.capturer.error}"
            await self.uploader.abort()
        elif summary.total_chunks == 0:
            error = "no media captured"
            await self.uploader.abort()
        else:
            try:
                metadata = await self.uploader.finish(summary)
            except Exception as exc:
                error = f"upload failed: {exc}"
                _logger.error(
                    "Recording unavailable for session %s: %s", self.session_id, exc
                )
        if error is not None:
            self.event_logger.log_event(
                EventType.RECORDING_UNAVAILABLE, {"message": error}
            )
        await self.event_logger.stop()

        self._result = RecordingResult(
            session_id=self.session_id,
            available=metadata is not None,
            metadata=metadata,
            error=error,
        )
        return self._result

    async def abort(self) -> RecordingResult:
        """Stop everything without finalizing the recording."""
        if self._result is not None:
            return self._result
        await self.capturer.stop()
        await self.uploader.abort()
        await self.event_logger.stop()
        self._result = RecordingResult(
            session_id=self.session_id, available=False, error="recording aborted"
        )
        return self._result

    def teardown(self) -> None:
        """Process exit path: hand queued events to the beacon."""
        self.event_logger.teardown()
