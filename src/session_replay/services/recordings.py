"""Recording store: ingestion, finalization and read models."""

import logging
from dataclasses import dataclass
from typing import Protocol

from session_replay.domain.events import BackendDecision, UIEvent
from session_replay.domain.recording import (
    ChunkMetadata,
    MergeStatus,
    RecordingMetadata,
    chunk_filename,
)
from session_replay.domain.timeline import RecordingSummary, SessionTimeline
from session_replay.services.timeline import build_timeline, order_events

_logger = logging.getLogger(__name__)


class ChunkOrderError(ValueError):
    """Raised when a chunk would leave a gap in the stored index range."""


class RecordingClosedError(ValueError):
    """Raised when a new chunk arrives after the recording was finalized."""


class RecordingIncompleteError(ValueError):
    """Raised when finalization does not match the stored chunk count."""


class RecordingNotFoundError(LookupError):
    """Raised when the requested recording data does not exist."""


class InvalidEventBatchError(ValueError):
    """Raised when a batch contains events of another session."""


class RecordingRepository(Protocol):
    """Persistence interface for chunk metadata and recording records."""

    def list_chunks(self, session_id: str) -> list[ChunkMetadata]:
        """Return stored chunks ordered by index."""

    def save_chunk(self, chunk: ChunkMetadata) -> None:
        """Store chunk metadata."""

    def get_metadata(self, session_id: str) -> RecordingMetadata | None:
        """Return the finalization record, if present."""

    def save_metadata(self, metadata: RecordingMetadata) -> RecordingMetadata:
        """Store the finalization record and return it."""

    def mark_merged(self, session_id: str, merged_video_path: str) -> None:
        """Flag the recording as merged."""

    def list_recordings(self, limit: int) -> list[RecordingMetadata]:
        """Return the most recent finalized recordings."""


class SessionEventRepository(Protocol):
    """Persistence interface for events and backend decisions."""

    def save_events(self, events: list[UIEvent]) -> int:
        """Store events, ignoring known event ids; return how many were new."""

    def list_events(self, session_id: str) -> list[UIEvent]:
        """Return the events of a session."""

    def save_decision(self, decision: BackendDecision) -> BackendDecision:
        """Store a backend decision."""

    def list_decisions(self, session_id: str) -> list[BackendDecision]:
        """Return the decisions of a session."""


class MediaStorage(Protocol):
    """Object storage for chunk and merged video binaries."""

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Write an object, replacing any previous content."""

    def download(self, path: str) -> bytes:
        """Read an object."""


class SessionDetailsClient(Protocol):
    """Read-only access to the external verification service."""

    async def get_session_details(self, session_id: str) -> dict[str, object]:
        """Return auxiliary details for a session."""


class MergeQueue(Protocol):
    """Accepts merge requests for finalized recordings."""

    def enqueue(self, session_id: str) -> MergeStatus:
        """Queue a merge and return the job status."""


def chunk_path(session_id: str, chunk_index: int) -> str:
    """Storage path of a chunk binary."""
    return f"{session_id}/{chunk_filename(chunk_index)}"


def merged_video_path(session_id: str) -> str:
    """Storage path of the merged video."""
    return f"{session_id}/merged.webm"


@dataclass
class RecordingStoreService:
    """Durable store for chunks, events, decisions and recording records."""

    repository: RecordingRepository
    event_repository: SessionEventRepository
    storage: MediaStorage
    merge_queue: MergeQueue | None = None
    details_client: SessionDetailsClient | None = None
    merge_on_complete: bool = True

    def save_chunk(  # noqa: PLR0913
        self,
        session_id: str,
        chunk_index: int,
        timestamp: int,
        duration_ms: int,
        data: bytes,
    ) -> ChunkMetadata:
        """Store the next chunk of a session.

        Indices must arrive as the contiguous range 0..N-1. A chunk that is
        already stored is acknowledged again without being rewritten.
        """
        stored = self.repository.list_chunks(session_id)
        for chunk in stored:
            if chunk.chunk_index == chunk_index:
                _logger.info(
                    "Duplicate chunk %s for session %s acknowledged",
                    chunk_index,
                    session_id,
                )
                return chunk
        expected = len(stored)
        if chunk_index != expected:
            raise ChunkOrderError(
                f"Expected chunk {expected} for session {session_id}, "
                f"got {chunk_index}"
            )
        if self.repository.get_metadata(session_id) is not None:
            raise RecordingClosedError(f"Recording {session_id} is already finalized")

        self.storage.upload(chunk_path(session_id, chunk_index), data, "video/webm")
        metadata = ChunkMetadata(
            session_id=session_id,
            chunk_index=chunk_index,
            timestamp=timestamp,
            duration_ms=duration_ms,
            filename=chunk_filename(chunk_index),
            size=len(data),
        )
        self.repository.save_chunk(metadata)
        _logger.info(
            "Chunk %s stored for session %s (%s bytes)",
            chunk_index,
            session_id,
            len(data),
        )
        return metadata

    def save_events(self, session_id: str, events: list[UIEvent]) -> int:
        """Store an event batch; redelivered events are ignored."""
        foreign = [event.event_id for event in events if event.session_id != session_id]
        if foreign:
            raise InvalidEventBatchError(
                f"Events {foreign} do not belong to session {session_id}"
            )
        if not events:
            return 0
        accepted = self.event_repository.save_events(events)
        _logger.info(
            "Stored %s of %s events for session %s", accepted, len(events), session_id
        )
        return accepted

    def save_decision(self, decision: BackendDecision) -> BackendDecision:
        """Record a backend verification decision."""
        return self.event_repository.save_decision(decision)

    def complete_recording(self, metadata: RecordingMetadata) -> RecordingMetadata:
        """Write the recording record exactly once and queue the merge."""
        existing = self.repository.get_metadata(metadata.session_id)
        if existing is not None:
            _logger.info("Recording %s already finalized", metadata.session_id)
            return existing
        stored_chunks = len(self.repository.list_chunks(metadata.session_id))
        if stored_chunks != metadata.total_chunks:
            raise RecordingIncompleteError(
                f"Recording {metadata.session_id} declares {metadata.total_chunks} "
                f"chunks but {stored_chunks} are stored"
            )
        record = self.repository.save_metadata(
            metadata.model_copy(update={"merged": False, "merged_video_path": None})
        )
        _logger.info(
            "Recording finalized: session=%s chunks=%s duration_ms=%s",
            record.session_id,
            record.total_chunks,
            record.total_duration_ms,
        )
        if (
            self.merge_on_complete
            and self.merge_queue is not None
            and record.total_chunks > 0
        ):
            self.request_merge(record.session_id)
        return record

    def request_merge(self, session_id: str) -> MergeStatus:
        """Queue a merge of a finalized recording."""
        metadata = self.repository.get_metadata(session_id)
        if metadata is None or metadata.total_chunks == 0:
            raise RecordingNotFoundError(f"No finalized recording for {session_id}")
        if self.merge_queue is None:
            raise RuntimeError("Video merging is not configured")
        return self.merge_queue.enqueue(session_id)

    def get_timeline(self, session_id: str) -> SessionTimeline | None:
        """Build the replay timeline, or None when nothing was recorded."""
        metadata = self.repository.get_metadata(session_id)
        chunks = self.repository.list_chunks(session_id)
        events = order_events(self.event_repository.list_events(session_id))
        decisions = self.event_repository.list_decisions(session_id)
        if metadata is None and not chunks and not events and not decisions:
            return None
        has_video = bool(
            metadata is not None and metadata.merged and metadata.merged_video_path
        )
        entries = build_timeline(
            session_id,
            metadata=metadata,
            chunks=chunks,
            events=events,
            decisions=decisions,
        )
        return SessionTimeline(
            session_id=session_id,
            has_video=has_video,
            video_url=f"/admin/session/{session_id}/video" if has_video else None,
            chunks_count=len(chunks),
            events_count=len(events),
            decisions_count=len(decisions),
            recording_metadata=metadata,
            timeline=entries,
        )

    def get_chunk(self, session_id: str, chunk_index: int) -> bytes:
        """Return a stored chunk binary."""
        known = {chunk.chunk_index for chunk in self.repository.list_chunks(session_id)}
        if chunk_index not in known:
            raise RecordingNotFoundError(
                f"Chunk {chunk_index} not found for session {session_id}"
            )
        return self.storage.download(chunk_path(session_id, chunk_index))

    def get_merged_video(self, session_id: str) -> bytes:
        """Return the merged video binary."""
        metadata = self.repository.get_metadata(session_id)
        if metadata is None or not metadata.merged or not metadata.merged_video_path:
            raise RecordingNotFoundError(f"No merged video for session {session_id}")
        return self.storage.download(metadata.merged_video_path)

    async def get_session_details(self, session_id: str) -> dict[str, object]:
        """Return verification details from the external service."""
        if self.details_client is None:
            return {}
        return await self.details_client.get_session_details(session_id)

    def list_recordings(self, limit: int = 50) -> list[RecordingSummary]:
        """Summaries of the most recent finalized recordings."""
        summaries: list[RecordingSummary] = []
        for metadata in self.repository.list_recordings(limit):
            session_id = metadata.session_id
            summaries.append(
                RecordingSummary(
                    session_id=session_id,
                    has_video=bool(metadata.merged and metadata.merged_video_path),
                    has_recording=metadata.total_chunks > 0,
                    chunks_count=metadata.total_chunks,
                    events_count=len(self.event_repository.list_events(session_id)),
                    decisions_count=len(
                        self.event_repository.list_decisions(session_id)
                    ),
                    duration_ms=metadata.total_duration_ms,
                    start_time=metadata.start_time,
                    end_time=metadata.end_time,
                )
            )
        return summaries
