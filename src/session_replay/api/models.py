"""Request models for the recording store API."""

from pydantic import Field

from session_replay.domain.events import UIEvent
from session_replay.domain.recording import RecordingMetadata
from session_replay.domain.wire import WireModel


class CompleteRecordingRequest(WireModel):
    """Finalization notice sent after the upload queue drained."""

    session_id: str
    total_chunks: int = Field(ge=0)
    total_duration_ms: int = Field(ge=0)
    start_time: int
    end_time: int

    def to_metadata(self) -> RecordingMetadata:
        """Convert to an unmerged recording record."""
        return RecordingMetadata(
            session_id=self.session_id,
            total_chunks=self.total_chunks,
            total_duration_ms=self.total_duration_ms,
            start_time=self.start_time,
            end_time=self.end_time,
        )


class EventBatchRequest(WireModel):
    """Batch of events delivered by the event logger."""

    session_id: str
    events: list[UIEvent]
