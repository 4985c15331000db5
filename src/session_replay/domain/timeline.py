"""Timeline entries and replay-side views of a recorded session."""

from typing import Annotated, Literal

from pydantic import Field

from session_replay.domain.events import BackendDecision, UIEvent
from session_replay.domain.recording import ChunkMetadata, RecordingMetadata
from session_replay.domain.wire import WireModel


class VideoChunkEntry(WireModel):
    """A stored media chunk positioned at its capture start."""

    type: Literal["video_chunk"] = "video_chunk"
    id: str
    timestamp: int
    sub_type: str | None = None
    data: ChunkMetadata


class UIEventEntry(WireModel):
    """An application event."""

    type: Literal["ui_event"] = "ui_event"
    id: str
    timestamp: int
    sub_type: str | None = None
    data: UIEvent


class BackendDecisionEntry(WireModel):
    """A verification decision marker."""

    type: Literal["backend_decision"] = "backend_decision"
    id: str
    timestamp: int
    sub_type: str | None = None
    data: BackendDecision


class RecordingStartedEntry(WireModel):
    """Start boundary of the recording."""

    type: Literal["recording_started"] = "recording_started"
    id: str
    timestamp: int
    sub_type: str | None = None
    data: RecordingMetadata


class RecordingEndedEntry(WireModel):
    """End boundary of the recording."""

    type: Literal["recording_ended"] = "recording_ended"
    id: str
    timestamp: int
    sub_type: str | None = None
    data: RecordingMetadata


TimelineEntry = Annotated[
    VideoChunkEntry
    | UIEventEntry
    | BackendDecisionEntry
    | RecordingStartedEntry
    | RecordingEndedEntry,
    Field(discriminator="type"),
]


class SessionTimeline(WireModel):
    """Timeline payload served by the store for one session."""

    session_id: str
    has_video: bool = False
    video_url: str | None = None
    chunks_count: int = 0
    events_count: int = 0
    decisions_count: int = 0
    recording_metadata: RecordingMetadata | None = None
    timeline: list[TimelineEntry] = Field(default_factory=list)

    @property
    def chunks(self) -> list[ChunkMetadata]:
        """Chunk metadata in timeline order."""
        return [entry.data for entry in self.timeline if entry.type == "video_chunk"]

    @property
    def decisions(self) -> list[BackendDecisionEntry]:
        """Decision entries in timeline order."""
        return [entry for entry in self.timeline if entry.type == "backend_decision"]


class RecordingSummary(WireModel):
    """Listing row for a session with stored recording data."""

    session_id: str
    has_video: bool
    has_recording: bool
    chunks_count: int
    events_count: int
    decisions_count: int
    duration_ms: int
    start_time: int | None = None
    end_time: int | None = None
