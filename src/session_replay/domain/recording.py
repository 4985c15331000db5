"""Domain models for captured media chunks and recordings."""

from dataclasses import dataclass
from enum import StrEnum

from session_replay.domain.wire import WireModel


class UploadState(StrEnum):
    """Delivery state of a locally captured chunk."""

    PENDING = "pending"
    UPLOADED = "uploaded"
    FAILED = "failed"


class MergeStatus(StrEnum):
    """Status of a server-side merge job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass
class Chunk:
    """A fixed-duration segment of encoded media awaiting upload."""

    session_id: str
    chunk_index: int
    capture_start_timestamp: int
    duration_ms: int
    payload: bytes
    upload_state: UploadState = UploadState.PENDING

    @property
    def size(self) -> int:
        """Size of the encoded payload in bytes."""
        return len(self.payload)

    def mark_uploaded(self) -> None:
        """Record the store ack and release the local payload."""
        self.upload_state = UploadState.UPLOADED
        self.payload = b""


@dataclass(frozen=True)
class CaptureSummary:
    """Totals reported by the capturer when recording stops."""

    total_chunks: int
    total_duration_ms: int
    start_time: int
    end_time: int

    @classmethod
    def empty(cls) -> "CaptureSummary":
        """Summary for a capture that never started."""
        return cls(total_chunks=0, total_duration_ms=0, start_time=0, end_time=0)


class ChunkMetadata(WireModel):
    """Stored chunk as seen by the store and the replayer."""

    session_id: str
    chunk_index: int
    timestamp: int
    duration_ms: int
    filename: str
    size: int


class RecordingMetadata(WireModel):
    """Finalization record written once per recorded session."""

    session_id: str
    total_chunks: int
    total_duration_ms: int
    start_time: int
    end_time: int
    merged: bool = False
    merged_video_path: str | None = None


def chunk_filename(chunk_index: int) -> str:
    """Return the storage filename for a chunk index."""
    return f"chunk-{chunk_index:04d}.webm"
