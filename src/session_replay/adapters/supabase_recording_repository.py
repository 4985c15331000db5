"""Supabase-backed recording repository."""

from dataclasses import dataclass

from supabase import Client

from session_replay.domain.recording import ChunkMetadata, RecordingMetadata
from session_replay.services.recordings import RecordingRepository

_CHUNK_COLUMNS = "session_id, chunk_index, timestamp, duration_ms, filename, size"
_METADATA_COLUMNS = (
    "session_id, total_chunks, total_duration_ms, start_time, end_time, "
    "merged, merged_video_path"
)


@dataclass
class SupabaseRecordingRepository(RecordingRepository):
    """Supabase implementation for chunk metadata and recording records."""

    client: Client

    def list_chunks(self, session_id: str) -> list[ChunkMetadata]:
        """Return stored chunks ordered by index."""
        response = (
            self.client.table("recording_chunks")
            .select(_CHUNK_COLUMNS)
            .eq("session_id", session_id)
            .order("chunk_index")
            .execute()
        )
        return [ChunkMetadata.model_validate(row) for row in response.data or []]

    def save_chunk(self, chunk: ChunkMetadata) -> None:
        """Insert chunk metadata; an existing index is left untouched."""
        self.client.table("recording_chunks").upsert(
            chunk.model_dump(),
            on_conflict="session_id,chunk_index",
            ignore_duplicates=True,
        ).execute()

    def get_metadata(self, session_id: str) -> RecordingMetadata | None:
        """Return the finalization record, if present."""
        response = (
            self.client.table("recording_metadata")
            .select(_METADATA_COLUMNS)
            .eq("session_id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return RecordingMetadata.model_validate(response.data[0])

    def save_metadata(self, metadata: RecordingMetadata) -> RecordingMetadata:
        """Insert the finalization record and return the stored row."""
        response = (
            self.client.table("recording_metadata")
            .insert(metadata.model_dump())
            .execute()
        )
        if not response.data:
            raise RuntimeError(
                f"Failed to store recording metadata for {metadata.session_id}"
            )
        return RecordingMetadata.model_validate(response.data[0])

    def mark_merged(self, session_id: str, merged_video_path: str) -> None:
        """Flag the recording as merged."""
        self.client.table("recording_metadata").update(
            {"merged": True, "merged_video_path": merged_video_path}
        ).eq("session_id", session_id).execute()

    def list_recordings(self, limit: int) -> list[RecordingMetadata]:
        """Return the most recent finalized recordings."""
        response = (
            self.client.table("recording_metadata")
            .select(_METADATA_COLUMNS)
            .order("end_time", desc=True)
            .limit(limit)
            .execute()
        )
        return [RecordingMetadata.model_validate(row) for row in response.data or []]
