"""Supabase Storage bucket for recording binaries."""

from dataclasses import dataclass

from supabase import Client

from session_replay.services.recordings import MediaStorage


@dataclass
class SupabaseMediaStorage(MediaStorage):
    """Stores chunk and merged video binaries in a storage bucket."""

    client: Client
    bucket: str

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Write an object, replacing any previous content."""
        self.client.storage.from_(self.bucket).upload(
            path, data, {"content-type": content_type, "upsert": "true"}
        )

    def download(self, path: str) -> bytes:
        """Read an object."""
        return self.client.storage.from_(self.bucket).download(path)
