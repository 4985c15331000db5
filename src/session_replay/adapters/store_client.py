"""HTTP client for the recording store API."""

import asyncio
import logging
from dataclasses import dataclass, field

import httpx

from session_replay.domain.events import UIEvent
from session_replay.domain.recording import Chunk, RecordingMetadata
from session_replay.domain.timeline import SessionTimeline
from session_replay.services.event_logger import EventTransport
from session_replay.services.replayer import ReplayMediaSource
from session_replay.services.timeline import TimelineSource
from session_replay.services.uploader import ChunkStore

_logger = logging.getLogger(__name__)


@dataclass
class HttpxRecordingStoreClient(
    ChunkStore, EventTransport, TimelineSource, ReplayMediaSource
):
    """Recording store client implemented with httpx."""

    base_url: str
    http_client: httpx.AsyncClient
    admin_token: str | None = None
    _beacons: set[asyncio.Task[None]] = field(
        default_factory=set, init=False, repr=False
    )

    @classmethod
    def create(
        cls, base_url: str, admin_token: str | None = None
    ) -> "HttpxRecordingStoreClient":
        """Create a store client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            admin_token=admin_token,
        )

    async def upload_chunk(self, chunk: Chunk) -> None:
        """Upload one chunk as multipart form data."""
        url = f"{self.base_url}/admin/session/recording/chunk"
        response = await self.http_client.post(
            url,
            data={
                "sessionId": chunk.session_id,
                "chunkIndex": str(chunk.chunk_index),
                "timestamp": str(chunk.capture_start_timestamp),
                "duration": str(chunk.duration_ms),
            },
            files={
                "chunk": (
                    f"chunk-{chunk.chunk_index}.webm",
                    chunk.payload,
                    "video/webm",
                )
            },
            timeout=30,
        )
        response.raise_for_status()

    async def finalize_recording(
        self, metadata: RecordingMetadata
    ) -> RecordingMetadata:
        """Notify the store that every chunk has been delivered."""
        url = f"{self.base_url}/admin/session/recording/complete"
        response = await self.http_client.post(url, json=metadata.to_wire(), timeout=15)
        response.raise_for_status()
        return RecordingMetadata.model_validate(response.json()["metadata"])

    async def send_events(self, session_id: str, events: list[UIEvent]) -> None:
        """Post an event batch and wait for the ack."""
        url = f"{self.base_url}/admin/session/events/batch"
        response = await self.http_client.post(
            url, json=_event_batch(session_id, events), timeout=10
        )
        response.raise_for_status()

    def send_events_beacon(self, session_id: str, events: list[UIEvent]) -> bool:
        """Fire an event batch without waiting for the response."""
        if self.http_client.is_closed:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        task = loop.create_task(self.send_events(session_id, events))
        self._beacons.add(task)
        task.add_done_callback(self._beacon_done)
        return True

    async def fetch_timeline(self, session_id: str) -> SessionTimeline | None:
        """Return the stored timeline, or None for an unknown session."""
        url = f"{self.base_url}/admin/session/{session_id}/timeline"
        response = await self.http_client.get(url, headers=self._headers(), timeout=15)
        if response.status_code == httpx.codes.NOT_FOUND:
            return None
        response.raise_for_status()
        return SessionTimeline.model_validate(response.json())

    async def fetch_session_details(self, session_id: str) -> dict[str, object]:
        """Return auxiliary verification details for the session."""
        url = f"{self.base_url}/admin/session/{session_id}/details"
        response = await self.http_client.get(url, headers=self._headers(), timeout=15)
        response.raise_for_status()
        return response.json().get("details", {})

    async def fetch_merged_video(self, session_id: str) -> bytes:
        """Download the merged video artifact."""
        url = f"{self.base_url}/admin/session/{session_id}/video"
        response = await self.http_client.get(url, headers=self._headers(), timeout=60)
        response.raise_for_status()
        return response.content

    async def fetch_chunk(self, session_id: str, chunk_index: int) -> bytes:
        """Download a single stored chunk."""
        url = f"{self.base_url}/admin/session/{session_id}/chunk/{chunk_index}"
        response = await self.http_client.get(url, headers=self._headers(), timeout=30)
        response.raise_for_status()
        return response.content

    async def close(self) -> None:
        """Let pending beacons finish, then close the HTTP session."""
        if self._beacons:
            await asyncio.wait(self._beacons, timeout=5)
        await self.http_client.aclose()

    def _headers(self) -> dict[str, str]:
        if self.admin_token is None:
            return {}
        return {"X-Admin-Token": self.admin_token}

    def _beacon_done(self, task: asyncio.Task[None]) -> None:
        self._beacons.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Event beacon delivery failed: %s", exc)


def _event_batch(session_id: str, events: list[UIEvent]) -> dict[str, object]:
    return {
        "sessionId": session_id,
        "events": [event.to_wire() for event in events],
    }
