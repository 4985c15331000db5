"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field

import pytest

from session_replay.config import ClientSettings, Settings
from session_replay.containers import AppContainer
from session_replay.domain.events import BackendDecision, UIEvent
from session_replay.domain.recording import Chunk, ChunkMetadata, RecordingMetadata
from session_replay.domain.timeline import SessionTimeline
from session_replay.services.capture import MediaSource
from session_replay.services.event_logger import EventTransport
from session_replay.services.merge import VideoMergeService
from session_replay.services.recordings import (
    MediaStorage,
    RecordingRepository,
    RecordingStoreService,
    SessionDetailsClient,
    SessionEventRepository,
)
from session_replay.services.replayer import ReplayMediaSource, VideoPlayer
from session_replay.services.timeline import TimelineSource
from session_replay.services.uploader import ChunkStore


@dataclass
class InMemoryRecordingRepository(RecordingRepository):
    chunks: dict[str, list[ChunkMetadata]] = field(default_factory=dict)
    metadata: dict[str, RecordingMetadata] = field(default_factory=dict)

    def list_chunks(self, session_id: str) -> list[ChunkMetadata]:
        return sorted(
            self.chunks.get(session_id, []), key=lambda chunk: chunk.chunk_index
        )

    def save_chunk(self, chunk: ChunkMetadata) -> None:
        self.chunks.setdefault(chunk.session_id, []).append(chunk)

    def get_metadata(self, session_id: str) -> RecordingMetadata | None:
        return self.metadata.get(session_id)

    def save_metadata(self, metadata: RecordingMetadata) -> RecordingMetadata:
        self.metadata[metadata.session_id] = metadata
        return metadata

    def mark_merged(self, session_id: str, merged_video_path: str) -> None:
        self.metadata[session_id] = self.metadata[session_id].model_copy(
            update={"merged": True, "merged_video_path": merged_video_path}
        )

    def list_recordings(self, limit: int) -> list[RecordingMetadata]:
        rows = sorted(
            self.metadata.values(), key=lambda item: item.end_time, reverse=True
        )
        return rows[:limit]


@dataclass
class InMemorySessionEventRepository(SessionEventRepository):
    events: dict[str, UIEvent] = field(default_factory=dict)
    decisions: list[BackendDecision] = field(default_factory=list)

    def save_events(self, events: list[UIEvent]) -> int:
        accepted = 0
        for event in events:
            if event.event_id in self.events:
                continue
            self.events[event.event_id] = event
            accepted += 1
        return accepted

    def list_events(self, session_id: str) -> list[UIEvent]:
        return [
            event for event in self.events.values() if event.session_id == session_id
        ]

    def save_decision(self, decision: BackendDecision) -> BackendDecision:
        self.decisions.append(decision)
        return decision

    def list_decisions(self, session_id: str) -> list[BackendDecision]:
        return [
            decision
            for decision in self.decisions
            if decision.session_id == session_id
        ]


@dataclass
class InMemoryMediaStorage(MediaStorage):
    objects: dict[str, bytes] = field(default_factory=dict)
    fail_downloads: set[str] = field(default_factory=set)

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        self.objects[path] = data

    def download(self, path: str) -> bytes:
        if path in self.fail_downloads:
            raise RuntimeError(f"storage unavailable for {path}")
        return self.objects[path]


@dataclass
class FakeSessionDetailsClient(SessionDetailsClient):
    details: dict[str, dict[str, object]] = field(default_factory=dict)

    async def get_session_details(self, session_id: str) -> dict[str, object]:
        return self.details.get(session_id, {})


@dataclass
class FakeChunkStore(ChunkStore):
    """Chunk store that fails a configured number of times per chunk index."""

    failures: dict[int, int] = field(default_factory=dict)
    finalize_failures: int = 0
    uploaded: list[int] = field(default_factory=list)
    attempts: list[int] = field(default_factory=list)
    finalized: list[RecordingMetadata] = field(default_factory=list)

    async def upload_chunk(self, chunk: Chunk) -> None:
        self.attempts.append(chunk.chunk_index)
        remaining = self.failures.get(chunk.chunk_index, 0)
        if remaining:
            self.failures[chunk.chunk_index] = remaining - 1
            raise RuntimeError(f"store unavailable for chunk {chunk.chunk_index}")
        self.uploaded.append(chunk.chunk_index)

    async def finalize_recording(
        self, metadata: RecordingMetadata
    ) -> RecordingMetadata:
        if self.finalize_failures:
            self.finalize_failures -= 1
            raise RuntimeError("finalize failed")
        self.finalized.append(metadata)
        return metadata


@dataclass
class FakeEventTransport(EventTransport):
    fail_sends: int = 0
    accept_beacons: bool = True
    sent: list[tuple[str, list[UIEvent]]] = field(default_factory=list)
    beacons: list[tuple[str, list[UIEvent]]] = field(default_factory=list)

    async def send_events(self, session_id: str, events: list[UIEvent]) -> None:
        if self.fail_sends:
            self.fail_sends -= 1
            raise RuntimeError("network down")
        self.sent.append((session_id, list(events)))

    def send_events_beacon(self, session_id: str, events: list[UIEvent]) -> bool:
        if not self.accept_beacons:
            return False
        self.beacons.append((session_id, list(events)))
        return True

    def delivered(self) -> list[UIEvent]:
        return [event for _, batch in self.sent + self.beacons for event in batch]


@dataclass
class FakeMediaSource(MediaSource):
    segments: list[bytes] = field(default_factory=list)
    tail: bytes = b""
    fail_open: bool = False
    fail_after: int | None = None
    opened: bool = False
    closed: bool = False
    reads: int = 0

    async def open(self) -> None:
        if self.fail_open:
            raise PermissionError("camera permission denied")
        self.opened = True

    async def read_segment(self) -> bytes:
        if self.fail_after is not None and self.reads >= self.fail_after:
            raise RuntimeError("encoder crashed")
        self.reads += 1
        if self.segments:
            return self.segments.pop(0)
        return b""

    async def close(self) -> bytes:
        self.closed = True
        return self.tail


@dataclass
class FakeVideoPlayer(VideoPlayer):
    durations: dict[bytes, int] = field(default_factory=dict)
    undecodable: set[bytes] = field(default_factory=set)
    loaded: list[bytes] = field(default_factory=list)
    seeks: list[int] = field(default_factory=list)
    playing: bool = False
    position: int = 0

    async def load(self, media: bytes) -> int:
        if media in self.undecodable:
            raise ValueError("media could not be decoded")
        self.loaded.append(media)
        self.position = 0
        return self.durations.get(media, 0)

    def seek(self, offset_ms: int) -> None:
        self.seeks.append(offset_ms)
        self.position = offset_ms

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def position_ms(self) -> int:
        return self.position


@dataclass
class FakeReplayMedia(ReplayMediaSource):
    merged: bytes | None = None
    chunks: dict[int, bytes] = field(default_factory=dict)
    gate: asyncio.Event | None = None
    chunk_requests: list[int] = field(default_factory=list)

    async def fetch_merged_video(self, session_id: str) -> bytes:
        if self.merged is None:
            raise RuntimeError("merged video missing")
        return self.merged

    async def fetch_chunk(self, session_id: str, chunk_index: int) -> bytes:
        self.chunk_requests.append(chunk_index)
        if self.gate is not None:
            await self.gate.wait()
        return self.chunks[chunk_index]


@dataclass
class FakeTimelineSource(TimelineSource):
    timelines: dict[str, SessionTimeline] = field(default_factory=dict)
    details: dict[str, dict[str, object]] = field(default_factory=dict)
    fail_details: bool = False

    async def fetch_timeline(self, session_id: str) -> SessionTimeline | None:
        return self.timelines.get(session_id)

    async def fetch_session_details(self, session_id: str) -> dict[str, object]:
        if self.fail_details:
            raise RuntimeError("details service down")
        return self.details.get(session_id, {})


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


def make_chunk_metadata(
    session_id: str, chunk_index: int, timestamp: int, duration_ms: int = 3000
) -> ChunkMetadata:
    return ChunkMetadata(
        session_id=session_id,
        chunk_index=chunk_index,
        timestamp=timestamp,
        duration_ms=duration_ms,
        filename=f"chunk-{chunk_index:04d}.webm",
        size=1024,
    )


def make_store_service(
    details: dict[str, dict[str, object]] | None = None,
) -> RecordingStoreService:
    repository = InMemoryRecordingRepository()
    storage = InMemoryMediaStorage()
    return RecordingStoreService(
        repository=repository,
        event_repository=InMemorySessionEventRepository(),
        storage=storage,
        merge_queue=VideoMergeService(repository=repository, storage=storage),
        details_client=FakeSessionDetailsClient(details or {}),
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        admin_token="admin-token",
    )


@pytest.fixture
def client_settings() -> ClientSettings:
    return ClientSettings(
        store_base_url="https://store.example.com",
        admin_token="admin-token",
        upload_poll_interval_ms=1,
    )


@pytest.fixture
def container(settings: Settings) -> AppContainer:
    recording_service = make_store_service(
        details={"sess-1": {"status": "approved", "score": 0.97}}
    )
    merge_service = recording_service.merge_queue
    assert isinstance(merge_service, VideoMergeService)

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        recording_service=recording_service,
        merge_service=merge_service,
        close_resources=close_resources,
    )
