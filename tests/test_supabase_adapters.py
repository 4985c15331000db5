"""Tests for Supabase adapter implementations."""

from dataclasses import dataclass, field

from session_replay.adapters.supabase_event_repository import (
    SupabaseSessionEventRepository,
)
from session_replay.adapters.supabase_media_storage import SupabaseMediaStorage
from session_replay.adapters.supabase_recording_repository import (
    SupabaseRecordingRepository,
)
from session_replay.domain.events import (
    BackendDecision,
    DecisionType,
    EventType,
    UIEvent,
)
from session_replay.domain.recording import RecordingMetadata
from tests.conftest import make_chunk_metadata


@dataclass
class FakeResponse:
    data: list[dict[str, object]] | None


@dataclass
class FakeTable:
    name: str
    response_queue: dict[str, list[list[dict[str, object]]]] = field(
        default_factory=lambda: {"select": [], "insert": [], "update": [], "upsert": []}
    )
    last_payload: object | None = None
    last_options: dict[str, object] = field(default_factory=dict)
    last_filters: list[tuple[str, object]] = field(default_factory=list)
    last_order: tuple[str, bool] | None = None

    def queue(self, action: str, data: list[dict[str, object]]) -> None:
        self.response_queue[action].append(data)

    def select(self, *_args) -> "FakeTable":
        self._action = "select"
        return self

    def insert(self, payload) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "insert"
        self.last_payload = payload
        return self

    def update(self, payload) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "update"
        self.last_payload = payload
        return self

    def upsert(self, payload, **options) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "upsert"
        self.last_payload = payload
        self.last_options = options
        return self

    def eq(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append((column, value))
        return self

    def limit(self, _count: int) -> "FakeTable":
        return self

    def order(self, column: str, desc: bool = False) -> "FakeTable":
        self.last_order = (column, desc)
        return self

    def execute(self) -> FakeResponse:
        action = getattr(self, "_action", "select")
        queue = self.response_queue.get(action, [])
        data = queue.pop(0) if queue else []
        return FakeResponse(data=data)


@dataclass
class FakeBucket:
    objects: dict[str, bytes]
    options: dict[str, dict[str, str]]

    def upload(self, path: str, file: bytes, file_options: dict[str, str]) -> None:
        self.objects[path] = file
        self.options[path] = file_options

    def download(self, path: str) -> bytes:
        return self.objects[path]


@dataclass
class FakeStorage:
    buckets: dict[str, FakeBucket] = field(default_factory=dict)

    def from_(self, bucket: str) -> FakeBucket:
        if bucket not in self.buckets:
            self.buckets[bucket] = FakeBucket(objects={}, options={})
        return self.buckets[bucket]


@dataclass
class FakeSupabaseClient:
    tables: dict[str, FakeTable] = field(default_factory=dict)
    storage: FakeStorage = field(default_factory=FakeStorage)

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name=name)
        return self.tables[name]


def test_recording_repository_chunks() -> None:
    client = FakeSupabaseClient()
    chunks_table = client.table("recording_chunks")
    chunk = make_chunk_metadata("sess-1", 0, 1000)
    chunks_table.queue("select", [chunk.model_dump()])

    repository = SupabaseRecordingRepository(client)
    repository.save_chunk(chunk)
    listed = repository.list_chunks("sess-1")

    assert chunks_table.last_options == {
        "on_conflict": "session_id,chunk_index",
        "ignore_duplicates": True,
    }
    assert isinstance(chunks_table.last_payload, dict)
    assert chunks_table.last_payload["chunk_index"] == 0
    assert chunks_table.last_order == ("chunk_index", False)
    assert listed == [chunk]


def test_recording_repository_metadata_roundtrip() -> None:
    client = FakeSupabaseClient()
    metadata_table = client.table("recording_metadata")
    metadata = RecordingMetadata(
        session_id="sess-1",
        total_chunks=2,
        total_duration_ms=6000,
        start_time=0,
        end_time=6000,
    )
    metadata_table.queue("insert", [metadata.model_dump()])
    metadata_table.queue("select", [])
    metadata_table.queue("select", [metadata.model_dump()])

    repository = SupabaseRecordingRepository(client)
    stored = repository.save_metadata(metadata)
    missing = repository.get_metadata("sess-2")
    recordings = repository.list_recordings(10)
    repository.mark_merged("sess-1", "sess-1/merged.webm")

    assert stored == metadata
    assert missing is None
    assert recordings == [metadata]
    assert metadata_table.last_payload == {
        "merged": True,
        "merged_video_path": "sess-1/merged.webm",
    }
    assert ("session_id", "sess-1") in metadata_table.last_filters


def test_event_repository_ignores_duplicate_event_ids() -> None:
    client = FakeSupabaseClient()
    events_table = client.table("session_events")
    event = UIEvent(
        session_id="sess-1",
        event_id="evt_1",
        type=EventType.CONSENT_GIVEN,
        payload={"consents": {"terms": True}},
        timestamp=1000,
        sequence_number=0,
    )
    events_table.queue("upsert", [event.model_dump(mode="json")])
    events_table.queue("select", [event.model_dump(mode="json")])

    repository = SupabaseSessionEventRepository(client)
    accepted = repository.save_events([event])
    listed = repository.list_events("sess-1")

    assert accepted == 1
    assert events_table.last_options == {
        "on_conflict": "event_id",
        "ignore_duplicates": True,
    }
    assert listed == [event]
    assert events_table.last_order == ("sequence_number", False)


def test_event_repository_decisions() -> None:
    client = FakeSupabaseClient()
    decisions_table = client.table("backend_decisions")
    decision = BackendDecision(
        session_id="sess-1",
        decision_id="dec_1",
        type=DecisionType.SESSION_COMPLETE,
        result=False,
        details={"reason": "document expired"},
        timestamp=5000,
    )
    decisions_table.queue("insert", [decision.model_dump(mode="json")])
    decisions_table.queue("select", [decision.model_dump(mode="json")])

    repository = SupabaseSessionEventRepository(client)

    assert repository.save_decision(decision) == decision
    assert repository.list_decisions("sess-1") == [decision]


def test_media_storage_uploads_with_content_type() -> None:
    client = FakeSupabaseClient()
    storage = SupabaseMediaStorage(client, bucket="recordings")

    storage.upload("sess-1/chunk-0000.webm", b"data", "video/webm")

    bucket = client.storage.buckets["recordings"]
    assert bucket.options["sess-1/chunk-0000.webm"] == {
        "content-type": "video/webm",
        "upsert": "true",
    }
    assert storage.download("sess-1/chunk-0000.webm") == b"data"
