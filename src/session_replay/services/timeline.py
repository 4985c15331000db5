"""Merge chunks, events and decisions into one chronological timeline."""

import heapq
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from session_replay.domain.events import BackendDecision, UIEvent
from session_replay.domain.recording import ChunkMetadata, RecordingMetadata
from session_replay.domain.timeline import (
    BackendDecisionEntry,
    RecordingEndedEntry,
    RecordingStartedEntry,
    SessionTimeline,
    TimelineEntry,
    UIEventEntry,
    VideoChunkEntry,
)

_logger = logging.getLogger(__name__)


def build_timeline(
    session_id: str,
    *,
    metadata: RecordingMetadata | None,
    chunks: Iterable[ChunkMetadata],
    events: Iterable[UIEvent],
    decisions: Iterable[BackendDecision],
) -> list[TimelineEntry]:
    """Return all entries ordered by timestamp.

    Each stream is normalized first (chunks by index, events by sequence
    number, duplicates removed) and the streams are then merged stably, so
    events keep their sequence order even when timestamps tie or skew.

    The merge assumes each stream is already chronological. An event whose
    clock skewed backwards stays after its predecessors in sequence order
    and therefore lands later than a plain timestamp sort would put it.
    """
    started: list[TimelineEntry] = []
    ended: list[TimelineEntry] = []
    if metadata is not None:
        started.append(
            RecordingStartedEntry(
                id=f"rec_start_{session_id}",
                timestamp=metadata.start_time,
                data=metadata,
            )
        )
        ended.append(
            RecordingEndedEntry(
                id=f"rec_end_{session_id}",
                timestamp=metadata.end_time,
                data=metadata,
            )
        )
    chunk_entries = [
        VideoChunkEntry(
            id=f"chunk_{chunk.chunk_index}", timestamp=chunk.timestamp, data=chunk
        )
        for chunk in unique_chunks(chunks)
    ]
    event_entries = [
        UIEventEntry(
            id=event.event_id,
            timestamp=event.timestamp,
            sub_type=event.type.value,
            data=event,
        )
        for event in order_events(events)
    ]
    decision_entries = [
        BackendDecisionEntry(
            id=decision.decision_id,
            timestamp=decision.timestamp,
            sub_type=decision.type.value,
            data=decision,
        )
        for decision in _unique_decisions(decisions)
    ]
    return list(
        heapq.merge(
            started,
            chunk_entries,
            event_entries,
            decision_entries,
            ended,
            key=lambda entry: entry.timestamp,
        )
    )


def unique_chunks(chunks: Iterable[ChunkMetadata]) -> list[ChunkMetadata]:
    """Keep the first copy of each chunk index, ordered by index."""
    by_index: dict[int, ChunkMetadata] = {}
    for chunk in chunks:
        by_index.setdefault(chunk.chunk_index, chunk)
    return [by_index[index] for index in sorted(by_index)]


def order_events(events: Iterable[UIEvent]) -> list[UIEvent]:
    """De-duplicate redelivered events and order them by sequence number."""
    seen_ids: set[str] = set()
    by_sequence: dict[int, UIEvent] = {}
    for event in events:
        if event.event_id in seen_ids:
            continue
        seen_ids.add(event.event_id)
        by_sequence.setdefault(event.sequence_number, event)
    return [by_sequence[sequence] for sequence in sorted(by_sequence)]


def _unique_decisions(decisions: Iterable[BackendDecision]) -> list[BackendDecision]:
    by_id: dict[str, BackendDecision] = {}
    for decision in decisions:
        by_id.setdefault(decision.decision_id, decision)
    return sorted(by_id.values(), key=lambda decision: decision.timestamp)


def normalize_timeline(timeline: SessionTimeline) -> SessionTimeline:
    """Rebuild a fetched timeline so ordering never depends on the server."""
    chunks: list[ChunkMetadata] = []
    events: list[UIEvent] = []
    decisions: list[BackendDecision] = []
    for entry in timeline.timeline:
        if entry.type == "video_chunk":
            chunks.append(entry.data)
        elif entry.type == "ui_event":
            events.append(entry.data)
        elif entry.type == "backend_decision":
            decisions.append(entry.data)
    entries = build_timeline(
        timeline.session_id,
        metadata=timeline.recording_metadata,
        chunks=chunks,
        events=events,
        decisions=decisions,
    )
    return timeline.model_copy(
        update={
            "timeline": entries,
            "chunks_count": len(unique_chunks(chunks)),
            "events_count": len(order_events(events)),
            "decisions_count": len(_unique_decisions(decisions)),
        }
    )


class TimelineSource(Protocol):
    """Read side of the recording store."""

    async def fetch_timeline(self, session_id: str) -> SessionTimeline | None:
        """Return the stored timeline, or None for an unknown session."""

    async def fetch_session_details(self, session_id: str) -> dict[str, object]:
        """Return auxiliary verification details for the session."""


@dataclass(frozen=True)
class ReplaySession:
    """Everything needed to replay one recorded session."""

    timeline: SessionTimeline
    details: dict[str, object]


@dataclass
class TimelineService:
    """Loads and normalizes timelines for replay."""

    source: TimelineSource

    async def load(self, session_id: str) -> ReplaySession | None:
        """Fetch the timeline and details for ``session_id``."""
        timeline = await self.source.fetch_timeline(session_id)
        if timeline is None:
            _logger.info("No recording data for session %s", session_id)
            return None
        try:
            details = await self.source.fetch_session_details(session_id)
        except Exception as exc:
            _logger.warning("Session details unavailable for %s: %s", session_id, exc)
            details = {}
        return ReplaySession(timeline=normalize_timeline(timeline), details=details)
