"""Synchronized playback of a recorded session over its timeline."""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from session_replay.domain.recording import ChunkMetadata
from session_replay.domain.timeline import (
    BackendDecisionEntry,
    SessionTimeline,
    TimelineEntry,
)
from session_replay.services.timeline import unique_chunks

_logger = logging.getLogger(__name__)


class PlaybackError(RuntimeError):
    """Raised when a chunk cannot be loaded for playback."""


class PlaybackMode(StrEnum):
    """Replayer states."""

    IDLE = "idle"
    PLAYING_MERGED = "playing_merged"
    PLAYING_CHUNKED = "playing_chunked"
    PAUSED = "paused"
    STOPPED = "stopped"


class ReplayMediaSource(Protocol):
    """Binary media served by the recording store."""

    async def fetch_merged_video(self, session_id: str) -> bytes:
        """Return the merged video artifact."""

    async def fetch_chunk(self, session_id: str, chunk_index: int) -> bytes:
        """Return one stored chunk."""


class VideoPlayer(Protocol):
    """Single media element driven by the replayer."""

    async def load(self, media: bytes) -> int:
        """Load media, wait until it is ready and return its decoded duration."""

    def seek(self, offset_ms: int) -> None:
        """Move the playhead within the loaded media."""

    def play(self) -> None:
        """Start or continue playback."""

    def pause(self) -> None:
        """Pause playback."""

    def position_ms(self) -> int:
        """Playhead position within the loaded media."""


@dataclass(frozen=True)
class DecisionMarker:
    """A decision positioned on the progress bar, 0.0 to 1.0."""

    entry: BackendDecisionEntry
    position: float


@dataclass
class Replayer:
    """Plays the merged video, or the raw chunks when it is unusable.

    The switch from merged to chunked playback is one-way. Seeks that
    arrive while a chunk is loading are coalesced and the latest one is
    applied once the switch completes.
    """

    timeline: SessionTimeline
    media: ReplayMediaSource
    player: VideoPlayer
    chunk_duration_ms: int = 3000
    corruption_threshold: float = 0.1
    active_tolerance: float = 0.02
    merged_invalid: bool = field(default=False, init=False)
    video_error: str | None = field(default=None, init=False)
    _mode: PlaybackMode = field(default=PlaybackMode.IDLE, init=False, repr=False)
    _resume_mode: PlaybackMode | None = field(default=None, init=False, repr=False)
    _using_merged: bool = field(default=False, init=False, repr=False)
    _chunks: list[ChunkMetadata] = field(default_factory=list, init=False, repr=False)
    _chunk_position: int = field(default=0, init=False, repr=False)
    _switching: bool = field(default=False, init=False, repr=False)
    _pending_seek: int | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.chunk_duration_ms <= 0:
            raise ValueError("chunk_duration_ms must be positive")
        self._chunks = unique_chunks(self.timeline.chunks)

    @property
    def mode(self) -> PlaybackMode:
        """Current playback state."""
        return self._mode

    @property
    def session_id(self) -> str:
        return self.timeline.session_id

    @property
    def current_chunk_index(self) -> int | None:
        """Chunk being played in chunked mode."""
        if self._using_merged or not self._chunks or self._mode == PlaybackMode.IDLE:
            return None
        return self._chunks[self._chunk_position].chunk_index

    @property
    def start_time(self) -> int:
        metadata = self.timeline.recording_metadata
        if metadata is not None:
            return metadata.start_time
        if self._chunks:
            return self._chunks[0].timestamp
        if self.timeline.timeline:
            return self.timeline.timeline[0].timestamp
        return 0

    @property
    def end_time(self) -> int:
        metadata = self.timeline.recording_metadata
        if metadata is not None:
            return metadata.end_time
        if self._chunks:
            return self.start_time + self.chunked_duration_ms()
        if self.timeline.timeline:
            return self.timeline.timeline[-1].timestamp
        return 0

    @property
    def duration_ms(self) -> int:
        return max(0, self.end_time - self.start_time)

    def chunked_duration_ms(self) -> int:
        """Total playable duration when playing from chunks."""
        return sum(chunk.duration_ms for chunk in self._chunks)

    async def open(self) -> PlaybackMode:
        """Pick the initial playback source and start playing."""
        if self.timeline.has_video:
            try:
                data = await self.media.fetch_merged_video(self.session_id)
                decoded_ms = await self.player.load(data)
            except Exception as exc:
                await self.report_merged_error(f"Merged video failed to load: {exc}")
                return self._mode
            self._using_merged = True
            self._mode = PlaybackMode.PLAYING_MERGED
            self.player.play()
            await self.report_merged_duration(decoded_ms)
        elif self._chunks:
            try:
                await self._switch_to(0, 0)
            except PlaybackError as exc:
                self._enter_idle(str(exc))
        else:
            self._enter_idle("No video recording available")
        _logger.info("Replay opened for session %s in %s", self.session_id, self._mode)
        return self._mode

    def is_merged_duration_corrupt(self, decoded_duration_ms: int) -> bool:
        """True when the merged video is far shorter than the recording."""
        metadata = self.timeline.recording_metadata
        expected = (
            metadata.total_duration_ms
            if metadata is not None
            else self.chunked_duration_ms()
        )
        if expected <= 0:
            return False
        return decoded_duration_ms < self.corruption_threshold * expected

    async def report_merged_duration(self, decoded_duration_ms: int) -> None:
        """Check the decoded duration reported by the player."""
        if not self._using_merged:
            return
        if self.is_merged_duration_corrupt(decoded_duration_ms):
            metadata = self.timeline.recording_metadata
            expected = metadata.total_duration_ms if metadata else None
            await self._degrade(
                f"Merged video lasts {decoded_duration_ms} ms of an expected "
                f"{expected} ms; playing individual chunks"
            )

    async def report_merged_error(self, message: str) -> None:
        """Handle a load or decode failure of the merged video."""
        if self.merged_invalid:
            return
        await self._degrade(message)

    def current_time_ms(self) -> int:
        """Absolute epoch time under the playhead."""
        if self._using_merged:
            return self.start_time + self.player.position_ms()
        if not self._chunks or self._mode == PlaybackMode.IDLE:
            return self.start_time
        return (
            self.start_time
            + self._chunk_position * self.chunk_duration_ms
            + self.player.position_ms()
        )

    def resolve_seek(self, timestamp: int) -> tuple[int, int]:
        """Map an absolute time to ``(chunk position, offset)`` in chunked mode."""
        if not self._chunks:
            raise PlaybackError(f"No chunks recorded for session {self.session_id}")
        relative = max(0, timestamp - self.start_time)
        position, offset = divmod(relative, self.chunk_duration_ms)
        last = len(self._chunks) - 1
        if position > last:
            position = last
            offset = self._chunks[last].duration_ms
        return position, min(offset, self._chunks[position].duration_ms)

    async def seek(self, timestamp: int) -> None:
        """Move playback to an absolute time."""
        if self._using_merged:
            self.player.seek(max(0, min(timestamp, self.end_time) - self.start_time))
            return
        if not self._chunks:
            return
        if self._switching:
            self._pending_seek = timestamp
            return
        position, offset = self.resolve_seek(timestamp)
        reloading = self._mode in (PlaybackMode.STOPPED, PlaybackMode.IDLE)
        if position == self._chunk_position and not reloading:
            self.player.seek(offset)
            return
        await self._switch_to(position, offset)

    async def seek_to_entry(self, entry: TimelineEntry) -> None:
        """Jump to the moment a timeline entry happened."""
        await self.seek(entry.timestamp)

    async def on_chunk_ended(self) -> None:
        """Advance to the next chunk, or stop after the last one."""
        if self._using_merged or not self._chunks:
            return
        if self._chunk_position + 1 < len(self._chunks):
            await self._switch_to(self._chunk_position + 1, 0)
            return
        self.player.pause()
        self._mode = PlaybackMode.STOPPED
        _logger.info("Replay reached the end of session %s", self.session_id)

    def pause(self) -> None:
        playing = (PlaybackMode.PLAYING_MERGED, PlaybackMode.PLAYING_CHUNKED)
        if self._mode not in playing:
            return
        self._resume_mode = self._mode
        self._mode = PlaybackMode.PAUSED
        self.player.pause()

    def resume(self) -> None:
        if self._mode != PlaybackMode.PAUSED or self._resume_mode is None:
            return
        self._mode = self._resume_mode
        self._resume_mode = None
        self.player.play()

    def progress(self) -> float:
        """Fraction of the session already played."""
        return self._relative(self.current_time_ms())

    def decision_markers(self) -> list[DecisionMarker]:
        """Backend decisions positioned on the progress bar."""
        return [
            DecisionMarker(entry=entry, position=self._relative(entry.timestamp))
            for entry in self.timeline.decisions
        ]

    def is_active(self, entry: TimelineEntry) -> bool:
        """Whether ``entry`` is close enough to the playhead to highlight."""
        tolerance = self.active_tolerance * self.duration_ms
        return abs(entry.timestamp - self.current_time_ms()) < tolerance

    def _relative(self, timestamp: int) -> float:
        duration = self.duration_ms
        if duration <= 0:
            return 0.0
        return min(1.0, max(0.0, (timestamp - self.start_time) / duration))

    async def _degrade(self, message: str) -> None:
        self.merged_invalid = True
        self.video_error = message
        self._using_merged = False
        _logger.warning(
            "Merged video unusable for session %s: %s", self.session_id, message
        )
        self.player.pause()
        if not self._chunks:
            self._enter_idle(message)
            return
        if self._mode == PlaybackMode.PAUSED:
            self._resume_mode = PlaybackMode.PLAYING_CHUNKED
        else:
            self._mode = PlaybackMode.PLAYING_CHUNKED
        try:
            await self._switch_to(0, 0)
        except PlaybackError:
            # no playable source left; a later seek may still load a chunk
            self._enter_idle(message)

    def _enter_idle(self, message: str) -> None:
        self._mode = PlaybackMode.IDLE
        self._resume_mode = None
        self.video_error = self.video_error or message

    async def _switch_to(self, position: int, offset: int) -> None:
        chunk = self._chunks[position]
        self._switching = True
        try:
            data = await self.media.fetch_chunk(self.session_id, chunk.chunk_index)
            await self.player.load(data)
        except Exception as exc:
            self.video_error = f"Chunk {chunk.chunk_index} failed to load: {exc}"
            self._pending_seek = None
            _logger.warning(
                "Chunk %s unavailable for session %s: %s",
                chunk.chunk_index,
                self.session_id,
                exc,
            )
            raise PlaybackError(self.video_error) from exc
        finally:
            self._switching = False
        self._chunk_position = position
        self.player.seek(offset)
        if self._mode == PlaybackMode.PAUSED:
            self._resume_mode = PlaybackMode.PLAYING_CHUNKED
        else:
            self._mode = PlaybackMode.PLAYING_CHUNKED
            self.player.play()

        pending, self._pending_seek = self._pending_seek, None
        if pending is not None:
            await self.seek(pending)
