"""Background merge of stored chunks into a single video."""

import logging
from collections import deque
from dataclasses import dataclass, field

from session_replay.domain.recording import MergeStatus
from session_replay.services.recordings import (
    MediaStorage,
    MergeQueue,
    RecordingNotFoundError,
    RecordingRepository,
    chunk_path,
    merged_video_path,
)

_logger = logging.getLogger(__name__)


@dataclass
class MergeJob:
    """State of one merge request."""

    session_id: str
    status: MergeStatus = MergeStatus.PENDING
    output_path: str | None = None
    error: str | None = None


@dataclass
class VideoMergeService(MergeQueue):
    """Concatenates chunk binaries in index order.

    Jobs are queued by ``enqueue`` and executed by ``run_pending``, which
    the API schedules as a background task. Storage calls are blocking, so
    ``run_pending`` is synchronous and runs in the threadpool.
    """

    repository: RecordingRepository
    storage: MediaStorage
    _jobs: dict[str, MergeJob] = field(default_factory=dict, init=False, repr=False)
    _queue: deque[str] = field(default_factory=deque, init=False, repr=False)

    def enqueue(self, session_id: str) -> MergeStatus:
        """Queue a merge unless one is already waiting or running."""
        job = self._jobs.get(session_id)
        if job is not None and job.status in (
            MergeStatus.PENDING,
            MergeStatus.PROCESSING,
        ):
            return job.status
        self._jobs[session_id] = MergeJob(session_id=session_id)
        self._queue.append(session_id)
        _logger.info("Merge queued for session %s", session_id)
        return MergeStatus.PENDING

    def status(self, session_id: str) -> MergeJob:
        """Return the job for a session, derived from storage if unknown."""
        job = self._jobs.get(session_id)
        if job is not None:
            return job
        metadata = self.repository.get_metadata(session_id)
        if metadata is not None and metadata.merged:
            return MergeJob(
                session_id=session_id,
                status=MergeStatus.COMPLETED,
                output_path=metadata.merged_video_path,
            )
        return MergeJob(session_id=session_id, status=MergeStatus.NOT_FOUND)

    def run_pending(self) -> None:
        """Process queued jobs until the queue is empty."""
        while True:
            try:
                session_id = self._queue.popleft()
            except IndexError:
                return
            job = self._jobs[session_id]
            job.status = MergeStatus.PROCESSING
            try:
                job.output_path = self.merge(session_id)
            except Exception as exc:
                job.status = MergeStatus.FAILED
                job.error = str(exc)
                _logger.exception("Merge failed for session %s", session_id)
            else:
                job.status = MergeStatus.COMPLETED

    def merge(self, session_id: str) -> str:
        """Write the merged video and flag the recording; return its path."""
        chunks = self.repository.list_chunks(session_id)
        if not chunks:
            raise RecordingNotFoundError(f"No chunks stored for session {session_id}")
        merged = b"".join(
            self.storage.download(chunk_path(session_id, chunk.chunk_index))
            for chunk in chunks
        )
        path = merged_video_path(session_id)
        self.storage.upload(path, merged, "video/webm")
        self.repository.mark_merged(session_id, path)
        _logger.info(
            "Merged %s chunks for session %s (%s bytes)",
            len(chunks),
            session_id,
            len(merged),
        )
        return path
