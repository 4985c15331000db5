"""At-least-once delivery of sequenced application events."""

import asyncio
import contextlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from session_replay.domain.events import (
    EventPayload,
    EventType,
    LocationPayload,
    UIEvent,
    build_payload,
)
from session_replay.domain.sequencing import SequenceCounter, epoch_ms, new_event_id

_logger = logging.getLogger(__name__)

EventListener = Callable[[UIEvent], None]


class EventTransport(Protocol):
    """Delivery paths for event batches."""

    async def send_events(self, session_id: str, events: list[UIEvent]) -> None:
        """Deliver a batch and wait for the ack; raise on failure."""

    def send_events_beacon(self, session_id: str, events: list[UIEvent]) -> bool:
        """Hand a batch off without waiting; return True if it was accepted."""


@dataclass
class EventLogger:
    """Session-scoped event queue with immediate, periodic and teardown flushes.

    Every flush works on a take-and-clear snapshot of the queue. A failed
    batch is pushed back to the front, so consumers must order by
    ``sequence_number`` and tolerate duplicates.
    """

    transport: EventTransport
    flush_interval_seconds: float = 0.5
    send_immediately: bool = True
    batch_size: int = 1
    enabled: bool = True
    clock: Callable[[], int] = epoch_ms
    _session_id: str | None = field(default=None, init=False, repr=False)
    _sequence: SequenceCounter = field(
        default_factory=SequenceCounter, init=False, repr=False
    )
    _queue: list[UIEvent] = field(default_factory=list, init=False, repr=False)
    _flushing: bool = field(default=False, init=False, repr=False)
    _interval_task: asyncio.Task[None] | None = field(
        default=None, init=False, repr=False
    )
    _flush_tasks: set[asyncio.Task[None]] = field(
        default_factory=set, init=False, repr=False
    )
    _listeners: list[EventListener] = field(
        default_factory=list, init=False, repr=False
    )

    @property
    def session_id(self) -> str | None:
        """Session the logger is currently bound to."""
        return self._session_id

    @property
    def event_count(self) -> int:
        """Number of events logged for the current session."""
        return self._sequence.value

    def local_events(self) -> list[UIEvent]:
        """Events still waiting for delivery."""
        return list(self._queue)

    def initialize(self, session_id: str) -> None:
        """Bind to a session; must be called from a running event loop."""
        if self._session_id == session_id:
            _logger.debug("Event logger already initialized for %s", session_id)
            return
        if self._session_id is not None:
            _logger.info(
                "Switching event logger from session %s to %s",
                self._session_id,
                session_id,
            )
            self.flush_sync()
            if self._queue:
                _logger.warning(
                    "Dropping %s undelivered events of session %s",
                    len(self._queue),
                    self._session_id,
                )
        self._session_id = session_id
        self._sequence.reset()
        self._queue = []
        self._start_interval()
        _logger.info("Event logger initialized for session %s", session_id)

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable event capture."""
        self.enabled = enabled

    def add_listener(self, listener: EventListener) -> None:
        """Register a callback invoked for every logged event."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        """Unregister a callback."""
        self._listeners = [item for item in self._listeners if item is not listener]

    def log_event(
        self,
        event_type: EventType,
        payload: Mapping[str, object] | EventPayload | None = None,
    ) -> UIEvent | None:
        """Record an event and schedule its delivery."""
        if not self.enabled or self._session_id is None:
            _logger.warning(
                "Cannot log %s (enabled=%s, session=%s)",
                event_type,
                self.enabled,
                self._session_id,
            )
            return None
        validated = build_payload(event_type, payload)
        event = UIEvent(
            session_id=self._session_id,
            event_id=new_event_id(),
            type=event_type,
            payload=validated,
            timestamp=self.clock(),
            sequence_number=self._sequence.next(),
        )
        self._queue.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _logger.exception("Event listener failed for %s", event.event_id)
        _logger.debug("Event logged: %s seq=%s", event_type, event.sequence_number)
        if self.send_immediately or len(self._queue) >= self.batch_size:
            self._schedule_flush()
        return event

    def log_step_started(self, step_name: str, **details: object) -> UIEvent | None:
        """Log the start of a workflow step."""
        return self.log_event(
            EventType.STEP_STARTED,
            {"step_name": step_name, "details": details or None},
        )

    def log_step_completed(
        self, step_name: str, result: str | None = None, **details: object
    ) -> UIEvent | None:
        """Log the completion of a workflow step."""
        return self.log_event(
            EventType.STEP_COMPLETED,
            {"step_name": step_name, "result": result, "details": details or None},
        )

    def log_instruction_shown(
        self, message: str, step_name: str | None = None
    ) -> UIEvent | None:
        """Log an instruction displayed to the user."""
        return self.log_event(
            EventType.INSTRUCTION_SHOWN, {"message": message, "step_name": step_name}
        )

    def log_button_clicked(
        self, button_id: str, button_label: str | None = None
    ) -> UIEvent | None:
        """Log a button press."""
        return self.log_event(
            EventType.BUTTON_CLICKED,
            {"button_id": button_id, "button_label": button_label},
        )

    def log_document_captured(
        self, document_type: str, side: str | None = None
    ) -> UIEvent | None:
        """Log a document capture, using the side-specific type when known."""
        event_type = {
            "front": EventType.DOCUMENT_FRONT_CAPTURED,
            "back": EventType.DOCUMENT_BACK_CAPTURED,
        }.get(side or "", EventType.DOCUMENT_CAPTURED)
        return self.log_event(
            event_type, {"document_type": document_type, "document_side": side}
        )

    def log_face_check_result(
        self, is_match: bool, score: float, confidence: float
    ) -> UIEvent | None:
        """Log the face match outcome shown to the user."""
        return self.log_event(
            EventType.FACE_CHECK_RESULT_SHOWN,
            {
                "result": is_match,
                "score": score,
                "confidence": confidence,
                "message": "Face match successful" if is_match else "Face match failed",
            },
        )

    def log_liveness_check_result(
        self,
        passed: bool,
        confidence: float,
        checks: list[dict[str, object]] | None = None,
    ) -> UIEvent | None:
        """Log the liveness outcome shown to the user."""
        return self.log_event(
            EventType.LIVENESS_CHECK_COMPLETED,
            {
                "result": passed,
                "confidence": confidence,
                "checks": checks,
                "message": (
                    "Liveness check passed" if passed else "Liveness check failed"
                ),
            },
        )

    def log_location_check(
        self,
        verified: bool,
        *,
        latitude: float | None = None,
        longitude: float | None = None,
        accuracy: float | None = None,
        distance_km: float | None = None,
        message: str | None = None,
    ) -> UIEvent | None:
        """Log the location verification display."""
        return self.log_event(
            EventType.LOCATION_CHECK_DISPLAY,
            LocationPayload(
                verified=verified,
                latitude=latitude,
                longitude=longitude,
                accuracy=accuracy,
                distance_km=distance_km,
                message=message,
            ),
        )

    def log_error(
        self, error_code: str, error_message: str, step_name: str | None = None
    ) -> UIEvent | None:
        """Log an error surfaced to the user."""
        return self.log_event(
            EventType.ERROR_DISPLAYED,
            {
                "error_code": error_code,
                "error_message": error_message,
                "step_name": step_name,
            },
        )

    def log_warning(self, message: str, step_name: str | None = None) -> UIEvent | None:
        """Log a warning surfaced to the user."""
        return self.log_event(
            EventType.WARNING_DISPLAYED, {"message": message, "step_name": step_name}
        )

    def log_consent_given(self, consents: dict[str, bool]) -> UIEvent | None:
        """Log the consents accepted by the user."""
        return self.log_event(EventType.CONSENT_GIVEN, {"consents": consents})

    def log_session_started(self, **metadata: object) -> UIEvent | None:
        """Log the start of the verification session."""
        return self.log_event(
            EventType.SESSION_STARTED, {"metadata": metadata or None}
        )

    def log_session_completed(
        self, success: bool, verification_results: dict[str, object] | None = None
    ) -> UIEvent | None:
        """Log the end of the session as completed or failed."""
        event_type = (
            EventType.SESSION_COMPLETED if success else EventType.SESSION_FAILED
        )
        return self.log_event(
            event_type,
            {"success": success, "verification_results": verification_results},
        )

    async def flush(self) -> None:
        """Send the queued events; requeue them at the front on failure."""
        if self._flushing or not self._queue:
            return
        session_id = self._session_id
        if session_id is None:
            _logger.warning("No session bound; discarding %s events", len(self._queue))
            self._queue = []
            return

        self._flushing = True
        batch, self._queue = self._queue, []
        try:
            await self.transport.send_events(session_id, batch)
        except Exception as exc:
            _logger.warning(
                "Failed to flush %s events for session %s: %s",
                len(batch),
                session_id,
                exc,
            )
            self._requeue(session_id, batch)
        else:
            _logger.debug("Flushed %s events for session %s", len(batch), session_id)
        finally:
            self._flushing = False

    def flush_sync(self) -> bool:
        """Hand the queue to the non-blocking beacon path.

        The snapshot is only dropped when the transport accepts it.
        """
        if not self._queue or self._session_id is None:
            return False
        batch, self._queue = self._queue, []
        accepted = self.transport.send_events_beacon(self._session_id, batch)
        if accepted:
            _logger.info("Beacon accepted %s events", len(batch))
        else:
            _logger.warning("Beacon refused %s events", len(batch))
            self._queue = batch + self._queue
        return accepted

    async def stop(self) -> None:
        """Stop periodic flushing and deliver what is left."""
        _logger.info("Stopping event logger (%s events queued)", len(self._queue))
        await self._cancel_interval()
        if self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
        await self.flush()
        if self._queue:
            self.flush_sync()
        self._session_id = None

    def teardown(self) -> None:
        """Exit path: stop the timer and fire a beacon without waiting."""
        if self._interval_task is not None:
            self._interval_task.cancel()
            self._interval_task = None
        self.flush_sync()

    def _requeue(self, session_id: str, batch: list[UIEvent]) -> None:
        if session_id == self._session_id:
            self._queue = batch + self._queue
            return
        # the logger moved on to another session while this batch was in flight
        if not self.transport.send_events_beacon(session_id, batch):
            _logger.warning(
                "Lost %s events of session %s after session switch",
                len(batch),
                session_id,
            )

    def _schedule_flush(self) -> None:
        task = asyncio.get_running_loop().create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    def _start_interval(self) -> None:
        if self._interval_task is not None:
            self._interval_task.cancel()
        self._interval_task = asyncio.get_running_loop().create_task(
            self._flush_periodically()
        )

    async def _cancel_interval(self) -> None:
        if self._interval_task is None:
            return
        self._interval_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._interval_task
        self._interval_task = None

    async def _flush_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval_seconds)
            await self.flush()
