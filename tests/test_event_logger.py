"""Tests for event logging and delivery."""

import asyncio
import itertools

import pytest
from pydantic import ValidationError

from session_replay.domain.events import EventType, UIEvent
from session_replay.services.event_logger import EventLogger
from session_replay.services.timeline import build_timeline
from tests.conftest import FakeEventTransport


def _logger(transport: FakeEventTransport, **kwargs: object) -> EventLogger:
    clock = itertools.count(10_000, 100)
    options = {
        "send_immediately": False,
        "batch_size": 100,
        "flush_interval_seconds": 60,
    }
    options.update(kwargs)
    return EventLogger(transport=transport, clock=lambda: next(clock), **options)


def test_sequence_numbers_are_monotonic_per_session() -> None:
    transport = FakeEventTransport()
    logger = _logger(transport)

    async def scenario() -> list[UIEvent]:
        logger.initialize("sess-1")
        events = [
            logger.log_step_started("document"),
            logger.log_button_clicked("capture", "Take photo"),
            logger.log_step_completed("document", result="ok"),
        ]
        await logger.stop()
        return [event for event in events if event is not None]

    events = asyncio.run(scenario())

    assert [event.sequence_number for event in events] == [0, 1, 2]
    assert len({event.event_id for event in events}) == 3
    assert events[1].payload == {"buttonId": "capture", "buttonLabel": "Take photo"}
    assert [event.event_id for event in transport.delivered()] == [
        event.event_id for event in events
    ]


def test_invalid_payload_is_rejected() -> None:
    logger = _logger(FakeEventTransport())

    async def scenario() -> None:
        logger.initialize("sess-1")
        try:
            logger.log_event(EventType.ERROR_DISPLAYED, {"unexpected": True})
        finally:
            await logger.stop()

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_failed_flush_requeues_batch_at_front() -> None:
    transport = FakeEventTransport()
    logger = _logger(transport)

    async def scenario() -> None:
        logger.initialize("sess-1")
        for index in range(5):
            logger.log_instruction_shown(f"instruction {index}")
        await logger.flush()
        transport.fail_sends = 1
        logger.log_warning("A")
        await logger.flush()
        assert [event.sequence_number for event in logger.local_events()] == [5]
        logger.log_warning("B")
        await logger.flush()
        await logger.stop()

    asyncio.run(scenario())

    last_batch = transport.sent[-1][1]
    assert [event.sequence_number for event in last_batch] == [5, 6]
    assert [event.payload["message"] for event in last_batch] == ["A", "B"]

    delivered = transport.delivered()
    redelivered = delivered + last_batch
    entries = build_timeline(
        "sess-1", metadata=None, chunks=[], events=redelivered, decisions=[]
    )
    sequences = [entry.data.sequence_number for entry in entries]
    assert sequences == [0, 1, 2, 3, 4, 5, 6]


def test_immediate_mode_flushes_in_background() -> None:
    transport = FakeEventTransport()
    logger = _logger(transport, send_immediately=True)

    async def scenario() -> None:
        logger.initialize("sess-1")
        logger.log_session_started(flow="kyc")
        logger.log_consent_given({"terms": True, "recording": True})
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert logger.local_events() == []
        await logger.stop()

    asyncio.run(scenario())

    assert [event.type for event in transport.delivered()] == [
        EventType.SESSION_STARTED,
        EventType.CONSENT_GIVEN,
    ]


def test_initialize_same_session_is_idempotent() -> None:
    logger = _logger(FakeEventTransport())

    async def scenario() -> int:
        logger.initialize("sess-1")
        logger.log_warning("first")
        logger.initialize("sess-1")
        event = logger.log_warning("second")
        await logger.stop()
        assert event is not None
        return event.sequence_number

    assert asyncio.run(scenario()) == 1


def test_switching_session_beacons_previous_queue_and_resets_sequence() -> None:
    transport = FakeEventTransport()
    logger = _logger(transport)

    async def scenario() -> UIEvent | None:
        logger.initialize("sess-a")
        logger.log_warning("left behind")
        logger.initialize("sess-b")
        event = logger.log_warning("new session")
        await logger.stop()
        return event

    event = asyncio.run(scenario())

    assert transport.beacons[0][0] == "sess-a"
    assert transport.beacons[0][1][0].payload == {"message": "left behind"}
    assert event is not None
    assert event.session_id == "sess-b"
    assert event.sequence_number == 0


def test_refused_beacon_keeps_events_queued() -> None:
    transport = FakeEventTransport(accept_beacons=False)
    logger = _logger(transport)

    async def scenario() -> tuple[bool, int]:
        logger.initialize("sess-1")
        logger.log_warning("pending")
        accepted = logger.flush_sync()
        remaining = len(logger.local_events())
        transport.accept_beacons = True
        await logger.stop()
        return accepted, remaining

    accepted, remaining = asyncio.run(scenario())

    assert accepted is False
    assert remaining == 1
    assert len(transport.sent) == 1


def test_teardown_fires_beacon() -> None:
    transport = FakeEventTransport()
    logger = _logger(transport)

    async def scenario() -> None:
        logger.initialize("sess-1")
        logger.log_error("CAMERA", "Camera not available", step_name="selfie")
        logger.teardown()

    asyncio.run(scenario())

    assert len(transport.beacons) == 1
    assert transport.beacons[0][1][0].type == EventType.ERROR_DISPLAYED


def test_disabled_logger_drops_events() -> None:
    transport = FakeEventTransport()
    logger = _logger(transport)

    async def scenario() -> UIEvent | None:
        logger.initialize("sess-1")
        logger.set_enabled(False)
        event = logger.log_warning("ignored")
        await logger.stop()
        return event

    assert asyncio.run(scenario()) is None
    assert transport.delivered() == []


def test_listeners_receive_events_and_failures_are_isolated() -> None:
    logger = _logger(FakeEventTransport())
    seen: list[EventType] = []

    def failing(_event: UIEvent) -> None:
        raise RuntimeError("listener bug")

    async def scenario() -> None:
        logger.initialize("sess-1")
        logger.add_listener(failing)
        logger.add_listener(lambda event: seen.append(event.type))
        logger.log_document_captured("passport", side="front")
        logger.remove_listener(failing)
        logger.log_session_completed(success=False)
        await logger.stop()

    asyncio.run(scenario())

    assert seen == [EventType.DOCUMENT_FRONT_CAPTURED, EventType.SESSION_FAILED]
    assert logger.session_id is None


def test_log_event_without_session_returns_none() -> None:
    logger = _logger(FakeEventTransport())

    assert logger.log_warning("too early") is None


def test_location_check_accepts_only_schema_fields() -> None:
    logger = _logger(FakeEventTransport())

    async def scenario() -> UIEvent | None:
        logger.initialize("sess-1")
        event = logger.log_location_check(
            True, latitude=52.37, longitude=4.9, distance_km=1.5
        )
        await logger.stop()
        return event

    event = asyncio.run(scenario())

    assert event is not None
    assert event.type == EventType.LOCATION_CHECK_DISPLAY
    assert event.payload == {
        "verified": True,
        "latitude": 52.37,
        "longitude": 4.9,
        "distanceKm": 1.5,
    }
    with pytest.raises(TypeError):
        logger.log_location_check(True, city="Amsterdam")  # type: ignore[call-arg]
