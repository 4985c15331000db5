"""Tests for container wiring."""

import asyncio

from session_replay.config import ClientSettings, Settings
from session_replay.containers import build_client_container, build_container
from session_replay.domain.timeline import SessionTimeline
from session_replay.services.merge import VideoMergeService
from tests.conftest import FakeVideoPlayer

_JWT_SHAPED_KEY = "header.payload.signature"


def test_build_container_creates_services(settings: Settings) -> None:
    container = build_container(
        settings.model_copy(update={"supabase_service_key": _JWT_SHAPED_KEY})
    )

    assert container.recording_service.merge_queue is container.merge_service
    assert isinstance(container.merge_service, VideoMergeService)
    assert container.recording_service.details_client is None
    asyncio.run(container.close_resources())


def test_build_container_with_details_service(settings: Settings) -> None:
    container = build_container(
        settings.model_copy(
            update={
                "supabase_service_key": _JWT_SHAPED_KEY,
                "session_details_url": "https://verify.example.com",
            }
        )
    )

    assert container.recording_service.details_client is not None
    asyncio.run(container.close_resources())


def test_build_client_container(client_settings: ClientSettings) -> None:
    container = build_client_container(client_settings)
    timeline = SessionTimeline(session_id="sess-1", has_video=False, timeline=[])

    session = container.recording_session("sess-1")
    replayer = container.replayer(timeline, FakeVideoPlayer())
    source = container.media_source(["-f", "v4l2", "-i", "/dev/video0"])

    assert session.uploader.store is container.store_client
    assert session.event_logger.transport is container.store_client
    assert replayer.media is container.store_client
    assert replayer.corruption_threshold == client_settings.merged_corruption_threshold
    assert source.command()[0] == client_settings.ffmpeg_path
    asyncio.run(container.close_resources())
