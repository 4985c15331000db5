"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from session_replay.adapters.ffmpeg_source import FfmpegMediaSource
from session_replay.adapters.session_details_client import HttpxSessionDetailsClient
from session_replay.adapters.store_client import HttpxRecordingStoreClient
from session_replay.adapters.supabase_event_repository import (
    SupabaseSessionEventRepository,
)
from session_replay.adapters.supabase_media_storage import SupabaseMediaStorage
from session_replay.adapters.supabase_recording_repository import (
    SupabaseRecordingRepository,
)
from session_replay.app_logging import configure_logging
from session_replay.config import ClientSettings, Settings
from session_replay.domain.timeline import SessionTimeline
from session_replay.services.merge import VideoMergeService
from session_replay.services.recording_session import RecordingSession
from session_replay.services.recordings import RecordingStoreService
from session_replay.services.replayer import Replayer, VideoPlayer
from session_replay.services.timeline import TimelineService


@dataclass
class AppContainer:
    """Holds the recording store dependencies."""

    settings: Settings
    recording_service: RecordingStoreService
    merge_service: VideoMergeService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    recording_repository = SupabaseRecordingRepository(supabase_client)
    event_repository = SupabaseSessionEventRepository(supabase_client)
    storage = SupabaseMediaStorage(
        supabase_client, bucket=resolved_settings.recordings_bucket
    )
    merge_service = VideoMergeService(
        repository=recording_repository, storage=storage
    )
    details_client = (
        HttpxSessionDetailsClient.create(
            resolved_settings.session_details_url,
            token=resolved_settings.session_details_token,
        )
        if resolved_settings.session_details_url
        else None
    )
    recording_service = RecordingStoreService(
        repository=recording_repository,
        event_repository=event_repository,
        storage=storage,
        merge_queue=merge_service,
        details_client=details_client,
        merge_on_complete=resolved_settings.merge_on_complete,
    )

    async def close_resources() -> None:
        if details_client is not None:
            await details_client.close()

    return AppContainer(
        settings=resolved_settings,
        recording_service=recording_service,
        merge_service=merge_service,
        close_resources=close_resources,
    )


@dataclass
class ClientContainer:
    """Holds the capture and replay client dependencies."""

    settings: ClientSettings
    store_client: HttpxRecordingStoreClient
    timeline_service: TimelineService
    close_resources: Callable[[], Awaitable[None]]

    def recording_session(self, session_id: str) -> RecordingSession:
        """Create the recording objects for one verification session."""
        return RecordingSession.create(
            session_id,
            store=self.store_client,
            transport=self.store_client,
            settings=self.settings,
        )

    def media_source(self, input_args: list[str]) -> FfmpegMediaSource:
        """Create an ffmpeg capture source for the given device arguments."""
        return FfmpegMediaSource(
            input_args=input_args, ffmpeg_path=self.settings.ffmpeg_path
        )

    def replayer(self, timeline: SessionTimeline, player: VideoPlayer) -> Replayer:
        """Create a replayer for a loaded timeline."""
        return Replayer(
            timeline=timeline,
            media=self.store_client,
            player=player,
            chunk_duration_ms=self.settings.chunk_duration_ms,
            corruption_threshold=self.settings.merged_corruption_threshold,
            active_tolerance=self.settings.active_entry_tolerance,
        )


def build_client_container(settings: ClientSettings | None = None) -> ClientContainer:
    """Create the capture and replay client container."""
    resolved_settings = settings or ClientSettings()
    configure_logging(resolved_settings.log_level)
    store_client = HttpxRecordingStoreClient.create(
        resolved_settings.store_base_url, admin_token=resolved_settings.admin_token
    )

    async def close_resources() -> None:
        await store_client.close()

    return ClientContainer(
        settings=resolved_settings,
        store_client=store_client,
        timeline_service=TimelineService(store_client),
        close_resources=close_resources,
    )
