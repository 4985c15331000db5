"""Recording ingestion and replay endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    Header,
    HTTPException,
    Request,
    Response,
    UploadFile,
    status,
)

from session_replay.api.models import (  # noqa: TC001
    CompleteRecordingRequest,
    EventBatchRequest,
)
from session_replay.domain.events import BackendDecision  # noqa: TC001
from session_replay.services.recordings import (
    ChunkOrderError,
    InvalidEventBatchError,
    RecordingClosedError,
    RecordingIncompleteError,
    RecordingNotFoundError,
)

if TYPE_CHECKING:
    from session_replay.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["recordings"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.post("/session/recording/chunk")
async def upload_chunk(  # noqa: PLR0913
    request: Request,
    session_id: str = Form(alias="sessionId"),
    chunk_index: int = Form(alias="chunkIndex", ge=0),
    timestamp: int = Form(),
    duration: int = Form(ge=0),
    chunk: UploadFile = File(),
) -> dict[str, object]:
    """Store one recorded chunk."""
    container: AppContainer = request.app.state.container
    data = await chunk.read()
    try:
        metadata = container.recording_service.save_chunk(
            session_id=session_id,
            chunk_index=chunk_index,
            timestamp=timestamp,
            duration_ms=duration,
            data=data,
        )
    except (ChunkOrderError, RecordingClosedError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    return {"success": True, "chunk": metadata.to_wire()}


@router.post("/session/recording/complete")
async def complete_recording(
    body: CompleteRecordingRequest,
    request: Request,
    background_tasks: BackgroundTasks,
) -> dict[str, object]:
    """Finalize a recording and schedule its merge."""
    container: AppContainer = request.app.state.container
    try:
        metadata = container.recording_service.complete_recording(body.to_metadata())
    except RecordingIncompleteError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    background_tasks.add_task(container.merge_service.run_pending)
    return {"success": True, "metadata": metadata.to_wire()}


@router.post("/session/events/batch")
async def save_event_batch(
    body: EventBatchRequest, request: Request
) -> dict[str, object]:
    """Store a batch of UI events."""
    container: AppContainer = request.app.state.container
    try:
        accepted = container.recording_service.save_events(
            body.session_id, body.events
        )
    except InvalidEventBatchError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    return {"success": True, "accepted": accepted}


@router.post("/session/decision")
async def save_decision(body: BackendDecision, request: Request) -> dict[str, object]:
    """Record a backend verification decision."""
    container: AppContainer = request.app.state.container
    decision = container.recording_service.save_decision(body)
    return {"success": True, "decision": decision.to_wire()}


@router.get("/session/{session_id}/timeline", dependencies=[Depends(require_admin)])
async def session_timeline(session_id: str, request: Request) -> dict[str, object]:
    """Return the synchronized replay timeline."""
    container: AppContainer = request.app.state.container
    timeline = container.recording_service.get_timeline(session_id)
    if timeline is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No recording data found for this session",
        )
    return {"success": True, **timeline.to_wire()}


@router.get(
    "/session/{session_id}/chunk/{chunk_index}",
    dependencies=[Depends(require_admin)],
)
async def session_chunk(
    session_id: str, chunk_index: int, request: Request
) -> Response:
    """Return a stored chunk binary."""
    container: AppContainer = request.app.state.container
    try:
        data = container.recording_service.get_chunk(session_id, chunk_index)
    except RecordingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    return Response(content=data, media_type="video/webm")


@router.get("/session/{session_id}/video", dependencies=[Depends(require_admin)])
async def session_video(session_id: str, request: Request) -> Response:
    """Return the merged video binary."""
    container: AppContainer = request.app.state.container
    try:
        data = container.recording_service.get_merged_video(session_id)
    except RecordingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    return Response(content=data, media_type="video/webm")


@router.get("/session/{session_id}/details", dependencies=[Depends(require_admin)])
async def session_details(session_id: str, request: Request) -> dict[str, object]:
    """Return verification details from the external service."""
    container: AppContainer = request.app.state.container
    details = await container.recording_service.get_session_details(session_id)
    return {"success": True, "details": details}


@router.get("/sessions/recordings", dependencies=[Depends(require_admin)])
async def list_recordings(request: Request, limit: int = 50) -> dict[str, object]:
    """Return recently finalized recordings."""
    container: AppContainer = request.app.state.container
    recordings = container.recording_service.list_recordings(limit)
    return {
        "success": True,
        "sessions": [recording.to_wire() for recording in recordings],
    }


@router.post("/session/{session_id}/merge", dependencies=[Depends(require_admin)])
async def request_merge(
    session_id: str, request: Request, background_tasks: BackgroundTasks
) -> dict[str, object]:
    """Queue a merge of the stored chunks."""
    container: AppContainer = request.app.state.container
    try:
        merge_status = container.recording_service.request_merge(session_id)
    except RecordingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    background_tasks.add_task(container.merge_service.run_pending)
    return {"success": True, "sessionId": session_id, "status": merge_status.value}


@router.get(
    "/session/{session_id}/merge/status", dependencies=[Depends(require_admin)]
)
async def merge_status(session_id: str, request: Request) -> dict[str, object]:
    """Return the merge job status."""
    container: AppContainer = request.app.state.container
    job = container.merge_service.status(session_id)
    return {
        "success": True,
        "sessionId": session_id,
        "status": job.status.value,
        "outputPath": job.output_path,
        "error": job.error,
    }
