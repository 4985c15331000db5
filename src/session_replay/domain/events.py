"""Structured application events and backend decisions."""

from collections.abc import Mapping
from enum import StrEnum
from typing import Literal

from pydantic import ConfigDict, Field, ValidationInfo, field_validator

from session_replay.domain.wire import WireModel


class EventType(StrEnum):
    """Closed set of events the onboarding flow may record."""

    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    INSTRUCTION_SHOWN = "instruction_shown"
    BUTTON_CLICKED = "button_clicked"
    DOCUMENT_CAPTURED = "document_captured"
    DOCUMENT_FRONT_CAPTURED = "document_front_captured"
    DOCUMENT_BACK_CAPTURED = "document_back_captured"
    DOCUMENT_RETAKE = "document_retake"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_OCR_RESULT = "document_ocr_result"
    DOCUMENT_VERIFIED = "document_verified"
    FACE_VERIFICATION_STARTED = "face_verification_started"
    FACE_CAPTURED = "face_captured"
    FACE_CHECK_RESULT_SHOWN = "face_check_result_shown"
    LIVENESS_CHECK_STARTED = "liveness_check_started"
    LIVENESS_ACTION = "liveness_action"
    LIVENESS_CHECK_COMPLETED = "liveness_check_completed"
    VERIFICATION_ESCALATED = "verification_escalated"
    LOCATION_CAPTURE_STARTED = "location_capture_started"
    LOCATION_CHECK_DISPLAY = "location_check_display"
    FORM_STARTED = "form_started"
    FORM_ANSWER_SUBMITTED = "form_answer_submitted"
    FORM_COMPLETED = "form_completed"
    ERROR_DISPLAYED = "error_displayed"
    WARNING_DISPLAYED = "warning_displayed"
    CONSENT_GIVEN = "consent_given"
    CAMERA_STARTED = "camera_started"
    CAMERA_STOPPED = "camera_stopped"
    RECORDING_UNAVAILABLE = "recording_unavailable"
    SESSION_STARTED = "session_started"
    SESSION_COMPLETED = "session_completed"
    SESSION_FAILED = "session_failed"


class EventPayload(WireModel):
    """Base for per-type payload schemas; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


class StepPayload(EventPayload):
    """Workflow step transitions."""

    step_name: str
    result: str | None = None
    details: dict[str, object] | None = None


class MessagePayload(EventPayload):
    """Instructions, warnings and other user-visible messages."""

    message: str
    step_name: str | None = None


class ButtonPayload(EventPayload):
    """User interaction with a control."""

    button_id: str
    button_label: str | None = None
    step_name: str | None = None


class DocumentPayload(EventPayload):
    """Document capture lifecycle."""

    document_type: str | None = None
    document_side: Literal["front", "back"] | None = None
    document_id: str | None = None
    message: str | None = None


class CheckResultPayload(EventPayload):
    """Outcome of an opaque verification check shown to the user."""

    result: bool | None = None
    score: float | None = None
    confidence: float | None = None
    message: str | None = None
    checks: list[dict[str, object]] | None = None


class LocationPayload(EventPayload):
    """Geolocation capture and verification."""

    verified: bool | None = None
    latitude: float | None = None
    longitude: float | None = None
    accuracy: float | None = None
    distance_km: float | None = None
    message: str | None = None


class FormPayload(EventPayload):
    """Form progress and answers."""

    form_id: str | None = None
    question_id: str | None = None
    answer: str | None = None


class ErrorPayload(EventPayload):
    """Error surfaced to the user."""

    error_code: str
    error_message: str
    step_name: str | None = None


class ConsentPayload(EventPayload):
    """Consent checkboxes accepted by the user."""

    consents: dict[str, bool]


class DevicePayload(EventPayload):
    """Camera and recording device state."""

    device_label: str | None = None
    message: str | None = None


class SessionPayload(EventPayload):
    """Session lifecycle markers."""

    success: bool | None = None
    verification_results: dict[str, object] | None = None
    metadata: dict[str, object] | None = None


PAYLOAD_SCHEMAS: dict[EventType, type[EventPayload]] = {
    EventType.STEP_STARTED: StepPayload,
    EventType.STEP_COMPLETED: StepPayload,
    EventType.INSTRUCTION_SHOWN: MessagePayload,
    EventType.BUTTON_CLICKED: ButtonPayload,
    EventType.DOCUMENT_CAPTURED: DocumentPayload,
    EventType.DOCUMENT_FRONT_CAPTURED: DocumentPayload,
    EventType.DOCUMENT_BACK_CAPTURED: DocumentPayload,
    EventType.DOCUMENT_RETAKE: DocumentPayload,
    EventType.DOCUMENT_UPLOADED: DocumentPayload,
    EventType.DOCUMENT_OCR_RESULT: CheckResultPayload,
    EventType.DOCUMENT_VERIFIED: CheckResultPayload,
    EventType.FACE_VERIFICATION_STARTED: StepPayload,
    EventType.FACE_CAPTURED: DevicePayload,
    EventType.FACE_CHECK_RESULT_SHOWN: CheckResultPayload,
    EventType.LIVENESS_CHECK_STARTED: StepPayload,
    EventType.LIVENESS_ACTION: MessagePayload,
    EventType.LIVENESS_CHECK_COMPLETED: CheckResultPayload,
    EventType.VERIFICATION_ESCALATED: MessagePayload,
    EventType.LOCATION_CAPTURE_STARTED: LocationPayload,
    EventType.LOCATION_CHECK_DISPLAY: LocationPayload,
    EventType.FORM_STARTED: FormPayload,
    EventType.FORM_ANSWER_SUBMITTED: FormPayload,
    EventType.FORM_COMPLETED: FormPayload,
    EventType.ERROR_DISPLAYED: ErrorPayload,
    EventType.WARNING_DISPLAYED: MessagePayload,
    EventType.CONSENT_GIVEN: ConsentPayload,
    EventType.CAMERA_STARTED: DevicePayload,
    EventType.CAMERA_STOPPED: DevicePayload,
    EventType.RECORDING_UNAVAILABLE: DevicePayload,
    EventType.SESSION_STARTED: SessionPayload,
    EventType.SESSION_COMPLETED: SessionPayload,
    EventType.SESSION_FAILED: SessionPayload,
}


def build_payload(
    event_type: EventType, data: Mapping[str, object] | EventPayload | None = None
) -> EventPayload:
    """Validate raw payload data against the schema for ``event_type``."""
    schema = PAYLOAD_SCHEMAS[event_type]
    if isinstance(data, schema):
        return data
    if isinstance(data, EventPayload):
        data = data.model_dump(by_alias=True, exclude_none=True)
    return schema.model_validate(dict(data or {}))


class UIEvent(WireModel):
    """Immutable, sequenced application event."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    event_id: str
    type: EventType
    payload: dict[str, object] = Field(default_factory=dict)
    timestamp: int
    sequence_number: int = Field(ge=0)

    @field_validator("payload", mode="before")
    @classmethod
    def _validate_payload(cls, value: object, info: ValidationInfo) -> object:
        event_type = info.data.get("type")
        if event_type is None:
            return value
        return build_payload(event_type, value).model_dump(  # type: ignore[arg-type]
            mode="json", by_alias=True, exclude_none=True
        )


class DecisionType(StrEnum):
    """Verification outcomes recorded by backend collaborators."""

    FACE_MATCH = "face_match"
    LIVENESS_CHECK = "liveness_check"
    OCR_RESULT = "ocr_result"
    LOCATION_CHECK = "location_check"
    FORM_RESULT = "form_result"
    SESSION_COMPLETE = "session_complete"


class BackendDecision(WireModel):
    """Pass/fail decision produced by an opaque verification check."""

    session_id: str
    decision_id: str
    type: DecisionType
    result: bool
    score: float | None = None
    confidence: float | None = None
    details: dict[str, object] | None = None
    timestamp: int
