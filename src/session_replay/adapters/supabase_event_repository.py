"""Supabase-backed event and decision repository."""

from dataclasses import dataclass

from supabase import Client

from session_replay.domain.events import BackendDecision, UIEvent
from session_replay.services.recordings import SessionEventRepository


@dataclass
class SupabaseSessionEventRepository(SessionEventRepository):
    """Supabase implementation for UI events and backend decisions."""

    client: Client

    def save_events(self, events: list[UIEvent]) -> int:
        """Insert events; rows with a known event id are skipped."""
        response = (
            self.client.table("session_events")
            .upsert(
                [event.model_dump(mode="json") for event in events],
                on_conflict="event_id",
                ignore_duplicates=True,
            )
            .execute()
        )
        return len(response.data or [])

    def list_events(self, session_id: str) -> list[UIEvent]:
        """Return the events of a session ordered by sequence number."""
        response = (
            self.client.table("session_events")
            .select("session_id, event_id, type, payload, timestamp, sequence_number")
            .eq("session_id", session_id)
            .order("sequence_number")
            .execute()
        )
        return [UIEvent.model_validate(row) for row in response.data or []]

    def save_decision(self, decision: BackendDecision) -> BackendDecision:
        """Insert a backend decision and return the stored row."""
        response = (
            self.client.table("backend_decisions")
            .insert(decision.model_dump(mode="json"))
            .execute()
        )
        if not response.data:
            raise RuntimeError(f"Failed to store decision {decision.decision_id}")
        return BackendDecision.model_validate(response.data[0])

    def list_decisions(self, session_id: str) -> list[BackendDecision]:
        """Return the decisions of a session ordered by time."""
        response = (
            self.client.table("backend_decisions")
            .select(
                "session_id, decision_id, type, result, score, confidence, "
                "details, timestamp"
            )
            .eq("session_id", session_id)
            .order("timestamp")
            .execute()
        )
        return [BackendDecision.model_validate(row) for row in response.data or []]
