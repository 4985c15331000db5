"""HTTP client for the external verification details service."""

from dataclasses import dataclass

import httpx

from session_replay.services.recordings import SessionDetailsClient


@dataclass
class HttpxSessionDetailsClient(SessionDetailsClient):
    """Session details client implemented with httpx."""

    base_url: str
    http_client: httpx.AsyncClient
    token: str | None = None

    @classmethod
    def create(
        cls, base_url: str, token: str | None = None
    ) -> "HttpxSessionDetailsClient":
        """Create a details client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            token=token,
        )

    async def get_session_details(self, session_id: str) -> dict[str, object]:
        """Fetch details for a session; unknown sessions yield an empty dict."""
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        response = await self.http_client.get(
            f"{self.base_url}/sessions/{session_id}", headers=headers, timeout=15
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            return {}
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
