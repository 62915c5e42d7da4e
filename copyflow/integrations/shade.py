from __future__ import annotations

import httpx

from copyflow.integrations.gateway import GatewayClient


class TranscriptClient:
    """Transcript retrieval from the Shade asset API."""

    def __init__(self, gateway: GatewayClient, api_key: str | None, base_url: str):
        self.gateway = gateway
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def fetch_transcript(self, asset_id: str, drive_id: str) -> httpx.Response:
        return await self.gateway.get(
            f"{self.base_url}/assets/{asset_id}/transcription/file",
            params={"drive_id": drive_id, "type": "txt"},
            headers={"Authorization": self.api_key or ""},
        )
