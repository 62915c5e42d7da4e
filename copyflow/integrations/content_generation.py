from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from copyflow.core.exceptions import PermanentUpstreamError

logger = logging.getLogger(__name__)


def parse_titles(raw: Any) -> list[str]:
    """Titles arrive as a list or as a JSON-encoded list."""
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Could not parse youtube_titles: %s", raw[:200])
            return []
    if isinstance(raw, list):
        return [str(t) for t in raw if t]
    return []


@dataclass
class GeneratedContent:
    id: str | None
    social_copy: str = ""
    youtube_titles: list[str] = field(default_factory=list)
    youtube_description: str = ""
    duplicate: bool = False

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> "GeneratedContent":
        content_id = body.get("id")
        return cls(
            id=str(content_id) if content_id is not None else None,
            social_copy=body.get("social_copy") or "",
            youtube_titles=parse_titles(body.get("youtube_titles")),
            youtube_description=body.get("youtube_description") or "",
            duplicate=bool(body.get("duplicate", False)),
        )


class ContentGenerationClient:
    """Client for the internal social-copy generation service."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def generate(
        self,
        *,
        task_id: str,
        transcript: str | None = None,
        video_description: str | None = None,
        client_id: str | None = None,
        asset_id: str | None = None,
    ) -> GeneratedContent:
        """Generate social copy. Any non-2xx response raises ``PermanentUpstreamError``."""
        payload: dict[str, Any] = {"clickup_task_id": task_id}
        if transcript:
            payload["transcript"] = transcript
        if video_description:
            payload["video_description"] = video_description
        if client_id:
            payload["client_id"] = client_id
        if asset_id:
            payload["shade_asset_id"] = asset_id

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json=payload, headers=self._headers())

        if not response.is_success:
            raise PermanentUpstreamError("generate-social-copy", response.status_code, response.text[:2000])

        body = response.json() if response.content else {}
        return GeneratedContent.from_response(body)
