from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from copyflow.core.exceptions import ConfigurationError, PermanentUpstreamError
from copyflow.integrations.gateway import GatewayClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CustomFieldHandle:
    """One custom field on a fetched task."""

    id: Optional[str]
    name: str
    type: Optional[str] = None
    value: Any = None
    options: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> "CustomFieldHandle":
        type_config = raw.get("type_config") or {}
        return cls(
            id=str(raw["id"]) if raw.get("id") is not None else None,
            name=str(raw.get("name") or ""),
            type=raw.get("type"),
            value=raw.get("value"),
            options=tuple(type_config.get("options") or ()),
        )

    def text(self) -> Optional[str]:
        """Value as text, resolving dropdown option indices to option names."""
        if self.value is None:
            return None
        if isinstance(self.value, str):
            return self.value
        if isinstance(self.value, bool):
            return str(self.value).lower()
        if self.options:
            for option in self.options:
                if str(option.get("orderindex")) == str(self.value):
                    return option.get("name") or str(self.value)
        if isinstance(self.value, (int, float)):
            return str(self.value)
        return str(self.value)

    def is_checked(self) -> bool:
        return self.value is True or self.value == "true"


class TaskFieldIndex:
    """Case-insensitive name lookup over a task's custom fields, built once per task."""

    def __init__(self, custom_fields: list[dict[str, Any]] | None):
        self._by_name: dict[str, CustomFieldHandle] = {}
        for raw in custom_fields or []:
            if not isinstance(raw, dict) or not raw.get("name"):
                continue
            handle = CustomFieldHandle.from_payload(raw)
            # first match wins, same as a linear search
            self._by_name.setdefault(handle.name.lower(), handle)

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._by_name

    def get(self, name: str) -> Optional[CustomFieldHandle]:
        return self._by_name.get(name.lower())

    def text(self, name: str) -> Optional[str]:
        handle = self.get(name)
        return handle.text() if handle else None

    def is_checked(self, name: str) -> bool:
        handle = self.get(name)
        return handle.is_checked() if handle else False


class ClickUpClient:
    """Task fetch and custom field write-back against the ClickUp v2 API."""

    def __init__(self, gateway: GatewayClient, api_token: str | None, base_url: str):
        self.gateway = gateway
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        if not self.api_token:
            raise ConfigurationError("CLICKUP_API_TOKEN is not configured")
        return {
            "Authorization": self.api_token,
            "Content-Type": "application/json",
        }

    async def get_task(self, task_id: str) -> dict[str, Any]:
        response = await self.gateway.get(
            f"{self.base_url}/task/{task_id}",
            headers=self._headers(),
        )
        if not response.is_success:
            logger.error("ClickUp task fetch failed [%s]: %s", response.status_code, response.text[:500])
            raise PermanentUpstreamError("ClickUp task fetch", response.status_code, response.text[:500])
        return response.json()

    async def set_field(self, task_id: str, field_id: str, value: Any) -> httpx.Response:
        """Update one custom field. The raw response is returned for the caller to judge."""
        return await self.gateway.post(
            f"{self.base_url}/task/{task_id}/field/{field_id}",
            headers=self._headers(),
            json={"value": value},
        )
