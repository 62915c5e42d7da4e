from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WorkflowRunStepSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    step_name: str
    status: str
    request: Any = None
    response: Any = None
    error_message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class WorkflowRunSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    workflow_name: str
    idempotency_key: str
    status: str
    triggered_by: str | None = None
    attempt: int = 0
    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    heartbeat_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime | None = None


class WorkflowRunDetailSchema(WorkflowRunSchema):
    steps: list[WorkflowRunStepSchema] = Field(default_factory=list)


class DrainResponse(BaseModel):
    ok: bool = True
    processed: int
    remaining: int


class EnqueueRequest(BaseModel):
    task_ids: list[str] = Field(min_length=1, max_length=1000)
    triggered_by: str = "backfill"

    @field_validator("task_ids")
    @classmethod
    def strip_task_ids(cls, value: list[str]) -> list[str]:
        """Drop blanks and duplicates, keeping order."""
        seen: dict[str, None] = {}
        for task_id in value:
            cleaned = task_id.strip()
            if cleaned:
                seen.setdefault(cleaned, None)
        if not seen:
            raise ValueError("task_ids must contain at least one non-empty id")
        return list(seen)


class EnqueueResponse(BaseModel):
    ok: bool = True
    queued: int
    duplicates: int
    skipped: int
