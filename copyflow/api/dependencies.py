"""Shared API dependencies."""
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from copyflow.config import EngineOptions, Settings, get_settings
from copyflow.core.security import require_service_token
from copyflow.services.queue_drainer import DrainContinuation
from copyflow.services.workflow_engine import WorkflowRunner, build_runner


def get_engine_options(settings: Settings = Depends(get_settings)) -> EngineOptions:
    return EngineOptions.from_settings(settings)


def get_runner(request: Request, settings: Settings = Depends(get_settings)) -> WorkflowRunner:
    """Runner wired at startup, or a fresh one when the lifespan has not run."""
    runner = getattr(request.app.state, "runner", None)
    if runner is None:
        runner = build_runner(settings)
    return runner


def get_continuation(request: Request) -> Optional[DrainContinuation]:
    return getattr(request.app.state, "continuation", None)


__all__ = [
    "get_continuation",
    "get_engine_options",
    "get_runner",
    "require_service_token",
]
