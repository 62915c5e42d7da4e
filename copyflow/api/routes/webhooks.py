"""
Webhook API Routes
Task-manager triggers for the generate-copy workflow
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from copyflow.api.dependencies import get_continuation, get_engine_options, get_runner
from copyflow.config import EngineOptions, Settings, get_settings, secret_value
from copyflow.core.exceptions import SignatureError, ValidationError
from copyflow.core.security import SIGNATURE_HEADERS, verify_signature
from copyflow.database import get_db
from copyflow.services.queue_drainer import DrainContinuation
from copyflow.services.run_initiator import RunInitiator, extract_trigger
from copyflow.services.run_ledger import RunLedger
from copyflow.services.workflow_engine import WorkflowRunner

logger = logging.getLogger(__name__)

router = APIRouter()

TRIGGERED_BY = "clickup_webhook"


def _signature_header(request: Request) -> Optional[str]:
    for header in SIGNATURE_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


def _parse_body(body: bytes) -> Any:
    if not body.strip():
        return {}
    try:
        return json.loads(body)
    except ValueError as exc:
        raise ValidationError(f"Invalid JSON body: {exc}") from exc


@router.post("/clickup/generate-copy")
async def generate_copy_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    options: EngineOptions = Depends(get_engine_options),
    runner: WorkflowRunner = Depends(get_runner),
    continuation: Optional[DrainContinuation] = Depends(get_continuation),
):
    """
    Verify, de-duplicate and run the generate-copy workflow for one task.
    """
    body = await request.body()
    secret = secret_value(settings.clickup_webhook_secret)
    if secret is None:
        logger.debug("CLICKUP_WEBHOOK_SECRET not set, signature verification bypassed")
    if not verify_signature(body, _signature_header(request), secret):
        logger.warning("Invalid ClickUp signature")
        raise SignatureError("Invalid signature")

    payload = _parse_body(body)
    logger.info("Generate-copy webhook received: %s", json.dumps(payload)[:2000])

    trigger = extract_trigger(payload)
    if trigger is None:
        logger.info("No task_id in payload, skipping")
        return {"ok": True, "skipped": True}

    ledger = RunLedger(db)
    initiator = RunInitiator(ledger, options.workflow_name, options.lease_seconds)

    try:
        if settings.webhook_mode == "queue":
            return _enqueue(initiator, trigger, continuation)

        initiation = initiator.initiate(trigger, triggered_by=TRIGGERED_BY)
        if initiation.outcome == "duplicate":
            return {"ok": True, "duplicate": True}
        if initiation.outcome == "already_processing":
            return {"ok": True, "already_processing": True}

        result = await runner.execute(ledger, initiation.run)
    except Exception as exc:
        db.rollback()
        logger.exception("generate-copy webhook error: %s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(exc) or type(exc).__name__},
        )

    run_id = str(result.run_id)
    if result.status == "failed":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": result.error, "run_id": run_id},
        )
    if result.status == "skipped":
        return {"ok": True, "skipped": True, "reason": result.reason, "run_id": run_id}

    output = result.output or {}
    return {
        "ok": True,
        "content_id": output.get("content_id"),
        "duplicate": bool(output.get("duplicate", False)),
        "social_copy": result.social_copy,
        "run_id": run_id,
    }


def _enqueue(
    initiator: RunInitiator,
    trigger,
    continuation: Optional[DrainContinuation],
) -> dict[str, Any]:
    initiation = initiator.enqueue(trigger, triggered_by=TRIGGERED_BY)
    if initiation.outcome == "duplicate":
        return {"ok": True, "duplicate": True}
    if initiation.outcome == "already_processing":
        return {"ok": True, "already_processing": True}

    if continuation is not None:
        continuation.request_drain(reason="webhook")
    else:
        logger.warning("No drain continuation configured; run %s waits for the next drain", initiation.idempotency_key)

    if initiation.outcome == "already_queued":
        return {"ok": True, "already_queued": True, "task_id": trigger.task_id}
    return {
        "ok": True,
        "queued": True,
        "task_id": trigger.task_id,
        "run_id": str(initiation.run.id) if initiation.run is not None else None,
    }
