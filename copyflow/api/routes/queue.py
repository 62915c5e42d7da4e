"""
Queue API Routes
Drain, sweep and backfill endpoints for queued generate-copy runs
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from copyflow.api.dependencies import get_continuation, get_engine_options, get_runner
from copyflow.config import EngineOptions
from copyflow.core.security import require_service_token
from copyflow.database import get_db
from copyflow.schemas.workflow_run import DrainResponse, EnqueueRequest, EnqueueResponse
from copyflow.services.queue_drainer import DrainContinuation, QueueDrainer
from copyflow.services.run_initiator import RunInitiator, Trigger
from copyflow.services.run_ledger import RunLedger
from copyflow.services.workflow_engine import WorkflowRunner

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_service_token)])


@router.post("/generate-copy/drain", response_model=DrainResponse)
async def drain_queue(
    db: Session = Depends(get_db),
    options: EngineOptions = Depends(get_engine_options),
    runner: WorkflowRunner = Depends(get_runner),
    continuation: Optional[DrainContinuation] = Depends(get_continuation),
):
    """Process one batch of queued runs."""
    drainer = QueueDrainer(RunLedger(db), runner, options, continuation=continuation)
    result = await drainer.drain()
    logger.info(
        "Drain pass finished: processed=%s remaining=%s statuses=%s",
        result.processed,
        result.remaining,
        result.statuses,
    )
    return result.as_response()


@router.post("/generate-copy/sweep")
async def sweep_stale_runs(
    db: Session = Depends(get_db),
    options: EngineOptions = Depends(get_engine_options),
    continuation: Optional[DrainContinuation] = Depends(get_continuation),
) -> dict:
    """Requeue running runs whose lease expired."""
    requeued = RunLedger(db).requeue_stale(options.lease_seconds, [options.workflow_name])
    if requeued and continuation is not None:
        continuation.request_drain(reason="sweep")
    return {"ok": True, "requeued": requeued}


@router.post("/generate-copy/enqueue", response_model=EnqueueResponse)
async def enqueue_tasks(
    body: EnqueueRequest,
    db: Session = Depends(get_db),
    options: EngineOptions = Depends(get_engine_options),
    continuation: Optional[DrainContinuation] = Depends(get_continuation),
):
    """Queue runs for a list of task ids, skipping ones already done or in flight."""
    initiator = RunInitiator(RunLedger(db), options.workflow_name, options.lease_seconds)
    counts = {"queued": 0, "duplicates": 0, "skipped": 0}
    for task_id in body.task_ids:
        trigger = Trigger(task_id=task_id, disambiguator=None, payload={"task_id": task_id})
        initiation = initiator.enqueue(trigger, triggered_by=body.triggered_by)
        if initiation.outcome == "queued":
            counts["queued"] += 1
        elif initiation.outcome == "duplicate":
            counts["duplicates"] += 1
        else:
            counts["skipped"] += 1

    if counts["queued"] and continuation is not None:
        continuation.request_drain(reason="enqueue")
    logger.info("Enqueued %s task(s): %s", len(body.task_ids), counts)
    return {"ok": True, **counts}
