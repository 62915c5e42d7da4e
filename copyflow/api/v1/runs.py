from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from copyflow.database import get_db
from copyflow.models import RUN_STATUSES, WorkflowRun
from copyflow.schemas.workflow_run import WorkflowRunDetailSchema, WorkflowRunSchema
from copyflow.services.run_ledger import RunLedger

router = APIRouter()


@router.get("/", response_model=list[WorkflowRunSchema])
async def list_runs(
    workflow_name: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    if status is not None and status not in RUN_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    rows = RunLedger(db).list_runs(workflow_name=workflow_name, status=status, limit=limit)
    return [serialize_run(r) for r in rows]


@router.get("/{run_id}", response_model=WorkflowRunDetailSchema)
async def run_detail(run_id: str, db: Session = Depends(get_db)):
    try:
        parsed = uuid.UUID(run_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Run not found")
    ledger = RunLedger(db)
    row = ledger.get(parsed)
    if not row:
        raise HTTPException(status_code=404, detail="Run not found")
    return serialize_run(row, steps=True)


def serialize_run(r: WorkflowRun, steps: bool = False) -> dict:
    schema = WorkflowRunDetailSchema if steps else WorkflowRunSchema
    return schema.model_validate(r).model_dump(mode="json")
