"""
Persistence for workflow runs and their step traces.

Every write is a single-row insert or a conditional single-row update keyed by
run id, committed immediately. Status transitions that must not race
(claiming a queued run, re-entering a finished attempt, the terminal write)
are expressed as ``UPDATE ... WHERE status = ...`` and report whether they
applied, so two invocations can never both win the same transition.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from copyflow.models import TERMINAL_STATUSES, WorkflowRun, WorkflowRunStep, now_utc

logger = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 2000
REENTERABLE_STATUSES = ("queued", "failed", "skipped")


def _truncate(message: Optional[str]) -> Optional[str]:
    if message is None:
        return None
    return message[:ERROR_MESSAGE_LIMIT]


def _as_uuid(run_id: uuid.UUID | str) -> uuid.UUID:
    return run_id if isinstance(run_id, uuid.UUID) else uuid.UUID(str(run_id))


class RunLedger:
    """Run ledger over one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads

    def get(self, run_id: uuid.UUID | str) -> Optional[WorkflowRun]:
        return self.db.query(WorkflowRun).filter(WorkflowRun.id == _as_uuid(run_id)).first()

    def find_by_key(self, workflow_name: str, idempotency_key: str) -> Optional[WorkflowRun]:
        return (
            self.db.query(WorkflowRun)
            .filter(
                WorkflowRun.workflow_name == workflow_name,
                WorkflowRun.idempotency_key == idempotency_key,
            )
            .first()
        )

    def status_of(self, run_id: uuid.UUID | str) -> Optional[str]:
        row = (
            self.db.query(WorkflowRun.status)
            .filter(WorkflowRun.id == _as_uuid(run_id))
            .first()
        )
        return row[0] if row else None

    def list_queued(self, workflow_name: str, limit: int) -> list[WorkflowRun]:
        return (
            self.db.query(WorkflowRun)
            .filter(WorkflowRun.workflow_name == workflow_name, WorkflowRun.status == "queued")
            .order_by(WorkflowRun.created_at.asc())
            .limit(limit)
            .all()
        )

    def count_queued(self, workflow_name: str) -> int:
        return (
            self.db.query(func.count(WorkflowRun.id))
            .filter(WorkflowRun.workflow_name == workflow_name, WorkflowRun.status == "queued")
            .scalar()
            or 0
        )

    def list_runs(
        self,
        workflow_name: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[WorkflowRun]:
        query = self.db.query(WorkflowRun)
        if workflow_name:
            query = query.filter(WorkflowRun.workflow_name == workflow_name)
        if status:
            query = query.filter(WorkflowRun.status == status)
        return query.order_by(WorkflowRun.created_at.desc()).limit(limit).all()

    def list_steps(self, run_id: uuid.UUID | str) -> list[WorkflowRunStep]:
        return (
            self.db.query(WorkflowRunStep)
            .filter(WorkflowRunStep.run_id == _as_uuid(run_id))
            .order_by(WorkflowRunStep.seq.asc())
            .all()
        )

    def has_live_lease(self, run_id: uuid.UUID | str, lease_seconds: int) -> bool:
        """True when the run is ``running`` and its heartbeat is within the lease."""
        cutoff = now_utc() - timedelta(seconds=lease_seconds)
        count = (
            self.db.query(func.count(WorkflowRun.id))
            .filter(
                WorkflowRun.id == _as_uuid(run_id),
                WorkflowRun.status == "running",
                WorkflowRun.heartbeat_at >= cutoff,
            )
            .scalar()
        )
        return bool(count)

    # ------------------------------------------------------------------
    # Writes

    def create_run(
        self,
        workflow_name: str,
        idempotency_key: str,
        input: dict[str, Any] | None = None,
        triggered_by: Optional[str] = None,
        status: str = "running",
    ) -> tuple[WorkflowRun, bool]:
        """
        Insert a new run. Returns ``(run, created)``.

        When another invocation inserted the same key first, the existing row
        is returned with ``created=False``.
        """
        if status not in ("queued", "running"):
            raise ValueError(f"New runs start queued or running, not {status!r}")

        now = now_utc()
        run = WorkflowRun(
            workflow_name=workflow_name,
            idempotency_key=idempotency_key,
            status=status,
            triggered_by=triggered_by,
            input=input or {},
            attempt=1 if status == "running" else 0,
            started_at=now if status == "running" else None,
            heartbeat_at=now if status == "running" else None,
            created_at=now,
        )
        self.db.add(run)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_by_key(workflow_name, idempotency_key)
            if existing is None:
                raise
            logger.info("Run for %s already created by another invocation", idempotency_key)
            return existing, False
        self.db.refresh(run)
        return run, True

    def reenter(
        self,
        run_id: uuid.UUID | str,
        input: dict[str, Any] | None = None,
        stale_before: Optional[datetime] = None,
    ) -> bool:
        """
        Start a new attempt on a run that has not succeeded.

        ``queued``, ``failed`` and ``skipped`` runs are always re-enterable; a
        ``running`` run only when ``stale_before`` is given and its heartbeat
        is older than that.
        """
        condition = WorkflowRun.status.in_(REENTERABLE_STATUSES)
        if stale_before is not None:
            condition = or_(
                condition,
                and_(
                    WorkflowRun.status == "running",
                    or_(WorkflowRun.heartbeat_at.is_(None), WorkflowRun.heartbeat_at < stale_before),
                ),
            )

        now = now_utc()
        values: dict[Any, Any] = {
            WorkflowRun.status: "running",
            WorkflowRun.error_message: None,
            WorkflowRun.output: None,
            WorkflowRun.started_at: now,
            WorkflowRun.heartbeat_at: now,
            WorkflowRun.finished_at: None,
            WorkflowRun.attempt: WorkflowRun.attempt + 1,
        }
        if input is not None:
            values[WorkflowRun.input] = input

        updated = (
            self.db.query(WorkflowRun)
            .filter(WorkflowRun.id == _as_uuid(run_id), condition)
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

    def claim(self, run_id: uuid.UUID | str) -> bool:
        """Compare-and-swap ``queued -> running``. Only one caller can win."""
        now = now_utc()
        updated = (
            self.db.query(WorkflowRun)
            .filter(WorkflowRun.id == _as_uuid(run_id), WorkflowRun.status == "queued")
            .update(
                {
                    WorkflowRun.status: "running",
                    WorkflowRun.error_message: None,
                    WorkflowRun.started_at: now,
                    WorkflowRun.heartbeat_at: now,
                    WorkflowRun.attempt: WorkflowRun.attempt + 1,
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return updated == 1

    def enqueue(
        self,
        workflow_name: str,
        idempotency_key: str,
        input: dict[str, Any] | None = None,
        triggered_by: Optional[str] = None,
    ) -> tuple[Optional[WorkflowRun], str]:
        """
        Put a run on the queue for later draining.

        Returns ``(run, outcome)`` where outcome is one of ``queued``,
        ``requeued``, ``already_queued``, ``already_processing`` or
        ``duplicate``. Succeeded and in-flight runs are left alone.
        """
        existing = self.find_by_key(workflow_name, idempotency_key)
        if existing is None:
            run, created = self.create_run(
                workflow_name, idempotency_key, input=input, triggered_by=triggered_by, status="queued"
            )
            if created:
                return run, "queued"
            existing = run

        if existing.status == "success":
            return existing, "duplicate"
        if existing.status == "running":
            return existing, "already_processing"
        if existing.status == "queued":
            return existing, "already_queued"

        values: dict[Any, Any] = {
            WorkflowRun.status: "queued",
            WorkflowRun.output: None,
            WorkflowRun.error_message: None,
            WorkflowRun.started_at: None,
            WorkflowRun.heartbeat_at: None,
            WorkflowRun.finished_at: None,
        }
        if input is not None:
            values[WorkflowRun.input] = input
        if triggered_by is not None:
            values[WorkflowRun.triggered_by] = triggered_by

        updated = (
            self.db.query(WorkflowRun)
            .filter(WorkflowRun.id == existing.id, WorkflowRun.status.in_(("failed", "skipped")))
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        run = self.get(existing.id)
        if updated == 1:
            return run, "requeued"
        # lost a race with another writer; report what it left behind
        return run, "duplicate" if run is not None and run.status == "success" else "already_processing"

    def finalize(
        self,
        run_id: uuid.UUID | str,
        status: str,
        output: dict[str, Any] | None = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """
        Terminal write for the current attempt. Applies only over ``running``.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status!r} is not a terminal status")

        values: dict[Any, Any] = {
            WorkflowRun.status: status,
            WorkflowRun.finished_at: now_utc(),
            WorkflowRun.output: output if status == "success" else None,
            WorkflowRun.error_message: None if status == "success" else _truncate(error_message),
        }
        updated = (
            self.db.query(WorkflowRun)
            .filter(WorkflowRun.id == _as_uuid(run_id), WorkflowRun.status == "running")
            .update(values, synchronize_session=False)
        )
        self.db.commit()
        if updated != 1:
            logger.warning("Terminal write %s ignored for run %s: run is no longer running", status, run_id)
        return updated == 1

    def append_step(
        self,
        run_id: uuid.UUID | str,
        step_name: str,
        status: str,
        request: Any = None,
        response: Any = None,
        error_message: Optional[str] = None,
    ) -> WorkflowRunStep:
        """Append one trace row and refresh the run's heartbeat."""
        run_uuid = _as_uuid(run_id)
        now = now_utc()
        seq = (
            self.db.query(func.count(WorkflowRunStep.id))
            .filter(WorkflowRunStep.run_id == run_uuid)
            .scalar()
            or 0
        )
        step = WorkflowRunStep(
            run_id=run_uuid,
            seq=seq + 1,
            step_name=step_name,
            status=status,
            request=request,
            response=response,
            error_message=_truncate(error_message),
            started_at=now,
            finished_at=None if status == "running" else now,
        )
        self.db.add(step)
        self.db.query(WorkflowRun).filter(
            WorkflowRun.id == run_uuid, WorkflowRun.status == "running"
        ).update({WorkflowRun.heartbeat_at: now}, synchronize_session=False)
        self.db.commit()
        return step

    def requeue_stale(self, lease_seconds: int, workflow_names: Iterable[str] | None = None) -> int:
        """Move ``running`` runs whose lease expired back to ``queued``."""
        cutoff = now_utc() - timedelta(seconds=lease_seconds)
        query = self.db.query(WorkflowRun).filter(
            WorkflowRun.status == "running",
            or_(
                WorkflowRun.heartbeat_at < cutoff,
                and_(WorkflowRun.heartbeat_at.is_(None), WorkflowRun.started_at < cutoff),
            ),
        )
        if workflow_names:
            query = query.filter(WorkflowRun.workflow_name.in_(list(workflow_names)))
        requeued = query.update(
            {
                WorkflowRun.status: "queued",
                WorkflowRun.started_at: None,
                WorkflowRun.heartbeat_at: None,
            },
            synchronize_session=False,
        )
        self.db.commit()
        if requeued:
            logger.warning("Requeued %s stale run(s) with heartbeat before %s", requeued, cutoff.isoformat())
        return requeued
