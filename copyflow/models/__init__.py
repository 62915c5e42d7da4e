"""
SQLAlchemy models for the workflow run ledger.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")

RUN_STATUSES = ("queued", "running", "success", "failed", "skipped")
TERMINAL_STATUSES = ("success", "failed", "skipped")
STEP_STATUSES = ("running", "success", "failed", "skipped")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowRun(Base):
    __tablename__ = "workflow_runs"
    __table_args__ = (
        UniqueConstraint("workflow_name", "idempotency_key", name="uq_workflow_runs_key"),
        Index("ix_workflow_runs_queue", "workflow_name", "status", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workflow_name = Column(Text, nullable=False)
    idempotency_key = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="queued")
    triggered_by = Column(Text)
    input = Column(JSONType, default=dict)
    output = Column(JSONType)
    error_message = Column(Text)
    attempt = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True))
    heartbeat_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)

    steps = relationship(
        "WorkflowRunStep",
        back_populates="run",
        order_by="WorkflowRunStep.seq",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class WorkflowRunStep(Base):
    __tablename__ = "workflow_run_steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    seq = Column(Integer, nullable=False, default=0)
    run_id = Column(Uuid, ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    step_name = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    request = Column(JSONType)
    response = Column(JSONType)
    error_message = Column(Text)
    started_at = Column(DateTime(timezone=True), default=now_utc)
    finished_at = Column(DateTime(timezone=True))

    run = relationship("WorkflowRun", back_populates="steps")
