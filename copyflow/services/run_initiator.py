"""
Idempotency guard for inbound triggers.

A trigger maps to ``<workflow>:<task-id>[:<disambiguator>]``. At most one run
per key ever reaches ``success``; every other state can be retried under the
same key, each retry starting a new attempt on the same row.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from copyflow.models import WorkflowRun, now_utc
from copyflow.services.run_ledger import RunLedger

logger = logging.getLogger(__name__)

TASK_ID_PATHS = (
    ("task_id",),
    ("task", "id"),
    ("payload", "id"),
    ("id",),
)
# per-event history ids are not disambiguators; one task gets one run
DISAMBIGUATOR_PATHS = (("instance_id",),)


@dataclass(frozen=True)
class Trigger:
    task_id: str
    disambiguator: Optional[str]
    payload: dict[str, Any]


@dataclass
class Initiation:
    """Result of ``RunInitiator.initiate``.

    ``outcome`` is ``created``, ``resumed``, ``duplicate`` or
    ``already_processing``; only the first two carry a run the caller owns.
    Queue mode adds ``queued`` and ``already_queued``.
    """

    outcome: str
    idempotency_key: str
    run: Optional[WorkflowRun] = None

    @property
    def should_execute(self) -> bool:
        return self.outcome in ("created", "resumed")


def _dig(payload: Any, path: tuple) -> Any:
    current = payload
    for part in path:
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _first_present(payload: dict[str, Any], paths: tuple) -> Optional[str]:
    for path in paths:
        value = _dig(payload, path)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def extract_trigger(payload: Any) -> Optional[Trigger]:
    """Pull the task id (and optional disambiguator) out of a webhook body."""
    if not isinstance(payload, dict):
        return None
    task_id = _first_present(payload, TASK_ID_PATHS)
    if not task_id:
        return None
    return Trigger(
        task_id=task_id,
        disambiguator=_first_present(payload, DISAMBIGUATOR_PATHS),
        payload=payload,
    )


def idempotency_key(workflow_name: str, task_id: str, disambiguator: Optional[str] = None) -> str:
    key = f"{workflow_name}:{task_id}"
    if disambiguator:
        key = f"{key}:{disambiguator}"
    return key


class RunInitiator:
    def __init__(self, ledger: RunLedger, workflow_name: str, lease_seconds: int):
        self.ledger = ledger
        self.workflow_name = workflow_name
        self.lease_seconds = lease_seconds

    def run_input(self, trigger: Trigger) -> dict[str, Any]:
        data: dict[str, Any] = {"task_id": trigger.task_id, "trigger": trigger.payload}
        if trigger.disambiguator:
            data["disambiguator"] = trigger.disambiguator
        return data

    def initiate(self, trigger: Trigger, triggered_by: str) -> Initiation:
        """Create or resume exactly one ``running`` run for the trigger."""
        key = idempotency_key(self.workflow_name, trigger.task_id, trigger.disambiguator)
        run_input = self.run_input(trigger)

        existing = self.ledger.find_by_key(self.workflow_name, key)
        if existing is None:
            run, created = self.ledger.create_run(
                self.workflow_name, key, input=run_input, triggered_by=triggered_by, status="running"
            )
            if created:
                logger.info("Created run %s for %s", run.id, key)
                return Initiation("created", key, run)
            existing = run

        return self._resume(existing, key, run_input)

    def enqueue(self, trigger: Trigger, triggered_by: str) -> Initiation:
        """Queue mode: record the trigger as a ``queued`` run for the drainer."""
        key = idempotency_key(self.workflow_name, trigger.task_id, trigger.disambiguator)
        run, outcome = self.ledger.enqueue(
            self.workflow_name, key, input=self.run_input(trigger), triggered_by=triggered_by
        )
        if outcome in ("queued", "requeued"):
            logger.info("%s run %s for %s", outcome.capitalize(), run.id if run else None, key)
            outcome = "queued"
        return Initiation(outcome, key, run)

    def _resume(self, existing: WorkflowRun, key: str, run_input: dict[str, Any]) -> Initiation:
        previous_status = existing.status
        if previous_status == "success":
            logger.info("Run for %s already succeeded, ignoring duplicate trigger", key)
            return Initiation("duplicate", key, existing)

        if previous_status == "running" and self.ledger.has_live_lease(existing.id, self.lease_seconds):
            logger.info("Run %s for %s is already in progress", existing.id, key)
            return Initiation("already_processing", key, existing)

        stale_before = now_utc() - timedelta(seconds=self.lease_seconds)
        if self.ledger.reenter(existing.id, input=run_input, stale_before=stale_before):
            logger.info("Resumed run %s for %s (previous status %s)", existing.id, key, previous_status)
            return Initiation("resumed", key, self.ledger.get(existing.id))

        # another invocation moved the row first
        current = self.ledger.get(existing.id)
        if current is not None and current.status == "success":
            return Initiation("duplicate", key, current)
        return Initiation("already_processing", key, current)
