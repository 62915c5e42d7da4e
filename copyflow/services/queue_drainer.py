from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Protocol

from copyflow.config import EngineOptions
from copyflow.integrations.gateway import SleepFn
from copyflow.services.run_ledger import RunLedger
from copyflow.services.workflow_engine import WorkflowRunner

logger = logging.getLogger(__name__)


class DrainContinuation(Protocol):
    """Something that will start another drain pass later."""

    def request_drain(self, delay: float = 0.0, reason: str = "") -> None:
        ...


@dataclass
class DrainResult:
    processed: int = 0
    remaining: int = 0
    statuses: dict[str, int] = field(default_factory=dict)
    continued: bool = False

    def as_response(self) -> dict:
        return {"ok": True, "processed": self.processed, "remaining": self.remaining}


class QueueDrainer:
    """
    Batch worker over ``queued`` runs.

    One pass takes up to ``batch_size`` runs in FIFO order, claims each with a
    compare-and-swap, runs claimed ones one at a time with ``item_delay_seconds``
    between them, and asks the continuation for another pass while backlog
    remains.
    """

    def __init__(
        self,
        ledger: RunLedger,
        runner: WorkflowRunner,
        options: EngineOptions | None = None,
        continuation: Optional[DrainContinuation] = None,
        sleep: SleepFn | None = None,
    ):
        self.ledger = ledger
        self.runner = runner
        self.options = options or EngineOptions()
        self.continuation = continuation
        self._sleep = sleep or asyncio.sleep

    async def drain(self) -> DrainResult:
        workflow_name = self.options.workflow_name
        candidate_ids = [run.id for run in self.ledger.list_queued(workflow_name, self.options.batch_size)]
        result = DrainResult()
        statuses: Counter[str] = Counter()

        if candidate_ids:
            logger.info("Found %s queued %s run(s) to process", len(candidate_ids), workflow_name)
        else:
            logger.info("No queued %s runs to process", workflow_name)

        for run_id in candidate_ids:
            if not self.ledger.claim(run_id):
                logger.info("Run %s already claimed (status: %s), skipping", run_id, self.ledger.status_of(run_id))
                continue

            if result.processed > 0 and self.options.item_delay_seconds > 0:
                logger.debug("Waiting %.1fs before next item", self.options.item_delay_seconds)
                await self._sleep(self.options.item_delay_seconds)

            run = self.ledger.get(run_id)
            if run is None:
                continue
            run_result = await self.runner.execute(self.ledger, run)
            statuses[run_result.status] += 1
            result.processed += 1

        result.statuses = dict(statuses)
        result.remaining = self.ledger.count_queued(workflow_name)

        if result.remaining > 0:
            if self.continuation is not None:
                logger.info("%s more queued run(s) remaining, requesting continuation", result.remaining)
                self.continuation.request_drain(
                    delay=self.options.item_delay_seconds, reason="self-continuation"
                )
                result.continued = True
            else:
                logger.warning(
                    "%s queued run(s) remaining and no continuation configured", result.remaining
                )

        return result
