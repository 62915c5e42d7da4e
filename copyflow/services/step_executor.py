from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from copyflow.services.run_ledger import RunLedger

logger = logging.getLogger(__name__)

STEP_STATUSES = ("running", "success", "failed", "skipped")


class StepTracer:
    """Append-only step trace for one run.

    ``skipped`` means "nothing to do"; ``failed`` means something went wrong.
    Each write also refreshes the run's heartbeat lease.
    """

    def __init__(self, ledger: RunLedger, run_id: uuid.UUID):
        self.ledger = ledger
        self.run_id = run_id

    def log_step(
        self,
        step_name: str,
        status: str,
        request: Any = None,
        response: Any = None,
        error: Optional[str] = None,
    ) -> None:
        if status not in STEP_STATUSES:
            raise ValueError(f"Unknown step status {status!r}")
        try:
            self.ledger.append_step(
                self.run_id,
                step_name,
                status,
                request=request,
                response=response,
                error_message=error,
            )
        except SQLAlchemyError as exc:
            self.ledger.db.rollback()
            logger.error("Failed to log step %s for run %s: %s", step_name, self.run_id, exc)
