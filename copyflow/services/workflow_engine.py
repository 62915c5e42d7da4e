from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from copyflow.config import EngineOptions, Settings, secret_value
from copyflow.core.exceptions import PreconditionNotMet
from copyflow.integrations.clickup import ClickUpClient
from copyflow.integrations.content_generation import ContentGenerationClient
from copyflow.integrations.gateway import GatewayClient, SleepFn
from copyflow.integrations.shade import TranscriptClient
from copyflow.models import WorkflowRun, now_utc
from copyflow.services.pipeline import GenerateCopyPipeline
from copyflow.services.run_ledger import RunLedger
from copyflow.services.step_executor import StepTracer

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    run_id: uuid.UUID
    status: str
    output: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    social_copy: Optional[str] = None
    applied: bool = True


class WorkflowRunner:
    """
    Top-level handler for one run.

    Runs the pipeline and performs the single terminal write: ``success``
    with the pipeline output, ``skipped`` with the precondition reason, or
    ``failed`` with the error text of whatever escaped the pipeline.
    """

    def __init__(self, pipeline: GenerateCopyPipeline):
        self.pipeline = pipeline

    async def execute(self, ledger: RunLedger, run: WorkflowRun) -> RunResult:
        run_id = run.id
        tracer = StepTracer(ledger, run_id)
        start_time = now_utc()
        logger.info("Processing run %s (%s)", run_id, run.idempotency_key)

        try:
            outcome = await self.pipeline.run(run, tracer)
        except PreconditionNotMet as exc:
            applied = ledger.finalize(run_id, "skipped", error_message=exc.reason)
            logger.info("Run %s skipped: %s", run_id, exc.reason)
            return RunResult(run_id=run_id, status="skipped", reason=exc.reason, applied=applied)
        except Exception as exc:
            ledger.db.rollback()
            message = str(exc) or type(exc).__name__
            tracer.log_step("error", "failed", error=message)
            applied = ledger.finalize(run_id, "failed", error_message=message)
            logger.exception("Run %s failed: %s", run_id, message)
            return RunResult(run_id=run_id, status="failed", error=message, applied=applied)

        applied = ledger.finalize(run_id, "success", output=outcome.output)
        execution_time = int((now_utc() - start_time).total_seconds() * 1000)
        logger.info("Run %s completed successfully in %sms", run_id, execution_time)
        return RunResult(
            run_id=run_id,
            status="success",
            output=outcome.output,
            social_copy=outcome.social_copy,
            applied=applied,
        )


def build_runner(
    settings: Settings,
    options: EngineOptions | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    sleep: SleepFn | None = None,
) -> WorkflowRunner:
    """Wire the pipeline's upstream clients from settings."""
    options = options or EngineOptions.from_settings(settings)
    gateway = GatewayClient(options, transport=transport, sleep=sleep)
    pipeline = GenerateCopyPipeline(
        clickup=ClickUpClient(
            gateway,
            api_token=secret_value(settings.clickup_api_token),
            base_url=str(settings.clickup_api_base),
        ),
        transcripts=TranscriptClient(
            gateway,
            api_key=secret_value(settings.shade_api_key),
            base_url=str(settings.shade_api_base),
        ),
        generator=ContentGenerationClient(
            url=str(settings.content_generation_url),
            token=secret_value(settings.content_generation_token),
            timeout=max(options.http_timeout_seconds, 120.0),
            transport=transport,
        ),
        default_drive_id=settings.shade_drive_id,
    )
    return WorkflowRunner(pipeline)
