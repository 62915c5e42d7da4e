"""
In-process continuation for the queue drainer.

Drain requests go onto an asyncio queue consumed by one background loop, so
"keep draining" does not depend on any single request/response lifecycle.
The same loop sweeps runs whose lease expired back onto the queue.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Set

import httpx
from sqlalchemy.orm import Session

from copyflow.config import EngineOptions
from copyflow.services.queue_drainer import DrainResult, QueueDrainer
from copyflow.services.run_ledger import RunLedger
from copyflow.services.workflow_engine import WorkflowRunner

logger = logging.getLogger(__name__)

_STOP = object()


class RunScheduler:
    """Executes drain requests and periodically requeues stale runs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner: WorkflowRunner,
        options: EngineOptions | None = None,
        poll_seconds: float = 60,
    ):
        self.session_factory = session_factory
        self.runner = runner
        self.options = options or EngineOptions()
        self.poll_seconds = poll_seconds
        self._requests: asyncio.Queue = asyncio.Queue()
        self._pending = False
        self._task: asyncio.Task | None = None
        self.last_result: Optional[DrainResult] = None

    def start(self) -> None:
        """Start scheduler loop as background task."""
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info("RunScheduler started")

    async def stop(self) -> None:
        """Stop scheduler loop and wait for completion."""
        if self._task:
            self._requests.put_nowait(_STOP)
            await self._task
            self._task = None
        logger.info("RunScheduler stopped")

    def request_drain(self, delay: float = 0.0, reason: str = "") -> None:
        """Queue a drain pass. Requests made while one is pending are coalesced."""
        if self._pending:
            return
        self._pending = True
        logger.debug("Drain requested (%s), delay %.1fs", reason or "unspecified", delay)
        self._requests.put_nowait(delay)

    async def _run_loop(self) -> None:
        while True:
            try:
                request = await asyncio.wait_for(self._requests.get(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                try:
                    self._tick()
                except Exception as exc:
                    logger.exception("RunScheduler tick failed: %s", exc)
                continue

            if request is _STOP:
                return

            if request:
                try:
                    stop = await asyncio.wait_for(self._requests.get(), timeout=float(request))
                except asyncio.TimeoutError:
                    stop = None
                if stop is _STOP:
                    return

            self._pending = False
            try:
                self.last_result = await self.drain_once()
            except Exception as exc:
                logger.exception("Scheduled drain failed: %s", exc)

    async def drain_once(self) -> DrainResult:
        db = self.session_factory()
        try:
            drainer = QueueDrainer(RunLedger(db), self.runner, self.options, continuation=self)
            return await drainer.drain()
        finally:
            db.close()

    def sweep_once(self) -> int:
        db = self.session_factory()
        try:
            ledger = RunLedger(db)
            return ledger.requeue_stale(self.options.lease_seconds, [self.options.workflow_name])
        finally:
            db.close()

    def _tick(self) -> None:
        self.sweep_once()
        db = self.session_factory()
        try:
            queued = RunLedger(db).count_queued(self.options.workflow_name)
        finally:
            db.close()
        if queued:
            self.request_drain(reason="poll")


class HttpSelfInvoker:
    """
    Continuation by POSTing this service's own drain endpoint in the background.

    One attempt with a short timeout: the drain pass on the other end can run
    far longer than we want to wait, and a dropped request is picked up by the
    scheduler's poll or the next webhook.
    """

    def __init__(
        self,
        drain_url: str,
        service_token: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.drain_url = drain_url
        self.service_token = service_token
        self.timeout = timeout
        self.transport = transport
        self._tasks: Set[asyncio.Task] = set()

    def request_drain(self, delay: float = 0.0, reason: str = "") -> None:
        task = asyncio.get_running_loop().create_task(self._invoke(delay, reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _invoke(self, delay: float, reason: str) -> None:
        if delay:
            await asyncio.sleep(delay)
        headers = {"Content-Type": "application/json"}
        if self.service_token:
            headers["Authorization"] = f"Bearer {self.service_token}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.drain_url, json={"trigger": reason or "self-continuation"}, headers=headers
                )
        except httpx.TimeoutException:
            logger.info("Self-invocation of %s dispatched, not waiting for the drain to finish", self.drain_url)
            return
        except httpx.HTTPError as exc:
            logger.warning("Self-invocation of %s failed: %s", self.drain_url, exc)
            return
        if not response.is_success:
            logger.warning("Self-invocation of %s returned %s", self.drain_url, response.status_code)
