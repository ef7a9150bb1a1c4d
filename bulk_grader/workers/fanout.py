from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import os
import time

import httpx

from bulk_grader.domain.contracts import Dispatcher
from bulk_grader.domain.models import DrainResult, TriggerResult
from bulk_grader.domain.use_cases.submissions import requeue_stuck_submissions
from bulk_grader.repositories.batch_store import BatchStore
from bulk_grader.workers.processor import SubmissionProcessor

logger = logging.getLogger("runtime")

PROCESS_ONE_PATH = "/internal/process-one"


@dataclass(frozen=True)
class FanoutSettings:
    max_fanout: int = 3
    dispatch_grace_ms: int = 2000
    drain_budget_ms: int = 240000
    dispatch_timeout_seconds: int = 300


def fanout_settings_from_env() -> FanoutSettings:
    return FanoutSettings(
        max_fanout=_env_int("GRADER_MAX_FANOUT", 3),
        dispatch_grace_ms=_env_int("GRADER_DISPATCH_GRACE_MS", 2000),
        drain_budget_ms=_env_int("BULK_PROCESS_BATCH_MS", 240000),
        dispatch_timeout_seconds=_env_int("GRADER_DISPATCH_TIMEOUT_SECONDS", 300),
    )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


@dataclass
class InProcessDispatcher:
    processor: SubmissionProcessor

    async def dispatch_one(self) -> int:
        return await self.processor.process_next()


@dataclass
class HttpDispatcher:
    """Dispatch over the network so every call gets its own request lifetime."""

    base_url: str
    timeout_seconds: float = 300.0
    transport: httpx.AsyncBaseTransport | None = None

    async def dispatch_one(self) -> int:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self.transport,
        ) as client:
            response = await client.post(PROCESS_ONE_PATH)
            response.raise_for_status()
            payload = response.json()
        return int(payload.get("processed", 0))


@dataclass
class FanoutController:
    """Turns "the queue has N items" into at most ``max_fanout`` concurrent dispatch calls.

    Dispatch calls share nothing in-process; the queue pop and the processor's
    claim guard are the only coordination, so a duplicate dispatch is harmless.
    """

    batches: BatchStore
    dispatcher: Dispatcher
    settings: FanoutSettings = field(default_factory=FanoutSettings)
    clock: Callable[[], float] = field(default=time.monotonic)
    _inflight: set[asyncio.Task[int]] = field(default_factory=set, init=False, repr=False)

    async def trigger(self, *, batch_id: str | None = None) -> TriggerResult:
        """Start a bounded fanout and return after the grace window.

        Calls still running when the window closes keep going in the
        background; only the ones that already finished count as processed.
        """
        queue_length, requeued = await self._queue_length(batch_id=batch_id)
        if queue_length == 0:
            return TriggerResult(processed=0, dispatched=0, queue_length=0, requeued=requeued)

        fanout = min(queue_length, self.settings.max_fanout)
        tasks = [self._spawn() for _ in range(fanout)]
        done, pending = await asyncio.wait(tasks, timeout=self.settings.dispatch_grace_ms / 1000)
        processed = sum(task.result() for task in done)
        logger.info(
            "fanout triggered",
            extra={
                "batch_id": batch_id,
                "queue_length": queue_length,
                "dispatched": fanout,
                "processed": processed,
                "pending": len(pending),
            },
        )
        return TriggerResult(processed=processed, dispatched=fanout, queue_length=queue_length, requeued=requeued)

    async def run_until_drained(self, *, batch_id: str | None = None) -> DrainResult:
        """Dispatch one submission at a time until the queue is empty or the budget is spent."""
        started = self.clock()
        budget_seconds = self.settings.drain_budget_ms / 1000
        processed = 0
        iterations = 0
        budget_exhausted = False

        while True:
            if self.clock() - started >= budget_seconds:
                budget_exhausted = True
                break
            queue_length, _ = await self._queue_length(batch_id=batch_id)
            if queue_length == 0:
                break
            iterations += 1
            count = await self._dispatch()
            if count == 0:
                break
            processed += count

        elapsed_ms = int((self.clock() - started) * 1000)
        logger.info(
            "drain finished",
            extra={
                "batch_id": batch_id,
                "processed": processed,
                "iterations": iterations,
                "elapsed_ms": elapsed_ms,
                "budget_exhausted": str(budget_exhausted).lower(),
            },
        )
        return DrainResult(
            processed=processed,
            iterations=iterations,
            elapsed_ms=elapsed_ms,
            budget_exhausted=budget_exhausted,
        )

    async def wait_inflight(self) -> None:
        """Block until background dispatch calls left over from trigger() finish."""
        if self._inflight:
            await asyncio.gather(*self._inflight)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def _queue_length(self, *, batch_id: str | None) -> tuple[int, int]:
        queue_length = await self.batches.queue.length()
        requeued = 0
        if queue_length == 0 and batch_id:
            requeued = await requeue_stuck_submissions(batches=self.batches, batch_id=batch_id)
            if requeued:
                queue_length = await self.batches.queue.length()
        return queue_length, requeued

    def _spawn(self) -> asyncio.Task[int]:
        task = asyncio.create_task(self._dispatch())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _dispatch(self) -> int:
        # A failed dispatch call counts as nothing processed; it never aborts the fanout.
        try:
            return await self.dispatcher.dispatch_one()
        except Exception:
            logger.exception("dispatch call failed")
            return 0
