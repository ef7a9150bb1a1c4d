from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

from bulk_grader.domain.use_cases.sweep import sweep_expired_claims
from bulk_grader.workers.fanout import FanoutController


@dataclass(frozen=True)
class WorkerRuntimeSettings:
    poll_interval_ms: int = 200
    idle_backoff_ms: int = 1000
    error_backoff_ms: int = 2000
    claim_lease_seconds: int = 600
    heartbeat_interval_ms: int = 15000


@dataclass
class WorkerRuntimeState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    processed_total: int = 0
    idle_ticks_total: int = 0
    swept_total: int = 0
    errors_total: int = 0


def worker_runtime_settings_from_env() -> WorkerRuntimeSettings:
    return WorkerRuntimeSettings(
        poll_interval_ms=_env_int("WORKER_POLL_INTERVAL_MS", 200),
        idle_backoff_ms=_env_int("WORKER_IDLE_BACKOFF_MS", 1000),
        error_backoff_ms=_env_int("WORKER_ERROR_BACKOFF_MS", 2000),
        claim_lease_seconds=_env_int("GRADER_CLAIM_LEASE_SECONDS", 600),
        heartbeat_interval_ms=_env_int("GRADER_HEARTBEAT_INTERVAL_MS", 15000),
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


async def run_worker_until_stopped(
    *,
    controller: FanoutController,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    settings: WorkerRuntimeSettings,
    logger: logging.Logger,
    state: WorkerRuntimeState | None = None,
) -> None:
    """Sweep expired leases, then drain the queue within the budget, until stopped."""
    if state is not None:
        state.started = True

    logger.info(
        "worker loop started",
        extra={"role": role, "service": role, "run_id": run_id, "stage": "drain"},
    )

    while not stop_event.is_set():
        delay_ms = settings.idle_backoff_ms
        try:
            swept = await sweep_expired_claims(batches=controller.batches)
            drained = await controller.run_until_drained()
            if state is not None:
                state.ticks_total += 1
                state.swept_total += len(swept)
                state.processed_total += drained.processed
                if drained.processed == 0:
                    state.idle_ticks_total += 1
            delay_ms = settings.poll_interval_ms if drained.processed else settings.idle_backoff_ms
            logger.info(
                "worker tick",
                extra={
                    "role": role,
                    "service": role,
                    "run_id": run_id,
                    "stage": "drain",
                    "processed": drained.processed,
                    "swept_count": len(swept),
                },
            )
        except Exception:
            if state is not None:
                state.ticks_total += 1
                state.errors_total += 1
            delay_ms = settings.error_backoff_ms
            logger.exception(
                "worker tick error",
                extra={"role": role, "service": role, "run_id": run_id, "stage": "drain"},
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
        except TimeoutError:
            continue

    logger.info(
        "worker loop stopped",
        extra={"role": role, "service": role, "run_id": run_id, "stage": "drain"},
    )
    if state is not None:
        state.stopped = True
