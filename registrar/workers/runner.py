from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

from registrar.domain.models import ProcessOutcome
from registrar.workers.loop import RegistrationWorkerLoop, WorkerTick


@dataclass(frozen=True)
class WorkerRuntimeSettings:
    poll_interval_ms: int = 200
    idle_backoff_ms: int = 1000
    error_backoff_ms: int = 2000
    stale_after_seconds: int = 600


@dataclass
class WorkerRuntimeState:
    """Counters surfaced on /ready for worker roles."""

    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    processed_total: int = 0
    completed_total: int = 0
    failed_total: int = 0
    reclaimed_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0

    def record(self, tick: WorkerTick) -> None:
        self.ticks_total += 1
        self.reclaimed_total += tick.reclaimed
        if tick.outcome is None:
            self.idle_ticks_total += 1
            return
        self.processed_total += 1
        if tick.outcome == ProcessOutcome.COMPLETED:
            self.completed_total += 1
        elif tick.outcome == ProcessOutcome.FAILED:
            self.failed_total += 1

    def record_error(self) -> None:
        self.ticks_total += 1
        self.errors_total += 1


def worker_runtime_settings_from_env() -> WorkerRuntimeSettings:
    return WorkerRuntimeSettings(
        poll_interval_ms=_env_int("WORKER_POLL_INTERVAL_MS", 200),
        idle_backoff_ms=_env_int("WORKER_IDLE_BACKOFF_MS", 1000),
        error_backoff_ms=_env_int("WORKER_ERROR_BACKOFF_MS", 2000),
        stale_after_seconds=_env_int("WORKER_STALE_AFTER_SECONDS", 600),
    )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


async def run_worker_until_stopped(
    *,
    worker_loop: RegistrationWorkerLoop,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    settings: WorkerRuntimeSettings,
    logger: logging.Logger,
    state: WorkerRuntimeState | None = None,
) -> None:
    """Poll for pending registrations until ``stop_event`` is set.

    A tick that processed a registration waits ``poll_interval_ms`` before the
    next poll, an idle tick waits ``idle_backoff_ms`` and a tick that raised
    waits ``error_backoff_ms``. Setting the stop event interrupts the wait.
    """
    worker_loop.stale_after_seconds = settings.stale_after_seconds
    context = {"role": role, "service": role, "run_id": run_id, "stage": worker_loop.stage}
    if state is not None:
        state.started = True
    logger.info("worker loop started", extra=context)

    while not stop_event.is_set():
        try:
            tick = await worker_loop.run_once()
        except Exception:
            if state is not None:
                state.record_error()
            logger.exception("worker tick error", extra=context)
            delay_ms = settings.error_backoff_ms
        else:
            if state is not None:
                state.record(tick)
            delay_ms = settings.poll_interval_ms if tick.did_work else settings.idle_backoff_ms

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
        except TimeoutError:
            continue

    if state is not None:
        state.stopped = True
    logger.info("worker loop stopped", extra=context)
