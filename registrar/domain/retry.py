from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from registrar.domain.errors import TransientExternalFailure

T = TypeVar("T")
logger = logging.getLogger("registrar.pipeline")


@dataclass(frozen=True)
class StageCallPolicy:
    timeout_seconds: float = 30.0
    max_attempts: int = 3
    backoff_base_ms: int = 500
    backoff_max_ms: int = 8000

    def backoff_seconds(self, attempt: int) -> float:
        delay_ms = min(self.backoff_base_ms * (2 ** max(attempt - 1, 0)), self.backoff_max_ms)
        return delay_ms / 1000


def stage_call_policy_from_env() -> StageCallPolicy:
    return StageCallPolicy(
        timeout_seconds=_env_float("PIPELINE_CALL_TIMEOUT_SECONDS", 30.0),
        max_attempts=_env_int("PIPELINE_MAX_ATTEMPTS", 3),
        backoff_base_ms=_env_int("PIPELINE_BACKOFF_BASE_MS", 500),
        backoff_max_ms=_env_int("PIPELINE_BACKOFF_MAX_MS", 8000),
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


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = float(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default


async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    policy: StageCallPolicy,
    stage: str,
    registration_id: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run one external call with a per-attempt timeout and bounded retries.

    Timeouts and TransientExternalFailure are retried with exponential
    backoff; FatalExternalFailure and anything else propagate immediately.
    The last transient failure is re-raised once attempts are exhausted.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await asyncio.wait_for(call(), timeout=policy.timeout_seconds)
        except TransientExternalFailure as exc:
            failure = exc
        except TimeoutError:
            failure = TransientExternalFailure(
                f"call timed out after {policy.timeout_seconds:g}s",
                code="timeout",
            )

        if attempt >= policy.max_attempts:
            raise failure

        logger.warning(
            "stage call failed, retrying",
            extra={
                "registration_id": registration_id,
                "stage": stage,
                "error_code": failure.code,
                "attempt": attempt,
            },
        )
        await sleep(policy.backoff_seconds(attempt))
