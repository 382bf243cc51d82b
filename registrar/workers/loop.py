from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
import logging

from registrar.domain.error_taxonomy import resolve_stage_error
from registrar.domain.lifecycle import STAGE_BY_STATE
from registrar.domain.models import ProcessOutcome, RegistrationStatus, StatusUpdate
from registrar.domain.use_cases.process import PipelineDeps, process_registration

logger = logging.getLogger("runtime")


@dataclass(frozen=True)
class WorkerTick:
    reclaimed: int = 0
    outcome: ProcessOutcome | None = None

    @property
    def did_work(self) -> bool:
        return self.outcome is not None


@dataclass
class RegistrationWorkerLoop:
    role: str
    pipeline: PipelineDeps
    stage: str = "register"
    stale_after_seconds: int = 600
    reclaim_batch_size: int = 50

    async def reclaim_stale(self) -> int:
        """Move records stuck in flight to FAILED so they can be resumed."""
        repository = self.pipeline.repository
        cutoff = datetime.now(tz=UTC) - timedelta(seconds=self.stale_after_seconds)
        stale = await repository.list_stale_in_flight(updated_before=cutoff, limit=self.reclaim_batch_size)

        reclaimed = 0
        for snapshot in stale:
            stage = STAGE_BY_STATE[snapshot.status]
            failed = await repository.append_status(
                registration_id=snapshot.registration_id,
                update=StatusUpdate(
                    expected_status=snapshot.status,
                    status=RegistrationStatus.FAILED,
                    message=f"Processing abandoned during {stage}; ready to resume",
                    error=f"{stage}: no progress for {self.stale_after_seconds} seconds",
                    error_code=resolve_stage_error(stage="reclaim", code="lease_expired"),
                ),
            )
            if failed is None:
                continue
            reclaimed += 1
            logger.warning(
                "stale registration reclaimed",
                extra={"registration_id": snapshot.registration_id, "stage": stage, "error_code": "lease_expired"},
            )
        return reclaimed

    async def run_once(self) -> WorkerTick:
        reclaimed = await self.reclaim_stale()

        snapshot = await self.pipeline.repository.next_pending()
        if snapshot is None:
            return WorkerTick(reclaimed=reclaimed)

        result = await process_registration(self.pipeline, registration_id=snapshot.registration_id)
        logger.info(
            "registration processed",
            extra={
                "role": self.role,
                "registration_id": result.registration_id,
                "stage": self.stage,
                "outcome": result.outcome.value,
            },
        )
        return WorkerTick(reclaimed=reclaimed, outcome=result.outcome)
