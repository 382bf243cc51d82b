from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from registrar.domain.models import RegistrationSnapshot, RegistrationStatus, StatusHistoryEntry


@dataclass(frozen=True)
class StageLifecycle:
    stage: str
    in_progress_state: RegistrationStatus
    success_state: RegistrationStatus
    result_field: str


STAGE_LIFECYCLES: dict[str, StageLifecycle] = {
    "enrichment": StageLifecycle(
        stage="enrichment",
        in_progress_state=RegistrationStatus.GENERATING_METADATA,
        success_state=RegistrationStatus.UPLOADING_METADATA,
        result_field="enriched_metadata",
    ),
    "upload": StageLifecycle(
        stage="upload",
        in_progress_state=RegistrationStatus.UPLOADING_METADATA,
        success_state=RegistrationStatus.REGISTERING_IP,
        result_field="content_locator",
    ),
    "registration": StageLifecycle(
        stage="registration",
        in_progress_state=RegistrationStatus.REGISTERING_IP,
        success_state=RegistrationStatus.COMPLETED,
        result_field="ledger_id",
    ),
}

STAGE_ORDER: tuple[str, ...] = ("enrichment", "upload", "registration")

STAGE_BY_STATE: dict[RegistrationStatus, str] = {
    lifecycle.in_progress_state: lifecycle.stage for lifecycle in STAGE_LIFECYCLES.values()
}

IN_FLIGHT_STATES: frozenset[RegistrationStatus] = frozenset(STAGE_BY_STATE)
EDITABLE_STATES: frozenset[RegistrationStatus] = frozenset({RegistrationStatus.DRAFT, RegistrationStatus.PENDING})


ALLOWED_TRANSITIONS: dict[RegistrationStatus, set[RegistrationStatus]] = {
    RegistrationStatus.DRAFT: {RegistrationStatus.PENDING, RegistrationStatus.FAILED},
    RegistrationStatus.PENDING: {
        RegistrationStatus.GENERATING_METADATA,
        RegistrationStatus.UPLOADING_METADATA,
        RegistrationStatus.FAILED,
    },
    RegistrationStatus.GENERATING_METADATA: {RegistrationStatus.UPLOADING_METADATA, RegistrationStatus.FAILED},
    RegistrationStatus.UPLOADING_METADATA: {RegistrationStatus.REGISTERING_IP, RegistrationStatus.FAILED},
    RegistrationStatus.REGISTERING_IP: {RegistrationStatus.COMPLETED, RegistrationStatus.FAILED},
    # Re-entry resumes at the first stage whose result is still missing.
    RegistrationStatus.FAILED: {
        RegistrationStatus.GENERATING_METADATA,
        RegistrationStatus.UPLOADING_METADATA,
        RegistrationStatus.REGISTERING_IP,
    },
    RegistrationStatus.COMPLETED: set(),
}

# Forward progress order; FAILED sits outside it.
STATUS_RANK: dict[RegistrationStatus, int] = {
    RegistrationStatus.DRAFT: 0,
    RegistrationStatus.PENDING: 1,
    RegistrationStatus.GENERATING_METADATA: 2,
    RegistrationStatus.UPLOADING_METADATA: 3,
    RegistrationStatus.REGISTERING_IP: 4,
    RegistrationStatus.COMPLETED: 5,
}


def is_allowed_transition(from_state: RegistrationStatus, to_state: RegistrationStatus) -> bool:
    return to_state in ALLOWED_TRANSITIONS.get(from_state, set())


def history_is_forward(entries: Iterable[StatusHistoryEntry]) -> bool:
    """Every entry is an allowed transition and progress never moves backwards."""
    previous: RegistrationStatus | None = None
    highest_rank = -1
    for entry in entries:
        if previous is not None and not is_allowed_transition(previous, entry.status):
            return False
        rank = STATUS_RANK.get(entry.status)
        if rank is not None:
            if rank < highest_rank:
                return False
            highest_rank = rank
        previous = entry.status
    return True


def reached_state(snapshot: RegistrationSnapshot, status: RegistrationStatus) -> bool:
    return any(entry.status == status for entry in snapshot.status_history)


def resume_state(snapshot: RegistrationSnapshot) -> RegistrationStatus:
    """First in-progress state whose stage has not produced its result yet."""
    if snapshot.content_locator is not None:
        return RegistrationStatus.REGISTERING_IP
    enrichment_done = (
        snapshot.enriched_metadata is not None
        or not snapshot.enrichment_enabled
        # An accepted enrichment skip leaves no result, only the forward transition.
        or reached_state(snapshot, RegistrationStatus.UPLOADING_METADATA)
    )
    if enrichment_done:
        return RegistrationStatus.UPLOADING_METADATA
    return RegistrationStatus.GENERATING_METADATA
