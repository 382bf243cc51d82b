from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from registrar.domain.contracts import STAGE_RESULT_FIELDS
from registrar.domain.errors import (
    DomainInvariantError,
    DraftLockedError,
    DuplicateActiveRegistration,
    RegistrationNotFound,
)
from registrar.domain.ids import new_registration_id
from registrar.domain.lifecycle import EDITABLE_STATES, IN_FLIGHT_STATES, STAGE_LIFECYCLES, is_allowed_transition
from registrar.domain.models import (
    AssetMetadata,
    NewRegistration,
    RegistrationListQuery,
    RegistrationSnapshot,
    RegistrationStats,
    RegistrationStatus,
    StatusHistoryEntry,
    StatusUpdate,
)

_RESULT_STAGE_STATE = {
    "enriched_metadata": STAGE_LIFECYCLES["enrichment"].in_progress_state,
    "content_locator": STAGE_LIFECYCLES["upload"].in_progress_state,
}


@dataclass
class _RegistrationRow:
    id: int
    registration_id: str
    asset_id: str
    owner_id: str
    status: RegistrationStatus
    license_template_id: str
    custom_metadata: AssetMetadata | None
    ai_prompt: str | None
    enrichment_enabled: bool
    enrichment_required: bool
    storyworld_id: str | None
    enriched_metadata: AssetMetadata | None = None
    content_locator: str | None = None
    ledger_id: str | None = None
    transaction_ref: str | None = None
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    last_error: str | None = None
    last_error_code: str | None = None
    retry_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    completed_at: datetime | None = None


@dataclass
class InMemoryRegistrationRepository:
    """Non-network repository with deterministic behavior.

    Each method completes its check-and-write without awaiting, so within
    one event loop every operation is atomic.
    """

    registrations: dict[str, _RegistrationRow] = field(default_factory=dict)
    transitions: list[tuple[str, str, str]] = field(default_factory=list)
    next_row_id: int = 1

    async def create(self, *, registration: NewRegistration) -> RegistrationSnapshot:
        existing = self._active_row_for_asset(registration.asset_id)
        if existing is not None:
            raise DuplicateActiveRegistration(registration.asset_id, existing.registration_id)

        now = datetime.now(tz=UTC)
        row = _RegistrationRow(
            id=self.next_row_id,
            registration_id=new_registration_id(),
            asset_id=registration.asset_id,
            owner_id=registration.owner_id,
            status=registration.initial_status,
            license_template_id=registration.license_template_id,
            custom_metadata=registration.custom_metadata,
            ai_prompt=registration.ai_prompt,
            enrichment_enabled=registration.enrichment_enabled,
            enrichment_required=registration.enrichment_required,
            storyworld_id=registration.storyworld_id,
            status_history=[
                StatusHistoryEntry(
                    status=registration.initial_status,
                    timestamp=now,
                    message="Registration record created",
                )
            ],
            created_at=now,
            updated_at=now,
        )
        self.next_row_id += 1
        self.registrations[row.registration_id] = row
        return _snapshot(row)

    async def get(self, *, registration_id: str) -> RegistrationSnapshot | None:
        row = self.registrations.get(registration_id)
        if row is None:
            return None
        return _snapshot(row)

    async def get_by_asset_id(self, *, asset_id: str) -> RegistrationSnapshot | None:
        rows = [row for row in self.registrations.values() if row.asset_id == asset_id]
        if not rows:
            return None
        return _snapshot(max(rows, key=lambda row: row.id))

    async def list_registrations(self, *, query: RegistrationListQuery) -> list[RegistrationSnapshot]:
        rows: list[_RegistrationRow] = []
        for row in self.registrations.values():
            if query.statuses is not None and row.status not in set(query.statuses):
                continue
            if query.owner_id is not None and row.owner_id != query.owner_id:
                continue
            if query.asset_id is not None and row.asset_id != query.asset_id:
                continue
            if query.storyworld_id is not None and row.storyworld_id != query.storyworld_id:
                continue
            rows.append(row)

        rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
        start = query.offset
        end = query.offset + query.limit
        return [_snapshot(row) for row in rows[start:end]]

    async def stats(self, *, owner_id: str | None = None) -> RegistrationStats:
        by_status: dict[str, int] = {}
        total = 0
        for row in self.registrations.values():
            if owner_id is not None and row.owner_id != owner_id:
                continue
            total += 1
            by_status[row.status.value] = by_status.get(row.status.value, 0) + 1
        return RegistrationStats(total=total, by_status=by_status)

    async def append_status(self, *, registration_id: str, update: StatusUpdate) -> RegistrationSnapshot | None:
        row = self.registrations.get(registration_id)
        if row is None:
            raise RegistrationNotFound(registration_id)
        if row.status != update.expected_status:
            return None
        if not is_allowed_transition(row.status, update.status):
            raise DomainInvariantError(f"invalid transition: {row.status} -> {update.status}")
        if update.status == RegistrationStatus.COMPLETED and update.receipt is None:
            raise DomainInvariantError("ledger receipt is required to complete a registration")
        if row.status == RegistrationStatus.FAILED:
            # Re-entry makes the record active again.
            existing = self._active_row_for_asset(row.asset_id)
            if existing is not None:
                raise DuplicateActiveRegistration(row.asset_id, existing.registration_id)

        now = datetime.now(tz=UTC)
        self.transitions.append((registration_id, row.status.value, update.status.value))
        row.status = update.status
        row.status_history.append(StatusHistoryEntry(status=update.status, timestamp=now, message=update.message))
        row.updated_at = now
        if update.status == RegistrationStatus.FAILED:
            row.last_error = update.error
            row.last_error_code = update.error_code
        else:
            row.last_error = None
            row.last_error_code = None
        if update.receipt is not None:
            row.ledger_id = update.receipt.ledger_id
            row.transaction_ref = update.receipt.transaction_ref
            row.completed_at = now
        if update.count_retry:
            row.retry_count += 1
        return _snapshot(row)

    async def set_stage_result(
        self,
        *,
        registration_id: str,
        field: str,
        value: AssetMetadata | str,
    ) -> RegistrationSnapshot:
        if field not in STAGE_RESULT_FIELDS:
            raise DomainInvariantError(f"unknown stage result field: {field}")
        row = self.registrations.get(registration_id)
        if row is None:
            raise RegistrationNotFound(registration_id)
        if row.status != _RESULT_STAGE_STATE[field]:
            raise DomainInvariantError(f"stage result {field} rejected in status {row.status}")
        setattr(row, field, value)
        row.updated_at = datetime.now(tz=UTC)
        return _snapshot(row)

    async def update_custom_metadata(
        self,
        *,
        registration_id: str,
        custom_metadata: AssetMetadata | None,
        ai_prompt: str | None,
    ) -> RegistrationSnapshot:
        row = self.registrations.get(registration_id)
        if row is None:
            raise RegistrationNotFound(registration_id)
        if row.status not in EDITABLE_STATES:
            raise DraftLockedError(f"metadata is locked once processing started (status {row.status})")
        row.custom_metadata = custom_metadata
        row.ai_prompt = ai_prompt
        row.updated_at = datetime.now(tz=UTC)
        return _snapshot(row)

    async def next_pending(self) -> RegistrationSnapshot | None:
        pending = [row for row in self.registrations.values() if row.status == RegistrationStatus.PENDING]
        if not pending:
            return None
        return _snapshot(min(pending, key=lambda row: (row.created_at, row.id)))

    async def list_stale_in_flight(self, *, updated_before: datetime, limit: int = 50) -> list[RegistrationSnapshot]:
        stale = [
            row
            for row in self.registrations.values()
            if row.status in IN_FLIGHT_STATES and row.updated_at < updated_before
        ]
        stale.sort(key=lambda row: (row.updated_at, row.id))
        return [_snapshot(row) for row in stale[:limit]]

    def _active_row_for_asset(self, asset_id: str) -> _RegistrationRow | None:
        for row in self.registrations.values():
            if row.asset_id == asset_id and row.status != RegistrationStatus.FAILED:
                return row
        return None


def _snapshot(row: _RegistrationRow) -> RegistrationSnapshot:
    return RegistrationSnapshot(
        registration_id=row.registration_id,
        asset_id=row.asset_id,
        owner_id=row.owner_id,
        status=row.status,
        license_template_id=row.license_template_id,
        custom_metadata=row.custom_metadata,
        ai_prompt=row.ai_prompt,
        enrichment_enabled=row.enrichment_enabled,
        enrichment_required=row.enrichment_required,
        storyworld_id=row.storyworld_id,
        enriched_metadata=row.enriched_metadata,
        content_locator=row.content_locator,
        ledger_id=row.ledger_id,
        transaction_ref=row.transaction_ref,
        status_history=tuple(row.status_history),
        last_error=row.last_error,
        last_error_code=row.last_error_code,
        retry_count=row.retry_count,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
    )
