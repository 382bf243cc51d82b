from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from registrar.domain.dto import EnrichmentRequest
from registrar.domain.models import (
    AssetContext,
    AssetMetadata,
    LedgerReceipt,
    NewRegistration,
    RegistrationListQuery,
    RegistrationSnapshot,
    RegistrationStats,
    StatusUpdate,
    StorySummary,
)

# Partial unique index that keeps at most one non-FAILED record per asset.
ACTIVE_ASSET_INDEX = "registrations_active_asset_uidx"
ACTIVE_ASSET_INDEX_PREDICATE = "ON registrations (asset_id) WHERE status <> 'FAILED'"

STAGE_RESULT_FIELDS = ("enriched_metadata", "content_locator")


@runtime_checkable
class RegistrationRepository(Protocol):
    """Durable store for registration records.

    Every mutation is a single atomic operation; no transaction spans more
    than one record. Status changes are compare-and-set on the expected
    current status so that callers in different processes cannot run the
    same record concurrently.
    """

    async def create(self, *, registration: NewRegistration) -> RegistrationSnapshot: ...

    async def get(self, *, registration_id: str) -> RegistrationSnapshot | None: ...

    async def get_by_asset_id(self, *, asset_id: str) -> RegistrationSnapshot | None: ...

    async def list_registrations(self, *, query: RegistrationListQuery) -> list[RegistrationSnapshot]: ...

    async def stats(self, *, owner_id: str | None = None) -> RegistrationStats: ...

    # Returns None when the record is no longer in update.expected_status.
    async def append_status(self, *, registration_id: str, update: StatusUpdate) -> RegistrationSnapshot | None: ...

    async def set_stage_result(
        self,
        *,
        registration_id: str,
        field: str,
        value: AssetMetadata | str,
    ) -> RegistrationSnapshot: ...

    async def update_custom_metadata(
        self,
        *,
        registration_id: str,
        custom_metadata: AssetMetadata | None,
        ai_prompt: str | None,
    ) -> RegistrationSnapshot: ...

    async def next_pending(self) -> RegistrationSnapshot | None: ...

    async def list_stale_in_flight(self, *, updated_before: datetime, limit: int = 50) -> list[RegistrationSnapshot]: ...


@runtime_checkable
class EnrichmentClient(Protocol):
    async def enrich(self, request: EnrichmentRequest) -> AssetMetadata: ...


@runtime_checkable
class MetadataStorageClient(Protocol):
    """Uploads a finalized metadata document and returns its content locator."""

    async def upload(self, document: dict[str, object]) -> str: ...


@runtime_checkable
class LedgerClient(Protocol):
    async def register(
        self,
        *,
        content_locator: str,
        license_template_id: str,
        owner_id: str,
    ) -> LedgerReceipt: ...


@runtime_checkable
class AssetCatalog(Protocol):
    """Read-only view of the asset metadata/content service."""

    async def get_asset(self, asset_id: str) -> AssetContext | None: ...

    async def get_storyworld(self, storyworld_id: str) -> StorySummary | None: ...
