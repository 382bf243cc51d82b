from __future__ import annotations

from registrar.api.handlers.deps import ApiDeps
from registrar.api.schemas import (
    AssetMetadataModel,
    ListRegistrationsResponse,
    MetadataAttributeModel,
    RegistrationStatsResponse,
    RegistrationStatusResponse,
    StatusHistoryEntryModel,
)
from registrar.domain.models import AssetMetadata, RegistrationListQuery, RegistrationSnapshot, RegistrationStatus
from registrar.domain.use_cases.status import get_registration_status, list_registrations, registration_stats


def metadata_model(metadata: AssetMetadata | None) -> AssetMetadataModel | None:
    if metadata is None:
        return None
    return AssetMetadataModel(
        title=metadata.title,
        description=metadata.description,
        attributes=[
            MetadataAttributeModel(trait_type=item.trait_type, value=item.value) for item in metadata.attributes
        ],
    )


def registration_response(snapshot: RegistrationSnapshot) -> RegistrationStatusResponse:
    return RegistrationStatusResponse(
        registration_id=snapshot.registration_id,
        asset_id=snapshot.asset_id,
        owner_id=snapshot.owner_id,
        status=snapshot.status,
        license_template_id=snapshot.license_template_id,
        custom_metadata=metadata_model(snapshot.custom_metadata),
        ai_prompt=snapshot.ai_prompt,
        enrichment_enabled=snapshot.enrichment_enabled,
        enrichment_required=snapshot.enrichment_required,
        storyworld_id=snapshot.storyworld_id,
        enriched_metadata=metadata_model(snapshot.enriched_metadata),
        content_locator=snapshot.content_locator,
        ledger_id=snapshot.ledger_id,
        transaction_ref=snapshot.transaction_ref,
        status_history=[
            StatusHistoryEntryModel(status=entry.status, timestamp=entry.timestamp, message=entry.message)
            for entry in snapshot.status_history
        ],
        last_error=snapshot.last_error,
        last_error_code=snapshot.last_error_code,
        retry_count=snapshot.retry_count,
        created_at=snapshot.created_at,
        updated_at=snapshot.updated_at,
        completed_at=snapshot.completed_at,
    )


async def get_registration_status_handler(*, reference: str, api_deps: ApiDeps) -> RegistrationStatusResponse:
    snapshot = await get_registration_status(api_deps.repository, reference=reference)
    return registration_response(snapshot)


async def list_registrations_handler(
    *,
    statuses: list[RegistrationStatus] | None,
    owner_id: str | None,
    asset_id: str | None,
    limit: int,
    offset: int,
    api_deps: ApiDeps,
    storyworld_id: str | None = None,
) -> ListRegistrationsResponse:
    query = RegistrationListQuery(
        statuses=tuple(statuses) if statuses else None,
        owner_id=owner_id,
        asset_id=asset_id,
        storyworld_id=storyworld_id,
        limit=limit,
        offset=offset,
    )
    items = await list_registrations(api_deps.repository, query=query)
    return ListRegistrationsResponse(
        items=[registration_response(item) for item in items],
        limit=limit,
        offset=offset,
    )


async def registration_stats_handler(*, owner_id: str | None, api_deps: ApiDeps) -> RegistrationStatsResponse:
    stats = await registration_stats(api_deps.repository, owner_id=owner_id)
    return RegistrationStatsResponse(
        total=stats.total,
        completed=stats.completed,
        failed=stats.failed,
        in_progress=stats.in_progress,
        by_status=dict(stats.by_status),
    )
