from __future__ import annotations

from registrar.api.handlers.deps import ApiDeps
from registrar.api.handlers.status import registration_response
from registrar.api.schemas import (
    AssetMetadataModel,
    BatchItemResponse,
    BatchRegistrationRequest,
    BatchRegistrationResponse,
    BatchSummaryResponse,
    CreateRegistrationRequest,
    CreateRegistrationResponse,
    ProcessRegistrationResponse,
    RegistrationStatusResponse,
)
from registrar.domain.dto import BatchRegistrationCommand, CreateRegistrationCommand
from registrar.domain.errors import RegistrationNotFound
from registrar.domain.models import AssetMetadata, MetadataAttribute, ProcessOutcome
from registrar.domain.use_cases.batch import register_batch
from registrar.domain.use_cases.process import process_registration
from registrar.domain.use_cases.registrations import (
    create_registration,
    submit_registration,
    update_registration_metadata,
)


def metadata_from_model(model: AssetMetadataModel | None) -> AssetMetadata | None:
    if model is None:
        return None
    return AssetMetadata(
        title=model.title,
        description=model.description,
        attributes=tuple(MetadataAttribute(trait_type=item.trait_type, value=item.value) for item in model.attributes),
    )


async def create_registration_handler(
    *,
    request: CreateRegistrationRequest,
    api_deps: ApiDeps,
) -> CreateRegistrationResponse:
    result = await create_registration(
        api_deps.repository,
        CreateRegistrationCommand(
            asset_id=request.asset_id,
            owner_id=request.owner_id,
            license_template_id=request.license_template_id,
            custom_metadata=metadata_from_model(request.custom_metadata),
            ai_prompt=request.ai_prompt,
            enrichment_enabled=request.enrichment_enabled,
            enrichment_required=request.enrichment_required,
            storyworld_id=request.storyworld_id,
            draft=request.draft,
        ),
        assets=api_deps.assets,
    )
    return CreateRegistrationResponse(registration_id=result.registration_id, status=result.status)


async def submit_registration_handler(*, registration_id: str, api_deps: ApiDeps) -> RegistrationStatusResponse:
    snapshot = await submit_registration(api_deps.repository, registration_id=registration_id)
    return registration_response(snapshot)


async def update_registration_metadata_handler(
    *,
    registration_id: str,
    custom_metadata: AssetMetadataModel | None,
    ai_prompt: str | None,
    api_deps: ApiDeps,
) -> RegistrationStatusResponse:
    snapshot = await update_registration_metadata(
        api_deps.repository,
        registration_id=registration_id,
        custom_metadata=metadata_from_model(custom_metadata),
        ai_prompt=ai_prompt,
    )
    return registration_response(snapshot)


async def process_registration_handler(*, registration_id: str, api_deps: ApiDeps) -> ProcessRegistrationResponse:
    result = await process_registration(api_deps.pipeline, registration_id=registration_id)
    return ProcessRegistrationResponse(
        registration_id=result.registration_id,
        status=result.status,
        outcome=result.outcome,
        detail=result.detail,
        ledger_id=result.ledger_id,
        transaction_ref=result.transaction_ref,
    )


async def schedule_registration_handler(*, registration_id: str, api_deps: ApiDeps) -> ProcessRegistrationResponse:
    """Validate the id and report the current status; the run itself happens in the background."""
    snapshot = await api_deps.repository.get(registration_id=registration_id)
    if snapshot is None:
        raise RegistrationNotFound(registration_id)
    return ProcessRegistrationResponse(
        registration_id=snapshot.registration_id,
        status=snapshot.status,
        outcome=ProcessOutcome.SUBMITTED,
        detail="processing scheduled",
        ledger_id=snapshot.ledger_id,
        transaction_ref=snapshot.transaction_ref,
    )


async def batch_registration_handler(
    *,
    request: BatchRegistrationRequest,
    api_deps: ApiDeps,
) -> BatchRegistrationResponse:
    result = await register_batch(
        api_deps.pipeline,
        BatchRegistrationCommand(
            asset_ids=tuple(request.asset_ids),
            owner_id=request.owner_id,
            license_template_id=request.license_template_id,
            ai_prompt=request.ai_prompt,
            enrichment_enabled=request.enrichment_enabled,
            enrichment_required=request.enrichment_required,
            storyworld_id=request.storyworld_id,
        ),
        assets=api_deps.assets,
    )
    return BatchRegistrationResponse(
        items=[
            BatchItemResponse(
                asset_id=item.asset_id,
                success=item.success,
                registration_id=item.registration_id,
                status=item.status,
                ledger_id=item.ledger_id,
                transaction_ref=item.transaction_ref,
                error=item.error,
            )
            for item in result.items
        ],
        summary=BatchSummaryResponse(total=result.total, successful=result.successful, failed=result.failed),
    )
