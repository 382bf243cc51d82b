from __future__ import annotations

import logging

from registrar.domain.contracts import AssetCatalog
from registrar.domain.dto import (
    BatchItemResult,
    BatchRegistrationCommand,
    BatchRegistrationResult,
    CreateRegistrationCommand,
)
from registrar.domain.errors import DomainError, DomainValidationError
from registrar.domain.models import ProcessOutcome
from registrar.domain.use_cases.process import PipelineDeps, process_registration
from registrar.domain.use_cases.registrations import create_registration

logger = logging.getLogger("registrar.pipeline")

MAX_BATCH_SIZE = 10


async def register_batch(
    deps: PipelineDeps,
    cmd: BatchRegistrationCommand,
    *,
    assets: AssetCatalog | None = None,
) -> BatchRegistrationResult:
    """Create and process one registration per asset, in order.

    A failing asset does not stop the batch: its item carries the error and
    the remaining assets are still attempted. An item succeeds only when its
    registration reaches COMPLETED.
    """
    if not cmd.asset_ids:
        raise DomainValidationError("asset_ids must not be empty")
    if len(cmd.asset_ids) > MAX_BATCH_SIZE:
        raise DomainValidationError(f"at most {MAX_BATCH_SIZE} assets can be registered in one batch")

    items: list[BatchItemResult] = []
    for asset_id in cmd.asset_ids:
        items.append(await _register_one(deps, cmd, asset_id=asset_id, assets=assets))

    result = BatchRegistrationResult(items=tuple(items))
    logger.info(
        "batch registration finished: %d of %d completed",
        result.successful,
        result.total,
        extra={"stage": "registration"},
    )
    return result


async def _register_one(
    deps: PipelineDeps,
    cmd: BatchRegistrationCommand,
    *,
    asset_id: str,
    assets: AssetCatalog | None,
) -> BatchItemResult:
    try:
        created = await create_registration(
            deps.repository,
            CreateRegistrationCommand(
                asset_id=asset_id,
                owner_id=cmd.owner_id,
                license_template_id=cmd.license_template_id,
                ai_prompt=cmd.ai_prompt,
                enrichment_enabled=cmd.enrichment_enabled,
                enrichment_required=cmd.enrichment_required,
                storyworld_id=cmd.storyworld_id,
            ),
            assets=assets,
        )
        processed = await process_registration(deps, registration_id=created.registration_id)
    except DomainError as exc:
        return BatchItemResult(asset_id=asset_id, success=False, error=str(exc))

    succeeded = processed.outcome == ProcessOutcome.COMPLETED
    return BatchItemResult(
        asset_id=asset_id,
        success=succeeded,
        registration_id=processed.registration_id,
        status=processed.status,
        ledger_id=processed.ledger_id,
        transaction_ref=processed.transaction_ref,
        error=None if succeeded else processed.detail,
    )
