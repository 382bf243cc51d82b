from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TypeVar

from registrar.domain.contracts import (
    AssetCatalog,
    EnrichmentClient,
    LedgerClient,
    MetadataStorageClient,
    RegistrationRepository,
)
from registrar.domain.dto import EnrichmentRequest, ProcessRegistrationResult
from registrar.domain.error_taxonomy import resolve_stage_error
from registrar.domain.errors import ExternalServiceError, RegistrationNotFound
from registrar.domain.lifecycle import IN_FLIGHT_STATES, STAGE_BY_STATE, resume_state
from registrar.domain.metadata import base_metadata, build_metadata_document, merge_metadata
from registrar.domain.models import (
    AssetContext,
    LedgerReceipt,
    ProcessOutcome,
    RegistrationSnapshot,
    RegistrationStatus,
    StatusUpdate,
    StorySummary,
)
from registrar.domain.retry import StageCallPolicy, call_with_retry

logger = logging.getLogger("registrar.pipeline")

_T = TypeVar("_T")


@dataclass(frozen=True)
class PipelineDeps:
    repository: RegistrationRepository
    enrichment: EnrichmentClient
    storage: MetadataStorageClient
    ledger: LedgerClient
    assets: AssetCatalog
    policy: StageCallPolicy = field(default_factory=StageCallPolicy)


class _StatusMoved(Exception):
    """The record left the expected status while this run was driving it."""


@dataclass(frozen=True)
class StageContext:
    """Catalog data loaded once per run. Both parts are optional."""

    asset: AssetContext | None = None
    storyworld: StorySummary | None = None


StageRunner = Callable[[PipelineDeps, RegistrationSnapshot, StageContext], Awaitable[RegistrationSnapshot]]


async def process_registration(deps: PipelineDeps, *, registration_id: str) -> ProcessRegistrationResult:
    """Drive one registration through its remaining stages.

    Re-invocation is safe: COMPLETED records are returned untouched, records
    already in flight report a conflict, FAILED records resume at the first
    stage whose result is missing. Stage failures never raise; they are
    persisted on the record and reported through the returned outcome.
    """
    snapshot = await deps.repository.get(registration_id=registration_id)
    if snapshot is None:
        raise RegistrationNotFound(registration_id)

    if snapshot.status == RegistrationStatus.COMPLETED:
        return _result(snapshot, ProcessOutcome.NOOP, "registration already completed")
    if snapshot.status in IN_FLIGHT_STATES:
        return _result(snapshot, ProcessOutcome.CONFLICT, "registration is already being processed")

    if snapshot.status == RegistrationStatus.DRAFT:
        submitted = await deps.repository.append_status(
            registration_id=registration_id,
            update=StatusUpdate(
                expected_status=RegistrationStatus.DRAFT,
                status=RegistrationStatus.PENDING,
                message="Registration submitted for processing",
            ),
        )
        if submitted is None:
            return await _conflict(deps, registration_id)
        snapshot = submitted

    start_state = resume_state(snapshot)
    resuming = snapshot.status == RegistrationStatus.FAILED
    claimed = await deps.repository.append_status(
        registration_id=registration_id,
        update=StatusUpdate(
            expected_status=snapshot.status,
            status=start_state,
            message=_start_message(snapshot, start_state, resuming=resuming),
            count_retry=resuming,
        ),
    )
    if claimed is None:
        return await _conflict(deps, registration_id)

    logger.info(
        "registration processing started",
        extra={"registration_id": registration_id, "stage": STAGE_BY_STATE[start_state]},
    )
    return await _run_stages(deps, claimed)


async def _run_stages(deps: PipelineDeps, snapshot: RegistrationSnapshot) -> ProcessRegistrationResult:
    context = await _load_context(deps, snapshot)
    while snapshot.status != RegistrationStatus.COMPLETED:
        stage = STAGE_BY_STATE[snapshot.status]
        try:
            snapshot = await _STAGE_RUNNERS[stage](deps, snapshot, context)
        except _StatusMoved:
            return await _conflict(deps, snapshot.registration_id)
        except ExternalServiceError as exc:
            return await _fail(deps, snapshot, stage=stage, code=exc.code, detail=str(exc))
        except Exception as exc:
            logger.exception(
                "registration stage crashed",
                extra={"registration_id": snapshot.registration_id, "stage": stage},
            )
            return await _fail(deps, snapshot, stage=stage, code="internal_error", detail=str(exc) or type(exc).__name__)

    logger.info(
        "registration completed",
        extra={"registration_id": snapshot.registration_id, "stage": "registration"},
    )
    return _result(snapshot, ProcessOutcome.COMPLETED, "registration completed")


async def _load_context(deps: PipelineDeps, snapshot: RegistrationSnapshot) -> StageContext:
    """Look up the asset and the record's storyworld.

    Catalog failures are logged and leave the matching part empty; the
    pipeline then falls back to the data stored on the record.
    """
    asset = await _lookup(
        deps,
        snapshot,
        lambda: deps.assets.get_asset(snapshot.asset_id),
        what="asset",
    )
    storyworld = asset.storyworld if asset is not None else None
    storyworld_id = snapshot.storyworld_id
    if storyworld_id:
        found = await _lookup(
            deps,
            snapshot,
            lambda: deps.assets.get_storyworld(storyworld_id),
            what="storyworld",
        )
        if found is not None:
            storyworld = found
    if asset is not None and storyworld is not asset.storyworld:
        asset = replace(asset, storyworld=storyworld)
    return StageContext(asset=asset, storyworld=storyworld)


async def _lookup(
    deps: PipelineDeps,
    snapshot: RegistrationSnapshot,
    call: Callable[[], Awaitable[_T | None]],
    *,
    what: str,
) -> _T | None:
    stage = STAGE_BY_STATE[snapshot.status]
    try:
        return await call_with_retry(call, policy=deps.policy, stage=stage, registration_id=snapshot.registration_id)
    except Exception:
        logger.warning(
            f"{what} lookup failed; continuing without it",
            exc_info=True,
            extra={"registration_id": snapshot.registration_id, "stage": stage},
        )
        return None


async def _run_enrichment(
    deps: PipelineDeps,
    snapshot: RegistrationSnapshot,
    context: StageContext,
) -> RegistrationSnapshot:
    request = _enrichment_request(snapshot, context)
    try:
        enriched = await call_with_retry(
            lambda: deps.enrichment.enrich(request),
            policy=deps.policy,
            stage="enrichment",
            registration_id=snapshot.registration_id,
        )
    except Exception as exc:
        if snapshot.enrichment_required:
            raise
        code = exc.code if isinstance(exc, ExternalServiceError) else "internal_error"
        logger.warning(
            "optional enrichment skipped",
            exc_info=True,
            extra={"registration_id": snapshot.registration_id, "stage": "enrichment", "error_code": code},
        )
        detail = str(exc) or type(exc).__name__
        message = f"Metadata enrichment skipped ({code}: {detail}); uploading metadata to decentralized storage"
    else:
        snapshot = await deps.repository.set_stage_result(
            registration_id=snapshot.registration_id,
            field="enriched_metadata",
            value=enriched,
        )
        message = (
            f"Generated metadata '{enriched.title}' with {len(enriched.attributes)} attributes; "
            "uploading metadata to decentralized storage"
        )
    return await _advance(deps, snapshot, status=RegistrationStatus.UPLOADING_METADATA, message=message)


async def _run_upload(
    deps: PipelineDeps,
    snapshot: RegistrationSnapshot,
    context: StageContext,
) -> RegistrationSnapshot:
    document = build_metadata_document(snapshot, asset=context.asset)
    locator = await call_with_retry(
        lambda: deps.storage.upload(document),
        policy=deps.policy,
        stage="upload",
        registration_id=snapshot.registration_id,
    )
    snapshot = await deps.repository.set_stage_result(
        registration_id=snapshot.registration_id,
        field="content_locator",
        value=locator,
    )
    return await _advance(
        deps,
        snapshot,
        status=RegistrationStatus.REGISTERING_IP,
        message=f"Metadata uploaded to {locator}; registering IP with license {snapshot.license_template_id}",
    )


async def _run_registration(
    deps: PipelineDeps,
    snapshot: RegistrationSnapshot,
    context: StageContext,
) -> RegistrationSnapshot:
    del context
    content_locator = snapshot.content_locator
    if content_locator is None:
        raise ExternalServiceError("content locator is missing before ledger registration")
    receipt = await call_with_retry(
        lambda: deps.ledger.register(
            content_locator=content_locator,
            license_template_id=snapshot.license_template_id,
            owner_id=snapshot.owner_id,
        ),
        policy=deps.policy,
        stage="registration",
        registration_id=snapshot.registration_id,
    )
    return await _advance(
        deps,
        snapshot,
        status=RegistrationStatus.COMPLETED,
        message=f"IP registered as {receipt.ledger_id} (transaction {receipt.transaction_ref})",
        receipt=receipt,
    )


_STAGE_RUNNERS: dict[str, StageRunner] = {
    "enrichment": _run_enrichment,
    "upload": _run_upload,
    "registration": _run_registration,
}


async def _advance(
    deps: PipelineDeps,
    snapshot: RegistrationSnapshot,
    *,
    status: RegistrationStatus,
    message: str,
    receipt: LedgerReceipt | None = None,
) -> RegistrationSnapshot:
    advanced = await deps.repository.append_status(
        registration_id=snapshot.registration_id,
        update=StatusUpdate(
            expected_status=snapshot.status,
            status=status,
            message=message,
            receipt=receipt,
        ),
    )
    if advanced is None:
        raise _StatusMoved(snapshot.registration_id)
    return advanced


async def _fail(
    deps: PipelineDeps,
    snapshot: RegistrationSnapshot,
    *,
    stage: str,
    code: str,
    detail: str,
) -> ProcessRegistrationResult:
    error_code = resolve_stage_error(stage=stage, code=code)
    logger.warning(
        "registration stage failed",
        extra={"registration_id": snapshot.registration_id, "stage": stage, "error_code": error_code},
    )
    failed = await deps.repository.append_status(
        registration_id=snapshot.registration_id,
        update=StatusUpdate(
            expected_status=snapshot.status,
            status=RegistrationStatus.FAILED,
            message=f"Registration failed during {stage}",
            error=f"{stage}: {detail}",
            error_code=error_code,
        ),
    )
    if failed is None:
        return await _conflict(deps, snapshot.registration_id)
    return _result(failed, ProcessOutcome.FAILED, failed.last_error or detail)


async def _conflict(deps: PipelineDeps, registration_id: str) -> ProcessRegistrationResult:
    current = await deps.repository.get(registration_id=registration_id)
    if current is None:
        raise RegistrationNotFound(registration_id)
    return _result(current, ProcessOutcome.CONFLICT, "registration status changed concurrently")


def _result(snapshot: RegistrationSnapshot, outcome: ProcessOutcome, detail: str) -> ProcessRegistrationResult:
    return ProcessRegistrationResult(
        registration_id=snapshot.registration_id,
        status=snapshot.status,
        outcome=outcome,
        detail=detail,
        ledger_id=snapshot.ledger_id,
        transaction_ref=snapshot.transaction_ref,
    )


def _enrichment_request(snapshot: RegistrationSnapshot, context: StageContext) -> EnrichmentRequest:
    asset = context.asset
    current = base_metadata(asset_id=snapshot.asset_id, asset=asset)
    if snapshot.custom_metadata is not None:
        current = merge_metadata(current, snapshot.custom_metadata, replace_attributes=True)
    return EnrichmentRequest(
        asset_id=snapshot.asset_id,
        current_title=current.title,
        current_description=current.description,
        ai_prompt=snapshot.ai_prompt,
        asset_type_hint=asset.asset_type if asset is not None else None,
        storyworld_context=context.storyworld,
    )


def _start_message(snapshot: RegistrationSnapshot, start_state: RegistrationStatus, *, resuming: bool) -> str:
    prefix = f"Resuming after failure ({snapshot.last_error_code or 'unknown'}): " if resuming else ""
    if start_state == RegistrationStatus.GENERATING_METADATA:
        return f"{prefix}Generating enhanced metadata with AI"
    if start_state == RegistrationStatus.UPLOADING_METADATA:
        reason = "" if resuming or snapshot.enrichment_enabled else "Metadata enrichment disabled; "
        return f"{prefix}{reason}Uploading metadata to decentralized storage"
    return f"{prefix}Registering IP with license {snapshot.license_template_id} using {snapshot.content_locator}"
