from __future__ import annotations

from registrar.domain.contracts import AssetCatalog, RegistrationRepository
from registrar.domain.dto import CreateRegistrationCommand, CreateRegistrationResult
from registrar.domain.errors import DomainValidationError, RegistrationNotFound
from registrar.domain.models import (
    AssetMetadata,
    NewRegistration,
    RegistrationSnapshot,
    RegistrationStatus,
    StatusUpdate,
)


MAX_AI_PROMPT_LENGTH = 2000


async def create_registration(
    repository: RegistrationRepository,
    cmd: CreateRegistrationCommand,
    *,
    assets: AssetCatalog | None = None,
) -> CreateRegistrationResult:
    """Create a registration record for an asset.

    Raises DuplicateActiveRegistration when the asset already has a
    non-failed registration; the check and the insert are one atomic
    repository operation. With ``assets`` the asset must exist in the
    catalog and belong to ``owner_id``.
    """
    asset_id = cmd.asset_id.strip()
    owner_id = cmd.owner_id.strip()
    if not asset_id:
        raise DomainValidationError("asset_id must not be empty")
    if not owner_id:
        raise DomainValidationError("owner_id must not be empty")
    if not cmd.license_template_id.strip():
        raise DomainValidationError("license_template_id must not be empty")
    _validate_prompt(cmd.ai_prompt)
    if cmd.enrichment_required and not cmd.enrichment_enabled:
        raise DomainValidationError("enrichment_required needs enrichment_enabled")
    if assets is not None:
        await _check_asset_ownership(assets, asset_id=asset_id, owner_id=owner_id)

    snapshot = await repository.create(
        registration=NewRegistration(
            asset_id=asset_id,
            owner_id=owner_id,
            license_template_id=cmd.license_template_id.strip(),
            initial_status=RegistrationStatus.DRAFT if cmd.draft else RegistrationStatus.PENDING,
            custom_metadata=cmd.custom_metadata,
            ai_prompt=cmd.ai_prompt,
            enrichment_enabled=cmd.enrichment_enabled,
            enrichment_required=cmd.enrichment_required,
            storyworld_id=cmd.storyworld_id,
        )
    )
    return CreateRegistrationResult(registration_id=snapshot.registration_id, status=snapshot.status)


async def submit_registration(repository: RegistrationRepository, *, registration_id: str) -> RegistrationSnapshot:
    """Move a DRAFT record to PENDING so the worker picks it up."""
    snapshot = await repository.get(registration_id=registration_id)
    if snapshot is None:
        raise RegistrationNotFound(registration_id)
    if snapshot.status != RegistrationStatus.DRAFT:
        return snapshot

    submitted = await repository.append_status(
        registration_id=registration_id,
        update=StatusUpdate(
            expected_status=RegistrationStatus.DRAFT,
            status=RegistrationStatus.PENDING,
            message="Registration submitted for processing",
        ),
    )
    if submitted is not None:
        return submitted
    current = await repository.get(registration_id=registration_id)
    if current is None:
        raise RegistrationNotFound(registration_id)
    return current


async def update_registration_metadata(
    repository: RegistrationRepository,
    *,
    registration_id: str,
    custom_metadata: AssetMetadata | None,
    ai_prompt: str | None,
) -> RegistrationSnapshot:
    """Replace the creator-supplied metadata while the record is DRAFT or PENDING."""
    _validate_prompt(ai_prompt)
    return await repository.update_custom_metadata(
        registration_id=registration_id,
        custom_metadata=custom_metadata,
        ai_prompt=ai_prompt,
    )


async def _check_asset_ownership(assets: AssetCatalog, *, asset_id: str, owner_id: str) -> None:
    asset = await assets.get_asset(asset_id)
    if asset is None:
        raise DomainValidationError(f"asset {asset_id} does not exist")
    if asset.owner_id != owner_id:
        raise DomainValidationError(f"asset {asset_id} is not owned by {owner_id}")


def _validate_prompt(ai_prompt: str | None) -> None:
    if ai_prompt is not None and len(ai_prompt) > MAX_AI_PROMPT_LENGTH:
        raise DomainValidationError(f"ai_prompt must be at most {MAX_AI_PROMPT_LENGTH} characters")
