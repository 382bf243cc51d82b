from __future__ import annotations

from registrar.domain.contracts import RegistrationRepository
from registrar.domain.errors import DomainValidationError, RegistrationNotFound
from registrar.domain.ids import is_registration_id
from registrar.domain.models import RegistrationListQuery, RegistrationSnapshot, RegistrationStats


MAX_PAGE_SIZE = 100


async def get_registration_status(repository: RegistrationRepository, *, reference: str) -> RegistrationSnapshot:
    """Look up a record by registration id, falling back to the asset's most recent record."""
    reference = reference.strip()
    if not reference:
        raise DomainValidationError("registration reference must not be empty")

    if is_registration_id(reference):
        snapshot = await repository.get(registration_id=reference)
        if snapshot is not None:
            return snapshot

    snapshot = await repository.get_by_asset_id(asset_id=reference)
    if snapshot is None:
        raise RegistrationNotFound(reference)
    return snapshot


async def list_registrations(
    repository: RegistrationRepository,
    *,
    query: RegistrationListQuery,
) -> list[RegistrationSnapshot]:
    if not 1 <= query.limit <= MAX_PAGE_SIZE:
        raise DomainValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if query.offset < 0:
        raise DomainValidationError("offset must not be negative")
    return await repository.list_registrations(query=query)


async def registration_stats(repository: RegistrationRepository, *, owner_id: str | None = None) -> RegistrationStats:
    return await repository.stats(owner_id=owner_id)
