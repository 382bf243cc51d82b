import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from registrar.domain.errors import (
    DomainInvariantError,
    DraftLockedError,
    DuplicateActiveRegistration,
    RegistrationNotFound,
)
from registrar.domain.models import (
    AssetMetadata,
    LedgerReceipt,
    NewRegistration,
    RegistrationListQuery,
    RegistrationStatus,
    StatusUpdate,
)
from registrar.repositories.stub import InMemoryRegistrationRepository


def _new(asset_id: str = "a1", owner_id: str = "0xowner", **kwargs: object) -> NewRegistration:
    return NewRegistration(
        asset_id=asset_id,
        owner_id=owner_id,
        license_template_id="commercial-use",
        **kwargs,  # type: ignore[arg-type]
    )


async def _fail(repository: InMemoryRegistrationRepository, registration_id: str, expected: RegistrationStatus) -> None:
    failed = await repository.append_status(
        registration_id=registration_id,
        update=StatusUpdate(
            expected_status=expected,
            status=RegistrationStatus.FAILED,
            message="failed",
            error="upload: boom",
            error_code="storage_unavailable",
        ),
    )
    assert failed is not None


@pytest.mark.unit
def test_concurrent_create_yields_one_winner() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        results = await asyncio.gather(
            *(repository.create(registration=_new("a1")) for _ in range(8)),
            return_exceptions=True,
        )

        created = [item for item in results if not isinstance(item, BaseException)]
        duplicates = [item for item in results if isinstance(item, DuplicateActiveRegistration)]
        assert len(created) == 1
        assert len(duplicates) == 7
        assert all(item.existing_registration_id == created[0].registration_id for item in duplicates)

    asyncio.run(_run())


@pytest.mark.unit
def test_failed_record_does_not_block_new_registration() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        first = await repository.create(registration=_new("a1"))
        await _fail(repository, first.registration_id, RegistrationStatus.PENDING)

        second = await repository.create(registration=_new("a1"))
        latest = await repository.get_by_asset_id(asset_id="a1")

        assert second.registration_id != first.registration_id
        assert latest is not None
        assert latest.registration_id == second.registration_id

        # The old record cannot become active again while the new one is.
        with pytest.raises(DuplicateActiveRegistration):
            await repository.append_status(
                registration_id=first.registration_id,
                update=StatusUpdate(
                    expected_status=RegistrationStatus.FAILED,
                    status=RegistrationStatus.GENERATING_METADATA,
                ),
            )

    asyncio.run(_run())


@pytest.mark.unit
def test_completed_record_blocks_duplicate() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        created = await repository.create(registration=_new("a1", enrichment_enabled=False))
        for expected, status in (
            (RegistrationStatus.PENDING, RegistrationStatus.UPLOADING_METADATA),
            (RegistrationStatus.UPLOADING_METADATA, RegistrationStatus.REGISTERING_IP),
        ):
            await repository.append_status(
                registration_id=created.registration_id,
                update=StatusUpdate(expected_status=expected, status=status),
            )
        completed = await repository.append_status(
            registration_id=created.registration_id,
            update=StatusUpdate(
                expected_status=RegistrationStatus.REGISTERING_IP,
                status=RegistrationStatus.COMPLETED,
                receipt=LedgerReceipt(ledger_id="0xabc", transaction_ref="0xdef"),
            ),
        )
        assert completed is not None
        assert completed.ledger_id == "0xabc"
        assert completed.completed_at is not None

        with pytest.raises(DuplicateActiveRegistration):
            await repository.create(registration=_new("a1"))

    asyncio.run(_run())


@pytest.mark.unit
def test_append_status_is_compare_and_set() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        created = await repository.create(registration=_new())

        moved = await repository.append_status(
            registration_id=created.registration_id,
            update=StatusUpdate(
                expected_status=RegistrationStatus.PENDING,
                status=RegistrationStatus.GENERATING_METADATA,
                message="Generating enhanced metadata with AI",
            ),
        )
        stale = await repository.append_status(
            registration_id=created.registration_id,
            update=StatusUpdate(
                expected_status=RegistrationStatus.PENDING,
                status=RegistrationStatus.GENERATING_METADATA,
            ),
        )

        assert moved is not None
        assert moved.status == RegistrationStatus.GENERATING_METADATA
        assert len(moved.status_history) == 2
        assert stale is None

    asyncio.run(_run())


@pytest.mark.unit
def test_append_status_rejects_invalid_transitions() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        created = await repository.create(registration=_new())

        with pytest.raises(DomainInvariantError):
            await repository.append_status(
                registration_id=created.registration_id,
                update=StatusUpdate(expected_status=RegistrationStatus.PENDING, status=RegistrationStatus.COMPLETED),
            )
        with pytest.raises(RegistrationNotFound):
            await repository.append_status(
                registration_id="reg_missing",
                update=StatusUpdate(expected_status=RegistrationStatus.PENDING, status=RegistrationStatus.FAILED),
            )

    asyncio.run(_run())


@pytest.mark.unit
def test_completion_requires_receipt() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        created = await repository.create(registration=_new(enrichment_enabled=False))
        for expected, status in (
            (RegistrationStatus.PENDING, RegistrationStatus.UPLOADING_METADATA),
            (RegistrationStatus.UPLOADING_METADATA, RegistrationStatus.REGISTERING_IP),
        ):
            await repository.append_status(
                registration_id=created.registration_id,
                update=StatusUpdate(expected_status=expected, status=status),
            )

        with pytest.raises(DomainInvariantError):
            await repository.append_status(
                registration_id=created.registration_id,
                update=StatusUpdate(
                    expected_status=RegistrationStatus.REGISTERING_IP,
                    status=RegistrationStatus.COMPLETED,
                ),
            )

    asyncio.run(_run())


@pytest.mark.unit
def test_failure_sets_error_and_advance_clears_it() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        created = await repository.create(registration=_new())
        await _fail(repository, created.registration_id, RegistrationStatus.PENDING)

        failed = await repository.get(registration_id=created.registration_id)
        assert failed is not None
        assert failed.last_error == "upload: boom"
        assert failed.last_error_code == "storage_unavailable"

        resumed = await repository.append_status(
            registration_id=created.registration_id,
            update=StatusUpdate(
                expected_status=RegistrationStatus.FAILED,
                status=RegistrationStatus.GENERATING_METADATA,
                count_retry=True,
            ),
        )
        assert resumed is not None
        assert resumed.last_error is None
        assert resumed.last_error_code is None
        assert resumed.retry_count == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_stage_results_require_matching_stage() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        created = await repository.create(registration=_new())

        with pytest.raises(DomainInvariantError):
            await repository.set_stage_result(
                registration_id=created.registration_id,
                field="content_locator",
                value="ipfs://X",
            )

        await repository.append_status(
            registration_id=created.registration_id,
            update=StatusUpdate(
                expected_status=RegistrationStatus.PENDING,
                status=RegistrationStatus.GENERATING_METADATA,
            ),
        )
        updated = await repository.set_stage_result(
            registration_id=created.registration_id,
            field="enriched_metadata",
            value=AssetMetadata(title="T", description="D"),
        )
        assert updated.enriched_metadata == AssetMetadata(title="T", description="D")

        with pytest.raises(DomainInvariantError):
            await repository.set_stage_result(
                registration_id=created.registration_id,
                field="ledger_id",
                value="0xabc",
            )

    asyncio.run(_run())


@pytest.mark.unit
def test_custom_metadata_locked_after_processing_starts() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        created = await repository.create(registration=_new(initial_status=RegistrationStatus.DRAFT))
        metadata = AssetMetadata(title="Draft title", description="Draft description")

        edited = await repository.update_custom_metadata(
            registration_id=created.registration_id,
            custom_metadata=metadata,
            ai_prompt="make it epic",
        )
        assert edited.custom_metadata == metadata
        assert edited.ai_prompt == "make it epic"

        for expected, status in (
            (RegistrationStatus.DRAFT, RegistrationStatus.PENDING),
            (RegistrationStatus.PENDING, RegistrationStatus.GENERATING_METADATA),
        ):
            await repository.append_status(
                registration_id=created.registration_id,
                update=StatusUpdate(expected_status=expected, status=status),
            )

        with pytest.raises(DraftLockedError):
            await repository.update_custom_metadata(
                registration_id=created.registration_id,
                custom_metadata=None,
                ai_prompt=None,
            )

    asyncio.run(_run())


@pytest.mark.unit
def test_list_filters_and_stats() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        first = await repository.create(registration=_new("a1", owner_id="alice"))
        await repository.create(registration=_new("a2", owner_id="alice"))
        await repository.create(registration=_new("a3", owner_id="bob"))
        await _fail(repository, first.registration_id, RegistrationStatus.PENDING)

        alice = await repository.list_registrations(query=RegistrationListQuery(owner_id="alice"))
        failed = await repository.list_registrations(
            query=RegistrationListQuery(statuses=(RegistrationStatus.FAILED,))
        )
        page = await repository.list_registrations(query=RegistrationListQuery(limit=1, offset=1))
        stats = await repository.stats(owner_id="alice")
        all_stats = await repository.stats()

        assert {item.asset_id for item in alice} == {"a1", "a2"}
        assert [item.registration_id for item in failed] == [first.registration_id]
        assert len(page) == 1
        assert stats.total == 2
        assert stats.failed == 1
        assert stats.by_status[RegistrationStatus.PENDING] == 1
        assert all_stats.total == 3
        assert all_stats.in_progress == 2

    asyncio.run(_run())


@pytest.mark.unit
def test_next_pending_and_stale_in_flight() -> None:
    async def _run() -> None:
        repository = InMemoryRegistrationRepository()
        first = await repository.create(registration=_new("a1"))
        second = await repository.create(registration=_new("a2"))

        oldest = await repository.next_pending()
        assert oldest is not None
        assert oldest.registration_id == first.registration_id

        await repository.append_status(
            registration_id=first.registration_id,
            update=StatusUpdate(
                expected_status=RegistrationStatus.PENDING,
                status=RegistrationStatus.GENERATING_METADATA,
            ),
        )
        following = await repository.next_pending()
        assert following is not None
        assert following.registration_id == second.registration_id

        future = datetime.now(tz=UTC) + timedelta(seconds=1)
        past = datetime.now(tz=UTC) - timedelta(hours=1)
        stale = await repository.list_stale_in_flight(updated_before=future)
        fresh = await repository.list_stale_in_flight(updated_before=past)

        assert [item.registration_id for item in stale] == [first.registration_id]
        assert fresh == []

    asyncio.run(_run())
