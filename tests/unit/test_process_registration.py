import asyncio

import httpx
import pytest

from registrar.domain.errors import FatalExternalFailure, RegistrationNotFound, TransientExternalFailure
from registrar.domain.lifecycle import history_is_forward
from registrar.domain.models import (
    AssetContext,
    AssetMetadata,
    LedgerReceipt,
    MetadataAttribute,
    ProcessOutcome,
    RegistrationStatus,
    StorySummary,
)
from registrar.domain.use_cases.process import process_registration
from registrar.domain.use_cases.status import get_registration_status
from tests.pipeline_support import PipelineHarness


@pytest.mark.unit
def test_end_to_end_scenario_records_five_history_entries() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.enrichment.response = AssetMetadata(title="T", description="D", attributes=())
        harness.storage.locator = "ipfs://X"
        harness.ledger.receipt = LedgerReceipt(ledger_id="0xabc", transaction_ref="0xdef")

        registration_id = await harness.create("a1", license_template_id="non-commercial-social-remixing")
        result = await process_registration(harness.deps, registration_id=registration_id)
        assert result.outcome == ProcessOutcome.COMPLETED

        snapshot = await get_registration_status(harness.repository, reference="a1")
        assert snapshot.registration_id == registration_id
        assert snapshot.status == RegistrationStatus.COMPLETED
        assert snapshot.content_locator == "ipfs://X"
        assert snapshot.ledger_id == "0xabc"
        assert snapshot.transaction_ref == "0xdef"
        assert snapshot.enriched_metadata == AssetMetadata(title="T", description="D", attributes=())
        assert snapshot.completed_at is not None
        assert snapshot.last_error is None
        assert [entry.status for entry in snapshot.status_history] == [
            RegistrationStatus.PENDING,
            RegistrationStatus.GENERATING_METADATA,
            RegistrationStatus.UPLOADING_METADATA,
            RegistrationStatus.REGISTERING_IP,
            RegistrationStatus.COMPLETED,
        ]
        assert all(entry.message for entry in snapshot.status_history)
        assert history_is_forward(snapshot.status_history)

        uploaded = harness.storage.uploads[0]
        assert uploaded["title"] == "T"
        assert uploaded["description"] == "D"
        assert uploaded["ai_enriched"] is True
        assert harness.ledger.registrations == [("ipfs://X", "non-commercial-social-remixing", "0xowner")]

    asyncio.run(_run())


@pytest.mark.unit
def test_completed_registration_is_noop_on_reinvocation() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        registration_id = await harness.create("a1")
        first = await process_registration(harness.deps, registration_id=registration_id)
        completed = await harness.repository.get(registration_id=registration_id)
        assert first.outcome == ProcessOutcome.COMPLETED
        assert completed is not None

        second = await process_registration(harness.deps, registration_id=registration_id)
        after = await harness.repository.get(registration_id=registration_id)

        assert second.outcome == ProcessOutcome.NOOP
        assert second.status == RegistrationStatus.COMPLETED
        assert first.ledger_id is not None
        assert second.ledger_id == first.ledger_id == completed.ledger_id
        assert second.transaction_ref == first.transaction_ref == completed.transaction_ref
        assert after is not None
        assert after.ledger_id == completed.ledger_id
        assert after.transaction_ref == completed.transaction_ref
        assert after.status_history == completed.status_history
        assert len(harness.ledger.registrations) == 1
        assert len(harness.storage.uploads) == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_fatal_registration_error_keeps_locator_and_fails() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        registration_id = await harness.create("a1", license_template_id="no-such-license")

        result = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert result.outcome == ProcessOutcome.FAILED
        assert snapshot is not None
        assert snapshot.status == RegistrationStatus.FAILED
        assert snapshot.content_locator is not None
        assert snapshot.ledger_id is None
        assert snapshot.transaction_ref is None
        assert snapshot.last_error_code == "license_template_invalid"
        assert snapshot.last_error is not None
        assert snapshot.last_error.startswith("registration: ")
        # Fatal errors are not retried.
        assert len(harness.ledger.registrations) == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_failed_record_with_locator_resumes_without_reupload() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.ledger.failures = [TransientExternalFailure("ledger down", code="ledger_unavailable")] * 3
        registration_id = await harness.create("a1")

        failed = await process_registration(harness.deps, registration_id=registration_id)
        assert failed.outcome == ProcessOutcome.FAILED
        failed_snapshot = await harness.repository.get(registration_id=registration_id)
        assert failed_snapshot is not None
        assert failed_snapshot.last_error_code == "ledger_unavailable"
        assert failed_snapshot.content_locator is not None
        assert len(harness.storage.uploads) == 1
        assert len(harness.ledger.registrations) == 3

        resumed = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert resumed.outcome == ProcessOutcome.COMPLETED
        assert snapshot is not None
        assert snapshot.status == RegistrationStatus.COMPLETED
        assert len(harness.storage.uploads) == 1
        assert len(harness.enrichment.calls) == 1
        assert len(harness.ledger.registrations) == 4
        assert snapshot.retry_count == 1
        assert snapshot.last_error is None
        assert snapshot.last_error_code is None
        assert snapshot.status_history[-2].status == RegistrationStatus.REGISTERING_IP
        assert history_is_forward(snapshot.status_history)

    asyncio.run(_run())


@pytest.mark.unit
def test_optional_enrichment_timeout_completes_with_custom_metadata() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.enrichment.delay_seconds = 1.0
        custom = AssetMetadata(
            title="My Hero",
            description="Hand written",
            attributes=(MetadataAttribute(trait_type="Mood", value="Brave"),),
        )
        registration_id = await harness.create("a1", custom_metadata=custom)

        result = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert result.outcome == ProcessOutcome.COMPLETED
        assert snapshot is not None
        assert snapshot.status == RegistrationStatus.COMPLETED
        assert snapshot.enriched_metadata is None
        assert len(harness.enrichment.calls) == harness.policy.max_attempts
        skip_entry = snapshot.status_history[2]
        assert skip_entry.status == RegistrationStatus.UPLOADING_METADATA
        assert skip_entry.message is not None
        assert "skipped" in skip_entry.message

        uploaded = harness.storage.uploads[0]
        assert uploaded["title"] == "My Hero"
        assert uploaded["description"] == "Hand written"
        assert uploaded["attributes"] == [{"trait_type": "Mood", "value": "Brave"}]
        assert uploaded["ai_enriched"] is False

    asyncio.run(_run())


@pytest.mark.unit
def test_required_enrichment_failure_fails_the_record() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.enrichment.failures = [FatalExternalFailure("bad json", code="enrichment_invalid_response")]
        registration_id = await harness.create("a1", enrichment_required=True)

        result = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert result.outcome == ProcessOutcome.FAILED
        assert snapshot is not None
        assert snapshot.status == RegistrationStatus.FAILED
        assert snapshot.last_error_code == "enrichment_invalid_response"
        assert harness.storage.uploads == []

        # Resume retries enrichment, which now succeeds.
        resumed = await process_registration(harness.deps, registration_id=registration_id)
        assert resumed.outcome == ProcessOutcome.COMPLETED
        assert len(harness.enrichment.calls) == 2

    asyncio.run(_run())


@pytest.mark.unit
def test_skipped_enrichment_is_not_retried_on_resume() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.enrichment.failures = [FatalExternalFailure("bad json", code="enrichment_invalid_response")]
        harness.storage.failures = [FatalExternalFailure("too large", code="storage_rejected")]
        registration_id = await harness.create("a1")

        failed = await process_registration(harness.deps, registration_id=registration_id)
        assert failed.outcome == ProcessOutcome.FAILED

        resumed = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert resumed.outcome == ProcessOutcome.COMPLETED
        assert len(harness.enrichment.calls) == 1
        assert len(harness.storage.uploads) == 2
        assert snapshot is not None
        assert snapshot.status_history[-4].status == RegistrationStatus.FAILED
        assert snapshot.status_history[-3].status == RegistrationStatus.UPLOADING_METADATA

    asyncio.run(_run())


@pytest.mark.unit
def test_transient_failure_is_retried_within_one_run() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.storage.failures = [TransientExternalFailure("503", code="storage_unavailable")]
        registration_id = await harness.create("a1")

        result = await process_registration(harness.deps, registration_id=registration_id)

        assert result.outcome == ProcessOutcome.COMPLETED
        assert len(harness.storage.uploads) == 2

    asyncio.run(_run())


@pytest.mark.unit
def test_disabled_enrichment_goes_straight_to_upload() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        registration_id = await harness.create("a1", enrichment_enabled=False)

        result = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert result.outcome == ProcessOutcome.COMPLETED
        assert harness.enrichment.calls == []
        assert snapshot is not None
        assert [entry.status for entry in snapshot.status_history] == [
            RegistrationStatus.PENDING,
            RegistrationStatus.UPLOADING_METADATA,
            RegistrationStatus.REGISTERING_IP,
            RegistrationStatus.COMPLETED,
        ]

    asyncio.run(_run())


@pytest.mark.unit
def test_draft_is_submitted_then_processed() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        registration_id = await harness.create("a1", draft=True)

        result = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert result.outcome == ProcessOutcome.COMPLETED
        assert snapshot is not None
        assert [entry.status for entry in snapshot.status_history][:2] == [
            RegistrationStatus.DRAFT,
            RegistrationStatus.PENDING,
        ]
        assert history_is_forward(snapshot.status_history)

    asyncio.run(_run())


@pytest.mark.unit
def test_concurrent_process_calls_run_the_pipeline_once() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.storage.delay_seconds = 0.01
        registration_id = await harness.create("a1")

        results = await asyncio.gather(
            *(process_registration(harness.deps, registration_id=registration_id) for _ in range(4))
        )

        outcomes = sorted(result.outcome for result in results)
        assert outcomes.count(ProcessOutcome.COMPLETED) == 1
        assert outcomes.count(ProcessOutcome.CONFLICT) == 3
        assert len(harness.storage.uploads) == 1
        assert len(harness.ledger.registrations) == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_unexpected_exception_is_persisted_as_internal_error() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.storage.failures = [RuntimeError("boom")]
        registration_id = await harness.create("a1")

        result = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert result.outcome == ProcessOutcome.FAILED
        assert snapshot is not None
        assert snapshot.last_error_code == "internal_error"
        assert snapshot.last_error == "upload: boom"
        assert len(harness.storage.uploads) == 1

    asyncio.run(_run())


@pytest.mark.unit
def test_unknown_registration_raises_not_found() -> None:
    harness = PipelineHarness()

    with pytest.raises(RegistrationNotFound):
        asyncio.run(process_registration(harness.deps, registration_id="reg_missing"))


@pytest.mark.unit
def test_optional_enrichment_skips_unexpected_client_errors() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        harness.enrichment.failures = [httpx.DecodingError("bad gzip")]
        custom = AssetMetadata(title="My Hero", description="Hand written", attributes=())
        registration_id = await harness.create("a1", custom_metadata=custom)

        result = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert result.outcome == ProcessOutcome.COMPLETED
        assert snapshot is not None
        assert snapshot.enriched_metadata is None
        assert len(harness.enrichment.calls) == 1
        skip_entry = snapshot.status_history[2]
        assert skip_entry.status == RegistrationStatus.UPLOADING_METADATA
        assert skip_entry.message is not None
        assert "skipped (internal_error: bad gzip)" in skip_entry.message
        assert harness.storage.uploads[0]["title"] == "My Hero"

    asyncio.run(_run())


@pytest.mark.unit
def test_catalog_outage_falls_back_to_record_metadata() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        outage = TransientExternalFailure("catalog down", code="catalog_unavailable")
        harness.assets.failures = [outage] * harness.policy.max_attempts
        registration_id = await harness.create("a1")

        result = await process_registration(harness.deps, registration_id=registration_id)
        snapshot = await harness.repository.get(registration_id=registration_id)

        assert result.outcome == ProcessOutcome.COMPLETED
        assert snapshot is not None
        assert snapshot.last_error_code is None
        assert harness.enrichment.calls[0].asset_type_hint is None
        assert harness.storage.uploads[0]["ip_type"] == "OTHER"

    asyncio.run(_run())


@pytest.mark.unit
def test_record_storyworld_reaches_prompt_and_document() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        outer_rim = StorySummary(name="Outer Rim", genre="Sci-Fi", themes=("exploration",))
        harness.assets.assets["a1"] = AssetContext(
            asset_id="a1",
            title="Captain Vex",
            description="A smuggler",
            asset_type="character",
            owner_id="0xowner",
        )
        harness.assets.storyworlds["sw1"] = outer_rim
        registration_id = await harness.create("a1", storyworld_id="sw1")

        result = await process_registration(harness.deps, registration_id=registration_id)

        assert result.outcome == ProcessOutcome.COMPLETED
        assert harness.enrichment.calls[0].storyworld_context == outer_rim
        attributes = harness.storage.uploads[0]["attributes"]
        assert {"trait_type": "Storyworld", "value": "Outer Rim"} in attributes
        assert {"trait_type": "Genre", "value": "Sci-Fi"} in attributes

    asyncio.run(_run())


@pytest.mark.unit
def test_unknown_storyworld_keeps_the_asset_storyworld() -> None:
    async def _run() -> None:
        harness = PipelineHarness()
        home = StorySummary(name="Homeworld")
        harness.assets.assets["a1"] = AssetContext(
            asset_id="a1",
            title="Captain Vex",
            description="",
            asset_type="character",
            owner_id="0xowner",
            storyworld=home,
        )
        registration_id = await harness.create("a1", storyworld_id="sw-missing")

        result = await process_registration(harness.deps, registration_id=registration_id)

        assert result.outcome == ProcessOutcome.COMPLETED
        assert harness.enrichment.calls[0].storyworld_context == home

    asyncio.run(_run())
