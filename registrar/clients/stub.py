from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass, field

from registrar.domain.dto import EnrichmentRequest
from registrar.domain.errors import FatalExternalFailure
from registrar.domain.licenses import get_license_template
from registrar.domain.models import AssetContext, AssetMetadata, LedgerReceipt, MetadataAttribute, StorySummary


@dataclass
class _ScriptedCalls:
    """Failures are raised in order before calls start succeeding."""

    failures: list[Exception] = field(default_factory=list)
    delay_seconds: float = 0.0

    async def _before_call(self) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.failures:
            raise self.failures.pop(0)


@dataclass
class StubEnrichmentClient(_ScriptedCalls):
    calls: list[EnrichmentRequest] = field(default_factory=list)
    response: AssetMetadata | None = None

    async def enrich(self, request: EnrichmentRequest) -> AssetMetadata:
        self.calls.append(request)
        await self._before_call()
        if self.response is not None:
            return self.response

        attributes = [MetadataAttribute(trait_type="Origin", value="AI enrichment")]
        if request.asset_type_hint:
            attributes.append(MetadataAttribute(trait_type="Story Role", value=request.asset_type_hint.title()))
        if request.ai_prompt:
            attributes.append(MetadataAttribute(trait_type="Mood", value=request.ai_prompt[:64]))
        description = request.current_description or f"An original creation registered as {request.asset_id}"
        return AssetMetadata(
            title=request.current_title,
            description=description,
            attributes=tuple(attributes),
        )


@dataclass
class StubMetadataStorageClient(_ScriptedCalls):
    uploads: list[dict[str, object]] = field(default_factory=list)
    locator: str | None = None

    async def upload(self, document: dict[str, object]) -> str:
        self.uploads.append(document)
        await self._before_call()
        payload = json.dumps(document, sort_keys=True).encode("utf-8")
        locator = self.locator or f"ipfs://{hashlib.sha256(payload).hexdigest()}"
        return locator


@dataclass
class StubLedgerClient(_ScriptedCalls):
    registrations: list[tuple[str, str, str]] = field(default_factory=list)
    receipt: LedgerReceipt | None = None

    async def register(
        self,
        *,
        content_locator: str,
        license_template_id: str,
        owner_id: str,
    ) -> LedgerReceipt:
        self.registrations.append((content_locator, license_template_id, owner_id))
        await self._before_call()
        if get_license_template(license_template_id) is None:
            raise FatalExternalFailure(
                f"unknown license template: {license_template_id}",
                code="license_template_invalid",
            )
        if self.receipt is not None:
            return self.receipt

        digest = hashlib.sha256(f"{content_locator}|{license_template_id}|{owner_id}".encode()).hexdigest()
        return LedgerReceipt(ledger_id=f"0x{digest[:40]}", transaction_ref=f"0x{digest}")


@dataclass
class StubAssetCatalog(_ScriptedCalls):
    assets: dict[str, AssetContext] = field(default_factory=dict)
    storyworlds: dict[str, StorySummary] = field(default_factory=dict)

    async def get_asset(self, asset_id: str) -> AssetContext | None:
        await self._before_call()
        return self.assets.get(asset_id)

    async def get_storyworld(self, storyworld_id: str) -> StorySummary | None:
        return self.storyworlds.get(storyworld_id)
