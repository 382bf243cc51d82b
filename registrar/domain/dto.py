from __future__ import annotations

from dataclasses import dataclass

from registrar.domain.licenses import DEFAULT_LICENSE_TEMPLATE_ID
from registrar.domain.models import AssetMetadata, ProcessOutcome, RegistrationStatus, StorySummary


@dataclass(frozen=True)
class CreateRegistrationCommand:
    asset_id: str
    owner_id: str
    license_template_id: str = DEFAULT_LICENSE_TEMPLATE_ID
    custom_metadata: AssetMetadata | None = None
    ai_prompt: str | None = None
    enrichment_enabled: bool = True
    enrichment_required: bool = False
    storyworld_id: str | None = None
    draft: bool = False


@dataclass(frozen=True)
class CreateRegistrationResult:
    registration_id: str
    status: RegistrationStatus


@dataclass(frozen=True)
class ProcessRegistrationResult:
    registration_id: str
    status: RegistrationStatus
    outcome: ProcessOutcome
    detail: str = ""
    ledger_id: str | None = None
    transaction_ref: str | None = None


@dataclass(frozen=True)
class BatchRegistrationCommand:
    """Same options applied to every asset in the batch."""

    asset_ids: tuple[str, ...]
    owner_id: str
    license_template_id: str = DEFAULT_LICENSE_TEMPLATE_ID
    ai_prompt: str | None = None
    enrichment_enabled: bool = True
    enrichment_required: bool = False
    storyworld_id: str | None = None


@dataclass(frozen=True)
class BatchItemResult:
    asset_id: str
    success: bool
    registration_id: str | None = None
    status: RegistrationStatus | None = None
    ledger_id: str | None = None
    transaction_ref: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchRegistrationResult:
    items: tuple[BatchItemResult, ...]

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def successful(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return self.total - self.successful


@dataclass(frozen=True)
class EnrichmentRequest:
    asset_id: str
    current_title: str
    current_description: str
    ai_prompt: str | None
    asset_type_hint: str | None
    storyworld_context: StorySummary | None = None
