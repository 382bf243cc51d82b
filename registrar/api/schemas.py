from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from registrar.domain.licenses import DEFAULT_LICENSE_TEMPLATE_ID
from registrar.domain.models import ProcessOutcome, RegistrationStatus


REGISTRATION_ID_PATTERN = r"^reg_[0-9A-HJKMNP-TV-Z]{26}$"


class ErrorResponse(BaseModel):
    detail: str


class WorkerMetrics(BaseModel):
    started: bool
    stopped: bool
    ticks_total: int
    processed_total: int
    completed_total: int
    failed_total: int
    reclaimed_total: int
    idle_ticks_total: int
    errors_total: int


class HealthResponse(BaseModel):
    status: str
    role: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    worker_loop_enabled: bool
    worker_loop_ready: bool
    worker_metrics: WorkerMetrics


class MetadataAttributeModel(BaseModel):
    trait_type: str = Field(min_length=1, max_length=128)
    value: str = Field(max_length=1024)


class AssetMetadataModel(BaseModel):
    title: str = Field(default="", max_length=256)
    description: str = Field(default="", max_length=10000)
    attributes: list[MetadataAttributeModel] = Field(default_factory=list, max_length=64)


class CreateRegistrationRequest(BaseModel):
    asset_id: str = Field(min_length=1, max_length=256)
    owner_id: str = Field(min_length=1, max_length=256)
    license_template_id: str = Field(default=DEFAULT_LICENSE_TEMPLATE_ID, min_length=1, max_length=128)
    custom_metadata: AssetMetadataModel | None = None
    ai_prompt: str | None = Field(default=None, max_length=2000)
    enrichment_enabled: bool = True
    enrichment_required: bool = False
    storyworld_id: str | None = Field(default=None, min_length=1, max_length=256)
    draft: bool = False


class CreateRegistrationResponse(BaseModel):
    registration_id: str = Field(pattern=REGISTRATION_ID_PATTERN)
    status: RegistrationStatus


class UpdateMetadataRequest(BaseModel):
    custom_metadata: AssetMetadataModel | None = None
    ai_prompt: str | None = Field(default=None, max_length=2000)


class ProcessRegistrationResponse(BaseModel):
    registration_id: str = Field(pattern=REGISTRATION_ID_PATTERN)
    status: RegistrationStatus
    outcome: ProcessOutcome
    detail: str = ""
    ledger_id: str | None = None
    transaction_ref: str | None = None


class BatchRegistrationRequest(BaseModel):
    asset_ids: list[str] = Field(min_length=1, max_length=10)
    owner_id: str = Field(min_length=1, max_length=256)
    license_template_id: str = Field(default=DEFAULT_LICENSE_TEMPLATE_ID, min_length=1, max_length=128)
    ai_prompt: str | None = Field(default=None, max_length=2000)
    enrichment_enabled: bool = True
    enrichment_required: bool = False
    storyworld_id: str | None = Field(default=None, min_length=1, max_length=256)


class BatchItemResponse(BaseModel):
    asset_id: str
    success: bool
    registration_id: str | None = None
    status: RegistrationStatus | None = None
    ledger_id: str | None = None
    transaction_ref: str | None = None
    error: str | None = None


class BatchSummaryResponse(BaseModel):
    total: int = Field(ge=0)
    successful: int = Field(ge=0)
    failed: int = Field(ge=0)


class BatchRegistrationResponse(BaseModel):
    items: list[BatchItemResponse]
    summary: BatchSummaryResponse


class StatusHistoryEntryModel(BaseModel):
    status: RegistrationStatus
    timestamp: datetime
    message: str | None = None


class RegistrationStatusResponse(BaseModel):
    registration_id: str = Field(pattern=REGISTRATION_ID_PATTERN)
    asset_id: str
    owner_id: str
    status: RegistrationStatus
    license_template_id: str
    custom_metadata: AssetMetadataModel | None = None
    ai_prompt: str | None = None
    enrichment_enabled: bool
    enrichment_required: bool
    storyworld_id: str | None = None
    enriched_metadata: AssetMetadataModel | None = None
    content_locator: str | None = None
    ledger_id: str | None = None
    transaction_ref: str | None = None
    status_history: list[StatusHistoryEntryModel]
    last_error: str | None = None
    last_error_code: str | None = None
    retry_count: int = Field(ge=0)
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class ListRegistrationsResponse(BaseModel):
    items: list[RegistrationStatusResponse]
    limit: int
    offset: int


class RegistrationStatsResponse(BaseModel):
    total: int = Field(ge=0)
    completed: int = Field(ge=0)
    failed: int = Field(ge=0)
    in_progress: int = Field(ge=0)
    by_status: dict[str, int]


class LicenseTermsModel(BaseModel):
    allow_derivatives: bool
    commercial_use: bool
    royalty_percentage: int
    territory: str
    attribution: bool


class LicenseTemplateResponse(BaseModel):
    template_id: str
    name: str
    description: str
    terms: LicenseTermsModel


class ListLicenseTemplatesResponse(BaseModel):
    items: list[LicenseTemplateResponse]
