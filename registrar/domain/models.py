from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from registrar.domain.error_taxonomy import ErrorCode


# Canonical registration lifecycle states.
#
# IMPORTANT:
# - Keep this enum synchronized with registrar/domain/lifecycle.py
#   (STAGE_LIFECYCLES and ALLOWED_TRANSITIONS).
# - Keep this enum synchronized with the DB status CHECK constraint in
#   db/migrations/000001_bootstrap.up.sql.
class RegistrationStatus(StrEnum):
    # Pre-processing states.
    DRAFT = "DRAFT"
    PENDING = "PENDING"

    # In-progress states.
    GENERATING_METADATA = "GENERATING_METADATA"
    UPLOADING_METADATA = "UPLOADING_METADATA"
    REGISTERING_IP = "REGISTERING_IP"

    # Terminal states.
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ProcessOutcome(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"
    NOOP = "noop"
    CONFLICT = "conflict"
    SUBMITTED = "submitted"


@dataclass(frozen=True)
class MetadataAttribute:
    trait_type: str
    value: str


@dataclass(frozen=True)
class AssetMetadata:
    title: str
    description: str
    attributes: tuple[MetadataAttribute, ...] = ()

    def to_json(self) -> dict[str, object]:
        return {
            "title": self.title,
            "description": self.description,
            "attributes": [{"trait_type": item.trait_type, "value": item.value} for item in self.attributes],
        }

    @classmethod
    def from_json(cls, payload: dict[str, object]) -> AssetMetadata:
        raw_attributes = payload.get("attributes") or []
        attributes: list[MetadataAttribute] = []
        if isinstance(raw_attributes, list):
            for item in raw_attributes:
                if isinstance(item, dict) and "trait_type" in item:
                    attributes.append(MetadataAttribute(trait_type=str(item["trait_type"]), value=str(item.get("value", ""))))
        return cls(
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            attributes=tuple(attributes),
        )


@dataclass(frozen=True)
class StorySummary:
    name: str
    genre: str | None = None
    themes: tuple[str, ...] = ()


@dataclass(frozen=True)
class AssetContext:
    asset_id: str
    title: str
    description: str
    asset_type: str
    owner_id: str
    storyworld: StorySummary | None = None


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: RegistrationStatus
    timestamp: datetime
    message: str | None = None


@dataclass(frozen=True)
class LedgerReceipt:
    ledger_id: str
    transaction_ref: str


@dataclass(frozen=True)
class RegistrationSnapshot:
    registration_id: str
    asset_id: str
    owner_id: str
    status: RegistrationStatus
    license_template_id: str
    custom_metadata: AssetMetadata | None
    ai_prompt: str | None
    enrichment_enabled: bool
    enrichment_required: bool
    storyworld_id: str | None
    enriched_metadata: AssetMetadata | None
    content_locator: str | None
    ledger_id: str | None
    transaction_ref: str | None
    status_history: tuple[StatusHistoryEntry, ...]
    last_error: str | None
    last_error_code: str | None
    retry_count: int
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


@dataclass(frozen=True)
class NewRegistration:
    asset_id: str
    owner_id: str
    license_template_id: str
    initial_status: RegistrationStatus = RegistrationStatus.PENDING
    custom_metadata: AssetMetadata | None = None
    ai_prompt: str | None = None
    enrichment_enabled: bool = True
    enrichment_required: bool = False
    storyworld_id: str | None = None


@dataclass(frozen=True)
class StatusUpdate:
    """Conditional status change applied atomically by the repository."""

    expected_status: RegistrationStatus
    status: RegistrationStatus
    message: str | None = None
    error: str | None = None
    error_code: ErrorCode | str | None = None
    receipt: LedgerReceipt | None = None
    count_retry: bool = False


@dataclass(frozen=True)
class RegistrationListQuery:
    statuses: tuple[RegistrationStatus, ...] | None = None
    owner_id: str | None = None
    asset_id: str | None = None
    storyworld_id: str | None = None
    limit: int = 20
    offset: int = 0


@dataclass(frozen=True)
class RegistrationStats:
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)

    @property
    def completed(self) -> int:
        return self.by_status.get(RegistrationStatus.COMPLETED, 0)

    @property
    def failed(self) -> int:
        return self.by_status.get(RegistrationStatus.FAILED, 0)

    @property
    def in_progress(self) -> int:
        return self.total - self.completed - self.failed - self.by_status.get(RegistrationStatus.DRAFT, 0)
