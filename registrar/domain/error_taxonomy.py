from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

# Canonical error vocabulary for all stages.
ErrorCode = Literal[
    "validation_error",
    "enrichment_unavailable",
    "enrichment_invalid_response",
    "storage_unavailable",
    "storage_rejected",
    "ledger_unavailable",
    "ledger_rejected",
    "license_template_invalid",
    "catalog_unavailable",
    "catalog_rejected",
    "timeout",
    "lease_expired",
    "internal_error",
]

# Allowed persisted values for last_error_code.
CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "validation_error",
    "enrichment_unavailable",
    "enrichment_invalid_response",
    "storage_unavailable",
    "storage_rejected",
    "ledger_unavailable",
    "ledger_rejected",
    "license_template_invalid",
    "catalog_unavailable",
    "catalog_rejected",
    "timeout",
    "lease_expired",
    "internal_error",
)

# Stage-specific allowlist. If a stage emits a code outside this map,
# it is normalized to internal_error by resolve_stage_error().
STAGE_ERROR_MAP: Mapping[str, frozenset[ErrorCode]] = {
    "enrichment": frozenset(
        {
            "enrichment_unavailable",
            "enrichment_invalid_response",
            "timeout",
            "validation_error",
            "internal_error",
        }
    ),
    "upload": frozenset(
        {
            "storage_unavailable",
            "storage_rejected",
            "timeout",
            "validation_error",
            "internal_error",
        }
    ),
    "registration": frozenset(
        {
            "ledger_unavailable",
            "ledger_rejected",
            "license_template_invalid",
            "timeout",
            "validation_error",
            "internal_error",
        }
    ),
    "reclaim": frozenset({"lease_expired", "internal_error"}),
}


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def resolve_stage_error(*, stage: str, code: str) -> ErrorCode:
    allowed = STAGE_ERROR_MAP.get(stage, frozenset({"internal_error"}))
    if code in allowed and is_canonical_error_code(code):
        return code  # type: ignore[return-value]
    # Keep persistence stable even if upstream emitted unsupported code.
    return "internal_error"
