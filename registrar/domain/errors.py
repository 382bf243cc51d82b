from __future__ import annotations

from registrar.domain.error_taxonomy import ErrorCode


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class RegistrationNotFound(DomainError):
    def __init__(self, reference: str) -> None:
        super().__init__(f"registration not found: {reference}")
        self.reference = reference


class DuplicateActiveRegistration(DomainError):
    def __init__(self, asset_id: str, existing_registration_id: str | None = None) -> None:
        super().__init__(f"asset {asset_id} already has an active registration")
        self.asset_id = asset_id
        self.existing_registration_id = existing_registration_id


class DraftLockedError(DomainInvariantError):
    """Raised when draft-only fields are edited after processing started."""


class ExternalServiceError(DomainError):
    default_code: ErrorCode = "internal_error"

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.code: ErrorCode = code or self.default_code


class TransientExternalFailure(ExternalServiceError):
    """Network, timeout or rate-limit failure; safe to retry."""

    default_code: ErrorCode = "timeout"


class FatalExternalFailure(ExternalServiceError):
    """Input rejected by the external service; retrying cannot help."""

    default_code: ErrorCode = "validation_error"
