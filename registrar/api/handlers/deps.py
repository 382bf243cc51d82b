from __future__ import annotations

from dataclasses import dataclass

from registrar.domain.contracts import AssetCatalog, RegistrationRepository
from registrar.domain.use_cases.process import PipelineDeps


@dataclass(frozen=True)
class ApiDeps:
    repository: RegistrationRepository
    pipeline: PipelineDeps
    # Set when an asset service is configured; create then checks existence and ownership.
    assets: AssetCatalog | None = None
