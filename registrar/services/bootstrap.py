from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import os

from registrar.api.handlers.deps import ApiDeps
from registrar.clients.http import (
    HttpAssetCatalog,
    HttpEndpoint,
    HttpEnrichmentClient,
    HttpLedgerClient,
    HttpMetadataStorageClient,
)
from registrar.clients.stub import StubAssetCatalog, StubEnrichmentClient, StubLedgerClient, StubMetadataStorageClient
from registrar.domain.contracts import (
    AssetCatalog,
    EnrichmentClient,
    LedgerClient,
    MetadataStorageClient,
    RegistrationRepository,
)
from registrar.domain.retry import StageCallPolicy, stage_call_policy_from_env
from registrar.domain.use_cases.process import PipelineDeps
from registrar.repositories.postgres import AsyncpgPoolManager, PostgresRegistrationRepository
from registrar.repositories.stub import InMemoryRegistrationRepository
from registrar.roles import RuntimeRole
from registrar.workers.loop import RegistrationWorkerLoop

DEFAULT_ENRICHMENT_MODEL = "gpt-4o-mini"


@dataclass
class RuntimeContainer:
    repository: RegistrationRepository
    enrichment: EnrichmentClient
    storage: MetadataStorageClient
    ledger: LedgerClient
    assets: AssetCatalog
    policy: StageCallPolicy
    api_deps: ApiDeps
    worker_loop: RegistrationWorkerLoop | None
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def _endpoint_from_env(prefix: str, policy: StageCallPolicy) -> HttpEndpoint | None:
    base_url = os.getenv(f"{prefix}_API_URL")
    if not base_url:
        return None
    return HttpEndpoint(
        base_url=base_url,
        api_key=os.getenv(f"{prefix}_API_KEY") or None,
        timeout_seconds=policy.timeout_seconds,
    )


def build_enrichment_client(policy: StageCallPolicy) -> EnrichmentClient:
    endpoint = _endpoint_from_env("ENRICHMENT", policy)
    if endpoint is None:
        return StubEnrichmentClient()
    return HttpEnrichmentClient(endpoint=endpoint, model=os.getenv("ENRICHMENT_MODEL", DEFAULT_ENRICHMENT_MODEL))


def build_storage_client(policy: StageCallPolicy) -> MetadataStorageClient:
    endpoint = _endpoint_from_env("STORAGE", policy)
    if endpoint is None:
        return StubMetadataStorageClient()
    return HttpMetadataStorageClient(endpoint=endpoint)


def build_ledger_client(policy: StageCallPolicy) -> LedgerClient:
    endpoint = _endpoint_from_env("LEDGER", policy)
    if endpoint is None:
        return StubLedgerClient()
    return HttpLedgerClient(endpoint=endpoint)


def build_asset_catalog(policy: StageCallPolicy) -> AssetCatalog | None:
    """The asset service is optional; without it records carry their own metadata."""
    endpoint = _endpoint_from_env("ASSETS", policy)
    if endpoint is None:
        return None
    return HttpAssetCatalog(endpoint=endpoint)


def build_runtime_container(role: RuntimeRole) -> RuntimeContainer:
    database_url = os.getenv("DATABASE_URL")
    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    repository: RegistrationRepository
    if database_url:
        pool_manager = AsyncpgPoolManager(dsn=database_url)
        repository = PostgresRegistrationRepository(pool_manager=pool_manager)
        on_startup = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    else:
        repository = InMemoryRegistrationRepository()

    policy = stage_call_policy_from_env()
    enrichment = build_enrichment_client(policy)
    storage = build_storage_client(policy)
    ledger = build_ledger_client(policy)
    catalog = build_asset_catalog(policy)
    assets: AssetCatalog = catalog if catalog is not None else StubAssetCatalog()
    pipeline = PipelineDeps(
        repository=repository,
        enrichment=enrichment,
        storage=storage,
        ledger=ledger,
        assets=assets,
        policy=policy,
    )
    api_deps = ApiDeps(repository=repository, pipeline=pipeline, assets=catalog)

    worker_loop: RegistrationWorkerLoop | None = None
    if role.runs_worker:
        worker_loop = RegistrationWorkerLoop(role=role.name, pipeline=pipeline)

    return RuntimeContainer(
        repository=repository,
        enrichment=enrichment,
        storage=storage,
        ledger=ledger,
        assets=assets,
        policy=policy,
        api_deps=api_deps,
        worker_loop=worker_loop,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
