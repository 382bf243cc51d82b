from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
from dataclasses import asdict
from collections.abc import Awaitable, Callable
import logging

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query

from registrar.api.handlers.deps import ApiDeps
from registrar.api.handlers.licenses import list_license_templates_handler
from registrar.api.handlers.registrations import (
    batch_registration_handler,
    create_registration_handler,
    process_registration_handler,
    schedule_registration_handler,
    submit_registration_handler,
    update_registration_metadata_handler,
)
from registrar.api.handlers.status import (
    get_registration_status_handler,
    list_registrations_handler,
    registration_stats_handler,
)
from registrar.api.schemas import (
    BatchRegistrationRequest,
    BatchRegistrationResponse,
    CreateRegistrationRequest,
    CreateRegistrationResponse,
    ErrorResponse,
    HealthResponse,
    ListLicenseTemplatesResponse,
    ListRegistrationsResponse,
    ProcessRegistrationResponse,
    ReadyResponse,
    RegistrationStatsResponse,
    RegistrationStatusResponse,
    UpdateMetadataRequest,
    WorkerMetrics,
)
from registrar.domain.errors import (
    DomainError,
    DomainInvariantError,
    DomainValidationError,
    DraftLockedError,
    DuplicateActiveRegistration,
    ExternalServiceError,
    RegistrationNotFound,
)
from registrar.domain.models import RegistrationStatus
from registrar.domain.use_cases.process import process_registration
from registrar.workers.loop import RegistrationWorkerLoop
from registrar.workers.runner import (
    WorkerRuntimeSettings,
    WorkerRuntimeState,
    run_worker_until_stopped,
    worker_runtime_settings_from_env,
)

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def http_error(exc: DomainError) -> HTTPException:
    if isinstance(exc, (DuplicateActiveRegistration, DraftLockedError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, RegistrationNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, DomainValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, DomainInvariantError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, ExternalServiceError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def build_app(
    role: str,
    run_id: str,
    worker_loop: RegistrationWorkerLoop | None = None,
    worker_runtime_settings: WorkerRuntimeSettings | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    worker_state: WorkerRuntimeState | None = None
    worker_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal worker_task, worker_state
        del app
        stop_event: asyncio.Event | None = None

        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        if worker_loop is not None:
            settings = worker_runtime_settings or worker_runtime_settings_from_env()
            worker_state = WorkerRuntimeState()
            stop_event = asyncio.Event()
            worker_task = asyncio.create_task(
                run_worker_until_stopped(
                    worker_loop=worker_loop,
                    role=role,
                    run_id=run_id,
                    stop_event=stop_event,
                    settings=settings,
                    logger=logger,
                    state=worker_state,
                )
            )

        yield

        if stop_event is not None and worker_task is not None:
            stop_event.set()
            await worker_task

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="ip-registration-pipeline", version="0.1.0", lifespan=lifespan)

    def _require_deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    async def _process_in_background(registration_id: str) -> None:
        deps = _require_deps()
        try:
            await process_registration(deps.pipeline, registration_id=registration_id)
        except DomainError:
            logger.exception(
                "background processing rejected",
                extra={"role": role, "run_id": run_id, "registration_id": registration_id},
            )

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role)

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        worker_loop_enabled = worker_loop is not None
        worker_loop_ready = True
        metrics = WorkerMetrics.model_validate(asdict(WorkerRuntimeState()))
        if worker_loop_enabled:
            worker_loop_ready = (
                worker_state is not None
                and worker_state.started
                and worker_task is not None
                and not worker_task.done()
            )
            if worker_state is not None:
                metrics = WorkerMetrics.model_validate(asdict(worker_state))

        return ReadyResponse(
            status="ready",
            role=role,
            worker_loop_enabled=worker_loop_enabled,
            worker_loop_ready=worker_loop_ready,
            worker_metrics=metrics,
        )

    @app.get("/license-templates", response_model=ListLicenseTemplatesResponse, tags=["Licenses"])
    async def list_license_templates() -> ListLicenseTemplatesResponse:
        return await list_license_templates_handler()

    @app.post(
        "/registrations",
        response_model=CreateRegistrationResponse,
        status_code=201,
        responses=_ERROR_RESPONSES,
        tags=["Registrations"],
    )
    async def create_registration(request: CreateRegistrationRequest) -> CreateRegistrationResponse:
        deps = _require_deps()
        try:
            return await create_registration_handler(request=request, api_deps=deps)
        except DomainError as exc:
            raise http_error(exc) from exc

    @app.post(
        "/registrations/batch",
        response_model=BatchRegistrationResponse,
        responses=_ERROR_RESPONSES,
        tags=["Registrations"],
    )
    async def register_batch(request: BatchRegistrationRequest) -> BatchRegistrationResponse:
        deps = _require_deps()
        try:
            return await batch_registration_handler(request=request, api_deps=deps)
        except DomainError as exc:
            raise http_error(exc) from exc

    @app.get("/registrations", response_model=ListRegistrationsResponse, tags=["Registrations"])
    async def list_registrations(
        status: list[RegistrationStatus] | None = Query(default=None),
        owner_id: str | None = Query(default=None, min_length=1),
        asset_id: str | None = Query(default=None, min_length=1),
        storyworld_id: str | None = Query(default=None, min_length=1),
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
    ) -> ListRegistrationsResponse:
        deps = _require_deps()
        try:
            return await list_registrations_handler(
                statuses=status,
                owner_id=owner_id,
                asset_id=asset_id,
                limit=limit,
                offset=offset,
                api_deps=deps,
                storyworld_id=storyworld_id,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    @app.get("/registrations/stats", response_model=RegistrationStatsResponse, tags=["Registrations"])
    async def registration_stats(owner_id: str | None = Query(default=None, min_length=1)) -> RegistrationStatsResponse:
        deps = _require_deps()
        return await registration_stats_handler(owner_id=owner_id, api_deps=deps)

    @app.get(
        "/registrations/{reference}",
        response_model=RegistrationStatusResponse,
        responses=_ERROR_RESPONSES,
        tags=["Registrations"],
    )
    async def get_registration_status(reference: str) -> RegistrationStatusResponse:
        deps = _require_deps()
        try:
            return await get_registration_status_handler(reference=reference, api_deps=deps)
        except DomainError as exc:
            raise http_error(exc) from exc

    @app.post(
        "/registrations/{registration_id}/submit",
        response_model=RegistrationStatusResponse,
        responses=_ERROR_RESPONSES,
        tags=["Registrations"],
    )
    async def submit_registration(registration_id: str) -> RegistrationStatusResponse:
        deps = _require_deps()
        try:
            return await submit_registration_handler(registration_id=registration_id, api_deps=deps)
        except DomainError as exc:
            raise http_error(exc) from exc

    @app.patch(
        "/registrations/{registration_id}/metadata",
        response_model=RegistrationStatusResponse,
        responses=_ERROR_RESPONSES,
        tags=["Registrations"],
    )
    async def update_registration_metadata(
        registration_id: str,
        request: UpdateMetadataRequest,
    ) -> RegistrationStatusResponse:
        deps = _require_deps()
        try:
            return await update_registration_metadata_handler(
                registration_id=registration_id,
                custom_metadata=request.custom_metadata,
                ai_prompt=request.ai_prompt,
                api_deps=deps,
            )
        except DomainError as exc:
            raise http_error(exc) from exc

    @app.post(
        "/registrations/{registration_id}/process",
        response_model=ProcessRegistrationResponse,
        responses=_ERROR_RESPONSES,
        tags=["Registrations"],
    )
    async def process_registration_route(
        registration_id: str,
        background_tasks: BackgroundTasks,
        background: bool = Query(default=False),
    ) -> ProcessRegistrationResponse:
        deps = _require_deps()
        try:
            if background:
                response = await schedule_registration_handler(registration_id=registration_id, api_deps=deps)
                background_tasks.add_task(_process_in_background, registration_id)
                return response
            return await process_registration_handler(registration_id=registration_id, api_deps=deps)
        except DomainError as exc:
            raise http_error(exc) from exc

    return app
