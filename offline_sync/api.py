"""
Sync status API

A small FastAPI surface over a SyncCoordinator, for UIs and diagnostics that
live outside the process: current state, the pending queue, dead letters, and
manual drain / full sync triggers.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .connectivity import HttpReachabilityProbe
from .coordinator import SyncCoordinator
from .exceptions import (
    PayloadError,
    PermanentRemoteError,
    SyncError,
    TransientRemoteError,
)
from .models import EntityType, OperationType
from .schemas import (
    CountResponse,
    EnqueueRequest,
    ErrorResponse,
    FullSyncRequest,
    HealthResponse,
    OperationResponse,
    StatusResponse,
    SyncResultResponse,
)

logger = logging.getLogger(__name__)


def _status_code_for(exc: SyncError) -> int:
    if isinstance(exc, PayloadError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, TransientRemoteError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, PermanentRemoteError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


# =============================================================================
# Routes
# =============================================================================

def build_router(coordinator: SyncCoordinator) -> APIRouter:
    router = APIRouter(prefix="/sync", tags=["Sync"])

    @router.get(
        "/status",
        response_model=StatusResponse,
        summary="Current sync status",
    )
    async def get_status() -> StatusResponse:
        return StatusResponse(**coordinator.status())

    @router.get(
        "/operations",
        response_model=list[OperationResponse],
        summary="List pending operations",
    )
    async def list_operations() -> list[OperationResponse]:
        return [OperationResponse.from_operation(op) for op in coordinator.pending_operations]

    @router.post(
        "/operations",
        response_model=OperationResponse,
        status_code=status.HTTP_202_ACCEPTED,
        responses={
            202: {"description": "Operation queued; a drain is scheduled"},
            422: {"description": "Invalid payload", "model": ErrorResponse},
        },
        summary="Queue a local mutation",
    )
    async def enqueue_operation(request: EnqueueRequest) -> OperationResponse:
        """
        Queue a create, update or delete.

        Any pending operation for the same entity is replaced.
        """
        if request.type == OperationType.CREATE:
            operation = coordinator.queue_create(request.entity_type, request.entity_id, request.payload)
        elif request.type == OperationType.UPDATE:
            operation = coordinator.queue_update(request.entity_type, request.entity_id, request.payload)
        else:
            operation = coordinator.queue_delete(request.entity_type, request.entity_id, request.payload)
        return OperationResponse.from_operation(operation)

    @router.delete(
        "/operations",
        response_model=CountResponse,
        summary="Clear the pending queue",
    )
    async def clear_operations() -> CountResponse:
        return CountResponse(count=coordinator.clear_pending_queue())

    @router.delete(
        "/operations/{entity_id}",
        response_model=CountResponse,
        responses={404: {"description": "Nothing pending for entity", "model": ErrorResponse}},
        summary="Cancel pending operations for an entity",
    )
    async def cancel_operations(
        entity_id: str,
        entity_type: Optional[EntityType] = Query(None),
    ) -> CountResponse:
        count = coordinator.cancel_pending(entity_id, entity_type)
        if count == 0:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No pending operations for {entity_id}",
            )
        return CountResponse(count=count)

    @router.post(
        "/drain",
        response_model=SyncResultResponse,
        summary="Drain the pending queue now",
    )
    async def drain() -> SyncResultResponse:
        result = await coordinator.process_pending_queue()
        return SyncResultResponse.from_result(result, coordinator.sync_state)

    @router.post(
        "/full",
        response_model=SyncResultResponse,
        summary="Push pending changes and pull remote state",
    )
    async def full_sync(request: Optional[FullSyncRequest] = None) -> SyncResultResponse:
        entity_types = request.entity_types if request else None
        result = await coordinator.perform_full_sync(entity_types)
        return SyncResultResponse.from_result(result, coordinator.sync_state)

    @router.get(
        "/dead-letters",
        response_model=list[OperationResponse],
        summary="Operations that were given up on",
    )
    async def list_dead_letters() -> list[OperationResponse]:
        return [OperationResponse.from_operation(op) for op in coordinator.dead_letters]

    @router.delete(
        "/dead-letters",
        response_model=CountResponse,
        summary="Forget dropped operations",
    )
    async def clear_dead_letters() -> CountResponse:
        return CountResponse(count=coordinator.clear_dead_letters())

    return router


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    coordinator: SyncCoordinator,
    probe: Optional[HttpReachabilityProbe] = None,
) -> FastAPI:
    """Build the API around an existing coordinator (and optional reachability probe)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting sync API v{__version__}")
        if probe is not None:
            await probe.check_once()
            await probe.start()

        yield

        logger.info("Shutting down sync API")
        if probe is not None:
            await probe.stop()
        await coordinator.close()

    app = FastAPI(
        title=coordinator.settings.app_name,
        description="Status and control surface for the offline sync engine.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to all responses."""
        start_time = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Process-Time"] = f"{time.perf_counter() - start_time:.4f}"
        logger.debug(f"{request.method} {request.url.path} - {response.status_code}")
        return response

    # === Exception Handlers ===

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.detail if isinstance(exc.detail, str) else "Error",
                detail=str(exc.detail) if not isinstance(exc.detail, str) else None,
                status_code=exc.status_code,
            ).model_dump(),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = []
        for error in exc.errors():
            loc = " -> ".join(str(x) for x in error["loc"])
            messages.append(f"{loc}: {error['msg']}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                error="Validation Error",
                detail="; ".join(messages),
                status_code=422,
            ).model_dump(),
        )

    @app.exception_handler(SyncError)
    async def sync_exception_handler(request: Request, exc: SyncError) -> JSONResponse:
        code = _status_code_for(exc)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=code,
            content=ErrorResponse(
                error=type(exc).__name__,
                detail=str(exc),
                status_code=code,
            ).model_dump(),
        )

    # === Health ===

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            version=__version__,
            connection=coordinator.connectivity.state.value,
        )

    app.include_router(build_router(coordinator))
    return app
