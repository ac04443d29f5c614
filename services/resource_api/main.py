"""Audio Resource Ingestor - Resource API FastAPI application.

Thin HTTP layer over ResourceOrchestrator: request shaping and mapping of
error kinds to status codes. All ingestion / removal logic lives in
ingestor.orchestrator.

Run with:
    uvicorn services.resource_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from ingestor.config import BLOB_DIR, EXPECTED_CONTENT_TYPE
from ingestor.db import ResourceRepository, init_db
from ingestor.errors import ErrorKind, Outcome, ResourceError
from ingestor.events import HueyEventPublisher
from ingestor.object_store import FilesystemObjectStore, ObjectStoreClient
from ingestor.orchestrator import ResourceOrchestrator, parse_resource_id
from ingestor.schemas import (
    ErrorResponse,
    ResourceCreatedResponse,
    ResourceInfoResponse,
    ResourcesDeletedResponse,
)

logger = logging.getLogger(__name__)

# --- Orchestrator Setup ---

# Module-level orchestrator (built on startup unless overridden)
_orchestrator: ResourceOrchestrator | None = None


def get_orchestrator() -> ResourceOrchestrator:
    """Dependency that provides the orchestrator.

    Raises:
        RuntimeError: If not initialized (app lifespan not invoked).
    """
    if _orchestrator is None:
        raise RuntimeError("Orchestrator not initialized. App lifespan not invoked?")
    return _orchestrator


def build_orchestrator() -> ResourceOrchestrator:
    """Wire the default stores and publisher from config."""
    _, session_factory = init_db()
    backend = FilesystemObjectStore(BLOB_DIR)
    backend.ensure_layout()
    return ResourceOrchestrator(
        store=ObjectStoreClient(backend),
        records=ResourceRepository(session_factory),
        publisher=HueyEventPublisher(),
    )


# --- Lifespan ---


def _cleanup_orphan_temp_files_safe() -> None:
    """Remove temp files left by interrupted blob writes (best-effort)."""
    from ingestor.utils.atomic_io import cleanup_orphan_temp_files

    try:
        removed = cleanup_orphan_temp_files(BLOB_DIR)
        if removed > 0:
            logger.info("Startup cleanup: removed %d orphan temp files", removed)
    except Exception:
        # Best-effort: never crash startup
        logger.warning("Startup cleanup failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the orchestrator on startup and clean up orphan temp files."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()

    _cleanup_orphan_temp_files_safe()

    yield


# --- FastAPI App ---


app = FastAPI(
    title="Audio Resource Ingestor - Resource API",
    description="Upload, fetch and delete MP3 resources.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---


def error_kind_to_status(kind: str) -> int:
    """Map error kinds to HTTP status codes.

    - INVALID_INPUT -> 400
    - NOT_FOUND -> 404
    - INFRASTRUCTURE (and anything else) -> 500
    """
    if kind == ErrorKind.INVALID_INPUT:
        return 400
    if kind == ErrorKind.NOT_FOUND:
        return 404
    return 500


def make_error_response(kind: str, message: str) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_kind_to_status(kind),
        content=ErrorResponse(error_code=kind, error_message=message).model_dump(),
    )


def error_response(error: ResourceError) -> JSONResponse:
    return make_error_response(error.kind, error.message)


def _parse_path_id(raw: str) -> Outcome[int]:
    """Parse a path id with the same rules as the CSV ids of a batch delete."""
    return parse_resource_id(raw)


_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    404: {"model": ErrorResponse, "description": "Resource not found"},
    500: {"model": ErrorResponse, "description": "Infrastructure failure"},
}


# --- Endpoints ---


@app.post(
    "/resources",
    response_model=ResourceCreatedResponse,
    responses={400: _ERROR_RESPONSES[400], 500: _ERROR_RESPONSES[500]},
    summary="Upload an MP3 resource",
    description="Raw request body with Content-Type audio/mpeg.",
)
async def upload_resource(
    request: Request,
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
):
    """Upload an MP3 payload and return the new resource id."""
    content_type = request.headers.get("content-type", "")
    if content_type.split(";")[0].strip().lower() != EXPECTED_CONTENT_TYPE:
        return make_error_response(
            ErrorKind.INVALID_INPUT,
            f"Content type '{content_type}' is not supported, expected {EXPECTED_CONTENT_TYPE}",
        )

    data = await request.body()
    try:
        # Retries block; keep them off the event loop
        outcome = await run_in_threadpool(orchestrator.upload, data)
    except Exception:
        logger.exception("Unexpected error during upload")
        return make_error_response(
            ErrorKind.INFRASTRUCTURE, "An unexpected error occurred during upload"
        )

    if not outcome.ok:
        return error_response(outcome.error)
    return ResourceCreatedResponse(id=outcome.value)


@app.get(
    "/resources/{resource_id}/info",
    response_model=ResourceInfoResponse,
    responses=_ERROR_RESPONSES,
    summary="Get resource metadata",
)
def get_resource_info(
    resource_id: str,
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
):
    """Return the metadata record of one resource."""
    parsed = _parse_path_id(resource_id)
    if not parsed.ok:
        return error_response(parsed.error)

    try:
        outcome = orchestrator.fetch_metadata(parsed.value)
    except Exception:
        logger.exception("Unexpected error fetching metadata for resource_id=%s", parsed.value)
        return make_error_response(
            ErrorKind.INFRASTRUCTURE, "An unexpected error occurred while fetching metadata"
        )

    if not outcome.ok:
        return error_response(outcome.error)
    return ResourceInfoResponse.model_validate(outcome.value)


@app.get(
    "/resources/{resource_id}",
    response_class=Response,
    responses={
        200: {"content": {EXPECTED_CONTENT_TYPE: {}}, "description": "MP3 bytes"},
        **_ERROR_RESPONSES,
    },
    summary="Download resource content",
)
def get_resource_content(
    resource_id: str,
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
):
    """Return the stored MP3 bytes as an attachment."""
    parsed = _parse_path_id(resource_id)
    if not parsed.ok:
        return error_response(parsed.error)

    try:
        outcome = orchestrator.fetch_content(parsed.value)
    except Exception:
        logger.exception("Unexpected error fetching content for resource_id=%s", parsed.value)
        return make_error_response(
            ErrorKind.INFRASTRUCTURE, "An unexpected error occurred while fetching content"
        )

    if not outcome.ok:
        return error_response(outcome.error)
    return Response(
        content=outcome.value,
        media_type=EXPECTED_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="resource_{parsed.value}.mp3"'},
    )


@app.delete(
    "/resources",
    response_model=ResourcesDeletedResponse,
    responses={400: _ERROR_RESPONSES[400], 500: _ERROR_RESPONSES[500]},
    summary="Delete resources by id",
    description="Comma-separated ids in the 'id' query parameter (under 200 characters).",
)
def delete_resources(
    orchestrator: Annotated[ResourceOrchestrator, Depends(get_orchestrator)],
    csv_ids: Annotated[str | None, Query(alias="id", description="CSV of resource ids")] = None,
):
    """Delete the listed resources; returns the ids actually removed."""
    try:
        outcome = orchestrator.delete(csv_ids or "")
    except Exception:
        logger.exception("Unexpected error during batch delete")
        return make_error_response(
            ErrorKind.INFRASTRUCTURE, "An unexpected error occurred during delete"
        )

    if not outcome.ok:
        return error_response(outcome.error)
    return ResourcesDeletedResponse(ids=outcome.value)


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


# --- For testing: allow overriding the orchestrator ---


def override_orchestrator(orchestrator: ResourceOrchestrator | None) -> None:
    """Override (or reset with None) the orchestrator used by the app."""
    global _orchestrator
    _orchestrator = orchestrator
