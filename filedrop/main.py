import asyncio
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from filedrop.config import settings
from filedrop.coordinator import UploadCoordinator
from filedrop.downloads import DownloadServer
from filedrop.errors import IncompleteUpload, RangeNotSatisfiable, TransferError
from filedrop.events import audit_event, log_event
from filedrop.metrics import (
    chunk_upload_failures_total,
    downloads_total,
    http_request_duration_seconds,
    metrics_response,
    sessions_created_total,
    sessions_resumed_total,
)
from filedrop.schemas import (
    CompleteUploadResponse,
    DownloadMetaResponse,
    ErrorResponse,
    InitUploadRequest,
    InitUploadResponse,
    UploadChunkResponse,
    UploadStatusResponse,
)
from filedrop.services import get_coordinator, get_download_server
from filedrop.tracing import current_trace_id, setup_tracing


@asynccontextmanager
async def lifespan(_: FastAPI):
    log_event(
        {
            "event": "service_started",
            "app_version": settings.app_version,
            "session_backend": settings.session_backend,
            "storage_root": settings.storage_root,
        }
    )
    yield
    log_event({"event": "service_stopped"})


app = FastAPI(title=settings.app_name, lifespan=lifespan)
setup_tracing(app)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _upload_id(request: Request) -> str | None:
    return request.path_params.get("upload_id")


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None and hasattr(route, "path"):
        return str(route.path)
    return request.url.path


def _error_code_for_status(status_code: int) -> str:
    mapping = {
        400: "invalid_request",
        404: "not_found",
        405: "method_not_allowed",
        409: "conflict",
        416: "range_not_satisfiable",
        500: "internal_error",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _error_response(
    request: Request,
    status_code: int,
    detail: str,
    error_code: str,
    error_class: str,
    headers: dict | None = None,
    upload_id: str | None = None,
    **extra,
) -> JSONResponse:
    upload_id = upload_id or _upload_id(request)
    log_event(
        {
            "event": "request_error",
            "request_id": _request_id(request),
            "upload_id": upload_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "error_class": error_class,
            "error_code": error_code,
            "detail": detail,
        }
    )
    content = {
        "detail": detail,
        "error_code": error_code,
        "request_id": _request_id(request),
        "upload_id": upload_id,
        "trace_id": current_trace_id(),
    }
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers or {})


COMMON_ERROR_RESPONSES = {
    500: {"model": ErrorResponse, "description": "Internal server error"},
}


@app.middleware("http")
async def request_context_and_logging(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    start = time.perf_counter()

    response = await call_next(request)
    duration_ms = round((time.perf_counter() - start) * 1000, 2)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Filedrop-App-Version"] = settings.app_version
    http_request_duration_seconds.labels(
        method=request.method,
        route=_route_label(request),
        status_code=str(response.status_code),
    ).observe(duration_ms / 1000.0)

    log_event(
        {
            "event": "request_completed",
            "request_id": request_id,
            "upload_id": _upload_id(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
        }
    )
    return response


@app.exception_handler(TransferError)
async def transfer_error_handler(request: Request, exc: TransferError):
    headers = {}
    extra = {}
    if isinstance(exc, RangeNotSatisfiable):
        headers["Content-Range"] = f"bytes */{exc.total}"
    if isinstance(exc, IncompleteUpload):
        extra["missing_chunks"] = exc.missing
    return _error_response(
        request,
        exc.status_code,
        exc.detail,
        exc.error_code,
        "client_error" if 400 <= exc.status_code < 500 else "server_error",
        headers=headers,
        upload_id=exc.upload_id,
        **extra,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(
        request,
        exc.status_code,
        str(exc.detail),
        _error_code_for_status(exc.status_code),
        "client_error" if 400 <= exc.status_code < 500 else "server_error",
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
    )
    return _error_response(request, 400, problems or "invalid request", "invalid_request", "client_error")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log_event(
        {
            "event": "request_error",
            "request_id": _request_id(request),
            "upload_id": _upload_id(request),
            "method": request.method,
            "path": request.url.path,
            "status_code": 500,
            "error_class": "unhandled_exception",
            "detail": str(exc),
        }
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "internal server error",
            "error_code": "internal_error",
            "request_id": _request_id(request),
            "upload_id": _upload_id(request),
            "trace_id": current_trace_id(),
        },
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "app_name": settings.app_name,
        "app_version": settings.app_version,
        "session_backend": settings.session_backend,
    }


@app.get("/metrics")
def metrics() -> Response:
    return metrics_response()


@app.post(
    "/api/upload/init",
    response_model=InitUploadResponse,
    responses={**COMMON_ERROR_RESPONSES, 400: {"model": ErrorResponse, "description": "Invalid init payload"}},
)
def init_upload(
    request: Request,
    payload: InitUploadRequest,
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> InitUploadResponse:
    session, resumed = coordinator.init(
        file_name=payload.file_name,
        file_size=payload.file_size,
        mime_type=payload.mime_type,
        total_chunks=payload.total_chunks,
        chunk_size=payload.chunk_size,
        fingerprint=payload.fingerprint,
        max_downloads=payload.max_downloads,
        resume_session_id=payload.upload_id,
    )
    if resumed:
        sessions_resumed_total.inc()
    else:
        sessions_created_total.inc()
    audit_event(
        {
            "action": "upload_resume" if resumed else "upload_init",
            "request_id": _request_id(request),
            "upload_id": session.session_id,
            "code": session.code,
            "file_size": session.file_size,
            "chunk_size": session.chunk_size,
            "total_chunks": session.total_chunks,
            "uploaded_chunks": len(session.uploaded_chunks),
        }
    )
    return InitUploadResponse(
        upload_id=session.session_id,
        code=session.code,
        uploaded_chunks=session.sorted_chunks(),
    )


@app.get(
    "/api/upload/status/{upload_id}",
    response_model=UploadStatusResponse,
    responses={**COMMON_ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Upload not found"}},
)
def upload_status(
    upload_id: str,
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> UploadStatusResponse:
    session = coordinator.status(upload_id)
    return UploadStatusResponse(
        upload_id=session.session_id,
        code=session.code,
        complete=session.complete,
        uploaded_chunks=session.sorted_chunks(),
        total_chunks=session.total_chunks,
    )


@app.post(
    "/api/upload/{upload_id}/chunk",
    response_model=UploadChunkResponse,
    responses={
        **COMMON_ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Chunk index out of range"},
        404: {"model": ErrorResponse, "description": "Upload not found"},
        409: {"model": ErrorResponse, "description": "Upload already complete"},
    },
)
async def upload_chunk(
    upload_id: str,
    request: Request,
    index: int = Query(),
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> UploadChunkResponse:
    body = await request.body()
    try:
        await asyncio.to_thread(coordinator.accept_chunk, upload_id, index, body)
    except Exception:
        chunk_upload_failures_total.inc()
        raise
    return UploadChunkResponse(ok=True)


@app.post(
    "/api/upload/{upload_id}/complete",
    response_model=CompleteUploadResponse,
    responses={
        **COMMON_ERROR_RESPONSES,
        400: {"model": ErrorResponse, "description": "Chunks missing"},
        404: {"model": ErrorResponse, "description": "Upload not found"},
    },
)
def complete_upload(
    request: Request,
    upload_id: str,
    coordinator: UploadCoordinator = Depends(get_coordinator),
) -> CompleteUploadResponse:
    session = coordinator.complete(upload_id)
    audit_event(
        {
            "action": "upload_complete",
            "request_id": _request_id(request),
            "upload_id": session.session_id,
            "code": session.code,
            "file_size": session.file_size,
            "total_chunks": session.total_chunks,
        }
    )
    return CompleteUploadResponse(ok=True, code=session.code)


@app.get(
    "/api/download/{code}/meta",
    response_model=DownloadMetaResponse,
    responses={**COMMON_ERROR_RESPONSES, 404: {"model": ErrorResponse, "description": "Code not found"}},
)
def download_meta(
    code: str,
    downloads: DownloadServer = Depends(get_download_server),
) -> DownloadMetaResponse:
    session = downloads.meta(code)
    return DownloadMetaResponse(
        code=session.code,
        file_name=session.file_name,
        file_size=session.file_size,
        mime_type=session.mime_type,
        # The limit is advisory; downloads never decrement it.
        remaining_downloads=session.max_downloads,
    )


@app.get(
    "/api/download/{code}",
    responses={
        **COMMON_ERROR_RESPONSES,
        404: {"model": ErrorResponse, "description": "Code not found"},
        416: {"model": ErrorResponse, "description": "Invalid range request"},
    },
)
def download(
    request: Request,
    code: str,
    range: str | None = Header(default=None),
    downloads: DownloadServer = Depends(get_download_server),
) -> Response:
    artifact = downloads.fetch(code, range)
    downloads_total.labels(partial=str(artifact.partial).lower()).inc()
    audit_event(
        {
            "action": "download",
            "request_id": _request_id(request),
            "upload_id": artifact.session.session_id,
            "code": artifact.session.code,
            "range_requested": bool(range),
            "bytes": artifact.content_length,
        }
    )
    return StreamingResponse(
        artifact.iter_bytes(),
        status_code=artifact.status_code,
        media_type=artifact.session.mime_type,
        headers=artifact.headers,
    )
