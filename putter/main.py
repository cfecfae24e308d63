import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse

from putter.api.archive import mount_archive
from putter.api.routes import router
from putter.core.config import Settings, settings
from putter.core.logging import clear_request_context, configure_logging, log_event, set_request_context
from putter.services.archiver import Archiver
from putter.services.compressor import Compressor
from putter.services.errors import StartupValidationError
from putter.services.saver import DocumentSaver
from putter.services.state import DocumentState


async def request_context_middleware(request: Request, call_next):
    started = time.perf_counter()
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    set_request_context(request_id=request_id)
    request.state.request_id = request_id

    req_size = int(request.headers.get("content-length") or 0)
    status_code = 500
    response_size = 0
    error_code = None
    try:
        response = await call_next(request)
        status_code = response.status_code
        response_size = int(response.headers.get("content-length") or 0)
        if status_code >= 400:
            error_code = str(status_code)
        response.headers["X-Request-ID"] = request_id
        return response
    except Exception:
        error_code = "internal_server_error"
        raise
    finally:
        duration_ms = int((time.perf_counter() - started) * 1000)
        log_event(
            "api.request.completed",
            payload={
                "endpoint": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "request_size_bytes": req_size,
                "response_size_bytes": response_size,
                "error_code": error_code,
            },
            plane="data",
        )
        clear_request_context()


async def contract_error_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, dict) and "error_code" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return await http_exception_handler(request, exc)


def _load_state(cfg: Settings, archiver: Archiver, compressor: Compressor) -> tuple[DocumentState, DocumentSaver]:
    state = DocumentState.load(cfg.WIKI_PATH, algorithm=cfg.HASH_ALGORITHM, chunk_size=cfg.CHUNK_SIZE)
    saver = DocumentSaver(state, archiver, compressor)
    saver.build_initial_variant()
    if cfg.serves_archive:
        try:
            archiver.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StartupValidationError("ARCHIVE_DIR_UNAVAILABLE", f"archive directory {archiver.directory} could not be created: {exc}") from exc
    return state, saver


def create_app(app_settings: Settings | None = None) -> FastAPI:
    cfg = app_settings or settings
    archiver = Archiver(cfg.ARCHIVE_DIR, cfg.ARCHIVE_FORMAT, enabled=cfg.ARCHIVE_ENABLED)
    compressor = Compressor(enabled=cfg.COMPRESS_ENABLED)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            state, saver = _load_state(cfg, archiver, compressor)
        except StartupValidationError as exc:
            log_event("startup.failed", level=logging.CRITICAL, payload={"error_code": exc.error_code, "error": str(exc)}, plane="control")
            raise RuntimeError(f"{exc.error_code}: {exc}") from exc
        app.state.document = state
        app.state.saver = saver
        log_event(
            "startup.completed",
            payload={
                "wiki_path": str(state.paths.document),
                "etag": state.current().etag,
                "archive_enabled": cfg.ARCHIVE_ENABLED,
                "archive_path": cfg.ARCHIVE_PATH if cfg.serves_archive else None,
                "compress_enabled": cfg.COMPRESS_ENABLED,
            },
            plane="control",
        )
        yield

    app = FastAPI(
        title="Wiki Putter",
        version=cfg.APP_VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = cfg
    app.state.archiver = archiver
    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(HTTPException, contract_error_handler)
    app.include_router(router)
    if cfg.serves_archive:
        mount_archive(app, archiver, cfg.ARCHIVE_PATH)
    return app


configure_logging()
app = create_app()
