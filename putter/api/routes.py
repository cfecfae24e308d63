import logging
import os
from collections.abc import Iterator
from email.utils import formatdate, parsedate_to_datetime
from typing import BinaryIO

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.requests import ClientDisconnect

from putter.core.config import Settings
from putter.core.logging import log_event
from putter.core.metrics import document_reads_total, saves_total
from putter.schemas.api import ErrorResponse, HealthResponse
from putter.services.errors import PreconditionFailedError, SaveError, StagingError
from putter.services.saver import DocumentSaver
from putter.services.state import DocumentState
from putter.services.upload import StagedUpload

router = APIRouter()
logger = logging.getLogger(__name__)

DAV_MARKER = "putter"
DOCUMENT_MEDIA_TYPE = "text/html; charset=utf-8"
ALLOWED_METHODS = "GET, HEAD, OPTIONS, PUT"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_document_state(request: Request) -> DocumentState:
    return request.app.state.document


def get_saver(request: Request) -> DocumentSaver:
    return request.app.state.saver


def accepts_gzip(accept_encoding: str | None) -> bool:
    if not accept_encoding:
        return False
    for item in accept_encoding.split(","):
        coding, _, params = item.strip().partition(";")
        coding = coding.strip().lower()
        if coding not in {"gzip", "x-gzip", "*"}:
            continue
        quality = 1.0
        for param in params.split(";"):
            key, _, value = param.strip().partition("=")
            if key.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        if quality > 0:
            return True
    return False


def etag_matches(if_none_match: str, etag: str) -> bool:
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == etag:
            return True
    return False


def not_modified_since(if_modified_since: str | None, modified: int) -> bool:
    if not if_modified_since:
        return False
    try:
        since = parsedate_to_datetime(if_modified_since)
    except (TypeError, ValueError):
        return False
    if since.tzinfo is None:
        return False
    return modified <= int(since.timestamp())


def _iter_file(handle: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    with handle:
        while chunk := handle.read(chunk_size):
            yield chunk


def _error(status_code: int, exc: Exception, error_code: str, headers: dict[str, str] | None = None) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(detail=str(exc), error_code=error_code).model_dump(),
        headers=headers,
    )


# HEAD is registered ahead of GET so it never falls through to the body-serving route.
@router.api_route("/", methods=["HEAD"])
def head_document(state: DocumentState = Depends(get_document_state)) -> Response:
    snapshot = state.current()
    return Response(status_code=200, headers={"ETag": snapshot.etag})


@router.options("/")
def options_document() -> Response:
    return Response(status_code=200, headers={"Dav": DAV_MARKER, "Allow": ALLOWED_METHODS})


@router.get("/")
def get_document(
    request: Request,
    state: DocumentState = Depends(get_document_state),
    cfg: Settings = Depends(get_settings),
) -> Response:
    wants_gzip = cfg.COMPRESS_ENABLED and accepts_gzip(request.headers.get("accept-encoding"))
    if_none_match = request.headers.get("if-none-match")
    if_modified_since = request.headers.get("if-modified-since")

    with state.read() as snapshot:
        headers = {"ETag": snapshot.etag, "Vary": "Accept-Encoding"}
        if if_none_match and etag_matches(if_none_match, snapshot.etag):
            return Response(status_code=304, headers=headers)

        use_variant = wants_gzip and snapshot.variant_current
        path = state.paths.variant if use_variant else state.paths.document
        try:
            handle = path.open("rb")
        except OSError as exc:
            log_event("document.read_failed", level=logging.ERROR, payload={"path": str(path), "error": str(exc)})
            raise _error(500, exc, "DOCUMENT_READ_FAILED") from exc
        try:
            size = os.fstat(handle.fileno()).st_size
            modified = int(state.paths.document.stat().st_mtime)
        except OSError as exc:
            handle.close()
            log_event("document.read_failed", level=logging.ERROR, payload={"path": str(path), "error": str(exc)})
            raise _error(500, exc, "DOCUMENT_READ_FAILED") from exc
    # The open handle pins these bytes; streaming happens without the lock.

    headers["Last-Modified"] = formatdate(modified, usegmt=True)
    if not if_none_match and not_modified_since(if_modified_since, modified):
        handle.close()
        return Response(status_code=304, headers=headers)

    headers["Content-Length"] = str(size)
    if use_variant:
        headers["Content-Encoding"] = "gzip"
    document_reads_total.labels(encoding="gzip" if use_variant else "identity").inc()
    return StreamingResponse(_iter_file(handle, cfg.CHUNK_SIZE), headers=headers, media_type=DOCUMENT_MEDIA_TYPE)


@router.put("/", responses={412: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def put_document(
    request: Request,
    state: DocumentState = Depends(get_document_state),
    saver: DocumentSaver = Depends(get_saver),
    cfg: Settings = Depends(get_settings),
) -> Response:
    if_match = request.headers.get("if-match")
    log_event("save.received", payload={"if_match": if_match, "content_length": request.headers.get("content-length")})

    try:
        staged = await run_in_threadpool(StagedUpload, state.paths.directory, state.paths.document.name, cfg.HASH_ALGORITHM)
    except StagingError as exc:
        raise _staging_failed(exc) from exc

    with staged:
        try:
            async for chunk in request.stream():
                if chunk:
                    await run_in_threadpool(staged.write, chunk)
            await run_in_threadpool(staged.finish)
        except ClientDisconnect as exc:
            raise _staging_failed(StagingError(f"client disconnected during upload: {exc}")) from exc
        except StagingError as exc:
            raise _staging_failed(exc) from exc

        log_event("save.staged", payload={"size_bytes": staged.size, "etag": staged.etag})

        try:
            result = await run_in_threadpool(saver.save, staged, if_match)
        except PreconditionFailedError as exc:
            raise _error(412, exc, exc.error_code, headers={"ETag": exc.server_etag}) from exc
        except SaveError as exc:
            raise _error(500, exc, exc.error_code) from exc

    return Response(status_code=200, headers={"ETag": result.etag})


def _staging_failed(exc: StagingError) -> HTTPException:
    saves_total.labels(result="failed").inc()
    log_event(
        "save.failed",
        level=logging.ERROR,
        payload={"stage": exc.stage, "error_code": exc.error_code, "error": str(exc)},
    )
    return _error(500, exc, exc.error_code)


@router.get("/healthz", response_model=HealthResponse)
def healthz(
    state: DocumentState = Depends(get_document_state),
    cfg: Settings = Depends(get_settings),
) -> HealthResponse:
    snapshot = state.current()
    return HealthResponse(
        service=cfg.APP_NAME,
        version=cfg.APP_VERSION,
        etag=snapshot.etag,
        compressed_variant=snapshot.variant_current,
        archive_enabled=cfg.ARCHIVE_ENABLED,
    )


@router.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
