"""Read-only HTTP view of the archive directory."""

from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import APIRouter, FastAPI
from fastapi.staticfiles import StaticFiles

from putter.schemas.api import ArchiveEntry, ArchiveListing
from putter.services.archiver import Archiver


def build_archive_router(archiver: Archiver, prefix: str) -> APIRouter:
    router = APIRouter()

    @router.api_route(prefix, methods=["GET", "HEAD"], response_model=ArchiveListing)
    def list_archive() -> ArchiveListing:
        entries = []
        for path in archiver.list_entries():
            stat = path.stat()
            entries.append(
                ArchiveEntry(
                    name=path.name,
                    size_bytes=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    url=prefix + quote(path.name),
                )
            )
        return ArchiveListing(path=prefix, entries=entries)

    return router


def mount_archive(app: FastAPI, archiver: Archiver, prefix: str) -> None:
    # StaticFiles answers 405 to anything but GET and HEAD.
    app.include_router(build_archive_router(archiver, prefix))
    app.mount(prefix.rstrip("/"), StaticFiles(directory=archiver.directory, check_dir=False), name="archive")
