from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "wiki-putter"
    version: str
    etag: str | None = None
    compressed_variant: bool = False
    archive_enabled: bool = False


class ArchiveEntry(BaseModel):
    name: str
    size_bytes: int
    modified_at: datetime
    url: str


class ArchiveListing(BaseModel):
    path: str
    entries: list[ArchiveEntry] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    detail: str
    error_code: str
