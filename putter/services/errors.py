from __future__ import annotations


class StartupValidationError(RuntimeError):
    def __init__(self, error_code: str, message: str):
        super().__init__(message)
        self.error_code = error_code


class PreconditionFailedError(Exception):
    """Raised when a conditional save names a version that is no longer current."""

    error_code = "SAVE_PRECONDITION_FAILED"

    def __init__(self, client_etag: str, server_etag: str):
        super().__init__(f"If-Match {client_etag} does not match current ETag {server_etag}")
        self.client_etag = client_etag
        self.server_etag = server_etag


class SaveError(RuntimeError):
    error_code = "SAVE_FAILED"
    stage = "save"

    def __init__(self, message: str):
        super().__init__(message)


class StagingError(SaveError):
    error_code = "SAVE_STAGING_FAILED"
    stage = "staging"


class ArchiveError(SaveError):
    error_code = "SAVE_ARCHIVE_FAILED"
    stage = "archiving"


class PromotionError(SaveError):
    error_code = "SAVE_PROMOTION_FAILED"
    stage = "promoting"


class CompressionError(SaveError):
    error_code = "SAVE_COMPRESSION_FAILED"
    stage = "compressing"
