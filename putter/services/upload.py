"""Staging of uploaded documents next to the live file."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterable
from pathlib import Path
from types import TracebackType

from putter.core.logging import log_event
from putter.services.errors import PromotionError, StagingError
from putter.services.hasher import DEFAULT_ALGORITHM, Fingerprinter


class StagedUpload:
    """A private temporary file that receives a request body.

    The file lives in the document's directory so promotion is a rename on
    the same filesystem. Used as a context manager, the staging file is
    removed on exit unless it was promoted.
    """

    def __init__(self, directory: Path, name: str, algorithm: str = DEFAULT_ALGORITHM):
        try:
            self._handle = tempfile.NamedTemporaryFile(dir=directory, prefix=f".{name}.upload-", suffix=".tmp", delete=False)
        except OSError as exc:
            raise StagingError(f"failed to open staging file in {directory}: {exc}") from exc
        self.path = Path(self._handle.name)
        self._fingerprint = Fingerprinter(algorithm)
        self.etag: str | None = None
        self.size = 0

    @property
    def finished(self) -> bool:
        return self.etag is not None

    def write(self, chunk: bytes) -> None:
        if self.finished:
            raise StagingError("staging file is already finished")
        try:
            self._handle.write(chunk)
        except OSError as exc:
            raise StagingError(f"failed to write staging file {self.path}: {exc}") from exc
        self._fingerprint.update(chunk)

    def finish(self) -> str:
        try:
            self._handle.flush()
            os.fsync(self._handle.fileno())
            self._handle.close()
        except OSError as exc:
            raise StagingError(f"failed to close staging file {self.path}: {exc}") from exc
        self.size = self._fingerprint.size
        self.etag = self._fingerprint.etag()
        return self.etag

    def discard(self) -> None:
        self._handle.close()
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            log_event("save.staging_not_removed", level=logging.WARNING, payload={"staging_path": str(self.path), "error": str(exc)})

    def __enter__(self) -> "StagedUpload":
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
        self.discard()


def stage_bytes(directory: Path, name: str, chunks: Iterable[bytes], algorithm: str = DEFAULT_ALGORITHM) -> StagedUpload:
    """Stage an iterable of byte chunks; the caller owns the returned upload."""
    staged = StagedUpload(directory, name, algorithm)
    try:
        for chunk in chunks:
            staged.write(chunk)
        staged.finish()
    except BaseException:
        staged.discard()
        raise
    return staged


def promote(staged: StagedUpload, document: Path) -> None:
    if not staged.finished:
        raise PromotionError("staging file was not finished before promotion")
    try:
        if document.exists():
            shutil.copymode(document, staged.path)
        os.replace(staged.path, document)
    except OSError as exc:
        raise PromotionError(f"failed to replace {document} with {staged.path}: {exc}") from exc
