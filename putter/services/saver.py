from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path

from putter.core.logging import log_event
from putter.core.metrics import compression_failures_total, save_duration_seconds, saves_total
from putter.services.archiver import Archiver
from putter.services.compressor import Compressor
from putter.services.errors import CompressionError, PreconditionFailedError, SaveError
from putter.services.state import DocumentState, Snapshot
from putter.services.upload import StagedUpload, promote


@dataclass(frozen=True)
class SaveResult:
    etag: str
    size: int
    archived_to: Path | None
    compressed: bool


class DocumentSaver:
    def __init__(self, state: DocumentState, archiver: Archiver, compressor: Compressor):
        self.state = state
        self.archiver = archiver
        self.compressor = compressor

    def save(self, staged: StagedUpload, if_match: str | None = None) -> SaveResult:
        """Replace the live document with a finished staged upload.

        Runs entirely under the exclusive lock: validate the caller's token,
        archive the outgoing bytes, promote, compress, then commit. A failure
        before promotion leaves document and fingerprint untouched.
        """
        started = time.perf_counter()
        paths = self.state.paths
        with self.state.begin_write() as txn:
            current = txn.snapshot
            if if_match and if_match != current.etag:
                saves_total.labels(result="conflict").inc()
                log_event(
                    "save.conflict",
                    payload={"client_etag": if_match, "server_etag": current.etag},
                )
                raise PreconditionFailedError(if_match, current.etag)

            try:
                archived_to = self.archiver.archive(paths.document)
                if archived_to is not None:
                    log_event("save.archived", payload={"archive_entry": str(archived_to)})
                promote(staged, paths.document)
            except SaveError as exc:
                saves_total.labels(result="failed").inc()
                log_event(
                    "save.failed",
                    level=logging.ERROR,
                    payload={"stage": exc.stage, "error_code": exc.error_code, "error": str(exc)},
                )
                raise

            variant_etag = self._refresh_variant(staged.etag)
            committed = txn.commit(staged.etag, variant_etag)

        duration = time.perf_counter() - started
        save_duration_seconds.observe(duration)
        saves_total.labels(result="ok").inc()
        log_event(
            "save.completed",
            payload={
                "etag": committed.etag,
                "size_bytes": staged.size,
                "compressed": committed.variant_current,
                "duration_ms": int(duration * 1000),
            },
        )
        return SaveResult(etag=committed.etag, size=staged.size, archived_to=archived_to, compressed=committed.variant_current)

    def build_initial_variant(self) -> Snapshot:
        with self.state.begin_write() as txn:
            return txn.commit(txn.snapshot.etag, self._refresh_variant(txn.snapshot.etag))

    def _refresh_variant(self, etag: str) -> str | None:
        # Caller holds the exclusive lock and the live document already has ``etag``.
        paths = self.state.paths
        if not self.compressor.enabled:
            return None
        try:
            self.compressor.compress(paths.document, paths.variant)
        except Exception as exc:
            # Promotion already happened; the write commits without a variant.
            compression_failures_total.inc()
            error_code = exc.error_code if isinstance(exc, CompressionError) else CompressionError.error_code
            log_event(
                "save.compression_degraded",
                level=logging.ERROR,
                payload={"error_code": error_code, "error": f"{type(exc).__name__}: {exc}", "etag": etag},
            )
            self.compressor.discard(paths.variant)
            return None
        return etag
