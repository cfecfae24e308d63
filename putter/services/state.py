"""Authoritative holder of the live document's fingerprint.

Every read of the fingerprint goes through ``DocumentState.read()`` and every
change goes through a ``WriteTransaction`` obtained from ``begin_write()``.
The shared side of the lock is held by readers while they capture the
fingerprint together with an open handle on the bytes; the exclusive side is
held by a save for the whole archive/promote/compress/commit sequence.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from putter.core.rwlock import ReadWriteLock
from putter.services.errors import StartupValidationError
from putter.services.hasher import DEFAULT_ALGORITHM, fingerprint_file

VARIANT_SUFFIX = ".gz"


@dataclass(frozen=True)
class DocumentPaths:
    document: Path

    @property
    def variant(self) -> Path:
        return self.document.with_name(self.document.name + VARIANT_SUFFIX)

    @property
    def directory(self) -> Path:
        return self.document.parent


@dataclass(frozen=True)
class Snapshot:
    etag: str
    variant_etag: str | None = None

    @property
    def variant_current(self) -> bool:
        return self.variant_etag is not None and self.variant_etag == self.etag


class WriteTransaction:
    def __init__(self, state: "DocumentState") -> None:
        self._state = state
        self._open = True
        self.committed = False

    @property
    def snapshot(self) -> Snapshot:
        return self._state._snapshot

    def commit(self, etag: str, variant_etag: str | None = None) -> Snapshot:
        if not self._open:
            raise RuntimeError("commit called outside the exclusive write section")
        self._state._snapshot = Snapshot(etag=etag, variant_etag=variant_etag)
        self.committed = True
        return self._state._snapshot

    def close(self) -> None:
        self._open = False


class DocumentState:
    def __init__(self, paths: DocumentPaths, etag: str, variant_etag: str | None = None, lock: ReadWriteLock | None = None):
        self.paths = paths
        self._snapshot = Snapshot(etag=etag, variant_etag=variant_etag)
        self._lock = lock or ReadWriteLock()

    @classmethod
    def load(cls, document_path: str | Path, *, algorithm: str = DEFAULT_ALGORITHM, chunk_size: int = 64 * 1024) -> "DocumentState":
        path = Path(document_path)
        if not path.is_file():
            raise StartupValidationError("DOCUMENT_MISSING", f"document {path} does not exist or is not a regular file")
        try:
            etag = fingerprint_file(path, algorithm=algorithm, chunk_size=chunk_size)
        except OSError as exc:
            raise StartupValidationError("DOCUMENT_UNREADABLE", f"document {path} could not be read: {exc}") from exc
        return cls(DocumentPaths(document=path), etag)

    @contextmanager
    def read(self) -> Iterator[Snapshot]:
        with self._lock.read_locked():
            yield self._snapshot

    @contextmanager
    def begin_write(self) -> Iterator[WriteTransaction]:
        with self._lock.write_locked():
            txn = WriteTransaction(self)
            try:
                yield txn
            finally:
                txn.close()

    def current(self) -> Snapshot:
        with self.read() as snapshot:
            return snapshot

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock
