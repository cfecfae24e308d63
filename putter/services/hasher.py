"""Content fingerprints rendered as HTTP strong validators."""

from __future__ import annotations

import hashlib
from pathlib import Path

DEFAULT_ALGORITHM = "md5"


def format_etag(digest: bytes) -> str:
    return '"' + digest.hex() + '"'


class Fingerprinter:
    """Incremental hash over a byte stream, so staging can hash while it writes."""

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM) -> None:
        self.algorithm = algorithm
        self._hash = hashlib.new(algorithm)
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._hash.update(chunk)
        self.size += len(chunk)

    def etag(self) -> str:
        return format_etag(self._hash.digest())


def fingerprint_bytes(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    fp = Fingerprinter(algorithm)
    fp.update(data)
    return fp.etag()


def fingerprint_file(path: Path, algorithm: str = DEFAULT_ALGORITHM, chunk_size: int = 64 * 1024) -> str:
    fp = Fingerprinter(algorithm)
    with path.open("rb") as handle:
        while chunk := handle.read(chunk_size):
            fp.update(chunk)
    return fp.etag()
