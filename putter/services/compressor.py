from __future__ import annotations

import contextlib
import gzip
import logging
import os
import shutil
import tempfile
from pathlib import Path

from putter.core.logging import log_event
from putter.services.errors import CompressionError

COMPRESS_LEVEL = 9


class Compressor:
    def __init__(self, enabled: bool = True, level: int = COMPRESS_LEVEL):
        self.enabled = enabled
        self.level = level

    def compress(self, source: Path, target: Path) -> bool:
        """Write a gzip copy of ``source`` to ``target``.

        The copy is built beside ``target`` and renamed over it, so handles
        already streaming the previous variant keep reading intact bytes.
        Returns ``False`` when compression is disabled.
        """
        if not self.enabled:
            return False

        try:
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        except OSError as exc:
            raise CompressionError(f"failed to create temporary variant beside {target}: {exc}") from exc
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as raw, source.open("rb") as src:
                with gzip.GzipFile(filename=source.name, mode="wb", compresslevel=self.level, fileobj=raw) as dst:
                    shutil.copyfileobj(src, dst)
                raw.flush()
                os.fsync(raw.fileno())
            os.replace(tmp, target)
        except OSError as exc:
            raise CompressionError(f"failed to compress {source} to {target}: {exc}") from exc
        finally:
            with contextlib.suppress(OSError):
                tmp.unlink(missing_ok=True)

        log_event("save.variant_written", payload={"variant": str(target)})
        return True

    @staticmethod
    def discard(target: Path) -> None:
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            log_event("save.stale_variant_not_removed", level=logging.WARNING, payload={"variant": str(target), "error": str(exc)})
