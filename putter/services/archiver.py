from __future__ import annotations

import contextlib
import os
import shutil
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from putter.services.errors import ArchiveError

PARTIAL_SUFFIX = ".partial"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Archiver:
    def __init__(self, directory: str | Path, name_format: str, enabled: bool = True, clock: Callable[[], datetime] = _utcnow):
        self.directory = Path(directory)
        self.name_format = name_format
        self.enabled = enabled
        self._clock = clock

    def entry_name(self, when: datetime | None = None) -> str:
        return (when or self._clock()).astimezone(timezone.utc).strftime(self.name_format)

    def archive(self, source: Path) -> Path | None:
        """Copy ``source`` into the archive under a timestamped name.

        Must run before the source is replaced. Returns the new entry path, or
        ``None`` when archiving is disabled.
        """
        if not self.enabled:
            return None

        target = self.directory / self.entry_name()
        partial = target.with_name(target.name + PARTIAL_SUFFIX)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            if target.exists():
                raise ArchiveError(f"archive entry {target} already exists")
            with source.open("rb") as src, partial.open("xb") as dst:
                shutil.copyfileobj(src, dst)
                dst.flush()
                os.fsync(dst.fileno())
            os.replace(partial, target)
        except ArchiveError:
            raise
        except OSError as exc:
            with contextlib.suppress(OSError):
                partial.unlink(missing_ok=True)
            raise ArchiveError(f"failed to archive {source} to {target}: {exc}") from exc

        return target

    def list_entries(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(
            (p for p in self.directory.iterdir() if p.is_file() and not p.name.endswith(PARTIAL_SUFFIX)),
            key=lambda p: p.name,
        )
