"""Export storage for generated documents.

Generated ``.docx`` files are written to a single exports directory and are
only kept for a limited time; :meth:`ExportStore.sweep` removes the stale
ones.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from wordgen.settings import WordSettings

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 3600


class ExportStore:
    """Directory-backed store of generated documents.

    Parameters
    ----------
    directory:
        Exports directory.  Created on first write.
    retention_seconds:
        Default maximum age used by :meth:`sweep`.
    """

    def __init__(
        self,
        directory: str | Path,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
    ) -> None:
        self._directory = Path(directory)
        self._retention = retention_seconds

    @classmethod
    def from_settings(cls, settings: WordSettings, directory: str | Path | None = None) -> ExportStore:
        cfg = settings.exports
        return cls(
            directory or cfg.get("directory", "word-exports"),
            int(cfg.get("retention_seconds", DEFAULT_RETENTION_SECONDS)),
        )

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, name: str) -> Path:
        """Return the path of artifact *name*.

        Raises
        ------
        ValueError
            If *name* is not a plain file name.
        """
        if not name or Path(name).name != name:
            raise ValueError(f"Invalid artifact name: {name!r}")
        return self._directory / name

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def persist(self, name: str, data: bytes) -> Path:
        """Write *data* as artifact *name* and return its path.

        Errors from the filesystem propagate to the caller.
        """
        path = self.path_for(name)
        self._directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("Document saved to %s (%d bytes)", path.resolve(), len(data))
        return path

    def sweep(self, max_age_seconds: Optional[float] = None, now: Optional[float] = None) -> list[str]:
        """Delete ``.docx`` files older than *max_age_seconds*.

        Returns
        -------
        list[str]
            Names of the deleted files.
        """
        if not self._directory.is_dir():
            return []

        max_age = self._retention if max_age_seconds is None else max_age_seconds
        cutoff = (time.time() if now is None else now) - max_age

        removed: list[str] = []
        for path in sorted(self._directory.glob("*.docx")):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed.append(path.name)
                    logger.info("Deleted old file: %s", path.name)
            except OSError as exc:
                logger.error("Error deleting file %s: %s", path.name, exc)

        logger.debug("Sweep of %s removed %d file(s)", self._directory, len(removed))
        return removed
