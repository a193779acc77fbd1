from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class FileCacheStore:
    """
    Key-value byte store backed by one file per key in a directory.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so a reader never sees a half-written entry.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.logger = logging.getLogger("census_cache")

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", key)
        return self.directory / f"{safe}.json"

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def put(self, key: str, data: bytes) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = tempfile.NamedTemporaryFile(
            dir=self.directory,
            prefix=f".{path.stem}_",
            suffix=".tmp",
            delete=False,
        )
        try:
            tmp.write(data)
            tmp.close()
            os.replace(tmp.name, path)
        except Exception:
            tmp.close()
            Path(tmp.name).unlink(missing_ok=True)
            raise
        self.logger.debug("Cached %s (%d bytes) at %s", key, len(data), path)
        return path
