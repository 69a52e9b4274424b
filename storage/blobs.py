"""
Filesystem blob store for sealed payloads.

Locators look like "<owner_id>/<stored_name>" and are generated by the
registry, never taken from user input. Each segment is validated so a
locator cannot point outside the store root.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from errors import BlobNotFound, Conflict, FormatError

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


class BlobStore:
    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, locator: str) -> Path:
        segments = locator.split("/") if isinstance(locator, str) else []
        if not segments or any(not _SEGMENT_RE.match(s) or ".." in s for s in segments):
            raise FormatError(f"invalid blob locator: {locator!r}")
        return self.root.joinpath(*segments)

    def put(self, locator: str, data: bytes) -> None:
        """
        Write data once under locator. The bytes land in a temp file in the
        target directory first and are renamed into place, so a failed write
        never leaves a readable partial blob.
        """
        path = self._path(locator)
        if path.exists():
            raise Conflict(f"blob already exists: {locator}")
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".blob.", suffix=".part", dir=str(path.parent))
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        finally:
            Path(tmp).unlink(missing_ok=True)
        logger.debug("Stored blob %s (%d bytes)", locator, len(data))

    def get(self, locator: str) -> bytes:
        path = self._path(locator)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise BlobNotFound(f"stored blob missing: {locator}") from None

    def exists(self, locator: str) -> bool:
        return self._path(locator).is_file()

    def delete(self, locator: str) -> None:
        """Remove the blob; an already-missing blob is not an error."""
        try:
            self._path(locator).unlink()
        except FileNotFoundError:
            logger.debug("Blob %s already gone", locator)
