"""Local blob store for uploaded files."""
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import BinaryIO
from uuid import uuid4

logger = logging.getLogger("pm-core.storage")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class FileTooLargeError(ValueError):
    """Raised when an upload exceeds the configured size limit."""

    def __init__(self, message: str, limit: int):
        super().__init__(message)
        self.limit = limit


def safe_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a safe basename."""
    name = os.path.basename(filename or "").strip()
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name or "file"


class BlobStore:
    """
    Stores file bytes under a root directory.

    Keys are relative POSIX paths of the form ``YYYY/MM/<uuid>_<name>`` and
    are what gets persisted in ``StoredFile.path``.
    """

    def __init__(self, root: str, max_bytes: int):
        self.root = Path(root)
        self.max_bytes = max_bytes

    def path_for(self, key: str) -> Path:
        """Absolute path of a stored key. Keys may not escape the root."""
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def save(self, stream: BinaryIO, filename: str) -> tuple[str, int]:
        """
        Copy a stream into the store.

        Returns:
            Tuple of (storage key, size in bytes)

        Raises:
            FileTooLargeError: If the stream is larger than ``max_bytes``
        """
        now = datetime.utcnow()
        key = f"{now:%Y}/{now:%m}/{uuid4().hex}_{safe_filename(filename)}"
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        size = 0
        with open(path, "wb") as out:
            while True:
                chunk = stream.read(64 * 1024)
                if not chunk:
                    break
                size += len(chunk)
                if size > self.max_bytes:
                    break
                out.write(chunk)

        if size > self.max_bytes:
            path.unlink(missing_ok=True)
            raise FileTooLargeError(
                f"File exceeds the maximum upload size of {self.max_bytes} bytes",
                limit=self.max_bytes,
            )

        logger.debug(f"Wrote {size} bytes to {key}")
        return key, size

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def delete(self, key: str) -> bool:
        """Remove a stored blob. Returns False if it was already gone."""
        path = self.path_for(key)
        if not path.is_file():
            logger.warning(f"Blob {key} missing on delete")
            return False
        path.unlink()
        return True

