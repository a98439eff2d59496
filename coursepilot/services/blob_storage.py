"""
Temporary blob storage for uploaded audio.

Blobs live in a local directory and are addressed by an opaque reference.
File I/O runs in a worker thread so the event loop is never blocked.
"""

import asyncio
import uuid
from pathlib import Path

from coursepilot.config import settings
from coursepilot.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class BlobStorageError(Exception):
    """Raised when a blob cannot be written or removed."""

    def __init__(self, message: str, blob_ref: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.blob_ref = blob_ref
        self.recoverable = recoverable


class BlobStorage:
    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.RECORDING_BLOB_DIR)

    def _path(self, blob_ref: str) -> Path:
        path = (self.root / blob_ref).resolve()
        if self.root.resolve() not in path.parents:
            raise BlobStorageError("Invalid blob reference", blob_ref=blob_ref, recoverable=False)
        return path

    async def upload(self, data: bytes, filename: str, prefix: str = "recordings") -> str:
        """Store bytes and return the blob reference."""
        suffix = Path(filename).suffix.lower()[:10]
        blob_ref = f"{prefix}/{uuid.uuid4().hex}{suffix}"
        path = self._path(blob_ref)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error("Blob upload failed", blob_ref=blob_ref, error=str(e))
            raise BlobStorageError(f"Failed to store blob: {e}", blob_ref=blob_ref) from e

        logger.info("Blob uploaded", blob_ref=blob_ref, size_bytes=len(data))
        return blob_ref

    async def delete(self, blob_ref: str) -> bool:
        """Remove a blob. Returns False when it was already gone."""
        path = self._path(blob_ref)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Blob delete failed", blob_ref=blob_ref, error=str(e))
            raise BlobStorageError(f"Failed to delete blob: {e}", blob_ref=blob_ref) from e

        logger.info("Blob deleted", blob_ref=blob_ref)
        return True

    async def exists(self, blob_ref: str) -> bool:
        return await asyncio.to_thread(self._path(blob_ref).exists)


blob_storage = BlobStorage()
