import asyncio
import logging
from pathlib import Path, PurePosixPath

from directchat.services.exceptions import (
    NetworkError,
    UploadPermissionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class LocalObjectStorage:
    """Bucket-like object storage on the local filesystem.

    Objects are never overwritten: writing to an existing path fails, and the
    caller is expected to retry under a fresh path.
    """

    def __init__(self, root: str | Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValidationError(f"Invalid object path '{path}'.")
        return self.root.joinpath(*relative.parts)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    @staticmethod
    def _write_new(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "xb") as fh:
            fh.write(data)

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Stores `data` under `path` and returns its public URL."""
        target = self._resolve(path)
        try:
            await asyncio.to_thread(self._write_new, target, data)
        except PermissionError as e:
            logger.error(f"Permission denied storing object {path}: {e}")
            raise UploadPermissionError()
        except FileExistsError:
            logger.warning(f"Object {path} already exists; refusing to overwrite")
            raise NetworkError(f"Object '{path}' already exists.")
        except OSError as e:
            logger.warning(f"Transient storage failure for {path}: {e}")
            # The retry uses a new path, so a half-written object would be orphaned
            await self.delete(path)
            raise NetworkError("Image storage is temporarily unavailable.")

        logger.info(f"Stored object {path} ({len(data)} bytes, {content_type})")
        return self.public_url(path)

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await asyncio.to_thread(target.unlink, True)
        except OSError as e:
            logger.warning(f"Could not delete object {path}: {e}")
