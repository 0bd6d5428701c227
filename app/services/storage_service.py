# app/services/storage_service.py
import asyncio
import hashlib
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Optional

from app.core.config import STORAGE_DIR, STORAGE_PUBLIC_URL, MAX_UPLOAD_SIZE
from app.core.exceptions import DomainValidationError, NotFoundError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
_UNSAFE_CHARS = re.compile(r"[^\w.\-]+", re.UNICODE)


def safe_filename(name: str) -> str:
    """Collapse whitespace and path separators into underscores."""
    cleaned = _UNSAFE_CHARS.sub("_", name.strip()).strip("._")
    return cleaned or "file"


async def read_upload(upload, max_size: int = MAX_UPLOAD_SIZE) -> bytes:
    """Read an UploadFile-like object, enforcing presence and size limits."""
    if upload is None:
        raise DomainValidationError("File is required")
    data = await upload.read()
    if not data:
        raise DomainValidationError("Uploaded file is empty")
    if len(data) > max_size:
        raise DomainValidationError(f"File exceeds the maximum size of {max_size} bytes")
    return data


class FileStorage(ABC):
    """Object storage collaborator. Paths are ``folder/filename``."""

    @abstractmethod
    async def upload_file(self, data: bytes, folder: str, filename: str, content_type: Optional[str] = None) -> dict:
        raise NotImplementedError

    @abstractmethod
    async def delete_file(self, path: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def get_file_stream(self, path: str) -> AsyncIterator[bytes]:
        raise NotImplementedError

    def public_url(self, path: str) -> str:
        return f"{STORAGE_PUBLIC_URL}/{path}"


class LocalFileStorage(FileStorage):
    """Stores objects on the local filesystem below ``root``."""

    def __init__(self, root: str = STORAGE_DIR):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise DomainValidationError(f"Invalid storage path: {path}")
        return target

    async def upload_file(self, data: bytes, folder: str, filename: str, content_type: Optional[str] = None) -> dict:
        path = f"{folder.strip('/')}/{safe_filename(filename)}"
        target = self._resolve(path)

        def _write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info("Stored %s (%d bytes)", path, len(data))
        return {
            "url": self.public_url(path),
            "path": path,
            "filename": target.name,
            "size": len(data),
            "etag": hashlib.md5(data).hexdigest(),
            "content_type": content_type,
        }

    async def delete_file(self, path: str) -> bool:
        target = self._resolve(path)

        def _delete() -> bool:
            if not target.exists():
                return False
            os.remove(target)
            return True

        return await asyncio.to_thread(_delete)

    async def get_file_stream(self, path: str) -> AsyncIterator[bytes]:
        target = self._resolve(path)
        if not await asyncio.to_thread(target.is_file):
            raise NotFoundError(f"File {path} not found")

        async def _chunks():
            fh = await asyncio.to_thread(open, target, "rb")
            try:
                while True:
                    chunk = await asyncio.to_thread(fh.read, CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
            finally:
                fh.close()

        return _chunks()


_storage: Optional[FileStorage] = None


def get_storage() -> FileStorage:
    """FastAPI dependency returning the process-wide storage backend."""
    global _storage
    if _storage is None:
        _storage = LocalFileStorage()
    return _storage
