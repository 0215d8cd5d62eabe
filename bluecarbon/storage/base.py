from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import BinaryIO

from bluecarbon.core.config import get_settings
from bluecarbon.core.exceptions import ValidationError


class StorageBackend(ABC):
    """Evidence attachment store: put bytes, get back a retrievable reference."""

    @abstractmethod
    async def put(self, key: str, body: BinaryIO | bytes, content_type: str | None = None) -> str:
        """Store file; return path or URI."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Retrieve file bytes."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete file."""
        ...


def safe_key(*parts: str) -> str:
    """Join key parts, refusing absolute paths and parent traversal."""
    path = PurePosixPath(*[p.replace("\\", "/") for p in parts])
    if path.is_absolute() or ".." in path.parts:
        raise ValidationError("Invalid storage key")
    return str(path)


def get_storage() -> StorageBackend:
    settings = get_settings()
    if settings.storage_backend == "gcs":
        from bluecarbon.storage.gcs import GCSStorage
        return GCSStorage()
    from bluecarbon.storage.local import LocalStorage
    return LocalStorage()
