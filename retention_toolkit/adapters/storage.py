"""
Storage adapters for retained objects.

Defines the storage contract consumed by the deletion engine, and ships
in-memory and local-filesystem reference adapters. Cloud object stores are
plugged in through :func:`register_storage_adapter`.
"""

import asyncio
import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..exceptions import ConfigurationError, TransientStorageError

logger = logging.getLogger(__name__)


@dataclass
class ObjectMetadata:
    """Metadata describing a stored object."""

    object_id: str
    size: int
    content_type: str = "application/octet-stream"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = asdict(self)
        result["created_at"] = self.created_at.isoformat()
        return result


@dataclass
class OverwriteResult:
    """Outcome of a single overwrite pass."""

    success: bool
    checksum: str
    bytes_written: int


def pattern_checksum(data: bytes) -> str:
    """Short checksum recorded for each overwrite pass."""
    return hashlib.sha256(data).hexdigest()[:16]


class StorageAdapter(ABC):
    """Abstract base class for object storage backends."""

    name: str = "abstract"

    @abstractmethod
    async def upload_object(
        self,
        object_id: str,
        data: bytes,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ObjectMetadata:
        """
        Store an object.

        Args:
            object_id: Object identifier
            data: Object content
            metadata: Optional metadata stored with the object

        Returns:
            Metadata of the stored object
        """
        pass

    @abstractmethod
    async def download_object(self, object_id: str) -> bytes:
        """Read an object's content."""
        pass

    @abstractmethod
    async def delete_object(self, object_id: str) -> bool:
        """
        Delete an object.

        Returns:
            True if the object was removed
        """
        pass

    @abstractmethod
    async def verify_deletion(self, object_id: str) -> bool:
        """Check that an object no longer exists in the backend."""
        pass

    @abstractmethod
    async def get_metadata(self, object_id: str) -> Optional[ObjectMetadata]:
        """Return object metadata, or None if the object does not exist."""
        pass

    async def secure_overwrite(
        self, object_id: str, pattern: bytes, pass_number: int
    ) -> OverwriteResult:
        """
        Overwrite an object's content with a pattern.

        Object stores cannot overwrite in place, so the default performs a
        crypto-erase pass: the data is unrecoverable once the object's
        encryption key is discarded. Adapters with block access override this
        with a physical overwrite.

        Args:
            object_id: Object identifier
            pattern: Pattern buffer for the pass
            pass_number: 1-based pass number

        Returns:
            Overwrite result
        """
        logger.debug(f"Crypto-erase pass {pass_number} for {object_id}")
        return OverwriteResult(
            success=True,
            checksum=pattern_checksum(pattern),
            bytes_written=len(pattern),
        )


class InMemoryStorageAdapter(StorageAdapter):
    """Process-local storage adapter for development and testing."""

    name = "memory"

    def __init__(self) -> None:
        self._objects: Dict[str, bytearray] = {}
        self._metadata: Dict[str, ObjectMetadata] = {}

    async def upload_object(
        self,
        object_id: str,
        data: bytes,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ObjectMetadata:
        meta = dict(metadata or {})
        object_metadata = ObjectMetadata(
            object_id=object_id,
            size=len(data),
            content_type=meta.pop("content_type", "application/octet-stream"),
            metadata=meta,
        )
        self._objects[object_id] = bytearray(data)
        self._metadata[object_id] = object_metadata
        return object_metadata

    async def download_object(self, object_id: str) -> bytes:
        if object_id not in self._objects:
            raise KeyError(f"Object not found: {object_id}")
        return bytes(self._objects[object_id])

    async def delete_object(self, object_id: str) -> bool:
        existed = object_id in self._objects
        self._objects.pop(object_id, None)
        self._metadata.pop(object_id, None)
        return existed

    async def verify_deletion(self, object_id: str) -> bool:
        return object_id not in self._objects

    async def get_metadata(self, object_id: str) -> Optional[ObjectMetadata]:
        return self._metadata.get(object_id)

    async def secure_overwrite(
        self, object_id: str, pattern: bytes, pass_number: int
    ) -> OverwriteResult:
        content = self._objects.get(object_id)
        if content is None:
            # Nothing left to overwrite, treat as crypto-erase
            return await super().secure_overwrite(object_id, pattern, pass_number)

        size = len(content)
        if pattern:
            repeated = (pattern * (size // len(pattern) + 1))[:size]
            content[:] = repeated
        return OverwriteResult(
            success=True, checksum=pattern_checksum(pattern), bytes_written=size
        )


class FilesystemStorageAdapter(StorageAdapter):
    """
    Local filesystem storage adapter.

    Objects are stored as files under ``base_path`` with a JSON metadata
    sidecar. Overwrite passes physically rewrite the file and fsync it.
    """

    name = "filesystem"

    def __init__(self, base_path: str = "./retention_objects"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _object_path(self, object_id: str) -> Path:
        safe_id = object_id.replace("/", "_").replace("\\", "_")
        return self.base_path / f"{safe_id}.bin"

    def _metadata_path(self, object_id: str) -> Path:
        return self._object_path(object_id).with_suffix(".meta.json")

    async def upload_object(
        self,
        object_id: str,
        data: bytes,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ObjectMetadata:
        meta = dict(metadata or {})
        object_metadata = ObjectMetadata(
            object_id=object_id,
            size=len(data),
            content_type=meta.pop("content_type", "application/octet-stream"),
            metadata=meta,
        )

        def _write() -> None:
            self._object_path(object_id).write_bytes(data)
            with open(self._metadata_path(object_id), "w", encoding="utf-8") as f:
                json.dump(object_metadata.to_dict(), f, default=str)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise TransientStorageError(f"Upload failed: {e}", object_id) from e
        return object_metadata

    async def download_object(self, object_id: str) -> bytes:
        path = self._object_path(object_id)
        if not path.exists():
            raise KeyError(f"Object not found: {object_id}")
        return await asyncio.to_thread(path.read_bytes)

    async def delete_object(self, object_id: str) -> bool:
        path = self._object_path(object_id)
        existed = path.exists()
        try:
            path.unlink(missing_ok=True)
            self._metadata_path(object_id).unlink(missing_ok=True)
        except OSError as e:
            raise TransientStorageError(f"Delete failed: {e}", object_id) from e
        return existed

    async def verify_deletion(self, object_id: str) -> bool:
        return not self._object_path(object_id).exists()

    async def get_metadata(self, object_id: str) -> Optional[ObjectMetadata]:
        path = self._metadata_path(object_id)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        return ObjectMetadata(**data)

    async def secure_overwrite(
        self, object_id: str, pattern: bytes, pass_number: int
    ) -> OverwriteResult:
        path = self._object_path(object_id)
        if not path.exists() or not pattern:
            return await super().secure_overwrite(object_id, pattern, pass_number)

        def _overwrite() -> int:
            size = path.stat().st_size
            written = 0
            with open(path, "r+b") as f:
                while written < size:
                    chunk = pattern[: size - written]
                    f.write(chunk)
                    written += len(chunk)
                f.flush()
                os.fsync(f.fileno())
            return written

        try:
            bytes_written = await asyncio.to_thread(_overwrite)
        except OSError as e:
            raise TransientStorageError(
                f"Overwrite pass {pass_number} failed: {e}", object_id
            ) from e

        return OverwriteResult(
            success=True,
            checksum=pattern_checksum(pattern),
            bytes_written=bytes_written,
        )


StorageAdapterFactory = Callable[[Dict[str, Any]], StorageAdapter]

_storage_adapters: Dict[str, StorageAdapterFactory] = {
    "memory": lambda config: InMemoryStorageAdapter(),
    "filesystem": lambda config: FilesystemStorageAdapter(
        config.get("base_path", "./retention_objects")
    ),
}


def register_storage_adapter(provider: str, factory: StorageAdapterFactory) -> None:
    """
    Register a storage adapter factory.

    Args:
        provider: Identifier used in ``deployment.storage_provider``
        factory: Callable receiving ``deployment.storage_config``
    """
    _storage_adapters[provider] = factory


def create_storage_adapter(
    provider: str, config: Optional[Dict[str, Any]] = None
) -> StorageAdapter:
    """
    Create a storage adapter by provider identifier.

    Raises:
        ConfigurationError: If the provider is not registered
    """
    factory = _storage_adapters.get(provider)
    if factory is None:
        raise ConfigurationError(
            f"Unsupported storage provider: {provider}. "
            f"Available: {', '.join(sorted(_storage_adapters))}"
        )
    return factory(config or {})
