"""
Storage and queue adapters.

Reference adapters cover development, tests and single-node deployments.
Other backends are plugged in with :func:`register_storage_adapter` and
:func:`register_queue_adapter`.
"""

from .storage import (
    FilesystemStorageAdapter,
    InMemoryStorageAdapter,
    ObjectMetadata,
    OverwriteResult,
    StorageAdapter,
    create_storage_adapter,
    register_storage_adapter,
)
from .queue import (
    InMemoryQueueAdapter,
    QueueAdapter,
    SQLQueueAdapter,
    create_queue_adapter,
    register_queue_adapter,
)

__all__ = [
    "StorageAdapter",
    "ObjectMetadata",
    "OverwriteResult",
    "InMemoryStorageAdapter",
    "FilesystemStorageAdapter",
    "create_storage_adapter",
    "register_storage_adapter",
    "QueueAdapter",
    "InMemoryQueueAdapter",
    "SQLQueueAdapter",
    "create_queue_adapter",
    "register_queue_adapter",
]
