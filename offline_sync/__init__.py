"""
Offline Sync

Offline-tolerant sync engine: a durable queue of local mutations that is
drained against a remote store when connectivity allows, with bounded retries
and last-write-wins reconciliation.
"""

from .config import SyncSettings, get_settings
from .connectivity import (
    ConnectionQuality,
    ConnectionSnapshot,
    ConnectionState,
    ConnectivityMonitor,
    HttpReachabilityProbe,
    InterfaceType,
    PathStatus,
    PathUpdate,
)
from .coordinator import (
    SyncCoordinator,
    create_coordinator,
    sync_session,
)
from .exceptions import (
    LocalStoreError,
    PayloadError,
    PermanentRemoteError,
    QueueStoreError,
    RemoteError,
    SyncError,
    TransientRemoteError,
)
from .gateway import RemoteGateway, RestGateway
from .local_store import LocalStore, MemoryLocalStore, SqlLocalStore
from .models import (
    EntityRecord,
    EntityType,
    OperationType,
    SyncOperation,
    SyncResult,
    SyncState,
    SyncStateKind,
)
from .operation_queue import OperationQueue
from .queue_store import MemoryQueueStore, QueueStore, SqliteQueueStore
from .retry import RetryPolicy

__version__ = "0.1.0"
__all__ = [
    # Main classes
    "SyncCoordinator",
    "OperationQueue",
    "RetryPolicy",
    "ConnectivityMonitor",
    "HttpReachabilityProbe",

    # Storage and remote
    "QueueStore",
    "MemoryQueueStore",
    "SqliteQueueStore",
    "LocalStore",
    "MemoryLocalStore",
    "SqlLocalStore",
    "RemoteGateway",
    "RestGateway",

    # Configuration
    "SyncSettings",
    "get_settings",

    # Data models
    "SyncOperation",
    "OperationType",
    "EntityType",
    "EntityRecord",
    "SyncState",
    "SyncStateKind",
    "SyncResult",
    "ConnectionState",
    "ConnectionQuality",
    "ConnectionSnapshot",
    "InterfaceType",
    "PathStatus",
    "PathUpdate",

    # Exceptions
    "SyncError",
    "RemoteError",
    "TransientRemoteError",
    "PermanentRemoteError",
    "PayloadError",
    "QueueStoreError",
    "LocalStoreError",

    # Convenience functions
    "create_coordinator",
    "sync_session",
]
