"""
sourced-repo-dynamodb - event-sourced entity repository backed by DynamoDB.

Entities record every state change as a versioned event. The Repository
stores those events, compacts them into snapshots every N versions, and
rebuilds entities from the latest snapshot plus the events after it.

Architecture:
    ┌──────────┐  commit()   ┌────────────┐  TransactWriteItems  ┌──────────┐
    │  Entity  │────────────▶│ Repository │─────────────────────▶│ DynamoDB │
    │          │◀────────────│            │◀─────────────────────│  table   │
    └──────────┘   get()     └─────┬──────┘   Query (x2)         └──────────┘
                                   │
                      KeyEncoder · SnapshotPolicy · StoreAdapter

Invariants:
    - Event versions are unique and strictly increasing per entity
    - A commit's writes are all-or-nothing
    - Queued notifications are delivered only after a durable write
    - Failures propagate to the caller; nothing is retried internally

How to change safely:
    - Key layout changes make existing tables unreadable (see keys.py)
    - New store backends must implement the StoreAdapter protocol
"""

from .config import DynamoDBConfig, ObservabilityConfig, RepositoryConfig
from .entity import Entity, EventRecord, Notification, SourcedEntity
from .errors import (
    SourcedRepoError,
    StorageError,
    StorageRejectedError,
    StorageUnavailableError,
    ValidationError,
)
from .keys import KeyEncoder, RecordKind, decode_version, encode
from .policy import SnapshotPolicy
from .repository import Repository
from .store import DynamoDBStore, InMemoryStore, StoreAdapter, StoreBackend, StoredItem

__version__ = "1.0.0"

__all__ = [
    "__version__",
    # Repository
    "Repository",
    "SnapshotPolicy",
    # Entities
    "Entity",
    "EventRecord",
    "Notification",
    "SourcedEntity",
    # Keys
    "KeyEncoder",
    "RecordKind",
    "encode",
    "decode_version",
    # Stores
    "StoreAdapter",
    "StoreBackend",
    "StoredItem",
    "DynamoDBStore",
    "InMemoryStore",
    # Configuration
    "RepositoryConfig",
    "DynamoDBConfig",
    "ObservabilityConfig",
    # Errors
    "SourcedRepoError",
    "ValidationError",
    "StorageError",
    "StorageUnavailableError",
    "StorageRejectedError",
]
