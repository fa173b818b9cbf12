"""
Base protocol and types for the ordered key-value store abstraction.

This module defines the StoreAdapter protocol that all backends must
implement, along with the StoredItem type shared by event and snapshot
records.

Invariants:
    - Items are addressed by (partition_key, sort_key)
    - range_query results are ordered by sort key within one partition
    - atomic_multi_put lands every item or none of them
    - Adapters never perform conditional or read-modify-write logic

How to change safely:
    - Protocol changes require updating all implementations
    - Keep payloads JSON-compatible so every backend can store them
"""

from __future__ import annotations

import json
from abc import abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Protocol,
    Sequence,
    runtime_checkable,
)

from ..errors import StorageRejectedError

if TYPE_CHECKING:
    from ..config import RepositoryConfig


class StoreBackend(Enum):
    """Supported store backends."""

    DYNAMODB = "dynamodb"
    MEMORY = "memory"


@dataclass(frozen=True)
class StoredItem:
    """One record in the backing store.

    Attributes:
        partition_key: Groups all items of one entity
        sort_key: Orders items within the partition (kind + version)
        payload: JSON-compatible record body (event or snapshot)
    """

    partition_key: str
    sort_key: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.partition_key, self.sort_key)

    def payload_json(self) -> str:
        """Serialize the payload as JSON.

        Raises:
            StorageRejectedError: If the payload is not JSON-serializable
        """
        try:
            return json.dumps(self.payload, separators=(",", ":"), sort_keys=True)
        except (TypeError, ValueError) as e:
            raise StorageRejectedError(
                f"Payload for {self.partition_key}/{self.sort_key} is not JSON-serializable: {e}",
                operation="serialize",
            ) from e

    def __str__(self) -> str:
        return f"StoredItem({self.partition_key}/{self.sort_key})"


@runtime_checkable
class StoreAdapter(Protocol):
    """Protocol for ordered key-value store backends.

    Durability contract:
        - put() and atomic_multi_put() return only after the write is durable
        - A raised error means nothing from that call is visible

    Example:
        >>> store = DynamoDBStore(config)
        >>> await store.connect()
        >>> await store.atomic_multi_put([item1, item2])
        >>> items = await store.range_query("account#a1", "accountevents#", True, 10)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            StorageUnavailableError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def range_query(
        self,
        partition_key: str,
        sort_key_prefix: str,
        descending: bool = False,
        limit: int | None = None,
    ) -> List[StoredItem]:
        """Fetch items of one partition whose sort key starts with a prefix.

        Args:
            partition_key: Partition to read
            sort_key_prefix: Sort-key prefix to match
            descending: Return highest sort keys first
            limit: Maximum number of items to return

        Returns:
            Items ordered by sort key in the requested direction

        Raises:
            StorageUnavailableError: If the store can't be reached
            StorageRejectedError: If the store refuses the query
        """
        ...

    @abstractmethod
    async def atomic_multi_put(self, items: Sequence[StoredItem]) -> None:
        """Write all items in a single all-or-nothing operation.

        Raises:
            StorageUnavailableError: If the store can't be reached
            StorageRejectedError: If the write is refused
        """
        ...

    @abstractmethod
    async def put(self, item: StoredItem) -> None:
        """Write a single item.

        Raises:
            StorageUnavailableError: If the store can't be reached
            StorageRejectedError: If the write is refused
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_store(config: "RepositoryConfig") -> StoreAdapter:
    """Factory function to create a store adapter from configuration.

    Args:
        config: Repository configuration

    Returns:
        Appropriate StoreAdapter implementation

    Raises:
        ValueError: If backend is not supported
    """
    from .dynamodb import DynamoDBStore
    from .memory import InMemoryStore

    if config.store_backend == StoreBackend.DYNAMODB:
        return DynamoDBStore(
            config.dynamodb,
            table_name=config.table_name,
            partition_key_attr=config.partition_key_attr,
            sort_key_attr=config.sort_key_attr,
        )
    elif config.store_backend == StoreBackend.MEMORY:
        return InMemoryStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
