"""
In-memory store adapter for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without DynamoDB

Invariants:
    - All data is lost on close() or process exit
    - Payloads round-trip through JSON, like the real backend
    - atomic_multi_put validates the whole batch before applying any item
    - Mirrors DynamoDB's transaction rules (size limit, no duplicate keys)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with StoreAdapter protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import StorageRejectedError, StorageUnavailableError
from .base import StoredItem

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRANSACTION_ITEMS = 100


class InMemoryStore:
    """In-memory implementation of StoreAdapter for testing.

    Attributes:
        max_transaction_items: Largest batch accepted by atomic_multi_put
            (None disables the limit)
        write_calls: (operation, item_count) for every successful write

    Thread safety:
        Uses an asyncio lock. Safe to use from multiple coroutines.

    Example:
        >>> store = InMemoryStore()
        >>> await store.connect()
        >>> await store.put(StoredItem("account#a1", "accountevents#000000000000001", {}))
        >>> await store.range_query("account#a1", "accountevents#")
    """

    def __init__(
        self, max_transaction_items: Optional[int] = DEFAULT_MAX_TRANSACTION_ITEMS
    ) -> None:
        self.max_transaction_items = max_transaction_items
        self.write_calls: List[Tuple[str, int]] = []
        # partition_key -> sort_key -> serialized payload
        self._partitions: Dict[str, Dict[str, str]] = defaultdict(dict)
        self._connected = False
        self._lock = asyncio.Lock()
        self._injected: Dict[str, Exception] = {}

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._partitions.clear()
        self._injected.clear()
        self.write_calls.clear()
        logger.debug("InMemoryStore closed")

    async def __aenter__(self) -> InMemoryStore:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def range_query(
        self,
        partition_key: str,
        sort_key_prefix: str,
        descending: bool = False,
        limit: int | None = None,
    ) -> List[StoredItem]:
        """Query one partition by sort-key prefix."""
        self._check_connected("range_query")
        self._raise_injected("query")

        async with self._lock:
            partition = self._partitions.get(partition_key, {})
            sort_keys = sorted(
                (sk for sk in partition if sk.startswith(sort_key_prefix)),
                reverse=descending,
            )
            if limit is not None:
                sort_keys = sort_keys[:limit]
            items = [
                StoredItem(partition_key, sk, json.loads(partition[sk])) for sk in sort_keys
            ]

        logger.debug(
            "Range query served from memory",
            extra={
                "partition_key": partition_key,
                "prefix": sort_key_prefix,
                "descending": descending,
                "count": len(items),
            },
        )
        return items

    async def atomic_multi_put(self, items: Sequence[StoredItem]) -> None:
        """Apply every item or none of them."""
        self._check_connected("atomic_multi_put")
        items = list(items)
        if not items:
            return

        if self.max_transaction_items is not None and len(items) > self.max_transaction_items:
            raise StorageRejectedError(
                f"Transaction of {len(items)} items exceeds limit of {self.max_transaction_items}",
                operation="atomic_multi_put",
            )
        keys = [item.key for item in items]
        if len(set(keys)) != len(keys):
            raise StorageRejectedError(
                "Transaction contains multiple writes to the same item",
                operation="atomic_multi_put",
            )

        # Serialize everything first so a bad payload leaves the store untouched
        serialized = [(item, item.payload_json()) for item in items]
        self._raise_injected("write")

        async with self._lock:
            for item, body in serialized:
                self._partitions[item.partition_key][item.sort_key] = body
            self.write_calls.append(("atomic_multi_put", len(items)))

        logger.debug("Transaction applied to memory", extra={"items": len(items)})

    async def put(self, item: StoredItem) -> None:
        """Write a single item."""
        self._check_connected("put")
        body = item.payload_json()
        self._raise_injected("write")

        async with self._lock:
            self._partitions[item.partition_key][item.sort_key] = body
            self.write_calls.append(("put", 1))

    def _check_connected(self, operation: str) -> None:
        if not self._connected:
            raise StorageUnavailableError("Not connected", operation=operation)

    def _raise_injected(self, operation: str) -> None:
        exc = self._injected.pop(operation, None)
        if exc is not None:
            raise exc

    # Testing helpers

    def inject_failure(self, exception: Exception, operation: str = "write") -> None:
        """Make the next operation of a kind raise ``exception``.

        Args:
            exception: Exception to raise
            operation: "write" (put/atomic_multi_put) or "query"
        """
        if operation not in ("write", "query"):
            raise ValueError(f"Unknown operation kind: {operation}")
        self._injected[operation] = exception

    def get_all_items(self, partition_key: str | None = None) -> List[StoredItem]:
        """Get stored items in key order, optionally for one partition."""
        partitions = [partition_key] if partition_key else sorted(self._partitions)
        items = []
        for pk in partitions:
            partition = self._partitions.get(pk, {})
            for sk in sorted(partition):
                items.append(StoredItem(pk, sk, json.loads(partition[sk])))
        return items

    def item_count(self, partition_key: str | None = None) -> int:
        """Get total item count, optionally for one partition."""
        if partition_key:
            return len(self._partitions.get(partition_key, {}))
        return sum(len(p) for p in self._partitions.values())

    def clear(self) -> None:
        """Remove all items but stay connected."""
        self._partitions.clear()
        self.write_calls.clear()
