"""
Ordered key-value store abstraction for sourced-repo-dynamodb.

This module provides a pluggable store interface supporting:
- DynamoDB (production)
- In-memory (for testing)

Invariants:
    - Writes return only after they are durable
    - Items of one partition are ordered by sort key
    - Failed atomic writes must not result in partial writes

How to change safely:
    - New backends must implement the StoreAdapter protocol
    - Verify atomicity with injected failures before relying on a backend
"""

from .base import StoreAdapter, StoreBackend, StoredItem, create_store
from .dynamodb import DynamoDBStore
from .memory import InMemoryStore

__all__ = [
    # Protocol and types
    "StoreAdapter",
    "StoreBackend",
    "StoredItem",
    # Factory
    "create_store",
    # Implementations
    "DynamoDBStore",
    "InMemoryStore",
]
