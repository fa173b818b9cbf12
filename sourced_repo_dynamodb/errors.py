"""
Error types for sourced-repo-dynamodb.

This module defines all exception types raised by the repository:
- SourcedRepoError: Base exception
- ValidationError: Bad input detected before any I/O
- StorageError: Store adapter failure (base)
- StorageUnavailableError: Store unreachable, throttled or timed out
- StorageRejectedError: Store refused the request

Invariants:
    - All errors inherit from SourcedRepoError
    - Storage errors propagate to the caller unchanged, never retried here
    - ValidationError is always raised before any store call

There is deliberately no partial-batch failure type: a commit either lands
as one atomic write or raises one of the storage errors above.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SourcedRepoError(Exception):
    """Base exception for all repository errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SOURCED_REPO_ERROR"
        self.details = details or {}


class ValidationError(SourcedRepoError):
    """Input validation failed.

    Raised when:
    - An entity is committed without an id
    - get() is called with an empty id
    - A version cannot be encoded into a sort key
    - Repository settings are invalid
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        entity_type: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "entity_type": entity_type},
        )
        self.field_name = field_name
        self.entity_type = entity_type


class StorageError(SourcedRepoError):
    """Base class for store adapter failures."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        operation: Optional[str] = None,
        store_code: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code=code or "STORAGE_ERROR",
            details={"operation": operation, "store_code": store_code},
        )
        self.operation = operation
        self.store_code = store_code


class StorageUnavailableError(StorageError):
    """The store could not be reached or is shedding load.

    Raised when:
    - The adapter is not connected
    - The endpoint is unreachable or the call timed out
    - Provisioned throughput or request limits are exceeded
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        store_code: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_UNAVAILABLE",
            operation=operation,
            store_code=store_code,
        )


class StorageRejectedError(StorageError):
    """The store refused the request.

    Raised when:
    - A transaction was cancelled (conflict with a concurrent write)
    - The request failed store-side validation
    - A batch exceeds the store's transaction size limit
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        store_code: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORAGE_REJECTED",
            operation=operation,
            store_code=store_code,
        )
