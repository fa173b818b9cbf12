"""
Configuration management for sourced-repo-dynamodb.

Configuration comes from environment variables or explicit construction.
This module provides typed configuration classes with validation.

Invariants:
    - All settings except the table name have sensible defaults
    - Secrets are never logged or exposed in error messages
    - index_name is accepted but reserved; no read path uses it yet

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Never change the default key attribute names; existing tables use them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .policy import DEFAULT_SNAPSHOT_FREQUENCY
from .store.base import StoreBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DynamoDBConfig:
    """DynamoDB client configuration.

    Attributes:
        region: AWS region
        endpoint_url: Custom endpoint URL (DynamoDB Local, LocalStack)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
        connect_timeout: Seconds to wait for a connection
        read_timeout: Seconds to wait for a response
    """

    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    connect_timeout: float = 5.0
    read_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> DynamoDBConfig:
        """Load configuration from environment variables."""
        return cls(
            region=os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")),
            endpoint_url=os.getenv("DYNAMODB_ENDPOINT_URL"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            connect_timeout=float(os.getenv("DYNAMODB_CONNECT_TIMEOUT", "5")),
            read_timeout=float(os.getenv("DYNAMODB_READ_TIMEOUT", "30")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class RepositoryConfig:
    """Complete repository configuration.

    Attributes:
        table_name: DynamoDB table holding events and snapshots (required)
        partition_key_attr: Name of the table's partition key attribute
        sort_key_attr: Name of the table's sort key attribute
        snapshot_frequency: Versions between snapshots, also the event tail size
        index_name: Secondary index name (reserved, unused)
        store_backend: Which store adapter to build
        dynamodb: DynamoDB client configuration
        observability: Logging configuration
    """

    table_name: str = ""
    partition_key_attr: str = "PK"
    sort_key_attr: str = "SK"
    snapshot_frequency: int = DEFAULT_SNAPSHOT_FREQUENCY
    index_name: str | None = None
    store_backend: StoreBackend = StoreBackend.DYNAMODB
    dynamodb: DynamoDBConfig = field(default_factory=DynamoDBConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> RepositoryConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("SOURCED_STORE", "dynamodb").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid SOURCED_STORE '{backend_str}'. Must be one of: dynamodb, memory"
            )

        try:
            snapshot_frequency = int(
                os.getenv("SOURCED_SNAPSHOT_FREQUENCY", str(DEFAULT_SNAPSHOT_FREQUENCY))
            )
        except ValueError:
            raise ValueError("SOURCED_SNAPSHOT_FREQUENCY must be an integer")

        config = cls(
            table_name=os.getenv("SOURCED_TABLE_NAME", ""),
            partition_key_attr=os.getenv("SOURCED_PK_ATTR", "PK"),
            sort_key_attr=os.getenv("SOURCED_SK_ATTR", "SK"),
            snapshot_frequency=snapshot_frequency,
            index_name=os.getenv("SOURCED_INDEX_NAME"),
            store_backend=store_backend,
            dynamodb=DynamoDBConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store_backend == StoreBackend.DYNAMODB and not self.table_name:
            raise ValueError("SOURCED_TABLE_NAME is required when SOURCED_STORE=dynamodb")
        if not self.partition_key_attr or not self.sort_key_attr:
            raise ValueError("Partition and sort key attribute names must not be empty")
        if self.partition_key_attr == self.sort_key_attr:
            raise ValueError("Partition and sort key attributes must differ")
        if (
            isinstance(self.snapshot_frequency, bool)
            or not isinstance(self.snapshot_frequency, int)
            or self.snapshot_frequency < 1
        ):
            raise ValueError(
                f"snapshot_frequency must be a positive integer, got {self.snapshot_frequency!r}"
            )
        if self.index_name:
            logger.warning(
                "index_name is reserved and currently unused", extra={"index_name": self.index_name}
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Repository configuration loaded",
            extra={
                "table_name": self.table_name,
                "store_backend": self.store_backend.value,
                "partition_key_attr": self.partition_key_attr,
                "sort_key_attr": self.sort_key_attr,
                "snapshot_frequency": self.snapshot_frequency,
                "region": self.dynamodb.region,
                "endpoint": self.dynamodb.endpoint_url or "AWS",
                "static_credentials": self.dynamodb.access_key_id is not None,
                "log_level": self.observability.log_level,
            },
        )
