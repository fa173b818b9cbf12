"""
DynamoDB store adapter.

This module provides the production backend for the store abstraction. It
uses aiobotocore for async access to a single DynamoDB table laid out as:

    <PK attr> (S)   partition key, e.g. "account#acc-1"
    <SK attr> (S)   sort key, e.g. "accountevents#000000000000007"
    payload   (S)   JSON-encoded event or snapshot body

Invariants:
    - atomic_multi_put maps to one TransactWriteItems call
    - Transactions carry a ClientRequestToken derived from their items, so
      re-submitting identical items within DynamoDB's idempotency window
      does not write twice
    - botocore retries are disabled; failures surface to the caller
    - Client errors are translated into the repository error taxonomy

How to change safely:
    - Test against DynamoDB Local before deploying to AWS
    - Keep MAX_TRANSACTION_ITEMS in line with the DynamoDB service quota
    - Never add condition expressions here; conditional logic belongs in
      the repository
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Sequence

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..errors import StorageError, StorageRejectedError, StorageUnavailableError
from .base import StoredItem

if TYPE_CHECKING:
    from ..config import DynamoDBConfig

logger = logging.getLogger(__name__)

MAX_TRANSACTION_ITEMS = 100
PAYLOAD_ATTR = "payload"

# Error codes that mean "try again later" rather than "this request is wrong"
UNAVAILABLE_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
    }
)


class DynamoDBStore:
    """DynamoDB implementation of the StoreAdapter protocol.

    Attributes:
        config: DynamoDB client configuration
        table_name: Table holding all entity items
        partition_key_attr: Partition key attribute name
        sort_key_attr: Sort key attribute name

    Example:
        >>> store = DynamoDBStore(DynamoDBConfig(region="eu-west-1"), table_name="entities")
        >>> await store.connect()
        >>> await store.atomic_multi_put(items)
    """

    def __init__(
        self,
        config: "DynamoDBConfig",
        table_name: str,
        partition_key_attr: str = "PK",
        sort_key_attr: str = "SK",
    ) -> None:
        """Initialize the DynamoDB store.

        Args:
            config: DynamoDBConfig instance
            table_name: DynamoDB table name
            partition_key_attr: Partition key attribute name
            sort_key_attr: Sort key attribute name
        """
        self.config = config
        self.table_name = table_name
        self.partition_key_attr = partition_key_attr
        self.sort_key_attr = sort_key_attr

        self._session = None
        self._client_ctx = None
        self._client = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether connected to DynamoDB."""
        return self._connected

    async def connect(self) -> None:
        """Create the client and verify the table exists.

        Raises:
            StorageUnavailableError: If the endpoint or table can't be reached
        """
        if self._connected:
            return

        self._session = get_session()

        client_kwargs: Dict[str, Any] = {
            "region_name": self.config.region,
            "config": AioConfig(
                connect_timeout=self.config.connect_timeout,
                read_timeout=self.config.read_timeout,
                retries={"total_max_attempts": 1},
            ),
        }

        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url

        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        try:
            self._client_ctx = self._session.create_client("dynamodb", **client_kwargs)
            self._client = await self._client_ctx.__aenter__()
            await self._client.describe_table(TableName=self.table_name)
        except ClientError as e:
            await self.close()
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ResourceNotFoundException":
                raise StorageUnavailableError(
                    f"DynamoDB table '{self.table_name}' not found",
                    operation="connect",
                    store_code=error_code,
                ) from e
            raise StorageUnavailableError(
                f"DynamoDB error: {e}", operation="connect", store_code=error_code
            ) from e
        except BotoCoreError as e:
            await self.close()
            raise StorageUnavailableError(
                f"Failed to connect to DynamoDB: {e}", operation="connect"
            ) from e

        self._connected = True
        logger.info(
            "Connected to DynamoDB",
            extra={
                "table": self.table_name,
                "region": self.config.region,
                "endpoint": self.config.endpoint_url or "AWS",
            },
        )

    async def close(self) -> None:
        """Close the DynamoDB client."""
        if self._client_ctx is not None:
            try:
                await self._client_ctx.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Error closing DynamoDB client: {e}")

        self._client_ctx = None
        self._client = None
        self._session = None
        if self._connected:
            logger.info("DynamoDB connection closed")
        self._connected = False

    async def __aenter__(self) -> DynamoDBStore:
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
        """Query one partition by sort-key prefix.

        Follows LastEvaluatedKey until the limit is met or the partition is
        exhausted, since a single page is capped at 1 MB.

        Raises:
            StorageUnavailableError: If not connected or DynamoDB is unavailable
            StorageRejectedError: If DynamoDB rejects the query
        """
        client = self._require_client("range_query")

        kwargs: Dict[str, Any] = {
            "TableName": self.table_name,
            "KeyConditionExpression": "#pk = :pk AND begins_with(#sk, :prefix)",
            "ExpressionAttributeNames": {
                "#pk": self.partition_key_attr,
                "#sk": self.sort_key_attr,
            },
            "ExpressionAttributeValues": {
                ":pk": {"S": partition_key},
                ":prefix": {"S": sort_key_prefix},
            },
            "ScanIndexForward": not descending,
        }

        items: List[StoredItem] = []
        while True:
            if limit is not None:
                kwargs["Limit"] = limit - len(items)

            try:
                response = await client.query(**kwargs)
            except (ClientError, BotoCoreError) as e:
                raise self._translate_error(e, "range_query") from e

            items.extend(self._decode_item(raw) for raw in response.get("Items", []))

            last_key = response.get("LastEvaluatedKey")
            if not last_key or (limit is not None and len(items) >= limit):
                break
            kwargs["ExclusiveStartKey"] = last_key

        logger.debug(
            "Range query completed",
            extra={
                "table": self.table_name,
                "partition_key": partition_key,
                "prefix": sort_key_prefix,
                "descending": descending,
                "count": len(items),
            },
        )
        return items

    async def atomic_multi_put(self, items: Sequence[StoredItem]) -> None:
        """Write all items with one TransactWriteItems call.

        Raises:
            StorageRejectedError: If the batch is too large or the
                transaction is cancelled
            StorageUnavailableError: If not connected or DynamoDB is unavailable
        """
        items = list(items)
        if not items:
            return
        if len(items) > MAX_TRANSACTION_ITEMS:
            raise StorageRejectedError(
                f"Transaction of {len(items)} items exceeds DynamoDB limit of "
                f"{MAX_TRANSACTION_ITEMS}",
                operation="atomic_multi_put",
            )

        client = self._require_client("atomic_multi_put")
        encoded = [self._encode_item(item) for item in items]

        try:
            await client.transact_write_items(
                TransactItems=[
                    {"Put": {"TableName": self.table_name, "Item": item}} for item in encoded
                ],
                ClientRequestToken=self._request_token(encoded),
            )
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, "atomic_multi_put") from e

        logger.debug(
            "Transaction committed",
            extra={"table": self.table_name, "items": len(items)},
        )

    async def put(self, item: StoredItem) -> None:
        """Write a single item with PutItem.

        Raises:
            StorageRejectedError: If DynamoDB rejects the write
            StorageUnavailableError: If not connected or DynamoDB is unavailable
        """
        client = self._require_client("put")

        try:
            await client.put_item(TableName=self.table_name, Item=self._encode_item(item))
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, "put") from e

        logger.debug(
            "Item written",
            extra={"table": self.table_name, "partition_key": item.partition_key},
        )

    def _require_client(self, operation: str) -> Any:
        if not self._connected or self._client is None:
            raise StorageUnavailableError("Not connected to DynamoDB", operation=operation)
        return self._client

    def _encode_item(self, item: StoredItem) -> Dict[str, Dict[str, str]]:
        return {
            self.partition_key_attr: {"S": item.partition_key},
            self.sort_key_attr: {"S": item.sort_key},
            PAYLOAD_ATTR: {"S": item.payload_json()},
        }

    def _decode_item(self, raw: Dict[str, Any]) -> StoredItem:
        try:
            return StoredItem(
                partition_key=raw[self.partition_key_attr]["S"],
                sort_key=raw[self.sort_key_attr]["S"],
                payload=json.loads(raw[PAYLOAD_ATTR]["S"]),
            )
        except (KeyError, TypeError, json.JSONDecodeError) as e:
            raise StorageError(
                f"Malformed item in table '{self.table_name}': {e}",
                operation="decode",
            ) from e

    @staticmethod
    def _request_token(encoded: List[Dict[str, Dict[str, str]]]) -> str:
        """Derive a ClientRequestToken (max 36 chars) from the transaction items."""
        body = json.dumps(encoded, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(body.encode("utf-8")).hexdigest()[:36]

    def _translate_error(self, error: Exception, operation: str) -> StorageError:
        if isinstance(error, ClientError):
            error_code = error.response.get("Error", {}).get("Code", "")
            if error_code in UNAVAILABLE_ERROR_CODES:
                return StorageUnavailableError(
                    f"DynamoDB {operation} unavailable: {error}",
                    operation=operation,
                    store_code=error_code,
                )
            return StorageRejectedError(
                f"DynamoDB {operation} rejected: {error}",
                operation=operation,
                store_code=error_code,
            )
        if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
            return StorageUnavailableError(
                f"DynamoDB {operation} failed to reach endpoint: {error}",
                operation=operation,
            )
        return StorageUnavailableError(f"DynamoDB {operation} failed: {error}", operation=operation)
