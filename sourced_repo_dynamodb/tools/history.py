"""
History CLI tool for sourced-repo-dynamodb.

Prints what the repository would read for one entity: its latest snapshot
followed by the events recorded after it, one JSON object per line.

Usage:
    sourced-history <entity-type> <id> [--table NAME] [options]

Connection settings come from the same environment variables as the
repository (see config.py); command-line flags override them.

Invariants:
    - Read-only: the tool never writes to the table
    - Output order is snapshot first, then events in ascending version
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass, field, replace
from typing import List, Optional

from ..config import DynamoDBConfig, ObservabilityConfig, RepositoryConfig
from ..errors import SourcedRepoError
from ..keys import KeyEncoder, decode_version
from ..logging_config import setup_logging
from ..store.base import StoreAdapter, StoredItem, create_store

logger = logging.getLogger(__name__)


@dataclass
class HistoryResult:
    """Stored items for one entity.

    Attributes:
        snapshot: Latest snapshot item, if any
        events: Event items after the snapshot, ascending by version
    """

    snapshot: Optional[StoredItem] = None
    events: List[StoredItem] = field(default_factory=list)

    def to_lines(self) -> List[str]:
        lines = []
        if self.snapshot is not None:
            lines.append(_dump("snapshot", self.snapshot))
        lines.extend(_dump("event", item) for item in self.events)
        return lines


def _dump(kind: str, item: StoredItem) -> str:
    return json.dumps(
        {
            "kind": kind,
            "partition_key": item.partition_key,
            "sort_key": item.sort_key,
            "version": decode_version(item.sort_key),
            "payload": item.payload,
        },
        sort_keys=True,
    )


class HistoryTool:
    """Reads the snapshot and event tail of an entity straight from a store.

    Example:
        >>> tool = HistoryTool(store, "Account")
        >>> result = await tool.fetch("acc-1")
        >>> print("\\n".join(result.to_lines()))
    """

    def __init__(self, store: StoreAdapter, entity_type: str, limit: Optional[int] = None) -> None:
        """Initialize the tool.

        Args:
            store: Connected store adapter
            entity_type: Entity type name as used in keys
            limit: Maximum events to read (None reads the whole tail)
        """
        self.store = store
        self.keys = KeyEncoder(entity_type)
        self.limit = limit

    async def fetch(self, entity_id: str) -> HistoryResult:
        pk = self.keys.partition_key(entity_id)
        snapshots = await self.store.range_query(
            pk, self.keys.snapshots_prefix, descending=True, limit=1
        )
        snapshot = snapshots[0] if snapshots else None
        base_version = decode_version(snapshot.sort_key) if snapshot else 0

        events = await self.store.range_query(
            pk, self.keys.events_prefix, descending=True, limit=self.limit
        )
        tail = [item for item in events if decode_version(item.sort_key) > base_version]
        tail.reverse()

        logger.debug(
            "Fetched entity history",
            extra={"partition_key": pk, "events": len(tail), "has_snapshot": snapshot is not None},
        )
        return HistoryResult(snapshot=snapshot, events=tail)


async def _run(
    config: RepositoryConfig, entity_type: str, entity_id: str, limit: Optional[int]
) -> HistoryResult:
    store = create_store(config)
    await store.connect()
    try:
        return await HistoryTool(store, entity_type, limit=limit).fetch(entity_id)
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for the history tool."""
    parser = argparse.ArgumentParser(
        description="Print the latest snapshot and event tail of an entity"
    )
    parser.add_argument("entity_type", help="Entity type name (e.g. Account)")
    parser.add_argument("entity_id", help="Entity id")
    parser.add_argument(
        "--table", default=os.getenv("SOURCED_TABLE_NAME", ""), help="DynamoDB table name"
    )
    parser.add_argument("--region", help="AWS region")
    parser.add_argument("--endpoint-url", help="DynamoDB endpoint URL (for DynamoDB Local)")
    parser.add_argument(
        "--pk-attr", default=os.getenv("SOURCED_PK_ATTR", "PK"), help="Partition key attribute"
    )
    parser.add_argument(
        "--sk-attr", default=os.getenv("SOURCED_SK_ATTR", "SK"), help="Sort key attribute"
    )
    parser.add_argument("--limit", type=int, help="Maximum number of events to read")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    dynamodb = DynamoDBConfig.from_env()
    if args.region:
        dynamodb = replace(dynamodb, region=args.region)
    if args.endpoint_url:
        dynamodb = replace(dynamodb, endpoint_url=args.endpoint_url)

    config = RepositoryConfig(
        table_name=args.table,
        partition_key_attr=args.pk_attr,
        sort_key_attr=args.sk_attr,
        dynamodb=dynamodb,
        observability=ObservabilityConfig(
            log_level="DEBUG" if args.verbose else "WARNING",
            log_format="text",
        ),
    )

    setup_logging(config.observability)

    try:
        config.validate()
        result = asyncio.run(_run(config, args.entity_type, args.entity_id, args.limit))
    except (ValueError, SourcedRepoError) as e:
        print(f"History failed: {e}", file=sys.stderr)
        sys.exit(1)

    for line in result.to_lines():
        print(line)
    if not result.snapshot and not result.events:
        print(f"No items stored for {args.entity_type} '{args.entity_id}'", file=sys.stderr)
    sys.exit(0)


if __name__ == "__main__":
    main()
