"""
Event-sourced entity repository.

The Repository loads entities by merging their latest snapshot with the
event tail recorded after it, and commits entities by writing their pending
events (plus a snapshot when one is due) as a single atomic store write.

Read path (get):
    1. Latest snapshot       - range query, snapshots prefix, descending, limit 1
    2. Event tail            - range query, events prefix, descending,
                               limit snapshot_frequency (runs concurrently with 1)
    3. Drop events already covered by the snapshot, reverse to ascending order
    4. Construct the entity from (snapshot, events)

Write path (commit):
    1. One event item per pending event, tagged with the entity id
    2. One snapshot item when the snapshot policy says so
    3. One atomic write for everything (single put when there is one item)
    4. Clear new_events, then deliver queued notifications in order

Invariants:
    - Entities without an id are rejected before any I/O
    - Nothing about an entity changes when its write fails, so commit can
      simply be called again and stages identical items
    - commit_all lands every entity of the batch or none of them
    - get_all returns entities in the order of the requested ids or fails
    - Store errors propagate unchanged; there is no retry or backoff here

Concurrency:
    Entities are caller-owned and never locked. Callers must serialize
    commits of one entity instance.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from .config import RepositoryConfig
from .entity import EventRecord, Notification, SourcedEntity
from .errors import ValidationError
from .keys import KeyEncoder, decode_version
from .policy import DEFAULT_SNAPSHOT_FREQUENCY, SnapshotPolicy
from .store.base import StoreAdapter, StoredItem, create_store

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=SourcedEntity)


class Repository(Generic[E]):
    """Persists one entity type as events and snapshots.

    Attributes:
        entity_type: Entity class, constructible as entity_type(snapshot=, events=)
        store: Store adapter holding the items
        policy: Snapshot cadence policy
        keys: Key encoder bound to the entity type name

    Example:
        >>> repo = Repository(Account, InMemoryStore())
        >>> await repo.connect()
        >>> account = Account()
        >>> account.open("acc-1")
        >>> await repo.commit(account)
        >>> loaded = await repo.get("acc-1")
    """

    def __init__(
        self,
        entity_type: Type[E],
        store: StoreAdapter,
        snapshot_frequency: int = DEFAULT_SNAPSHOT_FREQUENCY,
        entity_name: Optional[str] = None,
    ) -> None:
        """Initialize the repository.

        Args:
            entity_type: Entity class to load and commit
            store: Store adapter instance
            snapshot_frequency: Versions between snapshots
            entity_name: Key name for the entity type (defaults to the class name)

        Raises:
            ValidationError: If snapshot_frequency is not a positive integer
        """
        self.entity_type = entity_type
        self.store = store
        self.policy = SnapshotPolicy(snapshot_frequency)
        self.entity_name = (entity_name or entity_type.__name__).lower()
        self.keys = KeyEncoder(self.entity_name)

    @classmethod
    def from_config(
        cls,
        entity_type: Type[E],
        config: RepositoryConfig,
        store: Optional[StoreAdapter] = None,
    ) -> Repository[E]:
        """Build a repository and its store adapter from configuration."""
        config.validate()
        return cls(
            entity_type,
            store or create_store(config),
            snapshot_frequency=config.snapshot_frequency,
        )

    @property
    def snapshot_frequency(self) -> int:
        return self.policy.snapshot_frequency

    async def connect(self) -> None:
        """Connect the underlying store if needed."""
        if not self.store.is_connected:
            await self.store.connect()
        logger.debug("Repository ready", extra={"entity_type": self.entity_name})

    async def close(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> Repository[E]:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # Read path

    async def get(self, entity_id: str) -> E:
        """Load an entity from its latest snapshot and event tail.

        An id with no stored items yields the entity's initial state.

        Raises:
            ValidationError: If entity_id is empty
            StorageError: If either store query fails
        """
        if not entity_id:
            raise ValidationError(
                f"Cannot get an entity of type [{self.entity_name}] without an id",
                field_name="id",
                entity_type=self.entity_name,
            )

        pk = self.keys.partition_key(entity_id)
        snapshots, candidates = await asyncio.gather(
            self.store.range_query(pk, self.keys.snapshots_prefix, descending=True, limit=1),
            self.store.range_query(
                pk,
                self.keys.events_prefix,
                descending=True,
                limit=self.policy.event_tail_limit,
            ),
        )

        snapshot = snapshots[0].payload if snapshots else None
        base_version = decode_version(snapshots[0].sort_key) if snapshots else 0

        events = [
            event
            for event in (EventRecord.from_dict(item.payload) for item in candidates)
            if event.version > base_version
        ]
        events.reverse()

        if events and events[0].version != base_version + 1:
            # More events than snapshot_frequency past the snapshot, e.g. the
            # frequency was lowered after these events were written
            events = await self._read_full_tail(pk, base_version)

        entity = self.entity_type(snapshot=snapshot, events=events)

        logger.debug(
            "Loaded entity",
            extra={
                "entity_type": self.entity_name,
                "entity_id": entity_id,
                "snapshot_version": base_version if snapshot is not None else None,
                "events_replayed": len(events),
            },
        )
        return entity

    async def get_all(self, entity_ids: Sequence[str]) -> List[E]:
        """Load several entities, preserving the order of entity_ids.

        All-or-nothing: the first failure is raised and no entities are
        returned.

        Raises:
            ValidationError: If any id is empty (before any I/O)
            StorageError: If any store query fails
        """
        entity_ids = list(entity_ids)
        for entity_id in entity_ids:
            if not entity_id:
                raise ValidationError(
                    f"Cannot get an entity of type [{self.entity_name}] without an id",
                    field_name="id",
                    entity_type=self.entity_name,
                )
        return list(await asyncio.gather(*(self.get(entity_id) for entity_id in entity_ids)))

    async def _read_full_tail(self, pk: str, base_version: int) -> List[EventRecord]:
        logger.warning(
            "Event tail longer than snapshot frequency, reading all events",
            extra={
                "entity_type": self.entity_name,
                "partition_key": pk,
                "snapshot_frequency": self.snapshot_frequency,
            },
        )
        items = await self.store.range_query(pk, self.keys.events_prefix, descending=False)
        events = (EventRecord.from_dict(item.payload) for item in items)
        return [event for event in events if event.version > base_version]

    # Write path

    async def commit(self, entity: E, force_snapshot: bool = False) -> None:
        """Persist an entity's pending events, and a snapshot when due.

        On success the entity's new_events are cleared and its queued
        notifications are delivered through entity.notify() in order.

        Args:
            entity: Entity to persist
            force_snapshot: Write a snapshot regardless of the policy

        Raises:
            ValidationError: If the entity has no id (no I/O attempted)
            StorageError: If the store rejects the write; the entity is left
                as it was so the commit can be retried
        """
        self._validate(entity)

        previous_snapshot_version = entity.snapshot_version
        try:
            items, snapshotted = self._stage(entity, force_snapshot)
            await self._write(items)
        except Exception:
            entity.snapshot_version = previous_snapshot_version
            raise

        logger.debug(
            "Committed entity",
            extra={
                "entity_type": self.entity_name,
                "entity_id": entity.id,
                "version": entity.version,
                "items": len(items),
                "snapshot": snapshotted,
            },
        )
        self._deliver(entity, self._drain(entity))

    async def commit_all(self, entities: Iterable[E], force_snapshots: bool = False) -> None:
        """Persist several entities in one atomic write.

        Every entity is validated before any I/O. The batch lands as a whole
        or not at all; notifications are delivered per entity in input order
        after the write succeeds. Every entity's queues are cleared before the first
        listener runs, so a raising listener leaves no entity holding events
        that are already stored.

        Raises:
            ValidationError: If any entity has no id, or two entities share one
            StorageError: If the store rejects the write; no entity changes
        """
        entities = list(entities)
        if not entities:
            return

        seen = set()
        for entity in entities:
            self._validate(entity)
            if entity.id in seen:
                raise ValidationError(
                    f"Entity [{self.entity_name}] '{entity.id}' appears more than once in batch",
                    field_name="id",
                    entity_type=self.entity_name,
                )
            seen.add(entity.id)

        previous_snapshot_versions = [entity.snapshot_version for entity in entities]
        snapshots = 0
        try:
            items: List[StoredItem] = []
            for entity in entities:
                staged, snapshotted = self._stage(entity, force_snapshots)
                items.extend(staged)
                snapshots += snapshotted
            await self._write(items)
        except Exception:
            for entity, previous in zip(entities, previous_snapshot_versions):
                entity.snapshot_version = previous
            raise

        logger.debug(
            "Committed batch",
            extra={
                "entity_type": self.entity_name,
                "entities": len(entities),
                "items": len(items),
                "snapshots": snapshots,
            },
        )
        # The whole batch is durable; drain every queue before any listener runs
        pending = [self._drain(entity) for entity in entities]
        for entity, notifications in zip(entities, pending):
            self._deliver(entity, notifications)

    def _validate(self, entity: E) -> None:
        if not getattr(entity, "id", None):
            raise ValidationError(
                f"Cannot commit an entity of type [{self.entity_name}] without an [id] property",
                field_name="id",
                entity_type=self.entity_name,
            )

    def _stage(self, entity: E, force_snapshot: bool) -> Tuple[List[StoredItem], bool]:
        """Build the store items for one entity's commit."""
        items = [
            StoredItem(
                *self.keys.event_key(entity.id, event.version),
                payload={**event.to_dict(), "id": entity.id},
            )
            for event in entity.new_events
        ]

        if not self.policy.should_snapshot(entity, force_snapshot):
            return items, False

        payload = entity.snapshot()
        items.append(
            StoredItem(*self.keys.snapshot_key(entity.id, entity.snapshot_version), payload=payload)
        )
        return items, True

    async def _write(self, items: List[StoredItem]) -> None:
        if not items:
            return
        if len(items) == 1:
            await self.store.put(items[0])
        else:
            await self.store.atomic_multi_put(items)

    def _drain(self, entity: E) -> List[Notification]:
        pending = entity.events_to_emit
        entity.new_events = []
        entity.events_to_emit = []
        return pending

    def _deliver(self, entity: E, notifications: List[Notification]) -> None:
        for name, args in notifications:
            entity.notify(name, *args)
