"""
Integration tests for Repository over the in-memory store.

Tests cover:
- Commit and load round trips with and without snapshots
- Snapshot cadence and event tail reads
- Atomic commits, rollback on failure and retries
- Notification delivery
- Batch loads and commits
"""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from sourced_repo_dynamodb.errors import (
    StorageRejectedError,
    StorageUnavailableError,
    ValidationError,
)
from sourced_repo_dynamodb.repository import Repository
from sourced_repo_dynamodb.store.memory import InMemoryStore


def sort_keys(store, pk="counter#e1"):
    return [item.sort_key for item in store.get_all_items(pk)]


class TestCommitAndGet:
    """Round trips through commit() and get()."""

    @pytest.mark.asyncio
    async def test_forced_snapshot_round_trip(self, repo, store, make_counter):
        """A forced snapshot is written alongside the events."""
        counter = make_counter("e1")
        counter.add_one()
        counter.add_one()

        await repo.commit(counter, force_snapshot=True)

        assert sort_keys(store) == [
            "counterevents#000000000000001",
            "counterevents#000000000000002",
            "counterevents#000000000000003",
            "countersnapshots#000000000000003",
        ]
        assert store.write_calls == [("atomic_multi_put", 4)]

        loaded = await repo.get("e1")

        assert loaded.id == "e1"
        assert loaded.version == 3
        assert loaded.snapshot_version == 3
        assert loaded.total == 2
        assert loaded.new_events == []

    @pytest.mark.asyncio
    async def test_round_trip_without_snapshot(self, repo, store, make_counter):
        """Below the cadence only events are written."""
        counter = make_counter("e1")
        counter.add_one()
        counter.add_one()

        await repo.commit(counter)
        loaded = await repo.get("e1")

        assert not any("snapshots" in key for key in sort_keys(store))
        assert loaded.version == 3
        assert loaded.snapshot_version == 0
        assert loaded.total == 2

    @pytest.mark.asyncio
    async def test_periodic_snapshots(self, repo, store, make_counter):
        """Committing after every operation snapshots every 10 versions."""
        counter = make_counter("e1")
        await repo.commit(counter)
        for amount in range(20):
            counter.add(amount)
            await repo.commit(counter)

        snapshots = [key for key in sort_keys(store) if "snapshots" in key]
        assert snapshots == [
            "countersnapshots#000000000000010",
            "countersnapshots#000000000000020",
        ]

        loaded = await repo.get("e1")

        assert loaded.total == 190
        assert loaded.version == 21
        assert loaded.snapshot_version == 20

    @pytest.mark.asyncio
    async def test_many_events_single_commit(self, repo, store, make_counter):
        """Twenty adds committed at once land in one transaction with one snapshot."""
        counter = make_counter("e1")
        for amount in range(20):
            counter.add(amount)

        await repo.commit(counter)

        assert store.write_calls == [("atomic_multi_put", 22)]
        snapshots = [key for key in sort_keys(store) if "snapshots" in key]
        assert snapshots == ["countersnapshots#000000000000021"]

        loaded = await repo.get("e1")

        assert loaded.id == "e1"
        assert loaded.total == 190
        assert loaded.version == 21
        assert loaded.snapshot_version == loaded.version

    @pytest.mark.asyncio
    async def test_event_items_carry_entity_id(self, repo, store, make_counter):
        """Stored event payloads name the entity they belong to."""
        counter = make_counter("e1")
        counter.add(2)

        await repo.commit(counter)

        payloads = [item.payload for item in store.get_all_items("counter#e1")]
        assert [p["id"] for p in payloads] == ["e1", "e1"]
        assert [p["method"] for p in payloads] == ["init", "add"]

    @pytest.mark.asyncio
    async def test_get_unknown_id(self, repo):
        """An id with no items loads as a fresh entity."""
        loaded = await repo.get("nobody")

        assert loaded.version == 0
        assert loaded.total == 0

    @pytest.mark.asyncio
    async def test_get_requires_id(self, repo, store):
        with pytest.raises(ValidationError):
            await repo.get("")

    @pytest.mark.asyncio
    async def test_continue_after_load(self, repo, make_counter):
        """A loaded entity keeps versioning from where it left off."""
        counter = make_counter("e1")
        counter.add(5)
        await repo.commit(counter)

        loaded = await repo.get("e1")
        loaded.add(7)
        await repo.commit(loaded)

        again = await repo.get("e1")
        assert again.version == 3
        assert again.total == 12

    @pytest.mark.asyncio
    @pytest.mark.parametrize("frequency", [1, 2, 3, 7, 10, 50])
    async def test_replay_matches_live_state(self, counter_cls, make_counter, frequency):
        """Loading yields the same state whatever the snapshot cadence."""
        store = InMemoryStore()
        await store.connect()
        repo = Repository(counter_cls, store, snapshot_frequency=frequency)

        counter = make_counter("e1")
        for step in range(1, 24):
            if step % 3:
                counter.add(step)
            else:
                counter.add_one()
            if step % 4 == 0:
                await repo.commit(counter)
        await repo.commit(counter)

        loaded = await repo.get("e1")

        assert loaded.version == counter.version
        assert loaded.total == counter.total
        assert loaded.snapshot() == counter.snapshot()

    @pytest.mark.asyncio
    async def test_tail_longer_than_frequency(self, counter_cls, store, make_counter, caplog):
        """A tail that doesn't reach back to the snapshot is read in full."""
        writer = Repository(counter_cls, store, snapshot_frequency=100)
        counter = make_counter("e1")
        for amount in range(1, 15):
            counter.add(amount)
        await writer.commit(counter)

        reader = Repository(counter_cls, store, snapshot_frequency=5)
        with caplog.at_level(logging.WARNING, logger="sourced_repo_dynamodb.repository"):
            loaded = await reader.get("e1")

        assert loaded.version == 15
        assert loaded.total == sum(range(1, 15))
        assert any("reading all events" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_entity_name_override(self, counter_cls, store, make_counter):
        """entity_name changes the key namespace."""
        repo = Repository(counter_cls, store, entity_name="Tally")

        await repo.commit(make_counter("e1"))

        assert store.item_count("tally#e1") == 1
        assert store.item_count("counter#e1") == 0


class TestCommitWrites:
    """Write shapes, validation and failure handling."""

    @pytest.mark.asyncio
    async def test_single_item_uses_put(self, repo, store, make_counter):
        await repo.commit(make_counter("e1"))

        assert store.write_calls == [("put", 1)]

    @pytest.mark.asyncio
    async def test_forced_snapshot_without_events(self, repo, store, make_counter):
        """Forcing a snapshot with no pending events writes just the snapshot."""
        counter = make_counter("e1")
        await repo.commit(counter)

        await repo.commit(counter, force_snapshot=True)

        assert store.write_calls == [("put", 1), ("put", 1)]
        assert sort_keys(store)[-1] == "countersnapshots#000000000000001"

    @pytest.mark.asyncio
    async def test_nothing_to_write(self, repo, store, make_counter):
        """A clean entity commits without I/O."""
        counter = make_counter("e1")
        await repo.commit(counter)

        await repo.commit(counter)

        assert store.write_calls == [("put", 1)]

    @pytest.mark.asyncio
    async def test_commit_requires_id(self, repo, store, counter_cls):
        """Entities without an id are rejected before any write."""
        counter = counter_cls()
        counter.add_one()

        with pytest.raises(ValidationError) as exc_info:
            await repo.commit(counter)

        assert exc_info.value.field_name == "id"
        assert exc_info.value.entity_type == "counter"
        assert store.write_calls == []
        assert len(counter.new_events) == 1

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_entity_untouched(self, repo, store, make_counter):
        """A rejected write changes nothing, in the store or the entity."""
        counter = make_counter("e1")
        counter.add(3)
        store.inject_failure(StorageRejectedError("conflict"))

        with pytest.raises(StorageRejectedError):
            await repo.commit(counter, force_snapshot=True)

        assert store.item_count() == 0
        assert counter.snapshot_version == 0
        assert [e.version for e in counter.new_events] == [1, 2]
        assert counter.events_to_emit

    @pytest.mark.asyncio
    async def test_retry_writes_identical_items(self, repo, store, make_counter):
        """Retrying after a failure stages exactly the same items."""
        counter = make_counter("e1")
        for amount in range(1, 10):
            counter.add(amount)
        write = AsyncMock(side_effect=[StorageUnavailableError("throttled"), None])

        with patch.object(store, "atomic_multi_put", write):
            with pytest.raises(StorageUnavailableError):
                await repo.commit(counter)
            await repo.commit(counter)

        first, second = write.await_args_list
        assert first.args == second.args
        assert first.args[0][-1].sort_key == "countersnapshots#000000000000010"
        assert counter.snapshot_version == 10
        assert counter.new_events == []


class TestNotifications:
    """Queued notifications and their delivery."""

    @pytest.mark.asyncio
    async def test_delivered_in_order_after_write(self, repo, store, make_counter):
        counter = make_counter("e1")
        received = []
        counter.on("added", lambda amount: received.append(("added", amount)))
        counter.on("one_added", lambda total: received.append(("one_added", total)))
        counter.add(4)
        counter.add_one()
        counter.add(2)

        assert received == []
        await repo.commit(counter)

        assert received == [("added", 4), ("one_added", 5), ("added", 2)]
        assert counter.events_to_emit == []

    @pytest.mark.asyncio
    async def test_not_delivered_on_failure(self, repo, store, make_counter):
        counter = make_counter("e1")
        received = []
        counter.on("added", received.append)
        counter.add(4)
        store.inject_failure(StorageUnavailableError("down"))

        with pytest.raises(StorageUnavailableError):
            await repo.commit(counter)

        assert received == []
        assert len(counter.events_to_emit) == 1

        await repo.commit(counter)
        assert received == [4]

    @pytest.mark.asyncio
    async def test_delivered_when_nothing_written(self, repo, store, counter_cls):
        """Pending notifications go out even without events to store."""
        counter = counter_cls()
        counter.id = "e1"
        counter.enqueue("added", 1)
        received = []
        counter.on("added", received.append)

        await repo.commit(counter)

        assert received == [1]
        assert store.write_calls == []

    @pytest.mark.asyncio
    async def test_not_delivered_twice(self, repo, make_counter):
        counter = make_counter("e1")
        received = []
        counter.on("added", received.append)
        counter.add(1)

        await repo.commit(counter)
        await repo.commit(counter)

        assert received == [1]


class TestBatches:
    """get_all() and commit_all()."""

    @pytest.mark.asyncio
    async def test_get_all_preserves_order(self, repo, make_counter):
        for entity_id, amount in (("e1", 1), ("e2", 2), ("e3", 3)):
            counter = make_counter(entity_id)
            counter.add(amount)
            await repo.commit(counter)

        loaded = await repo.get_all(["e3", "e1", "e2"])

        assert [c.id for c in loaded] == ["e3", "e1", "e2"]
        assert [c.total for c in loaded] == [3, 1, 2]

    @pytest.mark.asyncio
    async def test_get_all_empty(self, repo):
        assert await repo.get_all([]) == []

    @pytest.mark.asyncio
    async def test_get_all_rejects_empty_id(self, repo, store):
        store.inject_failure(StorageUnavailableError("unused"), operation="query")

        with pytest.raises(ValidationError):
            await repo.get_all(["e1", ""])

        # validation happened before any query consumed the injected failure
        with pytest.raises(StorageUnavailableError):
            await repo.get("e1")

    @pytest.mark.asyncio
    async def test_get_all_fails_as_a_whole(self, repo, store, make_counter):
        await repo.commit(make_counter("e1"))
        store.inject_failure(StorageUnavailableError("throttled"), operation="query")

        with pytest.raises(StorageUnavailableError):
            await repo.get_all(["e1", "e2"])

    @pytest.mark.asyncio
    async def test_commit_all_single_transaction(self, repo, store, make_counter):
        first, second = make_counter("e1"), make_counter("e2")
        first.add(1)
        second.add(2)
        second.add(3)

        await repo.commit_all([first, second])

        assert store.write_calls == [("atomic_multi_put", 5)]
        assert first.new_events == [] and second.new_events == []
        loaded = await repo.get_all(["e1", "e2"])
        assert [c.total for c in loaded] == [1, 5]

    @pytest.mark.asyncio
    async def test_commit_all_forced_snapshots(self, repo, store, make_counter):
        entities = [make_counter("e1"), make_counter("e2")]

        await repo.commit_all(entities, force_snapshots=True)

        assert store.item_count("counter#e1") == 2
        assert store.item_count("counter#e2") == 2
        assert [e.snapshot_version for e in entities] == [1, 1]

    @pytest.mark.asyncio
    async def test_commit_all_is_atomic(self, repo, store, make_counter):
        """One failure leaves every entity of the batch unchanged."""
        first, second = make_counter("e1"), make_counter("e2")
        received = []
        first.on("added", received.append)
        first.add(1)
        store.inject_failure(StorageRejectedError("conflict"))

        with pytest.raises(StorageRejectedError):
            await repo.commit_all([first, second], force_snapshots=True)

        assert store.item_count() == 0
        assert [first.snapshot_version, second.snapshot_version] == [0, 0]
        assert len(first.new_events) == 2 and len(second.new_events) == 1
        assert received == []

    @pytest.mark.asyncio
    async def test_commit_all_listener_error_clears_every_entity(
        self, repo, store, make_counter
    ):
        """A raising listener still leaves the whole stored batch drained."""
        first, second = make_counter("e1"), make_counter("e2")
        received = []

        def explode(amount):
            raise RuntimeError("listener failed")

        first.on("added", explode)
        second.on("added", received.append)
        first.add(1)
        second.add(2)

        with pytest.raises(RuntimeError):
            await repo.commit_all([first, second])

        assert store.item_count() == 4
        assert first.new_events == [] and second.new_events == []
        assert first.events_to_emit == [] and second.events_to_emit == []

        second.add(3)
        await repo.commit(second)

        assert received == [3]
        assert store.write_calls[-1] == ("put", 1)
        loaded = await repo.get("e2")
        assert loaded.total == 5

    @pytest.mark.asyncio
    async def test_commit_all_rejects_missing_id(self, repo, store, make_counter, counter_cls):
        with pytest.raises(ValidationError):
            await repo.commit_all([make_counter("e1"), counter_cls()])

        assert store.write_calls == []

    @pytest.mark.asyncio
    async def test_commit_all_rejects_duplicate_ids(self, repo, store, make_counter):
        with pytest.raises(ValidationError):
            await repo.commit_all([make_counter("e1"), make_counter("e1")])

        assert store.write_calls == []

    @pytest.mark.asyncio
    async def test_commit_all_too_many_items(self, repo, store, make_counter):
        """Batches beyond the transaction limit are rejected whole."""
        entities = []
        for n in range(51):
            counter = make_counter(f"e{n}")
            counter.add(n)
            entities.append(counter)

        with pytest.raises(StorageRejectedError):
            await repo.commit_all(entities)

        assert store.item_count() == 0
        assert all(len(e.new_events) == 2 for e in entities)

    @pytest.mark.asyncio
    async def test_commit_all_empty(self, repo, store):
        await repo.commit_all([])

        assert store.write_calls == []


class TestLifecycle:
    """Construction and connection handling."""

    @pytest.mark.asyncio
    async def test_context_manager(self, counter_cls):
        store = InMemoryStore()

        async with Repository(counter_cls, store) as repo:
            assert store.is_connected
            assert repo.snapshot_frequency == 10

        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_connect_keeps_connected_store(self, repo, store, make_counter):
        await repo.commit(make_counter("e1"))

        await repo.connect()

        assert store.item_count() == 1

    def test_invalid_frequency(self, counter_cls):
        with pytest.raises(ValidationError):
            Repository(counter_cls, InMemoryStore(), snapshot_frequency=0)
