"""
Shared fixtures: sample entities, an in-memory store and a repository.
"""

import pytest

from sourced_repo_dynamodb.entity import Entity
from sourced_repo_dynamodb.repository import Repository
from sourced_repo_dynamodb.store.memory import InMemoryStore


class Counter(Entity):
    """Entity with a running total, used across the suite."""

    def __init__(self, snapshot=None, events=None):
        self.total = 0
        super().__init__(snapshot, events)

    def init(self, id):
        self.id = id
        self.digest("init", {"id": id})

    def add_one(self):
        self.total += 1
        self.digest("add_one")
        self.enqueue("one_added", self.total)

    def add(self, amount):
        self.total += amount
        self.digest("add", {"amount": amount})
        self.enqueue("added", amount)


@pytest.fixture
def counter_cls():
    """The Counter entity class."""
    return Counter


@pytest.fixture
def make_counter():
    """Factory for a fresh Counter that has recorded its init event."""

    def _make(entity_id="e1"):
        counter = Counter()
        counter.init(entity_id)
        return counter

    return _make


@pytest.fixture
async def store():
    """Connected in-memory store."""
    store = InMemoryStore()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def repo(store):
    """Counter repository with the default snapshot frequency."""
    return Repository(Counter, store)
