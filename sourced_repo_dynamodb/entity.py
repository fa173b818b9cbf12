"""
Event-sourced entity contract and base class.

The repository only relies on the SourcedEntity protocol:
- construction from an optional snapshot payload and ordered events
- id / version / snapshot_version fields
- new_events and events_to_emit queues it can clear after a commit
- snapshot() to serialize full state
- notify(name, *args) to deliver queued notifications

Entity is a ready-made implementation. Domain operations mutate state, then
call digest() to record the event and optionally enqueue() a notification:

    class Account(Entity):
        def __init__(self, snapshot=None, events=None):
            self.balance = 0
            super().__init__(snapshot, events)

        def open(self, id):
            self.id = id
            self.digest("open", {"id": id})

        def deposit(self, amount):
            self.balance += amount
            self.digest("deposit", {"amount": amount})
            self.enqueue("deposited", amount)

Subclasses declare their state before calling Entity.__init__, which then
rehydrates from the snapshot and events.

Invariants:
    - version increases by exactly 1 per digested event
    - Nothing is recorded or enqueued while replaying
    - snapshot() payloads are JSON-compatible copies, never live state
"""

from __future__ import annotations

import copy
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    List,
    NamedTuple,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

# Attributes that are bookkeeping, not entity state
_NON_STATE_ATTRS = frozenset({"new_events", "events_to_emit", "replaying"})


@dataclass(frozen=True)
class EventRecord:
    """A single recorded entity event.

    Attributes:
        method: Name of the domain operation that produced the event
        params: Keyword arguments needed to replay the operation
        timestamp: When the event was recorded (Unix ms)
        version: Entity version after applying the event
    """

    method: str
    params: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "method": self.method,
            "params": self.params,
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EventRecord:
        """Create from dictionary.

        Raises:
            ValueError: If method or version is missing
        """
        missing = [f for f in ("method", "version") if f not in data]
        if missing:
            raise ValueError(f"Missing required event fields: {missing}")
        return cls(
            method=data["method"],
            params=data.get("params") or {},
            timestamp=int(data.get("timestamp", 0)),
            version=int(data["version"]),
        )


class Notification(NamedTuple):
    """A queued notification, delivered after a successful commit."""

    name: str
    args: Tuple[Any, ...]


@runtime_checkable
class SourcedEntity(Protocol):
    """Capabilities the repository needs from an entity."""

    id: str
    version: int
    snapshot_version: int
    new_events: List[EventRecord]
    events_to_emit: List[Notification]

    def snapshot(self) -> Dict[str, Any]:
        ...

    def notify(self, name: str, *args: Any) -> None:
        ...


class Entity:
    """Base class for event-sourced entities."""

    def __init__(
        self,
        snapshot: Optional[Dict[str, Any]] = None,
        events: Optional[Sequence[EventRecord]] = None,
    ) -> None:
        self.id: str = ""
        self.version: int = 0
        self.snapshot_version: int = 0
        self.new_events: List[EventRecord] = []
        self.events_to_emit: List[Notification] = []
        self.replaying = False
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

        self.rehydrate(snapshot, events)

    # Event recording

    def digest(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Record an event for the operation that was just applied."""
        if self.replaying:
            return
        self.version += 1
        self.new_events.append(
            EventRecord(
                method=method,
                params=copy.deepcopy(params or {}),
                timestamp=int(time.time() * 1000),
                version=self.version,
            )
        )

    def enqueue(self, name: str, *args: Any) -> None:
        """Queue a notification to be delivered once the entity is committed."""
        if self.replaying:
            return
        self.events_to_emit.append(Notification(name, args))

    # Rehydration and snapshots

    def rehydrate(
        self,
        snapshot: Optional[Dict[str, Any]] = None,
        events: Optional[Sequence[EventRecord]] = None,
    ) -> None:
        """Restore state from a snapshot, then replay events in order.

        Raises:
            ValueError: If an event names a method the entity doesn't have
        """
        if snapshot:
            for name, value in snapshot.items():
                if name in _NON_STATE_ATTRS or name.startswith("_"):
                    continue
                setattr(self, name, copy.deepcopy(value))

        if not events:
            return

        self.replaying = True
        try:
            for event in events:
                if isinstance(event, dict):
                    event = EventRecord.from_dict(event)
                handler = getattr(self, event.method, None)
                if event.method.startswith("_") or not callable(handler):
                    raise ValueError(
                        f"{type(self).__name__} cannot replay unknown method '{event.method}'"
                    )
                handler(**event.params)
                self.version = event.version
        finally:
            self.replaying = False

    def snapshot(self) -> Dict[str, Any]:
        """Serialize full state and mark the current version as snapshotted."""
        self.snapshot_version = self.version
        return {
            name: copy.deepcopy(value)
            for name, value in vars(self).items()
            if name not in _NON_STATE_ATTRS and not name.startswith("_")
        }

    # Notifications

    def on(self, name: str, listener: Callable[..., Any]) -> None:
        self._listeners[name].append(listener)

    def once(self, name: str, listener: Callable[..., Any]) -> None:
        def wrapper(*args: Any) -> Any:
            self.off(name, wrapper)
            return listener(*args)

        self.on(name, wrapper)

    def off(self, name: str, listener: Callable[..., Any]) -> None:
        if listener in self._listeners.get(name, []):
            self._listeners[name].remove(listener)

    def notify(self, name: str, *args: Any) -> None:
        """Deliver a notification to every listener registered for it."""
        for listener in list(self._listeners.get(name, [])):
            listener(*args)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, version={self.version})"
