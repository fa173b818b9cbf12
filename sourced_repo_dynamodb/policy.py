"""
Snapshot cadence policy.

A snapshot is written whenever an entity has advanced at least
``snapshot_frequency`` versions past its last snapshot. Because every commit
evaluates this rule, no more than ``snapshot_frequency`` events can exist
after the latest snapshot, which is why the read path fetches exactly that
many trailing events.

Invariants:
    - snapshot_frequency is a positive integer
    - event_tail_limit == snapshot_frequency
"""

from __future__ import annotations

from .entity import SourcedEntity
from .errors import ValidationError

DEFAULT_SNAPSHOT_FREQUENCY = 10


class SnapshotPolicy:
    """Decides when commits include a snapshot write."""

    def __init__(self, snapshot_frequency: int = DEFAULT_SNAPSHOT_FREQUENCY) -> None:
        if (
            isinstance(snapshot_frequency, bool)
            or not isinstance(snapshot_frequency, int)
            or snapshot_frequency < 1
        ):
            raise ValidationError(
                f"snapshot_frequency must be a positive integer, got {snapshot_frequency!r}",
                field_name="snapshot_frequency",
            )
        self.snapshot_frequency = snapshot_frequency

    @property
    def event_tail_limit(self) -> int:
        """Number of trailing events the read path must fetch."""
        return self.snapshot_frequency

    def should_snapshot(self, entity: SourcedEntity, force: bool = False) -> bool:
        if force:
            return True
        return entity.version >= entity.snapshot_version + self.snapshot_frequency

    def __repr__(self) -> str:
        return f"SnapshotPolicy(snapshot_frequency={self.snapshot_frequency})"
