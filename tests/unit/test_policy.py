"""
Unit tests for the snapshot cadence policy.
"""

import pytest

from sourced_repo_dynamodb.errors import ValidationError
from sourced_repo_dynamodb.policy import DEFAULT_SNAPSHOT_FREQUENCY, SnapshotPolicy


class FakeEntity:
    def __init__(self, version, snapshot_version=0):
        self.version = version
        self.snapshot_version = snapshot_version


class TestSnapshotPolicy:
    """Tests for SnapshotPolicy."""

    def test_default_frequency(self):
        """Default cadence is every 10 versions."""
        policy = SnapshotPolicy()

        assert policy.snapshot_frequency == DEFAULT_SNAPSHOT_FREQUENCY == 10
        assert policy.event_tail_limit == 10

    @pytest.mark.parametrize(
        "version,snapshot_version,expected",
        [
            (0, 0, False),
            (3, 0, False),
            (9, 0, False),
            (10, 0, True),
            (20, 0, True),
            (19, 10, False),
            (20, 10, True),
            (25, 20, False),
        ],
    )
    def test_threshold(self, version, snapshot_version, expected):
        """Snapshot when version >= snapshot_version + frequency."""
        policy = SnapshotPolicy(10)

        assert policy.should_snapshot(FakeEntity(version, snapshot_version)) is expected

    def test_force_always_snapshots(self):
        """force=True overrides the threshold."""
        policy = SnapshotPolicy(10)

        assert policy.should_snapshot(FakeEntity(3), force=True) is True
        assert policy.should_snapshot(FakeEntity(0), force=True) is True

    def test_frequency_one_snapshots_every_version(self):
        """With frequency 1 every new version is snapshotted."""
        policy = SnapshotPolicy(1)

        assert policy.should_snapshot(FakeEntity(1, 0)) is True
        assert policy.should_snapshot(FakeEntity(5, 5)) is False
        assert policy.event_tail_limit == 1

    @pytest.mark.parametrize("bad", [0, -1, 2.5, "10", True, None])
    def test_invalid_frequency(self, bad):
        """Frequency must be a positive integer."""
        with pytest.raises(ValidationError) as exc_info:
            SnapshotPolicy(bad)

        assert exc_info.value.field_name == "snapshot_frequency"
