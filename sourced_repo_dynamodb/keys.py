"""
Storage key encoding for entity events and snapshots.

Every item written for an entity shares one partition key and is ordered
inside the partition by its sort key:

    partition key:  <entitytype>#<id>
    sort key:       <entitytype><kind>#<version, 15 digits>

    e.g. "account#acc-1" / "accountevents#000000000000007"

Invariants:
    - Lexicographic order of sort keys equals numeric order of versions
      for every version in [0, 10^15)
    - Encoding is injective over (kind, version) for a fixed entity
    - Entity type names are always lower-cased

How to change safely:
    - Never change VERSION_WIDTH or the separator: existing tables become
      unreadable because prefixes and ordering would no longer match
    - New record kinds must not be a prefix of an existing kind
"""

from __future__ import annotations

from enum import Enum
from typing import Tuple

from .errors import ValidationError

KEY_SEPARATOR = "#"
VERSION_WIDTH = 15
MAX_VERSION = 10**VERSION_WIDTH - 1


class RecordKind(Enum):
    """Kinds of records stored per entity."""

    EVENTS = "events"
    SNAPSHOTS = "snapshots"


def _normalize_type(entity_type: str) -> str:
    if not entity_type:
        raise ValidationError("Entity type name must not be empty", field_name="entity_type")
    return entity_type.lower()


def _pad_version(version: int) -> str:
    # bool is an int subclass but never a valid version
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValidationError(
            f"Version must be an integer, got {type(version).__name__}",
            field_name="version",
        )
    if version < 0 or version > MAX_VERSION:
        raise ValidationError(
            f"Version {version} is outside the encodable range [0, {MAX_VERSION}]",
            field_name="version",
        )
    return str(version).zfill(VERSION_WIDTH)


def partition_key(entity_type: str, entity_id: str) -> str:
    """Build the partition key shared by all items of one entity."""
    if not entity_id:
        raise ValidationError("Entity id must not be empty", field_name="id")
    return f"{_normalize_type(entity_type)}{KEY_SEPARATOR}{entity_id}"


def sort_key_prefix(entity_type: str, kind: RecordKind) -> str:
    """Build the sort-key prefix selecting every record of one kind."""
    kind = RecordKind(kind)
    return f"{_normalize_type(entity_type)}{kind.value}{KEY_SEPARATOR}"


def encode(
    entity_type: str, entity_id: str, kind: RecordKind, version: int
) -> Tuple[str, str]:
    """Encode an entity record into its (partition_key, sort_key) pair.

    Args:
        entity_type: Entity type name (case-insensitive)
        entity_id: Entity identifier
        kind: Record kind (events or snapshots)
        version: Entity version the record belongs to

    Returns:
        Tuple of (partition_key, sort_key)

    Raises:
        ValidationError: If the id is empty, the kind is unknown or the
            version is outside [0, 10^15)
    """
    try:
        prefix = sort_key_prefix(entity_type, kind)
    except ValueError as e:
        raise ValidationError(f"Unknown record kind: {kind!r}", field_name="kind") from e
    return partition_key(entity_type, entity_id), prefix + _pad_version(version)


def decode_version(sort_key: str) -> int:
    """Recover the version number encoded at the end of a sort key."""
    _, sep, digits = sort_key.rpartition(KEY_SEPARATOR)
    if not sep or len(digits) != VERSION_WIDTH or not digits.isdigit():
        raise ValidationError(f"Malformed sort key: {sort_key!r}", field_name="sort_key")
    return int(digits)


class KeyEncoder:
    """Key encoder bound to one entity type.

    Example:
        >>> keys = KeyEncoder("Account")
        >>> keys.event_key("acc-1", 7)
        ('account#acc-1', 'accountevents#000000000000007')
    """

    def __init__(self, entity_type: str) -> None:
        self.entity_type = _normalize_type(entity_type)
        self.events_prefix = sort_key_prefix(self.entity_type, RecordKind.EVENTS)
        self.snapshots_prefix = sort_key_prefix(self.entity_type, RecordKind.SNAPSHOTS)

    def partition_key(self, entity_id: str) -> str:
        return partition_key(self.entity_type, entity_id)

    def event_key(self, entity_id: str, version: int) -> Tuple[str, str]:
        return encode(self.entity_type, entity_id, RecordKind.EVENTS, version)

    def snapshot_key(self, entity_id: str, version: int) -> Tuple[str, str]:
        return encode(self.entity_type, entity_id, RecordKind.SNAPSHOTS, version)

    def __repr__(self) -> str:
        return f"KeyEncoder({self.entity_type!r})"
