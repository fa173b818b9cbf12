"""
sourced-repo-dynamodb test suite.

This package contains:
- unit/: Unit tests (key encoding, snapshot policy, entity, stores with mocked clients)
- integration/: Repository tests over the in-memory store
"""
