"""
CLI tools for sourced-repo-dynamodb.

This module provides command-line tools for:
- history: Print the latest snapshot and event tail of an entity

Invariants:
    - Tools are read-only
    - Configuration comes from the environment, overridable by flags
"""

from .history import HistoryResult, HistoryTool

__all__ = ["HistoryTool", "HistoryResult"]
