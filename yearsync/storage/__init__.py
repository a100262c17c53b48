"""Storage layer for yearsync."""

from yearsync.protocols import HistoryStorage, MergeError, StorageError

from .schema import SCHEMA_VERSION
from .sqlite import SQLiteHistoryStorage

__all__ = [
    "HistoryStorage",
    "MergeError",
    "SQLiteHistoryStorage",
    "SCHEMA_VERSION",
    "StorageError",
]
