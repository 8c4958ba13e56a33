"""
Storage for dejacmd.

History is kept in one table (history) in up to two databases, the local
store and an optional central store, each any of SQLite, PostgreSQL, MySQL
or SQL Server.

Design principles:
    - SQL is written once with "?" markers and adapted per dialect
    - Each target is independent: connect, migrate and write failures on
      one never affect the other
    - Command text is always a bound parameter
"""

from dejacmd.store.connection import (
    UNCONFIGURED,
    Configured,
    DatabaseTarget,
    HistoryPool,
    Unconfigured,
    resolve_database,
)
from dejacmd.store.dialect import adapt_placeholders
from dejacmd.store.writer import DualWriteOutcome, FailureKind, TargetOutcome, record

__all__ = [
    "UNCONFIGURED",
    "Configured",
    "DatabaseTarget",
    "DualWriteOutcome",
    "FailureKind",
    "HistoryPool",
    "TargetOutcome",
    "Unconfigured",
    "adapt_placeholders",
    "record",
    "resolve_database",
]
