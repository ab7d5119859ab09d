"""Persistence port, adapters (in-memory, SQL) and the retrying flusher."""

from dex_rollup.persistence.flusher import FlushOutcome, SnapshotFlusher
from dex_rollup.persistence.memory import InMemorySnapshotRepository
from dex_rollup.persistence.ports import (
    PersistenceBacklogError,
    PersistenceCorruptionError,
    PersistenceError,
    SnapshotRepository,
    TransientPersistenceError,
)
from dex_rollup.persistence.sql import SqlSnapshotRepository

__all__ = [
    "FlushOutcome",
    "InMemorySnapshotRepository",
    "PersistenceBacklogError",
    "PersistenceCorruptionError",
    "PersistenceError",
    "SnapshotFlusher",
    "SnapshotRepository",
    "SqlSnapshotRepository",
    "TransientPersistenceError",
]
