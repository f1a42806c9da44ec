"""Durable per-repository state: SQLite database, step ledger, knowledge store."""

from lorekeeper.storage.db import (
    Database,
    StorageError,
    database_path,
    state_dir,
)
from lorekeeper.storage.knowledge import KnowledgeStore
from lorekeeper.storage.ledger import StepLedger
from lorekeeper.storage.lock import LockError, RepositoryLock

__all__ = [
    "Database",
    "KnowledgeStore",
    "LockError",
    "RepositoryLock",
    "StepLedger",
    "StorageError",
    "database_path",
    "state_dir",
]
