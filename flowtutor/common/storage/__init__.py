"""
Record storage for the ledger.

Provides the optimistic-transaction store interface and its in-memory and
SQL implementations.
"""

from typing import Optional

from flowtutor.common.config import AppConfig, get_config
from flowtutor.common.storage.base import (
    Document,
    RecordStore,
    Snapshot,
    TransactionFn,
    Writes,
)
from flowtutor.common.storage.memory import MemoryRecordStore
from flowtutor.common.storage.sql import LedgerRecord, SQLRecordStore


def create_record_store(config: Optional[AppConfig] = None) -> RecordStore:
    """
    Build the record store selected by ``storage.url``.

    ``memory://`` gives a process-local store; anything else is handed to
    SQLAlchemy as an async database URL.
    """
    config = config or get_config()
    if config.storage.is_memory:
        return MemoryRecordStore(config.ledger)
    return SQLRecordStore.from_config(config.storage, config.ledger)


__all__ = [
    "Document",
    "RecordStore",
    "Snapshot",
    "TransactionFn",
    "Writes",
    "MemoryRecordStore",
    "SQLRecordStore",
    "LedgerRecord",
    "create_record_store",
]
