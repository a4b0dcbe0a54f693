"""
Memory Record Store Module

In-process implementation of the record store. Documents are kept as JSON
text so that whatever a transaction writes is exactly what a durable backend
would return. Each key has its own lock; there is no store-wide lock on the
write path, so different users never contend.
"""

import asyncio
import json
import threading
from contextlib import ExitStack
from typing import Dict, Iterable, Optional, Tuple

from flowtutor.common.config import LedgerConfig
from flowtutor.common.error_handling import ConflictError
from flowtutor.common.logger import app_logger
from flowtutor.common.serialization import to_json
from flowtutor.common.storage.base import MISSING_VERSION, Document, RecordStore, Writes

# Set up logging
logger = app_logger.getChild("storage.memory")


class MemoryRecordStore(RecordStore):
    """
    Thread-safe in-memory record store.

    Features:
    - Per-key locks acquired in sorted order for multi-key commits
    - Version numbers for compare-and-swap
    - Read path yields to the event loop so concurrent transactions interleave
    """

    def __init__(self, ledger_config: Optional[LedgerConfig] = None, name: str = "memory"):
        super().__init__(ledger_config)
        self._records: Dict[str, Tuple[int, str]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._name = name

    def _lock_for(self, key: str) -> threading.Lock:
        # setdefault is atomic, so two threads always end up sharing one lock
        return self._locks.setdefault(key, threading.Lock())

    async def get(self, key: str) -> Optional[Document]:
        entry = self._records.get(key)
        if entry is None:
            return None
        return json.loads(entry[1])

    async def scan(self, prefix: str) -> Dict[str, Document]:
        items = [(key, entry) for key, entry in list(self._records.items()) if key.startswith(prefix)]
        return {key: json.loads(entry[1]) for key, entry in sorted(items)}

    async def read_versions(self, keys: Iterable[str]) -> Dict[str, Tuple[int, Optional[Document]]]:
        result = {}
        for key in keys:
            with self._lock_for(key):
                entry = self._records.get(key)
            if entry is None:
                result[key] = (MISSING_VERSION, None)
            else:
                result[key] = (entry[0], json.loads(entry[1]))

        # Let other transactions run between read and commit
        await asyncio.sleep(0)
        return result

    async def commit(self, expected: Dict[str, int], writes: Writes) -> None:
        keys = sorted(writes)
        encoded = {key: to_json(document) for key, document in writes.items()}

        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(self._lock_for(key))

            for key in keys:
                current = self._records.get(key)
                current_version = current[0] if current else MISSING_VERSION
                if current_version != expected.get(key, MISSING_VERSION):
                    raise ConflictError("record", key)

            for key, payload in encoded.items():
                current = self._records.get(key)
                version = (current[0] if current else MISSING_VERSION) + 1
                self._records[key] = (version, payload)

        logger.debug(f"Committed {len(writes)} record(s) to {self._name} store")

    def __len__(self) -> int:
        return len(self._records)
