"""
Record Store Base Module

This module defines the keyed-document store the ledgers persist through.
Every mutation is an atomic read-modify-write over one or more keys: the
store reads the current versioned documents, hands them to a pure function,
and commits the returned writes only if none of the read versions moved.
Lost races are retried with backoff and surface as ``TransientError`` once
the retry budget is spent.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from flowtutor.common.config import LedgerConfig
from flowtutor.common.error_handling import ConflictError, TransientError, log_error, retry

R = TypeVar('R')

Document = Dict[str, Any]
Snapshot = Dict[str, Optional[Document]]
Writes = Dict[str, Document]
TransactionFn = Callable[[Snapshot], Tuple[Writes, R]]

# Version of a key that has never been written
MISSING_VERSION = 0


class RecordStore(ABC):
    """
    Abstract keyed-document store with optimistic transactions.

    Subclasses provide versioned reads and a compare-and-swap commit; the
    retry loop and its bookkeeping live here.
    """

    def __init__(self, ledger_config: Optional[LedgerConfig] = None):
        """
        Initialize the store.

        Args:
            ledger_config: Retry settings for lost races
        """
        self.ledger_config = ledger_config or LedgerConfig()

    @abstractmethod
    async def get(self, key: str) -> Optional[Document]:
        """
        Read the current document for a key.

        Args:
            key: Record key

        Returns:
            The document, or None if the key was never written
        """
        pass

    @abstractmethod
    async def scan(self, prefix: str) -> Dict[str, Document]:
        """
        Read every document whose key starts with ``prefix``.

        The result is ordered by key and is not a consistent snapshot across
        keys.
        """
        pass

    @abstractmethod
    async def read_versions(self, keys: Iterable[str]) -> Dict[str, Tuple[int, Optional[Document]]]:
        """Read ``(version, document)`` for each key."""
        pass

    @abstractmethod
    async def commit(self, expected: Dict[str, int], writes: Writes) -> None:
        """
        Write ``writes`` if every written key is still at its ``expected`` version.

        Raises:
            ConflictError: If any version moved since it was read
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the store."""
        return None

    async def transact(
        self,
        keys: Iterable[str],
        fn: TransactionFn,
        operation: str = "transact"
    ) -> R:
        """
        Run ``fn`` as an atomic read-modify-write over ``keys``.

        ``fn`` receives a snapshot mapping each key to its current document
        (or None) and returns ``(writes, result)``. It may run several times
        and must not have side effects. Writes may only target keys in
        ``keys``.

        Only written keys are version-checked at commit. A key that is read
        but not written can change between the snapshot and the commit, so
        any decision that depends on such a key must also write it back.

        Args:
            keys: Keys read and possibly written by the transaction
            fn: Pure function computing the writes and the caller's result
            operation: Name used in logs and errors

        Returns:
            The result produced by the committed run of ``fn``

        Raises:
            TransientError: If the transaction kept losing races
        """
        key_list: List[str] = sorted(set(keys))
        config = self.ledger_config

        @retry(
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            backoff_factor=config.backoff_factor,
            jitter=config.jitter,
            retry_exceptions=(ConflictError,)
        )
        async def attempt() -> R:
            versions = await self.read_versions(key_list)
            snapshot = {key: document for key, (_, document) in versions.items()}
            writes, result = fn(snapshot)

            unexpected = set(writes) - set(key_list)
            if unexpected:
                raise ValueError(f"Transaction {operation} wrote undeclared keys: {sorted(unexpected)}")

            if writes:
                # Only written keys are version-checked; read-only keys do not conflict
                expected = {key: versions[key][0] for key in writes}
                await self.commit(expected, writes)
            return result

        try:
            return await attempt()
        except ConflictError as e:
            attempts = config.max_retries + 1
            error = TransientError(operation, attempts=attempts, cause=e, context={"keys": key_list})
            log_error(error, include_stack_trace=False)
            raise error from e
