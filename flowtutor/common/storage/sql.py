"""
SQL Record Store Module

Durable record store on SQLAlchemy's asyncio engine. All documents live in a
single ``ledger_records`` table; the ``version`` column carries the
compare-and-swap token, so no row locks are held between read and commit.
"""

import datetime
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from sqlalchemy import JSON, Column, DateTime, Integer, MetaData, String, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from flowtutor.common.config import LedgerConfig, StorageConfig
from flowtutor.common.error_handling import ConflictError, StorageUnavailableError
from flowtutor.common.logger import app_logger
from flowtutor.common.storage.base import MISSING_VERSION, Document, RecordStore, Writes

# Set up logging
logger = app_logger.getChild("storage.sql")

# Configure naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

metadata = MetaData(naming_convention=convention)

Base = declarative_base(metadata=metadata)


class LedgerRecord(Base):
    """One versioned ledger document."""

    __tablename__ = "ledger_records"

    key = Column(String(255), primary_key=True)
    version = Column(Integer, nullable=False)
    document = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model instance to dictionary."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }


def get_engine_kwargs(url: str, echo: bool = False, pool_size: int = 5) -> Dict[str, Any]:
    """
    Get engine keyword arguments based on database type.
    Different databases support different connection options.
    """
    kwargs: Dict[str, Any] = {"echo": echo}

    if url.startswith("postgresql"):
        kwargs.update({
            "pool_size": pool_size,
            "pool_pre_ping": True,
            "pool_recycle": 300,
        })

    return kwargs


class SQLRecordStore(RecordStore):
    """
    Record store backed by a relational database.

    Commits run in one database transaction: existing rows are updated with
    ``WHERE version = :expected`` and new rows are inserted, so a concurrent
    writer shows up as a zero row count or a primary-key violation.
    """

    def __init__(
        self,
        url: str,
        ledger_config: Optional[LedgerConfig] = None,
        echo: bool = False,
        pool_size: int = 5,
        engine: Optional[AsyncEngine] = None
    ):
        super().__init__(ledger_config)
        self.url = url
        self.engine = engine or create_async_engine(url, **get_engine_kwargs(url, echo, pool_size))
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    @classmethod
    def from_config(cls, storage: StorageConfig, ledger: Optional[LedgerConfig] = None) -> "SQLRecordStore":
        return cls(storage.url, ledger, echo=storage.echo, pool_size=storage.pool_size)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Storage error during {operation}: {e}")
            raise StorageUnavailableError(operation, cause=e) from e

    async def create_schema(self) -> None:
        """Create the ledger table if it does not exist."""
        with self._guard("create_schema"):
            async with self.engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        logger.info("Ledger schema ready")

    async def close(self) -> None:
        await self.engine.dispose()

    async def get(self, key: str) -> Optional[Document]:
        with self._guard("get"):
            async with self.session_factory() as session:
                record = await session.get(LedgerRecord, key)
                return dict(record.document) if record is not None else None

    async def scan(self, prefix: str) -> Dict[str, Document]:
        stmt = (
            select(LedgerRecord)
            .where(LedgerRecord.key.startswith(prefix, autoescape=True))
            .order_by(LedgerRecord.key)
        )
        with self._guard("scan"):
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return {record.key: dict(record.document) for record in result.scalars()}

    async def read_versions(self, keys: Iterable[str]) -> Dict[str, Tuple[int, Optional[Document]]]:
        key_list = list(keys)
        stmt = select(LedgerRecord).where(LedgerRecord.key.in_(key_list))
        with self._guard("read"):
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                found = {record.key: record for record in result.scalars()}

        versions: Dict[str, Tuple[int, Optional[Document]]] = {}
        for key in key_list:
            record = found.get(key)
            if record is None:
                versions[key] = (MISSING_VERSION, None)
            else:
                versions[key] = (record.version, dict(record.document))
        return versions

    async def commit(self, expected: Dict[str, int], writes: Writes) -> None:
        now = datetime.datetime.now(datetime.timezone.utc)

        with self._guard("commit"):
            async with self.session_factory() as session:
                async with session.begin():
                    for key in sorted(writes):
                        version = expected.get(key, MISSING_VERSION)

                        if version == MISSING_VERSION:
                            session.add(LedgerRecord(
                                key=key,
                                version=1,
                                document=writes[key],
                                updated_at=now
                            ))
                            try:
                                await session.flush()
                            except IntegrityError as e:
                                raise ConflictError("record", key, cause=e) from e
                            continue

                        result = await session.execute(
                            update(LedgerRecord)
                            .where(LedgerRecord.key == key, LedgerRecord.version == version)
                            .values(version=version + 1, document=writes[key], updated_at=now)
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount != 1:
                            raise ConflictError("record", key)

        logger.debug(f"Committed {len(writes)} record(s)")
