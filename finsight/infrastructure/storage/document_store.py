"""
Document store interface and the SQL implementation.

Records are plain dicts. Every stored record carries ``id``, ``version``,
``createdAt`` and ``updatedAt``; ``version`` starts at 1 and is bumped by
each update, so callers can make writes conditional on the version they read.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from finsight.config.constants import ErrorCode
from finsight.config.settings import Settings
from finsight.errors import ConcurrencyConflict, NotFound, UpstreamError, ValidationError
from finsight.infrastructure.storage.models import Base, DocumentRecord

logger = logging.getLogger(__name__)

QueryOperator = Literal["==", "!=", "<", "<=", ">", ">=", "in", "not-in"]
SortDirection = Literal["asc", "desc"]

# Fields owned by the store; callers cannot overwrite them
MANAGED_FIELDS = frozenset({"id", "version", "createdAt", "updatedAt"})

# Unversioned updates re-read and retry this many times on a lost race
_UNCONDITIONAL_UPDATE_ATTEMPTS = 5


@dataclass(frozen=True)
class QueryCondition:
    """A single ``field op value`` filter."""

    field: str
    op: QueryOperator
    value: Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_document_id() -> str:
    return uuid.uuid4().hex


def strip_managed(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if k not in MANAGED_FIELDS}


class DocumentStore(Protocol):
    """Async document store used by the pipeline and the API."""

    async def create(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> dict[str, Any]: ...

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]: ...

    async def delete(self, collection: str, doc_id: str) -> bool: ...

    async def query(
        self,
        collection: str,
        conditions: list[QueryCondition] | tuple[QueryCondition, ...] = (),
        order_by: str | None = None,
        direction: SortDirection = "asc",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]: ...

    async def close(self) -> None: ...


def _json_expression(field: str, value: Any):
    """Typed accessor for a top-level JSON field, chosen from the compared value."""
    element = DocumentRecord.data[field]
    sample = value[0] if isinstance(value, (list, tuple)) and value else value
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, int):
        return element.as_integer()
    if isinstance(sample, float):
        return element.as_float()
    return element.as_string()


def _column_for(field: str, value: Any = None):
    if field == "id":
        return DocumentRecord.id
    if field == "createdAt":
        return DocumentRecord.created_at
    if field == "updatedAt":
        return DocumentRecord.updated_at
    if field == "version":
        return DocumentRecord.version
    return _json_expression(field, value)


def _clause(condition: QueryCondition):
    column = _column_for(condition.field, condition.value)
    op, value = condition.op, condition.value
    if op == "==":
        return column.is_(None) if value is None else column == value
    if op == "!=":
        return column.is_not(None) if value is None else column != value
    if op == "<":
        return column < value
    if op == "<=":
        return column <= value
    if op == ">":
        return column > value
    if op == ">=":
        return column >= value
    if op == "in":
        return column.in_(list(value))
    if op == "not-in":
        return column.not_in(list(value))
    raise ValidationError(f"Unsupported query operator: {op}")


class SQLDocumentStore:
    """SQLAlchemy-backed :class:`DocumentStore`.

    Conditional updates are a single ``UPDATE ... WHERE version = :expected``;
    a zero row count means the record changed (or vanished) since it was read.
    """

    def __init__(self, settings: Settings, engine: AsyncEngine | None = None):
        self.settings = settings
        self._engine = engine or create_async_engine(
            settings.database_url,
            echo=settings.database_echo,
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init(self) -> None:
        """Create the document table if it does not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Document store initialised")

    async def create(
        self, collection: str, data: dict[str, Any], doc_id: str | None = None
    ) -> dict[str, Any]:
        now = utc_now_iso()
        record = DocumentRecord(
            collection=collection,
            id=doc_id or new_document_id(),
            version=1,
            created_at=now,
            updated_at=now,
            data=strip_managed(data),
        )
        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
        except IntegrityError as e:
            raise ConcurrencyConflict(
                f"Document {collection}/{record.id} already exists",
                details={"collection": collection, "id": record.id},
            ) from e
        except SQLAlchemyError as e:
            raise UpstreamError(
                f"Failed to create document in {collection}", code=ErrorCode.STORAGE_ERROR
            ) from e
        return record.to_document()

    async def _load(self, session: AsyncSession, collection: str, doc_id: str) -> DocumentRecord | None:
        stmt = select(DocumentRecord).where(
            DocumentRecord.collection == collection, DocumentRecord.id == doc_id
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        try:
            async with self._session_factory() as session:
                record = await self._load(session, collection, doc_id)
        except SQLAlchemyError as e:
            raise UpstreamError(
                f"Failed to read {collection}/{doc_id}", code=ErrorCode.STORAGE_ERROR
            ) from e
        return record.to_document() if record else None

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        changes = strip_managed(fields)
        attempts = 1 if expected_version is not None else _UNCONDITIONAL_UPDATE_ATTEMPTS
        try:
            for _ in range(attempts):
                async with self._session_factory() as session:
                    record = await self._load(session, collection, doc_id)
                    if record is None:
                        raise NotFound(f"Document {collection}/{doc_id} not found")
                    if expected_version is not None and record.version != expected_version:
                        raise ConcurrencyConflict(
                            f"Version mismatch on {collection}/{doc_id}",
                            details={"expected": expected_version, "actual": record.version},
                        )
                    read_version = record.version
                    merged = {**record.data, **changes}
                    now = utc_now_iso()
                    stmt = (
                        update(DocumentRecord)
                        .where(
                            DocumentRecord.collection == collection,
                            DocumentRecord.id == doc_id,
                            DocumentRecord.version == read_version,
                        )
                        .values(data=merged, version=read_version + 1, updated_at=now)
                    )
                    result = await session.execute(stmt)
                    await session.commit()
                    if result.rowcount == 1:
                        return {
                            **merged,
                            "id": doc_id,
                            "version": read_version + 1,
                            "createdAt": record.created_at,
                            "updatedAt": now,
                        }
        except SQLAlchemyError as e:
            raise UpstreamError(
                f"Failed to update {collection}/{doc_id}", code=ErrorCode.STORAGE_ERROR
            ) from e

        raise ConcurrencyConflict(
            f"Concurrent update on {collection}/{doc_id}",
            details={"expected": expected_version},
        )

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(DocumentRecord).where(
                        DocumentRecord.collection == collection, DocumentRecord.id == doc_id
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise UpstreamError(
                f"Failed to delete {collection}/{doc_id}", code=ErrorCode.STORAGE_ERROR
            ) from e
        return result.rowcount > 0

    async def query(
        self,
        collection: str,
        conditions: list[QueryCondition] | tuple[QueryCondition, ...] = (),
        order_by: str | None = None,
        direction: SortDirection = "asc",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        stmt = select(DocumentRecord).where(DocumentRecord.collection == collection)
        for condition in conditions:
            stmt = stmt.where(_clause(condition))
        if order_by:
            column = _column_for(order_by)
            stmt = stmt.order_by(column.desc() if direction == "desc" else column.asc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                records = result.scalars().all()
        except SQLAlchemyError as e:
            raise UpstreamError(f"Failed to query {collection}", code=ErrorCode.STORAGE_ERROR) from e
        return [record.to_document() for record in records]

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Document store engine disposed")
