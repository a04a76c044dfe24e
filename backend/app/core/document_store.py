"""Transactional document store supporting multiple backends.

Supports: in-process memory (development, tests) and SQL via SQLAlchemy.

Documents live at slash separated paths with an even number of segments
(``accounts/a1/invoices/i9``); collections have an odd number of segments
(``accounts/a1/invoices``). All writes default to merges: nested maps are
merged key by key, so two writers touching different fields of the same
document never clobber each other. Each write is atomic per document.
"""

import copy
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import DateTime, JSON, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.config import settings
from app.core.database import Base, create_engine, create_session_maker


_DATETIME_TAG = "$datetime"

# Receives the current data (None when missing); returns a patch or None
UpdateFn = Callable[[Optional[dict]], Optional[dict]]


@dataclass
class Document:
    """A stored document with its path."""
    path: str
    data: dict

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def parent_path(self) -> str:
        return self.path.rsplit("/", 1)[0]

    @property
    def segments(self) -> list[str]:
        return self.path.split("/")


def _split(path: str) -> list[str]:
    segments = [s for s in path.strip("/").split("/") if s]
    if not segments:
        raise ValueError("Empty document path")
    return segments


def validate_document_path(path: str) -> str:
    """Normalize a document path, rejecting collection paths."""
    segments = _split(path)
    if len(segments) % 2 != 0:
        raise ValueError(f"Not a document path: {path}")
    return "/".join(segments)


def validate_collection_path(path: str) -> str:
    """Normalize a collection path, rejecting document paths."""
    segments = _split(path)
    if len(segments) % 2 != 1:
        raise ValueError(f"Not a collection path: {path}")
    return "/".join(segments)


def deep_merge(base: dict, patch: dict) -> dict:
    """Merge ``patch`` into a copy of ``base``, recursing into nested maps."""
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _matches(op: str, actual: Any, expected: Any) -> bool:
    if actual is None:
        return op == "==" and expected is None
    try:
        if op == "==":
            return actual == expected
        if op == "!=":
            return actual != expected
        if op == "<":
            return actual < expected
        if op == "<=":
            return actual <= expected
        if op == ">":
            return actual > expected
        if op == ">=":
            return actual >= expected
    except TypeError:
        return False
    raise ValueError(f"Unsupported query operator: {op}")


class DocumentStore(ABC):
    """Abstract base class for document store backends."""

    @abstractmethod
    async def get(self, path: str) -> Optional[dict]:
        """Get a document's data, or None if it does not exist."""
        pass

    @abstractmethod
    async def set(self, path: str, data: dict, merge: bool = True) -> None:
        """Write a document; merges into existing data unless merge is False."""
        pass

    @abstractmethod
    async def update(self, path: str, fn: UpdateFn) -> Optional[dict]:
        """Read a document, derive a patch from it and merge the patch, atomically.

        ``fn`` sees the data as stored at the moment of the write and may
        return None to leave the document untouched. No other write to the
        same document can land between the read and the merge.

        Returns:
            The document's data after the call, or None if it does not exist
        """
        pass

    @abstractmethod
    async def add(self, collection: str, data: dict) -> str:
        """Create a document with a generated id and return the id."""
        pass

    @abstractmethod
    async def query(
        self,
        collection_group: str,
        field: str,
        op: str,
        value: Any,
        parent_path: Optional[str] = None,
    ) -> list[Document]:
        """Find documents in every collection named ``collection_group``
        whose ``field`` satisfies ``op value``, optionally only those
        directly under ``parent_path``."""
        pass

    @staticmethod
    def generate_id() -> str:
        return uuid.uuid4().hex[:20]


class MemoryDocumentStore(DocumentStore):
    """In-process document store.

    Each operation completes without awaiting, so writes are atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self):
        self._documents: dict[str, dict] = {}

    async def get(self, path: str) -> Optional[dict]:
        data = self._documents.get(validate_document_path(path))
        return copy.deepcopy(data) if data is not None else None

    async def set(self, path: str, data: dict, merge: bool = True) -> None:
        path = validate_document_path(path)
        existing = self._documents.get(path)
        if merge and existing is not None:
            self._documents[path] = deep_merge(existing, data)
        else:
            self._documents[path] = copy.deepcopy(data)

    async def update(self, path: str, fn: UpdateFn) -> Optional[dict]:
        path = validate_document_path(path)
        existing = self._documents.get(path)
        patch = fn(copy.deepcopy(existing) if existing is not None else None)
        if patch is not None:
            self._documents[path] = deep_merge(existing or {}, patch)
        data = self._documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    async def add(self, collection: str, data: dict) -> str:
        collection = validate_collection_path(collection)
        doc_id = self.generate_id()
        await self.set(f"{collection}/{doc_id}", data, merge=False)
        return doc_id

    async def query(
        self,
        collection_group: str,
        field: str,
        op: str,
        value: Any,
        parent_path: Optional[str] = None,
    ) -> list[Document]:
        parent = validate_collection_path(parent_path) if parent_path else None
        results = []
        for path, data in self._documents.items():
            segments = path.split("/")
            if segments[-2] != collection_group:
                continue
            if parent is not None and "/".join(segments[:-1]) != parent:
                continue
            if _matches(op, data.get(field), value):
                results.append(Document(path=path, data=copy.deepcopy(data)))
        return sorted(results, key=lambda d: d.path)


class StoredDocument(Base):
    """Row holding one document of the SQL backend."""

    __tablename__ = "documents"

    path: Mapped[str] = mapped_column(String(512), primary_key=True)
    collection_group: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    parent_path: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


def encode_value(value: Any) -> Any:
    """Encode datetimes so a document survives a JSON column."""
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Inverse of encode_value."""
    if isinstance(value, dict):
        if set(value) == {_DATETIME_TAG}:
            return datetime.fromisoformat(value[_DATETIME_TAG])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


class SqlDocumentStore(DocumentStore):
    """Document store on a single SQL table.

    Merges read the row under a row lock and write it back in the same
    transaction.
    """

    MAX_WRITE_ATTEMPTS = 3

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "SqlDocumentStore":
        return cls(create_session_maker(engine))

    async def create_schema(self, engine: AsyncEngine) -> None:
        """Create the documents table (development and tests)."""
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def get(self, path: str) -> Optional[dict]:
        path = validate_document_path(path)
        async with self.session_maker() as session:
            row = await session.get(StoredDocument, path)
            return decode_value(row.data) if row is not None else None

    async def set(self, path: str, data: dict, merge: bool = True) -> None:
        await self._write_with_retry(validate_document_path(path), lambda current: data, merge)

    async def update(self, path: str, fn: UpdateFn) -> Optional[dict]:
        return await self._write_with_retry(validate_document_path(path), fn, merge=True)

    async def _write_with_retry(self, path: str, fn: UpdateFn, merge: bool) -> Optional[dict]:
        for attempt in range(1, self.MAX_WRITE_ATTEMPTS + 1):
            try:
                return await self._write(path, fn, merge)
            except IntegrityError:
                # Concurrent first write to the same path; retry as a merge
                if attempt == self.MAX_WRITE_ATTEMPTS:
                    raise

    async def _write(self, path: str, fn: UpdateFn, merge: bool) -> Optional[dict]:
        # fn runs under the row lock, so it sees the latest committed data
        async with self.session_maker() as session:
            async with session.begin():
                row = await session.get(StoredDocument, path, with_for_update=True)
                current = decode_value(row.data) if row is not None else None
                patch = fn(copy.deepcopy(current) if current is not None else None)
                if patch is None:
                    return current
                if row is None:
                    segments = path.split("/")
                    session.add(StoredDocument(
                        path=path,
                        collection_group=segments[-2],
                        parent_path="/".join(segments[:-1]),
                        data=encode_value(patch),
                    ))
                    return copy.deepcopy(patch)
                data = deep_merge(current, patch) if merge else copy.deepcopy(patch)
                row.data = encode_value(data)
                return data

    async def add(self, collection: str, data: dict) -> str:
        collection = validate_collection_path(collection)
        doc_id = self.generate_id()
        await self.set(f"{collection}/{doc_id}", data, merge=False)
        return doc_id

    async def query(
        self,
        collection_group: str,
        field: str,
        op: str,
        value: Any,
        parent_path: Optional[str] = None,
    ) -> list[Document]:
        statement = select(StoredDocument).where(StoredDocument.collection_group == collection_group)
        if parent_path:
            statement = statement.where(
                StoredDocument.parent_path == validate_collection_path(parent_path)
            )
        if op == "==" and isinstance(value, str):
            # Tagged datetimes and nested maps still go through _matches below
            statement = statement.where(StoredDocument.data[field].as_string() == value)

        async with self.session_maker() as session:
            result = await session.execute(statement.order_by(StoredDocument.path))
            rows = result.scalars().all()

        documents = []
        for row in rows:
            data = decode_value(row.data)
            if _matches(op, data.get(field), value):
                documents.append(Document(path=row.path, data=data))
        return documents


_store: Optional[DocumentStore] = None


def get_document_store() -> DocumentStore:
    """Get the configured document store instance."""
    global _store
    if _store is None:
        backend = settings.DOCUMENT_STORE_BACKEND.lower()
        if backend == "memory":
            _store = MemoryDocumentStore()
        elif backend == "sql":
            _store = SqlDocumentStore.from_engine(create_engine())
        else:
            raise ValueError(f"Unsupported document store backend: {backend}")
    return _store
