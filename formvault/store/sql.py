"""Database-backed DocumentStore using SQLAlchemy.

All collections share one ``documents`` table. The document itself lives in a
JSON column; the columns next to it exist for lookups and ordering:

- ``seq``: autoincrement primary key, the insertion order used to break sort ties
- ``id``: the document id (unique across collections)
- ``collection`` / ``scope_id``: where the document belongs
- ``created_at`` / ``updated_at`` / ``revision``: copies of the document fields

Filtering, sorting and pagination run in the shared DocumentStore code over
the rows of one collection (and scope), so results match the flat-file backend
exactly.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from sqlalchemy import JSON, Integer, String, create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from formvault.errors import StorageError
from formvault.store.base import DocumentStore

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for formvault tables."""


class DocumentRow(Base):
    __tablename__ = "documents"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    collection: Mapped[str] = mapped_column(String(64), index=True)
    scope_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[str] = mapped_column(String(40))
    updated_at: Mapped[str] = mapped_column(String(40))
    revision: Mapped[int] = mapped_column(Integer, default=1)

    body: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)


class SQLDocumentStore(DocumentStore):
    """DocumentStore backed by a relational database.

    Attributes:
        engine: SQLAlchemy engine the ``documents`` table lives in
    """

    def __init__(self, engine: Engine, scopes: Optional[Mapping[str, str]] = None) -> None:
        super().__init__(scopes)
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            logger.error("Failed to create document tables: %s", exc)
            raise StorageError("Failed to initialize document tables") from exc

    @classmethod
    def from_url(cls, url: str, scopes: Optional[Mapping[str, str]] = None, **engine_options: Any) -> "SQLDocumentStore":
        """Build a store from a database URL.

        SQLite connections may be shared across threads; an in-memory SQLite
        database is pinned to a single connection so every session sees it.
        """
        if url.startswith("sqlite"):
            engine_options.setdefault("connect_args", {"check_same_thread": False})
            if url in ("sqlite://", "sqlite:///:memory:"):
                engine_options.setdefault("poolclass", StaticPool)
        else:
            engine_options.setdefault("pool_pre_ping", True)
            engine_options.setdefault("pool_recycle", 3600)
        return cls(create_engine(url, **engine_options), scopes)

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        session = self._sessions()
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.error("Failed to %s: %s", action, exc)
            raise StorageError(f"Failed to {action}") from exc
        finally:
            session.close()

    def _select(self, collection: str, scope: Optional[str]):
        query = select(DocumentRow).where(DocumentRow.collection == collection)
        if scope is not None:
            query = query.where(DocumentRow.scope_id == scope)
        return query

    # -- primitives ---------------------------------------------------------

    def _read(self, collection: str, doc_id: str, scope: Optional[str]) -> Optional[Dict[str, Any]]:
        with self._session(f"read {collection}/{doc_id}") as session:
            row = session.scalars(
                self._select(collection, scope).where(DocumentRow.id == doc_id)
            ).first()
            return dict(row.body) if row is not None else None

    def _write(self, collection: str, document: Dict[str, Any], scope: Optional[str]) -> None:
        with self._session(f"write {collection}/{document['id']}") as session:
            row = session.scalars(
                select(DocumentRow).where(DocumentRow.id == document["id"])
            ).first()
            if row is None:
                row = DocumentRow(id=document["id"], collection=collection, scope_id=scope)
                session.add(row)
            row.created_at = document["createdAt"]
            row.updated_at = document["updatedAt"]
            row.revision = document.get("revision", 1)
            row.body = dict(document)

    def _remove(self, collection: str, doc_id: str, scope: Optional[str]) -> bool:
        with self._session(f"delete {collection}/{doc_id}") as session:
            query = delete(DocumentRow).where(
                DocumentRow.collection == collection, DocumentRow.id == doc_id
            )
            if scope is not None:
                query = query.where(DocumentRow.scope_id == scope)
            result = session.execute(query)
            return result.rowcount > 0

    def _scan(self, collection: str, scope: Optional[str]) -> List[Dict[str, Any]]:
        with self._session(f"list {collection}") as session:
            rows = session.scalars(self._select(collection, scope).order_by(DocumentRow.seq))
            return [dict(row.body) for row in rows]


__all__ = [
    "Base",
    "DocumentRow",
    "SQLDocumentStore",
]
