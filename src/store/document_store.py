"""
Document Store - single-call atomic access to the workspace collections.

Every public method runs in its own transaction (``session_scope``). There is
no multi-statement transaction across calls: callers that chain writes must
be idempotent or clean up after themselves.

Rows returned from reads are detached snapshots. Changing an attribute on a
returned row never writes anything; use ``patch`` for that.

A dry-run store keeps its skipped patches and deletes in memory and lays them
over every read, so later steps see the state a real run would have produced.
Dry-run inserts are not visible to reads.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.db.database import get_session_factory, session_scope
from src.db.models import Base, new_id

ModelT = TypeVar("ModelT", bound=Base)


class StoreError(Exception):
    """Raised when the underlying database rejects a call."""


class StoreReadError(StoreError):
    """A read (get, collect, query) failed."""


class StoreWriteError(StoreError):
    """An insert, patch or delete failed."""


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DocumentStore:
    """
    Thin gateway over the SQLAlchemy session with document-store semantics.

    In dry-run mode writes are logged and skipped; ``insert`` still hands back
    a fresh id so callers can keep building remap tables, and patched or
    deleted records read back as if the write had happened.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        dry_run: bool = False,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self.dry_run = dry_run
        # (table, id) -> fields patched during a dry run
        self._pending: dict[tuple[str, str], dict[str, Any]] = {}
        self._deleted: set[tuple[str, str]] = set()

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, model: type[ModelT], record_id: str | None) -> ModelT | None:
        """Fetch one record by id, or None if it does not exist."""
        if not record_id:
            return None
        try:
            with session_scope(self._session_factory) as session:
                record = session.get(model, record_id)
        except SQLAlchemyError as e:
            raise StoreReadError(f"get {model.__tablename__}/{record_id} failed: {e}") from e
        if record is None or not self._overlaid(model):
            return record
        visible = self._apply_pending(model, [record])
        return visible[0] if visible else None

    def collect(self, model: type[ModelT]) -> list[ModelT]:
        """Full collection scan."""
        return self.query(model)

    def query(
        self,
        model: type[ModelT],
        order_by: Sequence[str] | str | None = None,
        **equals: Any,
    ) -> list[ModelT]:
        """Return every record whose fields equal the given values.

        ``None`` values match NULL columns.
        """
        overlaid = self._overlaid(model)
        names = [] if not order_by else [order_by] if isinstance(order_by, str) else list(order_by)
        stmt = select(model)
        # Pending dry-run patches can change which rows match, so filter after applying them.
        if not overlaid:
            for field, value in equals.items():
                column = getattr(model, field)
                stmt = stmt.where(column.is_(None) if value is None else column == value)
        if names:
            stmt = stmt.order_by(*(getattr(model, name) for name in names))
        try:
            with session_scope(self._session_factory) as session:
                rows = list(session.scalars(stmt).all())
        except SQLAlchemyError as e:
            raise StoreReadError(f"query {model.__tablename__} {equals} failed: {e}") from e
        if not overlaid:
            return rows

        rows = [
            row
            for row in self._apply_pending(model, rows)
            if all(
                getattr(row, field) is None if value is None else getattr(row, field) == value
                for field, value in equals.items()
            )
        ]
        if names:
            rows.sort(key=lambda row: tuple((getattr(row, n) is None, getattr(row, n)) for n in names))
        return rows

    def first(self, model: type[ModelT], **equals: Any) -> ModelT | None:
        """First record matching ``equals`` (no ordering guarantee)."""
        rows = self.query(model, **equals)
        return rows[0] if rows else None

    # =========================================================================
    # WRITES
    # =========================================================================

    def insert(self, model: type[ModelT], **fields: Any) -> str:
        """Insert a record and return its generated id."""
        record_id = fields.pop("id", None) or new_id()
        if self.dry_run:
            logger.debug(f"[dry-run] insert {model.__tablename__}/{record_id}")
            return record_id
        try:
            with session_scope(self._session_factory) as session:
                session.add(model(id=record_id, **fields))
        except SQLAlchemyError as e:
            raise StoreWriteError(f"insert into {model.__tablename__} failed: {e}") from e
        return record_id

    def patch(self, model: type[ModelT], record_id: str, **fields: Any) -> None:
        """Update the given fields of an existing record."""
        if self.dry_run:
            logger.debug(f"[dry-run] patch {model.__tablename__}/{record_id}: {sorted(fields)}")
            self._pending.setdefault((model.__tablename__, record_id), {}).update(fields)
            return
        try:
            with session_scope(self._session_factory) as session:
                record = session.get(model, record_id)
                if record is None:
                    raise StoreWriteError(f"patch {model.__tablename__}/{record_id}: no such record")
                for field, value in fields.items():
                    setattr(record, field, value)
        except SQLAlchemyError as e:
            raise StoreWriteError(f"patch {model.__tablename__}/{record_id} failed: {e}") from e

    def delete(self, model: type[ModelT], record_id: str) -> None:
        """Delete a record. Deleting a missing record is a no-op."""
        if self.dry_run:
            logger.debug(f"[dry-run] delete {model.__tablename__}/{record_id}")
            self._deleted.add((model.__tablename__, record_id))
            return
        try:
            with session_scope(self._session_factory) as session:
                record = session.get(model, record_id)
                if record is not None:
                    session.delete(record)
        except SQLAlchemyError as e:
            raise StoreWriteError(f"delete {model.__tablename__}/{record_id} failed: {e}") from e

    # =========================================================================
    # DRY-RUN OVERLAY
    # =========================================================================

    def _overlaid(self, model: type[Base]) -> bool:
        table = model.__tablename__
        return any(key[0] == table for key in self._pending) or any(
            key[0] == table for key in self._deleted
        )

    def _apply_pending(self, model: type[ModelT], rows: list[ModelT]) -> list[ModelT]:
        """Drop dry-run deletes and set dry-run patches on detached ``rows``."""
        table = model.__tablename__
        visible = []
        for row in rows:
            key = (table, row.id)
            if key in self._deleted:
                continue
            for field, value in self._pending.get(key, {}).items():
                setattr(row, field, value)
            visible.append(row)
        return visible
