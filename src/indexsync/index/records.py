"""Canonical record store.

The reconciliation engine reads canonical records through ``RecordStore``
and never mutates them. ``SqlRecordStore`` serves ``ContentRecord`` rows that
live in the same SQLite database as the index bookkeeping tables, so work
discovery is a single anti-join.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import exists
from sqlmodel import col, select

from indexsync.index.models import (
    ContentRecord,
    IndexItemStatus,
    RecordStatus,
    SearchIndexItem,
)

if TYPE_CHECKING:
    from indexsync.index._internal.db.database import Database


class CanonicalRecord(Protocol):
    """Anything with an id, display fields, a readiness predicate and embeddable text."""

    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def mime_type(self) -> str | None: ...

    def get_tags(self) -> list[str]: ...

    @property
    def is_ready(self) -> bool: ...

    def to_embedding_text(self) -> str: ...


class RecordStore(Protocol):
    """Read access to canonical records, as seen from one index."""

    def list_unindexed_ready_ids(self, index_id: str) -> list[str]:
        """Ready records that have no index item for ``index_id``."""
        ...

    def list_stale_ids(self, index_id: str) -> list[str]:
        """Record ids of STALE items of ``index_id`` whose record still exists."""
        ...

    def get_records(self, ids: Sequence[str]) -> list[CanonicalRecord]:
        """Bulk fetch. Ids that do not resolve to a ready record are omitted."""
        ...


class SqlRecordStore:
    """RecordStore over the ``content_record`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # RecordStore
    # ------------------------------------------------------------------

    def list_unindexed_ready_ids(self, index_id: str) -> list[str]:
        has_item = exists().where(
            col(SearchIndexItem.record_id) == ContentRecord.id,
            col(SearchIndexItem.index_id) == index_id,
        )
        stmt = (
            select(ContentRecord.id)
            .where(ContentRecord.status == RecordStatus.READY.value)
            .where(col(ContentRecord.deleted_at).is_(None))
            .where(~has_item)
            .order_by(col(ContentRecord.created_at))
        )
        with self.db.session() as session:
            return list(session.exec(stmt))

    def list_stale_ids(self, index_id: str) -> list[str]:
        stmt = (
            select(SearchIndexItem.record_id)
            .where(SearchIndexItem.index_id == index_id)
            .where(SearchIndexItem.status == IndexItemStatus.STALE.value)
            .where(col(SearchIndexItem.record_id).is_not(None))
        )
        with self.db.session() as session:
            return [rid for rid in session.exec(stmt) if rid is not None]

    def get_records(self, ids: Sequence[str]) -> list[CanonicalRecord]:
        if not ids:
            return []
        stmt = (
            select(ContentRecord)
            .where(col(ContentRecord.id).in_(list(ids)))
            .where(ContentRecord.status == RecordStatus.READY.value)
            .where(col(ContentRecord.deleted_at).is_(None))
        )
        with self.db.session() as session:
            return list(session.exec(stmt))

    # ------------------------------------------------------------------
    # Record maintenance (callers publish the matching events)
    # ------------------------------------------------------------------

    def add_record(
        self,
        name: str,
        body: str = "",
        *,
        mime_type: str | None = None,
        tags: list[str] | None = None,
        ready: bool = True,
        record_id: str | None = None,
    ) -> ContentRecord:
        record = ContentRecord(
            name=name,
            body=body,
            mime_type=mime_type,
            status=(RecordStatus.READY if ready else RecordStatus.PENDING).value,
        )
        if record_id is not None:
            record.id = record_id
        record.set_tags(tags or [])
        with self.db.session() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        return record

    def update_record(
        self,
        record_id: str,
        *,
        name: str | None = None,
        body: str | None = None,
        tags: list[str] | None = None,
        status: RecordStatus | None = None,
    ) -> ContentRecord | None:
        with self.db.session() as session:
            record = session.get(ContentRecord, record_id)
            if record is None:
                return None
            if name is not None:
                record.name = name
            if body is not None:
                record.body = body
            if tags is not None:
                record.set_tags(tags)
            if status is not None:
                record.status = status.value
            record.updated_at = time.time()
            session.add(record)
            session.commit()
            session.refresh(record)
            return record

    def delete_record(self, record_id: str) -> bool:
        """Hard delete. Index items pointing at the record become orphans."""
        with self.db.session() as session:
            record = session.get(ContentRecord, record_id)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True
