"""High-level operations on search indexes.

This module is the entry point for everything outside the reconciliation
engine:

- SearchIndexHandle: one configured index bound to its vector provider
  (sync, query, delete, mark stale, status)
- SearchIndexService: administration of the index set (create, list, get,
  activate, delete) and search against the active index

Invariants enforced here:
- At most one index is active; activation swaps the flag inside a single
  BEGIN IMMEDIATE transaction
- Deleting an index removes the database row even if the provider fails to
  drop its external index
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import update
from sqlmodel import col, select

from indexsync.core.errors import ConfigError, ProviderError, SearchIndexNotFound
from indexsync.index._internal.db import Reconciler, SyncResult, in_clause
from indexsync.index._internal.db.reconcile import DEFAULT_BATCH_SIZE, DEFAULT_LEASE_TTL_SEC
from indexsync.index.models import (
    IndexItemStatus,
    IndexStatus,
    RankedRecord,
    SearchIndex,
    SearchIndexItem,
)

if TYPE_CHECKING:
    from indexsync.index._internal.db import Database
    from indexsync.index.records import RecordStore
    from indexsync.providers.base import VectorProvider
    from indexsync.providers.registry import ProviderEntry, ProviderRegistry

logger = structlog.get_logger()


class SearchIndexHandle:
    """A search index row bound to its provider, record store and reconciler."""

    def __init__(
        self,
        db: Database,
        index_id: str,
        entry: ProviderEntry,
        records: RecordStore,
        reconciler: Reconciler,
    ) -> None:
        self.db = db
        self.id = index_id
        self.entry = entry
        self.records = records
        self.reconciler = reconciler

    @property
    def provider(self) -> VectorProvider:
        return self.entry.provider

    def _row(self) -> SearchIndex:
        with self.db.session() as session:
            row = session.get(SearchIndex, self.id)
        if row is None:
            raise SearchIndexNotFound.for_id(self.id)
        return row

    def config(self) -> dict[str, Any]:
        """Provider config stored with the index."""
        return dict(self._row().get_config())

    async def sync(self) -> SyncResult:
        """Reconcile this index against the ready records."""
        return await self.reconciler.sync(self.id, self.provider, self.config())

    async def query(self, text: str, limit: int | None = None) -> list[RankedRecord]:
        """
        Search the index and resolve hits to canonical records.

        Hits whose record no longer resolves are dropped. Results are sorted by
        score descending; equal scores keep the provider's order.

        Args:
            text: Query text, embedded by the provider.
            limit: Overrides the provider's ``top_k`` for this query.

        Raises:
            ConfigError: If ``limit`` is below 1.
        """
        config = self.config()
        if limit is not None:
            if limit < 1:
                raise ConfigError.invalid_value("limit", limit, "must be >= 1")
            config["top_k"] = limit

        hits = await self.provider.embed_and_search(text, config)
        if not hits:
            return []

        by_id = {r.id: r for r in self.records.get_records([h.id for h in hits])}
        ranked = [
            RankedRecord.from_record(by_id[hit.id], hit.score) for hit in hits if hit.id in by_id
        ]
        dropped = len(hits) - len(ranked)
        if dropped:
            logger.debug("query_hits_unresolved", index_id=self.id, dropped=dropped)

        ranked.sort(key=lambda r: r.score, reverse=True)
        return ranked

    async def delete(self) -> None:
        """Drop the external index (best-effort), then delete the row and its items."""
        with self.db.session() as session:
            row = session.get(SearchIndex, self.id)
            config: Mapping[str, Any] = row.get_config() if row is not None else {}

        try:
            await self.provider.drop_index(config)
        except Exception as e:
            logger.warning(
                "provider_drop_index_failed",
                index_id=self.id,
                provider_id=self.entry.id,
                error=str(e),
            )

        with self.db.session() as session:
            row = session.get(SearchIndex, self.id)
            if row is not None:
                session.delete(row)
                session.commit()
        logger.info("search_index_deleted", index_id=self.id)

    def mark_records_as_stale(self, record_ids: Sequence[str]) -> int:
        """Flag this index's items for ``record_ids`` for re-embedding.

        Returns the number of items marked.
        """
        if not record_ids:
            return 0
        clause, params = in_clause("r", list(record_ids))
        params["index_id"] = self.id
        with self.db.bulk_writer() as writer:
            marked = writer.update_where(
                SearchIndexItem,
                {"status": IndexItemStatus.STALE.value},
                f"index_id = :index_id AND record_id IN {clause}",
                params,
            )
        logger.debug("records_marked_stale", index_id=self.id, count=marked)
        return marked

    def status(self) -> IndexStatus:
        """Fresh status snapshot from the database."""
        row = self._row()
        return IndexStatus(
            id=row.id,
            name=row.name,
            provider_id=row.provider_id,
            active=row.active,
            indexing=row.indexing,
            indexed_count=row.indexed_count,
            last_indexed_at=row.last_indexed_at,
        )

    def __repr__(self) -> str:
        return f"SearchIndexHandle(id={self.id!r}, provider={self.entry.id!r})"


class SearchIndexService:
    """Administration of search indexes."""

    def __init__(
        self,
        db: Database,
        registry: ProviderRegistry,
        records: RecordStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        lease_ttl_sec: float = DEFAULT_LEASE_TTL_SEC,
    ) -> None:
        self.db = db
        self.registry = registry
        self.records = records
        self.reconciler = Reconciler(
            db, records, batch_size=batch_size, lease_ttl_sec=lease_ttl_sec
        )
        self._background_tasks: set[asyncio.Task[None]] = set()

    def _handle(self, row: SearchIndex) -> SearchIndexHandle:
        entry = self.registry.get_or_raise(row.provider_id)
        return SearchIndexHandle(self.db, row.id, entry, self.records, self.reconciler)

    async def create_index(
        self,
        name: str,
        provider_id: str,
        config: Mapping[str, Any] | None = None,
        *,
        active: bool = False,
    ) -> SearchIndexHandle:
        """
        Create an index backed by ``provider_id``.

        Raises:
            ProviderError: If the provider is unknown or cannot embed natively.
            ConfigError: If the provider rejects ``config``.
        """
        entry = self.registry.get_or_raise(provider_id)
        if not entry.supports_embedding:
            raise ProviderError.native_embedding_not_supported(provider_id)
        stored = entry.provider.validate_config(config or {})

        row = SearchIndex(name=name, provider_id=provider_id, config_json=json.dumps(stored))
        with self.db.session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
        logger.info("search_index_created", index_id=row.id, provider_id=provider_id)

        if active:
            return await self.activate_index(row.id)
        return self._handle(row)

    def list_indexes(self) -> list[SearchIndexHandle]:
        """All indexes, the active one first, then most recently indexed."""
        stmt = select(SearchIndex).order_by(
            col(SearchIndex.active).desc(),
            col(SearchIndex.last_indexed_at).desc(),
            col(SearchIndex.created_at).desc(),
        )
        with self.db.session() as session:
            rows = list(session.exec(stmt))
        return [self._handle(row) for row in rows]

    def get_index(self, index_id: str) -> SearchIndexHandle | None:
        with self.db.session() as session:
            row = session.get(SearchIndex, index_id)
        return self._handle(row) if row is not None else None

    def get_index_or_raise(self, index_id: str) -> SearchIndexHandle:
        handle = self.get_index(index_id)
        if handle is None:
            raise SearchIndexNotFound.for_id(index_id)
        return handle

    def get_active_index(self) -> SearchIndexHandle | None:
        stmt = select(SearchIndex).where(SearchIndex.active == True)  # noqa: E712
        with self.db.session() as session:
            row = session.exec(stmt).first()
        return self._handle(row) if row is not None else None

    async def activate_index(self, index_id: str) -> SearchIndexHandle:
        """
        Make ``index_id`` the only active index and start a background sync.

        The sync runs detached; its failures are logged, never raised here.

        Raises:
            SearchIndexNotFound: If the index does not exist.
        """
        with self.db.immediate_transaction() as session:
            if session.get(SearchIndex, index_id) is None:
                raise SearchIndexNotFound.for_id(index_id)
            session.execute(
                update(SearchIndex)
                .where(col(SearchIndex.active) == True)  # noqa: E712
                .values(active=False)
            )
            session.execute(
                update(SearchIndex).where(col(SearchIndex.id) == index_id).values(active=True)
            )
        logger.info("search_index_activated", index_id=index_id)

        task = asyncio.create_task(self._sync_after_activation())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

        return self.get_index_or_raise(index_id)

    async def _sync_after_activation(self) -> None:
        try:
            handle = self.get_active_index()
            if handle is not None:
                await handle.sync()
        except Exception as e:
            logger.error("activation_sync_failed", error=str(e), exc_info=True)

    async def delete_index(self, index_id: str) -> None:
        handle = self.get_index_or_raise(index_id)
        await handle.delete()

    async def search(self, text: str, limit: int | None = None) -> list[RankedRecord]:
        """Query the active index. No active index means no results."""
        handle = self.get_active_index()
        if handle is None:
            return []
        return await handle.query(text, limit)

    async def wait_background(self) -> None:
        """Wait for detached activation syncs to finish."""
        tasks = list(self._background_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def cancel_background(self) -> None:
        """Cancel detached activation syncs and wait for them to unwind."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
