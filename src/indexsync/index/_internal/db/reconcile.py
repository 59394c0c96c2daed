"""Reconciliation of canonical records against one search index.

The Reconciler makes a SearchIndex's item table and its vector provider agree
with the current set of ready canonical records:

1. Take the indexing lease (or back off if another sync holds it)
2. Sweep orphaned items (record deleted upstream) out of both stores
3. Discover work: ready records without an item, plus STALE items
4. Embed and upsert the work list in fixed-size batches
5. Recount INDEXED items, stamp last_indexed_at and release the lease

CRITICAL INVARIANT: every exit path releases the lease, so ``indexing`` never
stays set after sync() returns or raises.

Failure isolation:
- Provider deletes are best-effort: logged, database state still advances
- A failing batch is rolled back in both stores and the loop moves on; its
  records are rediscovered as new by the next sync
- A cancelled batch hands its claimed items back as STALE
- Anything else propagates after the lease is released
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog
from sqlmodel import col, func, select

from indexsync.core.errors import InternalError
from indexsync.core.logging import clear_run_id, set_run_id
from indexsync.index._internal.db.database import in_clause
from indexsync.index._internal.db.lease import (
    Clock,
    IndexingLease,
    acquire_lease,
    release_lease,
    renew_lease,
)
from indexsync.index.models import IndexItemStatus, SearchIndexItem, new_id
from indexsync.providers.base import EmbeddingDocument, IndexConfig, VectorProvider

if TYPE_CHECKING:
    from indexsync.index._internal.db.database import Database
    from indexsync.index.records import RecordStore

logger = structlog.get_logger()

DEFAULT_BATCH_SIZE = 50
DEFAULT_LEASE_TTL_SEC = 300.0


@dataclass
class SyncResult:
    """Result of a sync operation."""

    index_id: str
    skipped: bool = False
    orphans_removed: int = 0
    new_count: int = 0
    stale_count: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    indexed: int = 0
    missing_removed: int = 0
    rolled_back: int = 0
    indexed_count: int | None = None
    lease_lost: bool = False
    duration_ms: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def work_total(self) -> int:
        """Records considered for (re-)embedding."""
        return self.new_count + self.stale_count


class Reconciler:
    """Sync engine for a single index. Exclusivity comes from the indexing lease."""

    def __init__(
        self,
        db: Database,
        records: RecordStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        lease_ttl_sec: float = DEFAULT_LEASE_TTL_SEC,
        clock: Clock = time.time,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.db = db
        self.records = records
        self.batch_size = batch_size
        self.lease_ttl_sec = lease_ttl_sec
        self.clock = clock

    async def sync(
        self,
        index_id: str,
        provider: VectorProvider,
        config: IndexConfig,
    ) -> SyncResult:
        """
        Bring the index and its provider in line with the ready records.

        Returns immediately with ``skipped=True`` when another sync holds the
        lease. Batch failures are contained and reported in the result;
        other errors propagate once the lease has been released.

        Args:
            index_id: SearchIndex row id.
            provider: Vector provider backing the index.
            config: Provider config of the index.

        Returns:
            SyncResult with statistics about the run.
        """
        start_time = time.perf_counter()
        result = SyncResult(index_id=index_id)

        lease = acquire_lease(self.db, index_id, self.lease_ttl_sec, clock=self.clock)
        if lease is None:
            logger.info("sync_skipped_already_indexing", index_id=index_id)
            result.skipped = True
            return result

        set_run_id()
        log = logger.bind(index_id=index_id, lease_owner=lease.owner)
        released = False
        try:
            log.info("sync_started")

            result.orphans_removed = await self._delete_orphans(index_id, provider, config)

            new_ids = self.records.list_unindexed_ready_ids(index_id)
            stale_ids = self.records.list_stale_ids(index_id)
            result.new_count = len(new_ids)
            result.stale_count = len(stale_ids)

            work = list(dict.fromkeys([*new_ids, *stale_ids]))
            if not work:
                log.info("sync_no_work")
            else:
                log.info(
                    "sync_work_discovered",
                    total=len(work),
                    new=len(new_ids),
                    stale=len(stale_ids),
                )
                lease = await self._index_in_batches(work, index_id, provider, config, lease, result)

            if lease is None:
                result.lease_lost = True
                released = True
            else:
                result.indexed_count = self._count_indexed(index_id)
                released = release_lease(
                    self.db,
                    lease,
                    indexed_count=result.indexed_count,
                    last_indexed_at=self.clock(),
                )
        finally:
            if not released and lease is not None:
                release_lease(self.db, lease)
            result.duration_ms = (time.perf_counter() - start_time) * 1000
            log.info(
                "sync_finished",
                indexed=result.indexed,
                batches=result.batches_total,
                batches_failed=result.batches_failed,
                orphans_removed=result.orphans_removed,
                indexed_count=result.indexed_count,
                duration_ms=round(result.duration_ms, 1),
            )
            clear_run_id()

        return result

    # ------------------------------------------------------------------
    # Orphan cleanup
    # ------------------------------------------------------------------

    async def _delete_orphans(
        self, index_id: str, provider: VectorProvider, config: IndexConfig
    ) -> int:
        """Delete items whose record is gone, one batch at a time, until none remain."""
        removed = 0
        while True:
            stmt = (
                select(SearchIndexItem.id, SearchIndexItem.external_id)
                .where(SearchIndexItem.index_id == index_id)
                .where(col(SearchIndexItem.record_id).is_(None))
                .limit(self.batch_size)
            )
            with self.db.session() as session:
                rows = list(session.exec(stmt))
            if not rows:
                return removed

            item_ids = [row[0] for row in rows]
            external_ids = [row[1] for row in rows]
            logger.info("orphans_deleting", index_id=index_id, count=len(external_ids))

            await self._provider_delete(
                provider, external_ids, config, reason="orphan_cleanup", index_id=index_id
            )

            clause, params = in_clause("i", item_ids)
            with self.db.bulk_writer() as writer:
                deleted = writer.delete_where(SearchIndexItem, f"id IN {clause}", params)
            if deleted == 0:
                return removed
            removed += deleted
            logger.info("orphans_deleted", index_id=index_id, count=deleted)

    # ------------------------------------------------------------------
    # Batch processing
    # ------------------------------------------------------------------

    async def _index_in_batches(
        self,
        record_ids: list[str],
        index_id: str,
        provider: VectorProvider,
        config: IndexConfig,
        lease: IndexingLease,
        result: SyncResult,
    ) -> IndexingLease | None:
        """Process the work list sequentially. Returns the (renewed) lease, or
        None if it was lost to another sync."""
        total = (len(record_ids) + self.batch_size - 1) // self.batch_size
        result.batches_total = total

        for number, start in enumerate(range(0, len(record_ids), self.batch_size), start=1):
            batch = record_ids[start : start + self.batch_size]
            logger.info(
                "batch_processing",
                index_id=index_id,
                batch=number,
                batches=total,
                size=len(batch),
            )
            try:
                await self._process_batch(batch, index_id, provider, config, result)
            except Exception as e:
                result.batches_failed += 1
                result.errors.append(f"batch {number}: {e}")
                logger.error(
                    "batch_failed",
                    index_id=index_id,
                    batch=number,
                    size=len(batch),
                    error=str(e),
                    exc_info=True,
                )

            renewed = renew_lease(self.db, lease, self.lease_ttl_sec, clock=self.clock)
            if renewed is None:
                logger.error("indexing_lease_lost", index_id=index_id, batch=number)
                return None
            lease = renewed

        return lease

    async def _process_batch(
        self,
        record_ids: list[str],
        index_id: str,
        provider: VectorProvider,
        config: IndexConfig,
        result: SyncResult,
    ) -> None:
        """Embed one batch. Rolls the batch back in both stores on upsert failure.

        Records are resolved before their items are claimed: an item row cannot
        reference a record that has been hard-deleted.
        """
        records = self.records.get_records(record_ids)
        found_ids = [r.id for r in records]
        resolved = set(found_ids)
        missing_ids = [rid for rid in record_ids if rid not in resolved]

        if missing_ids:
            result.missing_removed += await self._drop_items_for_records(
                missing_ids, index_id, provider, config, reason="record_missing"
            )
            logger.info("missing_records_removed", index_id=index_id, count=len(missing_ids))

        if not records:
            return

        clause, params = in_clause("r", found_ids)
        params["index_id"] = index_id

        # Claim: new items are created INDEXING, existing (e.g. STALE) ones flip to INDEXING
        with self.db.bulk_writer() as writer:
            writer.insert_ignore_many(
                SearchIndexItem,
                [
                    {
                        "id": new_id(),
                        "index_id": index_id,
                        "external_id": record_id,
                        "record_id": record_id,
                        "status": IndexItemStatus.INDEXING.value,
                    }
                    for record_id in found_ids
                ],
            )
            writer.update_where(
                SearchIndexItem,
                {"status": IndexItemStatus.INDEXING.value},
                f"index_id = :index_id AND record_id IN {clause}",
                params,
            )

        external_ids = self._external_ids(index_id, found_ids)

        try:
            documents: list[EmbeddingDocument] = []
            for record in records:
                external_id = external_ids.get(record.id)
                if external_id is None:
                    raise InternalError.unexpected(
                        "index item external id not found", record_id=record.id
                    )
                documents.append(EmbeddingDocument(id=external_id, text=record.to_embedding_text()))

            await provider.embed_and_upsert(documents, config)

            # Items re-marked STALE while embedding keep their mark for the next pass
            with self.db.bulk_writer() as writer:
                result.indexed += writer.update_where(
                    SearchIndexItem,
                    {"status": IndexItemStatus.INDEXED.value},
                    f"index_id = :index_id AND status = :indexing AND record_id IN {clause}",
                    {**params, "indexing": IndexItemStatus.INDEXING.value},
                )
        except asyncio.CancelledError:
            # Claimed items go back to STALE so the next pass re-embeds them
            with self.db.bulk_writer() as writer:
                writer.update_where(
                    SearchIndexItem,
                    {"status": IndexItemStatus.STALE.value},
                    f"index_id = :index_id AND status = :indexing AND record_id IN {clause}",
                    {**params, "indexing": IndexItemStatus.INDEXING.value},
                )
            logger.warning("batch_cancelled", index_id=index_id, count=len(found_ids))
            raise
        except Exception:
            result.rolled_back += await self._drop_items_for_records(
                found_ids, index_id, provider, config, reason="batch_rollback"
            )
            raise

    async def _drop_items_for_records(
        self,
        record_ids: list[str],
        index_id: str,
        provider: VectorProvider,
        config: IndexConfig,
        *,
        reason: str,
    ) -> int:
        """Delete the items of ``record_ids`` from the provider (best-effort) and the table."""
        external_ids = list(self._external_ids(index_id, record_ids).values())
        if external_ids:
            await self._provider_delete(
                provider, external_ids, config, reason=reason, index_id=index_id
            )

        clause, params = in_clause("r", record_ids)
        params["index_id"] = index_id
        with self.db.bulk_writer() as writer:
            return writer.delete_where(
                SearchIndexItem,
                f"index_id = :index_id AND record_id IN {clause}",
                params,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _provider_delete(
        self,
        provider: VectorProvider,
        external_ids: Sequence[str],
        config: IndexConfig,
        *,
        reason: str,
        index_id: str,
    ) -> bool:
        """Best-effort provider delete. Failures are logged, never raised."""
        try:
            await provider.delete(list(external_ids), config)
        except Exception as e:
            logger.warning(
                "provider_delete_failed",
                index_id=index_id,
                reason=reason,
                count=len(external_ids),
                error=str(e),
            )
            return False
        return True

    def _external_ids(self, index_id: str, record_ids: list[str]) -> dict[str, str]:
        """Map record id -> external id for this index."""
        if not record_ids:
            return {}
        stmt = (
            select(SearchIndexItem.record_id, SearchIndexItem.external_id)
            .where(SearchIndexItem.index_id == index_id)
            .where(col(SearchIndexItem.record_id).in_(record_ids))
        )
        with self.db.session() as session:
            return {row[0]: row[1] for row in session.exec(stmt) if row[0] is not None}

    def _count_indexed(self, index_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(SearchIndexItem)
            .where(SearchIndexItem.index_id == index_id)
            .where(SearchIndexItem.status == IndexItemStatus.INDEXED.value)
        )
        with self.db.session() as session:
            return int(session.exec(stmt).one())
