"""Index module - search index bookkeeping and reconciliation.

This module provides:
- Data model: SearchIndex, SearchIndexItem and the canonical ContentRecord
- Reconciliation: lease-guarded, batched sync of records into a vector provider
- Administration: creating, activating, querying and deleting indexes

Public API is in `indexsync.index.ops`:
- SearchIndexService: index administration and search
- SearchIndexHandle: sync/query/delete/mark stale/status for one index

Internal implementations are in `indexsync.index._internal/`.
"""

from indexsync.index._internal.db import Database, Reconciler, SyncResult
from indexsync.index.models import (
    ContentRecord,
    IndexItemStatus,
    IndexStatus,
    RankedRecord,
    RecordStatus,
    SearchIndex,
    SearchIndexItem,
)
from indexsync.index.ops import SearchIndexHandle, SearchIndexService
from indexsync.index.records import CanonicalRecord, RecordStore, SqlRecordStore

__all__ = [
    # Database
    "Database",
    "Reconciler",
    "SyncResult",
    # Models
    "ContentRecord",
    "IndexItemStatus",
    "IndexStatus",
    "RankedRecord",
    "RecordStatus",
    "SearchIndex",
    "SearchIndexItem",
    # Records
    "CanonicalRecord",
    "RecordStore",
    "SqlRecordStore",
    # Operations
    "SearchIndexHandle",
    "SearchIndexService",
]
