"""Database layer for the index."""

from indexsync.index._internal.db.database import BulkWriter, Database, in_clause
from indexsync.index._internal.db.indexes import create_additional_indexes
from indexsync.index._internal.db.lease import (
    IndexingLease,
    acquire_lease,
    release_lease,
    renew_lease,
)
from indexsync.index._internal.db.reconcile import Reconciler, SyncResult

__all__ = [
    "Database",
    "BulkWriter",
    "in_clause",
    "create_additional_indexes",
    "IndexingLease",
    "acquire_lease",
    "renew_lease",
    "release_lease",
    "Reconciler",
    "SyncResult",
]
