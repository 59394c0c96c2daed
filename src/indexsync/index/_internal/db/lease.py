"""Indexing lease for per-index sync exclusivity.

The ``indexing`` flag on a SearchIndex row is backed by a lease: the owner id
and an expiry timestamp are written together with the flag in a single
BEGIN IMMEDIATE transaction. A sync that finds the flag set with an unexpired
lease backs off. A lease whose expiry has passed belongs to a process that
died mid-sync and is reclaimed. A flag set without any expiry (set by hand)
is treated as held until cleared.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from sqlalchemy import update
from sqlmodel import col

from indexsync.core.errors import SearchIndexNotFound
from indexsync.index.models import SearchIndex

if TYPE_CHECKING:
    from indexsync.index._internal.db.database import Database

logger = structlog.get_logger()

Clock = Callable[[], float]


@dataclass(frozen=True)
class IndexingLease:
    """A held indexing lease."""

    index_id: str
    owner: str
    expires_at: float


def new_owner_id() -> str:
    return uuid4().hex[:12]


def acquire_lease(
    db: Database,
    index_id: str,
    ttl_sec: float,
    *,
    owner: str | None = None,
    clock: Clock = time.time,
) -> IndexingLease | None:
    """Set ``indexing`` and take the lease, or return None if another sync holds it.

    Raises:
        SearchIndexNotFound: If the index row does not exist.
    """
    owner = owner or new_owner_id()
    now = clock()

    with db.immediate_transaction() as session:
        index = session.get(SearchIndex, index_id)
        if index is None:
            raise SearchIndexNotFound.for_id(index_id)

        if index.indexing:
            if index.lease_expires_at is None or index.lease_expires_at > now:
                return None
            logger.warning(
                "indexing_lease_reclaimed",
                index_id=index_id,
                previous_owner=index.lease_owner,
                expired_for_sec=round(now - index.lease_expires_at, 3),
            )

        index.indexing = True
        index.lease_owner = owner
        index.lease_expires_at = now + ttl_sec
        session.add(index)

    return IndexingLease(index_id=index_id, owner=owner, expires_at=now + ttl_sec)


def renew_lease(
    db: Database,
    lease: IndexingLease,
    ttl_sec: float,
    *,
    clock: Clock = time.time,
) -> IndexingLease | None:
    """Push the lease expiry forward. Returns None if the lease is no longer ours."""
    expires_at = clock() + ttl_sec
    with db.immediate_transaction() as session:
        result = session.execute(
            update(SearchIndex)
            .where(col(SearchIndex.id) == lease.index_id)
            .where(col(SearchIndex.lease_owner) == lease.owner)
            .values(lease_expires_at=expires_at)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            return None
    return IndexingLease(index_id=lease.index_id, owner=lease.owner, expires_at=expires_at)


def release_lease(db: Database, lease: IndexingLease, **updates: object) -> bool:
    """Clear ``indexing`` if we still own the lease, applying extra column updates.

    Returns False when the lease had already been taken over or the row is gone.
    """
    with db.immediate_transaction() as session:
        result = session.execute(
            update(SearchIndex)
            .where(col(SearchIndex.id) == lease.index_id)
            .where(col(SearchIndex.lease_owner) == lease.owner)
            .values(indexing=False, lease_owner=None, lease_expires_at=None, **updates)
        )
        released = bool(result.rowcount)  # type: ignore[attr-defined]

    if not released:
        logger.warning("indexing_lease_not_owned", index_id=lease.index_id, owner=lease.owner)
    return released
