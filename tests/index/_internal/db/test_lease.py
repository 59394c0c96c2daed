"""Tests for the indexing lease (lease.py)."""

from __future__ import annotations

import pytest

from indexsync.core.errors import SearchIndexNotFound
from indexsync.index._internal.db import (
    Database,
    acquire_lease,
    release_lease,
    renew_lease,
)
from indexsync.index.models import SearchIndex
from tests.index.fakes import FakeClock


def _index(db: Database, **fields: object) -> str:
    index = SearchIndex(name="main", provider_id="fake", **fields)
    with db.session() as session:
        session.add(index)
        session.commit()
    return index.id


def _row(db: Database, index_id: str) -> SearchIndex:
    with db.session() as session:
        row = session.get(SearchIndex, index_id)
        assert row is not None
        return row


class TestAcquireLease:
    def test_given_free_index_when_acquire_then_flag_owner_and_expiry_set(
        self, temp_db: Database, clock: FakeClock
    ) -> None:
        # Given
        index_id = _index(temp_db)

        # When
        lease = acquire_lease(temp_db, index_id, 30.0, owner="me", clock=clock)

        # Then
        assert lease is not None
        assert lease.expires_at == clock() + 30.0
        row = _row(temp_db, index_id)
        assert row.indexing is True
        assert row.lease_owner == "me"
        assert row.lease_expires_at == clock() + 30.0

    def test_given_held_lease_when_acquire_then_none(
        self, temp_db: Database, clock: FakeClock
    ) -> None:
        index_id = _index(temp_db)
        assert acquire_lease(temp_db, index_id, 30.0, owner="first", clock=clock) is not None

        assert acquire_lease(temp_db, index_id, 30.0, owner="second", clock=clock) is None
        assert _row(temp_db, index_id).lease_owner == "first"

    def test_given_expired_lease_when_acquire_then_taken_over(
        self, temp_db: Database, clock: FakeClock
    ) -> None:
        index_id = _index(temp_db)
        acquire_lease(temp_db, index_id, 30.0, owner="first", clock=clock)
        clock.advance(31.0)

        lease = acquire_lease(temp_db, index_id, 30.0, owner="second", clock=clock)

        assert lease is not None
        assert _row(temp_db, index_id).lease_owner == "second"

    def test_given_missing_index_when_acquire_then_not_found(self, temp_db: Database) -> None:
        with pytest.raises(SearchIndexNotFound):
            acquire_lease(temp_db, "nope", 30.0)


class TestRenewAndRelease:
    def test_given_owned_lease_when_renew_then_expiry_extended(
        self, temp_db: Database, clock: FakeClock
    ) -> None:
        index_id = _index(temp_db)
        lease = acquire_lease(temp_db, index_id, 30.0, clock=clock)
        assert lease is not None
        clock.advance(10.0)

        renewed = renew_lease(temp_db, lease, 30.0, clock=clock)

        assert renewed is not None
        assert renewed.expires_at == clock() + 30.0
        assert _row(temp_db, index_id).lease_expires_at == clock() + 30.0

    def test_given_stolen_lease_when_renew_then_none(
        self, temp_db: Database, clock: FakeClock
    ) -> None:
        index_id = _index(temp_db)
        lease = acquire_lease(temp_db, index_id, 30.0, owner="me", clock=clock)
        assert lease is not None
        clock.advance(60.0)
        acquire_lease(temp_db, index_id, 30.0, owner="thief", clock=clock)

        assert renew_lease(temp_db, lease, 30.0, clock=clock) is None

    def test_given_owned_lease_when_release_then_cleared_with_updates(
        self, temp_db: Database, clock: FakeClock
    ) -> None:
        # Given
        index_id = _index(temp_db)
        lease = acquire_lease(temp_db, index_id, 30.0, clock=clock)
        assert lease is not None

        # When
        released = release_lease(temp_db, lease, indexed_count=5, last_indexed_at=clock())

        # Then
        assert released is True
        row = _row(temp_db, index_id)
        assert row.indexing is False
        assert row.lease_owner is None
        assert row.lease_expires_at is None
        assert row.indexed_count == 5
        assert row.last_indexed_at == clock()

    def test_given_stolen_lease_when_release_then_untouched(
        self, temp_db: Database, clock: FakeClock
    ) -> None:
        index_id = _index(temp_db)
        lease = acquire_lease(temp_db, index_id, 30.0, owner="me", clock=clock)
        assert lease is not None
        clock.advance(60.0)
        acquire_lease(temp_db, index_id, 30.0, owner="thief", clock=clock)

        assert release_lease(temp_db, lease) is False
        row = _row(temp_db, index_id)
        assert row.indexing is True
        assert row.lease_owner == "thief"
