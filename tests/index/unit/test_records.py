"""Tests for the SQL record store (records.py)."""

from __future__ import annotations

from sqlmodel import select

from indexsync.index._internal.db import Database
from indexsync.index.models import IndexItemStatus, RecordStatus, SearchIndex, SearchIndexItem
from indexsync.index.records import SqlRecordStore


def _index(db: Database) -> str:
    index = SearchIndex(name="main", provider_id="fake")
    with db.session() as session:
        session.add(index)
        session.commit()
    return index.id


def _item(db: Database, index_id: str, record_id: str, status: IndexItemStatus) -> None:
    with db.session() as session:
        session.add(
            SearchIndexItem(
                index_id=index_id, external_id=record_id, record_id=record_id, status=status.value
            )
        )
        session.commit()


class TestWorkDiscovery:
    def test_given_mixed_records_when_list_unindexed_then_only_ready_without_item(
        self, temp_db: Database, record_store: SqlRecordStore
    ) -> None:
        # Given
        index_id = _index(temp_db)
        new = record_store.add_record("new")
        indexed = record_store.add_record("indexed")
        record_store.add_record("pending", ready=False)
        failed = record_store.add_record("failed")
        record_store.update_record(failed.id, status=RecordStatus.FAILED)
        _item(temp_db, index_id, indexed.id, IndexItemStatus.INDEXED)

        # When
        ids = record_store.list_unindexed_ready_ids(index_id)

        # Then
        assert ids == [new.id]

    def test_given_item_on_other_index_when_list_unindexed_then_still_new(
        self, temp_db: Database, record_store: SqlRecordStore
    ) -> None:
        first, second = _index(temp_db), _index(temp_db)
        record = record_store.add_record("shared")
        _item(temp_db, first, record.id, IndexItemStatus.INDEXED)

        assert record_store.list_unindexed_ready_ids(first) == []
        assert record_store.list_unindexed_ready_ids(second) == [record.id]

    def test_given_stale_items_when_list_stale_then_existing_records_only(
        self, temp_db: Database, record_store: SqlRecordStore
    ) -> None:
        # Given
        index_id = _index(temp_db)
        stale = record_store.add_record("stale")
        fresh = record_store.add_record("fresh")
        orphaned = record_store.add_record("orphaned")
        _item(temp_db, index_id, stale.id, IndexItemStatus.STALE)
        _item(temp_db, index_id, fresh.id, IndexItemStatus.INDEXED)
        _item(temp_db, index_id, orphaned.id, IndexItemStatus.STALE)
        record_store.delete_record(orphaned.id)

        # When
        ids = record_store.list_stale_ids(index_id)

        # Then
        assert ids == [stale.id]


class TestGetRecords:
    def test_given_ids_when_get_records_then_unresolvable_omitted(
        self, record_store: SqlRecordStore
    ) -> None:
        ready = record_store.add_record("ready")
        pending = record_store.add_record("pending", ready=False)

        records = record_store.get_records([ready.id, pending.id, "missing"])

        assert [r.id for r in records] == [ready.id]

    def test_given_empty_ids_when_get_records_then_empty(
        self, record_store: SqlRecordStore
    ) -> None:
        assert record_store.get_records([]) == []


class TestMaintenance:
    def test_update_record_changes_fields(self, record_store: SqlRecordStore) -> None:
        record = record_store.add_record("a", "old", tags=["x"])

        updated = record_store.update_record(record.id, body="new", tags=["y"])

        assert updated is not None
        assert updated.body == "new"
        assert updated.get_tags() == ["y"]
        assert updated.updated_at >= record.updated_at

    def test_update_missing_record_returns_none(self, record_store: SqlRecordStore) -> None:
        assert record_store.update_record("missing", body="x") is None

    def test_delete_record_orphans_items(
        self, temp_db: Database, record_store: SqlRecordStore
    ) -> None:
        index_id = _index(temp_db)
        record = record_store.add_record("a", record_id="r1")
        _item(temp_db, index_id, record.id, IndexItemStatus.INDEXED)

        assert record_store.delete_record("r1") is True
        assert record_store.delete_record("r1") is False

        with temp_db.session() as session:
            item = session.exec(select(SearchIndexItem)).one()
        assert item.record_id is None
        assert item.external_id == "r1"
