"""Unit tests for the database layer (database.py).

Tests cover:
- Engine creation with correct pragmas (WAL, busy_timeout, foreign_keys)
- Table creation via create_all()
- immediate_transaction commit/rollback and busy retries
- BulkWriter insert-ignore, update and delete
- in_clause parameter building
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from indexsync.index._internal.db import Database, in_clause
from indexsync.index.models import SearchIndex, SearchIndexItem


def _pragma(db: Database, name: str) -> object:
    with db.session() as session:
        row = session.execute(text(f"PRAGMA {name}")).fetchone()
        assert row is not None
        return row[0]


def _index(db: Database) -> str:
    index = SearchIndex(name="main", provider_id="fake")
    with db.session() as session:
        session.add(index)
        session.commit()
    return index.id


class TestDatabaseEngine:
    """Tests for Database engine configuration."""

    def test_engine_created_with_wal_mode(self, temp_db: Database) -> None:
        assert _pragma(temp_db, "journal_mode") == "wal"

    def test_engine_created_with_busy_timeout(self, temp_dir: Path) -> None:
        db = Database(temp_dir / "busy.db", busy_timeout_ms=1234)
        assert _pragma(db, "busy_timeout") == 1234

    def test_engine_created_with_foreign_keys_enabled(self, temp_db: Database) -> None:
        assert _pragma(temp_db, "foreign_keys") == 1

    def test_parent_directory_created(self, temp_dir: Path) -> None:
        Database(temp_dir / "nested" / "deeper" / "index.db")
        assert (temp_dir / "nested" / "deeper").is_dir()


class TestDatabaseTables:
    def test_create_all_creates_tables(self, temp_db: Database) -> None:
        with temp_db.session() as session:
            result = session.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))
            tables = {row[0] for row in result}
        assert {"search_index", "search_index_item", "content_record"} <= tables


class TestImmediateTransaction:
    def test_given_success_when_exit_then_committed(self, temp_db: Database) -> None:
        with temp_db.immediate_transaction() as session:
            session.add(SearchIndex(id="abc", name="main", provider_id="fake"))

        with temp_db.session() as session:
            assert session.get(SearchIndex, "abc") is not None

    def test_given_exception_when_exit_then_rolled_back(self, temp_db: Database) -> None:
        with pytest.raises(RuntimeError), temp_db.immediate_transaction() as session:
            session.add(SearchIndex(id="abc", name="main", provider_id="fake"))
            session.flush()
            raise RuntimeError("boom")

        with temp_db.session() as session:
            assert session.get(SearchIndex, "abc") is None

    def test_given_non_busy_error_when_begin_then_raised_without_retry(
        self, temp_db: Database
    ) -> None:
        error = OperationalError("BEGIN IMMEDIATE", {}, Exception("disk I/O error"))
        with (
            patch("sqlmodel.Session.execute", side_effect=error) as execute,
            pytest.raises(OperationalError),
            temp_db.immediate_transaction(),
        ):
            pass
        assert execute.call_count == 1

    def test_given_busy_error_when_begin_then_retried(self, temp_dir: Path) -> None:
        db = Database(temp_dir / "retry.db", max_retries=2, retry_base_delay=0.0)
        error = OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))
        with (
            patch("sqlmodel.Session.execute", side_effect=error) as execute,
            pytest.raises(OperationalError),
            db.immediate_transaction(),
        ):
            pass
        assert execute.call_count == 3


class TestBulkWriter:
    def test_insert_ignore_many_skips_duplicates(self, temp_db: Database) -> None:
        # Given
        index_id = _index(temp_db)
        row = {
            "index_id": index_id,
            "external_id": "e1",
            "record_id": None,
            "status": "INDEXING",
        }

        # When
        with temp_db.bulk_writer() as writer:
            first = writer.insert_ignore_many(SearchIndexItem, [{**row, "id": "i1"}])
            second = writer.insert_ignore_many(SearchIndexItem, [{**row, "id": "i2"}])

        # Then
        assert (first, second) == (1, 0)

    def test_update_and_delete_where_return_rowcount(self, temp_db: Database) -> None:
        # Given
        index_id = _index(temp_db)
        rows = [
            {"id": f"i{n}", "index_id": index_id, "external_id": f"e{n}", "status": "INDEXING"}
            for n in range(3)
        ]
        with temp_db.bulk_writer() as writer:
            writer.insert_ignore_many(SearchIndexItem, rows)

        # When
        clause, params = in_clause("e", ["e0", "e1"])
        with temp_db.bulk_writer() as writer:
            updated = writer.update_where(
                SearchIndexItem, {"status": "INDEXED"}, f"external_id IN {clause}", params
            )
            deleted = writer.delete_where(SearchIndexItem, "status = :s", {"s": "INDEXING"})

        # Then
        assert updated == 2
        assert deleted == 1

    def test_exception_rolls_back(self, temp_db: Database) -> None:
        index_id = _index(temp_db)
        with pytest.raises(RuntimeError), temp_db.bulk_writer() as writer:
            writer.insert_ignore_many(
                SearchIndexItem,
                [{"id": "i1", "index_id": index_id, "external_id": "e1", "status": "INDEXING"}],
            )
            raise RuntimeError("boom")

        with temp_db.session() as session:
            assert session.get(SearchIndexItem, "i1") is None

    def test_deleting_index_cascades_to_items(self, temp_db: Database) -> None:
        index_id = _index(temp_db)
        with temp_db.bulk_writer() as writer:
            writer.insert_ignore_many(
                SearchIndexItem,
                [{"id": "i1", "index_id": index_id, "external_id": "e1", "status": "INDEXED"}],
            )
            writer.delete_where(SearchIndex, "id = :id", {"id": index_id})

        with temp_db.session() as session:
            assert session.get(SearchIndexItem, "i1") is None


class TestInClause:
    def test_builds_named_placeholders(self) -> None:
        clause, params = in_clause("r", ["a", "b"])
        assert clause == "(:r0, :r1)"
        assert params == {"r0": "a", "r1": "b"}
