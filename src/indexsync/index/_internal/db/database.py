"""SQLite engine, transactions and Core SQL bulk writes for sync bookkeeping.

Reads and single-row updates (index rows, activation flags) go through ORM
sessions. The per-batch item claim, promotion and rollback go through
BulkWriter. The indexing lease and activation switch run inside
immediate_transaction so that two writers never interleave.
"""

from __future__ import annotations

import time
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

# Retry configuration for SQLite busy handling
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 0.1  # 100ms base
DEFAULT_RETRY_MAX_DELAY = 2.0  # 2s max
DEFAULT_BUSY_TIMEOUT_MS = 30000


def _is_database_locked_error(error: Exception) -> bool:
    """True when SQLite refused a lock because another writer holds it."""
    error_str = str(error).lower()
    return "database is locked" in error_str or "database is busy" in error_str


def in_clause(prefix: str, values: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    """Build a named-parameter IN list: ("(:p0, :p1)", {"p0": .., "p1": ..})."""
    names = [f"{prefix}{i}" for i in range(len(values))]
    placeholders = ", ".join(f":{n}" for n in names)
    return f"({placeholders})", dict(zip(names, values, strict=True))


class Database:
    """Owns the engine for the bookkeeping database.

    Connections run in WAL mode with foreign keys enforced. Acquiring the
    write lock backs off exponentially while SQLite reports busy.
    """

    def __init__(
        self,
        db_path: Path,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._busy_timeout_ms = busy_timeout_ms
        self.engine = self._create_engine()

    def _create_engine(self) -> Engine:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        busy_timeout_ms = self._busy_timeout_ms

        def _on_connect(dbapi_conn: Any, connection_record: Any) -> None:
            _configure_pragmas(dbapi_conn, connection_record, busy_timeout_ms)

        event.listen(engine, "connect", _on_connect)
        return engine

    def create_all(self) -> None:
        """Create all tables from SQLModel metadata, plus additional indexes."""
        from indexsync.index._internal.db.indexes import create_additional_indexes

        # Registers the table classes on SQLModel.metadata
        import indexsync.index.models  # noqa: F401

        SQLModel.metadata.create_all(self.engine)
        create_additional_indexes(self.engine)

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session for reads and low-volume operations."""
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    @contextmanager
    def immediate_transaction(
        self,
        max_retries: int | None = None,
    ) -> Generator[Session, None, None]:
        """
        Session with BEGIN IMMEDIATE for serializable writes.

        BEGIN IMMEDIATE acquires a RESERVED lock immediately,
        blocking other writers but allowing readers. Acquiring the
        lock is retried with exponential backoff on SQLite busy errors.

        The session auto-commits on successful exit and rolls back
        on exception.

        Args:
            max_retries: Override default max retries (default: 3)
        """
        retries = max_retries if max_retries is not None else self._max_retries

        with Session(self.engine, expire_on_commit=False) as session:
            for attempt in range(retries + 1):  # +1 for initial attempt
                try:
                    session.execute(text("BEGIN IMMEDIATE"))
                    break
                except OperationalError as e:
                    session.rollback()
                    if not _is_database_locked_error(e) or attempt >= retries:
                        raise
                    delay = min(
                        self._retry_base_delay * (2**attempt),
                        self._retry_max_delay,
                    )
                    logger.warning(
                        "sqlite_busy_retry",
                        attempt=attempt + 1,
                        max_retries=retries,
                        delay_sec=delay,
                    )
                    time.sleep(delay)

            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    @contextmanager
    def bulk_writer(self) -> Generator[BulkWriter, None, None]:
        """
        Bulk writer for per-batch bookkeeping writes.

        Auto-commits on successful exit, rolls back on exception.
        """
        writer = BulkWriter(self.engine)
        try:
            yield writer
            writer.commit()
        except Exception:
            writer.rollback()
            raise
        finally:
            writer.close()


def _configure_pragmas(dbapi_conn: Any, _connection_record: Any, busy_timeout_ms: int) -> None:
    """Configure SQLite for concurrent access and performance."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA foreign_keys=ON")  # Required for CASCADE / SET NULL
    cursor.close()


class BulkWriter:
    """One connection and transaction for a batch of item-table statements."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.conn = engine.connect()
        self.transaction = self.conn.begin()

    def insert_ignore_many(self, model_class: type[SQLModel], records: list[dict[str, Any]]) -> int:
        """Insert records, skipping rows that violate a unique constraint.

        Returns the number of rows actually inserted.
        """
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]
        inserted = 0
        for record in records:
            result = self.conn.execute(table.insert().prefix_with("OR IGNORE"), record)
            inserted += int(result.rowcount)
        return inserted

    def delete_where(
        self,
        model_class: type[SQLModel],
        condition: str,
        params: dict[str, Any],
    ) -> int:
        """Bulk delete rows matching condition, returning count affected."""
        table = model_class.__table__  # type: ignore[attr-defined]
        sql = f"DELETE FROM {table.name} WHERE {condition}"
        result = self.conn.execute(text(sql), params)
        return int(result.rowcount)

    def update_where(
        self,
        model_class: type[SQLModel],
        updates: dict[str, Any],
        condition: str,
        params: dict[str, Any],
    ) -> int:
        """Set `updates` on every row matching `condition`. Returns the row count."""
        table = model_class.__table__  # type: ignore[attr-defined]
        set_clause = ", ".join(f"{k} = :upd_{k}" for k in updates)
        sql = f"UPDATE {table.name} SET {set_clause} WHERE {condition}"
        update_params = {f"upd_{k}": v for k, v in updates.items()}
        result = self.conn.execute(text(sql), {**update_params, **params})
        return int(result.rowcount)

    def commit(self) -> None:
        """Commit the current transaction."""
        self.transaction.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.transaction.rollback()

    def close(self) -> None:
        """Close the connection."""
        self.conn.close()
