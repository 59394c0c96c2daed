"""Additional index creation.

These indexes complement the basic indexes defined in SQLModel Field()
declarations. Call create_additional_indexes() after the tables exist
(Database.create_all() does this).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine


ADDITIONAL_INDEXES = [
    # At most one active index across the system
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_search_index_single_active "
    "ON search_index(active) WHERE active = 1",
    # Work discovery: stale items per index
    "CREATE INDEX IF NOT EXISTS idx_search_index_item_index_status "
    "ON search_index_item(index_id, status)",
    # Work discovery: ready records
    "CREATE INDEX IF NOT EXISTS idx_content_record_ready ON content_record(status, deleted_at)",
]


def create_additional_indexes(engine: Engine) -> None:
    """Create additional indexes that cannot be expressed via SQLModel Field() declarations."""
    with engine.connect() as conn:
        for sql in ADDITIONAL_INDEXES:
            conn.execute(text(sql))
        conn.commit()
