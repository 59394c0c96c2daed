"""SQLModel definitions for search indexes, their bookkeeping items and the
canonical content records they mirror.

Single source of truth for all table schemas.

- SearchIndex: one row per configured index (at most one active)
- SearchIndexItem: links a canonical record to its vector-store document
- ContentRecord: canonical record, read-only to the reconciliation engine
"""

import json
import time
from enum import Enum
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Column, ForeignKey, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from indexsync.core.errors import RecordNotEmbeddable

if TYPE_CHECKING:
    from indexsync.index.records import CanonicalRecord


def new_id() -> str:
    """Generate a new opaque row id."""
    return uuid4().hex


# ============================================================================
# ENUMS
# ============================================================================


class IndexItemStatus(str, Enum):
    """Per-item indexing state.

    (absent) -> INDEXING -> INDEXED; INDEXED -> STALE on external notification.
    INDEXING items are deleted on batch rollback or when the record vanished.
    """

    INDEXING = "INDEXING"
    INDEXED = "INDEXED"
    STALE = "STALE"


class RecordStatus(str, Enum):
    """Canonical record processing state."""

    PENDING = "PENDING"
    READY = "READY"
    FAILED = "FAILED"


# ============================================================================
# TABLES
# ============================================================================


class ContentRecord(SQLModel, table=True):
    """Canonical content record. Only READY, non-deleted records are indexed."""

    __tablename__ = "content_record"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(index=True)
    body: str = ""
    mime_type: str | None = None
    tags_json: str | None = None
    status: str = Field(default=RecordStatus.PENDING.value, index=True)
    deleted_at: float | None = Field(default=None, index=True)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @property
    def is_ready(self) -> bool:
        return self.status == RecordStatus.READY.value and self.deleted_at is None

    def get_tags(self) -> list[str]:
        """Parse tags_json to list."""
        if self.tags_json is None:
            return []
        result: list[str] = json.loads(self.tags_json)
        return result

    def set_tags(self, tags: list[str]) -> None:
        self.tags_json = json.dumps(tags) if tags else None

    def to_embedding_text(self) -> str:
        """Text handed to the vector provider for embedding."""
        if not self.is_ready:
            raise RecordNotEmbeddable.for_id(self.id)

        tags = self.get_tags()
        parts = [
            f"Name: {self.name}",
            f"MIME Type: {self.mime_type}" if self.mime_type else "",
            f"Tags: {', '.join(tags)}" if tags else "",
            self.body.strip(),
        ]
        return "\n".join(p for p in parts if p)


class SearchIndex(SQLModel, table=True):
    """Configured search index backed by a vector provider."""

    __tablename__ = "search_index"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str
    provider_id: str = Field(index=True)
    config_json: str = "{}"  # Opaque provider config
    active: bool = Field(default=False, index=True)
    indexing: bool = Field(default=False)
    lease_owner: str | None = None
    lease_expires_at: float | None = None
    indexed_count: int = Field(default=0)
    last_indexed_at: float | None = None
    created_at: float = Field(default_factory=time.time)

    def get_config(self) -> dict[str, object]:
        """Parse config_json to dict."""
        result: dict[str, object] = json.loads(self.config_json or "{}")
        return result


class SearchIndexItem(SQLModel, table=True):
    """Bookkeeping row linking a record to its document in the vector provider."""

    __tablename__ = "search_index_item"
    __table_args__ = (
        UniqueConstraint("index_id", "external_id", name="uq_search_index_item_external"),
        UniqueConstraint("index_id", "record_id", name="uq_search_index_item_record"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    index_id: str = Field(
        sa_column=Column(
            String, ForeignKey("search_index.id", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    external_id: str
    # NULL once the record is gone; such orphans are swept by the next sync
    record_id: str | None = Field(
        default=None,
        sa_column=Column(
            String, ForeignKey("content_record.id", ondelete="SET NULL"), nullable=True, index=True
        ),
    )
    status: str = Field(default=IndexItemStatus.INDEXING.value, index=True)


# ============================================================================
# NON-TABLE MODELS (Pydantic only, for data transfer)
# ============================================================================


class IndexStatus(SQLModel):
    """Status snapshot of a search index."""

    id: str
    name: str
    provider_id: str
    active: bool
    indexing: bool
    indexed_count: int
    last_indexed_at: float | None = None


class RankedRecord(SQLModel):
    """A query hit resolved to its canonical record."""

    id: str
    name: str
    mime_type: str | None = None
    tags: list[str] = Field(default_factory=list)
    score: float

    @classmethod
    def from_record(cls, record: "CanonicalRecord", score: float) -> "RankedRecord":
        return cls(
            id=record.id,
            name=record.name,
            mime_type=record.mime_type,
            tags=record.get_tags(),
            score=score,
        )
