"""Vector provider capability interface.

A provider owns an opaque vector backend. The reconciliation engine only ever
hands it record text and document ids; embedding is the provider's concern.
Each call receives the owning index's provider config (e.g. the backend index
name) so one provider instance can serve several indexes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from indexsync.core.errors import ProviderError

IndexConfig = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class EmbeddingDocument:
    """Text to be embedded and stored under ``id``."""

    id: str
    text: str


@dataclass(frozen=True, slots=True)
class VectorDocument:
    """Pre-computed vector stored under ``id``."""

    id: str
    vector: Sequence[float]


@dataclass(frozen=True, slots=True)
class SearchHit:
    """A document id and its similarity score (higher is better)."""

    id: str
    score: float


class VectorProvider(ABC):
    """Base class for vector backends.

    Subclasses must implement the raw vector operations. Providers that can
    embed text themselves set ``supports_embedding`` and override
    ``embed_and_upsert`` / ``embed_and_search``.
    """

    provider_id: str = "abstract"
    supports_embedding: bool = False

    @abstractmethod
    async def upsert(self, documents: Sequence[VectorDocument], config: IndexConfig) -> None:
        """Insert or replace pre-computed vectors."""

    @abstractmethod
    async def delete(self, ids: Sequence[str], config: IndexConfig) -> None:
        """Delete documents by id. Unknown ids are ignored."""

    @abstractmethod
    async def search(self, vector: Sequence[float], config: IndexConfig) -> list[SearchHit]:
        """Nearest-neighbour search by vector."""

    @abstractmethod
    async def drop_index(self, config: IndexConfig) -> None:
        """Remove every document of the configured backend index."""

    async def embed_and_upsert(
        self, documents: Sequence[EmbeddingDocument], config: IndexConfig
    ) -> None:
        raise ProviderError.operation_not_supported(self.provider_id, "embed_and_upsert")

    async def embed_and_search(self, query_text: str, config: IndexConfig) -> list[SearchHit]:
        raise ProviderError.operation_not_supported(self.provider_id, "embed_and_search")

    def validate_config(self, config: IndexConfig) -> dict[str, Any]:
        """Check an index config before it is stored and return the form to store.

        Raises ConfigError for configs the provider could never serve.
        """
        return dict(config)
