"""Dense vector provider backed by numpy.

Each backend index (``config["name"]``) is a float32 matrix plus a parallel
array of document ids, persisted to ``<root>/<name>.npz``. Search is brute
force cosine similarity, which is adequate up to a few hundred thousand
documents.

Storage: <root>/
  - <name>.npz   (ids: unicode array, vectors: float32 matrix)
"""

from __future__ import annotations

import asyncio
import os
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import structlog

from indexsync.core.errors import ConfigError
from indexsync.providers.base import (
    EmbeddingDocument,
    IndexConfig,
    SearchHit,
    VectorDocument,
    VectorProvider,
)
from indexsync.providers.embedders import Embedder

log = structlog.get_logger()

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")
DEFAULT_TOP_K = 10


@dataclass
class _Store:
    ids: list[str] = field(default_factory=list)
    vectors: np.ndarray | None = None
    positions: dict[str, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.ids)


class NumpyVectorProvider(VectorProvider):
    """In-process vector store with pluggable text embedding."""

    provider_id = "numpy"
    supports_embedding = True

    def __init__(self, root: Path, embedder: Embedder, top_k: int = DEFAULT_TOP_K) -> None:
        self.root = root
        self.embedder = embedder
        self.top_k = top_k
        self._stores: dict[str, _Store] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Config helpers
    # ------------------------------------------------------------------

    def _index_name(self, config: IndexConfig) -> str:
        name = config.get("name")
        if not name:
            raise ConfigError.missing_required("name")
        name = str(name)
        if not _SAFE_NAME.match(name):
            raise ConfigError.invalid_value("name", name, "only letters, digits, '.', '_' and '-'")
        return name

    def _top_k(self, config: IndexConfig) -> int:
        top_k = config.get("top_k")
        return self.top_k if top_k is None else int(top_k)

    def _path(self, name: str) -> Path:
        return self.root / f"{name}.npz"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self, name: str) -> _Store:
        store = self._stores.get(name)
        if store is not None:
            return store

        store = _Store()
        path = self._path(name)
        if path.exists():
            with np.load(path, allow_pickle=False) as data:
                store.ids = [str(i) for i in data["ids"]]
                store.vectors = data["vectors"].astype(np.float32)
            store.positions = {doc_id: i for i, doc_id in enumerate(store.ids)}
            log.debug("vector_store_loaded", index=name, count=len(store))
        self._stores[name] = store
        return store

    def _save(self, name: str, store: _Store) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self._path(name)
        tmp_path = path.with_name(path.name + ".tmp")
        vectors = (
            store.vectors
            if store.vectors is not None
            else np.zeros((0, self.embedder.dimension), dtype=np.float32)
        )
        with tmp_path.open("wb") as f:
            np.savez(f, ids=np.asarray(store.ids, dtype=np.str_), vectors=vectors)
        os.replace(tmp_path, path)

    # ------------------------------------------------------------------
    # Mutations (run in a worker thread under the provider lock)
    # ------------------------------------------------------------------

    def _upsert_sync(self, name: str, ids: list[str], vectors: np.ndarray) -> None:
        vectors = np.asarray(vectors, dtype=np.float32)
        store = self._load(name)
        if store.vectors is None or len(store) == 0:
            store.vectors = np.zeros((0, vectors.shape[1]), dtype=np.float32)
        elif store.vectors.shape[1] != vectors.shape[1]:
            raise ValueError(
                f"Vector dimension mismatch for index '{name}': "
                f"stored {store.vectors.shape[1]}, got {vectors.shape[1]}"
            )

        # Last vector wins for ids repeated within the batch
        latest = dict(zip(ids, vectors, strict=True))
        new_rows: list[np.ndarray] = []
        for doc_id, vector in latest.items():
            pos = store.positions.get(doc_id)
            if pos is None:
                store.positions[doc_id] = len(store.ids)
                store.ids.append(doc_id)
                new_rows.append(vector)
            else:
                store.vectors[pos] = vector
        if new_rows:
            store.vectors = np.vstack([store.vectors, np.stack(new_rows)])
        self._save(name, store)

    def _delete_sync(self, name: str, ids: Sequence[str]) -> int:
        store = self._load(name)
        doomed = {store.positions[i] for i in ids if i in store.positions}
        if not doomed:
            return 0
        keep = [pos for pos in range(len(store.ids)) if pos not in doomed]
        store.ids = [store.ids[pos] for pos in keep]
        if store.vectors is not None:
            store.vectors = store.vectors[keep]
        store.positions = {doc_id: i for i, doc_id in enumerate(store.ids)}
        self._save(name, store)
        return len(doomed)

    def _search_sync(self, name: str, query: np.ndarray, top_k: int) -> list[SearchHit]:
        store = self._load(name)
        if store.vectors is None or len(store) == 0:
            return []
        if query.shape[0] != store.vectors.shape[1]:
            raise ValueError(
                f"Query dimension {query.shape[0]} does not match index dimension "
                f"{store.vectors.shape[1]}"
            )
        norms = np.linalg.norm(store.vectors, axis=1) * (np.linalg.norm(query) or 1.0)
        norms[norms == 0] = 1.0
        scores = (store.vectors @ query) / norms
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [SearchHit(id=store.ids[pos], score=float(scores[pos])) for pos in order]

    def _drop_sync(self, name: str) -> None:
        self._stores.pop(name, None)
        self._path(name).unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # VectorProvider API
    # ------------------------------------------------------------------

    def validate_config(self, config: IndexConfig) -> dict[str, Any]:
        validated = dict(config)
        validated["name"] = self._index_name(config)
        top_k = config.get("top_k")
        if top_k is not None:
            if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
                raise ConfigError.invalid_value("top_k", top_k, "must be a positive integer")
            validated["top_k"] = top_k
        return validated

    async def upsert(self, documents: Sequence[VectorDocument], config: IndexConfig) -> None:
        if not documents:
            return
        name = self._index_name(config)
        ids = [d.id for d in documents]
        vectors = np.asarray([list(d.vector) for d in documents], dtype=np.float32)
        async with self._lock:
            await asyncio.to_thread(self._upsert_sync, name, ids, vectors)

    async def embed_and_upsert(
        self, documents: Sequence[EmbeddingDocument], config: IndexConfig
    ) -> None:
        if not documents:
            return
        name = self._index_name(config)
        ids = [d.id for d in documents]
        vectors = await asyncio.to_thread(self.embedder.embed, [d.text for d in documents])
        async with self._lock:
            await asyncio.to_thread(self._upsert_sync, name, ids, vectors)
        log.debug("vectors_upserted", index=name, count=len(ids))

    async def delete(self, ids: Sequence[str], config: IndexConfig) -> None:
        if not ids:
            return
        name = self._index_name(config)
        async with self._lock:
            removed = await asyncio.to_thread(self._delete_sync, name, list(ids))
        log.debug("vectors_deleted", index=name, requested=len(ids), removed=removed)

    async def search(self, vector: Sequence[float], config: IndexConfig) -> list[SearchHit]:
        name = self._index_name(config)
        query = np.asarray(vector, dtype=np.float32)
        async with self._lock:
            return await asyncio.to_thread(self._search_sync, name, query, self._top_k(config))

    async def embed_and_search(self, query_text: str, config: IndexConfig) -> list[SearchHit]:
        name = self._index_name(config)
        matrix = await asyncio.to_thread(self.embedder.embed, [query_text])
        async with self._lock:
            return await asyncio.to_thread(self._search_sync, name, matrix[0], self._top_k(config))

    async def drop_index(self, config: IndexConfig) -> None:
        name = self._index_name(config)
        async with self._lock:
            await asyncio.to_thread(self._drop_sync, name)
        log.info("vector_index_dropped", index=name)

    def count(self, config: IndexConfig) -> int:
        """Number of stored documents (loads the index if needed)."""
        return len(self._load(self._index_name(config)))

    def document_ids(self, config: IndexConfig) -> list[str]:
        return list(self._load(self._index_name(config)).ids)
