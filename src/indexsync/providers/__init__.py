"""Vector provider interface, registry and built-in numpy provider."""

from indexsync.providers.base import (
    EmbeddingDocument,
    IndexConfig,
    SearchHit,
    VectorDocument,
    VectorProvider,
)
from indexsync.providers.embedders import Embedder, FastEmbedEmbedder, HashingEmbedder
from indexsync.providers.numpy_store import NumpyVectorProvider
from indexsync.providers.registry import ProviderEntry, ProviderRegistry

__all__ = [
    "Embedder",
    "EmbeddingDocument",
    "FastEmbedEmbedder",
    "HashingEmbedder",
    "IndexConfig",
    "NumpyVectorProvider",
    "ProviderEntry",
    "ProviderRegistry",
    "SearchHit",
    "VectorDocument",
    "VectorProvider",
]
