"""Text embedders used by the built-in numpy provider.

- HashingEmbedder: deterministic feature-hashing bag of words. No model
  download, suitable for tests and offline deployments.
- FastEmbedEmbedder: fastembed (ONNX) sentence embeddings, loaded lazily on
  first use.

Both return L2-normalised float32 matrices so cosine similarity is a dot
product.
"""

from __future__ import annotations

import hashlib
import os
import re
import threading
import time
from collections.abc import Sequence
from typing import Any, Protocol

import numpy as np
import structlog

from indexsync.core.errors import InternalError

log = structlog.get_logger()

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class Embedder(Protocol):
    """Turns texts into a (len(texts), dimension) float32 matrix."""

    @property
    def dimension(self) -> int: ...

    def embed(self, texts: Sequence[str]) -> np.ndarray: ...


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (matrix / norms).astype(np.float32)


class HashingEmbedder:
    """Signed feature hashing over lowercase word unigrams and bigrams."""

    def __init__(self, dimension: int = 384) -> None:
        if dimension < 8:
            raise ValueError(f"dimension must be >= 8, got {dimension}")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _features(self, text: str) -> list[str]:
        tokens = _TOKEN_RE.findall(text.lower())
        bigrams = [f"{a}_{b}" for a, b in zip(tokens, tokens[1:], strict=False)]
        return tokens + bigrams

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        matrix = np.zeros((len(texts), self._dimension), dtype=np.float32)
        for row, text in enumerate(texts):
            for feature in self._features(text):
                digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
                value = int.from_bytes(digest, "little")
                sign = 1.0 if value & 1 else -1.0
                matrix[row, (value >> 1) % self._dimension] += sign
        return _normalize_rows(matrix)


class FastEmbedEmbedder:
    """fastembed TextEmbedding wrapper with lazy model loading."""

    def __init__(self, model_name: str = "BAAI/bge-small-en-v1.5", dimension: int = 384) -> None:
        self.model_name = model_name
        self._dimension = dimension
        self._model: Any = None
        self._load_lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return self._dimension

    def _ensure_model(self) -> Any:
        """Lazy-load fastembed TextEmbedding model."""
        with self._load_lock:
            if self._model is not None:
                return self._model
            try:
                from fastembed import TextEmbedding  # type: ignore[import-not-found]
            except ImportError as e:
                log.warning("embedding.fastembed_not_installed", hint="pip install fastembed")
                raise InternalError.unexpected(
                    "fastembed is not installed", model=self.model_name
                ) from e

            threads = max(1, (os.cpu_count() or 4) // 2)
            start = time.monotonic()
            self._model = TextEmbedding(model_name=self.model_name, threads=threads)
            log.info(
                "embedding.model_loaded",
                model=self.model_name,
                threads=threads,
                load_sec=round(time.monotonic() - start, 2),
            )
            return self._model

    def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self._dimension), dtype=np.float32)
        model = self._ensure_model()
        vectors = np.asarray(list(model.embed(list(texts))), dtype=np.float32)
        self._dimension = int(vectors.shape[1])
        return _normalize_rows(vectors)
