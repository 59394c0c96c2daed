"""Runtime lifecycle management."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from indexsync.config.loader import load_config, resolve_path
from indexsync.config.models import IndexSyncConfig, VectorStoreConfig
from indexsync.core.logging import configure_logging
from indexsync.daemon.events import EventBus
from indexsync.daemon.listeners import SearchListeners
from indexsync.index._internal.db import Database
from indexsync.index.ops import SearchIndexService
from indexsync.index.records import SqlRecordStore
from indexsync.providers.embedders import Embedder, FastEmbedEmbedder, HashingEmbedder
from indexsync.providers.numpy_store import NumpyVectorProvider
from indexsync.providers.registry import ProviderRegistry

logger = structlog.get_logger()


def build_embedder(config: VectorStoreConfig) -> Embedder:
    """Embedder selected by ``vector_store.embedder``."""
    if config.embedder == "fastembed":
        return FastEmbedEmbedder(model_name=config.model_name, dimension=config.dimension)
    return HashingEmbedder(dimension=config.dimension)


@dataclass
class IndexSyncRuntime:
    """
    Composition root wiring the sync components together.

    Components:
    - Database + SqlRecordStore: bookkeeping tables and canonical records
    - ProviderRegistry: vector providers (the numpy provider is registered
      unless the caller already supplied one under "numpy")
    - SearchIndexService: index administration and the Reconciler
    - EventBus + SearchListeners: record events -> debounced syncs
    """

    project_root: Path
    config: IndexSyncConfig = field(default_factory=IndexSyncConfig)
    registry: ProviderRegistry = field(default_factory=ProviderRegistry)

    db: Database = field(init=False)
    records: SqlRecordStore = field(init=False)
    service: SearchIndexService = field(init=False)
    bus: EventBus = field(init=False)
    listeners: SearchListeners = field(init=False)
    _started: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        """Initialize components."""
        db_config = self.config.database
        self.db = Database(
            resolve_path(self.project_root, db_config.path),
            max_retries=db_config.max_retries,
            retry_base_delay=db_config.retry_base_delay_sec,
            busy_timeout_ms=db_config.busy_timeout_ms,
        )
        self.records = SqlRecordStore(self.db)

        if NumpyVectorProvider.provider_id not in self.registry:
            store = self.config.vector_store
            self.registry.register(
                NumpyVectorProvider.provider_id,
                NumpyVectorProvider(
                    root=resolve_path(self.project_root, store.root),
                    embedder=build_embedder(store),
                    top_k=store.top_k,
                ),
                display_name="NumPy",
                description="Local .npz vector store with cosine search",
            )

        self.service = SearchIndexService(
            self.db,
            self.registry,
            self.records,
            batch_size=self.config.sync.batch_size,
            lease_ttl_sec=self.config.sync.lease_ttl_sec,
        )
        self.bus = EventBus()
        self.listeners = SearchListeners(service=self.service, config=self.config.scheduler)

    @classmethod
    def from_project(cls, project_root: Path, **overrides: Any) -> IndexSyncRuntime:
        """Load config for ``project_root``, configure logging and build the runtime."""
        config = load_config(project_root, **overrides)
        configure_logging(config=config.logging)
        return cls(project_root=project_root, config=config)

    async def start(self) -> None:
        """Create tables and subscribe listeners."""
        if self._started:
            return
        self.db.create_all()
        self.listeners.register(self.bus)
        self._started = True
        logger.info("runtime_started", project_root=str(self.project_root))

    async def stop(self) -> None:
        """Flush pending syncs and release resources."""
        logger.info("runtime_stopping")
        timeout = self.config.timeouts.shutdown_sec

        # Stop with timeout to prevent hanging
        try:
            async with asyncio.timeout(timeout):
                # Handlers first so their requests reach the executor before it closes
                await self.bus.drain()
                await self.listeners.close()
                await self.service.wait_background()
        except TimeoutError:
            logger.warning(
                "runtime_stop_timeout",
                message=f"Shutdown timed out after {timeout}s",
            )
            # Nothing may touch the database once the engine is disposed
            await self.listeners.abort()
            await self.service.cancel_background()

        self.db.dispose()
        logger.info("runtime_stopped")

    async def __aenter__(self) -> IndexSyncRuntime:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
