"""Tests for the runtime composition root (lifecycle.py)."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from indexsync.config.models import (
    DatabaseConfig,
    IndexSyncConfig,
    SchedulerConfig,
    TimeoutsConfig,
    VectorStoreConfig,
)
from indexsync.daemon.events import EventKey, RecordEvent
from indexsync.daemon.lifecycle import IndexSyncRuntime, build_embedder
from indexsync.daemon.scheduler import ExecutorState
from indexsync.providers.embedders import FastEmbedEmbedder, HashingEmbedder
from indexsync.providers.numpy_store import NumpyVectorProvider
from indexsync.providers.registry import ProviderRegistry
from tests.index.fakes import FakeProvider


def _config(**overrides: object) -> IndexSyncConfig:
    base: dict[str, object] = {
        "scheduler": SchedulerConfig(debounce_ms=20, max_debounce_ms=100, retry_delay_ms=10),
        "vector_store": VectorStoreConfig(dimension=256),
    }
    base.update(overrides)
    return IndexSyncConfig(**base)  # type: ignore[arg-type]


class TestBuildEmbedder:
    def test_default_is_hashing(self) -> None:
        embedder = build_embedder(VectorStoreConfig(dimension=64))
        assert isinstance(embedder, HashingEmbedder)
        assert embedder.dimension == 64

    def test_fastembed_selected_lazily(self) -> None:
        embedder = build_embedder(VectorStoreConfig(embedder="fastembed", dimension=384))
        assert isinstance(embedder, FastEmbedEmbedder)
        assert embedder.dimension == 384


class TestRuntimeWiring:
    def test_given_defaults_when_built_then_paths_resolve_under_project(
        self, tmp_path: Path
    ) -> None:
        # When
        runtime = IndexSyncRuntime(project_root=tmp_path, config=_config())

        # Then
        assert runtime.db.db_path == tmp_path / ".indexsync" / "index.db"
        entry = runtime.registry.get_or_raise("numpy")
        assert isinstance(entry.provider, NumpyVectorProvider)
        assert entry.provider.root == tmp_path / ".indexsync" / "vectors"
        assert runtime.listeners.executor.debounce_ms == 20

    def test_given_custom_numpy_provider_when_built_then_kept(self, tmp_path: Path) -> None:
        registry = ProviderRegistry()
        custom = FakeProvider()
        registry.register("numpy", custom)

        runtime = IndexSyncRuntime(project_root=tmp_path, config=_config(), registry=registry)

        assert runtime.registry.get_or_raise("numpy").provider is custom

    def test_given_absolute_db_path_when_built_then_used_as_is(self, tmp_path: Path) -> None:
        db_path = tmp_path / "elsewhere" / "sync.db"
        config = _config(database=DatabaseConfig(path=str(db_path)))

        runtime = IndexSyncRuntime(project_root=tmp_path / "project", config=config)

        assert runtime.db.db_path == db_path


class TestRuntimeLifecycle:
    @pytest.mark.asyncio
    async def test_given_running_runtime_when_records_published_then_searchable(
        self, tmp_path: Path
    ) -> None:
        # Given
        async with IndexSyncRuntime(project_root=tmp_path, config=_config()) as runtime:
            await runtime.service.create_index(
                "library", "numpy", {"name": "library"}, active=True
            )
            await runtime.service.wait_background()
            report = runtime.records.add_record("q3.md", "quarterly revenue report")
            photos = runtime.records.add_record("trip.txt", "holiday photos from the coast")

            # When
            for record in (report, photos):
                runtime.bus.publish(EventKey.RECORD_READY, RecordEvent(record.id))
            await runtime.bus.drain()
            await asyncio.sleep(0.2)

            # Then
            results = await runtime.service.search("quarterly revenue")
            assert [r.id for r in results][0] == report.id
            assert {r.id for r in results} == {report.id, photos.id}

        assert runtime.listeners.executor.status.state == ExecutorState.CLOSED

    @pytest.mark.asyncio
    async def test_given_pending_sync_when_stopped_then_flushed(self, tmp_path: Path) -> None:
        # Given
        config = _config(
            scheduler=SchedulerConfig(debounce_ms=60_000, max_debounce_ms=60_000)
        )
        runtime = IndexSyncRuntime(project_root=tmp_path, config=config)
        await runtime.start()
        handle = await runtime.service.create_index(
            "library", "numpy", {"name": "library"}, active=True
        )
        await runtime.service.wait_background()
        record = runtime.records.add_record("late.txt", "arrived right before shutdown")
        runtime.bus.publish(EventKey.RECORD_READY, RecordEvent(record.id))

        # When
        await asyncio.wait_for(runtime.stop(), timeout=5.0)

        # Then
        reopened = IndexSyncRuntime(project_root=tmp_path, config=config)
        await reopened.start()
        status = reopened.service.get_index_or_raise(handle.id).status()
        assert status.indexed_count == 1
        await reopened.stop()

    @pytest.mark.asyncio
    async def test_given_hung_sync_when_stopped_then_cancelled_before_dispose(
        self, tmp_path: Path
    ) -> None:
        # Given
        config = _config(timeouts=TimeoutsConfig(shutdown_sec=0.1))
        runtime = IndexSyncRuntime(project_root=tmp_path, config=config)
        await runtime.start()
        never = asyncio.Event()
        cancelled: list[bool] = []

        async def hang() -> None:
            try:
                await never.wait()
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        runtime.listeners.executor.task = hang
        runtime.listeners.executor.debounce_ms = 0
        runtime.listeners.executor.request_run()
        await asyncio.sleep(0.02)

        # When
        await asyncio.wait_for(runtime.stop(), timeout=2.0)

        # Then
        assert cancelled == [True]
        assert runtime.listeners.executor.status.state == ExecutorState.CLOSED
        assert runtime.listeners.executor.status.pending is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, tmp_path: Path) -> None:
        runtime = IndexSyncRuntime(project_root=tmp_path, config=_config())
        await runtime.start()
        await runtime.start()

        assert runtime.bus.publish(EventKey.RECORD_READY, RecordEvent("x")) == 1
        await runtime.stop()


class TestFromProject:
    def test_given_project_yaml_when_loaded_then_applied(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        # Given
        monkeypatch.setattr(
            "indexsync.config.loader.GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml"
        )
        config_dir = tmp_path / ".indexsync"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text(
            "sync:\n  batch_size: 7\nscheduler:\n  debounce_ms: 250\n"
        )

        # When
        runtime = IndexSyncRuntime.from_project(tmp_path)

        # Then
        assert runtime.config.sync.batch_size == 7
        assert runtime.service.reconciler.batch_size == 7
        assert runtime.listeners.executor.debounce_ms == 250
