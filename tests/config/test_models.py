"""Tests for config/models.py module.

Covers:
- LogOutputConfig / LoggingConfig models
- SchedulerConfig validation
- SyncConfig validation
- VectorStoreConfig defaults
- IndexSyncConfig root model
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from indexsync.config.models import (
    DatabaseConfig,
    IndexSyncConfig,
    LoggingConfig,
    LogOutputConfig,
    SchedulerConfig,
    SyncConfig,
    TimeoutsConfig,
    VectorStoreConfig,
)


class TestLogOutputConfig:
    """Tests for LogOutputConfig model."""

    def test_defaults(self) -> None:
        config = LogOutputConfig()
        assert config.format == "console"
        assert config.destination == "stderr"
        assert config.level is None

    def test_absolute_path_destination(self) -> None:
        config = LogOutputConfig(destination="/var/log/indexsync.log")
        assert config.destination == "/var/log/indexsync.log"

    def test_relative_path_fails(self) -> None:
        """Relative path is rejected."""
        with pytest.raises(ValidationError, match="absolute path"):
            LogOutputConfig(destination="logs/app.log")


class TestLoggingConfig:
    def test_defaults(self) -> None:
        config = LoggingConfig()
        assert config.level == "INFO"
        assert len(config.outputs) == 1

    def test_invalid_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="TRACE")  # type: ignore[arg-type]


class TestSchedulerConfig:
    """Tests for SchedulerConfig model."""

    def test_defaults(self) -> None:
        config = SchedulerConfig()
        assert config.debounce_ms == 1000
        assert config.max_debounce_ms == 5000
        assert config.max_retries == 3
        assert config.retry_delay_ms == 1000

    def test_zero_debounce_allowed(self) -> None:
        config = SchedulerConfig(debounce_ms=0, max_debounce_ms=0, retry_delay_ms=0)
        assert config.debounce_ms == 0

    @pytest.mark.parametrize("field", ["debounce_ms", "max_retries", "retry_delay_ms"])
    def test_negative_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError, match=">= 0"):
            SchedulerConfig(**{field: -1})  # type: ignore[arg-type]

    def test_ceiling_below_debounce_rejected(self) -> None:
        """max_debounce_ms bounds the debounce, so it cannot be smaller."""
        with pytest.raises(ValidationError, match="max_debounce_ms"):
            SchedulerConfig(debounce_ms=2000, max_debounce_ms=1000)


class TestSyncConfig:
    def test_defaults(self) -> None:
        config = SyncConfig()
        assert config.batch_size == 50
        assert config.lease_ttl_sec == 300.0

    def test_zero_batch_size_rejected(self) -> None:
        with pytest.raises(ValidationError, match="batch_size"):
            SyncConfig(batch_size=0)

    def test_non_positive_lease_rejected(self) -> None:
        with pytest.raises(ValidationError, match="lease_ttl_sec"):
            SyncConfig(lease_ttl_sec=0)


class TestVectorStoreConfig:
    def test_defaults(self) -> None:
        config = VectorStoreConfig()
        assert config.embedder == "hashing"
        assert config.root == ".indexsync/vectors"
        assert config.top_k == 10

    def test_unknown_embedder_rejected(self) -> None:
        with pytest.raises(ValidationError):
            VectorStoreConfig(embedder="word2vec")  # type: ignore[arg-type]


class TestIndexSyncConfig:
    """Tests for the root model."""

    def test_defaults(self) -> None:
        config = IndexSyncConfig()
        assert isinstance(config.database, DatabaseConfig)
        assert config.database.path == ".indexsync/index.db"
        assert isinstance(config.timeouts, TimeoutsConfig)
        assert config.timeouts.shutdown_sec == 30.0

    def test_nested_from_dict(self) -> None:
        config = IndexSyncConfig.model_validate(
            {"scheduler": {"debounce_ms": 10, "max_debounce_ms": 20}, "sync": {"batch_size": 3}}
        )
        assert config.scheduler.debounce_ms == 10
        assert config.sync.batch_size == 3
