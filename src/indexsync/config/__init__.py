"""Config module exports."""

from indexsync.config.loader import IndexSyncSettings, load_config, resolve_path
from indexsync.config.models import (
    DatabaseConfig,
    IndexSyncConfig,
    LoggingConfig,
    SchedulerConfig,
    SyncConfig,
    VectorStoreConfig,
)

__all__ = [
    "load_config",
    "resolve_path",
    "IndexSyncConfig",
    "IndexSyncSettings",
    "DatabaseConfig",
    "LoggingConfig",
    "SchedulerConfig",
    "SyncConfig",
    "VectorStoreConfig",
]
