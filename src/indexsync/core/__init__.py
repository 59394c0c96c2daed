"""Core module exports."""

from indexsync.core.errors import (
    ConfigError,
    ErrorCode,
    IndexSyncError,
    InternalError,
    ProviderError,
    RecordNotEmbeddable,
    SearchIndexNotFound,
)
from indexsync.core.logging import (
    clear_run_id,
    configure_logging,
    get_logger,
    get_run_id,
    set_run_id,
)

__all__ = [
    # Errors
    "ConfigError",
    "ErrorCode",
    "IndexSyncError",
    "InternalError",
    "ProviderError",
    "RecordNotEmbeddable",
    "SearchIndexNotFound",
    # Logging
    "clear_run_id",
    "configure_logging",
    "get_logger",
    "get_run_id",
    "set_run_id",
]
