"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (INDEXSYNC__SECTION__KEY)
3. Project YAML (.indexsync/config.yaml)
4. Global YAML (~/.config/indexsync/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    INDEXSYNC__<SECTION>__<KEY>=<VALUE>

Examples:
    INDEXSYNC__LOGGING__LEVEL=DEBUG
    INDEXSYNC__SCHEDULER__DEBOUNCE_MS=250
    INDEXSYNC__SYNC__BATCH_SIZE=100
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration."""

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        INDEXSYNC__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every batch and provider call.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class DatabaseConfig(BaseModel):
    """Database connection configuration.

    Env vars:
        INDEXSYNC__DATABASE__PATH: SQLite file (relative paths resolve against the project root)
        INDEXSYNC__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        INDEXSYNC__DATABASE__MAX_RETRIES: Max retry attempts for locked DB
    """

    path: str = Field(
        default=".indexsync/index.db",
        description="SQLite database holding indexes, index items and records.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks.",
    )
    max_retries: int = Field(
        default=3,
        description="Max retry attempts for locked database errors.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        description="Base delay between retries (exponential backoff).",
    )


class SchedulerConfig(BaseModel):
    """Debounced sync scheduler configuration.

    Env vars:
        INDEXSYNC__SCHEDULER__DEBOUNCE_MS: Quiet period before a run fires
        INDEXSYNC__SCHEDULER__MAX_DEBOUNCE_MS: Ceiling on delay from the first request
        INDEXSYNC__SCHEDULER__MAX_RETRIES: Retries for a failing run
        INDEXSYNC__SCHEDULER__RETRY_DELAY_MS: Fixed delay between retries
    """

    debounce_ms: int = Field(
        default=1000,
        description="Quiet period before a requested sync fires. "
        "Each new request pushes the run back by this amount.",
    )
    max_debounce_ms: int = Field(
        default=5000,
        description="Upper bound on delay measured from the first request in a burst.",
    )
    max_retries: int = Field(
        default=3,
        description="Retries for a failed sync run before it is logged and dropped.",
    )
    retry_delay_ms: int = Field(
        default=1000,
        description="Fixed delay between retries.",
    )

    @field_validator("debounce_ms", "max_debounce_ms", "retry_delay_ms", "max_retries")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Must be >= 0, got {v}")
        return v

    @model_validator(mode="after")
    def validate_ceiling(self) -> "SchedulerConfig":
        if self.max_debounce_ms < self.debounce_ms:
            raise ValueError(
                f"max_debounce_ms ({self.max_debounce_ms}) must be >= debounce_ms ({self.debounce_ms})"
            )
        return self


class SyncConfig(BaseModel):
    """Reconciliation configuration.

    Env vars:
        INDEXSYNC__SYNC__BATCH_SIZE: Records per upsert batch
        INDEXSYNC__SYNC__LEASE_TTL_SEC: Lifetime of the indexing lease
    """

    batch_size: int = Field(
        default=50,
        description="Records embedded per provider call and orphans deleted per round.",
    )
    lease_ttl_sec: float = Field(
        default=300.0,
        description="Indexing lease lifetime. Renewed after every batch; an expired lease "
        "held by a dead process is reclaimed by the next sync.",
    )

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"batch_size must be >= 1, got {v}")
        return v

    @field_validator("lease_ttl_sec")
    @classmethod
    def validate_lease_ttl(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"lease_ttl_sec must be > 0, got {v}")
        return v


class VectorStoreConfig(BaseModel):
    """Built-in numpy vector store configuration.

    Env vars:
        INDEXSYNC__VECTOR_STORE__ROOT: Directory for .npz index files
        INDEXSYNC__VECTOR_STORE__EMBEDDER: hashing or fastembed
    """

    root: str = Field(
        default=".indexsync/vectors",
        description="Directory where the numpy provider persists its indexes.",
    )
    embedder: Literal["hashing", "fastembed"] = Field(
        default="hashing",
        description="Embedding backend. fastembed downloads an ONNX model on first use.",
    )
    model_name: str = Field(
        default="BAAI/bge-small-en-v1.5",
        description="fastembed model name.",
    )
    dimension: int = Field(
        default=384,
        description="Vector dimension for the hashing embedder.",
    )
    top_k: int = Field(
        default=10,
        description="Default number of hits returned by a query.",
    )


class TimeoutsConfig(BaseModel):
    """Timeout configuration for runtime components."""

    shutdown_sec: float = Field(
        default=30.0,
        description="Max time to wait for the pending/in-flight sync on shutdown.",
    )


class IndexSyncConfig(BaseModel):
    """Root configuration for indexsync."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
