"""indexsync error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Index
- 4xxx: Provider
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003

    # Index (3xxx)
    INDEX_NOT_FOUND = 3001
    RECORD_NOT_EMBEDDABLE = 3002

    # Provider (4xxx)
    PROVIDER_NOT_FOUND = 4001
    NATIVE_EMBEDDING_NOT_SUPPORTED = 4002
    OPERATION_NOT_SUPPORTED = 4003

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class IndexSyncError(Exception):
    """Base error with structured context."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'INDEX_NOT_FOUND')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(IndexSyncError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )


class SearchIndexNotFound(IndexSyncError):
    """Raised when a search index id does not resolve."""

    @classmethod
    def for_id(cls, index_id: str) -> "SearchIndexNotFound":
        return cls(
            code=ErrorCode.INDEX_NOT_FOUND,
            message=f"Search index with id '{index_id}' not found",
            details={"id": index_id},
        )


class RecordNotEmbeddable(IndexSyncError):
    """Raised when a record is asked for embedding text before it is ready."""

    @classmethod
    def for_id(cls, record_id: str) -> "RecordNotEmbeddable":
        return cls(
            code=ErrorCode.RECORD_NOT_EMBEDDABLE,
            message=f"Record '{record_id}' is not ready for embedding",
            details={"record_id": record_id},
        )


class ProviderError(IndexSyncError):
    """Vector provider errors."""

    @classmethod
    def not_found(cls, provider_id: str) -> "ProviderError":
        return cls(
            code=ErrorCode.PROVIDER_NOT_FOUND,
            message=f"Search provider '{provider_id}' not found",
            details={"provider_id": provider_id},
        )

    @classmethod
    def native_embedding_not_supported(cls, provider_id: str) -> "ProviderError":
        return cls(
            code=ErrorCode.NATIVE_EMBEDDING_NOT_SUPPORTED,
            message=(
                f"Native embedding not supported for search provider '{provider_id}'. "
                "Configure an embedding-capable provider for the index."
            ),
            details={"provider_id": provider_id},
        )

    @classmethod
    def operation_not_supported(cls, provider_id: str, operation: str) -> "ProviderError":
        return cls(
            code=ErrorCode.OPERATION_NOT_SUPPORTED,
            message=f"{operation} is not implemented by search provider '{provider_id}'",
            details={"provider_id": provider_id, "operation": operation},
        )


class InternalError(IndexSyncError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
