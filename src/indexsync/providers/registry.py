"""Registry of installed vector providers.

Providers are registered programmatically by the host application; how they
are discovered or loaded is up to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from indexsync.core.errors import ProviderError
from indexsync.providers.base import VectorProvider

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProviderEntry:
    """A registered provider plus its display metadata."""

    id: str
    provider: VectorProvider
    display_name: str
    description: str | None = None

    @property
    def supports_embedding(self) -> bool:
        return self.provider.supports_embedding


class ProviderRegistry:
    """Maps provider ids to provider instances."""

    def __init__(self) -> None:
        self._entries: dict[str, ProviderEntry] = {}

    def register(
        self,
        provider_id: str,
        provider: VectorProvider,
        *,
        display_name: str | None = None,
        description: str | None = None,
    ) -> ProviderEntry:
        """Register (or replace) a provider under ``provider_id``."""
        if provider_id in self._entries:
            logger.warning("provider_replaced", provider_id=provider_id)
        entry = ProviderEntry(
            id=provider_id,
            provider=provider,
            display_name=display_name or provider_id,
            description=description,
        )
        self._entries[provider_id] = entry
        logger.debug("provider_registered", provider_id=provider_id)
        return entry

    def get(self, provider_id: str) -> ProviderEntry | None:
        return self._entries.get(provider_id)

    def get_or_raise(self, provider_id: str) -> ProviderEntry:
        entry = self.get(provider_id)
        if entry is None:
            raise ProviderError.not_found(provider_id)
        return entry

    def list_providers(self) -> list[ProviderEntry]:
        return sorted(self._entries.values(), key=lambda e: e.id)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._entries
