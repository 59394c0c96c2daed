"""Record event handlers that keep the active search index in sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from indexsync.config.models import SchedulerConfig
from indexsync.daemon.events import ClassifierRunEvent, EventBus, EventKey, RecordEvent
from indexsync.daemon.scheduler import DebounceTaskExecutor

if TYPE_CHECKING:
    from indexsync.index.ops import SearchIndexService

logger = structlog.get_logger()


@dataclass
class SearchListeners:
    """
    Translates record events into debounced syncs of the active index.

    - record ready / deleted: request a run (new work or orphans to sweep)
    - record updated, classifier run complete: the record's embeddable text
      changed, so its item on the active index is marked STALE first
    """

    service: SearchIndexService
    config: SchedulerConfig = field(default_factory=SchedulerConfig)

    executor: DebounceTaskExecutor = field(init=False)

    def __post_init__(self) -> None:
        self.executor = DebounceTaskExecutor(
            task=self._sync_active_index,
            name="search_index_sync",
            debounce_ms=self.config.debounce_ms,
            max_debounce_ms=self.config.max_debounce_ms,
            max_retries=self.config.max_retries,
            retry_delay_ms=self.config.retry_delay_ms,
        )

    def register(self, bus: EventBus) -> None:
        """Subscribe the handlers to ``bus``."""
        bus.subscribe(EventKey.RECORD_READY, self.handle_record_ready)
        bus.subscribe(EventKey.RECORD_UPDATED, self.handle_record_updated)
        bus.subscribe(EventKey.RECORD_DELETED, self.handle_record_deleted)
        bus.subscribe(EventKey.CLASSIFIER_RUN_COMPLETE, self.handle_classifier_run_complete)

    async def _sync_active_index(self) -> None:
        handle = self.service.get_active_index()
        if handle is None:
            logger.debug("sync_skipped_no_active_index")
            return
        await handle.sync()

    async def handle_record_ready(self, payload: RecordEvent) -> None:
        self.executor.request_run()

    async def handle_record_updated(self, payload: RecordEvent) -> None:
        self._mark_stale(payload.record_id)
        self.executor.request_run()

    async def handle_record_deleted(self, payload: RecordEvent) -> None:
        self.executor.request_run()

    async def handle_classifier_run_complete(self, payload: ClassifierRunEvent) -> None:
        if self._mark_stale(payload.record_id):
            self.executor.request_run()

    def _mark_stale(self, record_id: str) -> bool:
        handle = self.service.get_active_index()
        if handle is None:
            return False
        handle.mark_records_as_stale([record_id])
        return True

    async def close(self) -> None:
        """Flush the pending sync, if any, and stop accepting requests."""
        await self.executor.close()

    async def abort(self) -> None:
        """Cancel a pending or in-flight sync without waiting for it."""
        await self.executor.abort()
