"""IndexSync daemon - debounced background syncs driven by record events."""

from indexsync.daemon.events import ClassifierRunEvent, EventBus, EventKey, RecordEvent
from indexsync.daemon.lifecycle import IndexSyncRuntime, build_embedder
from indexsync.daemon.listeners import SearchListeners
from indexsync.daemon.scheduler import DebounceTaskExecutor, ExecutorState, ExecutorStatus

__all__ = [
    "ClassifierRunEvent",
    "DebounceTaskExecutor",
    "EventBus",
    "EventKey",
    "ExecutorState",
    "ExecutorStatus",
    "IndexSyncRuntime",
    "RecordEvent",
    "SearchListeners",
    "build_embedder",
]
