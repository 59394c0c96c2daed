"""Debounced task executor.

Coalesces bursts of run requests into single task executions:

- A request starts a quiet period of ``debounce_ms``; each further request
  restarts it, but the run never fires later than ``max_debounce_ms`` after
  the first request of the burst.
- At most one execution is in flight. Requests made while it runs collapse
  into a single follow-up, debounced from the moment the current run ends.
- Failed executions are retried ``max_retries`` times with a fixed
  ``retry_delay_ms`` between attempts. Exhaustion is logged, never raised.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import structlog

logger = structlog.get_logger()


class ExecutorState(Enum):
    """Debounce executor state."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    CLOSED = "closed"


@dataclass
class ExecutorStatus:
    """Current executor status."""

    state: ExecutorState
    pending: bool
    runs_completed: int = 0
    runs_failed: int = 0
    last_error: str | None = None


@dataclass
class DebounceTaskExecutor:
    """
    Runs ``task`` at most once per burst of ``request_run()`` calls.

    Design:
    - A single timer task sleeps until the current fire time, re-reading it
      after every wake-up since requests may push it back
    - The timer task itself executes the run, so "scheduled" and "running"
      never overlap
    - close() flushes: a scheduled or queued run executes before it returns
    """

    task: Callable[[], Awaitable[None]]
    name: str = "task"
    debounce_ms: int = 1000
    max_debounce_ms: int = 5000
    max_retries: int = 3
    retry_delay_ms: int = 1000

    _state: ExecutorState = field(default=ExecutorState.IDLE, init=False)
    _closed: bool = field(default=False, init=False)
    _timer: asyncio.Task[None] | None = field(default=None, init=False)
    _first_request_at: float | None = field(default=None, init=False)
    _fire_at: float | None = field(default=None, init=False)
    _pending: bool = field(default=False, init=False)
    _runs_completed: int = field(default=0, init=False)
    _runs_failed: int = field(default=0, init=False)
    _last_error: str | None = field(default=None, init=False)
    _close_task: asyncio.Task[None] | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        if self.debounce_ms < 0 or self.retry_delay_ms < 0 or self.max_retries < 0:
            raise ValueError("debounce_ms, retry_delay_ms and max_retries must be >= 0")
        if self.max_debounce_ms < self.debounce_ms:
            raise ValueError("max_debounce_ms must be >= debounce_ms")

    def request_run(self) -> None:
        """Ask for a run. Returns immediately; no-op once closed."""
        if self._closed:
            logger.debug("debounce_request_ignored_closed", name=self.name)
            return

        if self._state is ExecutorState.RUNNING:
            self._pending = True
            logger.debug("debounce_followup_queued", name=self.name)
            return

        now = asyncio.get_running_loop().time()
        debounce = self.debounce_ms / 1000

        if self._state is ExecutorState.SCHEDULED and self._first_request_at is not None:
            ceiling = self._first_request_at + self.max_debounce_ms / 1000
            self._fire_at = min(now + debounce, ceiling)
            return

        self._first_request_at = now
        self._fire_at = now + debounce
        self._state = ExecutorState.SCHEDULED
        self._timer = asyncio.get_running_loop().create_task(self._wait_and_run())
        logger.debug("debounce_run_scheduled", name=self.name, delay_ms=self.debounce_ms)

    async def close(self) -> None:
        """
        Flush and shut down.

        A scheduled run fires immediately instead of waiting out its debounce;
        an in-flight run is awaited, followed by its queued follow-up if any.
        Safe to call more than once; later calls wait for the first to finish.
        """
        if self._close_task is None:
            self._closed = True
            self._close_task = asyncio.get_running_loop().create_task(self._flush_and_close())
        await asyncio.shield(self._close_task)

    async def abort(self) -> None:
        """Cancel whatever is still scheduled, running or flushing, and close."""
        self._closed = True
        tasks = [t for t in (self._close_task, self._timer) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._pending = False
        self._timer = None
        self._state = ExecutorState.CLOSED
        logger.warning("debounce_executor_aborted", name=self.name, cancelled=len(tasks))

    async def _flush_and_close(self) -> None:
        timer = self._timer
        if self._state is ExecutorState.SCHEDULED and timer is not None:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer
            self._timer = None
            await self._run()
        elif timer is not None and not timer.done():
            await timer

        if self._pending:
            self._pending = False
            await self._run()

        self._state = ExecutorState.CLOSED
        logger.info("debounce_executor_closed", name=self.name)

    @property
    def status(self) -> ExecutorStatus:
        """Get current executor status."""
        return ExecutorStatus(
            state=self._state,
            pending=self._pending,
            runs_completed=self._runs_completed,
            runs_failed=self._runs_failed,
            last_error=self._last_error,
        )

    async def _wait_and_run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._fire_at is not None:
            delay = self._fire_at - loop.time()
            if delay <= 0:
                break
            await asyncio.sleep(delay)
        await self._run()

    async def _run(self) -> None:
        self._state = ExecutorState.RUNNING
        self._first_request_at = None
        self._fire_at = None
        try:
            await self._execute_with_retries()
        finally:
            self._state = ExecutorState.IDLE
            if self._pending and not self._closed:
                self._pending = False
                self.request_run()

    async def _execute_with_retries(self) -> None:
        attempts = self.max_retries + 1
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                await self.task()
            except Exception as e:
                last_error = e
                if attempt < attempts:
                    logger.warning(
                        "debounce_task_retry",
                        name=self.name,
                        attempt=attempt,
                        max_retries=self.max_retries,
                        error=str(e),
                    )
                    await asyncio.sleep(self.retry_delay_ms / 1000)
            else:
                self._runs_completed += 1
                self._last_error = None
                return

        self._runs_failed += 1
        self._last_error = str(last_error)
        logger.error(
            "debounce_task_failed",
            name=self.name,
            attempts=attempts,
            error=str(last_error),
            exc_info=last_error,
        )
