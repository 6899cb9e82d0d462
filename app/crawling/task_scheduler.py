"""
Priority task scheduler for crawl work.

One coordinating coroutine pops tasks from a heap ordered by
(priority, insertion sequence) and runs at most `max_active_tasks` task bodies
concurrently. Failures are routed through the error classifier, which decides
whether a task is re-queued, skipped or aborted.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from app.crawling import events
from app.crawling.backoff import compute_backoff_delay
from app.crawling.error_classifier import ErrorClassifier, RecoveryAction, RecoveryDecision
from app.crawling.errors import TaskValidationError
from app.crawling.events import EventBus
from app.crawling.logging_utils import error_fields, log_event
from app.crawling.types import DEFAULT_TASK_PRIORITY, CrawlTask, SchedulerStats, TaskKind, TaskStatus

logger = logging.getLogger(__name__)

TaskHandler = Callable[[CrawlTask], Awaitable[Any]]


class TaskScheduler:
    """
    Bounded-concurrency priority queue with classifier-driven retries.
    """

    def __init__(
        self,
        *,
        classifier: ErrorClassifier,
        event_bus: EventBus | None = None,
        max_active_tasks: int = 10,
        max_retries: int = 3,
        retry_initial_seconds: float = 1.0,
        retry_max_seconds: float = 30.0,
        capacity_backoff_seconds: float = 1.0,
        history_size: int = 100,
        on_browser_restart: Callable[[], Awaitable[None]] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._classifier = classifier
        self._events = event_bus or EventBus()
        self._max_active_tasks = max(1, max_active_tasks)
        self._max_retries = max(0, max_retries)
        self._retry_initial_seconds = retry_initial_seconds
        self._retry_max_seconds = retry_max_seconds
        self._capacity_backoff_seconds = max(0.01, capacity_backoff_seconds)
        self._on_browser_restart = on_browser_restart
        self._sleep = sleep
        self._clock = clock

        self._handlers: dict[TaskKind, TaskHandler] = {}
        self._queue: list[tuple[int, int, CrawlTask]] = []
        self._sequence = itertools.count()
        self._active: dict[str, asyncio.Task] = {}
        self._active_tasks: dict[str, CrawlTask] = {}
        self._delayed: dict[str, tuple[CrawlTask, asyncio.Task]] = {}
        self._completed: deque[CrawlTask] = deque(maxlen=max(1, history_size))
        self._failed: deque[CrawlTask] = deque(maxlen=max(1, history_size))

        self._paused = False
        self._closed = False
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._loop_task: asyncio.Task | None = None

        self._succeeded_count = 0
        self._failed_count = 0
        self._retried_count = 0
        self._started_at: float | None = None

    @property
    def event_bus(self) -> EventBus:
        return self._events

    @property
    def max_active_tasks(self) -> int:
        return self._max_active_tasks

    def register_handler(self, kind: TaskKind | str, handler: TaskHandler) -> None:
        self._handlers[TaskKind(kind)] = handler

    # ------------------------------------------------------------------
    # Ingress
    # ------------------------------------------------------------------

    def submit(
        self,
        kind: TaskKind | str | None,
        payload: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        priority: int | None = None,
    ) -> str:
        """
        Validate and enqueue one task, returning its id.

        Raises:
            TaskValidationError: If `kind` is missing, unknown or has no handler.
        """

        if kind is None or (isinstance(kind, str) and not kind.strip()):
            raise TaskValidationError("Invalid task: kind is required")
        try:
            task_kind = TaskKind(kind)
        except ValueError as exc:
            raise TaskValidationError(f"Invalid task: unknown kind {kind!r}") from exc
        if task_kind not in self._handlers:
            raise TaskValidationError(f"Invalid task: no handler registered for {task_kind.value!r}")

        task = CrawlTask(
            kind=task_kind,
            payload=dict(payload or {}),
            options=dict(options or {}),
            priority=DEFAULT_TASK_PRIORITY if priority is None else int(priority),
        )
        self._enqueue(task)
        log_event(
            logger,
            logging.INFO,
            "task_submitted",
            task_id=task.id,
            kind=task.kind.value,
            priority=task.priority,
            queued=len(self._queue),
        )
        self._ensure_running()
        return task.id

    def start(self) -> None:
        """
        Start the dispatch loop on the running event loop.
        """

        if self._loop_task is not None and not self._loop_task.done():
            return
        self._closed = False
        if self._started_at is None:
            self._started_at = self._clock()
        self._loop_task = asyncio.get_running_loop().create_task(self._dispatch_loop())

    async def shutdown(self, *, wait: bool = True) -> None:
        self._closed = True
        self._wakeup.set()
        for _task, timer in list(self._delayed.values()):
            timer.cancel()
        self._delayed.clear()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if wait and self._active:
            await asyncio.gather(*list(self._active.values()), return_exceptions=True)
        await self._events.drain()

    async def join(self) -> None:
        """
        Wait until no task is queued, waiting for a retry or running.
        """

        while self._is_busy():
            self._idle.clear()
            await self._idle.wait()
        await self._events.drain()

    # ------------------------------------------------------------------
    # Queue controls
    # ------------------------------------------------------------------

    def pause(self) -> None:
        self._paused = True
        log_event(logger, logging.INFO, "queue_paused", queued=len(self._queue))
        self._events.emit(events.QUEUE_PAUSED)

    def resume(self) -> None:
        self._paused = False
        log_event(logger, logging.INFO, "queue_resumed", queued=len(self._queue))
        self._events.emit(events.QUEUE_RESUMED)
        self._ensure_running()
        self._notify()

    def clear(self) -> int:
        """
        Drop queued and retry-waiting tasks; running tasks are untouched.
        """

        count = len(self._queue) + len(self._delayed)
        self._queue.clear()
        for _task, timer in list(self._delayed.values()):
            timer.cancel()
        self._delayed.clear()
        log_event(logger, logging.INFO, "queue_cleared", count=count)
        self._events.emit(events.QUEUE_CLEARED, count=count)
        self._notify()
        return count

    def stats(self) -> SchedulerStats:
        if self._paused:
            status = "paused"
        elif self._queue or self._active:
            status = "processing"
        else:
            status = "idle"
        elapsed = 0.0 if self._started_at is None else self._clock() - self._started_at
        return SchedulerStats(
            queued=len(self._queue) + len(self._delayed),
            active=len(self._active),
            succeeded=self._succeeded_count,
            failed=self._failed_count,
            retried=self._retried_count,
            elapsed_seconds=round(elapsed, 3),
            status=status,
        )

    def get_task(self, task_id: str) -> CrawlTask | None:
        if task_id in self._active_tasks:
            return self._active_tasks[task_id]
        if task_id in self._delayed:
            return self._delayed[task_id][0]
        for _priority, _seq, task in self._queue:
            if task.id == task_id:
                return task
        for task in (*self._completed, *self._failed):
            if task.id == task_id:
                return task
        return None

    def history(self) -> dict[str, list[CrawlTask]]:
        return {"completed": list(self._completed), "failed": list(self._failed)}

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _ensure_running(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.start()

    def _enqueue(self, task: CrawlTask) -> None:
        task.status = TaskStatus.PENDING
        heapq.heappush(self._queue, (task.priority, next(self._sequence), task))
        self._notify()

    def _notify(self) -> None:
        self._wakeup.set()
        if not self._is_busy():
            self._idle.set()

    def _is_busy(self) -> bool:
        return bool(self._queue or self._active or self._delayed)

    async def _dispatch_loop(self) -> None:
        while True:
            self._wakeup.clear()
            if self._closed:
                return
            if self._paused or not self._queue:
                await self._wakeup.wait()
                continue
            if len(self._active) >= self._max_active_tasks:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self._capacity_backoff_seconds)
                except asyncio.TimeoutError:
                    pass
                continue

            _priority, _seq, task = heapq.heappop(self._queue)
            self._launch(task)

    def _launch(self, task: CrawlTask) -> None:
        task.status = TaskStatus.PROCESSING
        task.started_at = datetime.now(timezone.utc)
        self._active_tasks[task.id] = task
        self._active[task.id] = asyncio.get_running_loop().create_task(self._execute(task))
        log_event(
            logger,
            logging.INFO,
            "task_started",
            task_id=task.id,
            kind=task.kind.value,
            priority=task.priority,
            retries=task.retries,
            active=len(self._active),
        )

    async def _execute(self, task: CrawlTask) -> None:
        handler = self._handlers[task.kind]
        try:
            result = await handler(task)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._handle_failure(task, exc)
        else:
            task.status = TaskStatus.COMPLETED
            task.completed_at = datetime.now(timezone.utc)
            task.result = result
            task.last_error = None
            self._succeeded_count += 1
            self._completed.append(task)
            log_event(
                logger,
                logging.INFO,
                "task_completed",
                task_id=task.id,
                kind=task.kind.value,
                retries=task.retries,
            )
            self._events.emit(events.TASK_COMPLETED, task=task, result=result)
        finally:
            self._active.pop(task.id, None)
            self._active_tasks.pop(task.id, None)
            self._notify()

    async def _handle_failure(self, task: CrawlTask, error: Exception) -> None:
        task.last_error = str(error) or error.__class__.__name__
        max_retries = int(task.options.get("max_retries", self._max_retries))
        decision = self._classifier.classify(
            error,
            context={**task.context(), "max_retries": max_retries},
            retries=task.retries,
        )

        if decision.action is RecoveryAction.RETRY and task.retries >= max_retries:
            decision = RecoveryDecision(action=RecoveryAction.SKIP, reason="max_retries_exceeded")

        if decision.action is RecoveryAction.RETRY:
            await self._schedule_retry(task, decision, error)
            return

        task.status = TaskStatus.FAILED
        task.completed_at = datetime.now(timezone.utc)
        self._failed_count += 1
        self._failed.append(task)
        log_event(
            logger,
            logging.ERROR,
            "task_failed",
            task_id=task.id,
            kind=task.kind.value,
            retries=task.retries,
            action=decision.action.value,
            reason=decision.reason,
            **error_fields(error),
        )
        self._events.emit(
            events.TASK_FAILED,
            task=task,
            error=task.last_error,
            action=decision.action.value,
            reason=decision.reason,
        )

    async def _schedule_retry(
        self,
        task: CrawlTask,
        decision: RecoveryDecision,
        error: Exception,
    ) -> None:
        if decision.restart_browser and self._on_browser_restart is not None:
            try:
                await self._on_browser_restart()
            except Exception as exc:
                log_event(logger, logging.ERROR, "browser_restart_failed", **error_fields(exc))

        delay = decision.delay_seconds
        if delay is None:
            delay = compute_backoff_delay(
                task.retries,
                initial_seconds=self._retry_initial_seconds,
                max_seconds=self._retry_max_seconds,
            )

        task.retries += 1
        task.priority += 1
        task.options.update(decision.modify_options)
        task.status = TaskStatus.PENDING
        self._retried_count += 1
        log_event(
            logger,
            logging.WARNING,
            "task_retry_scheduled",
            task_id=task.id,
            kind=task.kind.value,
            retries=task.retries,
            priority=task.priority,
            delay_seconds=round(delay, 3),
            reason=decision.reason,
            **error_fields(error),
        )
        timer = asyncio.get_running_loop().create_task(self._requeue_after(task, delay))
        self._delayed[task.id] = (task, timer)

    async def _requeue_after(self, task: CrawlTask, delay: float) -> None:
        try:
            await self._sleep(delay)
        finally:
            entry = self._delayed.pop(task.id, None)
        if entry is not None and not self._closed:
            self._enqueue(task)
        else:
            self._notify()
