"""
tests/test_task_scheduler.py

Pytest unit tests for TaskScheduler and EventBus.

Handlers are plain coroutines and retry sleeps are replaced with a yielding
no-op, so every scenario runs in milliseconds.

Coverage
--------
- Submission validation (missing kind, unknown kind, no handler)
- Lower priority values run first; ties run in submission order
- Concurrency never exceeds max_active_tasks
- Retry then terminal failure with exactly one taskFailed event
- Per-task max_retries override, above and below the classifier default
- Browser restart hook on crash decisions
- Pause / resume / clear, including retry-waiting tasks
- Stats and history
- EventBus validation, wildcard listeners and failing listeners
"""

from __future__ import annotations

import asyncio

import pytest

from app.crawling import events
from app.crawling.error_classifier import ErrorClassifier
from app.crawling.errors import BrowserCrashError, TaskValidationError, TransientNetworkError
from app.crawling.events import CrawlEvent, EventBus
from app.crawling.task_scheduler import TaskScheduler
from app.crawling.types import TaskKind, TaskStatus


async def _no_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


def _make_scheduler(**overrides) -> TaskScheduler:
    params = {
        "classifier": ErrorClassifier(max_retry_attempts=5, rng=lambda: 0.0),
        "max_active_tasks": 2,
        "max_retries": 2,
        "capacity_backoff_seconds": 0.01,
        "sleep": _no_sleep,
    }
    params.update(overrides)
    return TaskScheduler(**params)


# ---------------------------------------------------------------------------
# Submission validation
# ---------------------------------------------------------------------------


class TestSubmitValidation:
    def test_missing_kind_rejected(self) -> None:
        scheduler = _make_scheduler()
        with pytest.raises(TaskValidationError):
            scheduler.submit(None, {"url": "https://shop.test"})

    def test_blank_kind_rejected(self) -> None:
        scheduler = _make_scheduler()
        with pytest.raises(TaskValidationError):
            scheduler.submit("  ")

    def test_unknown_kind_rejected(self) -> None:
        scheduler = _make_scheduler()
        with pytest.raises(TaskValidationError):
            scheduler.submit("teleport")

    def test_kind_without_handler_rejected(self) -> None:
        scheduler = _make_scheduler()
        with pytest.raises(TaskValidationError):
            scheduler.submit(TaskKind.PRODUCT, {"url": "https://shop.test/p/1"})


# ---------------------------------------------------------------------------
# Ordering and concurrency
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_priority_order(self) -> None:
        async def scenario() -> list[str]:
            scheduler = _make_scheduler(max_active_tasks=1)
            order: list[str] = []

            async def handler(task):
                order.append(task.payload["name"])

            scheduler.register_handler("category", handler)
            scheduler.pause()
            scheduler.submit("category", {"name": "low"}, priority=20)
            scheduler.submit("category", {"name": "high"}, priority=1)
            scheduler.submit("category", {"name": "mid-a"}, priority=10)
            scheduler.submit("category", {"name": "mid-b"}, priority=10)
            scheduler.resume()
            await scheduler.join()
            await scheduler.shutdown()
            return order

        assert asyncio.run(scenario()) == ["high", "mid-a", "mid-b", "low"]

    def test_concurrency_cap(self) -> None:
        async def scenario() -> tuple[int, int]:
            scheduler = _make_scheduler(max_active_tasks=2)
            active = 0
            peak = 0

            async def handler(task):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

            scheduler.register_handler("product", handler)
            for index in range(6):
                scheduler.submit("product", {"url": f"https://shop.test/p/{index}"})
            await scheduler.join()
            stats = scheduler.stats()
            await scheduler.shutdown()
            return peak, stats.succeeded

        peak, succeeded = asyncio.run(scenario())
        assert peak == 2
        assert succeeded == 6

    def test_completed_event_carries_result(self) -> None:
        async def scenario() -> list[CrawlEvent]:
            scheduler = _make_scheduler()
            received: list[CrawlEvent] = []
            scheduler.event_bus.on(events.TASK_COMPLETED, received.append)

            async def handler(task):
                return {"products": 3}

            scheduler.register_handler("search", handler)
            task_id = scheduler.submit("search", {"query": "tv"})
            await scheduler.join()
            await scheduler.shutdown()
            assert scheduler.get_task(task_id).status is TaskStatus.COMPLETED
            return received

        received = asyncio.run(scenario())
        assert len(received) == 1
        assert received[0].payload["result"] == {"products": 3}


# ---------------------------------------------------------------------------
# Retries and failures
# ---------------------------------------------------------------------------


class TestRetries:
    def test_retry_then_single_failure_event(self) -> None:
        async def scenario():
            scheduler = _make_scheduler(max_retries=2)
            calls: list[int] = []
            failures: list[CrawlEvent] = []
            scheduler.event_bus.on(events.TASK_FAILED, failures.append)

            async def handler(task):
                calls.append(task.retries)
                raise TransientNetworkError("net::ERR_CONNECTION_RESET")

            scheduler.register_handler("product", handler)
            task_id = scheduler.submit("product", {"url": "https://shop.test/p/1"}, priority=5)
            await scheduler.join()
            task = scheduler.get_task(task_id)
            stats = scheduler.stats()
            await scheduler.shutdown()
            return calls, failures, task, stats

        calls, failures, task, stats = asyncio.run(scenario())
        assert calls == [0, 1, 2]
        assert len(failures) == 1
        assert failures[0].payload["reason"] == "max_retries_exceeded"
        assert failures[0].payload["task"] is task
        assert task.status is TaskStatus.FAILED
        assert task.priority == 7
        assert stats.retried == 2
        assert stats.failed == 1

    def test_option_overrides_max_retries(self) -> None:
        async def scenario() -> int:
            scheduler = _make_scheduler(max_retries=5)
            calls: list[int] = []

            async def handler(task):
                calls.append(1)
                raise TransientNetworkError("reset")

            scheduler.register_handler("product", handler)
            scheduler.submit("product", {"url": "https://shop.test/p/1"}, options={"max_retries": 0})
            await scheduler.join()
            await scheduler.shutdown()
            return len(calls)

        assert asyncio.run(scenario()) == 1

    def test_task_budget_above_classifier_default(self) -> None:
        async def scenario():
            scheduler = _make_scheduler(classifier=ErrorClassifier(rng=lambda: 0.0), max_retries=3)
            calls: list[int] = []
            failures: list[CrawlEvent] = []
            scheduler.event_bus.on(events.TASK_FAILED, failures.append)

            async def handler(task):
                calls.append(task.retries)
                raise TransientNetworkError("net::ERR_CONNECTION_RESET")

            scheduler.register_handler("product", handler)
            scheduler.submit("product", {"url": "https://shop.test/p/1"}, options={"max_retries": 5})
            await scheduler.join()
            await scheduler.shutdown()
            return calls, failures

        calls, failures = asyncio.run(scenario())
        assert calls == [0, 1, 2, 3, 4, 5]
        assert len(failures) == 1
        assert failures[0].payload["action"] == "skip"
        assert failures[0].payload["reason"] == "max_retries_exceeded"

    def test_skip_decision_fails_without_retry(self) -> None:
        async def scenario():
            scheduler = _make_scheduler()
            calls: list[int] = []

            async def handler(task):
                calls.append(1)
                raise RuntimeError("404 Not found")

            scheduler.register_handler("product", handler)
            scheduler.submit("product", {"url": "https://shop.test/missing"})
            await scheduler.join()
            await scheduler.shutdown()
            return len(calls), scheduler.history()["failed"]

        count, failed = asyncio.run(scenario())
        assert count == 1
        assert failed[0].last_error == "404 Not found"

    def test_crash_triggers_browser_restart(self) -> None:
        async def scenario() -> int:
            restarts: list[int] = []

            async def restart() -> None:
                restarts.append(1)

            scheduler = _make_scheduler(on_browser_restart=restart)

            async def handler(task):
                if task.retries == 0:
                    raise BrowserCrashError("Target closed")
                return "ok"

            scheduler.register_handler("checkout", handler)
            scheduler.submit("checkout", {"url": "https://shop.test/p/1"})
            await scheduler.join()
            await scheduler.shutdown()
            return len(restarts)

        assert asyncio.run(scenario()) == 1

    def test_retry_applies_option_changes(self) -> None:
        async def scenario() -> list[dict]:
            scheduler = _make_scheduler()
            seen: list[dict] = []

            async def handler(task):
                seen.append(dict(task.options))
                if task.retries == 0:
                    raise RuntimeError("Navigation timeout of 30000 ms exceeded")

            scheduler.register_handler("category", handler)
            scheduler.submit("category", {"url": "https://shop.test/c"}, options={"timeout_ms": 10000})
            await scheduler.join()
            await scheduler.shutdown()
            return seen

        seen = asyncio.run(scenario())
        assert seen[1]["timeout_ms"] == 15000


# ---------------------------------------------------------------------------
# Queue controls
# ---------------------------------------------------------------------------


class TestQueueControls:
    def test_pause_holds_tasks(self) -> None:
        async def scenario():
            scheduler = _make_scheduler()
            ran: list[int] = []

            async def handler(task):
                ran.append(1)

            scheduler.register_handler("category", handler)
            scheduler.pause()
            scheduler.submit("category", {"url": "https://shop.test/c"})
            await asyncio.sleep(0.02)
            paused_stats = scheduler.stats()
            scheduler.resume()
            await scheduler.join()
            await scheduler.shutdown()
            return len(ran), paused_stats

        ran, paused_stats = asyncio.run(scenario())
        assert ran == 1
        assert paused_stats.status == "paused"
        assert paused_stats.queued == 1

    def test_clear_drops_queued_tasks(self) -> None:
        async def scenario():
            scheduler = _make_scheduler()
            cleared_events: list[CrawlEvent] = []
            scheduler.event_bus.on(events.QUEUE_CLEARED, cleared_events.append)

            async def handler(task):
                return None

            scheduler.register_handler("category", handler)
            scheduler.pause()
            for index in range(3):
                scheduler.submit("category", {"url": f"https://shop.test/c/{index}"})
            cleared = scheduler.clear()
            stats = scheduler.stats()
            await scheduler.shutdown()
            return cleared, stats, cleared_events

        cleared, stats, cleared_events = asyncio.run(scenario())
        assert cleared == 3
        assert stats.queued == 0
        assert cleared_events[0].payload == {"count": 3}

    def test_clear_cancels_retry_waiting_tasks(self) -> None:
        async def scenario():
            sleeping = asyncio.Event()

            async def park(seconds: float) -> None:
                sleeping.set()
                await asyncio.Event().wait()

            scheduler = _make_scheduler(sleep=park)
            calls: list[int] = []

            async def handler(task):
                calls.append(1)
                raise TransientNetworkError("reset")

            scheduler.register_handler("product", handler)
            scheduler.submit("product", {"url": "https://shop.test/p/1"})
            await sleeping.wait()
            cleared = scheduler.clear()
            await scheduler.join()
            await scheduler.shutdown()
            return cleared, len(calls), scheduler.stats()

        cleared, calls, stats = asyncio.run(scenario())
        assert cleared == 1
        assert calls == 1
        assert stats.queued == 0
        assert stats.status == "idle"


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------


class TestEventBus:
    def test_unknown_event_rejected(self) -> None:
        with pytest.raises(ValueError):
            EventBus().on("somethingElse", lambda event: None)

    def test_wildcard_receives_everything(self) -> None:
        bus = EventBus()
        names: list[str] = []
        bus.on("*", lambda event: names.append(event.name))
        bus.emit(events.PRODUCT_CRAWLED, product={})
        bus.emit(events.ERROR, type="product", error="boom")
        assert names == [events.PRODUCT_CRAWLED, events.ERROR]

    def test_failing_listener_does_not_break_others(self) -> None:
        bus = EventBus()
        received: list[CrawlEvent] = []

        def broken(event: CrawlEvent) -> None:
            raise RuntimeError("listener bug")

        bus.on(events.SEARCH_CRAWLED, broken)
        bus.on(events.SEARCH_CRAWLED, received.append)
        bus.emit(events.SEARCH_CRAWLED, query="tv", results=[])
        assert received[0].payload["query"] == "tv"

    def test_off_removes_listener(self) -> None:
        bus = EventBus()
        received: list[CrawlEvent] = []
        bus.on(events.QUEUE_PAUSED, received.append)
        bus.off(events.QUEUE_PAUSED, received.append)
        bus.emit(events.QUEUE_PAUSED)
        assert received == []

    def test_async_listener_drained(self) -> None:
        async def scenario() -> list[str]:
            bus = EventBus()
            seen: list[str] = []

            async def listener(event: CrawlEvent) -> None:
                await asyncio.sleep(0)
                seen.append(event.name)

            bus.on(events.CATEGORY_CRAWLED, listener)
            bus.emit(events.CATEGORY_CRAWLED, category={}, products=[])
            await bus.drain()
            return seen

        assert asyncio.run(scenario()) == [events.CATEGORY_CRAWLED]
