"""Admission control: concurrency cap, priority wait queue and queue timeouts.

Queued items are drained on three triggers: every completion, every
admission, and a periodic tick while the queue is non-empty. The tick is a
safety net for the event-driven paths, not the primary wake-up mechanism; the
ticker thread exits as soon as the queue is empty.
"""

from __future__ import annotations

import bisect
import itertools
import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from portfolio_report.orchestrator.errors import QueueTimeoutError, SchedulerStoppedError
from portfolio_report.orchestrator.models import (
    GenerationRequest,
    QueueItem,
    QueueStats,
    ReportResult,
    ReportType,
)

logger = logging.getLogger(__name__)

BASE_PRIORITY: dict[ReportType, int] = {
    ReportType.BASIC: 3,
    ReportType.INTERMEDIATE: 2,
    ReportType.ADVANCED: 1,
}


@dataclass(slots=True, frozen=True)
class PriorityPolicy:
    """Cheaper report types first; premium and retried requests get fixed bonuses."""

    base_priority: Mapping[ReportType, int] = field(default_factory=lambda: dict(BASE_PRIORITY))
    premium_bonus: int = 2
    retry_bonus: int = 1


def compute_priority(request: GenerationRequest, policy: PriorityPolicy | None = None) -> int:
    policy = policy or PriorityPolicy()
    priority = policy.base_priority.get(request.report_type, 0)
    if request.preferences.is_premium:
        priority += policy.premium_bonus
    if request.preferences.is_retry:
        priority += policy.retry_bonus
    return priority


class AdmissionController:
    """Runs at most `max_concurrent` requests and queues the rest by priority."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        process: Callable[[GenerationRequest], ReportResult],
        max_concurrent: int = 3,
        queue_timeout_seconds: float = 300.0,
        drain_interval_seconds: float = 1.0,
        priority_policy: PriorityPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if queue_timeout_seconds <= 0:
            raise ValueError("queue_timeout_seconds must be > 0")
        if drain_interval_seconds <= 0:
            raise ValueError("drain_interval_seconds must be > 0")
        self.max_concurrent = max_concurrent
        self.queue_timeout_seconds = queue_timeout_seconds
        self.drain_interval_seconds = drain_interval_seconds
        self.priority_policy = priority_policy or PriorityPolicy()
        self._process = process
        self._clock = clock
        self._lock = threading.Lock()
        self._queue: list[QueueItem] = []
        self._sequence = itertools.count()
        self._active = 0
        self._running = False
        self._executor: ThreadPoolExecutor | None = None
        self._ticker: threading.Thread | None = None
        self._ticker_stop = threading.Event()
        self._total_queued = 0
        self._total_processed = 0
        self._total_evicted = 0
        self._average_wait_ms = 0.0
        self._max_queue_depth = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_concurrent,
                thread_name_prefix="report-worker",
            )
            self._ticker_stop = threading.Event()
            self._running = True
        logger.info("Admission controller started (max_concurrent=%d)", self.max_concurrent)

    def stop(self, *, wait: bool = True) -> None:
        """Reject everything still queued and shut the worker pool down."""

        with self._lock:
            if not self._running:
                return
            self._running = False
            pending = self._queue
            self._queue = []
            executor = self._executor
            self._executor = None
            self._ticker_stop.set()

        for item in pending:
            if item.timer is not None:
                item.timer.cancel()
            if item.future.set_running_or_notify_cancel():
                item.future.set_exception(SchedulerStoppedError())
        if executor is not None:
            executor.shutdown(wait=wait)
        logger.info("Admission controller stopped (%d queued request(s) rejected)", len(pending))

    def submit(self, request: GenerationRequest) -> Future[ReportResult]:
        """Start `request` now if capacity allows, otherwise queue it by priority."""

        future: Future[ReportResult] = Future()
        with self._lock:
            if not self._running:
                raise SchedulerStoppedError()
            if self._active < self.max_concurrent:
                self._active += 1
                self._launch_locked(request, future)
                active = self._active
                queued = None
            else:
                item = QueueItem(
                    item_id=request.request_id,
                    request=request,
                    priority=compute_priority(request, self.priority_policy),
                    sequence=next(self._sequence),
                    enqueued_at=self._clock(),
                    future=future,
                )
                bisect.insort(self._queue, item, key=QueueItem.sort_key)
                self._total_queued += 1
                self._max_queue_depth = max(self._max_queue_depth, len(self._queue))
                item.timer = threading.Timer(
                    self.queue_timeout_seconds,
                    self._evict,
                    args=(item.item_id,),
                )
                item.timer.daemon = True
                item.timer.start()
                self._ensure_ticker_locked()
                active = self._active
                queued = item

        if queued is None:
            logger.info("Admitted %s immediately (%d active)", request.request_id, active)
        else:
            future.add_done_callback(lambda done, item=queued: self._discard_cancelled(item, done))
            logger.info(
                "Queued %s with priority %d (%d in queue, %d active)",
                request.request_id,
                queued.priority,
                self.queued_count,
                active,
            )
        return future

    def drain(self) -> int:
        """Move queued requests into execution while capacity remains."""

        started: list[tuple[str, float]] = []
        with self._lock:
            if not self._running:
                return 0
            while self._queue and self._active < self.max_concurrent:
                item = self._queue.pop(0)
                if item.timer is not None:
                    item.timer.cancel()
                if item.future.cancelled():
                    continue
                wait_ms = (self._clock() - item.enqueued_at) * 1000
                self._average_wait_ms = (
                    self._average_wait_ms * self._total_processed + wait_ms
                ) / (self._total_processed + 1)
                self._total_processed += 1
                self._active += 1
                self._launch_locked(item.request, item.future)
                started.append((item.item_id, wait_ms))

        for item_id, wait_ms in started:
            logger.info("Processing queued request %s (waited %.0fms)", item_id, wait_ms)
        return len(started)

    def stats(self) -> QueueStats:
        with self._lock:
            return QueueStats(
                queued_count=len(self._queue),
                active_count=self._active,
                max_concurrent=self.max_concurrent,
                total_queued=self._total_queued,
                total_processed=self._total_processed,
                total_evicted=self._total_evicted,
                average_wait_ms=self._average_wait_ms,
                max_queue_depth_seen=self._max_queue_depth,
            )

    @property
    def queued_count(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    def _launch_locked(self, request: GenerationRequest, future: Future[ReportResult]) -> None:
        if self._executor is None:
            raise RuntimeError("Admission controller executor is not running.")
        self._executor.submit(self._run, request, future)

    def _run(self, request: GenerationRequest, future: Future[ReportResult]) -> None:
        if not future.set_running_or_notify_cancel():
            self._release()
            return
        result: ReportResult | None = None
        failure: Exception | None = None
        try:
            result = self._process(request)
        except Exception as error:  # noqa: BLE001
            failure = error
        finally:
            self._release()
        if failure is not None:
            future.set_exception(failure)
        else:
            future.set_result(result)  # type: ignore[arg-type]

    def _release(self) -> None:
        with self._lock:
            self._active -= 1
        self.drain()

    def _evict(self, item_id: str) -> None:
        with self._lock:
            index = next(
                (position for position, item in enumerate(self._queue) if item.item_id == item_id),
                None,
            )
            if index is None:
                return
            item = self._queue.pop(index)
            self._total_evicted += 1

        waited = self._clock() - item.enqueued_at
        logger.warning("Evicted %s after %.1fs in queue", item_id, waited)
        if item.future.set_running_or_notify_cancel():
            item.future.set_exception(QueueTimeoutError(waited))

    def _discard_cancelled(self, item: QueueItem, future: Future[ReportResult]) -> None:
        if not future.cancelled():
            return
        with self._lock:
            index = next(
                (position for position, queued in enumerate(self._queue) if queued is item),
                None,
            )
            if index is None:
                return
            self._queue.pop(index)
        if item.timer is not None:
            item.timer.cancel()
        logger.info("Dropped cancelled request %s from the queue", item.item_id)

    def _ensure_ticker_locked(self) -> None:
        if self._ticker is not None:
            return
        self._ticker = threading.Thread(
            target=self._tick_loop,
            args=(self._ticker_stop,),
            daemon=True,
            name="admission-drain",
        )
        self._ticker.start()

    def _tick_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.drain_interval_seconds):
            with self._lock:
                if not self._queue:
                    self._ticker = None
                    return
            self.drain()
        with self._lock:
            if self._ticker is threading.current_thread():
                self._ticker = None
