"""Background execution: a thread pool for runs and deliveries, plus
APScheduler jobs for the schedule tick and the delivery retry poller."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs engine work off the caller's thread."""

    def __init__(self, max_workers: int = 4, poll_interval_seconds: float = 15.0):
        self.max_workers = max_workers
        self.poll_interval_seconds = poll_interval_seconds
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="automation-worker"
        )
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self._futures: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        future = self.executor.submit(self._run, fn, *args)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._discard)
        return future

    def start(
        self,
        tick_schedules: Callable[[], Any],
        deliver_due: Callable[[], Any],
    ) -> None:
        """Start the minute tick and the retry poller."""
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            tick_schedules,
            CronTrigger(second=0, timezone="UTC"),
            id="automation-schedule-tick",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            deliver_due,
            IntervalTrigger(seconds=self.poll_interval_seconds),
            id="automation-delivery-retry",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            f"Worker pool started (max_workers={self.max_workers}, "
            f"poll_interval={self.poll_interval_seconds}s)"
        )

    def wait(self, timeout: float | None = None) -> None:
        """Block until currently submitted work finishes."""
        with self._lock:
            pending = list(self._futures)
        for future in pending:
            try:
                future.result(timeout=timeout)
            except Exception as e:
                logger.debug(f"Worker task ended with error: {e}")

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.executor.shutdown(wait=wait)
        logger.info("Worker pool shutdown")

    def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except Exception as e:
            logger.exception(f"Background task {getattr(fn, '__name__', fn)} failed: {e}")
            raise

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)
