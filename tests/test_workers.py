"""Tests for the background worker pool."""

import sys
import threading
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, "src")

from automation_engine.engine import AutomationEngine
from automation_engine.models import DeliveryStatus, RunStatus
from automation_engine.workers import WorkerPool

from conftest import webhook_rule
from test_delivery import CLIENT_PATH, _mock_client


@pytest.fixture
def pool():
    p = WorkerPool(max_workers=2, poll_interval_seconds=60)
    yield p
    p.shutdown()


class TestWorkerPool:
    def test_submit_runs_in_worker_thread(self, pool):
        names = []
        future = pool.submit(lambda: names.append(threading.current_thread().name) or "done")
        assert future.result(timeout=5) == "done"
        assert names[0].startswith("automation-worker")

    def test_failures_propagate_to_future(self, pool):
        def boom():
            raise ValueError("nope")

        future = pool.submit(boom)
        with pytest.raises(ValueError):
            future.result(timeout=5)

    def test_wait_drains_submitted_work(self, pool):
        gate = threading.Event()
        done = []

        def slow():
            gate.wait(5)
            done.append(True)

        pool.submit(slow)
        gate.set()
        pool.wait(timeout=5)
        assert done == [True]

    def test_start_registers_jobs(self, pool):
        tick, retry = MagicMock(), MagicMock()
        pool.start(tick, retry)

        assert pool.scheduler.running
        assert pool.scheduler.get_job("automation-schedule-tick") is not None
        assert pool.scheduler.get_job("automation-delivery-retry") is not None

    def test_start_twice_is_noop(self, pool):
        pool.start(MagicMock(), MagicMock())
        pool.start(MagicMock(), MagicMock())
        assert len(pool.scheduler.get_jobs()) == 2


class TestEngineWithWorkers:
    def test_published_event_runs_in_background(self, backend, settings, make_event):
        workers = WorkerPool(max_workers=2, poll_interval_seconds=60)
        engine = AutomationEngine(backend=backend, settings=settings, workers=workers)
        engine.add_rule(webhook_rule())

        with patch(CLIENT_PATH, return_value=_mock_client(200)):
            [run] = engine.publish(make_event())
            # The run enqueues its delivery; drain both
            workers.wait(timeout=10)
            workers.wait(timeout=10)

        try:
            run = engine.get_run(run.id)
            assert run.status == RunStatus.COMPLETED
            [delivery] = engine.deliveries.for_run(run.id)
            assert delivery.status == DeliveryStatus.SUCCESS
        finally:
            engine.shutdown()

    def test_start_requires_workers(self, engine):
        with pytest.raises(RuntimeError):
            engine.start()

    def test_from_settings_sizes_pool(self, backend, settings):
        settings.worker_max_workers = 3
        engine = AutomationEngine.from_settings(settings, backend=backend)
        try:
            assert engine.workers.max_workers == 3
            assert engine.workers.poll_interval_seconds == settings.delivery_poll_interval_seconds
        finally:
            engine.shutdown()

    def test_from_settings_configures_http_pool(self, backend, settings):
        settings.worker_max_workers = 3
        settings.delivery_pool_maxsize = 7
        with patch("automation_engine.engine.configure_http_client") as configure:
            engine = AutomationEngine.from_settings(settings, backend=backend)
        try:
            [config] = configure.call_args.args
            assert config.pool_connections == 3
            assert config.pool_maxsize == 7
        finally:
            engine.shutdown()

    def test_shutdown_closes_http_client(self, backend, settings):
        engine = AutomationEngine.from_settings(settings, backend=backend)
        with patch("automation_engine.engine.close_sync_client") as close:
            engine.shutdown()
        close.assert_called_once()

    def test_shutdown_without_workers_still_closes_client(self, engine):
        with patch("automation_engine.engine.close_sync_client") as close:
            engine.shutdown()
        close.assert_called_once()
