"""Tests for ipwatch.services.monitoring_scheduler: deterministic ticking and overlap guard."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from ipwatch.services import monitoring_scheduler as scheduler_module
from ipwatch.services.errors import ScanInProgress
from ipwatch.services.monitoring_scheduler import MonitoringScheduler
from tests.conftest import NOW


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


class TestTick:
    def test_runs_only_when_due(self, clock):
        calls = []
        scheduler = MonitoringScheduler(job=lambda: calls.append(clock()), interval_seconds=3600, clock=clock)
        scheduler.next_run_at = clock() + timedelta(hours=1)

        assert scheduler.tick() is False
        clock.advance(minutes=59)
        assert scheduler.tick() is False
        clock.advance(minutes=1)
        assert scheduler.tick() is True
        assert calls == [NOW + timedelta(hours=1)]
        assert scheduler.next_run_at == NOW + timedelta(hours=2)

    def test_first_tick_schedules(self, clock):
        scheduler = MonitoringScheduler(job=lambda: None, interval_seconds=60, clock=clock)
        assert scheduler.tick() is False
        assert scheduler.next_run_at == NOW + timedelta(seconds=60)

    def test_job_failure_does_not_stop_schedule(self, clock):
        def boom():
            raise RuntimeError("feed down")

        scheduler = MonitoringScheduler(job=boom, interval_seconds=60, clock=clock)
        scheduler.next_run_at = clock()
        assert scheduler.tick() is True
        assert scheduler.last_error == "feed down"
        assert scheduler.runs == 1
        clock.advance(seconds=60)
        assert scheduler.tick() is True
        assert scheduler.runs == 2

    def test_tick_skipped_while_run_in_progress(self, clock):
        started = threading.Event()
        release = threading.Event()

        def slow_job():
            started.set()
            release.wait(5)
            return "done"

        scheduler = MonitoringScheduler(job=lambda: None, interval_seconds=60, clock=clock)
        worker = threading.Thread(target=lambda: scheduler.run_now(slow_job))
        worker.start()
        assert started.wait(5)

        scheduler.next_run_at = clock()
        assert scheduler.tick() is False
        assert scheduler.skipped == 1

        release.set()
        worker.join(5)
        assert scheduler.busy is False


class TestRunNow:
    def test_returns_job_result(self, clock):
        scheduler = MonitoringScheduler(job=lambda: {"alerts_found": 2}, interval_seconds=60, clock=clock)
        assert scheduler.run_now() == {"alerts_found": 2}
        assert scheduler.last_run_at == NOW

    def test_override_job(self, clock):
        scheduler = MonitoringScheduler(job=lambda: "scheduled", interval_seconds=60, clock=clock)
        assert scheduler.run_now(lambda: "manual") == "manual"

    def test_errors_propagate(self, clock):
        def boom():
            raise RuntimeError("db down")

        scheduler = MonitoringScheduler(job=boom, interval_seconds=60, clock=clock)
        with pytest.raises(RuntimeError):
            scheduler.run_now()
        assert scheduler.busy is False

    def test_concurrent_run_rejected(self, clock):
        release = threading.Event()
        started = threading.Event()

        def slow_job():
            started.set()
            release.wait(5)

        scheduler = MonitoringScheduler(job=slow_job, interval_seconds=60, clock=clock)
        worker = threading.Thread(target=scheduler.run_now)
        worker.start()
        assert started.wait(5)
        with pytest.raises(ScanInProgress):
            scheduler.run_now()
        release.set()
        worker.join(5)


class TestLifecycle:
    def test_start_and_stop(self):
        ran = threading.Event()
        scheduler = MonitoringScheduler(job=ran.set, interval_seconds=60, poll_seconds=0.01)
        scheduler.start(run_immediately=True)
        try:
            assert ran.wait(5)
            assert scheduler.running is True
            assert scheduler.status()["running"] is True
        finally:
            scheduler.stop()
        assert scheduler.running is False

    def test_start_is_idempotent(self):
        scheduler = MonitoringScheduler(job=lambda: None, interval_seconds=60, poll_seconds=0.01)
        scheduler.start()
        first = scheduler._thread
        scheduler.start()
        assert scheduler._thread is first
        scheduler.stop()

    def test_start_scheduler_respects_environment(self, monkeypatch):
        started = []
        monkeypatch.setattr(scheduler_module.monitoring_scheduler, "start", lambda: started.append(True))
        monkeypatch.setattr(scheduler_module.settings, "APP_ENV", "development")
        monkeypatch.setattr(scheduler_module.settings, "MONITORING_SCHEDULER_ENABLED", False)
        scheduler_module.start_scheduler()
        assert started == []
        monkeypatch.setattr(scheduler_module.settings, "APP_ENV", "production")
        scheduler_module.start_scheduler()
        assert started == [True]
