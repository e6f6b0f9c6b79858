import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from ipwatch.core.config import settings
from ipwatch.services.errors import ScanInProgress
from ipwatch.services.monitoring_pipeline import scheduled_monitoring_job

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitoringScheduler:
    """
    Periodic trigger for the monitoring pipeline. Owns no alert data.

    `tick()` runs the job when it is due according to `clock`; the background
    thread started by `start()` just calls `tick()` every `poll_seconds`. Runs
    never overlap: a due tick during a run is skipped, `run_now()` during a run
    raises ScanInProgress.
    """

    def __init__(
        self,
        job: Callable[[], Any],
        interval_seconds: float,
        clock: Optional[Callable[[], datetime]] = None,
        poll_seconds: float = 1.0
    ):
        self.job = job
        self.interval = timedelta(seconds=max(1.0, float(interval_seconds)))
        self.clock = clock or _utcnow
        self.poll_seconds = poll_seconds
        self.next_run_at: Optional[datetime] = None
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.runs = 0
        self.skipped = 0
        self._run_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    def start(self, run_immediately: bool = False) -> None:
        if self.running:
            return
        self._stop.clear()
        now = self.clock()
        self.next_run_at = now if run_immediately else now + self.interval
        self._thread = threading.Thread(target=self._loop, name="monitoring-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "monitoring scheduler started",
            extra={"interval_seconds": self.interval.total_seconds(), "next_run_at": self.next_run_at.isoformat()}
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        self._thread = None
        logger.info("monitoring scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.poll_seconds)

    def tick(self) -> bool:
        now = self.clock()
        if self.next_run_at is None:
            self.next_run_at = now + self.interval
            return False
        if now < self.next_run_at:
            return False
        self.next_run_at = now + self.interval
        if not self._run_lock.acquire(blocking=False):
            self.skipped += 1
            logger.warning("scheduled monitoring run skipped (previous run in progress)")
            return False
        try:
            self._execute("scheduled", self.job, raise_errors=False)
        finally:
            self._run_lock.release()
        return True

    def run_now(self, job: Optional[Callable[[], Any]] = None) -> Any:
        if not self._run_lock.acquire(blocking=False):
            raise ScanInProgress("A monitoring run is already in progress")
        try:
            return self._execute("manual", job or self.job, raise_errors=True)
        finally:
            self._run_lock.release()

    def _execute(self, trigger: str, job: Callable[[], Any], raise_errors: bool) -> Any:
        started = self.clock()
        logger.info("monitoring run started", extra={"trigger": trigger})
        try:
            result = job()
        except Exception as exc:
            self.last_error = str(exc) or type(exc).__name__
            logger.exception("monitoring run failed", extra={"trigger": trigger})
            if raise_errors:
                raise
            return None
        finally:
            self.last_run_at = started
            self.runs += 1
        self.last_error = None
        return result

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "busy": self.busy,
            "interval_seconds": int(self.interval.total_seconds()),
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at and self.running else None,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
            "runs": self.runs,
            "skipped": self.skipped
        }


monitoring_scheduler = MonitoringScheduler(
    job=scheduled_monitoring_job,
    interval_seconds=settings.MONITORING_INTERVAL_SECONDS
)


def scheduler_enabled() -> bool:
    return settings.APP_ENV == "production" or bool(settings.MONITORING_SCHEDULER_ENABLED)


def start_scheduler() -> None:
    if not scheduler_enabled():
        logger.info("monitoring scheduler disabled", extra={"app_env": settings.APP_ENV})
        return
    monitoring_scheduler.start()


def stop_scheduler() -> None:
    if monitoring_scheduler.running:
        monitoring_scheduler.stop()
