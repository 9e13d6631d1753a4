"""Periodic sweep scheduling.

``SweepScheduler`` fires the sweep callback on wall-clock boundaries
(``*/N`` minutes, i.e. :00, :05, :10 for N=5) plus once shortly after
``start()``.  Ticks that would overlap a running sweep are skipped.
"""

from __future__ import annotations

import datetime as _dt
import logging
import threading
from typing import Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "sweep"
INITIAL_SWEEP_JOB_ID = "initial_sweep"


def cron_fields(interval_minutes: int) -> dict:
    """Cron trigger fields for an every-N-minutes schedule."""
    if interval_minutes < 1:
        raise ValueError("interval must be at least 1 minute")
    if interval_minutes < 60:
        return {"minute": f"*/{interval_minutes}"}
    if interval_minutes % 60 == 0 and interval_minutes // 60 < 24:
        return {"hour": f"*/{interval_minutes // 60}", "minute": 0}
    raise ValueError("intervals of an hour or more must be a whole number of hours below 24")


class SweepScheduler:
    def __init__(
        self,
        sweep: Callable[[], object],
        interval_minutes: int = 5,
        *,
        initial_delay_seconds: float = 2.0,
        on_stop: Optional[Callable[[], None]] = None,
    ) -> None:
        self._trigger_fields = cron_fields(int(interval_minutes))
        self.interval_minutes = int(interval_minutes)
        self._sweep = sweep
        self._initial_delay = initial_delay_seconds
        self._on_stop = on_stop
        self._scheduler: Optional[BackgroundScheduler] = None
        self._state_lock = threading.Lock()
        self._sweep_lock = threading.Lock()
        self.last_sweep_started: Optional[_dt.datetime] = None
        self.last_sweep_finished: Optional[_dt.datetime] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_lock.locked()

    @property
    def job_ids(self) -> List[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    @property
    def next_run_time(self) -> Optional[_dt.datetime]:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(SWEEP_JOB_ID)
        return job.next_run_time if job else None

    def start(self) -> None:
        with self._state_lock:
            if self._scheduler is not None:
                logger.warning("Tracker is already running")
                return
            logger.info("Starting category tracker (interval: every %d minutes)", self.interval_minutes)
            scheduler = BackgroundScheduler()
            scheduler.add_job(
                self.run_sweep,
                trigger="cron",
                id=SWEEP_JOB_ID,
                name="Category sweep",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
                **self._trigger_fields,
            )
            scheduler.add_job(
                self.run_sweep,
                trigger="date",
                id=INITIAL_SWEEP_JOB_ID,
                name="Initial category sweep",
                run_date=_dt.datetime.now(_dt.timezone.utc) + _dt.timedelta(seconds=self._initial_delay),
            )
            scheduler.start()
            self._scheduler = scheduler

    def stop(self) -> None:
        with self._state_lock:
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return
        logger.info("Stopping category tracker...")
        # An in-flight sweep keeps running; only future ticks are cancelled.
        scheduler.shutdown(wait=False)
        if self._on_stop is not None:
            try:
                self._on_stop()
            except Exception:
                logger.exception("Error releasing acquisition resources")
        logger.info("Tracker stopped")

    def run_sweep(self) -> None:
        if not self._sweep_lock.acquire(blocking=False):
            logger.warning("Previous sweep still running; skipping this tick")
            return
        try:
            self.last_sweep_started = _dt.datetime.now(_dt.timezone.utc)
            logger.info("Starting scheduled check...")
            self._sweep()
        except Exception:
            logger.exception("Error during scheduled check")
        finally:
            self.last_sweep_finished = _dt.datetime.now(_dt.timezone.utc)
            self._sweep_lock.release()


__all__ = ["SweepScheduler", "cron_fields", "SWEEP_JOB_ID", "INITIAL_SWEEP_JOB_ID"]
