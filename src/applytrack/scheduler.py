"""Interval scheduling of scan cycles with an overlap guard."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import DEFAULT_INTERVAL_MINUTES
from .errors import MailboxError
from .pipeline import CycleResult, ScanPipeline

LOGGER = logging.getLogger(__name__)
SCAN_JOB_ID = "scan_mailbox"


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanScheduler:
    """Triggers ``pipeline.run_cycle`` every ``interval_minutes``.

    At most one cycle runs at a time; a tick arriving while a cycle is running
    is skipped rather than queued.
    """

    def __init__(
        self,
        pipeline: ScanPipeline,
        *,
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
        scheduler_factory: Callable[[], Any] = BackgroundScheduler,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._pipeline = pipeline
        self._interval_minutes = interval_minutes
        self._scheduler_factory = scheduler_factory
        self._clock = clock
        self._scheduler: Any | None = None
        self._guard = threading.Lock()
        self._state = SchedulerState.IDLE
        self.ticks = 0
        self.skipped_ticks = 0
        self.last_started: datetime | None = None
        self.last_result: CycleResult | None = None
        self.last_error: str | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> bool:
        """Schedule the scan job. Returns False when the mailbox is disabled."""

        if not self._pipeline.enabled:
            LOGGER.info("Email scanning disabled in configuration; scheduler not started.")
            return False
        if self._scheduler is not None:
            LOGGER.warning("Scan scheduler already running")
            return True

        scheduler = self._scheduler_factory()
        scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id=SCAN_JOB_ID,
            name="Scan mailbox for application updates",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        LOGGER.info("Scan scheduler started (every %s minute(s))", self._interval_minutes)
        return True

    def shutdown(self, *, wait: bool = False) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        LOGGER.info("Scan scheduler stopped")

    def run_now(self) -> CycleResult | None:
        """Run a cycle immediately, honouring the overlap guard."""

        if not self._pipeline.enabled:
            LOGGER.info("Email scanning disabled in configuration; nothing to scan.")
            return None
        return self.tick()

    def tick(self) -> CycleResult | None:
        """Attempt one cycle; never raises."""

        self.ticks += 1
        if not self._guard.acquire(blocking=False):
            self.skipped_ticks += 1
            LOGGER.info("Previous scan cycle still running; skipping this tick.")
            return None
        try:
            self._state = SchedulerState.RUNNING
            self.last_started = self._clock()
            result = self._pipeline.run_cycle()
        except MailboxError as exc:
            self.last_error = str(exc)
            LOGGER.error("Scan cycle aborted: %s; retrying at next tick.", exc)
            return None
        except Exception as exc:
            self.last_error = str(exc)
            LOGGER.exception("Scan cycle failed unexpectedly")
            return None
        else:
            self.last_result = result
            self.last_error = None
            return result
        finally:
            self._state = SchedulerState.IDLE
            self._guard.release()

    def status_snapshot(self) -> dict[str, Any]:
        """Return a serialisable summary of scheduler and pipeline state."""

        metrics = self._pipeline.metrics
        return {
            "enabled": self._pipeline.enabled,
            "scheduled": self.is_running,
            "state": self._state.value,
            "interval_minutes": self._interval_minutes,
            "ticks": self.ticks,
            "skipped_ticks": self.skipped_ticks,
            "last_started": self.last_started.isoformat() if self.last_started else None,
            "last_error": self.last_error,
            "cycles": metrics.cycles,
            "failed_cycles": metrics.failed_cycles,
            "fetched": metrics.fetched,
            "parse_errors": metrics.parse_errors,
            "created": metrics.created,
            "updated": metrics.updated,
            "category_counts": dict(metrics.category_counts),
        }


__all__ = ["SCAN_JOB_ID", "ScanScheduler", "SchedulerState"]
