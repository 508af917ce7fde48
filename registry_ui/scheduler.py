"""Cron-scheduled purge runs in a background thread."""

import threading
from datetime import datetime
from typing import Callable, Optional

from croniter import croniter

from registry_ui.logging_config import configure_module_logging
from registry_ui.purge import PurgeConfigError

logger = configure_module_logging("scheduler")


class PurgeScheduler:
    """Fires a purge job on a cron schedule, one run at a time."""

    def __init__(self, schedule: str, job: Callable[[], object]):
        """
        Args:
            schedule: Cron expression, e.g. "0 3 * * *"
            job: Callable running one purge

        Raises:
            PurgeConfigError: If the schedule is not a valid cron expression
        """
        if not croniter.is_valid(schedule):
            raise PurgeConfigError(f"Invalid purge schedule: {schedule!r}")
        self.schedule = schedule
        self.job = job
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def next_run(self, base: Optional[datetime] = None) -> datetime:
        return croniter(self.schedule, base or datetime.now()).get_next(datetime)

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._loop, name="purge-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(f"Purge scheduled: {self.schedule}")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def run_once(self) -> None:
        logger.info("Starting scheduled purge...")
        try:
            self.job()
        except Exception as e:
            logger.error(f"Scheduled purge failed: {e}", exc_info=True)

    def _loop(self) -> None:
        while not self._stop.is_set():
            next_run = self.next_run()
            logger.info(f"Next scheduled purge: {next_run}")
            delay = max((next_run - datetime.now()).total_seconds(), 0)
            if self._stop.wait(delay):
                break
            self.run_once()
