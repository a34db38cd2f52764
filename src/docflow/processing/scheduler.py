"""
Background scheduler for batch processing.

Triggers ``BatchMessageProcessor.process_batch`` on a fixed interval from a
daemon thread. A trigger that finds a run in progress is skipped and logged.
"""

import logging
import threading
import time
from typing import Optional

from docflow.config import settings
from docflow.exceptions import AlreadyProcessingError
from docflow.processing.processor import BatchMessageProcessor, ProcessingResult

logger = logging.getLogger(__name__)


class Scheduler:
    """Polls for pending messages every ``interval_seconds``."""

    def __init__(
        self,
        processor: BatchMessageProcessor,
        interval_seconds: Optional[float] = None,
    ):
        self.processor = processor
        self.interval_seconds = interval_seconds or settings.scheduler_interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.last_run_at: Optional[float] = None
        self.last_result: Optional[ProcessingResult] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def trigger(self) -> Optional[ProcessingResult]:
        """Run one processing pass now. Returns None when skipped or failed."""
        try:
            result = self.processor.process_batch()
        except AlreadyProcessingError:
            self.skipped += 1
            logger.info("Scheduled run skipped: processing already in progress")
            return None
        except Exception as e:
            self.failures += 1
            logger.error(f"Scheduled processing run failed: {e}", exc_info=True)
            return None

        self.runs += 1
        self.last_run_at = time.time()
        self.last_result = result
        return result

    def run(self) -> None:
        """Trigger immediately, then every interval until stopped."""
        logger.info(f"Scheduler started, interval {self.interval_seconds}s")
        while not self._stop_event.is_set():
            self.trigger()
            self._stop_event.wait(self.interval_seconds)
        logger.info(
            f"Scheduler stopped. Runs: {self.runs}, skipped: {self.skipped}, "
            f"failed: {self.failures}"
        )

    def start(self) -> None:
        if self.is_running:
            logger.warning("Scheduler is already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, daemon=True, name="batch-scheduler")
        self._thread.start()

    def stop(self, timeout: float = 10.0) -> None:
        """Signal the loop to stop and wait for the current run to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"Scheduler thread did not stop within {timeout}s timeout")
        self._thread = None

    def stats(self) -> dict[str, object]:
        return {
            "running": self.is_running,
            "interval_seconds": self.interval_seconds,
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_run_at": self.last_run_at,
        }
