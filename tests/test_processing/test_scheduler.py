"""Tests for the background processing scheduler."""

import threading
from unittest.mock import Mock

from docflow.exceptions import AlreadyProcessingError
from docflow.processing.processor import BatchMessageProcessor, ProcessingResult
from docflow.processing.scheduler import Scheduler


def _processor() -> Mock:
    processor = Mock(spec=BatchMessageProcessor)
    processor.process_batch.return_value = ProcessingResult()
    return processor


class TestScheduler:
    """Tests for Scheduler."""

    def test_trigger_runs_processor(self):
        processor = _processor()
        scheduler = Scheduler(processor, interval_seconds=60)

        result = scheduler.trigger()

        assert isinstance(result, ProcessingResult)
        assert scheduler.runs == 1
        assert scheduler.last_run_at is not None
        processor.process_batch.assert_called_once_with()

    def test_trigger_skipped_when_busy(self):
        processor = _processor()
        processor.process_batch.side_effect = AlreadyProcessingError("default")
        scheduler = Scheduler(processor, interval_seconds=60)

        assert scheduler.trigger() is None
        assert scheduler.skipped == 1
        assert scheduler.runs == 0

    def test_trigger_failure_counted(self):
        processor = _processor()
        processor.process_batch.side_effect = RuntimeError("database down")
        scheduler = Scheduler(processor, interval_seconds=60)

        assert scheduler.trigger() is None
        assert scheduler.failures == 1

    def test_start_and_stop(self):
        """Test that the loop triggers immediately and stops on request."""
        processor = _processor()
        ran = threading.Event()
        processor.process_batch.side_effect = lambda: ran.set() or ProcessingResult()
        scheduler = Scheduler(processor, interval_seconds=60)

        scheduler.start()
        assert ran.wait(timeout=5)
        assert scheduler.is_running
        scheduler.stop(timeout=5)

        assert not scheduler.is_running
        assert scheduler.runs == 1

    def test_stats(self):
        scheduler = Scheduler(_processor(), interval_seconds=30)
        scheduler.trigger()

        stats = scheduler.stats()

        assert stats["running"] is False
        assert stats["interval_seconds"] == 30
        assert stats["runs"] == 1
        assert stats["skipped"] == 0
        assert stats["failures"] == 0
        assert stats["last_run_at"] is not None
