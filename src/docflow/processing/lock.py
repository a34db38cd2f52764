"""
Per-tenant processing lock.

Only one batch run per tenant may be in flight inside a process. A second
trigger is rejected instead of queued.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Generator

from docflow.exceptions import AlreadyProcessingError

logger = logging.getLogger(__name__)


class ProcessingLock:
    """Non-blocking mutual exclusion for one tenant's batch runs."""

    def __init__(self, tenant: str = "default"):
        self.tenant = tenant
        self._lock = threading.Lock()

    @property
    def is_held(self) -> bool:
        return self._lock.locked()

    def acquire(self) -> None:
        """
        Take the lock without waiting.

        Raises:
            AlreadyProcessingError: If another run holds the lock
        """
        if not self._lock.acquire(blocking=False):
            logger.warning(f"Batch processing already running for {self.tenant}, trigger rejected")
            raise AlreadyProcessingError(self.tenant)
        logger.debug(f"Processing lock acquired for {self.tenant}")

    def release(self) -> None:
        if self._lock.locked():
            self._lock.release()
            logger.debug(f"Processing lock released for {self.tenant}")

    @contextmanager
    def hold(self) -> Generator[None, None, None]:
        """Hold the lock for the duration of a block, releasing it on any exit."""
        self.acquire()
        try:
            yield
        finally:
            self.release()


_locks: dict[str, ProcessingLock] = {}
_registry_lock = threading.Lock()


def get_processing_lock(tenant: str = "default") -> ProcessingLock:
    """The process-wide lock for a tenant, created unlocked on first use."""
    with _registry_lock:
        lock = _locks.get(tenant)
        if lock is None:
            lock = _locks[tenant] = ProcessingLock(tenant)
        return lock
