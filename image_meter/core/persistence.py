"""
Detached cache write-back.

Artifacts are written to the cache after the caller already has them.
Failures are captured at submission or on the worker thread and logged;
they never reach the request that produced the artifact.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Optional, Set

from ..storage.cache import CacheStore
from ..storage.models import Artifact
from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


class BackgroundPersister:
    """Fire-and-forget writer for a cache store.

    Owns a small thread pool whose lifetime is independent of any single
    request. Hosts must call :meth:`drain` or :meth:`close` before exiting
    so that pending writes are not lost.
    """

    def __init__(self, cache: CacheStore, max_workers: int = 2):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.cache = cache
        self.failures = 0
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="cache-writer")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        with self._lock:
            return sum(1 for future in self._pending if not future.done())

    def submit(self, key: str, artifact: Artifact, cache_control: str) -> Future:
        """Schedule a write and return immediately.

        The returned future resolves to True if the artifact was stored and
        False if the write failed; it never raises.
        """
        try:
            future = self._executor.submit(self._write, key, artifact, cache_control)
        except RuntimeError as e:
            # Executor already shut down
            self._record_failure(PersistenceFailure(key, e))
            future = Future()
            future.set_result(False)
            return future

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _write(self, key: str, artifact: Artifact, cache_control: str) -> bool:
        try:
            stored = self.cache.put(key, artifact.data, artifact.content_type, cache_control)
            failure = None if stored else PersistenceFailure(key)
        except Exception as e:
            failure = PersistenceFailure(key, e)

        if failure is None:
            logger.debug("Persisted %s", key)
            return True

        self._record_failure(failure)
        return False

    def _record_failure(self, failure: PersistenceFailure) -> None:
        with self._lock:
            self.failures += 1
        logger.error("%s", failure)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for pending writes. Returns True if none remain."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self, timeout: Optional[float] = None) -> None:
        """Drain pending writes and stop the worker threads."""
        self.drain(timeout)
        self._executor.shutdown(wait=timeout is None)
