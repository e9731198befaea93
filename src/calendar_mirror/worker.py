"""
Serialized owner of the sync runner.

Manual, periodic and store-change triggers all post requests to one worker
thread, so two reconciliations never interleave their staged changes against
the same store.
"""

import logging
import queue
import threading

from calendar_mirror.models import InvariantViolation
from calendar_mirror.models import SyncStatus
from calendar_mirror.sync.runner import SyncRunner

logger = logging.getLogger(__name__)


class _Request:
    def __init__(self, cause: str, clear: bool = False):
        self.cause = cause
        self.clear = clear
        self.done = threading.Event()
        self.status: SyncStatus | None = None
        self.error: BaseException | None = None


_STOP = object()


class SyncWorker:
    """Single thread that runs every sync for one (source, destination) pair.

    While a request is queued but not yet started, further triggers of the
    same kind are coalesced into it and share its result.  A trigger that
    arrives while a run is in flight is queued behind that run.

    ``source_calendar_id`` may be None for a worker that only clears.
    """

    def __init__(
        self, runner: SyncRunner, source_calendar_id: str | None, dest_calendar_id: str
    ):
        self.runner = runner
        self.source_calendar_id = source_calendar_id
        self.dest_calendar_id = dest_calendar_id
        self.fatal_error: InvariantViolation | None = None
        self._queue: queue.Queue = queue.Queue()
        self._pending: _Request | None = None
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def last_status(self) -> SyncStatus | None:
        return self.runner.last_status

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(
            target=self._loop, name="calendar-mirror-worker", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5) -> None:
        """Finish any queued request, then stop the worker thread."""
        if not self._thread:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout=timeout)

    def trigger(
        self,
        cause: str,
        wait: bool = False,
        timeout: float | None = None,
        clear: bool = False,
    ) -> SyncStatus | None:
        """Request a sync run, or with ``clear=True`` a clear of the destination.

        With ``wait=True`` block until the run finishes and return its status.
        Returns None when not waiting, or when ``timeout`` expires first; a
        timed-out run is still carried out and may still commit.

        Raises:
            InvariantViolation: the worker stopped after a store contract breach.
            RuntimeError: the worker was stopped before the request ran.
            Exception: anything else the run itself raised, such as an
                OSError from the audit log.
        """
        if self.fatal_error is not None:
            raise self.fatal_error
        if self._thread is not None and not self._thread.is_alive():
            raise RuntimeError("Sync worker has been stopped")
        if not clear and self.source_calendar_id is None:
            raise ValueError("Worker has no source calendar to sync from")

        with self._lock:
            if self._pending is not None and self._pending.clear == clear:
                logger.debug(
                    f"Sync already queued ({self._pending.cause}); coalescing '{cause}' trigger"
                )
                request = self._pending
            else:
                request = _Request(cause, clear)
                self._pending = request
                self._queue.put(request)

        if not wait:
            return None
        if not request.done.wait(timeout):
            logger.warning(f"Timed out waiting for '{request.cause}' sync to finish")
            return None
        if request.error is not None:
            raise request.error
        return request.status

    def _run(self, request: _Request) -> SyncStatus:
        if request.clear:
            return self.runner.clear(self.dest_calendar_id, request.cause)
        return self.runner.run(self.source_calendar_id, self.dest_calendar_id, request.cause)

    def _loop(self) -> None:
        while True:
            request = self._queue.get()
            if request is _STOP:
                break

            with self._lock:
                if self._pending is request:
                    self._pending = None

            try:
                request.status = self._run(request)
            except InvariantViolation as e:
                logger.critical(f"Stopping sync worker: {e}")
                self.fatal_error = e
                request.error = e
                break
            except Exception as e:
                # Not fatal: the caller sees the error, later triggers still run.
                logger.error(f"Sync run ({request.cause}) raised: {e}", exc_info=True)
                request.error = e
            finally:
                request.done.set()

        self._release_waiters()

    def _release_waiters(self) -> None:
        # Anything still queued after a stop or a fatal error will never run.
        with self._lock:
            self._pending = None
        error = self.fatal_error or RuntimeError("Sync worker has been stopped")
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                return
            if request is not _STOP:
                request.error = error
                request.done.set()
