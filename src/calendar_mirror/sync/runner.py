"""
SyncRunner: one sync attempt from calendar ids to a recorded outcome.
"""

import enum
import logging
import threading
from datetime import datetime
from datetime import timezone
from typing import Callable

from calendar_mirror.audit import AuditLog
from calendar_mirror.auth import AuthorizationGate
from calendar_mirror.models import AuthorizationDenied
from calendar_mirror.models import CalendarMissing
from calendar_mirror.models import CalendarSyncError
from calendar_mirror.models import CreateClone
from calendar_mirror.models import DeleteClone
from calendar_mirror.models import EventFingerprint
from calendar_mirror.models import InvariantViolation
from calendar_mirror.models import SyncOperation
from calendar_mirror.models import SyncStats
from calendar_mirror.models import SyncStatus
from calendar_mirror.models import SyncWindow
from calendar_mirror.models import UpdateClone
from calendar_mirror.sync.reconciler import plan
from calendar_mirror.sync.reconciler import plan_clear


class RunPhase(enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    LISTING = "listing"
    PLANNING = "planning"
    APPLYING = "applying"
    COMMITTING = "committing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def describe(fingerprint: EventFingerprint) -> str:
    when = fingerprint.start.date() if fingerprint.all_day else fingerprint.start
    return f"'{fingerprint.title}' @ {when}"


class SyncRunner:
    """Runs reconciliations against a calendar store and records their outcome.

    ``store`` is duck-typed: anything providing ``resolve_calendar``,
    ``list_events``, ``stage_create``, ``stage_update``, ``stage_delete``,
    ``commit`` and ``discard`` (see ``EDSCalendarStore``).

    Not thread-safe on its own; ``SyncWorker`` serializes calls to ``run``.
    """

    def __init__(
        self,
        store,
        gate: AuthorizationGate,
        audit_log: AuditLog,
        dry_run: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.gate = gate
        self.audit_log = audit_log
        self.dry_run = dry_run
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self.phase = RunPhase.IDLE
        self.last_operations: list[SyncOperation] = []
        self._last_status: SyncStatus | None = None
        self._status_lock = threading.Lock()

    @property
    def last_status(self) -> SyncStatus | None:
        """Result of the most recent run; None while a run is in progress."""
        with self._status_lock:
            return self._last_status

    def _set_status(self, status: SyncStatus | None) -> None:
        with self._status_lock:
            self._last_status = status

    def _enter(self, phase: RunPhase) -> None:
        self.logger.debug(f"Run phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    # ------------------------------------------------------------------ #
    # Public entry points                                                   #
    # ------------------------------------------------------------------ #

    def run(self, source_calendar_id: str, dest_calendar_id: str, cause: str) -> SyncStatus:
        """Mirror the source calendar into the destination calendar."""

        def body(start_time: datetime, stats: SyncStats) -> None:
            if source_calendar_id == dest_calendar_id:
                raise CalendarSyncError("Source and destination calendars must differ")
            handles = self._resolve(source_calendar_id, dest_calendar_id)
            window = SyncWindow.starting_at(start_time)

            self._enter(RunPhase.LISTING)
            snapshots = self.store.list_events(list(handles.values()), window.start, window.end)

            self._enter(RunPhase.PLANNING)
            operations = plan(source_calendar_id, dest_calendar_id, snapshots)
            self._apply(operations, handles, stats)

        return self._execute(cause, body)

    def clear(self, dest_calendar_id: str, cause: str = "clear") -> SyncStatus:
        """Delete every clone in the destination calendar without re-syncing."""

        def body(start_time: datetime, stats: SyncStats) -> None:
            handles = self._resolve(dest_calendar_id)
            window = SyncWindow.starting_at(start_time)

            self._enter(RunPhase.LISTING)
            snapshots = self.store.list_events(list(handles.values()), window.start, window.end)

            self._enter(RunPhase.PLANNING)
            operations = plan_clear(dest_calendar_id, snapshots)
            self._apply(operations, handles, stats)

        return self._execute(cause, body)

    # ------------------------------------------------------------------ #
    # Steps                                                                 #
    # ------------------------------------------------------------------ #

    def _execute(self, cause: str, body: Callable[[datetime, SyncStats], None]) -> SyncStatus:
        self._set_status(None)
        self.phase = RunPhase.IDLE
        self.last_operations = []
        start_time = self.clock()
        stats = SyncStats()

        try:
            if not self.gate.authorized:
                raise AuthorizationDenied(f"Calendar access is {self.gate.state.value}")
            body(start_time, stats)
        except InvariantViolation as e:
            self._fail()
            self.logger.critical(f"Store contract violated, aborting run: {e}")
            self._finish(
                cause, SyncStatus(ok=False, timestamp=start_time, error=f"invariant violation: {e}")
            )
            raise
        except CalendarSyncError as e:
            self._fail()
            self.logger.error(f"Sync failed ({cause}): {e}")
            return self._finish(cause, SyncStatus(ok=False, timestamp=start_time, error=str(e)))
        except Exception as e:
            self._fail()
            self.logger.error(f"Unexpected error ({cause}): {e}", exc_info=True)
            return self._finish(cause, SyncStatus(ok=False, timestamp=start_time, error=str(e)))

        self._enter(RunPhase.SUCCEEDED)
        self.logger.info(
            f"Sync ok ({cause}): {stats.added} added, "
            f"{stats.modified} updated, {stats.deleted} deleted"
        )
        return self._finish(cause, SyncStatus(ok=True, timestamp=start_time, stats=stats))

    def _finish(self, cause: str, status: SyncStatus) -> SyncStatus:
        try:
            self.audit_log.record(cause, status.timestamp, status.error)
        finally:
            self._set_status(status)
        return status

    def _fail(self) -> None:
        touched_store = self.phase is not RunPhase.IDLE
        self._enter(RunPhase.FAILED)
        if not touched_store:
            return
        try:
            self.store.discard()
        except Exception as e:
            self.logger.warning(f"Could not discard staged changes: {e}")

    def _resolve(self, *calendar_ids: str) -> dict:
        self._enter(RunPhase.RESOLVING)
        handles = {}
        for calendar_id in calendar_ids:
            handle = self.store.resolve_calendar(calendar_id)
            if handle is None:
                raise CalendarMissing(f"Calendar '{calendar_id}' no longer exists")
            handles[calendar_id] = handle
        return handles

    def _apply(self, operations: list[SyncOperation], handles: dict, stats: SyncStats) -> None:
        self._enter(RunPhase.APPLYING)
        self.last_operations = operations
        prefix = "[DRY RUN] Would " if self.dry_run else ""
        level = logging.INFO if self.dry_run else logging.DEBUG

        for op in operations:
            if isinstance(op, CreateClone):
                self.logger.log(level, f"{prefix}CREATE clone of {describe(op.fingerprint)}")
                if not self.dry_run:
                    self.store.stage_create(
                        op.fingerprint, op.availability, handles[op.dest_calendar_id]
                    )
                stats.added += 1
            elif isinstance(op, UpdateClone):
                self.logger.log(
                    level, f"{prefix}UPDATE clone {op.clone.id} ({op.availability.value})"
                )
                if not self.dry_run:
                    self.store.stage_update(op.clone, op.availability)
                stats.modified += 1
            elif isinstance(op, DeleteClone):
                self.logger.log(
                    level,
                    f"{prefix}DELETE clone {op.clone.id} of {describe(op.clone.fingerprint)}"
                )
                if not self.dry_run:
                    self.store.stage_delete(op.clone)
                stats.deleted += 1

        if self.dry_run:
            self.logger.info(
                f"[DRY RUN] Would create {stats.added}, update {stats.modified}, "
                f"delete {stats.deleted}"
            )
            return

        self._enter(RunPhase.COMMITTING)
        self.store.commit()
