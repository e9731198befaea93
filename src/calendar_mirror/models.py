"""
Pure data models. No EDS imports.
"""

import enum
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timedelta
from pathlib import Path
from typing import Any

DEFAULT_CONFIG = Path.home() / ".config/calendar-mirror.conf"
DEFAULT_AUDIT_LOG = Path.home() / ".local/share/calendar-mirror/sync.log"

# Annotation (iCal DESCRIPTION) written on every clone we create.  It is the
# only provenance signal: there is no link table between source and clone.
CLONE_MARKER = "synced calendar item"

WINDOW_DAYS = 365
DEFAULT_INTERVAL_SECONDS = 900


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class CalendarMissing(CalendarSyncError):
    """A configured calendar id no longer resolves."""


class AuthorizationDenied(CalendarSyncError):
    """Calendar store access has not been granted."""


class StoreError(CalendarSyncError):
    """Listing, staging or committing failed at the store boundary."""


class InvariantViolation(RuntimeError):
    """The store returned data that breaks its own contract.

    Not a CalendarSyncError: a run that hits this must not be reported as an
    ordinary failure and retried later.
    """


class Availability(enum.Enum):
    NOT_SUPPORTED = "not-supported"
    BUSY = "busy"
    FREE = "free"
    TENTATIVE = "tentative"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class EventFingerprint:
    """Identity of an event for matching a source event to its clone."""

    title: str
    start: datetime
    end: datetime
    all_day: bool


@dataclass(frozen=True)
class EventSnapshot:
    """Read-only view of one event, produced fresh by the store on every run."""

    id: str
    calendar_id: str
    fingerprint: EventFingerprint
    availability: Availability
    is_synced_clone: bool
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class SyncWindow:
    """Half-open time range ``[start, end)`` considered by a run."""

    start: datetime
    end: datetime

    @classmethod
    def starting_at(cls, now: datetime, days: int = WINDOW_DAYS) -> "SyncWindow":
        return cls(now, now + timedelta(days=days))

    def overlaps(self, start: datetime, end: datetime) -> bool:
        # Zero-length events sitting exactly on the window start still count.
        if start >= self.end:
            return False
        return end > self.start or start >= self.start


# ---------------------------------------------------------------------------
# Operations emitted by the reconciler
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateClone:
    fingerprint: EventFingerprint
    availability: Availability
    dest_calendar_id: str


@dataclass(frozen=True)
class UpdateClone:
    clone: EventSnapshot
    availability: Availability


@dataclass(frozen=True)
class DeleteClone:
    clone: EventSnapshot


SyncOperation = CreateClone | UpdateClone | DeleteClone


# ---------------------------------------------------------------------------
# Run results and configuration
# ---------------------------------------------------------------------------


@dataclass
class SyncStats:
    """Statistics for sync operation."""

    added: int = 0
    modified: int = 0
    deleted: int = 0


@dataclass(frozen=True)
class SyncStatus:
    """Outcome of one run, stamped with the time the run started."""

    ok: bool
    timestamp: datetime
    error: str | None = None
    stats: SyncStats | None = None


@dataclass
class SyncConfig:
    """Configuration for calendar mirror operation."""

    source_calendar_id: str | None  # None for destination-only commands (clear)
    destination_calendar_id: str
    audit_log_path: Path = DEFAULT_AUDIT_LOG
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    dry_run: bool = False
    verbose: bool = False
    yes: bool = False  # Auto-confirm without prompting
