"""
Shared pytest fixtures and event helpers.
"""

from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from calendar_mirror.audit import AuditLog
from calendar_mirror.auth import AuthorizationGate
from calendar_mirror.auth import AuthState
from calendar_mirror.models import CLONE_MARKER
from calendar_mirror.models import Availability
from calendar_mirror.models import EventFingerprint
from calendar_mirror.models import EventSnapshot
from calendar_mirror.sync.runner import SyncRunner
from tests.fake_store import FakeCalendarStore
from tests.fake_store import FakeEvent

SOURCE_CAL_ID = "source-calendar-test"
DEST_CAL_ID = "destination-calendar-test"

NOW = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def make_fingerprint(
    title: str = "Standup",
    start: datetime = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
    minutes: int = 30,
    all_day: bool = False,
) -> EventFingerprint:
    """Return a fingerprint; the default is the 9:00–9:30 "Standup"."""
    return EventFingerprint(title, start, start + timedelta(minutes=minutes), all_day)


def make_snapshot(
    event_id: str,
    calendar_id: str,
    fingerprint: EventFingerprint | None = None,
    availability: Availability = Availability.BUSY,
    clone: bool = False,
) -> EventSnapshot:
    return EventSnapshot(
        id=event_id,
        calendar_id=calendar_id,
        fingerprint=fingerprint or make_fingerprint(),
        availability=availability,
        is_synced_clone=clone,
    )


def make_clone(fingerprint: EventFingerprint, availability=Availability.BUSY) -> FakeEvent:
    """Return a destination event carrying the clone marker."""
    return FakeEvent(fingerprint, availability, CLONE_MARKER)


@pytest.fixture
def store():
    return FakeCalendarStore({SOURCE_CAL_ID: {}, DEST_CAL_ID: {}})


@pytest.fixture
def gate():
    return AuthorizationGate(AuthState.AUTHORIZED)


@pytest.fixture
def audit_log(tmp_path):
    return AuditLog(tmp_path / "logs" / "sync.log")


@pytest.fixture
def runner(store, gate, audit_log):
    return SyncRunner(store, gate, audit_log, clock=lambda: NOW)
