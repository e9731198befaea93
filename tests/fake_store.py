"""
In-memory fake calendar store for testing.

Duck-type-compatible stand-in for EDSCalendarStore.  No EDS daemon is
required: events are kept in plain dicts keyed by calendar id, then event id.
"""

import itertools
from dataclasses import dataclass
from dataclasses import replace

from calendar_mirror.models import CLONE_MARKER
from calendar_mirror.models import Availability
from calendar_mirror.models import EventFingerprint
from calendar_mirror.models import EventSnapshot
from calendar_mirror.models import StoreError
from calendar_mirror.models import SyncWindow


@dataclass
class FakeEvent:
    fingerprint: EventFingerprint
    availability: Availability = Availability.BUSY
    notes: str = ""


@dataclass(frozen=True)
class FakeCalendar:
    calendar_id: str


class FakeCalendarStore:
    """In-memory stub that satisfies the EDSCalendarStore duck-type contract."""

    def __init__(self, calendars: dict[str, dict[str, FakeEvent]] | None = None):
        # calendar id → event id → FakeEvent
        self._calendars: dict[str, dict[str, FakeEvent]] = {
            cal_id: dict(events) for cal_id, events in (calendars or {}).items()
        }
        self._ids = itertools.count(1)
        self._staged: list[tuple] = []
        self.calls: list[str] = []
        self.creates: list[str] = []
        self.modifies: list[str] = []
        self.removes: list[str] = []
        self.commits = 0
        self.discards = 0
        self.fail_list = False
        self.fail_commit = False
        self.stray_snapshots: list[EventSnapshot] = []
        self.on_list = None

    # ------------------------------------------------------------------ #
    # EDSCalendarStore interface                                            #
    # ------------------------------------------------------------------ #

    def resolve_calendar(self, calendar_id: str) -> FakeCalendar | None:
        self.calls.append("resolve_calendar")
        if calendar_id not in self._calendars:
            return None
        return FakeCalendar(calendar_id)

    def list_events(self, calendars, start, end) -> list[EventSnapshot]:
        self.calls.append("list_events")
        if self.on_list is not None:
            self.on_list()
        if self.fail_list:
            raise StoreError("listing failed")
        window = SyncWindow(start, end)
        snapshots = []
        for calendar in calendars:
            for event_id, event in self._calendars[calendar.calendar_id].items():
                fp = event.fingerprint
                if not window.overlaps(fp.start, fp.end):
                    continue
                snapshots.append(
                    EventSnapshot(
                        id=event_id,
                        calendar_id=calendar.calendar_id,
                        fingerprint=fp,
                        availability=event.availability,
                        is_synced_clone=event.notes == CLONE_MARKER,
                        raw=event,
                    )
                )
        return snapshots + list(self.stray_snapshots)

    def stage_create(self, fingerprint, availability, dest: FakeCalendar) -> str:
        self.calls.append("stage_create")
        event_id = f"clone-{next(self._ids)}"
        self._staged.append(("create", dest.calendar_id, event_id, fingerprint, availability))
        return event_id

    def stage_update(self, clone: EventSnapshot, availability) -> None:
        self.calls.append("stage_update")
        self._staged.append(("update", clone.calendar_id, clone.id, None, availability))

    def stage_delete(self, clone: EventSnapshot) -> None:
        self.calls.append("stage_delete")
        self._staged.append(("delete", clone.calendar_id, clone.id, None, None))

    def commit(self) -> None:
        self.calls.append("commit")
        if self.fail_commit:
            raise StoreError("commit rejected")
        for kind, cal_id, event_id, fingerprint, availability in self._staged:
            events = self._calendars[cal_id]
            if kind == "create":
                events[event_id] = FakeEvent(fingerprint, availability, CLONE_MARKER)
                self.creates.append(event_id)
            elif kind == "update":
                events[event_id] = replace(events[event_id], availability=availability)
                self.modifies.append(event_id)
            else:
                events.pop(event_id, None)
                self.removes.append(event_id)
        self._staged.clear()
        self.commits += 1

    def discard(self) -> None:
        self.calls.append("discard")
        self._staged.clear()
        self.discards += 1

    # ------------------------------------------------------------------ #
    # Test helpers                                                          #
    # ------------------------------------------------------------------ #

    def events(self, calendar_id: str) -> dict[str, FakeEvent]:
        return self._calendars[calendar_id]

    def event_count(self, calendar_id: str) -> int:
        return len(self._calendars[calendar_id])

    @property
    def staged_count(self) -> int:
        return len(self._staged)

    def reset_counters(self):
        """Clear the call and create/modify/remove lists between sync runs."""
        self.calls.clear()
        self.creates.clear()
        self.modifies.clear()
        self.removes.clear()
