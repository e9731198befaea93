"""
Evolution Data Server calendar store: resolution, listing and batched writes.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable
from typing import Optional
from typing import Tuple

import gi

gi.require_version("EDataServer", "1.2")
gi.require_version("ECal", "2.0")
gi.require_version("ICalGLib", "3.0")
from gi.repository import ECal
from gi.repository import EDataServer
from gi.repository import GLib
from gi.repository import ICalGLib

from calendar_mirror.components import apply_availability
from calendar_mirror.components import as_vevent
from calendar_mirror.components import build_clone
from calendar_mirror.components import fingerprint_from_times
from calendar_mirror.components import is_synced_clone
from calendar_mirror.components import parse_component
from calendar_mirror.components import read_availability
from calendar_mirror.models import Availability
from calendar_mirror.models import EventFingerprint
from calendar_mirror.models import EventSnapshot
from calendar_mirror.models import InvariantViolation
from calendar_mirror.models import StoreError
from calendar_mirror.models import SyncWindow

logger = logging.getLogger(__name__)


def open_registry() -> EDataServer.SourceRegistry:
    try:
        return EDataServer.SourceRegistry.new_sync(None)
    except GLib.Error as e:
        raise StoreError(f"Evolution Data Server unavailable: {e.message}") from e


def probe_access() -> bool:
    """Capability check for the authorization gate: is EDS reachable at all?"""
    try:
        open_registry()
    except StoreError as e:
        logger.error(str(e))
        return False
    return True


def get_calendar_display_info(calendar_uid: str) -> Tuple[str, str, str]:
    """
    Get human-readable information about a calendar.

    Returns:
        Tuple of (display_name, account_name, uid)
    """
    try:
        registry = EDataServer.SourceRegistry.new_sync(None)
        source = registry.ref_source(calendar_uid)

        if not source:
            return ("Unknown Calendar", "", calendar_uid)

        display_name = source.get_display_name() or "Unnamed Calendar"
        return (display_name, _parent_display_name(registry, source), calendar_uid)
    except Exception as e:
        return (f"Error: {e}", "", calendar_uid)


def _parent_display_name(registry, source) -> str:
    """Return the display name of the source's parent account, or empty string."""
    parent_uid = source.get_parent()
    if not parent_uid:
        return ""
    parent_source = registry.ref_source(parent_uid)
    if not parent_source:
        return ""
    return parent_source.get_display_name() or ""


def list_calendar_sources(registry) -> list[tuple[str, str, str, str, str]]:
    """
    Return one entry per EDS calendar:
    (name, account, mode, mode_style, uid)
    """
    entries = []
    for source in registry.list_sources(EDataServer.SOURCE_EXTENSION_CALENDAR):
        sname = source.get_display_name() or "(unnamed)"
        suid = source.get_uid() or ""
        try:
            client = ECal.Client.connect_sync(source, ECal.ClientSourceType.EVENTS, 5, None)
            mode = "Read-write" if not client.is_readonly() else "Read-only"
            mode_style = "green" if not client.is_readonly() else "yellow"
        except Exception:
            mode = "Unknown"
            mode_style = "red"
        entries.append((sname, _parent_display_name(registry, source), mode, mode_style, suid))
    return entries


@dataclass(frozen=True)
class EventRef:
    """What the store needs to modify or remove a listed event later."""

    uid: str
    rid: str | None
    ical: str


class EDSCalendarClient:
    """Wrapper for Evolution Data Server calendar operations."""

    def __init__(self, registry: EDataServer.SourceRegistry, calendar_uid: str):
        self.registry = registry
        self.calendar_uid = calendar_uid
        self.client: Optional[ECal.Client] = None

    def connect(self, timeout: int = 10):
        """Connect to the specified calendar in EDS."""
        source = self.registry.ref_source(self.calendar_uid)
        if not source:
            return False

        try:
            self.client = ECal.Client.connect_sync(
                source, ECal.ClientSourceType.EVENTS, timeout, None
            )
        except GLib.Error as e:
            raise StoreError(
                f"Failed to connect to calendar {self.calendar_uid}: {e.message}"
            ) from e
        return True

    def _require_client(self) -> ECal.Client:
        if not self.client:
            raise StoreError("Client not connected")
        return self.client

    def get_instances(self, window: SyncWindow) -> list[EventSnapshot]:
        """Return one snapshot per occurrence overlapping ``window``."""
        client = self._require_client()
        snapshots: list[EventSnapshot] = []

        # EDS owns icomp and the times only for the duration of the callback,
        # so everything we keep is copied out here.
        def collect(icomp, instance_start, instance_end, *_args):
            comp = parse_component(icomp)
            fingerprint = fingerprint_from_times(comp.get_summary(), instance_start, instance_end)
            if not window.overlaps(fingerprint.start, fingerprint.end):
                return True
            snapshots.append(self._snapshot(comp, fingerprint))
            return True

        try:
            client.generate_instances_sync(
                int(window.start.timestamp()), int(window.end.timestamp()), None, collect
            )
        except GLib.Error as e:
            raise StoreError(
                f"Failed to fetch events from {self.calendar_uid}: {e.message}"
            ) from e
        return snapshots

    def _snapshot(self, comp: ICalGLib.Component, fingerprint: EventFingerprint) -> EventSnapshot:
        uid = comp.get_uid()
        rid = None
        rid_time = comp.get_recurrenceid()
        if rid_time is not None and not rid_time.is_null_time():
            rid = rid_time.as_ical_string()
        return EventSnapshot(
            id=f"{uid}@{rid}" if rid else uid,
            calendar_id=self.calendar_uid,
            fingerprint=fingerprint,
            availability=read_availability(comp),
            is_synced_clone=is_synced_clone(comp),
            raw=EventRef(uid, rid, comp.as_ical_string()),
        )

    def create_events(self, components: list[ICalGLib.Component]) -> list[str]:
        client = self._require_client()
        try:
            success, out_uids = client.create_objects_sync(
                components, ECal.OperationFlags.NONE, None
            )
        except GLib.Error as e:
            raise StoreError(f"Failed to create events: {e.message}") from e
        if not success:
            raise StoreError("Failed to create events")
        return list(out_uids or [])

    def modify_events(self, components: list[ICalGLib.Component]):
        client = self._require_client()
        try:
            success = client.modify_objects_sync(
                components, ECal.ObjModType.THIS, ECal.OperationFlags.NONE, None
            )
        except GLib.Error as e:
            raise StoreError(f"Failed to modify events: {e.message}") from e
        if not success:
            raise StoreError("Failed to modify events")

    def remove_events(self, refs: list[EventRef]):
        client = self._require_client()
        ids = [ECal.ComponentId.new(ref.uid, ref.rid) for ref in refs]
        try:
            success = client.remove_objects_sync(
                ids, ECal.ObjModType.THIS, ECal.OperationFlags.NONE, None
            )
        except GLib.Error as e:
            raise StoreError(f"Failed to remove events: {e.message}") from e
        if not success:
            raise StoreError("Failed to remove events")

    def watch(self, on_change: Callable[[], None]) -> ECal.ClientView:
        """Call ``on_change`` whenever events are added, modified or removed.

        Signals are delivered on the GLib main context that is current when
        this is called; the caller must keep the view and stop it when done.
        """
        client = self._require_client()
        try:
            _, view = client.get_view_sync("#t", None)
        except GLib.Error as e:
            raise StoreError(f"Failed to watch {self.calendar_uid}: {e.message}") from e
        for signal in ("objects-added", "objects-modified", "objects-removed"):
            view.connect(signal, lambda *_args: on_change())
        view.start()
        return view


class EDSCalendarStore:
    """Calendar store collaborator backed by Evolution Data Server.

    Writes are staged per calendar and only sent to EDS on ``commit()``.
    EDS has no multi-object transaction, so a commit sends creates, modifies
    and removes as three batch calls per calendar; anything that fails is
    reported as StoreError and the next run re-derives the remaining work.
    """

    def __init__(self, registry: EDataServer.SourceRegistry | None = None):
        self._registry = registry
        self._clients: dict[str, EDSCalendarClient] = {}
        self._creates: dict[str, list[ICalGLib.Component]] = {}
        self._modifies: dict[str, list[ICalGLib.Component]] = {}
        self._removes: dict[str, list[EventRef]] = {}

    @property
    def registry(self) -> EDataServer.SourceRegistry:
        if self._registry is None:
            self._registry = open_registry()
        return self._registry

    def resolve_calendar(self, calendar_id: str) -> EDSCalendarClient | None:
        """Return a freshly connected client, or None if EDS has no such calendar.

        The registry is consulted and a new connection opened on every call,
        so a calendar removed since the previous run is reported as missing.
        """
        self._clients.pop(calendar_id, None)
        client = EDSCalendarClient(self.registry, calendar_id)
        if not client.connect():
            logger.debug(f"Calendar {calendar_id} not found in EDS")
            return None
        self._clients[calendar_id] = client
        return client

    def list_events(
        self, calendars: list[EDSCalendarClient], start: datetime, end: datetime
    ) -> list[EventSnapshot]:
        window = SyncWindow(start, end)
        snapshots: list[EventSnapshot] = []
        for calendar in calendars:
            events = calendar.get_instances(window)
            logger.debug(f"Listed {len(events)} event(s) in {calendar.calendar_uid}")
            snapshots.extend(events)
        return snapshots

    def _client_for(self, calendar_id: str) -> EDSCalendarClient:
        client = self._clients.get(calendar_id)
        if client is None:
            raise InvariantViolation(f"Event belongs to unresolved calendar {calendar_id!r}")
        return client

    def stage_create(
        self,
        fingerprint: EventFingerprint,
        availability: Availability,
        dest: EDSCalendarClient,
    ) -> str:
        uid = str(uuid.uuid4())
        self._creates.setdefault(dest.calendar_uid, []).append(
            build_clone(fingerprint, availability, uid)
        )
        return uid

    def stage_update(self, clone: EventSnapshot, availability: Availability) -> None:
        self._client_for(clone.calendar_id)
        vevent = as_vevent(parse_component(clone.raw.ical))
        apply_availability(vevent, availability)
        self._modifies.setdefault(clone.calendar_id, []).append(vevent)

    def stage_delete(self, clone: EventSnapshot) -> None:
        self._client_for(clone.calendar_id)
        self._removes.setdefault(clone.calendar_id, []).append(clone.raw)

    def commit(self) -> None:
        """Send every staged change to EDS."""
        try:
            for calendar_id, components in self._creates.items():
                self._clients[calendar_id].create_events(components)
            for calendar_id, components in self._modifies.items():
                self._clients[calendar_id].modify_events(components)
            for calendar_id, refs in self._removes.items():
                self._clients[calendar_id].remove_events(refs)
        finally:
            self.discard()

    def discard(self) -> None:
        self._creates.clear()
        self._modifies.clear()
        self._removes.clear()
