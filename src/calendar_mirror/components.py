"""
Stateless iCal component helpers: fingerprints, availability and clone building.
"""

import datetime

import gi

gi.require_version("ICalGLib", "3.0")
from gi.repository import ICalGLib

from calendar_mirror.models import CLONE_MARKER
from calendar_mirror.models import Availability
from calendar_mirror.models import EventFingerprint

# Exchange/M365 busy-status extension; the only common place an
# "out of office" state survives a round trip through EDS.
_BUSYSTATUS_X_NAME = "X-MICROSOFT-CDO-BUSYSTATUS"
_BUSYSTATUS_OOF = "OOF"


def parse_component(obj) -> ICalGLib.Component:
    """Handle both string and native Component objects from EDS API."""
    if isinstance(obj, str):
        return ICalGLib.Component.new_from_string(obj)
    return obj


def as_vevent(comp: ICalGLib.Component) -> ICalGLib.Component | None:
    """Return the VEVENT itself, or the first VEVENT inside a VCALENDAR."""
    if comp.isa() == ICalGLib.ComponentKind.VCALENDAR_COMPONENT:
        return comp.get_first_component(ICalGLib.ComponentKind.VEVENT_COMPONENT)
    return comp


def _remove_all_properties(component: ICalGLib.Component, prop_kind: ICalGLib.PropertyKind):
    """Remove all instances of a specific property from a component."""
    prop = component.get_first_property(prop_kind)
    while prop:
        component.remove_property(prop)
        prop = component.get_first_property(prop_kind)


def _find_x_property(component: ICalGLib.Component, name: str):
    prop = component.get_first_property(ICalGLib.PropertyKind.X_PROPERTY)
    while prop:
        if (prop.get_x_name() or "").upper() == name:
            return prop
        prop = component.get_next_property(ICalGLib.PropertyKind.X_PROPERTY)
    return None


# ---------------------------------------------------------------------------
# Time conversion
# ---------------------------------------------------------------------------


def ical_time_to_datetime(t: ICalGLib.Time) -> datetime.datetime:
    """Convert an ICalGLib.Time to an aware UTC datetime.

    DATE values map to UTC midnight.  Floating times are read as local time.
    """
    utc = datetime.timezone.utc
    if t.is_date():
        return datetime.datetime(t.get_year(), t.get_month(), t.get_day(), tzinfo=utc)

    fields = (
        t.get_year(),
        t.get_month(),
        t.get_day(),
        t.get_hour(),
        t.get_minute(),
        t.get_second(),
    )
    if t.is_utc():
        return datetime.datetime(*fields, tzinfo=utc)
    zone = t.get_timezone()
    if zone is not None:
        return datetime.datetime.fromtimestamp(t.as_timet_with_zone(zone), tz=utc)
    return datetime.datetime(*fields).astimezone(utc)


def datetime_to_ical_time(dt: datetime.datetime, all_day: bool) -> ICalGLib.Time:
    if all_day:
        return ICalGLib.Time.new_from_string(dt.strftime("%Y%m%d"))
    return ICalGLib.Time.new_from_string(
        dt.astimezone(datetime.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    )


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


def fingerprint_from_times(
    title: str | None, start: ICalGLib.Time, end: ICalGLib.Time | None
) -> EventFingerprint:
    """Build the matching key for an event from its summary and time span.

    Used for both origins and clones, so a clone written from a fingerprint
    reads back as the same fingerprint.
    """
    start_dt = ical_time_to_datetime(start)
    if end is None or end.is_null_time():
        end_dt = start_dt
    else:
        end_dt = ical_time_to_datetime(end)
    return EventFingerprint(
        title=title or "",
        start=start_dt,
        end=end_dt,
        all_day=bool(start.is_date()),
    )


def is_synced_clone(comp: ICalGLib.Component) -> bool:
    """Return True if the event carries the clone marker in its DESCRIPTION."""
    vevent = as_vevent(comp)
    if vevent is None:
        return False
    return (vevent.get_description() or "").strip() == CLONE_MARKER


def read_availability(comp: ICalGLib.Component) -> Availability:
    """Map TRANSP / STATUS / busy-status properties to an Availability.

    The iCal default (no TRANSP property) is OPAQUE, which blocks time.
    """
    vevent = as_vevent(comp)
    if vevent is None:
        return Availability.NOT_SUPPORTED

    busy_status = _find_x_property(vevent, _BUSYSTATUS_X_NAME)
    if busy_status and (busy_status.get_x() or "").strip().upper() == _BUSYSTATUS_OOF:
        return Availability.UNAVAILABLE

    transp_prop = vevent.get_first_property(ICalGLib.PropertyKind.TRANSP_PROPERTY)
    if transp_prop:
        try:
            transparent = transp_prop.get_transp() == ICalGLib.PropertyTransp.TRANSPARENT
        except (AttributeError, TypeError):
            val = transp_prop.get_value_as_string() or ""
            transparent = val.strip().upper() == "TRANSPARENT"
        if transparent:
            return Availability.FREE

    status_prop = vevent.get_first_property(ICalGLib.PropertyKind.STATUS_PROPERTY)
    if status_prop and status_prop.get_status() == ICalGLib.PropertyStatus.TENTATIVE:
        return Availability.TENTATIVE

    return Availability.BUSY


# ---------------------------------------------------------------------------
# Writing clones
# ---------------------------------------------------------------------------


def apply_availability(vevent: ICalGLib.Component, availability: Availability) -> None:
    """Replace the availability-carrying properties of ``vevent`` in place."""
    _remove_all_properties(vevent, ICalGLib.PropertyKind.TRANSP_PROPERTY)
    _remove_all_properties(vevent, ICalGLib.PropertyKind.STATUS_PROPERTY)
    busy_status = _find_x_property(vevent, _BUSYSTATUS_X_NAME)
    while busy_status:
        vevent.remove_property(busy_status)
        busy_status = _find_x_property(vevent, _BUSYSTATUS_X_NAME)

    if availability is Availability.FREE:
        vevent.add_property(ICalGLib.Property.new_transp(ICalGLib.PropertyTransp.TRANSPARENT))
        return

    vevent.add_property(ICalGLib.Property.new_transp(ICalGLib.PropertyTransp.OPAQUE))
    if availability is Availability.TENTATIVE:
        vevent.add_property(ICalGLib.Property.new_status(ICalGLib.PropertyStatus.TENTATIVE))
    elif availability is Availability.UNAVAILABLE:
        prop = ICalGLib.Property.new_x(_BUSYSTATUS_OOF)
        prop.set_x_name(_BUSYSTATUS_X_NAME)
        vevent.add_property(prop)


def build_clone(
    fingerprint: EventFingerprint, availability: Availability, uid: str
) -> ICalGLib.Component:
    """Create a standalone VEVENT mirroring ``fingerprint``, tagged as a clone."""
    vevent = ICalGLib.Component.new_vevent()
    vevent.set_uid(uid)
    vevent.set_summary(fingerprint.title)
    vevent.set_dtstart(datetime_to_ical_time(fingerprint.start, fingerprint.all_day))
    vevent.set_dtend(datetime_to_ical_time(fingerprint.end, fingerprint.all_day))
    vevent.set_dtstamp(
        datetime_to_ical_time(datetime.datetime.now(datetime.timezone.utc), all_day=False)
    )
    vevent.set_description(CLONE_MARKER)
    apply_availability(vevent, availability)
    return vevent
