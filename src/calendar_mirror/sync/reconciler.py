"""
Reconciliation planning: decide which clones to create, update or delete.

Pure and synchronous; no store access happens here.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from ..models import CreateClone
from ..models import DeleteClone
from ..models import EventFingerprint
from ..models import EventSnapshot
from ..models import InvariantViolation
from ..models import SyncOperation
from ..models import UpdateClone

logger = logging.getLogger(__name__)


@dataclass
class PairGroup:
    """At most one source event and one recognised clone sharing a fingerprint."""

    origin: EventSnapshot | None = None
    clone: EventSnapshot | None = None


def _partition(
    source_calendar_id: str,
    dest_calendar_id: str,
    snapshots: Iterable[EventSnapshot],
) -> tuple[list[EventSnapshot], list[EventSnapshot]]:
    source_items: list[EventSnapshot] = []
    dest_items: list[EventSnapshot] = []
    for snap in snapshots:
        if snap.calendar_id == source_calendar_id:
            source_items.append(snap)
        elif snap.calendar_id == dest_calendar_id:
            dest_items.append(snap)
        else:
            raise InvariantViolation(
                f"Event {snap.id} belongs to calendar {snap.calendar_id!r}, "
                f"expected {source_calendar_id!r} or {dest_calendar_id!r}"
            )
    return source_items, dest_items


def group_by_fingerprint(
    source_items: Iterable[EventSnapshot],
    dest_items: Iterable[EventSnapshot],
) -> dict[EventFingerprint, PairGroup]:
    """Fold origins, then marked clones, into one PairGroup per fingerprint.

    Destination events without the clone marker are dropped here and never
    reach any later step.
    """
    groups: dict[EventFingerprint, PairGroup] = {}
    for snap in source_items:
        groups.setdefault(snap.fingerprint, PairGroup()).origin = snap
    for snap in dest_items:
        if not snap.is_synced_clone:
            logger.debug(f"Ignoring unmanaged destination event: {snap.id}")
            continue
        groups.setdefault(snap.fingerprint, PairGroup()).clone = snap
    return groups


def plan(
    source_calendar_id: str,
    dest_calendar_id: str,
    snapshots: Iterable[EventSnapshot],
) -> list[SyncOperation]:
    """
    Compute the operations that make the destination mirror the source.

    Every matched pair gets an UpdateClone, even when nothing changed; no
    dirty-checking is attempted.  The order of the returned list carries no
    meaning since the store applies the batch atomically.

    Raises:
        InvariantViolation: a snapshot belongs to neither calendar.
    """
    source_items, dest_items = _partition(source_calendar_id, dest_calendar_id, snapshots)
    groups = group_by_fingerprint(source_items, dest_items)

    operations: list[SyncOperation] = []
    for fingerprint, group in groups.items():
        if group.origin is not None and group.clone is None:
            operations.append(
                CreateClone(fingerprint, group.origin.availability, dest_calendar_id)
            )
        elif group.origin is not None:
            operations.append(UpdateClone(group.clone, group.origin.availability))
        elif group.clone is not None:
            # Source event deleted, edited, or moved out of the window.
            operations.append(DeleteClone(group.clone))
        else:
            raise InvariantViolation(f"Empty pair group for {fingerprint}")

    logger.debug(
        "Planned %d operation(s) from %d source / %d destination event(s)",
        len(operations),
        len(source_items),
        len(dest_items),
    )
    return operations


def plan_clear(dest_calendar_id: str, snapshots: Iterable[EventSnapshot]) -> list[SyncOperation]:
    """Return a DeleteClone for every marked clone in the destination calendar."""
    operations: list[SyncOperation] = []
    for snap in snapshots:
        if snap.calendar_id != dest_calendar_id:
            raise InvariantViolation(
                f"Event {snap.id} belongs to calendar {snap.calendar_id!r}, "
                f"expected {dest_calendar_id!r}"
            )
        if snap.is_synced_clone:
            operations.append(DeleteClone(snap))
    return operations
