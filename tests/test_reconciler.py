"""
Unit tests for the pure reconciliation planner.

Snapshots are built directly; no store is involved.
"""

import pytest

from calendar_mirror.models import Availability
from calendar_mirror.models import CreateClone
from calendar_mirror.models import DeleteClone
from calendar_mirror.models import InvariantViolation
from calendar_mirror.models import UpdateClone
from calendar_mirror.sync.reconciler import group_by_fingerprint
from calendar_mirror.sync.reconciler import plan
from calendar_mirror.sync.reconciler import plan_clear
from tests.conftest import DEST_CAL_ID
from tests.conftest import SOURCE_CAL_ID
from tests.conftest import make_fingerprint
from tests.conftest import make_snapshot

STANDUP = make_fingerprint("Standup")


def _plan(*snapshots):
    return plan(SOURCE_CAL_ID, DEST_CAL_ID, list(snapshots))


def _referenced_ids(operations) -> set[str]:
    return {op.clone.id for op in operations if isinstance(op, (UpdateClone, DeleteClone))}


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_new_source_event_is_cloned(self):
        origin = make_snapshot("S1", SOURCE_CAL_ID, STANDUP, Availability.BUSY)

        assert _plan(origin) == [CreateClone(STANDUP, Availability.BUSY, DEST_CAL_ID)]

    def test_orphaned_clone_is_deleted(self):
        clone = make_snapshot("D1", DEST_CAL_ID, STANDUP, clone=True)

        assert _plan(clone) == [DeleteClone(clone)]

    def test_matched_pair_is_updated_even_when_unchanged(self):
        origin = make_snapshot("S1", SOURCE_CAL_ID, STANDUP, Availability.BUSY)
        clone = make_snapshot("D1", DEST_CAL_ID, STANDUP, Availability.BUSY, clone=True)

        assert _plan(origin, clone) == [UpdateClone(clone, Availability.BUSY)]

    def test_update_carries_origin_availability(self):
        origin = make_snapshot("S1", SOURCE_CAL_ID, STANDUP, Availability.FREE)
        clone = make_snapshot("D1", DEST_CAL_ID, STANDUP, Availability.BUSY, clone=True)

        assert _plan(origin, clone) == [UpdateClone(clone, Availability.FREE)]

    def test_user_event_with_same_fingerprint_gets_a_second_clone(self):
        """An unmarked destination event never satisfies a source event.

        The engine creates its own copy next to the user's event on purpose.
        """
        origin = make_snapshot("S1", SOURCE_CAL_ID, STANDUP)
        user_event = make_snapshot("D-user", DEST_CAL_ID, STANDUP, clone=False)

        operations = _plan(origin, user_event)

        assert operations == [CreateClone(STANDUP, Availability.BUSY, DEST_CAL_ID)]
        assert "D-user" not in _referenced_ids(operations)

    def test_empty_calendars_plan_nothing(self):
        assert _plan() == []


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestProperties:
    def test_user_events_never_referenced(self):
        """Unmarked destination events are invisible whatever they collide with."""
        lunch = make_fingerprint("Lunch", minutes=60)
        snapshots = [
            make_snapshot("S1", SOURCE_CAL_ID, STANDUP),
            make_snapshot("U1", DEST_CAL_ID, STANDUP),
            make_snapshot("U2", DEST_CAL_ID, lunch),
            make_snapshot("D1", DEST_CAL_ID, lunch, clone=True),
        ]

        operations = _plan(*snapshots)

        assert _referenced_ids(operations) == {"D1"}
        assert DeleteClone(snapshots[3]) in operations

    def test_exactly_one_delete_per_orphaned_clone(self):
        clone = make_snapshot("D1", DEST_CAL_ID, STANDUP, clone=True)
        other = make_fingerprint("Retro", minutes=60)
        snapshots = [clone, make_snapshot("S2", SOURCE_CAL_ID, other)]

        operations = _plan(*snapshots)

        referencing = [op for op in operations if getattr(op, "clone", None) == clone]
        assert referencing == [DeleteClone(clone)]

    def test_exactly_one_create_per_uncloned_fingerprint(self):
        operations = _plan(make_snapshot("S1", SOURCE_CAL_ID, STANDUP))

        creates = [op for op in operations if isinstance(op, CreateClone)]
        assert len(creates) == 1
        assert creates[0].fingerprint == STANDUP
        assert creates[0].dest_calendar_id == DEST_CAL_ID

    def test_replanning_after_apply_only_updates(self):
        """Simulate apply-then-relist: the second pass never creates again."""
        retro = make_fingerprint("Retro", minutes=60)
        sources = [
            make_snapshot("S1", SOURCE_CAL_ID, STANDUP, Availability.BUSY),
            make_snapshot("S2", SOURCE_CAL_ID, retro, Availability.TENTATIVE),
        ]
        first = _plan(*sources)
        clones = [
            make_snapshot(f"C{i}", DEST_CAL_ID, op.fingerprint, op.availability, clone=True)
            for i, op in enumerate(first)
        ]

        second = _plan(*sources, *clones)

        assert len(second) == 2
        assert all(isinstance(op, UpdateClone) for op in second)

    def test_edited_origin_is_delete_plus_create(self):
        """Renaming an origin orphans the old clone and clones the new fingerprint."""
        renamed = make_fingerprint("Standup (moved)")
        origin = make_snapshot("S1", SOURCE_CAL_ID, renamed)
        old_clone = make_snapshot("D1", DEST_CAL_ID, STANDUP, clone=True)

        operations = _plan(origin, old_clone)

        assert len(operations) == 2
        assert DeleteClone(old_clone) in operations
        assert CreateClone(renamed, Availability.BUSY, DEST_CAL_ID) in operations

    def test_all_day_flag_is_part_of_identity(self):
        timed = make_fingerprint("Offsite", minutes=24 * 60, all_day=False)
        all_day = make_fingerprint("Offsite", minutes=24 * 60, all_day=True)
        origin = make_snapshot("S1", SOURCE_CAL_ID, all_day)
        clone = make_snapshot("D1", DEST_CAL_ID, timed, clone=True)

        operations = _plan(origin, clone)

        assert DeleteClone(clone) in operations
        assert CreateClone(all_day, Availability.BUSY, DEST_CAL_ID) in operations


# ---------------------------------------------------------------------------
# Grouping and contract breaches
# ---------------------------------------------------------------------------


class TestGrouping:
    def test_unmarked_destination_events_never_form_groups(self):
        groups = group_by_fingerprint([], [make_snapshot("U1", DEST_CAL_ID, STANDUP)])
        assert groups == {}

    def test_origin_and_clone_share_a_group(self):
        origin = make_snapshot("S1", SOURCE_CAL_ID, STANDUP)
        clone = make_snapshot("D1", DEST_CAL_ID, STANDUP, clone=True)

        groups = group_by_fingerprint([origin], [clone])

        assert list(groups) == [STANDUP]
        assert groups[STANDUP].origin is origin
        assert groups[STANDUP].clone is clone

    def test_foreign_calendar_is_an_invariant_violation(self):
        stray = make_snapshot("X1", "some-other-calendar", STANDUP)

        with pytest.raises(InvariantViolation):
            _plan(make_snapshot("S1", SOURCE_CAL_ID, STANDUP), stray)


class TestPlanClear:
    def test_deletes_only_marked_clones(self):
        clone = make_snapshot("D1", DEST_CAL_ID, STANDUP, clone=True)
        user_event = make_snapshot("U1", DEST_CAL_ID, STANDUP)

        assert plan_clear(DEST_CAL_ID, [clone, user_event]) == [DeleteClone(clone)]

    def test_rejects_events_from_other_calendars(self):
        with pytest.raises(InvariantViolation):
            plan_clear(DEST_CAL_ID, [make_snapshot("S1", SOURCE_CAL_ID, STANDUP)])
