"""
Unit tests for the value types in calendar_mirror.models.
"""

from datetime import timedelta

from calendar_mirror.models import Availability
from calendar_mirror.models import EventSnapshot
from calendar_mirror.models import SyncWindow
from tests.conftest import NOW
from tests.conftest import make_fingerprint


class TestSyncWindow:
    window = SyncWindow.starting_at(NOW)

    def test_spans_365_days(self):
        assert self.window.end - self.window.start == timedelta(days=365)

    def test_start_boundary_is_inclusive(self):
        assert self.window.overlaps(NOW, NOW + timedelta(minutes=30))

    def test_zero_length_event_at_start_is_inclusive(self):
        assert self.window.overlaps(NOW, NOW)

    def test_end_boundary_is_exclusive(self):
        end = self.window.end
        assert not self.window.overlaps(end, end + timedelta(minutes=30))

    def test_event_ending_at_start_is_excluded(self):
        assert not self.window.overlaps(NOW - timedelta(hours=1), NOW)

    def test_event_in_progress_at_start_is_included(self):
        assert self.window.overlaps(NOW - timedelta(hours=1), NOW + timedelta(hours=1))


class TestFingerprint:
    def test_structural_equality_and_hash(self):
        a = make_fingerprint("Standup")
        b = make_fingerprint("Standup")
        assert a == b
        assert len({a, b}) == 1

    def test_every_field_matters(self):
        base = make_fingerprint("Standup")
        assert base != make_fingerprint("Standup ")
        assert base != make_fingerprint("Standup", minutes=31)
        assert base != make_fingerprint("Standup", start=base.start + timedelta(minutes=1))
        assert base != make_fingerprint("Standup", all_day=True)


def test_snapshot_equality_ignores_raw_handle():
    fp = make_fingerprint()
    a = EventSnapshot("E1", "cal", fp, Availability.BUSY, True, raw=object())
    b = EventSnapshot("E1", "cal", fp, Availability.BUSY, True, raw=object())
    assert a == b
