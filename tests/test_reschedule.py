"""
Tests for the reschedule (drag & drop) coordinator.

Coverage:
- Drop target resolution for fine and coarse views
- No-op drops
- Advisory double-booking vs blocking past/blocked-slot rejections
- Confirmed commit re-resolves the drop target, and failed commit
- Duration kept in elapsed time across DST changes
"""

from datetime import date, datetime, timedelta, timezone
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import OperationalError

from clinic_scheduler.db.models import Appointment
from clinic_scheduler.services import (
    calendar_store,
    placement_service,
    reschedule_service,
    visit_service,
)
from clinic_scheduler.services.scheduling_errors import (
    BlockedSlotConflict,
    DoubleBookingConflict,
    PastSchedulingError,
    NotFoundError,
    PersistenceError,
    TerminalAppointmentError,
)

UTC = ZoneInfo("UTC")
NOW = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)
FIXTURE_LENGTH = timedelta(minutes=45)


def at(hour, minute=0, day=10):
    return datetime(2024, 6, day, hour, minute, tzinfo=timezone.utc)


@pytest.fixture
def appointment(make_appointment):
    """09:30-10:15 on 2024-06-10."""
    return make_appointment(at(9, 30), at(10, 15))


# =============================================================================
# Drop target resolution
# =============================================================================

class TestResolveDropTarget:
    def test_fine_view_uses_dropped_hour_and_original_minutes(self, appointment):
        start, end = reschedule_service.resolve_drop_target(
            appointment, date(2024, 6, 12), hour=14, tz=UTC
        )
        assert start == at(14, 30, day=12)
        assert end == at(15, 15, day=12)

    def test_coarse_view_keeps_original_time_of_day(self, appointment):
        start, end = reschedule_service.resolve_drop_target(
            appointment, date(2024, 6, 20), tz=UTC
        )
        assert start == at(9, 30, day=20)
        assert end == at(10, 15, day=20)

    def test_clinic_timezone_wall_clock(self, appointment):
        berlin = ZoneInfo("Europe/Berlin")
        # 09:30 UTC is 11:30 in Berlin (CEST); month drop keeps 11:30 local
        start, _ = reschedule_service.resolve_drop_target(
            appointment, date(2024, 6, 20), tz=berlin
        )
        assert start == at(9, 30, day=20)

    def test_invalid_hour_rejected(self, appointment):
        with pytest.raises(ValueError):
            reschedule_service.resolve_drop_target(appointment, date(2024, 6, 12), hour=24, tz=UTC)

    def test_duration_is_elapsed_time_across_dst_end(self):
        new_york = ZoneInfo("America/New_York")
        # 00:00-02:00 EDT; clocks fall back at 02:00 on 2024-11-03
        visit = Appointment(
            start_time=datetime(2024, 10, 28, 4, 0, tzinfo=timezone.utc),
            end_time=datetime(2024, 10, 28, 6, 0, tzinfo=timezone.utc),
        )
        start, end = reschedule_service.resolve_drop_target(
            visit, date(2024, 11, 3), hour=0, tz=new_york
        )
        assert start == datetime(2024, 11, 3, 4, 0, tzinfo=timezone.utc)
        assert end - start == timedelta(hours=2)
        assert end.astimezone(new_york).hour == 1

    def test_result_is_utc(self, appointment):
        start, end = reschedule_service.resolve_drop_target(
            appointment, date(2024, 6, 20), hour=10, tz=ZoneInfo("Europe/Berlin")
        )
        assert start.tzinfo == timezone.utc
        assert end.tzinfo == timezone.utc
        assert start == at(8, 30, day=20)


# =============================================================================
# Preview
# =============================================================================

class TestPreview:
    def test_drop_on_same_start_is_noop(self, db, clinic_id, appointment, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("placement engine must not be called")

        monkeypatch.setattr(placement_service, "propose_booking", fail)
        proposal = reschedule_service.preview_reschedule(
            db, clinic_id, appointment.id, date(2024, 6, 10), hour=9, now=NOW, tz=UTC
        )
        assert proposal is None

    def test_free_target_has_no_conflict(self, db, clinic_id, appointment):
        proposal = reschedule_service.preview_reschedule(
            db, clinic_id, appointment.id, date(2024, 6, 11), now=NOW, tz=UTC
        )
        assert proposal.conflict is None
        assert proposal.new_start == at(9, 30, day=11)
        assert proposal.new_end == at(10, 15, day=11)
        # Preview never writes
        db.expire_all()
        assert db.get(Appointment, appointment.id).start_time == at(9, 30)

    def test_overlap_is_advisory_and_names_patient(
        self, db, clinic_id, appointment, make_appointment
    ):
        make_appointment(at(14), at(15), label="Bob Jones")
        proposal = reschedule_service.preview_reschedule(
            db, clinic_id, appointment.id, date(2024, 6, 10), hour=14, now=NOW, tz=UTC
        )
        assert isinstance(proposal.conflict, DoubleBookingConflict)
        assert proposal.conflict.patient_label == "Bob Jones"

    def test_blocked_slot_rejects_move(self, db, clinic_id, staff_id, appointment):
        placement_service.block_time(db, clinic_id, staff_id, at(12), at(13), now=NOW)
        with pytest.raises(BlockedSlotConflict):
            reschedule_service.preview_reschedule(
                db, clinic_id, appointment.id, date(2024, 6, 10), hour=12, now=NOW, tz=UTC
            )

    def test_past_target_rejects_move(self, db, clinic_id, appointment):
        with pytest.raises(PastSchedulingError):
            reschedule_service.preview_reschedule(
                db, clinic_id, appointment.id, date(2024, 6, 10), hour=8, now=at(9), tz=UTC
            )

    def test_terminal_appointment_cannot_move(self, db, clinic_id, appointment):
        visit_service.transition_appointment(db, clinic_id, appointment.id, "cancelled", now=NOW)
        with pytest.raises(TerminalAppointmentError):
            reschedule_service.preview_reschedule(
                db, clinic_id, appointment.id, date(2024, 6, 11), now=NOW, tz=UTC
            )


# =============================================================================
# Confirm
# =============================================================================

class TestConfirm:
    def test_confirm_commits_new_placement(self, db, clinic_id, appointment):
        moved = reschedule_service.confirm_reschedule(
            db, clinic_id, appointment.id, date(2024, 6, 11), hour=11, now=NOW, tz=UTC
        )
        assert moved.start_time == at(11, 30, day=11)
        assert moved.end_time == at(12, 15, day=11)
        db.expire_all()
        assert db.get(Appointment, appointment.id).start_time == at(11, 30, day=11)

    def test_confirm_keeps_duration(self, db, clinic_id, appointment):
        moved = reschedule_service.confirm_reschedule(
            db, clinic_id, appointment.id, date(2024, 6, 11), hour=17, now=NOW, tz=UTC
        )
        assert moved.end_time - moved.start_time == FIXTURE_LENGTH

    def test_drop_on_same_start_changes_nothing(self, db, clinic_id, appointment, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("placement engine must not be called")

        monkeypatch.setattr(placement_service, "propose_booking", fail)
        monkeypatch.setattr(calendar_store, "update_appointment_fields", fail)
        unchanged = reschedule_service.confirm_reschedule(
            db, clinic_id, appointment.id, date(2024, 6, 10), hour=9, now=NOW, tz=UTC
        )
        assert unchanged.start_time == at(9, 30)
        assert unchanged.end_time == at(10, 15)

    def test_confirm_anyway_over_double_booking(
        self, db, clinic_id, appointment, make_appointment
    ):
        make_appointment(at(14), at(15), label="Bob Jones")
        moved = reschedule_service.confirm_reschedule(
            db, clinic_id, appointment.id, date(2024, 6, 10), hour=14, now=NOW, tz=UTC
        )
        assert moved.start_time == at(14, 30)
        assert moved.end_time == at(15, 15)

    def test_overlap_with_own_old_placement_is_fine(self, db, clinic_id, make_appointment):
        long_visit = make_appointment(at(9, 30), at(11, 30))
        moved = reschedule_service.confirm_reschedule(
            db, clinic_id, long_visit.id, date(2024, 6, 10), hour=10, now=NOW, tz=UTC
        )
        assert moved.start_time == at(10, 30)
        assert moved.end_time == at(12, 30)

    def test_confirm_rechecks_clock(self, db, clinic_id, appointment):
        with pytest.raises(PastSchedulingError):
            reschedule_service.confirm_reschedule(
                db, clinic_id, appointment.id, date(2024, 6, 10), hour=11, now=at(11, 35), tz=UTC
            )

    def test_past_day_rejected_before_calendar_is_read(
        self, db, clinic_id, appointment, monkeypatch
    ):
        def fail(*args, **kwargs):
            raise AssertionError("placement engine must not be called")

        monkeypatch.setattr(placement_service, "propose_booking", fail)
        with pytest.raises(PastSchedulingError):
            reschedule_service.confirm_reschedule(
                db, clinic_id, appointment.id, date(2024, 6, 9), hour=11, now=at(8), tz=UTC
            )

    def test_confirm_rechecks_blocked_slots(self, db, clinic_id, staff_id, appointment):
        placement_service.block_time(db, clinic_id, staff_id, at(11), at(12), now=NOW)
        with pytest.raises(BlockedSlotConflict):
            reschedule_service.confirm_reschedule(
                db, clinic_id, appointment.id, date(2024, 6, 10), hour=11, now=NOW, tz=UTC
            )

    def test_invalid_hour_rejected(self, db, clinic_id, appointment):
        with pytest.raises(ValueError):
            reschedule_service.confirm_reschedule(
                db, clinic_id, appointment.id, date(2024, 6, 11), hour=25, now=NOW, tz=UTC
            )

    def test_store_failure_keeps_old_placement(self, db, clinic_id, appointment, monkeypatch):
        def failing_commit():
            raise OperationalError("UPDATE appointments", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(PersistenceError) as exc_info:
            reschedule_service.confirm_reschedule(
                db, clinic_id, appointment.id, date(2024, 6, 10), hour=11, now=NOW, tz=UTC
            )
        assert exc_info.value.to_outcome()["operation"] == "update_appointment"

        monkeypatch.undo()
        db.expire_all()
        stored = db.get(Appointment, appointment.id)
        assert stored.start_time == at(9, 30)
        assert stored.end_time == at(10, 15)

    def test_unknown_appointment(self, db, clinic_id):
        with pytest.raises(NotFoundError):
            reschedule_service.confirm_reschedule(
                db, clinic_id, uuid4(), date(2024, 6, 11), hour=11, now=NOW, tz=UTC
            )
