from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from clinic_plans.core.errors import (
    InvalidStateTransition,
    PrerequisiteNotMet,
    SlotConflict,
    ValidationError,
)
from clinic_plans.models.appointment import AppointmentStatus
from clinic_plans.models.treatment_plan import PlanItemStatus, PlanStatus
from clinic_plans.services.schedule import PracticeCalendar
from clinic_plans.services.treatment_plans.booking import SqlAppointmentBooking
from clinic_plans.services.treatment_plans.scheduler import Suggestion

# Monday; London is on GMT in November.
MONDAY_10AM = datetime(2026, 11, 2, 10, 0, tzinfo=timezone.utc)

PHASES = [
    {
        "phase_name": "Treatment",
        "items": [
            {"treatment_code": "EXAM", "sequence_number": 1},
            {"treatment_code": "FILL", "sequence_number": 2},
            {"treatment_code": "RCT", "sequence_number": 3, "ref": "rct"},
            {"treatment_code": "CROWN", "sequence_number": 4, "prerequisite_ref": "rct"},
        ],
    }
]


def _suggestion(item, starts_at: datetime, doctor_user_id: int) -> Suggestion:
    return Suggestion(
        item_id=item.id,
        phase_number=item.phase.phase_number,
        sequence_number=item.sequence_number,
        item_name=item.item_name,
        success=True,
        suggested_date=starts_at.date(),
        starts_at=starts_at,
        ends_at=starts_at + timedelta(minutes=item.estimated_time_minutes),
        doctor_user_id=doctor_user_id,
    )


@pytest.fixture()
def booking(db, seed):
    calendar = PracticeCalendar(db, tz=ZoneInfo("Europe/London"))
    return SqlAppointmentBooking(db, actor_id=seed.admin.id, calendar=calendar)


def test_confirm_books_and_links_appointment(db, seed, persist_plan, booking):
    plan = persist_plan(PHASES)
    exam = plan.items[0]

    appointment = booking.confirm(exam, _suggestion(exam, MONDAY_10AM, seed.dentist.id))
    db.commit()

    assert appointment.id is not None
    assert appointment.status == AppointmentStatus.booked
    assert appointment.patient_id == seed.patient.id
    assert appointment.clinician_user_id == seed.dentist.id
    assert exam.status == PlanItemStatus.scheduled
    assert [link.appointment_id for link in exam.linked_appointments] == [appointment.id]
    assert plan.status == PlanStatus.in_progress


def test_doctor_double_booking_is_a_conflict(db, seed, persist_plan, booking):
    plan = persist_plan(PHASES)
    exam, filling = plan.items[:2]
    booking.confirm(exam, _suggestion(exam, MONDAY_10AM, seed.dentist.id))
    db.commit()

    with pytest.raises(SlotConflict) as excinfo:
        booking.confirm(
            filling, _suggestion(filling, MONDAY_10AM + timedelta(minutes=15), seed.dentist.id)
        )

    assert excinfo.value.retryable
    assert filling.status == PlanItemStatus.ready_for_booking


def test_patient_double_booking_is_a_conflict(db, seed, persist_plan, booking):
    plan = persist_plan(PHASES)
    exam, filling = plan.items[:2]
    booking.confirm(exam, _suggestion(exam, MONDAY_10AM, seed.dentist.id))
    db.commit()

    with pytest.raises(SlotConflict):
        booking.confirm(filling, _suggestion(filling, MONDAY_10AM, seed.second_dentist.id))


def test_back_to_back_bookings_do_not_conflict(db, seed, persist_plan, booking):
    plan = persist_plan(PHASES)
    exam, filling = plan.items[:2]
    booking.confirm(exam, _suggestion(exam, MONDAY_10AM, seed.dentist.id))
    db.commit()

    booking.confirm(filling, _suggestion(filling, MONDAY_10AM + timedelta(minutes=30), seed.dentist.id))
    db.commit()

    assert filling.status == PlanItemStatus.scheduled


def test_waiting_item_cannot_be_booked(seed, persist_plan, booking):
    plan = persist_plan(PHASES)
    crown = plan.items[3]
    with pytest.raises(PrerequisiteNotMet):
        booking.confirm(crown, _suggestion(crown, MONDAY_10AM, seed.dentist.id))


def test_slot_outside_practice_hours_is_rejected(seed, persist_plan, booking):
    plan = persist_plan(PHASES)
    exam = plan.items[0]
    saturday = datetime(2026, 11, 7, 10, 0, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        booking.confirm(exam, _suggestion(exam, saturday, seed.dentist.id))
    evening = datetime(2026, 11, 2, 18, 0, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        booking.confirm(exam, _suggestion(exam, evening, seed.dentist.id))


def test_unapproved_plan_cannot_be_booked(seed, persist_plan, booking):
    plan = persist_plan(PHASES, approved=False)
    exam = plan.items[0]
    with pytest.raises(InvalidStateTransition):
        booking.confirm(exam, _suggestion(exam, MONDAY_10AM, seed.dentist.id))


def test_unknown_doctor_is_rejected(seed, persist_plan, booking):
    plan = persist_plan(PHASES)
    exam = plan.items[0]
    with pytest.raises(ValidationError, match="not an active user"):
        booking.confirm(exam, _suggestion(exam, MONDAY_10AM, 999_999))
    assert exam.linked_appointments == []


def test_inactive_doctor_is_rejected(db, seed, persist_plan, booking):
    seed.second_dentist.is_active = False
    db.commit()
    plan = persist_plan(PHASES)
    exam = plan.items[0]
    with pytest.raises(ValidationError, match="not an active user"):
        booking.confirm(exam, _suggestion(exam, MONDAY_10AM, seed.second_dentist.id))
