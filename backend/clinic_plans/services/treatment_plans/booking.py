from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_plans.core.errors import (
    InvalidStateTransition,
    PrerequisiteNotMet,
    SlotConflict,
    ValidationError,
)
from clinic_plans.models.appointment import Appointment, AppointmentStatus
from clinic_plans.models.treatment_plan import (
    ApprovalStatus,
    PlanItem,
    PlanItemAppointment,
    PlanItemStatus,
    PlanStatus,
)
from clinic_plans.models.user import User
from clinic_plans.services.schedule import PracticeCalendar, as_utc
from clinic_plans.services.treatment_plans.scheduler import Suggestion
from clinic_plans.services.treatment_plans.status import derive_item_status, sync_statuses

logger = logging.getLogger("clinic_plans.treatment_plans.booking")


class SqlAppointmentBooking:
    """Turns a suggestion into a booked appointment inside the caller's transaction."""

    def __init__(
        self,
        db: Session,
        *,
        actor_id: int,
        calendar: PracticeCalendar | None = None,
    ) -> None:
        self.db = db
        self.actor_id = actor_id
        self.calendar = calendar

    def _overlapping(self, starts_at: datetime, ends_at: datetime, **filters) -> Appointment | None:
        stmt = select(Appointment).where(
            Appointment.status == AppointmentStatus.booked,
            Appointment.starts_at < ends_at,
            Appointment.ends_at > starts_at,
        )
        for column, value in filters.items():
            stmt = stmt.where(getattr(Appointment, column) == value)
        return self.db.scalar(stmt.limit(1))

    def confirm(self, item: PlanItem, suggestion: Suggestion) -> Appointment:
        plan = item.phase.plan
        if plan.approval_status != ApprovalStatus.approved or plan.status in (
            PlanStatus.cancelled,
            PlanStatus.completed,
        ):
            raise InvalidStateTransition(f"Plan {plan.plan_code} is not open for booking")
        status = derive_item_status(item)
        if status == PlanItemStatus.waiting_for_prerequisite:
            raise PrerequisiteNotMet(f"Item {item.id} is waiting for its prerequisite")
        if status != PlanItemStatus.ready_for_booking:
            raise InvalidStateTransition(f"Item {item.id} is {status.value} and cannot be booked")
        if not suggestion.success or suggestion.starts_at is None or suggestion.doctor_user_id is None:
            raise ValidationError("Suggestion has no slot to book")

        starts_at = as_utc(suggestion.starts_at)
        ends_at = as_utc(suggestion.ends_at)
        if self.calendar is not None:
            ok, reason = self.calendar.validate_window(starts_at, ends_at)
            if not ok:
                raise ValidationError(reason or "Slot is outside practice hours")

        # Row lock serialises bookings per doctor; a no-op on SQLite.
        doctor = self.db.scalar(
            select(User).where(User.id == suggestion.doctor_user_id).with_for_update()
        )
        if doctor is None or not doctor.is_active:
            raise ValidationError(f"Doctor {suggestion.doctor_user_id} is not an active user")
        if self._overlapping(starts_at, ends_at, clinician_user_id=suggestion.doctor_user_id):
            raise SlotConflict(
                f"Doctor {suggestion.doctor_user_id} is already booked at {starts_at.isoformat()}"
            )
        if self._overlapping(starts_at, ends_at, patient_id=plan.patient_id):
            raise SlotConflict(f"Patient already has an appointment at {starts_at.isoformat()}")

        appointment = Appointment(
            patient_id=plan.patient_id,
            clinician_user_id=suggestion.doctor_user_id,
            starts_at=starts_at,
            ends_at=ends_at,
            status=AppointmentStatus.booked,
            appointment_type=item.item_name,
            created_by_user_id=self.actor_id,
        )
        self.db.add(appointment)
        self.db.flush()

        item.linked_appointments.append(
            PlanItemAppointment(
                appointment_id=appointment.id,
                appointment_status=AppointmentStatus.booked,
                starts_at=starts_at,
                clinician_user_id=suggestion.doctor_user_id,
            )
        )
        item.status = PlanItemStatus.scheduled
        sync_statuses(plan, today=starts_at.date())
        logger.info(
            "Booked appointment %s for item %s on plan %s",
            appointment.id,
            item.id,
            plan.plan_code,
        )
        return appointment
