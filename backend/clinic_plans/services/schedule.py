from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_plans.core.settings import settings
from clinic_plans.models.appointment import Appointment, AppointmentStatus
from clinic_plans.models.practice_schedule import (
    ClinicHoliday,
    ClinicianLeave,
    PracticeHour,
    PracticeOverride,
)
from clinic_plans.models.treatment import Treatment
from clinic_plans.services.treatment_plans.collaborators import TimeSlot
from clinic_plans.services.users import active_dentist_ids

LOCAL_TZ = ZoneInfo(settings.clinic_timezone)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values (SQLite round-trips) are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_default_hours(db: Session) -> None:
    existing = db.scalar(select(PracticeHour.id))
    if existing:
        return
    defaults = [
        (0, time(9, 0), time(17, 30), False),
        (1, time(9, 0), time(17, 30), False),
        (2, time(9, 0), time(17, 30), False),
        (3, time(9, 0), time(17, 30), False),
        (4, time(9, 0), time(17, 30), False),
        (5, None, None, True),
        (6, None, None, True),
    ]
    for day, start, end, closed in defaults:
        db.add(
            PracticeHour(
                day_of_week=day,
                start_time=start,
                end_time=end,
                is_closed=closed,
            )
        )
    db.flush()


def load_schedule(
    db: Session,
) -> tuple[list[PracticeHour], list[ClinicHoliday], list[PracticeOverride]]:
    ensure_default_hours(db)
    hours = list(db.scalars(select(PracticeHour).order_by(PracticeHour.day_of_week)))
    holidays = list(db.scalars(select(ClinicHoliday).order_by(ClinicHoliday.start_date)))
    overrides = list(db.scalars(select(PracticeOverride).order_by(PracticeOverride.date)))
    return hours, holidays, overrides


def _holiday_on(target: date, holidays: list[ClinicHoliday]) -> ClinicHoliday | None:
    for holiday in holidays:
        if holiday.start_date <= target <= holiday.end_date:
            return holiday
    return None


def get_practice_window(
    target: date,
    hours: list[PracticeHour],
    holidays: list[ClinicHoliday],
    overrides: list[PracticeOverride],
) -> tuple[time | None, time | None, str | None]:
    override = next((item for item in overrides if item.date == target), None)
    if override:
        if override.is_closed:
            reason = override.reason or "Practice closed (override)."
            return None, None, reason
        if override.start_time and override.end_time:
            return override.start_time, override.end_time, None

    holiday = _holiday_on(target, holidays)
    if holiday:
        reason = holiday.name or "Practice closed (holiday)."
        return None, None, reason

    day_hours = {row.day_of_week: row for row in hours}.get(target.weekday())
    if not day_hours or day_hours.is_closed:
        return None, None, "Practice closed."
    if not day_hours.start_time or not day_hours.end_time:
        return None, None, "Practice hours not configured."
    return day_hours.start_time, day_hours.end_time, None


class PracticeCalendar:
    """Holiday calendar over a snapshot of practice hours, holidays and overrides.

    Any day the practice does not open (weekly closed days included) counts
    as a holiday for scheduling purposes.
    """

    def __init__(self, db: Session, *, tz: ZoneInfo = LOCAL_TZ) -> None:
        self.tz = tz
        self.hours, self.holidays, self.overrides = load_schedule(db)

    def window(self, day: date) -> tuple[time | None, time | None, str | None]:
        return get_practice_window(day, self.hours, self.holidays, self.overrides)

    def is_holiday(self, day: date) -> bool:
        start, end, _ = self.window(day)
        return start is None or end is None

    def validate_window(self, starts_at: datetime, ends_at: datetime) -> tuple[bool, str | None]:
        if ends_at <= starts_at:
            return False, "Appointment end time must be after start time."

        start_local = as_utc(starts_at).astimezone(self.tz)
        end_local = as_utc(ends_at).astimezone(self.tz)
        if start_local.date() != end_local.date():
            return False, "Appointments must start and end on the same day."

        day_start, day_end, reason = self.window(start_local.date())
        if not day_start or not day_end:
            return False, reason or "Practice closed."

        if start_local.time() < day_start or end_local.time() > day_end:
            return False, "Appointment falls outside practice hours."

        return True, None


def _align(value: datetime, step_minutes: int) -> datetime:
    if step_minutes <= 1:
        return value
    midnight = value.replace(hour=0, minute=0, second=0, microsecond=0)
    minutes = (value - midnight).total_seconds() / 60
    remainder = minutes % step_minutes
    if not remainder:
        return value
    return value + timedelta(minutes=step_minutes - remainder)


def subtract_busy(
    window: TimeSlot, busy: list[TimeSlot], *, step_minutes: int = 1
) -> list[TimeSlot]:
    free: list[TimeSlot] = []
    cursor = window.starts_at
    for slot in sorted(busy):
        if slot.ends_at <= cursor or slot.starts_at >= window.ends_at:
            continue
        if slot.starts_at > cursor:
            free.append(TimeSlot(cursor, slot.starts_at))
        cursor = max(cursor, _align(slot.ends_at, step_minutes))
    if cursor < window.ends_at:
        free.append(TimeSlot(cursor, window.ends_at))
    return [slot for slot in free if slot.ends_at > slot.starts_at]


class PracticeAvailability:
    """Doctor availability from practice hours minus leave and booked appointments."""

    def __init__(
        self,
        db: Session,
        calendar: PracticeCalendar,
        *,
        slot_step_minutes: int = settings.schedule_slot_step_minutes,
    ) -> None:
        self.db = db
        self.calendar = calendar
        self.slot_step_minutes = slot_step_minutes

    def _on_leave(self, doctor_user_id: int, day: date) -> bool:
        leave = self.db.scalar(
            select(ClinicianLeave.id).where(
                ClinicianLeave.user_id == doctor_user_id,
                ClinicianLeave.start_date <= day,
                ClinicianLeave.end_date >= day,
            )
        )
        return leave is not None

    def _busy(self, doctor_user_id: int, start: datetime, end: datetime) -> list[TimeSlot]:
        rows = self.db.execute(
            select(Appointment.starts_at, Appointment.ends_at).where(
                Appointment.clinician_user_id == doctor_user_id,
                Appointment.status == AppointmentStatus.booked,
                Appointment.starts_at < as_utc(end),
                Appointment.ends_at > as_utc(start),
            )
        ).all()
        return [
            TimeSlot(as_utc(starts_at).astimezone(self.calendar.tz), as_utc(ends_at).astimezone(self.calendar.tz))
            for starts_at, ends_at in rows
        ]

    def free_slots(self, doctor_user_id: int, start: datetime, end: datetime) -> list[TimeSlot]:
        tz = self.calendar.tz
        start_local = as_utc(start).astimezone(tz)
        end_local = as_utc(end).astimezone(tz)
        slots: list[TimeSlot] = []
        day = start_local.date()
        while datetime.combine(day, time.min, tzinfo=tz) < end_local:
            open_at, close_at, _ = self.calendar.window(day)
            if open_at and close_at and not self._on_leave(doctor_user_id, day):
                window = TimeSlot(
                    max(datetime.combine(day, open_at, tzinfo=tz), start_local),
                    min(datetime.combine(day, close_at, tzinfo=tz), end_local),
                )
                if window.ends_at > window.starts_at:
                    busy = self._busy(doctor_user_id, window.starts_at, window.ends_at)
                    slots.extend(subtract_busy(window, busy, step_minutes=self.slot_step_minutes))
            day += timedelta(days=1)
        return slots

    def capable_doctors(self, treatment: Treatment) -> list[int]:
        clinicians = [user.id for user in treatment.clinicians if user.is_active]
        if clinicians:
            return sorted(clinicians)
        return active_dentist_ids(self.db)
