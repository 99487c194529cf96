from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from clinic_plans.models.appointment import Appointment
from clinic_plans.models.treatment import Treatment
from clinic_plans.models.treatment_plan import PlanItem, TreatmentPlan

if TYPE_CHECKING:
    from clinic_plans.services.treatment_plans.scheduler import Suggestion


@dataclass(frozen=True, order=True)
class TimeSlot:
    starts_at: datetime
    ends_at: datetime

    @property
    def minutes(self) -> int:
        return int((self.ends_at - self.starts_at).total_seconds() // 60)

    def fits(self, minutes: int) -> bool:
        return self.minutes >= minutes

    def overlaps(self, other: "TimeSlot") -> bool:
        return self.starts_at < other.ends_at and other.starts_at < self.ends_at

    def take(self, minutes: int) -> "TimeSlot":
        return TimeSlot(self.starts_at, self.starts_at + timedelta(minutes=minutes))


class HolidayCalendar(Protocol):
    def is_holiday(self, day: date) -> bool: ...


class AvailabilitySource(Protocol):
    def free_slots(self, doctor_user_id: int, start: datetime, end: datetime) -> list[TimeSlot]: ...

    def capable_doctors(self, treatment: Treatment) -> list[int]: ...


class AppointmentBooking(Protocol):
    def confirm(self, item: PlanItem, suggestion: "Suggestion") -> Appointment: ...


class PlanRepository(Protocol):
    def load_plan(self, plan_code: str) -> TreatmentPlan: ...

    def save_plan(self, plan: TreatmentPlan, expected_version: int | None) -> TreatmentPlan: ...
