from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from clinic_plans.core.cancellation import CancellationToken
from clinic_plans.core.errors import InvalidStateTransition, ValidationError
from clinic_plans.core.settings import Settings
from clinic_plans.models.treatment_plan import (
    ApprovalStatus,
    PlanItem,
    PlanItemStatus,
    PlanPhase,
    PlanStatus,
    TreatmentPlan,
)
from clinic_plans.services.treatment_plans.collaborators import (
    AvailabilitySource,
    HolidayCalendar,
    TimeSlot,
)
from clinic_plans.services.treatment_plans.status import derive_item_status

logger = logging.getLogger("clinic_plans.treatment_plans.scheduler")

BLOCKED_ITEM_STATUSES = frozenset(
    {PlanItemStatus.pending, PlanItemStatus.waiting_for_prerequisite}
)


@dataclass(frozen=True)
class ScheduleRequest:
    start_date: date | None = None
    search_window_days: int | None = None
    max_items_per_day: int | None = None
    min_spacing_days: int | None = None
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class SchedulerConfig:
    timezone: str = "Europe/London"
    search_window_days: int = 60
    item_timeout_seconds: float = 2.0
    default_max_per_day: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerConfig":
        return cls(
            timezone=settings.clinic_timezone,
            search_window_days=settings.schedule_search_window_days,
            item_timeout_seconds=settings.schedule_item_timeout_seconds,
            default_max_per_day=settings.schedule_default_max_per_day,
        )


@dataclass(frozen=True)
class SchedulingCollaborators:
    calendar: HolidayCalendar
    availability: AvailabilitySource
    config: SchedulerConfig = field(default_factory=SchedulerConfig)


@dataclass(frozen=True)
class Suggestion:
    item_id: int | None
    phase_number: int
    sequence_number: int
    item_name: str
    success: bool
    suggested_date: date | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    doctor_user_id: int | None = None
    warning: str | None = None
    requires_reassign: bool = False
    failure_reason: str | None = None

    @property
    def slot(self) -> TimeSlot | None:
        if self.starts_at is None or self.ends_at is None:
            return None
        return TimeSlot(self.starts_at, self.ends_at)


@dataclass(frozen=True)
class ScheduleSummary:
    total_items_processed: int = 0
    successful_suggestions: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    warnings: int = 0
    reassignments: int = 0
    holiday_adjustments: int = 0
    spacing_adjustments: int = 0


@dataclass(frozen=True)
class AutoScheduleResult:
    plan_code: str
    phase_number: int | None
    suggestions: list[Suggestion]
    skipped: list[Suggestion]
    summary: ScheduleSummary


@dataclass
class _Run:
    """Mutable bookkeeping for one ``suggest`` call."""

    by_item: dict[int, Suggestion] = field(default_factory=dict)
    slots: list[TimeSlot] = field(default_factory=list)
    per_day: dict[date, int] = field(default_factory=dict)
    last_date: date | None = None
    holiday_adjustments: int = 0
    spacing_adjustments: int = 0

    def record(self, item: PlanItem, suggestion: Suggestion) -> None:
        self.by_item[id(item)] = suggestion
        if suggestion.success:
            self.slots.append(suggestion.slot)
            self.per_day[suggestion.suggested_date] = (
                self.per_day.get(suggestion.suggested_date, 0) + 1
            )
            self.last_date = suggestion.suggested_date

    def suggested_date(self, item: PlanItem) -> date | None:
        suggestion = self.by_item.get(id(item))
        if suggestion is None or not suggestion.success:
            return None
        return suggestion.suggested_date


def _resolve_scope(scope: TreatmentPlan | PlanPhase) -> tuple[TreatmentPlan, list[PlanPhase], int | None]:
    if isinstance(scope, PlanPhase):
        return scope.plan, [scope], scope.phase_number
    return scope, list(scope.phases), None


def _check_plan(plan: TreatmentPlan) -> None:
    if plan.approval_status != ApprovalStatus.approved:
        raise InvalidStateTransition(
            f"Plan {plan.plan_code} is {plan.approval_status.value}; only APPROVED plans can be scheduled"
        )
    if plan.status in (PlanStatus.cancelled, PlanStatus.completed):
        raise InvalidStateTransition(f"Plan {plan.plan_code} is {plan.status.value}")


def _item_anchor(item: PlanItem, run: _Run) -> date | None:
    if item.status == PlanItemStatus.completed and item.completed_at is not None:
        return item.completed_at.date()
    return run.suggested_date(item)


def _earliest_date(
    plan: TreatmentPlan,
    item: PlanItem,
    request: ScheduleRequest,
    run: _Run,
    today: date,
) -> tuple[date, date]:
    """Return (base date, earliest allowed date after spacing anchors)."""
    treatment = item.treatment
    base = max(
        filter(
            None,
            (
                today,
                plan.start_date,
                request.start_date,
                today + timedelta(days=treatment.minimum_preparation_days or 0),
            ),
        )
    )
    anchors: list[date] = []
    prerequisite = item.prerequisite_item
    if prerequisite is not None:
        anchor = _item_anchor(prerequisite, run)
        if anchor is not None:
            recovery = prerequisite.treatment.recovery_days if prerequisite.treatment else 0
            gap = max(recovery or 0, request.min_spacing_days or 0)
            anchors.append(anchor + timedelta(days=gap))
    if treatment.spacing_days:
        for other in plan.items:
            if other is item or other.treatment_id != item.treatment_id:
                continue
            anchor = _item_anchor(other, run)
            if anchor is not None:
                anchors.append(anchor + timedelta(days=treatment.spacing_days))
    if request.min_spacing_days and run.last_date is not None:
        anchors.append(run.last_date + timedelta(days=request.min_spacing_days))
    return base, max([base, *anchors])


def _find_slot(
    availability: AvailabilitySource,
    doctor_user_id: int,
    day: date,
    minutes: int,
    taken: list[TimeSlot],
    tz: ZoneInfo,
) -> TimeSlot | None:
    day_start = datetime.combine(day, time.min, tzinfo=tz)
    day_end = day_start + timedelta(days=1)
    duration = timedelta(minutes=minutes)
    for free in sorted(availability.free_slots(doctor_user_id, day_start, day_end)):
        cursor = free.starts_at
        while cursor + duration <= free.ends_at:
            candidate = TimeSlot(cursor, cursor + duration)
            clash = next((slot for slot in taken if candidate.overlaps(slot)), None)
            if clash is None:
                return candidate
            cursor = clash.ends_at
    return None


def _doctor_chain(plan: TreatmentPlan, item: PlanItem) -> tuple[int, int | None]:
    primary = item.assigned_doctor_user_id or plan.doctor_user_id
    default = item.treatment.default_clinician_user_id
    return primary, default if default != primary else None


def _schedule_item(
    plan: TreatmentPlan,
    phase: PlanPhase,
    item: PlanItem,
    request: ScheduleRequest,
    collaborators: SchedulingCollaborators,
    run: _Run,
    today: date,
    window_end: date,
    token: CancellationToken,
) -> Suggestion:
    config = collaborators.config
    tz = ZoneInfo(config.timezone)
    treatment = item.treatment
    minutes = item.estimated_time_minutes or treatment.default_duration_minutes or 30
    daily_limit = treatment.max_per_day or request.max_items_per_day or config.default_max_per_day
    base, earliest = _earliest_date(plan, item, request, run, today)

    def failed(reason: str) -> Suggestion:
        logger.debug("Item %s not scheduled: %s", item.id, reason)
        return Suggestion(
            item_id=item.id,
            phase_number=phase.phase_number,
            sequence_number=item.sequence_number,
            item_name=item.item_name,
            success=False,
            failure_reason=reason,
        )

    if earliest >= window_end:
        return failed(f"Earliest allowed date {earliest.isoformat()} is outside the search window")

    item_timeout = (
        request.timeout_seconds if request.timeout_seconds is not None else config.item_timeout_seconds
    )
    item_token = token.child(item_timeout)
    primary, default = _doctor_chain(plan, item)
    naive_is_holiday = collaborators.calendar.is_holiday(earliest)

    day = earliest
    while day < window_end:
        item_token.raise_if_cancelled()
        if item_token.expired:
            return failed("Slot search timed out")
        if collaborators.calendar.is_holiday(day):
            day += timedelta(days=1)
            continue
        if run.per_day.get(day, 0) >= daily_limit:
            day += timedelta(days=1)
            continue

        chosen: tuple[int, TimeSlot] | None = None
        requires_reassign = False
        for doctor_id in filter(None, (primary, default)):
            slot = _find_slot(collaborators.availability, doctor_id, day, minutes, run.slots, tz)
            if slot is not None:
                chosen = (doctor_id, slot)
                break
        if chosen is None:
            candidates = []
            for doctor_id in sorted(collaborators.availability.capable_doctors(treatment)):
                if doctor_id in (primary, default):
                    continue
                slot = _find_slot(collaborators.availability, doctor_id, day, minutes, run.slots, tz)
                if slot is not None:
                    candidates.append((slot.starts_at, doctor_id, slot))
            if candidates:
                _, doctor_id, slot = min(candidates, key=lambda entry: (entry[0], entry[1]))
                chosen = (doctor_id, slot)
                requires_reassign = True
        if chosen is None:
            day += timedelta(days=1)
            continue

        doctor_id, slot = chosen
        warnings = []
        if naive_is_holiday:
            run.holiday_adjustments += 1
            warnings.append(
                f"Earliest date {earliest.isoformat()} is a clinic holiday; moved to {day.isoformat()}"
            )
        if requires_reassign:
            warnings.append(
                f"Assigned doctor unavailable; reassigned to doctor {doctor_id}"
            )
        if earliest > base:
            run.spacing_adjustments += 1
        logger.debug(
            "Item %s suggested on %s at %s with doctor %s",
            item.id,
            day.isoformat(),
            slot.starts_at.isoformat(),
            doctor_id,
        )
        return Suggestion(
            item_id=item.id,
            phase_number=phase.phase_number,
            sequence_number=item.sequence_number,
            item_name=item.item_name,
            success=True,
            suggested_date=day,
            starts_at=slot.starts_at,
            ends_at=slot.ends_at,
            doctor_user_id=doctor_id,
            warning="; ".join(warnings) or None,
            requires_reassign=requires_reassign,
        )
    return failed(
        f"No available slot between {earliest.isoformat()} and {(window_end - timedelta(days=1)).isoformat()}"
    )


def suggest(
    scope: TreatmentPlan | PlanPhase,
    request: ScheduleRequest,
    collaborators: SchedulingCollaborators,
    *,
    today: date,
    token: CancellationToken | None = None,
) -> AutoScheduleResult:
    """Propose appointment slots for the bookable items of a plan or phase.

    Read-only: nothing is booked or reserved. Items are processed one by one
    in (phase_number, sequence_number) order because later items space
    themselves from earlier suggestions. Items that are not yet bookable are
    reported in ``skipped``; items with no slot in the window are reported as
    failed suggestions. Cancelling ``token`` aborts the whole call.
    """
    plan, phases, phase_number = _resolve_scope(scope)
    _check_plan(plan)
    window_days = request.search_window_days or collaborators.config.search_window_days
    if window_days < 1:
        raise ValidationError("Search window must be at least one day")
    token = token or CancellationToken()

    window_start = max(filter(None, (today, plan.start_date, request.start_date)))
    window_end = window_start + timedelta(days=window_days)

    run = _Run()
    suggestions: list[Suggestion] = []
    skipped: list[Suggestion] = []
    ordered = sorted(
        ((phase, item) for phase in phases for item in phase.items),
        key=lambda entry: (entry[0].phase_number, entry[1].sequence_number),
    )
    for phase, item in ordered:
        token.raise_if_cancelled()
        status = derive_item_status(item)
        if status in BLOCKED_ITEM_STATUSES:
            reason = (
                "Waiting for prerequisite item to be completed"
                if status == PlanItemStatus.waiting_for_prerequisite
                else "Item is not ready for booking"
            )
            skipped.append(
                Suggestion(
                    item_id=item.id,
                    phase_number=phase.phase_number,
                    sequence_number=item.sequence_number,
                    item_name=item.item_name,
                    success=False,
                    failure_reason=reason,
                )
            )
            continue
        if status != PlanItemStatus.ready_for_booking:
            continue
        suggestion = _schedule_item(
            plan, phase, item, request, collaborators, run, today, window_end, token
        )
        run.record(item, suggestion)
        suggestions.append(suggestion)

    successful = [suggestion for suggestion in suggestions if suggestion.success]
    summary = ScheduleSummary(
        total_items_processed=len(suggestions),
        successful_suggestions=len(successful),
        failed_items=len(suggestions) - len(successful),
        skipped_items=len(skipped),
        warnings=sum(1 for suggestion in successful if suggestion.warning),
        reassignments=sum(1 for suggestion in successful if suggestion.requires_reassign),
        holiday_adjustments=run.holiday_adjustments,
        spacing_adjustments=run.spacing_adjustments,
    )
    logger.info(
        "Auto-schedule for plan %s%s: %s/%s suggested, %s skipped",
        plan.plan_code,
        f" phase {phase_number}" if phase_number is not None else "",
        summary.successful_suggestions,
        summary.total_items_processed,
        summary.skipped_items,
    )
    return AutoScheduleResult(
        plan_code=plan.plan_code,
        phase_number=phase_number,
        suggestions=suggestions,
        skipped=skipped,
        summary=summary,
    )
