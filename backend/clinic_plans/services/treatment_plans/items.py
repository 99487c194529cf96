from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from clinic_plans.core.errors import (
    InvalidStateTransition,
    ItemLocked,
    NegativePrice,
    PrerequisiteNotMet,
    ValidationError,
)
from clinic_plans.models.appointment import AppointmentStatus
from clinic_plans.models.treatment_plan import (
    ApprovalStatus,
    CompletionSource,
    PlanItem,
    PlanItemStatus,
    PlanStatus,
    TreatmentPlan,
)
from clinic_plans.schemas.treatment_plan import PlanItemUpdate
from clinic_plans.services.treatment_plans.pricing import FinancialImpact, apply_totals
from clinic_plans.services.treatment_plans.status import (
    has_active_appointment,
    prerequisite_satisfied,
    sync_statuses,
)

logger = logging.getLogger("clinic_plans.treatment_plans.items")

EDITABLE_FIELDS = ("item_name", "price_pence", "estimated_time_minutes", "assigned_doctor_user_id")
LOCKED_ITEM_STATUSES = frozenset(
    {PlanItemStatus.scheduled, PlanItemStatus.in_progress, PlanItemStatus.completed}
)
LOCKED_APPROVAL_STATUSES = frozenset(
    {ApprovalStatus.pending_review, ApprovalStatus.approved, ApprovalStatus.rejected}
)

# COMPLETED is reached only through record_appointment_outcome / complete_item_manually.
ITEM_TRANSITIONS: dict[PlanItemStatus, frozenset[PlanItemStatus]] = {
    PlanItemStatus.pending: frozenset(
        {
            PlanItemStatus.ready_for_booking,
            PlanItemStatus.waiting_for_prerequisite,
            PlanItemStatus.skipped,
        }
    ),
    PlanItemStatus.ready_for_booking: frozenset(
        {PlanItemStatus.scheduled, PlanItemStatus.skipped}
    ),
    PlanItemStatus.waiting_for_prerequisite: frozenset(
        {PlanItemStatus.ready_for_booking, PlanItemStatus.skipped}
    ),
    PlanItemStatus.scheduled: frozenset(
        {PlanItemStatus.in_progress, PlanItemStatus.ready_for_booking}
    ),
    PlanItemStatus.in_progress: frozenset({PlanItemStatus.completed}),
    PlanItemStatus.skipped: frozenset({PlanItemStatus.ready_for_booking}),
    PlanItemStatus.completed: frozenset(),
}
MANUAL_COMPLETION_SOURCES = frozenset(
    {PlanItemStatus.ready_for_booking, PlanItemStatus.scheduled, PlanItemStatus.in_progress}
)


@dataclass(frozen=True)
class ItemUpdateResult:
    item: PlanItem
    financial_impact: FinancialImpact | None
    changed_fields: tuple[str, ...] = ()
    before: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ItemStatusResult:
    item: PlanItem
    previous_status: PlanItemStatus
    financial_impact: FinancialImpact | None = None
    unlocked: tuple[PlanItem, ...] = ()
    closed_appointment_ids: tuple[int, ...] = ()


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _require_item_in_plan(plan: TreatmentPlan, item: PlanItem) -> None:
    if not any(candidate is item for candidate in plan.items):
        raise ValidationError(f"Item {item.id} does not belong to plan {plan.plan_code}")


def _require_active_plan(plan: TreatmentPlan) -> None:
    if plan.approval_status != ApprovalStatus.approved:
        raise InvalidStateTransition(
            f"Plan {plan.plan_code} must be APPROVED before item progress can be recorded"
        )
    if plan.status in (PlanStatus.cancelled, PlanStatus.completed):
        raise InvalidStateTransition(f"Plan {plan.plan_code} is {plan.status.value}")


def update_item(
    plan: TreatmentPlan,
    item: PlanItem,
    changes: PlanItemUpdate,
    *,
    actor_id: int | None = None,
) -> ItemUpdateResult:
    """Edit an item of a DRAFT plan and re-stamp the plan totals.

    The plan totals are recomputed whenever the price changes; the returned
    impact carries the change in final cost.
    """
    _require_item_in_plan(plan, item)
    provided = changes.model_dump(include=set(EDITABLE_FIELDS), exclude_unset=True)
    if not provided:
        raise ValidationError("At least one field must be provided")
    if item.status in LOCKED_ITEM_STATUSES:
        raise ItemLocked(
            f"Item {item.id} is {item.status.value}; cancel its appointment before editing"
        )
    if plan.approval_status in LOCKED_APPROVAL_STATUSES or plan.status == PlanStatus.cancelled:
        state = plan.status.value if plan.status == PlanStatus.cancelled else plan.approval_status.value
        raise ItemLocked(f"Plan {plan.plan_code} is {state}; only DRAFT plans can be edited")
    if provided.get("price_pence") is not None and provided["price_pence"] < 0:
        raise NegativePrice("Item price cannot be negative")
    if "item_name" in provided and not (provided["item_name"] or "").strip():
        raise ValidationError("Item name cannot be blank")
    if "price_pence" in provided and provided["price_pence"] is None:
        raise ValidationError("Item price cannot be cleared")
    if "estimated_time_minutes" in provided and provided["estimated_time_minutes"] is None:
        raise ValidationError("Estimated time cannot be cleared")

    before = {key: getattr(item, key) for key in provided}
    for key, value in provided.items():
        setattr(item, key, value.strip() if isinstance(value, str) else value)

    impact = None
    if "price_pence" in provided:
        try:
            impact = apply_totals(plan)
        except ValidationError:
            for key, value in before.items():
                setattr(item, key, value)
            raise
    plan.updated_by_user_id = actor_id
    changed = tuple(key for key in provided if before[key] != getattr(item, key))
    logger.info("Item %s on plan %s updated: %s", item.id, plan.plan_code, ", ".join(changed) or "no-op")
    return ItemUpdateResult(item=item, financial_impact=impact, changed_fields=changed, before=before)


def unlock_dependents(plan: TreatmentPlan, item: PlanItem) -> list[PlanItem]:
    """Move WAITING items whose prerequisite is ``item`` to READY_FOR_BOOKING."""
    unlocked = []
    for candidate in plan.items:
        if candidate.prerequisite_item is not item:
            continue
        if candidate.status == PlanItemStatus.waiting_for_prerequisite and prerequisite_satisfied(
            candidate
        ):
            candidate.status = PlanItemStatus.ready_for_booking
            unlocked.append(candidate)
    if unlocked:
        logger.info(
            "Unlocked %s item(s) on plan %s after item %s completed",
            len(unlocked),
            plan.plan_code,
            item.id,
        )
    return unlocked


def change_item_status(
    plan: TreatmentPlan,
    item: PlanItem,
    new_status: PlanItemStatus,
    *,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> ItemStatusResult:
    _require_item_in_plan(plan, item)
    _require_active_plan(plan)
    current = item.status or PlanItemStatus.pending
    if new_status == PlanItemStatus.completed:
        raise InvalidStateTransition(
            "Items are completed through their appointment or a manual completion"
        )
    allowed = ITEM_TRANSITIONS.get(current, frozenset())
    if new_status not in allowed:
        raise InvalidStateTransition(
            f"Invalid item transition {current.value} -> {new_status.value}; allowed: "
            f"{', '.join(sorted(status.value for status in allowed)) or 'none'}"
        )
    if new_status == PlanItemStatus.ready_for_booking and not prerequisite_satisfied(item):
        raise PrerequisiteNotMet(
            f"Item {item.id} is waiting for item {item.prerequisite_item.id} to be completed"
        )
    if new_status == PlanItemStatus.waiting_for_prerequisite and prerequisite_satisfied(item):
        raise ValidationError(f"Item {item.id} has no outstanding prerequisite")
    if new_status in (PlanItemStatus.skipped, PlanItemStatus.ready_for_booking) and has_active_appointment(
        item
    ):
        raise InvalidStateTransition(
            f"Item {item.id} has an active appointment; cancel it before changing status"
        )

    item.status = new_status
    impact = None
    if PlanItemStatus.skipped in (current, new_status):
        try:
            impact = apply_totals(plan)
        except ValidationError:
            item.status = current
            raise
    plan.updated_by_user_id = actor_id
    sync_statuses(plan, today=_now(now).date())
    logger.info("Item %s on plan %s: %s -> %s", item.id, plan.plan_code, current.value, new_status.value)
    return ItemStatusResult(item=item, previous_status=current, financial_impact=impact)


def _complete(
    plan: TreatmentPlan,
    item: PlanItem,
    source: CompletionSource,
    now: datetime | None,
) -> ItemStatusResult:
    previous = item.status
    item.status = PlanItemStatus.completed
    item.completed_at = _now(now)
    item.completion_source = source
    unlocked = unlock_dependents(plan, item)
    sync_statuses(plan, today=item.completed_at.date())
    logger.info("Item %s on plan %s completed via %s", item.id, plan.plan_code, source.value)
    return ItemStatusResult(item=item, previous_status=previous, unlocked=tuple(unlocked))


def record_appointment_outcome(
    plan: TreatmentPlan,
    item: PlanItem,
    appointment_id: int,
    outcome: AppointmentStatus,
    *,
    now: datetime | None = None,
) -> ItemStatusResult:
    """Apply a linked appointment's new status to the item.

    A completed appointment completes the item; a cancelled one releases a
    SCHEDULED item back to booking once no other appointment is active.
    """
    _require_item_in_plan(plan, item)
    _require_active_plan(plan)
    link = next(
        (link for link in item.linked_appointments if link.appointment_id == appointment_id),
        None,
    )
    if link is None:
        raise ValidationError(f"Appointment {appointment_id} is not linked to item {item.id}")
    if outcome == AppointmentStatus.completed and item.status in (
        PlanItemStatus.completed,
        PlanItemStatus.skipped,
    ):
        raise InvalidStateTransition(f"Item {item.id} is already {item.status.value}")
    link.appointment_status = outcome
    previous = item.status

    if outcome == AppointmentStatus.completed:
        return _complete(plan, item, CompletionSource.appointment, now)

    if outcome == AppointmentStatus.cancelled and item.status == PlanItemStatus.scheduled:
        if not has_active_appointment(item):
            item.status = (
                PlanItemStatus.ready_for_booking
                if prerequisite_satisfied(item)
                else PlanItemStatus.waiting_for_prerequisite
            )
    sync_statuses(plan, today=_now(now).date())
    return ItemStatusResult(item=item, previous_status=previous)


def complete_item_manually(
    plan: TreatmentPlan,
    item: PlanItem,
    *,
    actor_id: int | None = None,
    now: datetime | None = None,
) -> ItemStatusResult:
    """Complete an item outside the appointment flow; any booked link is closed as completed."""
    _require_item_in_plan(plan, item)
    _require_active_plan(plan)
    if item.status not in MANUAL_COMPLETION_SOURCES:
        raise InvalidStateTransition(
            f"Item {item.id} cannot be completed manually from {item.status.value}"
        )
    if not prerequisite_satisfied(item):
        raise PrerequisiteNotMet(f"Item {item.id} is still waiting for its prerequisite")
    plan.updated_by_user_id = actor_id
    closed = []
    for link in item.linked_appointments:
        if link.appointment_status == AppointmentStatus.booked:
            link.appointment_status = AppointmentStatus.completed
            closed.append(link.appointment_id)
    result = _complete(plan, item, CompletionSource.manual, now)
    return replace(result, closed_appointment_ids=tuple(closed))
