from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Literal

from clinic_plans.models.appointment import AppointmentStatus
from clinic_plans.models.treatment_plan import (
    ApprovalStatus,
    PhaseStatus,
    PlanItem,
    PlanItemStatus,
    PlanPhase,
    PlanStatus,
    TreatmentPlan,
)

# Statuses owned by scheduling and completion events; display never overrides them.
AUTHORITATIVE_ITEM_STATUSES = frozenset(
    {
        PlanItemStatus.scheduled,
        PlanItemStatus.in_progress,
        PlanItemStatus.completed,
        PlanItemStatus.skipped,
    }
)
DONE_ITEM_STATUSES = frozenset({PlanItemStatus.completed, PlanItemStatus.skipped})
ACTIVE_ITEM_STATUSES = frozenset({PlanItemStatus.scheduled, PlanItemStatus.in_progress})


def prerequisite_satisfied(item: PlanItem) -> bool:
    prerequisite = item.prerequisite_item
    if prerequisite is None:
        return True
    return prerequisite.status == PlanItemStatus.completed


def has_active_appointment(item: PlanItem) -> bool:
    return any(
        link.appointment_status == AppointmentStatus.booked for link in item.linked_appointments
    )


def derive_item_status(item: PlanItem) -> PlanItemStatus:
    stored = item.status or PlanItemStatus.pending
    if stored in AUTHORITATIVE_ITEM_STATUSES:
        return stored
    if has_active_appointment(item):
        return PlanItemStatus.scheduled
    if not prerequisite_satisfied(item):
        return PlanItemStatus.waiting_for_prerequisite
    if stored in (PlanItemStatus.ready_for_booking, PlanItemStatus.waiting_for_prerequisite):
        return PlanItemStatus.ready_for_booking
    return PlanItemStatus.pending


def derive_phase_status(phase: PlanPhase) -> PhaseStatus:
    statuses = [derive_item_status(item) for item in phase.items]
    if statuses and all(status in DONE_ITEM_STATUSES for status in statuses):
        return PhaseStatus.completed
    if any(status in ACTIVE_ITEM_STATUSES for status in statuses):
        return PhaseStatus.in_progress
    return PhaseStatus.pending


def derive_plan_status(plan: TreatmentPlan) -> PlanStatus | None:
    """Aggregate plan status, or None while the plan has not been activated."""
    if plan.status == PlanStatus.cancelled:
        return PlanStatus.cancelled
    if plan.approval_status != ApprovalStatus.approved:
        return None
    phase_statuses = [derive_phase_status(phase) for phase in plan.phases]
    if phase_statuses and all(status == PhaseStatus.completed for status in phase_statuses):
        return PlanStatus.completed
    if any(status == PhaseStatus.in_progress for status in phase_statuses):
        return PlanStatus.in_progress
    if any(derive_item_status(item) == PlanItemStatus.scheduled for item in plan.items):
        return PlanStatus.in_progress
    return PlanStatus.pending


@dataclass(frozen=True)
class PhaseStatusSummary:
    phase_number: int
    phase_name: str
    status: PhaseStatus
    item_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PlanStatusSummary:
    """Plan status together with the phase/item facts it was derived from."""

    plan_code: str
    approval_status: ApprovalStatus
    status: PlanStatus | None
    phases: tuple[PhaseStatusSummary, ...]
    item_counts: dict[str, int]
    kind: Literal["detail"] = "detail"

    @property
    def activated(self) -> bool:
        return self.status is not None

    @property
    def total_items(self) -> int:
        return sum(self.item_counts.values())


def summarize_plan(plan: TreatmentPlan) -> PlanStatusSummary:
    overall: Counter[str] = Counter()
    phases = []
    for phase in plan.phases:
        counts = Counter(derive_item_status(item).value for item in phase.items)
        overall.update(counts)
        phases.append(
            PhaseStatusSummary(
                phase_number=phase.phase_number,
                phase_name=phase.phase_name,
                status=derive_phase_status(phase),
                item_counts=dict(counts),
            )
        )
    return PlanStatusSummary(
        plan_code=plan.plan_code,
        approval_status=plan.approval_status,
        status=derive_plan_status(plan),
        phases=tuple(phases),
        item_counts=dict(overall),
    )


def sync_statuses(plan: TreatmentPlan, *, today: date | None = None) -> list[PlanItem]:
    """Write derived statuses back onto items, phases and the plan.

    Returns the items whose stored status changed. Only non-authoritative item
    statuses are rewritten (pending, waiting and ready resolve against
    prerequisites and linked appointments).
    """
    changed: list[PlanItem] = []
    activated = plan.approval_status == ApprovalStatus.approved
    for phase in plan.phases:
        for item in phase.items:
            if item.status in AUTHORITATIVE_ITEM_STATUSES:
                continue
            derived = derive_item_status(item)
            if not activated and derived != PlanItemStatus.pending:
                continue
            if derived != item.status:
                item.status = derived
                changed.append(item)
        phase_status = derive_phase_status(phase)
        if phase_status != phase.status:
            phase.status = phase_status
            phase.completed_on = today if phase_status == PhaseStatus.completed else None
    plan_status = derive_plan_status(plan)
    if activated and plan_status != plan.status:
        plan.status = plan_status
    return changed
