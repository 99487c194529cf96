from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from clinic_plans.core.errors import InvalidStateTransition, ValidationError
from clinic_plans.models.treatment_plan import (
    ApprovalStatus,
    PlanItem,
    PlanItemStatus,
    PlanStatus,
    TreatmentPlan,
)
from clinic_plans.services.treatment_plans.pricing import recompute
from clinic_plans.services.treatment_plans.status import prerequisite_satisfied, sync_statuses

logger = logging.getLogger("clinic_plans.treatment_plans.approval")

# action -> (allowed source states, target state)
TRANSITIONS: dict[str, tuple[frozenset[ApprovalStatus], ApprovalStatus]] = {
    "submit": (frozenset({ApprovalStatus.draft}), ApprovalStatus.pending_review),
    "approve": (frozenset({ApprovalStatus.pending_review}), ApprovalStatus.approved),
    "reject": (frozenset({ApprovalStatus.pending_review}), ApprovalStatus.rejected),
    "reopen": (frozenset({ApprovalStatus.rejected}), ApprovalStatus.draft),
}

CLOSED_PLAN_STATUSES = frozenset({PlanStatus.completed, PlanStatus.cancelled})


@dataclass(frozen=True)
class PlanEvent:
    """Outcome of a workflow transition, recorded in the audit trail by the caller."""

    action: str
    from_state: str | None
    to_state: str
    notes: str | None = None
    activated_items: int = 0

    def as_audit_data(self) -> dict:
        return {
            "from": self.from_state,
            "to": self.to_state,
            "activated_items": self.activated_items,
        }


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _check_transition(plan: TreatmentPlan, action: str) -> ApprovalStatus:
    sources, target = TRANSITIONS[action]
    if plan.status == PlanStatus.cancelled:
        raise InvalidStateTransition(f"Plan {plan.plan_code} is cancelled and cannot {action}")
    if plan.approval_status not in sources:
        current = plan.approval_status.value if plan.approval_status else None
        raise InvalidStateTransition(
            f"Cannot {action} plan {plan.plan_code} from {current}; "
            f"allowed from {', '.join(sorted(state.value for state in sources))}"
        )
    return target


def _apply(plan: TreatmentPlan, action: str, target: ApprovalStatus, actor_id: int | None) -> str:
    source = plan.approval_status.value
    plan.approval_status = target
    plan.updated_by_user_id = actor_id
    logger.info("Plan %s %s: %s -> %s", plan.plan_code, action, source, target.value)
    return source


def activate_items(plan: TreatmentPlan) -> list[PlanItem]:
    """Move PENDING items to READY_FOR_BOOKING or WAITING_FOR_PREREQUISITE."""
    activated = []
    for item in plan.items:
        if item.status not in (None, PlanItemStatus.pending):
            continue
        if prerequisite_satisfied(item):
            item.status = PlanItemStatus.ready_for_booking
        else:
            item.status = PlanItemStatus.waiting_for_prerequisite
        activated.append(item)
    return activated


def submit_for_review(
    plan: TreatmentPlan,
    actor_id: int | None,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> PlanEvent:
    target = _check_transition(plan, "submit")
    if not plan.phases:
        raise ValidationError("A plan needs at least one phase before it can be submitted")
    if not plan.items:
        raise ValidationError("A plan needs at least one item before it can be submitted")
    negative = [item.item_name for item in plan.items if (item.price_pence or 0) < 0]
    if negative:
        raise ValidationError(f"Item prices cannot be negative: {', '.join(negative)}")
    recompute(plan.phases, plan.discount_pence or 0)

    source = _apply(plan, "submit", target, actor_id)
    plan.submitted_at = _now(now)
    return PlanEvent("plan.submitted", source, target.value, notes)


def approve(
    plan: TreatmentPlan,
    actor_id: int | None,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> PlanEvent:
    target = _check_transition(plan, "approve")
    source = _apply(plan, "approve", target, actor_id)
    plan.reviewed_at = _now(now)
    plan.reviewed_by_user_id = actor_id
    plan.review_notes = notes
    if plan.status is None:
        plan.status = PlanStatus.pending
    activated = activate_items(plan)
    sync_statuses(plan, today=plan.reviewed_at.date())
    return PlanEvent("plan.approved", source, target.value, notes, activated_items=len(activated))


def reject(
    plan: TreatmentPlan,
    actor_id: int | None,
    notes: str | None,
    *,
    now: datetime | None = None,
) -> PlanEvent:
    target = _check_transition(plan, "reject")
    if not notes or not notes.strip():
        raise ValidationError("A rejection note is required")
    source = _apply(plan, "reject", target, actor_id)
    plan.reviewed_at = _now(now)
    plan.reviewed_by_user_id = actor_id
    plan.review_notes = notes.strip()
    return PlanEvent("plan.rejected", source, target.value, plan.review_notes)


def reopen(
    plan: TreatmentPlan,
    actor_id: int | None,
    *,
    notes: str | None = None,
) -> PlanEvent:
    target = _check_transition(plan, "reopen")
    source = _apply(plan, "reopen", target, actor_id)
    plan.submitted_at = None
    return PlanEvent("plan.reopened", source, target.value, notes)


def cancel_plan(
    plan: TreatmentPlan,
    actor_id: int | None,
    reason: str | None,
    *,
    now: datetime | None = None,
) -> PlanEvent:
    if not reason or not reason.strip():
        raise ValidationError("A cancellation reason is required")
    if plan.status in CLOSED_PLAN_STATUSES:
        raise InvalidStateTransition(
            f"Plan {plan.plan_code} is already {plan.status.value} and cannot be cancelled"
        )
    source = plan.status.value if plan.status else None
    plan.status = PlanStatus.cancelled
    plan.cancelled_at = _now(now)
    plan.cancel_reason = reason.strip()
    plan.updated_by_user_id = actor_id
    logger.info("Plan %s cancelled (was %s)", plan.plan_code, source)
    return PlanEvent("plan.cancelled", source, PlanStatus.cancelled.value, plan.cancel_reason)
