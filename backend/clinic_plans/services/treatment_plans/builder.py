from __future__ import annotations

import logging
from collections import Counter
from typing import Mapping

from clinic_plans.core.errors import (
    CyclicPrerequisite,
    DuplicateSequenceNumber,
    InvalidQuantity,
    NegativePrice,
    ValidationError,
)
from clinic_plans.models.treatment import Treatment
from clinic_plans.models.treatment_plan import (
    ApprovalStatus,
    PhaseStatus,
    PlanItem,
    PlanItemStatus,
    PlanPhase,
    TreatmentPlan,
)
from clinic_plans.schemas.treatment_plan import PlanItemTemplate, TreatmentPlanCreate
from clinic_plans.services.treatment_plans.pricing import apply_totals

logger = logging.getLogger("clinic_plans.treatment_plans.builder")

MIN_QUANTITY = 1
MAX_QUANTITY = 100


def _template_ref(phase_index: int, position: int, template: PlanItemTemplate) -> str:
    return template.ref or f"p{phase_index}i{position}"


def _check_phase_numbers(payload: TreatmentPlanCreate) -> None:
    for expected, phase in enumerate(payload.phases, start=1):
        if phase.phase_number is not None and phase.phase_number != expected:
            raise ValidationError(
                f"Phase numbers must be contiguous from 1; got {phase.phase_number} at position {expected}"
            )


def _check_sequence_numbers(payload: TreatmentPlanCreate) -> None:
    for phase_number, phase in enumerate(payload.phases, start=1):
        counts = Counter(template.sequence_number for template in phase.items)
        duplicates = sorted(number for number, count in counts.items() if count > 1)
        if duplicates:
            raise DuplicateSequenceNumber(
                f"Phase {phase_number} repeats sequence number(s) {', '.join(map(str, duplicates))}"
            )


def _find_cycle(edges: Mapping[str, str | None]) -> list[str] | None:
    """Return the refs forming a prerequisite cycle, if any (iterative DFS)."""
    visited: set[str] = set()
    for start in edges:
        if start in visited:
            continue
        path: list[str] = []
        on_path: set[str] = set()
        node: str | None = start
        while node is not None and node not in visited:
            if node in on_path:
                return path[path.index(node):] + [node]
            path.append(node)
            on_path.add(node)
            node = edges.get(node)
        visited.update(path)
    return None


def _resolve_treatment(catalog: Mapping[str, Treatment], code: str) -> Treatment:
    treatment = catalog.get(code)
    if treatment is None:
        raise ValidationError(f"Unknown service {code!r}")
    if not treatment.is_active:
        raise ValidationError(f"Service {code!r} is inactive")
    return treatment


def build_custom_plan(
    plan_code: str,
    payload: TreatmentPlanCreate,
    catalog: Mapping[str, Treatment],
    *,
    patient_id: int,
    doctor_user_id: int,
    actor_id: int | None = None,
) -> TreatmentPlan:
    """Validate a custom plan request and assemble an unsaved DRAFT plan.

    Quantity templates expand into independent items named ``"<name> (i/N)"``;
    sequence numbers are renumbered 1..n per phase in request order after the
    requested numbers have been checked for uniqueness. A prerequisite that
    names a quantity template resolves to its last expanded instance.
    All validation happens before any object is created.
    """
    if payload.discount_pence < 0:
        raise ValidationError("Discount amount cannot be negative")
    if (
        payload.start_date
        and payload.expected_end_date
        and payload.expected_end_date < payload.start_date
    ):
        raise ValidationError("Expected end date cannot be before the start date")

    _check_phase_numbers(payload)
    _check_sequence_numbers(payload)

    order: dict[str, int] = {}
    edges: dict[str, str | None] = {}
    resolved: list[tuple[int, str, PlanItemTemplate, Treatment, int]] = []
    for phase_index, phase in enumerate(payload.phases, start=1):
        for position, template in enumerate(phase.items, start=1):
            ref = _template_ref(phase_index, position, template)
            if ref in order:
                raise ValidationError(f"Item reference {ref!r} is used more than once")
            if not MIN_QUANTITY <= template.quantity <= MAX_QUANTITY:
                raise InvalidQuantity(
                    f"Quantity for {ref!r} must be between {MIN_QUANTITY} and {MAX_QUANTITY}"
                )
            treatment = _resolve_treatment(catalog, template.treatment_code)
            price = (
                template.price_pence
                if template.price_pence is not None
                else treatment.default_price_pence
            )
            if price is None or price < 0:
                raise NegativePrice(f"Price for {ref!r} cannot be negative")
            order[ref] = len(order)
            edges[ref] = template.prerequisite_ref
            resolved.append((phase_index, ref, template, treatment, price))

    for ref, prerequisite_ref in edges.items():
        if prerequisite_ref is not None and prerequisite_ref not in order:
            raise ValidationError(f"Item {ref!r} names unknown prerequisite {prerequisite_ref!r}")
    cycle = _find_cycle(edges)
    if cycle:
        raise CyclicPrerequisite(f"Circular prerequisite chain: {' -> '.join(cycle)}")
    for ref, prerequisite_ref in edges.items():
        if prerequisite_ref is not None and order[prerequisite_ref] > order[ref]:
            raise ValidationError(
                f"Item {ref!r} must come after its prerequisite {prerequisite_ref!r}"
            )

    plan = TreatmentPlan(
        plan_code=plan_code,
        plan_name=payload.plan_name.strip(),
        patient_id=patient_id,
        doctor_user_id=doctor_user_id,
        approval_status=ApprovalStatus.draft,
        status=None,
        payment_type=payload.payment_type,
        start_date=payload.start_date,
        expected_end_date=payload.expected_end_date,
        total_cost_pence=0,
        discount_pence=0,
        final_cost_pence=0,
        created_by_user_id=actor_id,
    )
    phases: dict[int, PlanPhase] = {}
    for phase_index, phase_in in enumerate(payload.phases, start=1):
        phase = PlanPhase(
            phase_number=phase_index,
            phase_name=phase_in.phase_name.strip(),
            estimated_duration_days=phase_in.estimated_duration_days,
            status=PhaseStatus.pending,
        )
        plan.phases.append(phase)
        phases[phase_index] = phase

    instances: dict[str, list[PlanItem]] = {}
    next_sequence: Counter[int] = Counter()
    for phase_index, ref, template, treatment, price in resolved:
        name = (template.item_name or treatment.name).strip()
        minutes = template.estimated_time_minutes or treatment.default_duration_minutes or 30
        created: list[PlanItem] = []
        for index in range(1, template.quantity + 1):
            next_sequence[phase_index] += 1
            item = PlanItem(
                sequence_number=next_sequence[phase_index],
                treatment_id=treatment.id,
                item_name=f"{name} ({index}/{template.quantity})" if template.quantity > 1 else name,
                price_pence=price,
                estimated_time_minutes=minutes,
                status=PlanItemStatus.pending,
                assigned_doctor_user_id=template.assigned_doctor_user_id,
            )
            item.treatment = treatment
            phases[phase_index].items.append(item)
            created.append(item)
        instances[ref] = created

    for phase_index, ref, template, treatment, price in resolved:
        if template.prerequisite_ref is None:
            continue
        prerequisite = instances[template.prerequisite_ref][-1]
        for item in instances[ref]:
            item.prerequisite_item = prerequisite

    apply_totals(plan, discount_pence=payload.discount_pence)
    logger.info(
        "Built plan %s with %s phase(s) and %s item(s)",
        plan_code,
        len(plan.phases),
        len(plan.items),
    )
    return plan
