from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from clinic_plans.core.errors import ValidationError
from clinic_plans.models.treatment_plan import PlanItemStatus, PlanPhase, TreatmentPlan


@dataclass(frozen=True)
class PlanTotals:
    total_cost_pence: int
    discount_pence: int
    final_cost_pence: int


@dataclass(frozen=True)
class FinancialImpact:
    total_cost_pence: int
    final_cost_pence: int
    price_change_pence: int

    @property
    def direction(self) -> str:
        if self.price_change_pence > 0:
            return "increased"
        if self.price_change_pence < 0:
            return "decreased"
        return "unchanged"

    @property
    def message(self) -> str:
        if not self.price_change_pence:
            return "Plan cost unchanged"
        return f"Plan cost {self.direction} by {abs(self.price_change_pence)}"


def recompute(phases: Iterable[PlanPhase], discount_pence: int) -> PlanTotals:
    """Plan totals from item prices; skipped items are excluded from scope."""
    if discount_pence is None or discount_pence < 0:
        raise ValidationError("Discount amount cannot be negative")
    total = 0
    for phase in phases:
        for item in phase.items:
            if item.status == PlanItemStatus.skipped:
                continue
            total += item.price_pence or 0
    final = total - discount_pence
    if final < 0:
        raise ValidationError(
            f"Discount amount ({discount_pence}) cannot exceed total cost ({total})"
        )
    return PlanTotals(total_cost_pence=total, discount_pence=discount_pence, final_cost_pence=final)


def financial_impact(old_final_cost_pence: int, totals: PlanTotals) -> FinancialImpact:
    return FinancialImpact(
        total_cost_pence=totals.total_cost_pence,
        final_cost_pence=totals.final_cost_pence,
        price_change_pence=totals.final_cost_pence - (old_final_cost_pence or 0),
    )


def apply_totals(plan: TreatmentPlan, *, discount_pence: int | None = None) -> FinancialImpact:
    """Recompute and stamp the plan's totals, returning the change in final cost.

    Nothing is written to the plan when the recompute is rejected.
    """
    discount = plan.discount_pence if discount_pence is None else discount_pence
    totals = recompute(plan.phases, discount or 0)
    impact = financial_impact(plan.final_cost_pence or 0, totals)
    plan.total_cost_pence = totals.total_cost_pence
    plan.discount_pence = totals.discount_pence
    plan.final_cost_pence = totals.final_cost_pence
    return impact
