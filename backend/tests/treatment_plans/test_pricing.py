import pytest

from clinic_plans.core.errors import ValidationError
from clinic_plans.models.treatment_plan import PlanItem, PlanItemStatus, PlanPhase, TreatmentPlan
from clinic_plans.services.treatment_plans.pricing import (
    PlanTotals,
    apply_totals,
    financial_impact,
    recompute,
)


def _phase(*prices: int) -> PlanPhase:
    return PlanPhase(
        phase_number=1,
        phase_name="Phase 1",
        items=[
            PlanItem(sequence_number=index, price_pence=price, status=PlanItemStatus.pending)
            for index, price in enumerate(prices, start=1)
        ],
    )


def test_recompute_sums_item_prices():
    totals = recompute([_phase(100, 200)], 0)
    assert totals == PlanTotals(total_cost_pence=300, discount_pence=0, final_cost_pence=300)


def test_skipping_an_item_removes_it_from_the_total():
    phase = _phase(100, 200)
    phase.items[1].status = PlanItemStatus.skipped

    totals = recompute([phase], 0)

    assert totals.total_cost_pence == 100
    assert totals.final_cost_pence == 100


def test_discount_is_subtracted_from_final_cost():
    totals = recompute([_phase(100, 200), _phase(50)], 75)
    assert totals.total_cost_pence == 350
    assert totals.final_cost_pence == 275
    assert totals.final_cost_pence == totals.total_cost_pence - totals.discount_pence


@pytest.mark.parametrize("discount", [-1, 301])
def test_recompute_rejects_out_of_range_discount(discount):
    with pytest.raises(ValidationError):
        recompute([_phase(100, 200)], discount)


@pytest.mark.parametrize(
    ("old_final", "new_final", "direction"),
    [(300, 350, "increased"), (300, 250, "decreased"), (300, 300, "unchanged")],
)
def test_financial_impact_direction(old_final, new_final, direction):
    impact = financial_impact(old_final, PlanTotals(new_final, 0, new_final))
    assert impact.direction == direction
    assert impact.price_change_pence == new_final - old_final


def test_apply_totals_stamps_plan_and_reports_change():
    plan = TreatmentPlan(plan_code="TP-1", total_cost_pence=0, discount_pence=0, final_cost_pence=100)
    plan.phases.append(_phase(100, 200))

    impact = apply_totals(plan)

    assert plan.total_cost_pence == 300
    assert plan.final_cost_pence == 300
    assert impact.price_change_pence == 200
    assert impact.message == "Plan cost increased by 200"


def test_apply_totals_leaves_plan_untouched_when_rejected():
    plan = TreatmentPlan(plan_code="TP-1", total_cost_pence=300, discount_pence=0, final_cost_pence=300)
    plan.phases.append(_phase(100, 200))

    with pytest.raises(ValidationError):
        apply_totals(plan, discount_pence=500)

    assert plan.discount_pence == 0
    assert plan.final_cost_pence == 300
