from datetime import date

import pytest

from clinic_plans.core.errors import (
    CyclicPrerequisite,
    DuplicateSequenceNumber,
    InvalidQuantity,
    NegativePrice,
    ValidationError,
)
from clinic_plans.models.treatment_plan import ApprovalStatus, PlanItemStatus
from clinic_plans.schemas.treatment_plan import TreatmentPlanCreate
from clinic_plans.services.treatment_plans.builder import build_custom_plan
from clinic_plans.services.treatment_plans.codes import format_plan_code


def _item(code: str, sequence: int, **extra) -> dict:
    return {"treatment_code": code, "sequence_number": sequence, **extra}


def test_quantity_expands_into_independent_items(build_plan):
    plan = build_plan(
        [
            {
                "phase_name": "Stabilise",
                "items": [_item("EXAM", 1), _item("FILL", 2), _item("SCALE", 3)],
            },
            {"phase_name": "Restore", "items": [_item("FILL", 1, quantity=5)]},
        ]
    )

    assert len(plan.items) == 8
    for phase in plan.phases:
        numbers = [item.sequence_number for item in phase.items]
        assert numbers == list(range(1, len(numbers) + 1))
    assert [item.item_name for item in plan.phases[1].items] == [
        f"Composite filling ({index}/5)" for index in range(1, 6)
    ]


def test_new_plan_is_draft_with_consistent_totals(build_plan):
    plan = build_plan(
        [{"phase_name": "Only", "items": [_item("EXAM", 1), _item("FILL", 2, price_pence=9000)]}],
        discount_pence=1000,
    )

    assert plan.approval_status == ApprovalStatus.draft
    assert plan.status is None
    assert all(item.status == PlanItemStatus.pending for item in plan.items)
    assert plan.total_cost_pence == 5000 + 9000
    assert plan.final_cost_pence == plan.total_cost_pence - plan.discount_pence


def test_sequence_numbers_are_renumbered_in_request_order(build_plan):
    plan = build_plan(
        [{"phase_name": "Only", "items": [_item("EXAM", 10), _item("FILL", 20, quantity=2)]}]
    )
    assert [(item.sequence_number, item.item_name) for item in plan.items] == [
        (1, "Examination"),
        (2, "Composite filling (1/2)"),
        (3, "Composite filling (2/2)"),
    ]


def test_prerequisite_on_quantity_template_points_at_last_instance(build_plan):
    plan = build_plan(
        [
            {
                "phase_name": "Only",
                "items": [
                    _item("FILL", 1, ref="fills", quantity=3),
                    _item("CROWN", 2, prerequisite_ref="fills"),
                ],
            }
        ]
    )
    fills = plan.items[:3]
    crown = plan.items[3]
    assert crown.prerequisite_item is fills[-1]
    assert all(item.prerequisite_item is None for item in fills)


def test_duplicate_sequence_number_is_rejected(build_plan):
    with pytest.raises(DuplicateSequenceNumber):
        build_plan([{"phase_name": "Only", "items": [_item("EXAM", 1), _item("FILL", 1)]}])


@pytest.mark.parametrize("quantity", [0, 101])
def test_quantity_out_of_range_is_rejected(build_plan, quantity):
    with pytest.raises(InvalidQuantity):
        build_plan([{"phase_name": "Only", "items": [_item("FILL", 1, quantity=quantity)]}])


def test_negative_price_is_rejected(build_plan):
    with pytest.raises(NegativePrice):
        build_plan([{"phase_name": "Only", "items": [_item("FILL", 1, price_pence=-5)]}])


@pytest.mark.parametrize("code", ["NOPE", "OLD"])
def test_unknown_or_inactive_service_is_rejected(build_plan, code):
    with pytest.raises(ValidationError):
        build_plan([{"phase_name": "Only", "items": [_item(code, 1)]}])


def test_cycle_is_reported_before_ordering(build_plan):
    with pytest.raises(CyclicPrerequisite):
        build_plan(
            [
                {
                    "phase_name": "Only",
                    "items": [
                        _item("RCT", 1, ref="a", prerequisite_ref="b"),
                        _item("CROWN", 2, ref="b", prerequisite_ref="a"),
                    ],
                }
            ]
        )


def test_self_prerequisite_is_a_cycle(build_plan):
    with pytest.raises(CyclicPrerequisite):
        build_plan(
            [{"phase_name": "Only", "items": [_item("RCT", 1, ref="a", prerequisite_ref="a")]}]
        )


def test_forward_prerequisite_is_rejected(build_plan):
    with pytest.raises(ValidationError) as excinfo:
        build_plan(
            [
                {
                    "phase_name": "Only",
                    "items": [
                        _item("CROWN", 1, ref="crown", prerequisite_ref="rct"),
                        _item("RCT", 2, ref="rct"),
                    ],
                }
            ]
        )
    assert not isinstance(excinfo.value, CyclicPrerequisite)


def test_unknown_prerequisite_is_rejected(build_plan):
    with pytest.raises(ValidationError):
        build_plan(
            [{"phase_name": "Only", "items": [_item("CROWN", 1, prerequisite_ref="missing")]}]
        )


def test_prerequisite_may_cross_phases(build_plan):
    plan = build_plan(
        [
            {"phase_name": "Endo", "items": [_item("RCT", 1, ref="rct")]},
            {"phase_name": "Restore", "items": [_item("CROWN", 1, prerequisite_ref="rct")]},
        ]
    )
    assert plan.phases[1].items[0].prerequisite_item is plan.phases[0].items[0]


def test_non_contiguous_phase_numbers_are_rejected(build_plan):
    with pytest.raises(ValidationError):
        build_plan(
            [
                {"phase_number": 1, "phase_name": "One", "items": [_item("EXAM", 1)]},
                {"phase_number": 3, "phase_name": "Three", "items": [_item("FILL", 1)]},
            ]
        )


def test_discount_larger_than_total_is_rejected(build_plan):
    with pytest.raises(ValidationError):
        build_plan([{"phase_name": "Only", "items": [_item("EXAM", 1)]}], discount_pence=6000)


def test_end_date_before_start_date_is_rejected(catalog):
    payload = TreatmentPlanCreate(
        plan_name="Backwards",
        start_date=date(2026, 3, 1),
        expected_end_date=date(2026, 2, 1),
        phases=[{"phase_name": "Only", "items": [_item("EXAM", 1)]}],
    )
    with pytest.raises(ValidationError):
        build_custom_plan("TP-1", payload, catalog, patient_id=1, doctor_user_id=1)


def test_plan_code_format():
    assert format_plan_code(date(2026, 1, 5), 7) == "TP-20260105-007"
