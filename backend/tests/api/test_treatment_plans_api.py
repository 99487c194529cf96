from datetime import date, datetime, time, timedelta

import pytest

PLAN = {
    "plan_name": "Restorative course",
    "discount_pence": 1000,
    "phases": [
        {
            "phase_name": "Stabilise",
            "items": [
                {"treatment_code": "EXAM", "sequence_number": 1},
                {"treatment_code": "FILL", "sequence_number": 2},
            ],
        },
        {
            "phase_name": "Restore",
            "items": [
                {"treatment_code": "RCT", "sequence_number": 1, "ref": "rct"},
                {"treatment_code": "CROWN", "sequence_number": 2, "prerequisite_ref": "rct"},
            ],
        },
    ],
}


def _next_monday_at(hour: int) -> str:
    today = date.today()
    monday = today + timedelta(days=7 - today.weekday())
    return datetime.combine(monday, time(hour, 0)).isoformat()


@pytest.fixture()
def create_plan(client, seed, headers_for):
    def create(body=None, user=None):
        payload = dict(body or PLAN)
        payload.setdefault("doctor_user_id", seed.dentist.id)
        res = client.post(
            f"/patients/{seed.patient.id}/treatment-plans",
            json=payload,
            headers=headers_for(user or seed.dentist),
        )
        return res

    return create


@pytest.fixture()
def approved_plan(client, seed, headers_for, create_plan):
    res = create_plan()
    assert res.status_code == 201, res.text
    code = res.json()["plan_code"]
    res = client.post(f"/treatment-plans/{code}/submit", headers=headers_for(seed.dentist))
    assert res.status_code == 200, res.text
    res = client.post(f"/treatment-plans/{code}/approve", headers=headers_for(seed.reviewer))
    assert res.status_code == 200, res.text
    return res.json()


def _items(plan: dict) -> list[dict]:
    return [item for phase in plan["phases"] for item in phase["items"]]


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_login_returns_token(client, seed):
    res = client.post(
        "/auth/login",
        json={"email": seed.dentist.email, "password": "Sup3r-Secret-Pass!"},
    )
    assert res.status_code == 200, res.text
    assert res.json()["token_type"] == "bearer"

    res = client.post(
        "/auth/login", json={"email": seed.dentist.email, "password": "wrong-password"}
    )
    assert res.status_code == 401


def test_create_custom_plan(create_plan):
    res = create_plan()
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["plan_code"].startswith("TP-")
    assert body["approval_status"] == "DRAFT"
    assert body["status"] is None
    assert body["total_cost_pence"] == 5000 + 12000 + 45000 + 60000
    assert body["final_cost_pence"] == body["total_cost_pence"] - 1000
    assert len(_items(body)) == 4
    crown = _items(body)[3]
    assert crown["prerequisite_item_id"] == _items(body)[2]["id"]


def test_reception_cannot_create_plans(create_plan, seed):
    res = create_plan(user=seed.reception)
    assert res.status_code == 403


def test_duplicate_sequence_is_rejected(create_plan):
    body = {
        "plan_name": "Broken",
        "phases": [
            {
                "phase_name": "Only",
                "items": [
                    {"treatment_code": "EXAM", "sequence_number": 1},
                    {"treatment_code": "FILL", "sequence_number": 1},
                ],
            }
        ],
    }
    res = create_plan(body)
    assert res.status_code == 422
    assert res.json()["code"] == "DUPLICATE_SEQUENCE_NUMBER"


def test_unknown_plan_is_not_found(client, auth_headers):
    res = client.get("/treatment-plans/TP-19990101-001", headers=auth_headers)
    assert res.status_code == 404
    assert res.json()["code"] == "NOT_FOUND"


def test_empty_plan_cannot_be_submitted(client, seed, headers_for, create_plan):
    res = create_plan({"plan_name": "Empty", "phases": []})
    assert res.status_code == 201, res.text
    code = res.json()["plan_code"]

    res = client.post(f"/treatment-plans/{code}/submit", headers=headers_for(seed.dentist))

    assert res.status_code == 422
    assert res.json()["code"] == "VALIDATION_ERROR"


def test_approved_plan_summary(approved_plan):
    assert approved_plan["approval_status"] == "APPROVED"
    assert approved_plan["status"] == "PENDING"
    assert approved_plan["summary"]["status"] == "PENDING"
    statuses = [item["display_status"] for item in _items(approved_plan)]
    assert statuses == [
        "READY_FOR_BOOKING",
        "READY_FOR_BOOKING",
        "READY_FOR_BOOKING",
        "WAITING_FOR_PREREQUISITE",
    ]


def test_rejected_plan_cannot_be_approved(client, seed, headers_for, create_plan):
    code = create_plan().json()["plan_code"]
    client.post(f"/treatment-plans/{code}/submit", headers=headers_for(seed.dentist))
    res = client.post(
        f"/treatment-plans/{code}/reject",
        json={"notes": "Crown not justified yet"},
        headers=headers_for(seed.reviewer),
    )
    assert res.status_code == 200, res.text
    assert res.json()["approval_status"] == "REJECTED"

    res = client.post(f"/treatment-plans/{code}/approve", headers=headers_for(seed.reviewer))

    assert res.status_code == 409
    assert res.json()["code"] == "INVALID_STATE_TRANSITION"


def test_stale_version_is_rejected(client, seed, headers_for, create_plan):
    created = create_plan().json()

    res = client.post(
        f"/treatment-plans/{created['plan_code']}/submit",
        json={"expected_version": created["version"] - 1},
        headers=headers_for(seed.dentist),
    )

    assert res.status_code == 409
    assert res.json()["code"] == "STALE_STATE"


def test_item_price_edit_reports_financial_impact(client, seed, headers_for, create_plan):
    created = create_plan().json()
    exam = _items(created)[0]

    res = client.patch(
        f"/treatment-plans/items/{exam['id']}",
        json={"price_pence": 7000, "expected_version": created["version"]},
        headers=headers_for(seed.dentist),
    )

    assert res.status_code == 200, res.text
    body = res.json()
    assert body["item"]["price_pence"] == 7000
    assert body["plan_version"] > created["version"]
    impact = body["financial_impact"]
    assert impact["price_change_pence"] == 2000
    assert impact["direction"] == "increased"
    assert impact["total_cost_pence"] == created["total_cost_pence"] + 2000


def test_auto_schedule_then_book(client, seed, headers_for, approved_plan):
    code = approved_plan["plan_code"]
    reception = headers_for(seed.reception)

    res = client.post(f"/treatment-plans/{code}/auto-schedule", headers=reception)
    assert res.status_code == 200, res.text
    result = res.json()
    assert result["summary"]["successful_suggestions"] == 3
    assert result["summary"]["skipped_items"] == 1
    assert all(s["doctor_user_id"] == seed.dentist.id for s in result["suggestions"])

    exam, filling = _items(approved_plan)[:2]
    slot = _next_monday_at(10)
    res = client.post(
        f"/treatment-plans/items/{exam['id']}/book",
        json={"starts_at": slot, "doctor_user_id": seed.dentist.id},
        headers=reception,
    )
    assert res.status_code == 201, res.text
    booked = res.json()
    assert booked["item"]["status"] == "SCHEDULED"
    assert booked["appointment"]["status"] == "booked"

    res = client.post(
        f"/treatment-plans/items/{filling['id']}/book",
        json={"starts_at": slot, "doctor_user_id": seed.dentist.id},
        headers=reception,
    )
    assert res.status_code == 409
    assert res.json()["code"] == "SLOT_CONFLICT"
    assert res.json()["retryable"] is True

    res = client.get(f"/treatment-plans/{code}", headers=reception)
    assert res.json()["status"] == "IN_PROGRESS"


def test_manual_completion_releases_booked_slot(client, seed, headers_for, approved_plan):
    reception = headers_for(seed.reception)
    exam, filling = _items(approved_plan)[:2]
    slot = _next_monday_at(11)
    res = client.post(
        f"/treatment-plans/items/{exam['id']}/book",
        json={"starts_at": slot, "doctor_user_id": seed.dentist.id},
        headers=reception,
    )
    assert res.status_code == 201, res.text
    appointment_id = res.json()["appointment"]["id"]

    res = client.post(
        f"/treatment-plans/items/{exam['id']}/status",
        json={"status": "COMPLETED"},
        headers=headers_for(seed.dentist),
    )
    assert res.status_code == 200, res.text
    assert res.json()["item"]["status"] == "COMPLETED"

    res = client.post(
        f"/treatment-plans/items/{filling['id']}/book",
        json={"starts_at": slot, "doctor_user_id": seed.dentist.id},
        headers=reception,
    )
    assert res.status_code == 201, res.text
    assert res.json()["appointment"]["id"] != appointment_id


def test_history_records_workflow(client, seed, headers_for, approved_plan):
    res = client.get(
        f"/treatment-plans/{approved_plan['plan_code']}/history",
        headers=headers_for(seed.nurse),
    )
    assert res.status_code == 200, res.text
    actions = [entry["action"] for entry in res.json()]
    assert actions[:3] == ["plan.created", "plan.submitted", "plan.approved"]
