from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_plans.models.treatment_plan import TreatmentPlan

PLAN_CODE_PREFIX = "TP"


def format_plan_code(day: date, counter: int) -> str:
    return f"{PLAN_CODE_PREFIX}-{day:%Y%m%d}-{counter:03d}"


def generate_plan_code(db: Session, today: date) -> str:
    """Next free ``TP-YYYYMMDD-NNN`` code for the day."""
    prefix = f"{PLAN_CODE_PREFIX}-{today:%Y%m%d}-"
    codes = db.scalars(
        select(TreatmentPlan.plan_code).where(TreatmentPlan.plan_code.like(f"{prefix}%"))
    )
    highest = 0
    for code in codes:
        suffix = code[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return format_plan_code(today, highest + 1)
