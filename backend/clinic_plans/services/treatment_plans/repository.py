from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from clinic_plans.core.errors import PlanNotFound, StaleState
from clinic_plans.models.treatment import Treatment
from clinic_plans.models.treatment_plan import PlanItem, PlanPhase, TreatmentPlan

logger = logging.getLogger("clinic_plans.treatment_plans.repository")


class SqlPlanRepository:
    """Versioned persistence for treatment plans.

    Every save bumps ``TreatmentPlan.version``, even when only phases or items
    changed, so a caller holding an older version is always refused.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self._loaded_versions: dict[int, int] = {}

    def load_plan(self, plan_code: str) -> TreatmentPlan:
        plan = self.db.scalar(select(TreatmentPlan).where(TreatmentPlan.plan_code == plan_code))
        if plan is None:
            raise PlanNotFound(f"Treatment plan {plan_code} not found")
        self._loaded_versions[plan.id] = plan.version
        return plan

    def load_item(self, item_id: int) -> PlanItem:
        item = self.db.get(PlanItem, item_id)
        if item is None:
            raise PlanNotFound(f"Treatment plan item {item_id} not found")
        plan = item.phase.plan
        self._loaded_versions.setdefault(plan.id, plan.version)
        return item

    def load_phase(self, plan: TreatmentPlan, phase_number: int) -> PlanPhase:
        phase = next((phase for phase in plan.phases if phase.phase_number == phase_number), None)
        if phase is None:
            raise PlanNotFound(f"Plan {plan.plan_code} has no phase {phase_number}")
        return phase

    def list_for_patient(self, patient_id: int) -> list[TreatmentPlan]:
        return list(
            self.db.scalars(
                select(TreatmentPlan)
                .where(TreatmentPlan.patient_id == patient_id)
                .order_by(TreatmentPlan.created_at.desc(), TreatmentPlan.id.desc())
            )
        )

    def load_catalog(self, codes: Iterable[str]) -> dict[str, Treatment]:
        codes = sorted(set(codes))
        if not codes:
            return {}
        rows = self.db.scalars(select(Treatment).where(Treatment.code.in_(codes)))
        return {treatment.code: treatment for treatment in rows}

    def check_version(self, plan: TreatmentPlan, expected_version: int | None) -> None:
        """Compare against the version the plan had when this repository loaded it."""
        current = self._loaded_versions.get(plan.id, plan.version)
        if expected_version is not None and current != expected_version:
            raise StaleState(
                f"Plan {plan.plan_code} is at version {current}, not {expected_version}; reload and retry"
            )

    def save_plan(self, plan: TreatmentPlan, expected_version: int | None) -> TreatmentPlan:
        state = inspect(plan)
        if state.persistent:
            self.check_version(plan, expected_version)
            flag_modified(plan, "plan_name")
        else:
            self.db.add(plan)
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            logger.info("Concurrent update rejected for plan %s", plan.plan_code)
            raise StaleState(
                f"Plan {plan.plan_code} was changed by another request; reload and retry"
            ) from exc
        self.db.refresh(plan)
        self._loaded_versions[plan.id] = plan.version
        return plan
