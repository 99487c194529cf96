from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from clinic_plans.core.cancellation import CancellationToken
from clinic_plans.core.errors import ValidationError
from clinic_plans.core.settings import settings
from clinic_plans.db.session import get_db
from clinic_plans.deps import require_capability
from clinic_plans.models.appointment import Appointment, AppointmentStatus
from clinic_plans.models.patient import Patient
from clinic_plans.models.treatment_plan import PlanItem, PlanItemStatus, TreatmentPlan
from clinic_plans.models.user import User
from clinic_plans.schemas.audit_log import AuditLogOut
from clinic_plans.schemas.treatment_plan import (
    AppointmentOutcomeRequest,
    AppointmentOut,
    AutoScheduleOut,
    AutoScheduleRequest,
    BookItemOut,
    BookItemRequest,
    FinancialImpactOut,
    ItemStatusOut,
    ItemUpdateOut,
    PlanCancelRequest,
    PlanItemOut,
    PlanItemStatusChange,
    PlanItemUpdate,
    PlanStatusSummaryOut,
    PlanTransitionRequest,
    TreatmentPlanCreate,
    TreatmentPlanOut,
)
from clinic_plans.services.audit import log_event, plan_history
from clinic_plans.services.schedule import PracticeAvailability, PracticeCalendar
from clinic_plans.services.treatment_plans import approval, items as item_service
from clinic_plans.services.treatment_plans.booking import SqlAppointmentBooking
from clinic_plans.services.treatment_plans.builder import build_custom_plan
from clinic_plans.services.treatment_plans.codes import generate_plan_code
from clinic_plans.services.treatment_plans.repository import SqlPlanRepository
from clinic_plans.services.treatment_plans.scheduler import (
    ScheduleRequest,
    SchedulerConfig,
    SchedulingCollaborators,
    Suggestion,
    suggest,
)
from clinic_plans.services.treatment_plans.status import derive_item_status, summarize_plan

router = APIRouter(prefix="/treatment-plans", tags=["treatment-plans"])
patient_router = APIRouter(prefix="/patients/{patient_id}/treatment-plans", tags=["treatment-plans"])


def clinic_today() -> date:
    return datetime.now(ZoneInfo(settings.clinic_timezone)).date()


def item_out(item: PlanItem) -> PlanItemOut:
    out = PlanItemOut.model_validate(item)
    out.display_status = derive_item_status(item)
    return out


def plan_out(plan: TreatmentPlan) -> TreatmentPlanOut:
    out = TreatmentPlanOut.model_validate(plan)
    for phase_out, phase in zip(out.phases, plan.phases):
        for entry, item in zip(phase_out.items, phase.items):
            entry.display_status = derive_item_status(item)
    out.summary = PlanStatusSummaryOut.model_validate(summarize_plan(plan))
    return out


def impact_out(impact) -> Optional[FinancialImpactOut]:
    if impact is None:
        return None
    return FinancialImpactOut.model_validate(impact)


def record_plan_event(
    db: Session, user: User, plan: TreatmentPlan, event: approval.PlanEvent
) -> None:
    log_event(
        db,
        actor=user,
        action=event.action,
        entity_type="treatment_plan",
        entity_id=plan.plan_code,
        plan_id=plan.id,
        notes=event.notes,
        after_data=event.as_audit_data(),
    )


def get_patient_or_404(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, patient_id)
    if not patient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return patient


def resolve_doctor(db: Session, doctor_user_id: int) -> User:
    doctor = db.get(User, doctor_user_id)
    if doctor is None or not doctor.is_active:
        raise ValidationError(f"Doctor {doctor_user_id} is not an active user")
    return doctor


@patient_router.get("", response_model=list[TreatmentPlanOut])
def list_patient_plans(
    patient_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_capability("treatment_plans.view")),
):
    get_patient_or_404(db, patient_id)
    return [plan_out(plan) for plan in SqlPlanRepository(db).list_for_patient(patient_id)]


@patient_router.post("", response_model=TreatmentPlanOut, status_code=status.HTTP_201_CREATED)
def create_custom_plan(
    patient_id: int,
    payload: TreatmentPlanCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("treatment_plans.write")),
):
    get_patient_or_404(db, patient_id)
    doctor = resolve_doctor(db, payload.doctor_user_id or user.id)
    repo = SqlPlanRepository(db)
    catalog = repo.load_catalog(
        template.treatment_code for phase in payload.phases for template in phase.items
    )
    plan = build_custom_plan(
        generate_plan_code(db, clinic_today()),
        payload,
        catalog,
        patient_id=patient_id,
        doctor_user_id=doctor.id,
        actor_id=user.id,
    )
    db.add(plan)
    db.flush()
    log_event(
        db,
        actor=user,
        action="plan.created",
        entity_type="treatment_plan",
        entity_id=plan.plan_code,
        plan_id=plan.id,
        after_data={
            "total_cost_pence": plan.total_cost_pence,
            "final_cost_pence": plan.final_cost_pence,
            "items": len(plan.items),
        },
    )
    return plan_out(repo.save_plan(plan, None))


@router.get("/{plan_code}", response_model=TreatmentPlanOut)
def get_plan(
    plan_code: str,
    db: Session = Depends(get_db),
    _user: User = Depends(require_capability("treatment_plans.view")),
):
    return plan_out(SqlPlanRepository(db).load_plan(plan_code))


@router.get("/{plan_code}/history", response_model=list[AuditLogOut])
def get_plan_history(
    plan_code: str,
    db: Session = Depends(get_db),
    _user: User = Depends(require_capability("treatment_plans.view")),
):
    plan = SqlPlanRepository(db).load_plan(plan_code)
    return plan_history(db, plan.id)


def _transition(
    db: Session,
    user: User,
    plan_code: str,
    expected_version: Optional[int],
    apply,
) -> TreatmentPlanOut:
    repo = SqlPlanRepository(db)
    plan = repo.load_plan(plan_code)
    repo.check_version(plan, expected_version)
    event = apply(plan)
    record_plan_event(db, user, plan, event)
    return plan_out(repo.save_plan(plan, expected_version))


@router.post("/{plan_code}/submit", response_model=TreatmentPlanOut)
def submit_plan(
    plan_code: str,
    payload: Optional[PlanTransitionRequest] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("treatment_plans.submit")),
):
    payload = payload or PlanTransitionRequest()
    return _transition(
        db,
        user,
        plan_code,
        payload.expected_version,
        lambda plan: approval.submit_for_review(plan, user.id, notes=payload.notes),
    )


@router.post("/{plan_code}/approve", response_model=TreatmentPlanOut)
def approve_plan(
    plan_code: str,
    payload: Optional[PlanTransitionRequest] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("treatment_plans.approve")),
):
    payload = payload or PlanTransitionRequest()
    return _transition(
        db,
        user,
        plan_code,
        payload.expected_version,
        lambda plan: approval.approve(plan, user.id, notes=payload.notes),
    )


@router.post("/{plan_code}/reject", response_model=TreatmentPlanOut)
def reject_plan(
    plan_code: str,
    payload: PlanTransitionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("treatment_plans.approve")),
):
    return _transition(
        db,
        user,
        plan_code,
        payload.expected_version,
        lambda plan: approval.reject(plan, user.id, payload.notes),
    )


@router.post("/{plan_code}/reopen", response_model=TreatmentPlanOut)
def reopen_plan(
    plan_code: str,
    payload: Optional[PlanTransitionRequest] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("treatment_plans.write")),
):
    payload = payload or PlanTransitionRequest()
    return _transition(
        db,
        user,
        plan_code,
        payload.expected_version,
        lambda plan: approval.reopen(plan, user.id, notes=payload.notes),
    )


@router.post("/{plan_code}/cancel", response_model=TreatmentPlanOut)
def cancel_plan(
    plan_code: str,
    payload: PlanCancelRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("treatment_plans.cancel")),
):
    return _transition(
        db,
        user,
        plan_code,
        payload.expected_version,
        lambda plan: approval.cancel_plan(plan, user.id, payload.reason),
    )


@router.patch("/items/{item_id}", response_model=ItemUpdateOut)
def update_plan_item(
    item_id: int,
    payload: PlanItemUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("treatment_plans.write")),
):
    repo = SqlPlanRepository(db)
    item = repo.load_item(item_id)
    plan = item.phase.plan
    repo.check_version(plan, payload.expected_version)
    result = item_service.update_item(plan, item, payload, actor_id=user.id)
    log_event(
        db,
        actor=user,
        action="plan.item_updated",
        entity_type="treatment_plan_item",
        entity_id=str(item.id),
        plan_id=plan.id,
        before_data=dict(result.before),
        after_data={key: getattr(item, key) for key in result.before},
    )
    plan = repo.save_plan(plan, payload.expected_version)
    return ItemUpdateOut(
        item=item_out(item),
        plan_version=plan.version,
        financial_impact=impact_out(result.financial_impact),
    )


def _status_out(plan: TreatmentPlan, item: PlanItem, result: item_service.ItemStatusResult) -> ItemStatusOut:
    return ItemStatusOut(
        item=item_out(item),
        previous_status=result.previous_status,
        plan_status=plan.status,
        plan_version=plan.version,
        financial_impact=impact_out(result.financial_impact),
        unlocked_item_ids=[unlocked.id for unlocked in result.unlocked],
    )


@router.post("/items/{item_id}/status", response_model=ItemStatusOut)
def change_plan_item_status(
    item_id: int,
    payload: PlanItemStatusChange,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("treatment_plans.write")),
):
    repo = SqlPlanRepository(db)
    item = repo.load_item(item_id)
    plan = item.phase.plan
    repo.check_version(plan, payload.expected_version)
    if payload.status == PlanItemStatus.completed:
        result = item_service.complete_item_manually(plan, item, actor_id=user.id)
        for appointment_id in result.closed_appointment_ids:
            appointment = db.get(Appointment, appointment_id)
            if appointment is not None:
                appointment.status = AppointmentStatus.completed
                appointment.updated_by_user_id = user.id
        action = "plan.item_completed"
    else:
        result = item_service.change_item_status(plan, item, payload.status, actor_id=user.id)
        action = "plan.item_status_changed"
    log_event(
        db,
        actor=user,
        action=action,
        entity_type="treatment_plan_item",
        entity_id=str(item.id),
        plan_id=plan.id,
        notes=payload.notes,
        before_data={"status": result.previous_status.value},
        after_data={"status": item.status.value},
    )
    plan = repo.save_plan(plan, payload.expected_version)
    return _status_out(plan, item, result)


@router.post(
    "/items/{item_id}/appointments/{appointment_id}/outcome",
    response_model=ItemStatusOut,
)
def record_item_appointment_outcome(
    item_id: int,
    appointment_id: int,
    payload: AppointmentOutcomeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("appointments.book")),
):
    repo = SqlPlanRepository(db)
    item = repo.load_item(item_id)
    plan = item.phase.plan
    repo.check_version(plan, payload.expected_version)
    result = item_service.record_appointment_outcome(plan, item, appointment_id, payload.status)
    appointment = db.get(Appointment, appointment_id)
    if appointment is not None:
        appointment.status = payload.status
        appointment.updated_by_user_id = user.id
    log_event(
        db,
        actor=user,
        action="plan.appointment_outcome",
        entity_type="treatment_plan_item",
        entity_id=str(item.id),
        plan_id=plan.id,
        after_data={"appointment_id": appointment_id, "status": payload.status.value},
    )
    plan = repo.save_plan(plan, payload.expected_version)
    return _status_out(plan, item, result)


def _scheduling_collaborators(db: Session) -> SchedulingCollaborators:
    calendar = PracticeCalendar(db, tz=ZoneInfo(settings.clinic_timezone))
    return SchedulingCollaborators(
        calendar=calendar,
        availability=PracticeAvailability(db, calendar),
        config=SchedulerConfig.from_settings(settings),
    )


def _schedule_request(payload: AutoScheduleRequest) -> ScheduleRequest:
    return ScheduleRequest(
        start_date=payload.start_date,
        search_window_days=payload.search_window_days,
        max_items_per_day=payload.max_items_per_day,
        min_spacing_days=payload.min_spacing_days,
        timeout_seconds=payload.timeout_seconds,
    )


@router.post("/{plan_code}/auto-schedule", response_model=AutoScheduleOut)
def auto_schedule_plan(
    plan_code: str,
    payload: Optional[AutoScheduleRequest] = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_capability("treatment_plans.schedule")),
):
    payload = payload or AutoScheduleRequest()
    plan = SqlPlanRepository(db).load_plan(plan_code)
    result = suggest(
        plan,
        _schedule_request(payload),
        _scheduling_collaborators(db),
        today=clinic_today(),
        token=CancellationToken(),
    )
    return AutoScheduleOut.model_validate(result)


@router.post("/{plan_code}/phases/{phase_number}/auto-schedule", response_model=AutoScheduleOut)
def auto_schedule_phase(
    plan_code: str,
    phase_number: int,
    payload: Optional[AutoScheduleRequest] = None,
    db: Session = Depends(get_db),
    _user: User = Depends(require_capability("treatment_plans.schedule")),
):
    payload = payload or AutoScheduleRequest()
    repo = SqlPlanRepository(db)
    phase = repo.load_phase(repo.load_plan(plan_code), phase_number)
    result = suggest(
        phase,
        _schedule_request(payload),
        _scheduling_collaborators(db),
        today=clinic_today(),
        token=CancellationToken(),
    )
    return AutoScheduleOut.model_validate(result)


@router.post("/items/{item_id}/book", response_model=BookItemOut, status_code=status.HTTP_201_CREATED)
def book_plan_item(
    item_id: int,
    payload: BookItemRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_capability("appointments.book")),
):
    repo = SqlPlanRepository(db)
    item = repo.load_item(item_id)
    plan = item.phase.plan
    repo.check_version(plan, payload.expected_version)
    tz = ZoneInfo(settings.clinic_timezone)
    starts_at = payload.starts_at if payload.starts_at.tzinfo else payload.starts_at.replace(tzinfo=tz)
    ends_at = starts_at + timedelta(minutes=item.estimated_time_minutes)
    phase = item.phase
    suggestion = Suggestion(
        item_id=item.id,
        phase_number=phase.phase_number,
        sequence_number=item.sequence_number,
        item_name=item.item_name,
        success=True,
        suggested_date=starts_at.astimezone(tz).date(),
        starts_at=starts_at,
        ends_at=ends_at,
        doctor_user_id=payload.doctor_user_id,
    )
    booking = SqlAppointmentBooking(db, actor_id=user.id, calendar=PracticeCalendar(db, tz=tz))
    appointment = booking.confirm(item, suggestion)
    log_event(
        db,
        actor=user,
        action="plan.item_booked",
        entity_type="treatment_plan_item",
        entity_id=str(item.id),
        plan_id=plan.id,
        after_data={
            "appointment_id": appointment.id,
            "starts_at": appointment.starts_at.isoformat(),
            "doctor_user_id": payload.doctor_user_id,
        },
    )
    plan = repo.save_plan(plan, payload.expected_version)
    db.refresh(appointment)
    return BookItemOut(
        appointment=AppointmentOut.model_validate(appointment),
        item=item_out(item),
        plan_version=plan.version,
    )


@router.get("/items/{item_id}", response_model=PlanItemOut)
def get_plan_item(
    item_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_capability("treatment_plans.view")),
):
    return item_out(SqlPlanRepository(db).load_item(item_id))
