from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from clinic_plans.models.appointment import AppointmentStatus
from clinic_plans.models.treatment_plan import (
    ApprovalStatus,
    CompletionSource,
    PaymentType,
    PhaseStatus,
    PlanItemStatus,
    PlanStatus,
)


class PlanItemTemplate(BaseModel):
    ref: Optional[str] = None
    treatment_code: str
    sequence_number: int
    quantity: int = 1
    item_name: Optional[str] = None
    price_pence: Optional[int] = None
    estimated_time_minutes: Optional[int] = Field(default=None, ge=5)
    prerequisite_ref: Optional[str] = None
    assigned_doctor_user_id: Optional[int] = None


class PlanPhaseCreate(BaseModel):
    phase_number: Optional[int] = None
    phase_name: str = Field(min_length=1, max_length=200)
    estimated_duration_days: Optional[int] = Field(default=None, ge=0)
    items: list[PlanItemTemplate] = Field(default_factory=list)


class TreatmentPlanCreate(BaseModel):
    plan_name: str = Field(min_length=1, max_length=200)
    doctor_user_id: Optional[int] = None
    discount_pence: int = 0
    payment_type: PaymentType = PaymentType.full
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    phases: list[PlanPhaseCreate] = Field(default_factory=list)


class PlanTransitionRequest(BaseModel):
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class PlanCancelRequest(BaseModel):
    reason: str = Field(min_length=1)
    expected_version: Optional[int] = None


class PlanItemUpdate(BaseModel):
    item_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    price_pence: Optional[int] = None
    estimated_time_minutes: Optional[int] = Field(default=None, ge=5)
    assigned_doctor_user_id: Optional[int] = None
    expected_version: Optional[int] = None


class PlanItemStatusChange(BaseModel):
    status: PlanItemStatus
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class AutoScheduleRequest(BaseModel):
    start_date: Optional[date] = None
    search_window_days: Optional[int] = Field(default=None, ge=1, le=365)
    max_items_per_day: Optional[int] = Field(default=None, ge=1)
    min_spacing_days: Optional[int] = Field(default=None, ge=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)


class BookItemRequest(BaseModel):
    starts_at: datetime
    doctor_user_id: int
    expected_version: Optional[int] = None


class FinancialImpactOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_cost_pence: int
    final_cost_pence: int
    price_change_pence: int
    direction: str
    message: str


class PlanItemAppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    appointment_id: int
    appointment_status: AppointmentStatus
    starts_at: datetime
    clinician_user_id: Optional[int] = None


class PlanItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sequence_number: int
    treatment_id: int
    item_name: str
    price_pence: int
    estimated_time_minutes: int
    status: PlanItemStatus
    display_status: Optional[PlanItemStatus] = None
    prerequisite_item_id: Optional[int] = None
    assigned_doctor_user_id: Optional[int] = None
    completed_at: Optional[datetime] = None
    completion_source: Optional[CompletionSource] = None
    linked_appointments: list[PlanItemAppointmentOut] = Field(default_factory=list)


class PlanPhaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phase_number: int
    phase_name: str
    estimated_duration_days: Optional[int] = None
    status: PhaseStatus
    completed_on: Optional[date] = None
    items: list[PlanItemOut]


class PhaseStatusSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    phase_number: int
    phase_name: str
    status: PhaseStatus
    item_counts: dict[str, int]


class PlanStatusSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: Literal["detail"] = "detail"
    plan_code: str
    approval_status: ApprovalStatus
    status: Optional[PlanStatus] = None
    phases: list[PhaseStatusSummaryOut]
    item_counts: dict[str, int]


class TreatmentPlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    plan_code: str
    plan_name: str
    patient_id: int
    doctor_user_id: int
    approval_status: ApprovalStatus
    status: Optional[PlanStatus] = None
    payment_type: PaymentType
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    total_cost_pence: int
    discount_pence: int
    final_cost_pence: int
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by_user_id: Optional[int] = None
    review_notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime
    phases: list[PlanPhaseOut]
    summary: Optional[PlanStatusSummaryOut] = None


class ItemUpdateOut(BaseModel):
    item: PlanItemOut
    plan_version: int
    financial_impact: Optional[FinancialImpactOut] = None


class SuggestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: int
    phase_number: int
    sequence_number: int
    item_name: str
    suggested_date: Optional[date] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    doctor_user_id: Optional[int] = None
    warning: Optional[str] = None
    requires_reassign: bool = False
    success: bool
    failure_reason: Optional[str] = None


class ScheduleSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_items_processed: int
    successful_suggestions: int
    failed_items: int
    skipped_items: int
    warnings: int
    reassignments: int
    holiday_adjustments: int
    spacing_adjustments: int


class AutoScheduleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_code: str
    phase_number: Optional[int] = None
    suggestions: list[SuggestionOut]
    skipped: list[SuggestionOut]
    summary: ScheduleSummaryOut


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    clinician_user_id: Optional[int] = None
    starts_at: datetime
    ends_at: datetime
    status: AppointmentStatus
    appointment_type: Optional[str] = None


class BookItemOut(BaseModel):
    appointment: AppointmentOut
    item: PlanItemOut
    plan_version: int


class AppointmentOutcomeRequest(BaseModel):
    status: AppointmentStatus
    expected_version: Optional[int] = None


class ItemStatusOut(BaseModel):
    item: PlanItemOut
    previous_status: PlanItemStatus
    plan_status: Optional[PlanStatus] = None
    plan_version: int
    financial_impact: Optional[FinancialImpactOut] = None
    unlocked_item_ids: list[int] = Field(default_factory=list)
