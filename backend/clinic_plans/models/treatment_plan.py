from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_plans.models.appointment import AppointmentStatus
from clinic_plans.models.base import AuditMixin, Base


class ApprovalStatus(str, enum.Enum):
    draft = "DRAFT"
    pending_review = "PENDING_REVIEW"
    approved = "APPROVED"
    rejected = "REJECTED"


class PlanStatus(str, enum.Enum):
    pending = "PENDING"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


class PaymentType(str, enum.Enum):
    full = "FULL"
    phased = "PHASED"
    installment = "INSTALLMENT"


class PhaseStatus(str, enum.Enum):
    pending = "PENDING"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"


class PlanItemStatus(str, enum.Enum):
    pending = "PENDING"
    waiting_for_prerequisite = "WAITING_FOR_PREREQUISITE"
    ready_for_booking = "READY_FOR_BOOKING"
    scheduled = "SCHEDULED"
    in_progress = "IN_PROGRESS"
    completed = "COMPLETED"
    skipped = "SKIPPED"


class CompletionSource(str, enum.Enum):
    appointment = "appointment"
    manual = "manual"


class TreatmentPlan(Base, AuditMixin):
    __tablename__ = "treatment_plans"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    plan_name: Mapped[str] = mapped_column(String(200), nullable=False)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False, index=True)
    doctor_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, name="plan_approval_status"),
        nullable=False,
        default=ApprovalStatus.draft,
    )
    status: Mapped[PlanStatus | None] = mapped_column(
        Enum(PlanStatus, name="plan_status"), nullable=True
    )
    payment_type: Mapped[PaymentType] = mapped_column(
        Enum(PaymentType, name="plan_payment_type"),
        nullable=False,
        default=PaymentType.full,
    )
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_cost_pence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_pence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    final_cost_pence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    patient = relationship("Patient", back_populates="treatment_plans")
    doctor = relationship("User", foreign_keys=[doctor_user_id], lazy="joined")
    reviewed_by = relationship("User", foreign_keys=[reviewed_by_user_id])
    phases = relationship(
        "PlanPhase",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlanPhase.phase_number",
        lazy="selectin",
    )

    @property
    def items(self) -> list["PlanItem"]:
        return [item for phase in self.phases for item in phase.items]


class PlanPhase(Base):
    __tablename__ = "treatment_plan_phases"
    __table_args__ = (UniqueConstraint("plan_id", "phase_number"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("treatment_plans.id"), nullable=False, index=True)
    phase_number: Mapped[int] = mapped_column(Integer, nullable=False)
    phase_name: Mapped[str] = mapped_column(String(200), nullable=False)
    estimated_duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[PhaseStatus] = mapped_column(
        Enum(PhaseStatus, name="plan_phase_status"),
        nullable=False,
        default=PhaseStatus.pending,
    )
    completed_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    plan = relationship("TreatmentPlan", back_populates="phases")
    items = relationship(
        "PlanItem",
        back_populates="phase",
        cascade="all, delete-orphan",
        order_by="PlanItem.sequence_number",
        lazy="selectin",
    )


class PlanItem(Base):
    __tablename__ = "treatment_plan_items"
    __table_args__ = (UniqueConstraint("phase_id", "sequence_number"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    phase_id: Mapped[int] = mapped_column(
        ForeignKey("treatment_plan_phases.id"), nullable=False, index=True
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    treatment_id: Mapped[int] = mapped_column(ForeignKey("treatments.id"), nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_pence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    status: Mapped[PlanItemStatus] = mapped_column(
        Enum(PlanItemStatus, name="plan_item_status"),
        nullable=False,
        default=PlanItemStatus.pending,
    )
    prerequisite_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("treatment_plan_items.id"), nullable=True
    )
    assigned_doctor_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_source: Mapped[CompletionSource | None] = mapped_column(
        Enum(CompletionSource, name="plan_item_completion_source"), nullable=True
    )

    phase = relationship("PlanPhase", back_populates="items")
    treatment = relationship("Treatment", lazy="joined")
    prerequisite_item = relationship(
        "PlanItem",
        remote_side=[id],
        foreign_keys=[prerequisite_item_id],
    )
    linked_appointments = relationship(
        "PlanItemAppointment",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="PlanItemAppointment.starts_at",
        lazy="selectin",
    )


class PlanItemAppointment(Base):
    """Back-reference from a plan item to an appointment owned by the booking side."""

    __tablename__ = "treatment_plan_item_appointments"
    __table_args__ = (UniqueConstraint("item_id", "appointment_id"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("treatment_plan_items.id"), nullable=False, index=True
    )
    appointment_id: Mapped[int] = mapped_column(
        ForeignKey("appointments.id"), nullable=False, index=True
    )
    appointment_status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        nullable=False,
        default=AppointmentStatus.booked,
    )
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    clinician_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    item = relationship("PlanItem", back_populates="linked_appointments")
