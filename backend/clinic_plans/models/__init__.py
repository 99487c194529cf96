from clinic_plans.models.base import Base
from clinic_plans.models.user import Role, User
from clinic_plans.models.audit_log import AuditLog
from clinic_plans.models.patient import Patient
from clinic_plans.models.appointment import Appointment, AppointmentStatus
from clinic_plans.models.treatment import Treatment, treatment_clinicians
from clinic_plans.models.practice_schedule import (
    ClinicHoliday,
    ClinicianLeave,
    ClosureKind,
    PracticeHour,
    PracticeOverride,
)
from clinic_plans.models.treatment_plan import (
    ApprovalStatus,
    CompletionSource,
    PaymentType,
    PhaseStatus,
    PlanItem,
    PlanItemAppointment,
    PlanItemStatus,
    PlanPhase,
    PlanStatus,
    TreatmentPlan,
)
from clinic_plans.models.capability import Capability, RoleCapability

__all__ = [
    "Base",
    "Role",
    "User",
    "AuditLog",
    "Patient",
    "Appointment",
    "AppointmentStatus",
    "Treatment",
    "treatment_clinicians",
    "ClinicHoliday",
    "ClinicianLeave",
    "ClosureKind",
    "PracticeHour",
    "PracticeOverride",
    "ApprovalStatus",
    "CompletionSource",
    "PaymentType",
    "PhaseStatus",
    "PlanItem",
    "PlanItemAppointment",
    "PlanItemStatus",
    "PlanPhase",
    "PlanStatus",
    "TreatmentPlan",
    "Capability",
    "RoleCapability",
]
