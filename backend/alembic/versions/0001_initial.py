"""initial treatment plan schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ROLE_ENUM = ("dentist", "senior_admin", "reception", "nurse", "superadmin")
APPOINTMENT_STATUS = ("booked", "cancelled", "completed")
PLAN_ITEM_STATUS = (
    "pending",
    "waiting_for_prerequisite",
    "ready_for_booking",
    "scheduled",
    "in_progress",
    "completed",
    "skipped",
)


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("updated_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column(
            "role",
            sa.Enum(*ROLE_ENUM, name="role_enum"),
            nullable=False,
            server_default="reception",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("patient_code", sa.String(length=32), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint("patient_code"),
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("clinician_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*APPOINTMENT_STATUS, name="appointment_status"),
            nullable=False,
            server_default="booked",
        ),
        sa.Column("appointment_type", sa.String(length=120), nullable=True),
        sa.Column("location", sa.String(length=120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_clinician_user_id", "appointments", ["clinician_user_id"])

    op.create_table(
        "treatments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("default_price_pence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("default_duration_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("default_clinician_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("minimum_preparation_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recovery_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spacing_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_per_day", sa.Integer(), nullable=True),
        *_audit_columns(),
    )
    op.create_index("ix_treatments_code", "treatments", ["code"], unique=True)

    op.create_table(
        "treatment_clinicians",
        sa.Column("treatment_id", sa.Integer(), sa.ForeignKey("treatments.id"), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
    )

    op.create_table(
        "treatment_plans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("plan_code", sa.String(length=32), nullable=False),
        sa.Column("plan_name", sa.String(length=200), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id"), nullable=False),
        sa.Column("doctor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "approval_status",
            sa.Enum("draft", "pending_review", "approved", "rejected", name="plan_approval_status"),
            nullable=False,
            server_default="draft",
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "in_progress", "completed", "cancelled", name="plan_status"),
            nullable=True,
        ),
        sa.Column(
            "payment_type",
            sa.Enum("full", "phased", "installment", name="plan_payment_type"),
            nullable=False,
            server_default="full",
        ),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("expected_end_date", sa.Date(), nullable=True),
        sa.Column("total_cost_pence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_pence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("final_cost_pence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_audit_columns(),
        sa.CheckConstraint("discount_pence >= 0", name="ck_treatment_plans_discount"),
        sa.CheckConstraint("final_cost_pence >= 0", name="ck_treatment_plans_final_cost"),
    )
    op.create_index("ix_treatment_plans_plan_code", "treatment_plans", ["plan_code"], unique=True)
    op.create_index("ix_treatment_plans_patient_id", "treatment_plans", ["patient_id"])

    op.create_table(
        "treatment_plan_phases",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("treatment_plans.id"), nullable=False),
        sa.Column("phase_number", sa.Integer(), nullable=False),
        sa.Column("phase_name", sa.String(length=200), nullable=False),
        sa.Column("estimated_duration_days", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("pending", "in_progress", "completed", name="plan_phase_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("completed_on", sa.Date(), nullable=True),
        sa.UniqueConstraint("plan_id", "phase_number"),
    )
    op.create_index("ix_treatment_plan_phases_plan_id", "treatment_plan_phases", ["plan_id"])

    op.create_table(
        "treatment_plan_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("phase_id", sa.Integer(), sa.ForeignKey("treatment_plan_phases.id"), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("treatment_id", sa.Integer(), sa.ForeignKey("treatments.id"), nullable=False),
        sa.Column("item_name", sa.String(length=255), nullable=False),
        sa.Column("price_pence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("estimated_time_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column(
            "status",
            sa.Enum(*PLAN_ITEM_STATUS, name="plan_item_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column(
            "prerequisite_item_id",
            sa.Integer(),
            sa.ForeignKey("treatment_plan_items.id"),
            nullable=True,
        ),
        sa.Column("assigned_doctor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "completion_source",
            sa.Enum("appointment", "manual", name="plan_item_completion_source"),
            nullable=True,
        ),
        sa.UniqueConstraint("phase_id", "sequence_number"),
    )
    op.create_index("ix_treatment_plan_items_phase_id", "treatment_plan_items", ["phase_id"])

    op.create_table(
        "treatment_plan_item_appointments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("treatment_plan_items.id"), nullable=False),
        sa.Column("appointment_id", sa.Integer(), sa.ForeignKey("appointments.id"), nullable=False),
        sa.Column(
            "appointment_status",
            postgresql.ENUM(*APPOINTMENT_STATUS, name="appointment_status", create_type=False),
            nullable=False,
            server_default="booked",
        ),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clinician_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.UniqueConstraint("item_id", "appointment_id"),
    )
    op.create_index(
        "ix_treatment_plan_item_appointments_item_id",
        "treatment_plan_item_appointments",
        ["item_id"],
    )
    op.create_index(
        "ix_treatment_plan_item_appointments_appointment_id",
        "treatment_plan_item_appointments",
        ["appointment_id"],
    )

    op.create_table(
        "practice_hours",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_practice_hours_day_of_week", "practice_hours", ["day_of_week"])

    op.create_table(
        "clinic_holidays",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("public_holiday", "clinic_closure", name="clinic_closure_kind"),
            nullable=False,
            server_default="public_holiday",
        ),
        sa.Column("name", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_clinic_holidays_start_date", "clinic_holidays", ["start_date"])

    op.create_table(
        "practice_overrides",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("is_closed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reason", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_practice_overrides_date", "practice_overrides", ["date"])

    op.create_table(
        "clinician_leave",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_clinician_leave_user_id", "clinician_leave", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("actor_email", sa.String(length=320), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("treatment_plans.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=120), nullable=True),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_plan_id", "audit_logs", ["plan_id"])

    op.create_table(
        "capabilities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
    )
    op.create_index("ix_capabilities_code", "capabilities", ["code"], unique=True)

    op.create_table(
        "role_capabilities",
        sa.Column("role", postgresql.ENUM(*ROLE_ENUM, name="role_enum", create_type=False), primary_key=True),
        sa.Column("capability_id", sa.Integer(), sa.ForeignKey("capabilities.id"), primary_key=True),
    )


def downgrade() -> None:
    op.drop_table("role_capabilities")
    op.drop_index("ix_capabilities_code", table_name="capabilities")
    op.drop_table("capabilities")
    op.drop_index("ix_audit_logs_plan_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("clinician_leave")
    op.drop_table("practice_overrides")
    op.drop_table("clinic_holidays")
    op.drop_table("practice_hours")
    op.drop_table("treatment_plan_item_appointments")
    op.drop_table("treatment_plan_items")
    op.drop_table("treatment_plan_phases")
    op.drop_table("treatment_plans")
    op.drop_table("treatment_clinicians")
    op.drop_table("treatments")
    op.drop_table("appointments")
    op.drop_table("patients")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    for enum_name in (
        "clinic_closure_kind",
        "plan_item_completion_source",
        "plan_item_status",
        "plan_phase_status",
        "plan_payment_type",
        "plan_status",
        "plan_approval_status",
        "appointment_status",
        "role_enum",
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
