from __future__ import annotations

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_plans.models.base import AuditMixin, Base

treatment_clinicians = Table(
    "treatment_clinicians",
    Base.metadata,
    Column("treatment_id", ForeignKey("treatments.id"), primary_key=True),
    Column("user_id", ForeignKey("users.id"), primary_key=True),
)


class Treatment(Base, AuditMixin):
    __tablename__ = "treatments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    default_price_pence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    default_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    default_clinician_user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    minimum_preparation_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    recovery_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spacing_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_per_day: Mapped[int | None] = mapped_column(Integer, nullable=True)

    default_clinician = relationship("User", foreign_keys=[default_clinician_user_id])
    clinicians = relationship("User", secondary=treatment_clinicians, lazy="selectin")

    @property
    def has_spacing_rules(self) -> bool:
        return any(
            (value or 0) > 0
            for value in (self.minimum_preparation_days, self.recovery_days, self.spacing_days)
        )
