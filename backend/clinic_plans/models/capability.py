from __future__ import annotations

from sqlalchemy import Enum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_plans.models.base import Base
from clinic_plans.models.user import Role


class Capability(Base):
    __tablename__ = "capabilities"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)


class RoleCapability(Base):
    __tablename__ = "role_capabilities"

    role: Mapped[Role] = mapped_column(Enum(Role, name="role_enum"), primary_key=True)
    capability_id: Mapped[int] = mapped_column(ForeignKey("capabilities.id"), primary_key=True)

    capability = relationship("Capability", lazy="joined")
