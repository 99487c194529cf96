from typing import Optional

from pydantic import BaseModel, ConfigDict

from clinic_plans.models.user import Role
from clinic_plans.services.capabilities import Mode


class CapabilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    description: str


class NavNodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    label: str
    path: Optional[str] = None
    required: list[str]
    mode: Mode
    children: list["NavNodeOut"]


NavNodeOut.model_rebuild()


class NavigationOut(BaseModel):
    role: Role
    capabilities: list[str]
    items: list[NavNodeOut]
