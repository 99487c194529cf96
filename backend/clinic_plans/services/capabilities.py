from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_plans.models.capability import Capability, RoleCapability
from clinic_plans.models.user import Role

CAPABILITIES: list[tuple[str, str]] = [
    ("treatment_plans.view", "View treatment plans"),
    ("treatment_plans.write", "Create and edit treatment plans"),
    ("treatment_plans.submit", "Submit treatment plans for review"),
    ("treatment_plans.approve", "Approve or reject treatment plans"),
    ("treatment_plans.cancel", "Cancel treatment plans"),
    ("treatment_plans.schedule", "Request appointment suggestions for plans"),
    ("appointments.book", "Book plan appointments"),
    ("admin.users.manage", "Manage users"),
]

ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.superadmin: frozenset(code for code, _ in CAPABILITIES),
    Role.senior_admin: frozenset(
        {
            "treatment_plans.view",
            "treatment_plans.approve",
            "treatment_plans.cancel",
            "treatment_plans.schedule",
            "appointments.book",
        }
    ),
    Role.dentist: frozenset(
        {
            "treatment_plans.view",
            "treatment_plans.write",
            "treatment_plans.submit",
            "treatment_plans.schedule",
        }
    ),
    Role.reception: frozenset(
        {"treatment_plans.view", "treatment_plans.schedule", "appointments.book"}
    ),
    Role.nurse: frozenset({"treatment_plans.view"}),
}


def list_capabilities(db: Session) -> list[Capability]:
    return list(db.scalars(select(Capability).order_by(Capability.code)))


def ensure_capabilities(db: Session) -> list[Capability]:
    existing = {
        cap.code: cap
        for cap in db.scalars(select(Capability).where(Capability.code.in_([c[0] for c in CAPABILITIES])))
    }
    created: list[Capability] = []
    updated = False
    for code, description in CAPABILITIES:
        cap = existing.get(code)
        if cap:
            if cap.description != description:
                cap.description = description
                db.add(cap)
                updated = True
            continue
        cap = Capability(code=code, description=description)
        db.add(cap)
        created.append(cap)
    if created or updated:
        db.commit()
    return list_capabilities(db)


def ensure_role_grants(db: Session) -> int:
    """Grant each role its default capabilities; existing grants are left alone."""
    by_code = {cap.code: cap.id for cap in list_capabilities(db)}
    existing = set(db.execute(select(RoleCapability.role, RoleCapability.capability_id)).all())
    created = 0
    for role, codes in ROLE_CAPABILITIES.items():
        for code in sorted(codes):
            cap_id = by_code.get(code)
            if cap_id is None or (role, cap_id) in existing:
                continue
            db.add(RoleCapability(role=role, capability_id=cap_id))
            created += 1
    if created:
        db.commit()
    return created


def role_capability_codes(db: Session, role: Role) -> frozenset[str]:
    stmt = (
        select(Capability.code)
        .join(RoleCapability, RoleCapability.capability_id == Capability.id)
        .where(RoleCapability.role == role)
    )
    return frozenset(db.scalars(stmt))


class Mode(str, enum.Enum):
    all = "ALL"
    any = "ANY"


@dataclass(frozen=True)
class NavNode:
    key: str
    label: str
    path: str | None = None
    required: frozenset[str] = frozenset()
    mode: Mode = Mode.all
    children: tuple["NavNode", ...] = field(default_factory=tuple)


def is_visible(node: NavNode, held: Iterable[str]) -> bool:
    """Whether a caller holding ``held`` capabilities may see ``node`` itself."""
    if not node.required:
        return True
    held = frozenset(held)
    if node.mode == Mode.any:
        return bool(node.required & held)
    return node.required <= held


def filter_navigation(nodes: Iterable[NavNode], held: Iterable[str]) -> list[NavNode]:
    """Visible subtree; a group whose children are all hidden and has no path of its own is dropped."""
    held = frozenset(held)
    visible: list[NavNode] = []
    for node in nodes:
        if not is_visible(node, held):
            continue
        children = tuple(filter_navigation(node.children, held))
        if node.children and not children and node.path is None:
            continue
        visible.append(
            NavNode(
                key=node.key,
                label=node.label,
                path=node.path,
                required=node.required,
                mode=node.mode,
                children=children,
            )
        )
    return visible


NAVIGATION: tuple[NavNode, ...] = (
    NavNode(
        key="plans",
        label="Treatment plans",
        required=frozenset({"treatment_plans.view"}),
        children=(
            NavNode(key="plans.list", label="All plans", path="/treatment-plans"),
            NavNode(
                key="plans.new",
                label="New plan",
                path="/treatment-plans/new",
                required=frozenset({"treatment_plans.write"}),
            ),
            NavNode(
                key="plans.review",
                label="Awaiting review",
                path="/treatment-plans/review",
                required=frozenset({"treatment_plans.approve"}),
            ),
        ),
    ),
    NavNode(
        key="scheduling",
        label="Scheduling",
        path="/scheduling",
        required=frozenset({"treatment_plans.schedule", "appointments.book"}),
        mode=Mode.any,
    ),
    NavNode(
        key="admin",
        label="Administration",
        required=frozenset({"admin.users.manage"}),
        children=(NavNode(key="admin.users", label="Users", path="/admin/users"),),
    ),
)
