from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clinic_plans.db.session import get_db
from clinic_plans.deps import get_current_user, require_capability
from clinic_plans.models.user import User
from clinic_plans.schemas.capability import CapabilityOut, NavigationOut, NavNodeOut
from clinic_plans.services.capabilities import (
    NAVIGATION,
    NavNode,
    filter_navigation,
    list_capabilities,
    role_capability_codes,
)

router = APIRouter(prefix="/capabilities", tags=["capabilities"])


def _node_out(node: NavNode) -> NavNodeOut:
    return NavNodeOut(
        key=node.key,
        label=node.label,
        path=node.path,
        required=sorted(node.required),
        mode=node.mode,
        children=[_node_out(child) for child in node.children],
    )


@router.get("", response_model=list[CapabilityOut])
def list_all_capabilities(
    db: Session = Depends(get_db),
    _user: User = Depends(require_capability("admin.users.manage")),
):
    return list_capabilities(db)


@router.get("/navigation", response_model=NavigationOut)
def navigation(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    held = role_capability_codes(db, user.role)
    return NavigationOut(
        role=user.role,
        capabilities=sorted(held),
        items=[_node_out(node) for node in filter_navigation(NAVIGATION, held)],
    )
