from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from clinic_plans.core.security import hash_password
from clinic_plans.models.user import Role, User


def normalize_email(email: str) -> str:
    return email.lower().strip()


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.scalar(select(User).where(User.email == normalize_email(email)))


def active_dentist_ids(db: Session) -> list[int]:
    return list(
        db.scalars(
            select(User.id)
            .where(User.role == Role.dentist, User.is_active.is_(True))
            .order_by(User.id.asc())
        )
    )


def create_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str = "",
    role: Role = Role.reception,
) -> User:
    user = User(
        email=normalize_email(email),
        full_name=full_name,
        role=role,
        is_active=True,
        hashed_password=hash_password(password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def seed_initial_admin(db: Session, *, email: str, password: str) -> bool:
    """Create the first superadmin on an empty database; no-op once any user exists."""
    if db.scalar(select(func.count(User.id))):
        return False
    create_user(db, email=email, password=password, full_name="Admin", role=Role.superadmin)
    return True
