from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from clinic_plans.core.security import InvalidToken, user_id_from_token
from clinic_plans.core.settings import settings
from clinic_plans.db.session import get_db
from clinic_plans.models.user import User
from clinic_plans.services.capabilities import role_capability_codes


def get_current_user(
    db: Session = Depends(get_db), authorization: str | None = Header(default=None)
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        user_id = user_id_from_token(token, secret=settings.secret_key or "", alg=settings.jwt_alg)
    except InvalidToken:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")
    return user


def require_capability(code: str):
    """Dependency admitting only users whose role grants capability ``code``."""

    def _inner(
        db: Session = Depends(get_db), user: User = Depends(get_current_user)
    ) -> User:
        if code not in role_capability_codes(db, user.role):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _inner
