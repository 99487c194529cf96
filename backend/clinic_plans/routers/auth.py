from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from clinic_plans.core.security import create_access_token, verify_password
from clinic_plans.core.settings import settings
from clinic_plans.db.session import get_db
from clinic_plans.schemas.auth import LoginRequest, Token
from clinic_plans.services.rate_limit import SlidingWindowLimiter
from clinic_plans.services.users import get_user_by_email, normalize_email

router = APIRouter(prefix="/auth", tags=["auth"])

LOGIN_LIMITER = SlidingWindowLimiter(max_events=10, window_seconds=60)
LOGIN_IP_LIMITER = SlidingWindowLimiter(max_events=20, window_seconds=60)


@router.post("/login", response_model=Token)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    ip_address = request.client.host if request.client else "unknown"
    rate_key = f"{ip_address}:{normalize_email(payload.email)}"
    if not LOGIN_LIMITER.allow(rate_key) or not LOGIN_IP_LIMITER.allow(ip_address):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many login attempts")

    user = get_user_by_email(db, payload.email)
    if user and not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")
    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    LOGIN_LIMITER.reset(rate_key)
    token = create_access_token(
        subject=str(user.id),
        secret=settings.secret_key or "",
        alg=settings.jwt_alg,
        expires_minutes=settings.access_token_expire_minutes,
        extra={"role": user.role.value, "email": user.email},
    )
    return Token(access_token=token)
