import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from clinic_plans.core.errors import (
    InvalidStateTransition,
    OperationCancelled,
    PlanNotFound,
    PrerequisiteNotMet,
    SlotConflict,
    StaleState,
    TreatmentPlanError,
    ValidationError,
)
from clinic_plans.core.settings import settings, validate_settings
from clinic_plans.db.session import SessionLocal, engine
from clinic_plans.models import Base
from clinic_plans.routers.auth import router as auth_router
from clinic_plans.routers.capabilities import router as capabilities_router
from clinic_plans.routers.treatment_plans import (
    patient_router as patient_treatment_plans_router,
    router as treatment_plans_router,
)
from clinic_plans.services.capabilities import ensure_capabilities, ensure_role_grants
from clinic_plans.services.schedule import ensure_default_hours
from clinic_plans.services.users import seed_initial_admin

app = FastAPI(title="Clinic Treatment Plans API", version="0.1.0")
logger = logging.getLogger("clinic_plans.startup")
error_logger = logging.getLogger("clinic_plans.errors")

ERROR_STATUS: list[tuple[type[TreatmentPlanError], int]] = [
    (ValidationError, 422),
    (InvalidStateTransition, 409),
    (StaleState, 409),
    (SlotConflict, 409),
    (PrerequisiteNotMet, 409),
    (PlanNotFound, 404),
    (OperationCancelled, 499),
]


def status_for(exc: TreatmentPlanError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


@app.exception_handler(TreatmentPlanError)
async def treatment_plan_error_handler(request: Request, exc: TreatmentPlanError):
    status_code = status_for(exc)
    error_logger.info("%s %s -> %s %s", request.method, request.url.path, status_code, exc.code)
    payload = {"detail": exc.message, "code": exc.code}
    if exc.retryable:
        payload["retryable"] = True
    return JSONResponse(status_code=status_code, content=payload)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)

    admin_email = str(settings.admin_email)
    admin_password = settings.admin_password.strip()
    db: Session = SessionLocal()
    try:
        created = seed_initial_admin(db, email=admin_email, password=admin_password)
        if created:
            logger.info("Initial admin created for %s.", admin_email)
        else:
            logger.info("Initial admin not created (users already exist).")
        ensured = ensure_capabilities(db)
        if ensured:
            logger.info("Capabilities ensured (%s total).", len(ensured))
        granted = ensure_role_grants(db)
        if granted:
            logger.info("Role capability grants added (%s).", granted)
        ensure_default_hours(db)
        db.commit()
    finally:
        db.close()


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(capabilities_router)
app.include_router(patient_treatment_plans_router)
app.include_router(treatment_plans_router)
