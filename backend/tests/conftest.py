import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
os.environ.setdefault("CLINIC_TIMEZONE", "Europe/London")

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_plans.core.security import create_access_token, hash_password
from clinic_plans.core.settings import settings
from clinic_plans.db.session import get_db
from clinic_plans.main import app
from clinic_plans.models import Base, Patient, Role, Treatment, User
from clinic_plans.schemas.treatment_plan import TreatmentPlanCreate
from clinic_plans.services.capabilities import ensure_capabilities, ensure_role_grants
from clinic_plans.services.schedule import ensure_default_hours
from clinic_plans.services.treatment_plans import approval
from clinic_plans.services.treatment_plans.builder import build_custom_plan
from clinic_plans.services.treatment_plans.repository import SqlPlanRepository

TEST_PASSWORD = "Sup3r-Secret-Pass!"

# code, name, price, minutes, scheduling rules
TREATMENTS = [
    ("EXAM", "Examination", 5000, 30, {}),
    ("FILL", "Composite filling", 12000, 45, {}),
    ("RCT", "Root canal treatment", 45000, 60, {"recovery_days": 7}),
    ("CROWN", "Porcelain crown", 60000, 60, {}),
    ("SCALE", "Scale and polish", 6500, 30, {"spacing_days": 3}),
    ("OLD", "Amalgam filling", 8000, 30, {"is_active": False}),
]


def make_treatment(treatment_id: int, code: str, name: str, price: int, minutes: int, **rules) -> Treatment:
    values = {
        "is_active": True,
        "minimum_preparation_days": 0,
        "recovery_days": 0,
        "spacing_days": 0,
        "max_per_day": None,
        "default_clinician_user_id": None,
    }
    values.update(rules)
    return Treatment(
        id=treatment_id,
        code=code,
        name=name,
        default_price_pence=price,
        default_duration_minutes=minutes,
        **values,
    )


@pytest.fixture()
def catalog() -> dict[str, Treatment]:
    return {
        code: make_treatment(index, code, name, price, minutes, **rules)
        for index, (code, name, price, minutes, rules) in enumerate(TREATMENTS, start=1)
    }


@pytest.fixture()
def build_plan(catalog):
    """Transient plan built through the real builder, with item ids assigned."""

    def build(
        phases,
        *,
        discount_pence: int = 0,
        approved: bool = False,
        start_date=None,
        doctor_user_id: int = 1,
        plan_code: str = "TP-20260105-001",
    ):
        payload = TreatmentPlanCreate(
            plan_name="Test plan",
            discount_pence=discount_pence,
            start_date=start_date,
            phases=phases,
        )
        plan = build_custom_plan(
            plan_code,
            payload,
            catalog,
            patient_id=1,
            doctor_user_id=doctor_user_id,
            actor_id=1,
        )
        for item_id, item in enumerate(plan.items, start=1):
            item.id = item_id
        if approved:
            approval.submit_for_review(plan, 1)
            approval.approve(plan, 1)
        return plan

    return build


@pytest.fixture(scope="session")
def password_hash() -> str:
    return hash_password(TEST_PASSWORD)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@dataclass
class Seed:
    admin: User
    dentist: User
    second_dentist: User
    reviewer: User
    reception: User
    nurse: User
    patient: Patient
    treatments: dict[str, Treatment]


@pytest.fixture()
def seed(db, password_hash) -> Seed:
    def add_user(email: str, role: Role, full_name: str) -> User:
        user = User(
            email=email,
            full_name=full_name,
            role=role,
            is_active=True,
            hashed_password=password_hash,
        )
        db.add(user)
        return user

    admin = add_user("admin@smile-dental.co.uk", Role.superadmin, "Practice Admin")
    dentist = add_user("dentist@smile-dental.co.uk", Role.dentist, "Dr Grey")
    second_dentist = add_user("dentist2@smile-dental.co.uk", Role.dentist, "Dr Stone")
    reviewer = add_user("manager@smile-dental.co.uk", Role.senior_admin, "Practice Manager")
    reception = add_user("front@smile-dental.co.uk", Role.reception, "Front Desk")
    nurse = add_user("nurse@smile-dental.co.uk", Role.nurse, "Dental Nurse")
    db.flush()

    treatments = {}
    for code, name, price, minutes, rules in TREATMENTS:
        treatment = Treatment(
            code=code,
            name=name,
            default_price_pence=price,
            default_duration_minutes=minutes,
            created_by_user_id=admin.id,
            **rules,
        )
        db.add(treatment)
        treatments[code] = treatment
    patient = Patient(first_name="Ada", last_name="Lovelace", created_by_user_id=admin.id)
    db.add(patient)
    db.commit()

    ensure_capabilities(db)
    ensure_role_grants(db)
    ensure_default_hours(db)
    db.commit()
    return Seed(
        admin=admin,
        dentist=dentist,
        second_dentist=second_dentist,
        reviewer=reviewer,
        reception=reception,
        nurse=nurse,
        patient=patient,
        treatments=treatments,
    )


@pytest.fixture()
def client(session_factory, seed):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def headers_for():
    def build(user: User) -> dict[str, str]:
        token = create_access_token(
            subject=str(user.id),
            secret=settings.secret_key,
            alg=settings.jwt_alg,
            expires_minutes=30,
        )
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture()
def auth_headers(seed, headers_for):
    return headers_for(seed.admin)


@pytest.fixture()
def persist_plan(db, seed):
    """Build and save a plan for the seeded patient, optionally through approval."""

    def persist(phases, *, approved: bool = True, plan_code: str = "TP-20261102-001", **fields):
        repo = SqlPlanRepository(db)
        payload = TreatmentPlanCreate(
            plan_name=fields.pop("plan_name", "Persisted plan"),
            doctor_user_id=seed.dentist.id,
            phases=phases,
            **fields,
        )
        catalog = repo.load_catalog(
            template.treatment_code for phase in payload.phases for template in phase.items
        )
        plan = build_custom_plan(
            plan_code,
            payload,
            catalog,
            patient_id=seed.patient.id,
            doctor_user_id=seed.dentist.id,
            actor_id=seed.admin.id,
        )
        repo.save_plan(plan, None)
        if approved:
            approval.submit_for_review(plan, seed.dentist.id)
            approval.approve(plan, seed.reviewer.id)
            repo.save_plan(plan, None)
        return plan

    return persist
