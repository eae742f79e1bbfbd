"""
Pytest Configuration
Configuration file for pytest test runner
"""

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

project_path = Path(__file__).parent
sys.path.insert(0, str(project_path))

# Antes de importar src: el engine y el middleware leen el entorno al importarse
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["DEVELOPMENT_MODE"] = "true"
os.environ["API_GET_CACHE_TTL_MS"] = "0"
os.environ["AUTO_MIGRATE"] = "false"

from sqlalchemy.orm import sessionmaker, Session

from src.database.connection import build_engine
from src.models.orm_models import (
    Appointment,
    AppointmentAttendee,
    AuthUser,
    Base,
    Branch,
    Membership,
    Organization,
    Plan,
    PlanServiceAccess,
    Profile,
    Professional,
    Service,
    Student,
)
from src.security.session_claims import RequestContext
from src.services.auth_service import hash_password
from src.utils import local_today

OWNER_EMAIL = "duena@estudio.test"
TEACHER_EMAIL = "carla@estudio.test"
PASSWORD = "secreto123"

# Test configuration
pytest_plugins = []


# Test markers
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "unit: Unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests"
    )
    config.addinivalue_line(
        "markers", "api: API tests"
    )
    config.addinivalue_line(
        "markers", "slow: Slow running tests"
    )


# Test collection
collect_ignore_glob = [
    "*/alembic/*",
    "*/venv/*",
    "*/env/*",
    "*/__pycache__/*"
]


# Fixtures
@pytest.fixture
def engine(tmp_path):
    """SQLite en archivo por test, con claves foráneas activas."""
    eng = build_engine(f"sqlite:///{tmp_path / 'aleris_test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def mock_database():
    """Mock database fixture"""
    from unittest.mock import Mock

    mock_session = Mock(spec=Session)
    mock_session.add = Mock()
    mock_session.commit = Mock()
    mock_session.rollback = Mock()
    mock_session.flush = Mock()
    mock_session.execute = Mock()
    mock_session.close = Mock()

    return mock_session


@pytest.fixture
def studio(db_session):
    """Una academia con dueña, una profesora de staff, un profesional externo,
    dos servicios (Salsa $10, Tango $15), un plan mensual de Salsa y dos alumnos."""
    org = Organization(name="Estudio Uno", industry="dance", security_pin="1234")
    db_session.add(org)
    db_session.flush()

    branch = Branch(organization_id=org.id, name="Sede Centro")
    owner_user = AuthUser(
        email=OWNER_EMAIL, password_hash=hash_password(PASSWORD), confirmed_at=datetime(2026, 1, 1)
    )
    teacher_user = AuthUser(
        email=TEACHER_EMAIL, password_hash=hash_password(PASSWORD), confirmed_at=datetime(2026, 1, 1)
    )
    db_session.add_all([branch, owner_user, teacher_user])
    db_session.flush()

    owner = Profile(
        id=owner_user.id,
        organization_id=org.id,
        role="owner",
        full_name="Diana Dueña",
        email=OWNER_EMAIL,
        base_salary=0,
        commission_percentage=0,
    )
    teacher = Profile(
        id=teacher_user.id,
        organization_id=org.id,
        role="staff",
        full_name="Carla Profe",
        email=TEACHER_EMAIL,
        base_salary=1000,
        commission_percentage=10,
    )
    professional = Professional(
        organization_id=org.id, full_name="Pablo Externo", base_salary=500, commission_percentage=20
    )
    salsa = Service(organization_id=org.id, name="Salsa", price=10, is_active=True)
    tango = Service(organization_id=org.id, name="Tango", price=15, is_active=True)
    ana = Student(organization_id=org.id, first_name="Ana", last_name="Alba")
    beto = Student(organization_id=org.id, first_name="Beto", last_name="Bravo")
    db_session.add_all([owner, teacher, professional, salsa, tango, ana, beto])
    db_session.flush()

    plan = Plan(organization_id=org.id, name="Mensual Salsa", price=50, duration_days=30, is_active=True)
    db_session.add(plan)
    db_session.flush()
    db_session.add(PlanServiceAccess(plan_id=plan.id, service_id=salsa.id))
    db_session.commit()

    return SimpleNamespace(
        org_id=org.id,
        branch_id=branch.id,
        owner_id=owner.id,
        teacher_id=teacher.id,
        professional_id=professional.id,
        salsa_id=salsa.id,
        tango_id=tango.id,
        plan_id=plan.id,
        ana_id=ana.id,
        beto_id=beto.id,
    )


@pytest.fixture
def owner_ctx(studio):
    return RequestContext(
        user_id=studio.owner_id, role="owner", organization_id=studio.org_id, full_name="Diana Dueña"
    )


@pytest.fixture
def staff_ctx(studio):
    return RequestContext(
        user_id=studio.teacher_id, role="staff", organization_id=studio.org_id, full_name="Carla Profe"
    )


@pytest.fixture
def make_membership(db_session, studio):
    """Crea una membresía; por defecto activa y vigente 30 días desde hoy."""

    def _make(student_id, plan_id=None, end_date=None, status="active", start_date=None):
        today = local_today()
        m = Membership(
            organization_id=studio.org_id,
            student_id=student_id,
            plan_id=plan_id or studio.plan_id,
            start_date=start_date or today,
            end_date=end_date or today + timedelta(days=30),
            status=status,
        )
        db_session.add(m)
        db_session.commit()
        return m.id

    return _make


@pytest.fixture
def make_appointment(db_session, studio):
    """Inserta una cita directamente (sin cobros) con sus alumnos."""

    def _make(start, service_id=None, student_ids=(), profile_id=None, professional_id=None,
              is_private=False, price=None):
        sid = service_id or studio.salsa_id
        appt = Appointment(
            organization_id=studio.org_id,
            service_id=sid,
            profile_id=profile_id,
            professional_id=professional_id,
            start_time=start,
            end_time=start + timedelta(hours=1),
            is_private_class=is_private,
            price_at_booking=price if price is not None else db_session.get(Service, sid).price,
            status="scheduled",
        )
        db_session.add(appt)
        db_session.flush()
        for student_id in student_ids:
            db_session.add(AppointmentAttendee(appointment_id=appt.id, student_id=student_id))
        db_session.commit()
        return appt.id

    return _make


@pytest.fixture
def client(session_factory):
    """TestClient con la sesión de base de datos apuntando al engine del test."""
    from fastapi.testclient import TestClient
    from src.dependencies import get_db_session
    from src.main import app

    def _override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = _override_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def owner_client(client, studio):
    login(client, OWNER_EMAIL)
    return client


@pytest.fixture
def teacher_client(client, studio):
    login(client, TEACHER_EMAIL)
    return client


# Test utilities
def login(client, email=OWNER_EMAIL, password=PASSWORD):
    response = client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response
