import pytest
from sqlalchemy import delete
from sqlalchemy.exc import OperationalError

from src.models.orm_models import Profile, Student

from conftest import TEACHER_EMAIL, login

pytestmark = pytest.mark.api


def test_root(client):
    r = client.get("/")

    assert r.status_code == 200
    assert r.json()["name"] == "ALERIS.ops API"


def test_manifest(client):
    r = client.get("/manifest.webmanifest")

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/manifest+json")
    manifest = r.json()
    assert manifest["short_name"] == "ALERIS.ops"
    assert manifest["display"] == "standalone"
    assert manifest["theme_color"] == "#000000"
    assert {i["sizes"] for i in manifest["icons"]} == {"192x192", "512x512"}
    assert any(i.get("purpose") == "maskable" for i in manifest["icons"])


def test_health(client):
    r = client.get("/health")

    assert r.status_code == 200
    assert r.json() == {"status": "ok", "database": "ok"}


def test_health_degraded(client, mock_database):
    from src.dependencies import get_db_session
    from src.main import app

    mock_database.execute.side_effect = OperationalError("SELECT 1", {}, Exception("sin conexión"))

    def _broken_db():
        yield mock_database

    app.dependency_overrides[get_db_session] = _broken_db
    r = client.get("/health")

    assert r.status_code == 503
    assert r.json()["status"] == "degraded"


class TestEnvelope:
    def test_unauthenticated_request(self, client):
        r = client.get("/api/students")

        assert r.status_code == 401
        body = r.json()
        assert body["ok"] is False
        assert body["success"] is False
        assert body["mensaje"] == "No autenticado"
        assert body["message"] == "No autenticado"

    def test_success_is_normalized(self, owner_client):
        r = owner_client.get("/api/students")

        assert r.status_code == 200
        body = r.json()
        assert body["ok"] is True
        assert body["success"] is True
        assert body["mensaje"] == "OK"
        assert r.headers["etag"].startswith('"')
        assert r.headers["x-content-type-options"] == "nosniff"

    def test_service_error_keeps_message(self, owner_client):
        r = owner_client.get("/api/students/9999")

        assert r.status_code == 404
        assert r.json()["mensaje"] == "Alumno no encontrado"
        assert r.json()["success"] is False

    def test_validation_error_from_fastapi(self, owner_client):
        r = owner_client.get("/api/appointments")

        assert r.status_code == 422
        assert r.json()["ok"] is False


class TestGetCache:
    @pytest.fixture
    def cache_on(self, monkeypatch):
        import src.main as main

        monkeypatch.setattr(main, "_API_GET_CACHE_TTL_MS", 60000)
        main._API_GET_CACHE.clear()
        yield
        main._API_GET_CACHE.clear()

    def test_hit_keeps_security_headers(self, cache_on, owner_client, db_session, studio):
        first = owner_client.get("/api/students")
        db_session.add(Student(organization_id=studio.org_id, first_name="Cleo"))
        db_session.commit()

        second = owner_client.get("/api/students")

        assert second.status_code == 200
        assert second.content == first.content
        assert second.headers["etag"] == first.headers["etag"]
        assert second.headers["x-content-type-options"] == "nosniff"
        assert second.headers["x-frame-options"] == "SAMEORIGIN"
        assert second.headers["referrer-policy"] == "same-origin"

    def test_hit_requires_existing_profile(self, cache_on, owner_client, db_session, studio):
        assert owner_client.get("/api/students").status_code == 200
        db_session.execute(delete(Profile).where(Profile.id == studio.owner_id))
        db_session.commit()

        r = owner_client.get("/api/students")

        assert r.status_code == 401
        assert r.json()["mensaje"] == "Perfil no encontrado"

class TestRoles:
    def test_staff_cannot_use_owner_endpoints(self, client, studio):
        login(client, TEACHER_EMAIL)

        assert client.get("/api/finance/summary").status_code == 403
        assert client.post("/api/services", json={"name": "X", "price": 1}).status_code == 403
        assert client.get("/api/finance/payroll").status_code == 403

    def test_staff_can_book_and_see_own_earnings(self, client, studio):
        login(client, TEACHER_EMAIL)

        assert client.get("/api/services").status_code == 200
        r = client.get("/api/teacher/payroll", params={"year": 2026, "month": 3})
        assert r.status_code == 200
        assert r.json()["base_salary"] == 1000.0

    def test_super_admin_only(self, owner_client):
        assert owner_client.get("/api/admin/stats").status_code == 403

    def test_super_admin_platform_views(self, client, db_session, studio):
        from src.models.orm_models import AuthUser, Profile
        from src.services.auth_service import hash_password

        user = AuthUser(email="root@aleris.test", password_hash=hash_password("supersecreto"))
        db_session.add(user)
        db_session.flush()
        db_session.add(Profile(id=user.id, role="super_admin", full_name="Root", email="root@aleris.test"))
        db_session.commit()
        login(client, "root@aleris.test", "supersecreto")

        stats = client.get("/api/admin/stats").json()
        assert stats["total_organizations"] == 1
        orgs = client.get("/api/admin/organizations").json()
        assert [o["name"] for o in orgs["items"]] == ["Estudio Uno"]
        detail = client.get(f"/api/admin/organizations/{studio.org_id}").json()
        assert detail["staff_count"] == 2
        # sin organización no hay endpoints de academia
        assert client.get("/api/students").status_code == 400
