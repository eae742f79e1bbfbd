import pytest
from sqlalchemy import select

from src.models.orm_models import Branch, Organization, Profile

from conftest import OWNER_EMAIL, PASSWORD, TEACHER_EMAIL, login

pytestmark = pytest.mark.api


class TestSignup:
    def test_signup_creates_tenant_and_session(self, client, db_session):
        r = client.post(
            "/api/auth/signup",
            json={
                "email": "Nuevo@Academia.test",
                "password": "clave123",
                "full_name": "Nora Nueva",
                "organization_name": "Academia Nueva",
                "industry": "fitness",
            },
        )

        assert r.status_code == 201, r.text
        body = r.json()
        assert body["ok"] is True
        assert body["profile"]["role"] == "owner"
        assert body["profile"]["email"] == "nuevo@academia.test"

        org = db_session.scalar(select(Organization).where(Organization.name == "Academia Nueva"))
        assert org.industry == "fitness"
        assert len(org.security_pin) == 4 and org.security_pin.isdigit()
        assert [b.name for b in db_session.scalars(select(Branch).where(Branch.organization_id == org.id))] == [
            "Sede Principal"
        ]

        me = client.get("/api/auth/me").json()
        assert me["user"]["role"] == "owner"
        assert me["user"]["organization_id"] == org.id

    def test_duplicate_email_conflicts(self, client, studio):
        r = client.post("/api/auth/signup", json={"email": OWNER_EMAIL, "password": "otra-clave"})

        assert r.status_code == 409
        assert r.json()["ok"] is False
        assert r.json()["error"] == "El email ya está registrado"

    @pytest.mark.parametrize(
        "payload",
        [
            {"email": "x@y.z", "password": "123"},
            {"email": "sin-arroba", "password": "secreto123"},
            {"email": "x@y.z", "password": "secreto123", "industry": "minería"},
        ],
    )
    def test_invalid_signup(self, client, payload):
        assert client.post("/api/auth/signup", json=payload).status_code == 400


class TestLogin:
    def test_login_and_me(self, client, studio):
        r = login(client, TEACHER_EMAIL)

        assert r.json()["profile"]["role"] == "staff"
        me = client.get("/api/auth/me").json()["user"]
        assert me["user_id"] == studio.teacher_id
        assert me["full_name"] == "Carla Profe"

    def test_wrong_password(self, client, studio):
        r = client.post("/api/auth/login", json={"email": OWNER_EMAIL, "password": "incorrecta"})

        assert r.status_code == 401
        assert r.json()["mensaje"] == "Credenciales inválidas"

    def test_missing_fields(self, client, studio):
        assert client.post("/api/auth/login", json={"email": OWNER_EMAIL}).status_code == 400

    def test_logout_clears_session(self, owner_client):
        assert owner_client.get("/api/auth/me").status_code == 200

        owner_client.post("/api/auth/logout")

        assert owner_client.get("/api/auth/me").status_code == 401

    def test_deleted_profile_invalidates_session(self, owner_client, db_session, studio):
        db_session.delete(db_session.get(Profile, studio.owner_id))
        db_session.commit()

        r = owner_client.get("/api/auth/me")
        assert r.status_code == 401
        assert r.json()["mensaje"] == "Perfil no encontrado"


class TestSecurityPin:
    @pytest.mark.parametrize(
        "pin,status,message",
        [
            ("12", 400, "El PIN debe tener 4 dígitos"),
            ("12a4", 400, "El PIN debe tener 4 dígitos"),
            ("9999", 403, "PIN Incorrecto"),
        ],
    )
    def test_rejected(self, owner_client, pin, status, message):
        r = owner_client.post("/api/auth/verify-pin", json={"pin": pin})

        assert r.status_code == status
        assert r.json()["mensaje"] == message

    def test_accepted(self, owner_client):
        r = owner_client.post("/api/auth/verify-pin", json={"pin": "1234"})

        assert r.status_code == 200
        assert r.json()["verified"] is True

    def test_requires_session(self, client):
        assert client.post("/api/auth/verify-pin", json={"pin": "1234"}).status_code == 401


class TestAcceptInvite:
    def test_invited_user_sets_password(self, client, db_session, studio):
        login(client, OWNER_EMAIL)
        r = client.post(
            "/functions/v1/invite-user",
            json={"email": "invitada@estudio.test", "role": "staff", "orgId": studio.org_id},
        )
        assert r.status_code == 200, r.text
        client.post("/api/auth/logout")

        accepted = client.post(
            "/api/auth/accept-invite", json={"email": "invitada@estudio.test", "password": PASSWORD}
        )
        assert accepted.status_code == 200
        assert accepted.json()["profile"]["organization_id"] == studio.org_id

        again = client.post(
            "/api/auth/accept-invite", json={"email": "invitada@estudio.test", "password": PASSWORD}
        )
        assert again.status_code == 409

        client.post("/api/auth/logout")
        login(client, "invitada@estudio.test")
        profile = db_session.scalar(select(Profile).where(Profile.email == "invitada@estudio.test"))
        assert profile.role == "staff"

    def test_unknown_invitation(self, client, studio):
        r = client.post("/api/auth/accept-invite", json={"email": "nadie@x.io", "password": PASSWORD})

        assert r.status_code == 404
