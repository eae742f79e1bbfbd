"""
Auth Service - SQLAlchemy ORM Implementation

Email/password identities (bcrypt), owner sign-up with its organization and
default branch, profile resolution, invitation acceptance and the
organization security PIN check.
"""

from typing import Optional, Dict, Any
import hmac
import logging
import secrets

import bcrypt
from sqlalchemy.orm import Session
from sqlalchemy import select

from src.services.base import (
    BaseService,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
    ValidationError,
)
from src.models.orm_models import AuthUser, Branch, Organization, OrganizationInvitation, Profile
from src.utils import local_now

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
DEFAULT_ORGANIZATION_NAME = "Mi Organización"
DEFAULT_BRANCH_NAME = "Sede Principal"
INDUSTRIES = ("dance", "fitness", "beauty", "workshop")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bool(bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8")))
    except ValueError:
        logger.warning("Hash de contraseña con formato inválido")
        return False


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


def generate_security_pin() -> str:
    return f"{secrets.randbelow(10000):04d}"


def profile_to_dict(p: Profile) -> Dict[str, Any]:
    return {
        "id": p.id,
        "organization_id": p.organization_id,
        "assigned_branch_id": p.assigned_branch_id,
        "role": p.role,
        "full_name": p.full_name,
        "email": p.email,
        "phone": p.phone,
        "specialty": p.specialty,
    }


class AuthService(BaseService):
    """Service for authentication operations using SQLAlchemy."""

    def __init__(self, db: Session):
        super().__init__(db)

    # ========== User Lookup ==========

    def get_user_by_email(self, email: str) -> Optional[AuthUser]:
        return self.db.execute(
            select(AuthUser).where(AuthUser.email == normalize_email(email))
        ).scalars().first()

    def get_profile(self, user_id: Any) -> Optional[Profile]:
        """Resolver de perfil: la fila o None."""
        try:
            uid = int(user_id)
        except (TypeError, ValueError):
            return None
        return self.db.get(Profile, uid)

    # ========== Sesión ==========

    def sign_in(self, email: Any, password: Any) -> Profile:
        clean = normalize_email(email)
        pwd = str(password or "")
        if not clean or not pwd:
            raise ValidationError("Email y contraseña son obligatorios")
        user = self.get_user_by_email(clean)
        if user is None or not check_password(pwd, user.password_hash):
            logger.warning(f"Login fallido para {clean}")
            raise ServiceError("Credenciales inválidas", 401)
        profile = self.get_profile(user.id)
        if profile is None:
            raise ServiceError("Perfil no encontrado", 401)
        logger.info(f"Login OK user={user.id} role={profile.role}")
        return profile

    def sign_up(
        self,
        email: Any,
        password: Any,
        full_name: Any = None,
        organization_name: Any = None,
        industry: Any = "dance",
    ) -> Profile:
        """Alta de dueño: usuario, organización, sede principal y perfil owner."""
        clean = normalize_email(email)
        pwd = str(password or "")
        if not clean or "@" not in clean:
            raise ValidationError("Email inválido")
        if len(pwd) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres"
            )
        ind = str(industry or "dance").strip().lower()
        if ind not in INDUSTRIES:
            raise ValidationError("Rubro inválido")
        if self.get_user_by_email(clean) is not None:
            raise ConflictError("El email ya está registrado")

        name = str(full_name or "").strip() or clean.split("@")[0]
        org_name = str(organization_name or "").strip() or DEFAULT_ORGANIZATION_NAME
        now = local_now()
        with self.unit_of_work():
            user = AuthUser(
                email=clean,
                password_hash=hash_password(pwd),
                user_metadata={"full_name": name, "organization_name": org_name},
                confirmed_at=now,
            )
            org = Organization(name=org_name, industry=ind, security_pin=generate_security_pin())
            self.db.add_all([user, org])
            self.db.flush()
            branch = Branch(organization_id=org.id, name=DEFAULT_BRANCH_NAME)
            self.db.add(branch)
            self.db.flush()
            profile = Profile(
                id=user.id,
                organization_id=org.id,
                assigned_branch_id=None,
                role="owner",
                full_name=name,
                email=clean,
            )
            self.db.add(profile)
        logger.info(f"Alta de organización {org.id} con dueño {user.id}")
        return profile

    def accept_invitation(self, email: Any, password: Any) -> Profile:
        clean = normalize_email(email)
        pwd = str(password or "")
        if len(pwd) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres"
            )
        user = self.get_user_by_email(clean)
        if user is None or user.invited_at is None:
            raise NotFoundError("Invitación no encontrada")
        if user.confirmed_at is not None:
            raise ConflictError("La invitación ya fue aceptada")
        profile = self.get_profile(user.id)
        if profile is None:
            raise NotFoundError("Perfil no encontrado")
        with self.unit_of_work():
            user.password_hash = hash_password(pwd)
            user.confirmed_at = local_now()
            pending = self.db.scalars(
                select(OrganizationInvitation).where(
                    OrganizationInvitation.email == clean,
                    OrganizationInvitation.organization_id == profile.organization_id,
                    OrganizationInvitation.status == "pending",
                )
            ).all()
            for inv in pending:
                inv.status = "accepted"
        logger.info(f"Invitación aceptada user={user.id}")
        return profile

    # ========== PIN de seguridad ==========

    def verify_security_pin(self, ctx, pin: Any) -> bool:
        code = str(pin or "").strip()
        if len(code) != 4 or not code.isdigit():
            raise ValidationError("El PIN debe tener 4 dígitos")
        if not getattr(ctx, "organization_id", None):
            raise ValidationError("Sin organización asignada")
        org = self.db.get(Organization, int(ctx.organization_id))
        if org is None or not org.security_pin:
            raise NotFoundError("Error verificando PIN")
        if not hmac.compare_digest(str(org.security_pin), code):
            logger.warning(f"PIN incorrecto user={ctx.user_id} org={ctx.organization_id}")
            raise PermissionDeniedError("PIN Incorrecto")
        return True
