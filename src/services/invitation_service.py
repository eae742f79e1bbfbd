"""
Invitation Service

Backs the `invite-user` function: creates (or reuses) the invited auth
identity with its metadata and the matching staff profile, and marks the
pending organization invitation.
"""

import logging
import os
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.services.base import BaseService, PermissionDeniedError, ValidationError
from src.services.auth_service import normalize_email
from src.models.orm_models import AuthUser, Organization, OrganizationInvitation, Profile
from src.security.session_claims import MANAGEMENT_ROLES, SUPER_ADMIN_ROLES
from src.utils import iso, local_now

logger = logging.getLogger(__name__)

INVITE_ROLES = ("owner", "staff")


def get_invite_redirect_url() -> str:
    return os.getenv("INVITE_REDIRECT_URL", "").strip() or (
        os.getenv("APP_BASE_URL", "http://localhost:5173").rstrip("/") + "/update-password"
    )


class InvitationService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    def invite_user(self, ctx, email: Any, role: Any, org_id: Any) -> Dict[str, Any]:
        if ctx.role not in MANAGEMENT_ROLES:
            raise PermissionDeniedError("Solo el dueño puede invitar personal")
        clean = normalize_email(email)
        if not clean or org_id in (None, ""):
            raise ValidationError("Email y Organization ID son obligatorios")
        if "@" not in clean:
            raise ValidationError("Email inválido")
        r = str(role or "staff").strip().lower()
        if r not in INVITE_ROLES:
            raise ValidationError("Rol inválido")
        try:
            oid = int(org_id)
        except (TypeError, ValueError):
            raise ValidationError("Organization ID inválido")
        if ctx.role not in SUPER_ADMIN_ROLES and oid != ctx.organization_id:
            raise PermissionDeniedError("No puedes invitar personal a otra organización")
        org = self.db.get(Organization, oid)
        if org is None:
            raise ValidationError("Organización no encontrada")

        full_name = clean.split("@")[0]
        metadata = {"organization_id": oid, "role": r, "full_name": full_name}
        now = local_now()

        with self.unit_of_work():
            user = self.db.execute(select(AuthUser).where(AuthUser.email == clean)).scalars().first()
            if user is None:
                user = AuthUser(email=clean, user_metadata=metadata, invited_at=now)
                self.db.add(user)
                self.db.flush()
            else:
                existing_profile = self.db.get(Profile, user.id)
                if existing_profile is not None and existing_profile.organization_id not in (None, oid):
                    raise ValidationError("El usuario ya pertenece a otra organización")
                user.user_metadata = {**(user.user_metadata or {}), **metadata}
                user.invited_at = now

            profile = self.db.get(Profile, user.id)
            if profile is None:
                self.db.add(
                    Profile(
                        id=user.id,
                        organization_id=oid,
                        role=r,
                        full_name=full_name,
                        email=clean,
                    )
                )

            # Queda pendiente hasta que el usuario defina su contraseña
            pending = self.db.scalars(
                select(OrganizationInvitation).where(
                    OrganizationInvitation.organization_id == oid,
                    OrganizationInvitation.email == clean,
                    OrganizationInvitation.status == "pending",
                )
            ).first()
            if pending is None:
                self.db.add(
                    OrganizationInvitation(organization_id=oid, email=clean, role=r, status="pending")
                )
            self.db.flush()
            out = {
                "id": user.id,
                "email": user.email,
                "user_metadata": dict(user.user_metadata or {}),
                "invited_at": iso(user.invited_at),
                "confirmed_at": iso(user.confirmed_at),
            }

        logger.info(f"Invitación enviada a {clean} org={oid} role={r} por={ctx.user_id}")
        return {"message": "Invitación enviada", "user": out, "redirect_to": get_invite_redirect_url()}
