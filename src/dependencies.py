"""
ALERIS.ops API Dependencies
FastAPI dependency injection: database session, services and the request context
"""

import logging
import os
from typing import Generator, Optional

from fastapi import Request, HTTPException, status, Depends
from sqlalchemy.orm import Session

from src.database.connection import SessionLocal
from src.security.session_claims import (
    MANAGEMENT_ROLES,
    SUPER_ADMIN_ROLES,
    RequestContext,
    get_claims,
    normalize_role,
)
from src.services.attendance_service import AttendanceService
from src.services.auth_service import AuthService
from src.services.booking_service import BookingService
from src.services.catalog_service import CatalogService
from src.services.finance_service import FinanceService
from src.services.invitation_service import InvitationService
from src.services.membership_service import MembershipService
from src.services.organization_service import OrganizationService
from src.services.staff_service import StaffService
from src.services.student_service import StudentService

logger = logging.getLogger(__name__)


def get_db_session() -> Generator[Session, None, None]:
    """Sesión de base de datos por request."""
    db_host = os.getenv("DB_HOST", "localhost")
    if not os.getenv("DATABASE_URL") and db_host == "localhost" and not os.getenv("DEVELOPMENT_MODE"):
        logger.warning(
            "DATABASE_URL no configurado y DB_HOST es 'localhost'. "
            "Puede faltar configuración de entorno."
        )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# --- Service Dependencies ---


def get_auth_service(session: Session = Depends(get_db_session)) -> AuthService:
    return AuthService(session)


def get_booking_service(session: Session = Depends(get_db_session)) -> BookingService:
    return BookingService(session)


def get_attendance_service(session: Session = Depends(get_db_session)) -> AttendanceService:
    return AttendanceService(session)


def get_membership_service(session: Session = Depends(get_db_session)) -> MembershipService:
    return MembershipService(session)


def get_finance_service(session: Session = Depends(get_db_session)) -> FinanceService:
    return FinanceService(session)


def get_student_service(session: Session = Depends(get_db_session)) -> StudentService:
    return StudentService(session)


def get_catalog_service(session: Session = Depends(get_db_session)) -> CatalogService:
    return CatalogService(session)


def get_staff_service(session: Session = Depends(get_db_session)) -> StaffService:
    return StaffService(session)


def get_organization_service(session: Session = Depends(get_db_session)) -> OrganizationService:
    return OrganizationService(session)


def get_invitation_service(session: Session = Depends(get_db_session)) -> InvitationService:
    return InvitationService(session)


# --- Request context / auth ---


async def get_request_context(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> RequestContext:
    """Resuelve sesión + perfil una vez por request."""
    claims = get_claims(request)
    if not claims.get("is_authenticated"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No autenticado")
    profile = auth.get_profile(claims["user_id"])
    if profile is None:
        logger.warning(f"AUTH FAILED: perfil {claims['user_id']} ya no existe")
        request.session.clear()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Perfil no encontrado")
    return RequestContext(
        user_id=int(profile.id),
        role=normalize_role(profile.role),
        organization_id=profile.organization_id,
        branch_id=profile.assigned_branch_id,
        full_name=profile.full_name,
    )


async def get_optional_context(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> Optional[RequestContext]:
    """Like get_request_context, but None instead of 401 (routes with their own error format)."""
    try:
        return await get_request_context(request, auth)
    except HTTPException:
        return None


async def require_organization(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.organization_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sin organización asignada")
    return ctx


async def require_owner(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Require owner/super admin access."""
    if ctx.role not in MANAGEMENT_ROLES:
        logger.warning(f"AUTH FAILED: Invalid role {ctx.role}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return ctx


async def require_super_admin(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if ctx.role not in SUPER_ADMIN_ROLES:
        logger.warning(f"AUTH FAILED: super admin requerido, role={ctx.role}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return ctx
