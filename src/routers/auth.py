import logging

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse

from src.dependencies import get_auth_service, get_request_context, require_organization
from src.security.session_claims import RequestContext, set_session_claims
from src.services.auth_service import AuthService, profile_to_dict
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter()


def _start_session(request: Request, profile) -> None:
    request.session.clear()
    set_session_claims(
        request.session,
        role=profile.role,
        user_id=profile.id,
        logged_in=True,
        organization_id=profile.organization_id,
        branch_id=profile.assigned_branch_id,
    )


@router.post("/api/auth/login")
async def api_login(request: Request, auth: AuthService = Depends(get_auth_service)):
    data = await read_json(request)
    try:
        profile = auth.sign_in(data.get("email"), data.get("password"))
    except Exception as e:
        return error_response(e, "en login")
    _start_session(request, profile)
    return {"ok": True, "profile": profile_to_dict(profile)}


@router.post("/api/auth/signup")
async def api_signup(request: Request, auth: AuthService = Depends(get_auth_service)):
    data = await read_json(request)
    try:
        profile = auth.sign_up(
            data.get("email"),
            data.get("password"),
            full_name=data.get("full_name"),
            organization_name=data.get("organization_name"),
            industry=data.get("industry") or "dance",
        )
    except Exception as e:
        return error_response(e, "en registro")
    _start_session(request, profile)
    return JSONResponse(
        {"ok": True, "profile": profile_to_dict(profile), "mensaje": "Cuenta creada"},
        status_code=201,
    )


@router.get("/api/auth/logout")
@router.post("/api/auth/logout")
async def api_logout(request: Request):
    request.session.clear()
    return {"ok": True}


@router.post("/api/auth/accept-invite")
async def api_accept_invite(request: Request, auth: AuthService = Depends(get_auth_service)):
    data = await read_json(request)
    try:
        profile = auth.accept_invitation(data.get("email"), data.get("password"))
    except Exception as e:
        return error_response(e, "aceptando invitación")
    _start_session(request, profile)
    return {"ok": True, "profile": profile_to_dict(profile), "mensaje": "Contraseña definida"}


@router.get("/api/auth/me")
async def api_me(ctx: RequestContext = Depends(get_request_context)):
    return {"ok": True, "user": ctx.to_dict()}


@router.post("/api/auth/verify-pin")
async def api_verify_pin(
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    auth: AuthService = Depends(get_auth_service),
):
    data = await read_json(request)
    try:
        auth.verify_security_pin(ctx, data.get("pin"))
    except Exception as e:
        return error_response(e, "verificando PIN")
    return {"ok": True, "verified": True}
