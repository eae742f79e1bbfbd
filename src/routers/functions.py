"""
Functions Router - the invite-user function

Called by a signed-in owner (or super admin) from the SPA; the elevated work
stays on the server. Answers with permissive CORS headers and
`{"error": ...}` bodies on failure.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse, PlainTextResponse

from src.dependencies import get_invitation_service, get_optional_context
from src.security.session_claims import RequestContext
from src.services.base import ServiceError
from src.services.invitation_service import InvitationService
from src.utils import read_json

logger = logging.getLogger(__name__)

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=CORS_HEADERS)


@router.options("/functions/v1/invite-user")
async def invite_user_preflight():
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post("/functions/v1/invite-user")
async def invite_user(
    request: Request,
    ctx: Optional[RequestContext] = Depends(get_optional_context),
    svc: InvitationService = Depends(get_invitation_service),
):
    if ctx is None:
        return _error("No autorizado", 401)
    data = await read_json(request)
    try:
        res = svc.invite_user(ctx, data.get("email"), data.get("role"), data.get("orgId"))
    except ServiceError as e:
        # Permisos conservan su código; el resto responde 400
        return _error(e.message, e.status_code if e.status_code in (401, 403) else 400)
    except Exception as e:
        logger.exception(f"Error en invite-user: {e}")
        return _error(str(e), 400)
    return JSONResponse(res, status_code=200, headers=CORS_HEADERS)
