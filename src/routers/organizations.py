import logging

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse

from src.dependencies import (
    get_organization_service,
    require_organization,
    require_owner,
    require_super_admin,
)
from src.security.session_claims import RequestContext
from src.services.organization_service import OrganizationService
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/organization")
async def api_organization_settings(
    ctx: RequestContext = Depends(require_organization),
    svc: OrganizationService = Depends(get_organization_service),
):
    try:
        return {"ok": True, "organization": svc.get_settings(ctx)}
    except Exception as e:
        return error_response(e, "cargando organización")


@router.put("/api/organization")
async def api_rename_organization(
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: OrganizationService = Depends(get_organization_service),
):
    data = await read_json(request)
    try:
        org = svc.rename(ctx, data.get("name"))
    except Exception as e:
        return error_response(e, "renombrando organización")
    return {"ok": True, "organization": org, "mensaje": "Organización actualizada"}


@router.get("/api/branches")
async def api_list_branches(
    ctx: RequestContext = Depends(require_organization),
    svc: OrganizationService = Depends(get_organization_service),
):
    try:
        return {"ok": True, "items": svc.list_branches(ctx)}
    except Exception as e:
        return error_response(e, "listando sedes")


@router.post("/api/branches")
async def api_create_branch(
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: OrganizationService = Depends(get_organization_service),
):
    data = await read_json(request)
    try:
        branch = svc.create_branch(ctx, data)
    except Exception as e:
        return error_response(e, "creando sede")
    return JSONResponse({"ok": True, "branch": branch, "mensaje": "Sede creada"}, status_code=201)


# ========== Super admin ==========


@router.get("/api/admin/organizations")
async def api_admin_organizations(
    _=Depends(require_super_admin),
    svc: OrganizationService = Depends(get_organization_service),
):
    items = svc.list_organizations()
    return {"ok": True, "items": items, "total": len(items)}


@router.get("/api/admin/organizations/{organization_id}")
async def api_admin_organization_details(
    organization_id: int,
    _=Depends(require_super_admin),
    svc: OrganizationService = Depends(get_organization_service),
):
    try:
        return {"ok": True, **svc.get_organization_details(organization_id)}
    except Exception as e:
        return error_response(e, "obteniendo organización")


@router.get("/api/admin/stats")
async def api_admin_stats(
    _=Depends(require_super_admin),
    svc: OrganizationService = Depends(get_organization_service),
):
    try:
        return {"ok": True, **svc.platform_stats()}
    except Exception as e:
        return error_response(e, "estadísticas de plataforma")
