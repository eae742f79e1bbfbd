"""
Catalog Router - services (class types) and membership plans
"""
import logging

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse

from src.dependencies import get_catalog_service, require_organization, require_owner
from src.security.session_claims import RequestContext
from src.services.catalog_service import CatalogService
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter()


# ========== Servicios ==========


@router.get("/api/services")
async def api_list_services(
    include_archived: bool = True,
    ctx: RequestContext = Depends(require_organization),
    svc: CatalogService = Depends(get_catalog_service),
):
    try:
        items = svc.list_services(ctx, include_archived=include_archived)
    except Exception as e:
        return error_response(e, "listando servicios")
    return {"ok": True, "items": items}


@router.post("/api/services")
async def api_create_service(
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: CatalogService = Depends(get_catalog_service),
):
    data = await read_json(request)
    try:
        item = svc.create_service(ctx, data)
    except Exception as e:
        return error_response(e, "creando servicio")
    return JSONResponse({"ok": True, "service": item, "mensaje": "Servicio creado"}, status_code=201)


@router.put("/api/services/{service_id}")
async def api_update_service(
    service_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: CatalogService = Depends(get_catalog_service),
):
    data = await read_json(request)
    try:
        item = svc.update_service(ctx, service_id, data)
    except Exception as e:
        return error_response(e, "actualizando servicio")
    return {"ok": True, "service": item, "mensaje": "Servicio actualizado"}


@router.post("/api/services/{service_id}/archive")
async def api_toggle_service_archive(
    service_id: int,
    ctx: RequestContext = Depends(require_owner),
    svc: CatalogService = Depends(get_catalog_service),
):
    try:
        item = svc.toggle_service_archive(ctx, service_id)
    except Exception as e:
        return error_response(e, "archivando servicio")
    mensaje = "Servicio reactivado" if item.get("is_active") else "Servicio archivado"
    return {"ok": True, "service": item, "mensaje": mensaje}


# ========== Planes ==========


@router.get("/api/plans")
async def api_list_plans(
    include_archived: bool = True,
    ctx: RequestContext = Depends(require_organization),
    svc: CatalogService = Depends(get_catalog_service),
):
    try:
        items = svc.list_plans(ctx, include_archived=include_archived)
    except Exception as e:
        return error_response(e, "listando planes")
    return {"ok": True, "items": items}


@router.post("/api/plans")
async def api_create_plan(
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: CatalogService = Depends(get_catalog_service),
):
    data = await read_json(request)
    try:
        item = svc.create_plan(ctx, data)
    except Exception as e:
        return error_response(e, "creando plan")
    return JSONResponse({"ok": True, "plan": item, "mensaje": "Plan creado"}, status_code=201)


@router.put("/api/plans/{plan_id}")
async def api_update_plan(
    plan_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: CatalogService = Depends(get_catalog_service),
):
    data = await read_json(request)
    try:
        item = svc.update_plan(ctx, plan_id, data)
    except Exception as e:
        return error_response(e, "actualizando plan")
    return {"ok": True, "plan": item, "mensaje": "Plan actualizado"}


@router.post("/api/plans/{plan_id}/archive")
async def api_toggle_plan_archive(
    plan_id: int,
    ctx: RequestContext = Depends(require_owner),
    svc: CatalogService = Depends(get_catalog_service),
):
    try:
        item = svc.toggle_plan_archive(ctx, plan_id)
    except Exception as e:
        return error_response(e, "archivando plan")
    mensaje = "Plan reactivado" if item.get("is_active") else "Plan archivado"
    return {"ok": True, "plan": item, "mensaje": mensaje}
