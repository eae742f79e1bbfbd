"""
Staff Router - system profiles and external professionals
Includes: branch assignment, weekly schedule, invitations, reviews
"""
import logging

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse

from src.dependencies import get_staff_service, require_organization, require_owner
from src.security.session_claims import RequestContext
from src.services.staff_service import StaffService
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/staff")
async def api_list_staff(
    ctx: RequestContext = Depends(require_organization),
    svc: StaffService = Depends(get_staff_service),
):
    try:
        items = svc.list_staff(ctx)
    except Exception as e:
        return error_response(e, "listando staff")
    return {"ok": True, "items": items}


@router.post("/api/staff/professionals")
async def api_create_professional(
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: StaffService = Depends(get_staff_service),
):
    data = await read_json(request)
    try:
        item = svc.create_professional(ctx, data)
    except Exception as e:
        return error_response(e, "creando profesional")
    return JSONResponse(
        {"ok": True, "staff": item, "mensaje": "Profesional creado"}, status_code=201
    )


@router.post("/api/staff/invitations")
async def api_create_invitation(
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: StaffService = Depends(get_staff_service),
):
    data = await read_json(request)
    try:
        res = svc.create_invitation(ctx, data.get("email"), data.get("role") or "staff")
    except Exception as e:
        return error_response(e, "registrando invitación")
    return JSONResponse({"ok": True, **res}, status_code=201)


@router.get("/api/staff/{person_type}/{person_id}")
async def api_staff_detail(
    person_type: str,
    person_id: int,
    ctx: RequestContext = Depends(require_organization),
    svc: StaffService = Depends(get_staff_service),
):
    try:
        return {"ok": True, **svc.get_staff_detail(ctx, person_id, person_type)}
    except Exception as e:
        return error_response(e, "obteniendo staff")


@router.put("/api/staff/{person_type}/{person_id}")
async def api_update_staff(
    person_type: str,
    person_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: StaffService = Depends(get_staff_service),
):
    data = await read_json(request)
    try:
        item = svc.update_staff_profile(ctx, person_id, person_type, data)
    except Exception as e:
        return error_response(e, "actualizando staff")
    return {"ok": True, "staff": item, "mensaje": "Perfil actualizado"}


@router.post("/api/staff/{person_type}/{person_id}/branches")
async def api_assign_branch(
    person_type: str,
    person_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: StaffService = Depends(get_staff_service),
):
    data = await read_json(request)
    try:
        res = svc.assign_branch(ctx, person_id, person_type, data.get("branch_id"))
    except Exception as e:
        return error_response(e, "asignando sede")
    return {"ok": True, **res}


@router.delete("/api/staff/{person_type}/{person_id}/branches/{branch_id}")
async def api_remove_branch(
    person_type: str,
    person_id: int,
    branch_id: int,
    ctx: RequestContext = Depends(require_owner),
    svc: StaffService = Depends(get_staff_service),
):
    try:
        res = svc.remove_branch(ctx, person_id, person_type, branch_id)
    except Exception as e:
        return error_response(e, "revocando sede")
    return {"ok": True, **res}


@router.get("/api/staff/{person_type}/{person_id}/schedule")
async def api_get_schedule(
    person_type: str,
    person_id: int,
    branch_id: int,
    ctx: RequestContext = Depends(require_organization),
    svc: StaffService = Depends(get_staff_service),
):
    try:
        days = svc.get_weekly_schedule(ctx, person_id, person_type, branch_id)
    except Exception as e:
        return error_response(e, "cargando horario")
    return {"ok": True, "days": days}


@router.put("/api/staff/{person_type}/{person_id}/schedule")
async def api_save_schedule(
    person_type: str,
    person_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: StaffService = Depends(get_staff_service),
):
    data = await read_json(request)
    try:
        res = svc.save_weekly_schedule(ctx, person_id, person_type, data.get("branch_id"), data.get("days"))
    except Exception as e:
        return error_response(e, "guardando horario")
    return {"ok": True, **res}


@router.post("/api/staff/system/{person_id}/reviews")
async def api_add_review(
    person_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: StaffService = Depends(get_staff_service),
):
    data = await read_json(request)
    try:
        review = svc.add_review(
            ctx, person_id, data.get("rating"), data.get("comment"), data.get("student_id")
        )
    except Exception as e:
        return error_response(e, "registrando reseña")
    return JSONResponse(
        {"ok": True, "review": review, "mensaje": "Reseña registrada"}, status_code=201
    )
