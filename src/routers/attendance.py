import logging
from typing import List, Optional

from fastapi import APIRouter, Request, Depends, Query

from src.dependencies import get_attendance_service, require_organization
from src.security.session_claims import RequestContext
from src.services.attendance_service import AttendanceService, toggle_status
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/attendance/classes")
async def api_attendance_classes(
    date: Optional[str] = None,
    ctx: RequestContext = Depends(require_organization),
    svc: AttendanceService = Depends(get_attendance_service),
):
    try:
        groups = svc.list_class_groups(ctx, date)
    except Exception as e:
        return error_response(e, "listando clases del día")
    return {"ok": True, "items": groups, "day_off": not groups}


@router.get("/api/attendance/roster")
async def api_attendance_roster(
    appointment_ids: List[int] = Query(default=[]),
    ctx: RequestContext = Depends(require_organization),
    svc: AttendanceService = Depends(get_attendance_service),
):
    try:
        return {"ok": True, **svc.build_roster(ctx, appointment_ids)}
    except Exception as e:
        return error_response(e, "armando lista de asistencia")


@router.get("/api/attendance/search")
async def api_attendance_search(
    q: str = "",
    exclude_ids: List[int] = Query(default=[]),
    ctx: RequestContext = Depends(require_organization),
    svc: AttendanceService = Depends(get_attendance_service),
):
    try:
        items = svc.search_students(ctx, q, exclude_ids)
    except Exception as e:
        return error_response(e, "buscando alumnos")
    return {"ok": True, "items": items}


@router.post("/api/attendance/toggle")
async def api_attendance_toggle(request: Request, ctx: RequestContext = Depends(require_organization)):
    data = await read_json(request)
    return {"ok": True, "status": toggle_status(data.get("status"))}


@router.post("/api/attendance")
async def api_save_attendance(
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: AttendanceService = Depends(get_attendance_service),
):
    data = await read_json(request)
    try:
        res = svc.save_attendance(ctx, data.get("appointment_ids") or [], data.get("rows"))
    except Exception as e:
        return error_response(e, "guardando asistencia")
    return {"ok": True, **res}
