"""
Appointments Router - calendar listing, booking with attendees and billing
Includes: teacher list, private class check, membership coverage batch
"""
import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse

from src.dependencies import get_booking_service, require_organization
from src.security.session_claims import RequestContext
from src.services.booking_service import BookingService
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/appointments")
async def api_list_appointments(
    start_date: str,
    end_date: Optional[str] = None,
    service_id: Optional[int] = None,
    teacher_id: Optional[int] = None,
    teacher_type: Optional[str] = None,
    ctx: RequestContext = Depends(require_organization),
    svc: BookingService = Depends(get_booking_service),
):
    try:
        res = svc.list_appointments(
            ctx,
            start_date,
            end_date,
            service_id=service_id,
            teacher_id=teacher_id,
            teacher_type=teacher_type,
        )
    except Exception as e:
        return error_response(e, "listando citas")
    return {"ok": True, **res}


@router.get("/api/appointments/teachers")
async def api_available_teachers(
    ctx: RequestContext = Depends(require_organization),
    svc: BookingService = Depends(get_booking_service),
):
    try:
        items = svc.list_available_teachers(ctx)
    except Exception as e:
        return error_response(e, "listando profesores")
    return {"ok": True, "items": items}


@router.get("/api/appointments/private-check")
async def api_private_check(
    teacher_id: int,
    date: str,
    time: str,
    teacher_type: Optional[str] = None,
    branch_id: Optional[int] = None,
    ctx: RequestContext = Depends(require_organization),
    svc: BookingService = Depends(get_booking_service),
):
    try:
        res = svc.check_private_class(ctx, teacher_id, teacher_type, date, time, branch_id)
    except Exception as e:
        return error_response(e, "verificando horario")
    return {"ok": True, **res}


@router.post("/api/appointments/coverage")
async def api_membership_coverage(
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: BookingService = Depends(get_booking_service),
):
    data = await read_json(request)
    student_ids = data.get("student_ids") or []
    if not isinstance(student_ids, list):
        student_ids = [student_ids]
    try:
        covered = svc.memberships.covered_student_ids(
            ctx, [int(x) for x in student_ids], data.get("service_id")
        )
    except (TypeError, ValueError):
        return JSONResponse(
            {"ok": False, "error": "Alumno inválido", "mensaje": "Alumno inválido"}, status_code=400
        )
    except Exception as e:
        return error_response(e, "verificando membresías")
    return {"ok": True, "covered_student_ids": sorted(covered)}


@router.post("/api/appointments")
async def api_create_appointment(
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: BookingService = Depends(get_booking_service),
):
    data = await read_json(request)
    try:
        res = svc.save_appointment(ctx, data)
    except Exception as e:
        return error_response(e, "agendando cita")
    return JSONResponse({"ok": True, **res}, status_code=201)


@router.get("/api/appointments/{appointment_id}")
async def api_get_appointment(
    appointment_id: int,
    ctx: RequestContext = Depends(require_organization),
    svc: BookingService = Depends(get_booking_service),
):
    try:
        return {"ok": True, "appointment": svc.get_appointment(ctx, appointment_id)}
    except Exception as e:
        return error_response(e, "obteniendo cita")


@router.put("/api/appointments/{appointment_id}")
async def api_update_appointment(
    appointment_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: BookingService = Depends(get_booking_service),
):
    data = await read_json(request)
    try:
        res = svc.save_appointment(ctx, data, appointment_id=appointment_id)
    except Exception as e:
        return error_response(e, "actualizando cita")
    return {"ok": True, **res}


@router.delete("/api/appointments/{appointment_id}")
async def api_delete_appointment(
    appointment_id: int,
    ctx: RequestContext = Depends(require_organization),
    svc: BookingService = Depends(get_booking_service),
):
    try:
        svc.delete_appointment(ctx, appointment_id)
    except Exception as e:
        return error_response(e, "eliminando cita")
    return {"ok": True, "mensaje": "Cita eliminada"}
