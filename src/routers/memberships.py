import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from src.dependencies import get_membership_service, require_organization
from src.security.session_claims import RequestContext
from src.services.membership_service import MembershipService
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/api/enrollment/options")
async def api_enrollment_options(
    ctx: RequestContext = Depends(require_organization),
    svc: MembershipService = Depends(get_membership_service),
):
    try:
        return {"ok": True, **svc.list_enrollment_options(ctx)}
    except Exception as e:
        return error_response(e, "cargando opciones de inscripción")


@router.post("/api/enrollment/students")
async def api_quick_create_student(
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: MembershipService = Depends(get_membership_service),
):
    data = await read_json(request)
    try:
        student = svc.quick_create_student(ctx, data.get("first_name"), data.get("last_name"))
    except Exception as e:
        return error_response(e, "creando alumno")
    return JSONResponse({"ok": True, "student": student}, status_code=201)


@router.post("/api/enrollment")
async def api_enroll(
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: MembershipService = Depends(get_membership_service),
):
    data = await read_json(request)
    try:
        res = svc.enroll(ctx, data.get("student_id"), data.get("plan_id"), data.get("start_date"))
    except Exception as e:
        return error_response(e, "inscribiendo alumno")
    return JSONResponse({"ok": True, **res}, status_code=201)


@router.get("/api/students/{student_id}/memberships")
async def api_student_memberships(
    student_id: int,
    ctx: RequestContext = Depends(require_organization),
    svc: MembershipService = Depends(get_membership_service),
):
    try:
        items = svc.list_student_memberships(ctx, student_id)
    except Exception as e:
        return error_response(e, "listando membresías")
    return {"ok": True, "items": items}


@router.get("/api/students/{student_id}/coverage")
async def api_student_coverage(
    student_id: int,
    service_id: int,
    ctx: RequestContext = Depends(require_organization),
    svc: MembershipService = Depends(get_membership_service),
):
    try:
        covered = svc.is_student_covered(ctx, student_id, service_id)
    except Exception as e:
        return error_response(e, "verificando membresía")
    return {"ok": True, "student_id": student_id, "service_id": service_id, "covered": covered}
