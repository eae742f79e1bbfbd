import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse

from src.dependencies import get_student_service, require_organization
from src.security.session_claims import RequestContext
from src.services.student_service import StudentService
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/students")
async def api_list_students(
    q: Optional[str] = None,
    ctx: RequestContext = Depends(require_organization),
    svc: StudentService = Depends(get_student_service),
):
    try:
        items = svc.list_students(ctx, search=q)
    except Exception as e:
        return error_response(e, "listando alumnos")
    return {"ok": True, "items": items, "total": len(items)}


@router.post("/api/students")
async def api_create_student(
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: StudentService = Depends(get_student_service),
):
    data = await read_json(request)
    try:
        student = svc.create_student(ctx, data)
    except Exception as e:
        return error_response(e, "creando alumno")
    return JSONResponse(
        {"ok": True, "student": student, "mensaje": "Alumno creado"}, status_code=201
    )


@router.get("/api/students/{student_id}")
async def api_student_detail(
    student_id: int,
    ctx: RequestContext = Depends(require_organization),
    svc: StudentService = Depends(get_student_service),
):
    try:
        return {"ok": True, **svc.get_student_detail(ctx, student_id)}
    except Exception as e:
        return error_response(e, "obteniendo alumno")


@router.put("/api/students/{student_id}/notes")
async def api_update_student_notes(
    student_id: int,
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: StudentService = Depends(get_student_service),
):
    data = await read_json(request)
    try:
        student = svc.update_notes(ctx, student_id, data.get("notes"))
    except Exception as e:
        return error_response(e, "guardando notas")
    return {"ok": True, "student": student, "mensaje": "Notas guardadas"}
