"""
Finance Router - monthly ledger, payroll and receipts, income/expense entries, CSV export
Includes: teacher earnings (own classes) for staff users
"""
import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse, Response, StreamingResponse

from src.dependencies import get_finance_service, require_organization, require_owner
from src.security.session_claims import RequestContext
from src.services.finance_service import FinanceService
from src.utils import error_response, read_json

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/finance/summary")
async def api_finance_summary(
    year: Optional[int] = None,
    month: Optional[int] = None,
    ctx: RequestContext = Depends(require_owner),
    svc: FinanceService = Depends(get_finance_service),
):
    try:
        return {"ok": True, **svc.monthly_summary(ctx, year, month)}
    except Exception as e:
        return error_response(e, "resumen financiero")


@router.get("/api/finance/payroll")
async def api_finance_payroll(
    year: Optional[int] = None,
    month: Optional[int] = None,
    ctx: RequestContext = Depends(require_owner),
    svc: FinanceService = Depends(get_finance_service),
):
    try:
        return {"ok": True, **svc.organization_payroll(ctx, year, month)}
    except Exception as e:
        return error_response(e, "calculando nómina")


@router.post("/api/finance/payroll/pay")
async def api_finance_pay_payroll(
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: FinanceService = Depends(get_finance_service),
):
    data = await read_json(request)
    try:
        res = svc.pay_payroll(
            ctx,
            data.get("person_id"),
            data.get("person_type"),
            data.get("year"),
            data.get("month"),
        )
    except Exception as e:
        return error_response(e, "pagando nómina")
    return JSONResponse({"ok": True, **res}, status_code=201)


@router.get("/api/finance/payroll/receipt.pdf")
async def api_finance_payroll_receipt(
    person_id: int,
    person_type: str,
    year: Optional[int] = None,
    month: Optional[int] = None,
    ctx: RequestContext = Depends(require_owner),
    svc: FinanceService = Depends(get_finance_service),
):
    try:
        filename, pdf_bytes = svc.payroll_receipt(ctx, person_id, person_type, year, month)
    except Exception as e:
        return error_response(e, "generando comprobante de nómina")
    return Response(
        content=bytes(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/api/finance/income")
async def api_finance_income(
    request: Request,
    ctx: RequestContext = Depends(require_organization),
    svc: FinanceService = Depends(get_finance_service),
):
    data = await read_json(request)
    try:
        res = svc.record_income(
            ctx,
            data.get("student_id"),
            data.get("amount"),
            payment_method=data.get("payment_method") or "cash",
            concept=data.get("concept"),
            plan_id=data.get("plan_id"),
        )
    except Exception as e:
        return error_response(e, "registrando ingreso")
    return JSONResponse({"ok": True, **res}, status_code=201)


@router.post("/api/finance/expenses")
async def api_finance_expense(
    request: Request,
    ctx: RequestContext = Depends(require_owner),
    svc: FinanceService = Depends(get_finance_service),
):
    data = await read_json(request)
    try:
        res = svc.record_expense(
            ctx,
            data.get("amount"),
            data.get("category"),
            description=data.get("description"),
            payment_method=data.get("payment_method") or "cash",
        )
    except Exception as e:
        return error_response(e, "registrando gasto")
    return JSONResponse({"ok": True, **res}, status_code=201)


@router.get("/api/finance/export.csv")
async def api_finance_export(
    year: Optional[int] = None,
    month: Optional[int] = None,
    ctx: RequestContext = Depends(require_owner),
    svc: FinanceService = Depends(get_finance_service),
):
    try:
        content = svc.export_csv(ctx, year, month)
    except Exception as e:
        return error_response(e, "exportando movimientos")
    suffix = f"{year}-{int(month):02d}" if year and month else "mes"
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=finanzas_{suffix}.csv"},
    )


# ========== Profesor en sesión ==========


@router.get("/api/teacher/payroll")
async def api_teacher_payroll(
    year: Optional[int] = None,
    month: Optional[int] = None,
    ctx: RequestContext = Depends(require_organization),
    svc: FinanceService = Depends(get_finance_service),
):
    try:
        return {"ok": True, **svc.teacher_payroll(ctx, year, month)}
    except Exception as e:
        return error_response(e, "calculando ganancias")


@router.get("/api/teacher/today")
async def api_teacher_today(
    ctx: RequestContext = Depends(require_organization),
    svc: FinanceService = Depends(get_finance_service),
):
    try:
        return {"ok": True, **svc.teacher_today(ctx)}
    except Exception as e:
        return error_response(e, "cargando agenda del día")
