import logging

from fastapi import APIRouter, Depends

from src.dependencies import get_finance_service, require_organization
from src.security.session_claims import RequestContext
from src.services.finance_service import FinanceService
from src.utils import error_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/dashboard/stats")
async def api_dashboard_stats(
    ctx: RequestContext = Depends(require_organization),
    svc: FinanceService = Depends(get_finance_service),
):
    try:
        return {"ok": True, **svc.dashboard_stats(ctx)}
    except Exception as e:
        return error_response(e, "cargando dashboard")
