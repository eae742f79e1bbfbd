import os
import logging
import calendar
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi.responses import JSONResponse

from src.services.base import ServiceError

logger = logging.getLogger(__name__)

MONTH_ABBR_ES = [
    "", "ene", "feb", "mar", "abr", "may", "jun",
    "jul", "ago", "sep", "oct", "nov", "dic",
]


def _is_truthy(value: Any) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def is_development_mode() -> bool:
    return _is_truthy(os.getenv("DEVELOPMENT_MODE")) or str(os.getenv("ENV", "")).strip().lower() in (
        "dev",
        "development",
        "local",
        "test",
    )


DEV_SESSION_SECRET = "aleris-dev-session-secret"
WEAK_SESSION_SECRETS = (DEV_SESSION_SECRET, "changeme", "password", "secret")


def get_session_secret() -> str:
    env = os.getenv("SESSION_SECRET", "").strip()
    if is_development_mode():
        return env or DEV_SESSION_SECRET
    if not env or env in WEAK_SESSION_SECRETS:
        raise RuntimeError("SESSION_SECRET requerido y debe ser fuerte en producción")
    return env


def get_app_timezone():
    tz_name = os.getenv("APP_TIMEZONE") or "America/Bogota"
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning(f"Zona horaria desconocida {tz_name}, usando UTC")
        return ZoneInfo("UTC")


def local_now() -> datetime:
    """Hora local de la academia, sin tzinfo (así se guardan las fechas)."""
    return datetime.now(get_app_timezone()).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def month_range(year: int, month: int) -> Tuple[datetime, datetime]:
    if month < 1 or month > 12:
        raise ValueError(f"Mes inválido: {month}")
    start = datetime(int(year), int(month), 1)
    last = calendar.monthrange(int(year), int(month))[1]
    return start, start + timedelta(days=last)


def month_label(year: int, month: int) -> str:
    return f"{MONTH_ABBR_ES[int(month)]} {int(year)}"


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    s = str(value).strip().replace("Z", "+00:00")
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(get_app_timezone()).replace(tzinfo=None)
    return dt


def parse_hhmm(value: Any) -> Optional[time]:
    s = str(value or "").strip()
    if not s:
        return None
    try:
        return time.fromisoformat(s[:5])
    except ValueError:
        return None


def hhmm(value: Any) -> str:
    """Formato HH:MM para time, datetime o cadenas tipo 'HH:MM:SS'."""
    if value is None:
        return ""
    if isinstance(value, (datetime, time)):
        return value.strftime("%H:%M")
    return str(value)[:5]


def to_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def error_response(exc: Exception, action: str = "") -> JSONResponse:
    """Traduce errores de servicio a JSON; los inesperados se loguean y devuelven 500."""
    if isinstance(exc, ServiceError):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)
    logger.exception(f"Error inesperado{' ' + action if action else ''}: {exc}")
    return JSONResponse(
        {"ok": False, "error": str(exc), "mensaje": "Error interno del servidor"},
        status_code=500,
    )


async def read_json(request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
