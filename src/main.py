"""
ALERIS.ops API
FastAPI backend for studio and academy management
Multi-tenant API: scheduling, attendance, billing, staff and memberships
"""

import os
import json
import hashlib
import logging
import time
import threading
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from src.dependencies import get_db_session
from src.services.auth_service import AuthService
from src.utils import get_session_secret, is_development_mode

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FUNCTIONS_PREFIX = "/functions/"

_API_GET_CACHE: dict[str, dict] = {}
_API_GET_CACHE_LOCK = threading.RLock()
try:
    _API_GET_CACHE_TTL_MS = int(os.getenv("API_GET_CACHE_TTL_MS", "5000"))
except ValueError:
    _API_GET_CACHE_TTL_MS = 5000
try:
    _API_GET_CACHE_MAX = int(os.getenv("API_GET_CACHE_MAX", "600"))
except ValueError:
    _API_GET_CACHE_MAX = 600

# ============================================================================
# STARTUP CONFIGURATION VALIDATION
# ============================================================================
# Log database configuration status (without exposing sensitive values)
_has_database_url = bool(os.getenv("DATABASE_URL"))
_db_host = os.getenv("DB_HOST", "localhost")
_db_name = os.getenv("DB_NAME", "")
_db_user = os.getenv("DB_USER", "postgres")
_has_password = bool(os.getenv("DB_PASSWORD"))

logger.info("=" * 60)
logger.info("ALERIS.ops API STARTUP - Database Configuration")
logger.info("=" * 60)
logger.info(f"DATABASE_URL: {'***configured***' if _has_database_url else '(not set)'}")
if not _has_database_url:
    logger.info(f"DB_HOST: {_db_host}")
    logger.info(f"DB_NAME: {_db_name or '(not set)'}")
    logger.info(f"DB_USER: {_db_user}")
    logger.info(f"DB_PASSWORD: {'***configured***' if _has_password else '(NOT SET)'}")
logger.info(f"APP_TIMEZONE: {os.getenv('APP_TIMEZONE', 'America/Bogota')}")

is_dev = is_development_mode()
if not _has_database_url and _db_host == "localhost" and not is_dev:
    logger.warning("⚠️  DB_HOST is 'localhost' but DEVELOPMENT_MODE not set!")
    logger.warning("⚠️  This may indicate missing production environment configuration.")

logger.info("=" * 60)

# Initialize FastAPI app
app = FastAPI(
    title="ALERIS.ops API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)


def _session_value(request: Request, key: str) -> str:
    return str(request.session.get(key) or "")


def _cache_key(request: Request) -> str:
    org = _session_value(request, "organization_id")
    role = _session_value(request, "role")
    uid = _session_value(request, "user_id")
    q = str(request.url.query or "")
    return f"{org}|{request.url.path}|{q}|{role}|{uid}"


def _profile_still_exists(user_id: str) -> bool:
    """Cache hits skip the route dependencies, so the session profile is re-checked here."""
    provider = app.dependency_overrides.get(get_db_session, get_db_session)
    sessions = provider()
    db = next(sessions)
    try:
        return AuthService(db).get_profile(user_id) is not None
    finally:
        sessions.close()


def _apply_security_headers(response: Response) -> Response:
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "same-origin")
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    return response


def _normalize_envelope(payload: dict, status_code: int) -> dict:
    """Every /api/ JSON object carries ok, success, mensaje and message."""
    if "ok" not in payload:
        payload["ok"] = bool(payload.get("success")) if "success" in payload else status_code < 400
    if "success" not in payload:
        payload["success"] = bool(payload.get("ok"))
    if "mensaje" not in payload:
        if "message" in payload:
            payload["mensaje"] = payload.get("message")
        elif "detail" in payload:
            payload["mensaje"] = payload.get("detail")
        elif "error" in payload:
            payload["mensaje"] = payload.get("error")
        else:
            payload["mensaje"] = "OK" if bool(payload.get("ok")) else "Error"
    if "message" not in payload:
        payload["message"] = payload.get("mensaje")
    return payload


def _with_body(response: Response, body: bytes) -> Response:
    rebuilt = Response(content=body, status_code=response.status_code)
    rebuilt.raw_headers = [
        (k, v) for k, v in response.raw_headers if k.lower() != b"content-length"
    ] + [(b"content-length", str(len(body)).encode("latin-1"))]
    return rebuilt


@app.middleware("http")
async def api_envelope_middleware(request: Request, call_next):
    """Normalizes /api/ JSON bodies and serves short-lived GET cache hits."""
    path = str(request.url.path)
    is_api = path.startswith("/api/")

    if is_api and request.method != "GET":
        with _API_GET_CACHE_LOCK:
            _API_GET_CACHE.clear()

    ck = None
    if is_api and request.method == "GET" and _API_GET_CACHE_TTL_MS > 0:
        ck = _cache_key(request)
        now_ms = int(time.time() * 1000)
        with _API_GET_CACHE_LOCK:
            ent = _API_GET_CACHE.get(ck)
        if ent and now_ms - int(ent["ts"]) < _API_GET_CACHE_TTL_MS:
            uid = _session_value(request, "user_id")
            if uid and _profile_still_exists(uid):
                return _apply_security_headers(
                    Response(
                        content=ent["body"],
                        status_code=200,
                        media_type="application/json",
                        headers=dict(ent["headers"]),
                    )
                )
            with _API_GET_CACHE_LOCK:
                _API_GET_CACHE.pop(ck, None)

    response = await call_next(request)

    content_type = (response.headers.get("content-type") or "").lower()
    if is_api and "application/json" in content_type:
        body = b"".join([chunk async for chunk in response.body_iterator])
        try:
            payload = json.loads(body.decode("utf-8")) if body else None
        except ValueError:
            logger.warning(f"Respuesta JSON inválida en {path}")
            payload = None
        if isinstance(payload, dict):
            body = json.dumps(_normalize_envelope(payload, response.status_code), ensure_ascii=False).encode(
                "utf-8"
            )
        response = _with_body(response, body)

        if request.method == "GET" and response.status_code == 200:
            etag = f'"{hashlib.sha256(body).hexdigest()}"'
            response.headers["ETag"] = etag
            response.headers["Vary"] = "Cookie, Origin"
            if ck is not None:
                with _API_GET_CACHE_LOCK:
                    if len(_API_GET_CACHE) >= _API_GET_CACHE_MAX:
                        _API_GET_CACHE.clear()
                    _API_GET_CACHE[ck] = {
                        "ts": int(time.time() * 1000),
                        "body": bytes(body),
                        "headers": {"ETag": etag, "Vary": "Cookie, Origin"},
                    }

    return _apply_security_headers(response)


# Session middleware (added after the envelope middleware so it wraps it and
# request.session is available there)
same_site_env = str(os.getenv("SESSION_SAMESITE") or "").strip().lower()
same_site = same_site_env if same_site_env in ("lax", "none", "strict") else "lax"

app.add_middleware(
    SessionMiddleware,
    secret_key=get_session_secret(),
    https_only=not is_dev,
    same_site=same_site,
    session_cookie=os.getenv("SESSION_COOKIE", "aleris_session"),
)

# CORS: the SPA origin plus local dev servers
app_base_url = str(os.getenv("APP_BASE_URL") or "").strip().rstrip("/")
allowed_origins = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://localhost:8000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8000",
]
if app_base_url:
    allowed_origins.insert(0, app_base_url)

# Add Vercel preview URLs if available
vercel_url = os.getenv("VERCEL_URL")
if vercel_url:
    allowed_origins.append(f"https://{vercel_url}")


class AppCORSMiddleware(CORSMiddleware):
    """Allow-list CORS for the app; /functions/ routes answer their own CORS headers."""

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and str(scope.get("path") or "").startswith(FUNCTIONS_PREFIX):
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


app.add_middleware(
    AppCORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _startup_auto_migrate() -> None:
    should = str(os.getenv("AUTO_MIGRATE", "false")).strip().lower() in ("1", "true", "yes", "on")
    if not should:
        return
    required = str(os.getenv("AUTO_MIGRATE_REQUIRED", "true")).strip().lower() in (
        "1",
        "true",
        "yes",
        "on",
    )
    try:
        from src.database.connection import get_database_url
        from src.database.migration_runner import upgrade_head

        root = Path(__file__).resolve().parents[1]
        upgrade_head(
            sqlalchemy_url=get_database_url(),
            cfg_path=str((root / "alembic.ini").resolve()),
            script_location=str((root / "alembic").resolve()),
            lock_name="aleris-db",
            lock_timeout_seconds=300,
        )
    except Exception as e:
        logger.error(f"Auto-migrate failed: {e}")
        if required:
            raise


# Routes
@app.get("/")
async def root():
    return {"name": "ALERIS.ops API", "version": "1.0.0", "status": "running"}


# Import all routers
from src.routers import auth, students, catalog, memberships
from src.routers import appointments, attendance
from src.routers import finance, dashboard
from src.routers import staff, organizations
from src.routers import functions, public

# Include routers
app.include_router(auth.router, tags=["Auth"])
app.include_router(students.router, tags=["Students"])
app.include_router(catalog.router, tags=["Catalog"])
app.include_router(memberships.router, tags=["Memberships"])
app.include_router(appointments.router, tags=["Appointments"])
app.include_router(attendance.router, tags=["Attendance"])
app.include_router(finance.router, tags=["Finance"])
app.include_router(dashboard.router, tags=["Dashboard"])
app.include_router(staff.router, tags=["Staff"])
app.include_router(organizations.router, tags=["Organizations"])
app.include_router(functions.router, tags=["Functions"])
app.include_router(public.router, tags=["Public"])
