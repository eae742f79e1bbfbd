import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.dependencies import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter()

APP_NAME = "ALERIS.ops - Gestión de Academias"
APP_SHORT_NAME = "ALERIS.ops"
THEME_COLOR = "#000000"


def build_manifest() -> dict:
    return {
        "name": APP_NAME,
        "short_name": APP_SHORT_NAME,
        "description": "Sistema operativo para gestión de academias y staff.",
        "theme_color": THEME_COLOR,
        "background_color": THEME_COLOR,
        "display": "standalone",
        "start_url": "/",
        "scope": "/",
        "icons": [
            {"src": "/web-app-manifest-192x192.png", "sizes": "192x192", "type": "image/png"},
            {"src": "/web-app-manifest-512x512.png", "sizes": "512x512", "type": "image/png"},
            {
                "src": "/web-app-manifest-512x512.png",
                "sizes": "512x512",
                "type": "image/png",
                "purpose": "maskable",
            },
        ],
    }


@router.get("/manifest.webmanifest")
async def web_manifest():
    return JSONResponse(build_manifest(), media_type="application/manifest+json")


@router.get("/health")
async def health(db: Session = Depends(get_db_session)):
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check: base de datos no disponible: {e}")
        return JSONResponse({"status": "degraded", "database": "error"}, status_code=503)
    return {"status": "ok", "database": "ok"}
