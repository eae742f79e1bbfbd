"""
Base Service

Common plumbing shared by every service: the bound session, the unit of work
used by multi-step writes, and the error types that routers translate into
HTTP responses.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Error de negocio con el status HTTP que debe devolver el router."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = int(status_code)

    def to_dict(self):
        return {"ok": False, "error": self.message, "mensaje": self.message}


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class PermissionDeniedError(ServiceError):
    status_code = 403


class ConflictError(ServiceError):
    status_code = 409


class BaseService:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """Commit al salir; rollback y re-raise ante cualquier error."""
        try:
            yield self.db
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def commit(self) -> None:
        self.db.commit()

    def _org_id(self, ctx) -> int:
        org_id = getattr(ctx, "organization_id", None)
        if not org_id:
            raise ValidationError("Sin organización asignada")
        return int(org_id)

    def _get_owned(self, model, obj_id: Any, ctx, label: str = "Registro"):
        """Fila por id dentro de la organización del contexto, o NotFoundError."""
        try:
            pk = int(obj_id)
        except (TypeError, ValueError):
            raise NotFoundError(f"{label} no encontrado")
        obj = self.db.get(model, pk)
        if obj is None or getattr(obj, "organization_id", None) != self._org_id(ctx):
            raise NotFoundError(f"{label} no encontrado")
        return obj
