"""
Catalog Service - SQLAlchemy ORM Implementation

Services (what the academy sells per class) and membership plans, including
the plan <-> service access links.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from src.services.base import BaseService, ValidationError
from src.models.orm_models import Plan, PlanServiceAccess, Service
from src.utils import to_float

logger = logging.getLogger(__name__)


def load_plan_service_names(db: Session, plans: Iterable[Plan]) -> Dict[int, List[str]]:
    """Nombres de servicios por plan: primero los enlaces, si no el servicio legado."""
    plans = list(plans)
    if not plans:
        return {}
    plan_ids = [p.id for p in plans]
    rows = db.execute(
        select(PlanServiceAccess.plan_id, Service.name)
        .join(Service, Service.id == PlanServiceAccess.service_id)
        .where(PlanServiceAccess.plan_id.in_(plan_ids))
        .order_by(Service.name)
    ).all()
    out: Dict[int, List[str]] = {pid: [] for pid in plan_ids}
    for plan_id, name in rows:
        out[int(plan_id)].append(name)

    legacy_ids = {p.service_id for p in plans if not out[p.id] and p.service_id}
    if legacy_ids:
        names = dict(
            db.execute(select(Service.id, Service.name).where(Service.id.in_(legacy_ids))).all()
        )
        for p in plans:
            if not out[p.id] and p.service_id in names:
                out[p.id] = [names[p.service_id]]
    return out


def service_to_dict(s: Service) -> Dict[str, Any]:
    return {
        "id": s.id,
        "name": s.name,
        "description": s.description,
        "price": to_float(s.price),
        "is_active": bool(s.is_active),
    }


def plan_to_dict(p: Plan, service_names: Optional[List[str]] = None, service_ids: Optional[List[int]] = None) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "price": to_float(p.price),
        "duration_days": int(p.duration_days),
        "class_limit": p.class_limit,
        "service_id": p.service_id,
        "service_ids": service_ids if service_ids is not None else [],
        "service_names": service_names or [],
        "is_active": bool(p.is_active),
    }


class CatalogService(BaseService):
    """Servicios y planes de la organización."""

    def __init__(self, db: Session):
        super().__init__(db)

    # =========================================================================
    # SERVICIOS
    # =========================================================================

    def list_services(self, ctx, include_archived: bool = True) -> List[Dict[str, Any]]:
        stmt = select(Service).where(Service.organization_id == self._org_id(ctx)).order_by(Service.name)
        if not include_archived:
            stmt = stmt.where(Service.is_active.is_(True))
        return [service_to_dict(s) for s in self.db.scalars(stmt).all()]

    def _validate_service(self, data: Dict[str, Any]) -> Dict[str, Any]:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("El nombre es obligatorio")
        price = to_float(data.get("price"), -1.0)
        if price < 0:
            raise ValidationError("El precio debe ser mayor o igual a 0")
        return {"name": name, "price": price, "description": data.get("description")}

    def create_service(self, ctx, data: Dict[str, Any]) -> Dict[str, Any]:
        clean = self._validate_service(data)
        with self.unit_of_work():
            svc = Service(
                organization_id=self._org_id(ctx),
                name=clean["name"],
                description=clean["description"],
                price=clean["price"],
                is_active=True,
            )
            self.db.add(svc)
            self.db.flush()
            out = service_to_dict(svc)
        logger.info(f"Servicio creado {out['id']} ({out['name']}) org={ctx.organization_id}")
        return out

    def update_service(self, ctx, service_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        svc = self._get_owned(Service, service_id, ctx, "Servicio")
        clean = self._validate_service(data)
        with self.unit_of_work():
            svc.name = clean["name"]
            svc.price = clean["price"]
            svc.description = clean["description"]
        return service_to_dict(svc)

    def toggle_service_archive(self, ctx, service_id: int) -> Dict[str, Any]:
        svc = self._get_owned(Service, service_id, ctx, "Servicio")
        with self.unit_of_work():
            svc.is_active = not bool(svc.is_active)
        return service_to_dict(svc)

    # =========================================================================
    # PLANES
    # =========================================================================

    def _plan_service_ids(self, plan_ids: List[int]) -> Dict[int, List[int]]:
        out: Dict[int, List[int]] = {pid: [] for pid in plan_ids}
        if not plan_ids:
            return out
        rows = self.db.execute(
            select(PlanServiceAccess.plan_id, PlanServiceAccess.service_id).where(
                PlanServiceAccess.plan_id.in_(plan_ids)
            ).order_by(PlanServiceAccess.service_id)
        ).all()
        for plan_id, service_id in rows:
            out[int(plan_id)].append(int(service_id))
        return out

    def list_plans(self, ctx, include_archived: bool = True) -> List[Dict[str, Any]]:
        stmt = select(Plan).where(Plan.organization_id == self._org_id(ctx)).order_by(Plan.name)
        if not include_archived:
            stmt = stmt.where(Plan.is_active.is_(True))
        plans = self.db.scalars(stmt).all()
        names = load_plan_service_names(self.db, plans)
        ids = self._plan_service_ids([p.id for p in plans])
        return [plan_to_dict(p, names.get(p.id), ids.get(p.id)) for p in plans]

    def _validate_plan(self, ctx, data: Dict[str, Any]) -> Dict[str, Any]:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("El nombre es obligatorio")
        price = to_float(data.get("price"), -1.0)
        if price < 0:
            raise ValidationError("El precio debe ser mayor o igual a 0")
        raw_duration = data.get("duration_days")
        try:
            duration = int(raw_duration) if raw_duration not in (None, "") else 30
        except (TypeError, ValueError):
            raise ValidationError("La duración debe ser un número de días")
        if duration <= 0:
            raise ValidationError("La duración debe ser mayor a 0 días")
        class_limit = data.get("class_limit")
        try:
            class_limit = int(class_limit) if class_limit not in (None, "") else None
        except (TypeError, ValueError):
            raise ValidationError("El límite de clases debe ser numérico")

        org_id = self._org_id(ctx)
        raw_ids = data.get("service_ids")
        service_ids: Optional[List[int]] = None
        if isinstance(raw_ids, list):
            try:
                service_ids = sorted({int(x) for x in raw_ids})
            except (TypeError, ValueError):
                raise ValidationError("service_ids inválidos")
        legacy = data.get("service_id")
        try:
            legacy_id = int(legacy) if legacy not in (None, "") else None
        except (TypeError, ValueError):
            raise ValidationError("service_id inválido")

        check_ids = set(service_ids or [])
        if legacy_id:
            check_ids.add(legacy_id)
        if check_ids:
            found = set(
                self.db.scalars(
                    select(Service.id).where(Service.id.in_(check_ids), Service.organization_id == org_id)
                ).all()
            )
            if found != check_ids:
                raise ValidationError("Servicio inválido para este plan")
        return {
            "name": name,
            "price": price,
            "duration_days": duration,
            "class_limit": class_limit,
            "service_ids": service_ids,
            "service_id": legacy_id,
        }

    def _write_access(self, plan: Plan, service_ids: Optional[List[int]]) -> None:
        if service_ids is None:
            return
        self.db.execute(delete(PlanServiceAccess).where(PlanServiceAccess.plan_id == plan.id))
        for sid in service_ids:
            self.db.add(PlanServiceAccess(plan_id=plan.id, service_id=sid))

    def _plan_out(self, plan: Plan) -> Dict[str, Any]:
        names = load_plan_service_names(self.db, [plan])
        ids = self._plan_service_ids([plan.id])
        return plan_to_dict(plan, names.get(plan.id), ids.get(plan.id))

    def create_plan(self, ctx, data: Dict[str, Any]) -> Dict[str, Any]:
        clean = self._validate_plan(ctx, data)
        with self.unit_of_work():
            plan = Plan(
                organization_id=self._org_id(ctx),
                name=clean["name"],
                price=clean["price"],
                duration_days=clean["duration_days"],
                class_limit=clean["class_limit"],
                service_id=clean["service_id"],
                is_active=True,
            )
            self.db.add(plan)
            self.db.flush()
            self._write_access(plan, clean["service_ids"])
        logger.info(f"Plan creado {plan.id} ({plan.name}) org={ctx.organization_id}")
        return self._plan_out(plan)

    def update_plan(self, ctx, plan_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        plan = self._get_owned(Plan, plan_id, ctx, "Plan")
        clean = self._validate_plan(ctx, data)
        with self.unit_of_work():
            plan.name = clean["name"]
            plan.price = clean["price"]
            plan.duration_days = clean["duration_days"]
            plan.class_limit = clean["class_limit"]
            plan.service_id = clean["service_id"]
            self._write_access(plan, clean["service_ids"])
        return self._plan_out(plan)

    def toggle_plan_archive(self, ctx, plan_id: int) -> Dict[str, Any]:
        plan = self._get_owned(Plan, plan_id, ctx, "Plan")
        with self.unit_of_work():
            plan.is_active = not bool(plan.is_active)
        return self._plan_out(plan)
