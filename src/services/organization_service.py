"""
Organization Service

Tenant settings and branches, plus the platform-wide views used by the super
admin panel.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from src.services.base import BaseService, NotFoundError, ValidationError
from src.models.orm_models import Appointment, Branch, Organization, Profile, Student, Transaction
from src.utils import iso, to_float

logger = logging.getLogger(__name__)

LATEST_ORGANIZATIONS = 5


def organization_to_dict(o: Organization) -> Dict[str, Any]:
    return {
        "id": o.id,
        "name": o.name,
        "industry": o.industry,
        "created_at": iso(o.created_at),
    }


def branch_to_dict(b: Branch) -> Dict[str, Any]:
    return {
        "id": b.id,
        "organization_id": b.organization_id,
        "name": b.name,
        "address": b.address,
        "timezone": b.timezone,
        "created_at": iso(b.created_at),
    }


class OrganizationService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    # ========== Ajustes ==========

    def _own(self, ctx) -> Organization:
        org = self.db.get(Organization, self._org_id(ctx))
        if org is None:
            raise NotFoundError("Organización no encontrada")
        return org

    def get_settings(self, ctx) -> Dict[str, Any]:
        return organization_to_dict(self._own(ctx))

    def rename(self, ctx, name: Any) -> Dict[str, Any]:
        clean = str(name or "").strip()
        if not clean:
            raise ValidationError("El nombre es obligatorio")
        org = self._own(ctx)
        with self.unit_of_work():
            org.name = clean
        logger.info(f"Organización {org.id} renombrada")
        return organization_to_dict(org)

    # ========== Sedes ==========

    def list_branches(self, ctx) -> List[Dict[str, Any]]:
        rows = self.db.scalars(
            select(Branch).where(Branch.organization_id == self._org_id(ctx)).order_by(Branch.name)
        ).all()
        return [branch_to_dict(b) for b in rows]

    def create_branch(self, ctx, data: Dict[str, Any]) -> Dict[str, Any]:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("El nombre es obligatorio")
        with self.unit_of_work():
            b = Branch(
                organization_id=self._org_id(ctx),
                name=name,
                address=data.get("address") or None,
                timezone=data.get("timezone") or None,
            )
            self.db.add(b)
            self.db.flush()
            out = branch_to_dict(b)
        return out

    # ========== Super admin ==========

    def list_organizations(self) -> List[Dict[str, Any]]:
        rows = self.db.scalars(select(Organization).order_by(Organization.created_at.desc(), Organization.id.desc())).all()
        return [organization_to_dict(o) for o in rows]

    def get_organization_details(self, organization_id: Any) -> Dict[str, Any]:
        try:
            oid = int(organization_id)
        except (TypeError, ValueError):
            raise NotFoundError("Organización no encontrada")
        org = self.db.get(Organization, oid)
        if org is None:
            raise NotFoundError("Organización no encontrada")
        branches = self.db.scalars(select(Branch).where(Branch.organization_id == oid).order_by(Branch.name)).all()
        staff_count = self.db.scalar(select(func.count(Profile.id)).where(Profile.organization_id == oid)) or 0
        return {
            "organization": organization_to_dict(org),
            "branches": [branch_to_dict(b) for b in branches],
            "staff_count": int(staff_count),
        }

    def platform_stats(self) -> Dict[str, Any]:
        latest = self.db.scalars(
            select(Organization)
            .order_by(Organization.created_at.desc(), Organization.id.desc())
            .limit(LATEST_ORGANIZATIONS)
        ).all()
        return {
            "total_organizations": int(self.db.scalar(select(func.count(Organization.id))) or 0),
            "latest_organizations": [organization_to_dict(o) for o in latest],
            "total_students": int(self.db.scalar(select(func.count(Student.id))) or 0),
            "total_appointments": int(self.db.scalar(select(func.count(Appointment.id))) or 0),
            "total_revenue": to_float(
                self.db.scalar(select(func.coalesce(func.sum(Transaction.amount), 0)))
            ),
        }
