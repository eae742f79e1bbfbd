"""
Membership Service - SQLAlchemy ORM Implementation

Membership coverage rules and the enrollment flow. `activate_membership` is the
only place that creates membership rows; the finance "sell plan" path goes
through it too.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import select, exists, or_
from sqlalchemy.orm import Session

from src.services.base import BaseService, ValidationError
from src.services.catalog_service import load_plan_service_names, plan_to_dict
from src.models.orm_models import Membership, Plan, PlanServiceAccess, Student
from src.utils import local_today, parse_date, to_float, iso

logger = logging.getLogger(__name__)


def plan_covers_service(service_id: int):
    """Cláusula: el plan de la membresía da acceso al servicio (enlace o legado)."""
    junction = exists().where(
        PlanServiceAccess.plan_id == Plan.id,
        PlanServiceAccess.service_id == service_id,
    )
    return or_(junction, Plan.service_id == service_id)


def student_to_dict(s: Student) -> Dict[str, Any]:
    return {
        "id": s.id,
        "first_name": s.first_name,
        "last_name": s.last_name or "",
        "email": s.email,
        "phone": s.phone,
        "branch_id": s.branch_id,
        "notes": s.notes,
        "created_at": iso(s.created_at),
    }


def membership_to_dict(m: Membership, plan: Optional[Plan] = None) -> Dict[str, Any]:
    out = {
        "id": m.id,
        "student_id": m.student_id,
        "plan_id": m.plan_id,
        "start_date": iso(m.start_date),
        "end_date": iso(m.end_date),
        "price_paid": to_float(m.price_paid) if m.price_paid is not None else None,
        "status": m.status,
    }
    if plan is not None:
        out["plan"] = {"id": plan.id, "name": plan.name, "duration_days": plan.duration_days}
    return out


class MembershipService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    # ========== Cobertura ==========

    def covered_student_ids(
        self,
        ctx,
        student_ids: Iterable[int],
        service_id: Optional[int],
        today: Optional[date] = None,
    ) -> Set[int]:
        """Alumnos con membresía activa y vigente cuyo plan cubre el servicio.

        Una sola consulta para todo el lote.
        """
        ids = {int(x) for x in student_ids}
        if not ids or not service_id:
            return set()
        today = today or local_today()
        stmt = (
            select(Membership.student_id)
            .join(Plan, Plan.id == Membership.plan_id)
            .where(
                Membership.organization_id == self._org_id(ctx),
                Membership.student_id.in_(ids),
                Membership.status == "active",
                Membership.end_date >= today,
                plan_covers_service(int(service_id)),
            )
            .distinct()
        )
        return {int(x) for x in self.db.scalars(stmt).all()}

    def is_student_covered(self, ctx, student_id: int, service_id: int, today: Optional[date] = None) -> bool:
        return int(student_id) in self.covered_student_ids(ctx, [student_id], service_id, today)

    # ========== Alta de membresías ==========

    def activate_membership(
        self,
        ctx,
        *,
        student: Student,
        plan: Plan,
        start_date: Optional[date] = None,
        price_paid: Optional[Any] = None,
    ) -> Membership:
        """Agrega la membresía a la sesión sin commit; el llamador decide la transacción."""
        sd = start_date or local_today()
        m = Membership(
            organization_id=self._org_id(ctx),
            student_id=student.id,
            plan_id=plan.id,
            start_date=sd,
            end_date=sd + timedelta(days=int(plan.duration_days)),
            price_paid=Decimal(str(price_paid)) if price_paid is not None else None,
            status="active",
        )
        self.db.add(m)
        self.db.flush()
        logger.info(
            f"Membresía {m.id} activada: alumno={student.id} plan={plan.id} "
            f"{m.start_date}..{m.end_date}"
        )
        return m

    def enroll(
        self,
        ctx,
        student_id: int,
        plan_id: int,
        start_date: Optional[Any] = None,
    ) -> Dict[str, Any]:
        if not student_id or not plan_id:
            raise ValidationError("Selecciona un alumno y un plan")
        student = self._get_owned(Student, student_id, ctx, "Alumno")
        plan = self._get_owned(Plan, plan_id, ctx, "Plan")
        sd = parse_date(start_date) if start_date else None
        if start_date and sd is None:
            raise ValidationError("Fecha de inicio inválida")
        with self.unit_of_work():
            m = self.activate_membership(ctx, student=student, plan=plan, start_date=sd)
            out = membership_to_dict(m, plan)
        mensaje = (
            f'¡{student.first_name} inscrito en "{plan.name}"! '
            f"Vigencia: {int(plan.duration_days)} días."
        )
        return {"membership": out, "mensaje": mensaje}

    # ========== Alumnos rápidos y opciones ==========

    def quick_create_student(self, ctx, first_name: Any, last_name: Any = "") -> Dict[str, Any]:
        fn = str(first_name or "").strip()
        if not fn:
            raise ValidationError("El nombre es obligatorio")
        ln = str(last_name or "").strip()
        with self.unit_of_work():
            s = Student(
                organization_id=self._org_id(ctx),
                branch_id=ctx.branch_id,
                first_name=fn,
                last_name=ln,
            )
            self.db.add(s)
            self.db.flush()
            out = student_to_dict(s)
        return out

    def list_enrollment_options(self, ctx) -> Dict[str, Any]:
        org_id = self._org_id(ctx)
        students = self.db.scalars(
            select(Student).where(Student.organization_id == org_id).order_by(Student.first_name)
        ).all()
        plans = self.db.scalars(
            select(Plan)
            .where(Plan.organization_id == org_id, Plan.is_active.is_(True))
            .order_by(Plan.name)
        ).all()
        names = load_plan_service_names(self.db, plans)
        return {
            "students": [student_to_dict(s) for s in students],
            "plans": [plan_to_dict(p, names.get(p.id)) for p in plans],
        }

    def list_student_memberships(self, ctx, student_id: int, today: Optional[date] = None) -> List[Dict[str, Any]]:
        student = self._get_owned(Student, student_id, ctx, "Alumno")
        today = today or local_today()
        rows = self.db.execute(
            select(Membership, Plan)
            .join(Plan, Plan.id == Membership.plan_id)
            .where(
                Membership.student_id == student.id,
                Membership.status == "active",
                Membership.end_date >= today,
            )
            .order_by(Membership.end_date.desc())
        ).all()
        return [membership_to_dict(m, p) for m, p in rows]
