"""
Student Service - SQLAlchemy ORM Implementation

Client list with the derived solvency label, creation, notes and the detail
view (active memberships and payment history).
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from src.services.base import BaseService, ValidationError
from src.services.membership_service import membership_to_dict, student_to_dict
from src.models.orm_models import Membership, Plan, Student, Transaction
from src.utils import iso, local_now, to_float

logger = logging.getLogger(__name__)

SOLVENCY_WINDOW_DAYS = 30
HISTORY_LIMIT = 10


def solvency_labels(
    db: Session,
    organization_id: int,
    student_ids: Iterable[int],
    now: Optional[datetime] = None,
) -> Dict[int, str]:
    """solvente / moroso / sin_pagos por alumno.

    solvente: membresía activa vigente o un pago en los últimos 30 días.
    moroso: tuvo pagos o membresías, pero ninguno de los anteriores.
    """
    ids = [int(x) for x in student_ids]
    if not ids:
        return {}
    now = now or local_now()
    today = now.date()
    since = now - timedelta(days=SOLVENCY_WINDOW_DAYS)

    active = set(
        db.scalars(
            select(Membership.student_id).where(
                Membership.organization_id == organization_id,
                Membership.student_id.in_(ids),
                Membership.status == "active",
                Membership.end_date >= today,
            )
        ).all()
    )
    recent_paid = set(
        db.scalars(
            select(Transaction.student_id).where(
                Transaction.organization_id == organization_id,
                Transaction.student_id.in_(ids),
                Transaction.created_at >= since,
            )
        ).all()
    )
    any_history = set(
        db.scalars(
            select(Membership.student_id).where(
                Membership.organization_id == organization_id, Membership.student_id.in_(ids)
            )
        ).all()
    ) | set(
        db.scalars(
            select(Transaction.student_id).where(
                Transaction.organization_id == organization_id, Transaction.student_id.in_(ids)
            )
        ).all()
    )

    out: Dict[int, str] = {}
    for sid in ids:
        if sid in active or sid in recent_paid:
            out[sid] = "solvente"
        elif sid in any_history:
            out[sid] = "moroso"
        else:
            out[sid] = "sin_pagos"
    return out


def transaction_to_dict(t: Transaction) -> Dict[str, Any]:
    return {
        "id": t.id,
        "student_id": t.student_id,
        "branch_id": t.branch_id,
        "amount": to_float(t.amount),
        "payment_method": t.payment_method,
        "concept": t.concept,
        "created_at": iso(t.created_at),
    }


class StudentService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    def list_students(self, ctx, search: Optional[str] = None) -> List[Dict[str, Any]]:
        org_id = self._org_id(ctx)
        stmt = (
            select(Student)
            .where(Student.organization_id == org_id)
            .order_by(Student.last_name, Student.first_name, Student.id)
        )
        if ctx.branch_scope:
            stmt = stmt.where(Student.branch_id == ctx.branch_scope)
        term = str(search or "").strip().lower()
        if term:
            pattern = f"%{term}%"
            stmt = stmt.where(
                or_(
                    func.lower(Student.first_name).like(pattern),
                    func.lower(Student.last_name).like(pattern),
                    func.lower(Student.first_name + " " + Student.last_name).like(pattern),
                )
            )
        students = self.db.scalars(stmt).all()
        labels = solvency_labels(self.db, org_id, [s.id for s in students])
        out = []
        for s in students:
            item = student_to_dict(s)
            item["status_label"] = labels.get(s.id, "sin_pagos")
            out.append(item)
        return out

    def create_student(self, ctx, data: Dict[str, Any]) -> Dict[str, Any]:
        first_name = str(data.get("first_name") or "").strip()
        if not first_name:
            raise ValidationError("El nombre es obligatorio")
        with self.unit_of_work():
            s = Student(
                organization_id=self._org_id(ctx),
                branch_id=ctx.branch_id,
                first_name=first_name,
                last_name=str(data.get("last_name") or "").strip(),
                email=(str(data.get("email")).strip() or None) if data.get("email") else None,
                phone=(str(data.get("phone")).strip() or None) if data.get("phone") else None,
                notes=data.get("notes") or None,
            )
            self.db.add(s)
            self.db.flush()
            out = student_to_dict(s)
        logger.info(f"Alumno creado {out['id']} org={ctx.organization_id}")
        return out

    def update_notes(self, ctx, student_id: int, notes: Optional[str]) -> Dict[str, Any]:
        s = self._get_owned(Student, student_id, ctx, "Alumno")
        with self.unit_of_work():
            s.notes = notes or None
        return student_to_dict(s)

    def get_student_detail(self, ctx, student_id: int) -> Dict[str, Any]:
        s = self._get_owned(Student, student_id, ctx, "Alumno")
        memberships = self.db.execute(
            select(Membership, Plan)
            .join(Plan, Plan.id == Membership.plan_id)
            .where(Membership.student_id == s.id, Membership.status == "active")
            .order_by(Membership.end_date)
        ).all()
        history = self.db.scalars(
            select(Transaction)
            .where(Transaction.student_id == s.id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(HISTORY_LIMIT)
        ).all()
        item = student_to_dict(s)
        item["status_label"] = solvency_labels(self.db, s.organization_id, [s.id]).get(s.id, "sin_pagos")
        return {
            "student": item,
            "active_memberships": [membership_to_dict(m, p) for m, p in memberships],
            "history": [transaction_to_dict(t) for t in history],
        }
