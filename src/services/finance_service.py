"""
Finance Service - SQLAlchemy ORM Implementation

Monthly ledger (transactions and expenses), payroll computed from private
classes, teacher-facing payroll and agenda, and the dashboard KPIs.
Payroll is never persisted: it is recomputed on every read and paying it only
records an expense.
"""

import csv
import io
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from src.services.base import BaseService, NotFoundError, ValidationError
from src.services.booking_service import PAYMENT_METHODS, load_attendees
from src.services.membership_service import MembershipService
from src.services.payroll_receipt import build_payroll_receipt, receipt_filename
from src.services.student_service import solvency_labels, transaction_to_dict
from src.models.orm_models import (
    Appointment,
    AppointmentAttendee,
    BranchStaff,
    Expense,
    Plan,
    Profile,
    Professional,
    Service,
    Student,
    Transaction,
)
from src.utils import day_bounds, hhmm, iso, local_now, local_today, month_label, month_range, to_float

logger = logging.getLogger(__name__)

PAYROLL_CATEGORY = "nómina"
PAYROLL_PAYMENT_METHOD = "transfer"
CSV_HEADERS = ["Fecha", "Tipo", "Categoria", "Metodo", "Monto", "Detalle"]
# Días hábiles con los que se estima la comisión por alumno del profesor
TEACHER_WORKING_DAYS = 20


def expense_to_dict(e: Expense) -> Dict[str, Any]:
    return {
        "id": e.id,
        "amount": to_float(e.amount),
        "category": e.category,
        "description": e.description,
        "payment_method": e.payment_method,
        "created_by": e.created_by,
        "created_at": iso(e.created_at),
    }


class FinanceService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.memberships = MembershipService(db)

    def _month(self, year: Any, month: Any):
        now = local_now()
        try:
            y = int(year) if year not in (None, "") else now.year
            m = int(month) if month not in (None, "") else now.month
            start, end = month_range(y, m)
        except (TypeError, ValueError):
            raise ValidationError("Mes inválido")
        return y, m, start, end

    # =========================================================================
    # BALANCE MENSUAL
    # =========================================================================

    def _month_transactions(self, org_id: int, start: datetime, end: datetime):
        return self.db.execute(
            select(Transaction, Student)
            .outerjoin(Student, Student.id == Transaction.student_id)
            .where(
                Transaction.organization_id == org_id,
                Transaction.created_at >= start,
                Transaction.created_at < end,
            )
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).all()

    def _month_expenses(self, org_id: int, start: datetime, end: datetime) -> List[Expense]:
        return list(
            self.db.scalars(
                select(Expense)
                .where(
                    Expense.organization_id == org_id,
                    Expense.created_at >= start,
                    Expense.created_at < end,
                )
                .order_by(Expense.created_at.desc(), Expense.id.desc())
            ).all()
        )

    def monthly_summary(self, ctx, year: Any = None, month: Any = None) -> Dict[str, Any]:
        org_id = self._org_id(ctx)
        y, m, start, end = self._month(year, month)
        transactions = []
        income = Decimal("0")
        for t, s in self._month_transactions(org_id, start, end):
            item = transaction_to_dict(t)
            item["student_name"] = f"{s.first_name} {s.last_name or ''}".strip() if s else None
            transactions.append(item)
            income += Decimal(str(t.amount or 0))
        expenses = self._month_expenses(org_id, start, end)
        expense_total = sum((Decimal(str(e.amount or 0)) for e in expenses), Decimal("0"))
        return {
            "year": y,
            "month": m,
            "transactions": transactions,
            "expenses": [expense_to_dict(e) for e in expenses],
            "income_total": float(income),
            "expense_total": float(expense_total),
            "net": float(income - expense_total),
        }

    # =========================================================================
    # NÓMINA
    # =========================================================================

    def _staff_people(self, org_id: int) -> List[Dict[str, Any]]:
        profiles = self.db.scalars(
            select(Profile)
            .where(Profile.organization_id == org_id, Profile.role == "staff")
            .order_by(Profile.full_name)
        ).all()
        professionals = self.db.scalars(
            select(Professional).where(Professional.organization_id == org_id).order_by(Professional.full_name)
        ).all()
        return [
            {
                "id": p.id,
                "type": "system",
                "full_name": p.full_name or p.email or "",
                "base_salary": to_float(p.base_salary),
                "commission_percentage": to_float(p.commission_percentage),
            }
            for p in profiles
        ] + [
            {
                "id": p.id,
                "type": "professional",
                "full_name": p.full_name,
                "base_salary": to_float(p.base_salary),
                "commission_percentage": to_float(p.commission_percentage),
            }
            for p in professionals
        ]

    def _payroll_item(self, person: Dict[str, Any], classes: List[Appointment]) -> Dict[str, Any]:
        total_sales = sum(to_float(a.price_at_booking) for a in classes)
        rate = person["commission_percentage"] / 100.0
        commission = round(total_sales * rate, 2)
        base = person["base_salary"]
        return {
            "id": person["id"],
            "type": person["type"],
            "full_name": person["full_name"],
            "base_salary": base,
            "commission_percentage": person["commission_percentage"],
            "private_classes_count": len(classes),
            "total_sales": total_sales,
            "commission_amount": commission,
            "total_payable": round(base + commission, 2),
        }

    def organization_payroll(self, ctx, year: Any = None, month: Any = None) -> Dict[str, Any]:
        org_id = self._org_id(ctx)
        y, m, start, end = self._month(year, month)
        private = self.db.scalars(
            select(Appointment).where(
                Appointment.organization_id == org_id,
                Appointment.is_private_class.is_(True),
                Appointment.start_time >= start,
                Appointment.start_time < end,
            )
        ).all()
        items = []
        for person in self._staff_people(org_id):
            if person["type"] == "system":
                mine = [a for a in private if a.profile_id == person["id"]]
            else:
                mine = [a for a in private if a.professional_id == person["id"]]
            items.append(self._payroll_item(person, mine))
        return {
            "year": y,
            "month": m,
            "items": items,
            "payroll_total": round(sum(i["total_payable"] for i in items), 2),
        }

    def _payroll_item_for(self, ctx, person_id: Any, person_type: Any, year: Any, month: Any):
        if person_type not in ("system", "professional"):
            raise ValidationError("Tipo de personal inválido")
        try:
            pid = int(person_id)
        except (TypeError, ValueError):
            raise NotFoundError("Personal no encontrado")
        payroll = self.organization_payroll(ctx, year, month)
        item = next(
            (i for i in payroll["items"] if i["id"] == pid and i["type"] == person_type),
            None,
        )
        if item is None:
            raise NotFoundError("Personal no encontrado")
        return payroll, item

    def pay_payroll(self, ctx, person_id: Any, person_type: Any, year: Any = None, month: Any = None) -> Dict[str, Any]:
        payroll, item = self._payroll_item_for(ctx, person_id, person_type, year, month)
        pid = item["id"]
        description = (
            f"Pago Nómina: {item['full_name']} ({month_label(payroll['year'], payroll['month'])})"
        )
        with self.unit_of_work():
            expense = Expense(
                organization_id=self._org_id(ctx),
                amount=Decimal(str(item["total_payable"])),
                category=PAYROLL_CATEGORY,
                description=description,
                payment_method=PAYROLL_PAYMENT_METHOD,
                created_by=ctx.user_id,
                created_at=local_now(),
            )
            self.db.add(expense)
            self.db.flush()
            out = expense_to_dict(expense)
        logger.info(f"Nómina pagada {person_type}:{pid} org={ctx.organization_id} monto={item['total_payable']}")
        return {"expense": out, "payroll_item": item, "mensaje": "Pago de nómina registrado como gasto"}

    def payroll_receipt(
        self, ctx, person_id: Any, person_type: Any, year: Any = None, month: Any = None
    ) -> Tuple[str, bytes]:
        """(nombre de archivo, PDF) del comprobante de nómina del mes."""
        payroll, item = self._payroll_item_for(ctx, person_id, person_type, year, month)
        y, m = payroll["year"], payroll["month"]
        pdf = build_payroll_receipt(item, month_label(y, m), local_today())
        logger.info(f"Comprobante de nómina {person_type}:{item['id']} {y}-{m:02d} org={ctx.organization_id}")
        return receipt_filename(item["full_name"], y, m), pdf

    def _attendee_counts(self, appointment_ids: List[int]) -> Dict[int, int]:
        if not appointment_ids:
            return {}
        rows = self.db.execute(
            select(AppointmentAttendee.appointment_id, func.count(AppointmentAttendee.id))
            .where(AppointmentAttendee.appointment_id.in_(appointment_ids))
            .group_by(AppointmentAttendee.appointment_id)
        ).all()
        return {int(a): int(c) for a, c in rows}

    def _teacher_classes(self, ctx, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        appointments = self.db.scalars(
            select(Appointment)
            .where(
                Appointment.organization_id == self._org_id(ctx),
                Appointment.profile_id == ctx.user_id,
                Appointment.start_time >= start,
                Appointment.start_time < end,
            )
            .order_by(Appointment.start_time, Appointment.id)
        ).all()
        counts = self._attendee_counts([a.id for a in appointments])
        service_ids = {a.service_id for a in appointments if a.service_id}
        names = {}
        if service_ids:
            names = dict(self.db.execute(select(Service.id, Service.name).where(Service.id.in_(service_ids))).all())
        return [
            {
                "id": a.id,
                "start_time": iso(a.start_time),
                "time": hhmm(a.start_time),
                "service_id": a.service_id,
                "service_name": names.get(a.service_id) or "Clase",
                "is_private_class": bool(a.is_private_class),
                "attendee_count": counts.get(a.id, 0),
                "_start": a.start_time,
            }
            for a in appointments
        ]

    def teacher_payroll(self, ctx, year: Any = None, month: Any = None) -> Dict[str, Any]:
        """Estimado del mes para el profesor en sesión."""
        profile = self.db.get(Profile, ctx.user_id)
        if profile is None:
            raise NotFoundError("Perfil no encontrado")
        y, m, start, end = self._month(year, month)
        classes = self._teacher_classes(ctx, start, end)
        base = to_float(profile.base_salary)
        pct = to_float(profile.commission_percentage)
        per_student = (pct / 100.0) * (base / TEACHER_WORKING_DAYS)
        for c in classes:
            c.pop("_start", None)
            c["commission"] = round(c["attendee_count"] * per_student, 2)
        total_students = sum(c["attendee_count"] for c in classes)
        commission = round(total_students * per_student, 2)
        return {
            "year": y,
            "month": m,
            "classes": classes,
            "total_classes": len(classes),
            "total_students": total_students,
            "base_salary": base,
            "commission_percentage": pct,
            "base_earnings": base,
            "commission_earnings": commission,
            "total_estimate": round(base + commission, 2),
        }

    def teacher_today(self, ctx) -> Dict[str, Any]:
        now = local_now()
        start, end = day_bounds(now.date())
        classes = self._teacher_classes(ctx, start, end)
        upcoming = next((c for c in classes if c["_start"] > now), None)
        next_class = upcoming or (classes[0] if classes else None)
        for c in classes:
            c.pop("_start", None)
        return {
            "classes": classes,
            "next_class": next_class,
            "total_classes": len(classes),
            "total_students": sum(c["attendee_count"] for c in classes),
        }

    # =========================================================================
    # MOVIMIENTOS
    # =========================================================================

    def _amount(self, value: Any) -> Decimal:
        amount = to_float(value, -1.0)
        if amount <= 0:
            raise ValidationError("El monto debe ser mayor a 0")
        return Decimal(str(value))

    def _payment_method(self, value: Any) -> str:
        method = str(value or "cash").strip().lower()
        if method not in PAYMENT_METHODS:
            raise ValidationError("Método de pago inválido")
        return method

    def record_income(
        self,
        ctx,
        student_id: Any,
        amount: Any,
        payment_method: Any = "cash",
        concept: Optional[str] = None,
        plan_id: Any = None,
    ) -> Dict[str, Any]:
        """Registra un ingreso; con plan también activa la membresía."""
        student = self._get_owned(Student, student_id, ctx, "Alumno")
        value = self._amount(amount)
        method = self._payment_method(payment_method)
        plan: Optional[Plan] = None
        if plan_id not in (None, ""):
            plan = self._get_owned(Plan, plan_id, ctx, "Plan")
            if not concept:
                service_name = None
                if plan.service_id:
                    service = self.db.get(Service, plan.service_id)
                    service_name = service.name if service else None
                concept = f"Membresía: {plan.name}" + (f" ({service_name})" if service_name else "")
        if not str(concept or "").strip():
            raise ValidationError("El concepto es obligatorio")

        membership_out = None
        with self.unit_of_work():
            tx = Transaction(
                organization_id=self._org_id(ctx),
                branch_id=ctx.branch_id,
                student_id=student.id,
                amount=value,
                payment_method=method,
                concept=str(concept).strip(),
                created_at=local_now(),
            )
            self.db.add(tx)
            if plan is not None:
                m = self.memberships.activate_membership(
                    ctx, student=student, plan=plan, start_date=local_today(), price_paid=value
                )
                membership_out = {
                    "id": m.id,
                    "plan_id": plan.id,
                    "start_date": iso(m.start_date),
                    "end_date": iso(m.end_date),
                }
            self.db.flush()
            out = transaction_to_dict(tx)
        mensaje = "Membresía activada y cobrada" if plan is not None else "Ingreso registrado"
        return {"transaction": out, "membership": membership_out, "mensaje": mensaje}

    def record_expense(
        self,
        ctx,
        amount: Any,
        category: Any,
        description: Optional[str] = None,
        payment_method: Any = "cash",
    ) -> Dict[str, Any]:
        value = self._amount(amount)
        cat = str(category or "").strip()
        if not cat:
            raise ValidationError("La categoría es obligatoria")
        method = self._payment_method(payment_method)
        with self.unit_of_work():
            e = Expense(
                organization_id=self._org_id(ctx),
                amount=value,
                category=cat,
                description=description or None,
                payment_method=method,
                created_by=ctx.user_id,
                created_at=local_now(),
            )
            self.db.add(e)
            self.db.flush()
            out = expense_to_dict(e)
        return {"expense": out, "mensaje": "Gasto registrado correctamente"}

    def export_csv(self, ctx, year: Any = None, month: Any = None) -> str:
        org_id = self._org_id(ctx)
        _, _, start, end = self._month(year, month)
        rows = []
        for t, s in self._month_transactions(org_id, start, end):
            rows.append(
                (
                    t.created_at,
                    [
                        t.created_at.strftime("%Y-%m-%d %H:%M"),
                        "Ingreso",
                        t.concept or "",
                        t.payment_method,
                        to_float(t.amount),
                        f"{s.first_name} {s.last_name or ''}".strip() if s else "-",
                    ],
                )
            )
        for e in self._month_expenses(org_id, start, end):
            rows.append(
                (
                    e.created_at,
                    [
                        e.created_at.strftime("%Y-%m-%d %H:%M"),
                        "Gasto",
                        e.category,
                        e.payment_method,
                        -to_float(e.amount),
                        e.description or "",
                    ],
                )
            )
        rows.sort(key=lambda r: r[0], reverse=True)
        out = io.StringIO()
        w = csv.writer(out, quoting=csv.QUOTE_ALL)
        w.writerow(CSV_HEADERS)
        for _, row in rows:
            w.writerow(row)
        return out.getvalue()

    # =========================================================================
    # DASHBOARD
    # =========================================================================

    def dashboard_stats(self, ctx) -> Dict[str, Any]:
        org_id = self._org_id(ctx)
        scope = ctx.branch_scope
        now = local_now()

        student_stmt = select(Student.id).where(Student.organization_id == org_id)
        if scope:
            student_stmt = student_stmt.where(Student.branch_id == scope)
        student_ids = list(self.db.scalars(student_stmt).all())
        labels = solvency_labels(self.db, org_id, student_ids, now)
        total = len(student_ids)
        solventes = sum(1 for v in labels.values() if v == "solvente")

        if scope:
            staff_count = self.db.scalar(
                select(func.count(BranchStaff.id)).where(BranchStaff.branch_id == scope)
            ) or 0
            payroll = 0.0
        else:
            people = self._staff_people(org_id)
            staff_count = len(people)
            payroll = sum(p["base_salary"] for p in people)

        day_start, day_end = day_bounds(now.date())
        agenda_stmt = (
            select(Appointment)
            .where(
                Appointment.organization_id == org_id,
                Appointment.start_time >= day_start,
                Appointment.start_time < day_end,
            )
            .order_by(Appointment.start_time, Appointment.id)
        )
        if scope:
            agenda_stmt = agenda_stmt.where(Appointment.branch_id == scope)
        today_appointments = self.db.scalars(agenda_stmt).all()

        month_start, month_end = month_range(now.year, now.month)
        income_stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.organization_id == org_id,
            Transaction.created_at >= month_start,
            Transaction.created_at < month_end,
        )
        if scope:
            income_stmt = income_stmt.where(Transaction.branch_id == scope)
        monthly_income = to_float(self.db.scalar(income_stmt))

        next_class = None
        upcoming = next((a for a in today_appointments if a.start_time > now), None)
        if upcoming is not None:
            students = load_attendees(self.db, [upcoming.id]).get(upcoming.id, [])
            next_class = {
                "id": upcoming.id,
                "time": hhmm(upcoming.start_time),
                "students": [f"{s.first_name} {s.last_name or ''}".strip() for s in students],
            }

        return {
            "total_students": total,
            # redondeo hacia arriba en .5
            "solvency_rate": int(solventes * 100 / total + 0.5) if total > 0 else 0,
            "total_staff": int(staff_count),
            "today_appointments": len(today_appointments),
            "monthly_income": monthly_income,
            "estimated_payroll": payroll,
            "next_class": next_class,
        }
