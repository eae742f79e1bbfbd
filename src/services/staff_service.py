import logging
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.services.base import BaseService, ValidationError
from src.models.orm_models import (
    Appointment,
    AppointmentAttendee,
    Branch,
    BranchStaff,
    OrganizationInvitation,
    Profile,
    Professional,
    Service,
    StaffSchedule,
    Student,
    TeacherReview,
)
from src.utils import hhmm, iso, local_now, parse_hhmm, to_float

logger = logging.getLogger(__name__)

STAFF_TYPES = ("system", "professional")
INVITE_ROLES = ("owner", "staff")
DEFAULT_SCHEDULE_START = "09:00"
DEFAULT_SCHEDULE_END = "18:00"
DAYS_OF_WEEK = ["Domingo", "Lunes", "Martes", "Miércoles", "Jueves", "Viernes", "Sábado"]
UPCOMING_LIMIT = 5
MIN_RATING = 1
MAX_RATING = 5
STUDENTS_APPOINTMENT_LIMIT = 50


def _review_to_dict(r: TeacherReview) -> Dict[str, Any]:
    return {
        "id": r.id,
        "rating": r.rating,
        "comment": r.comment or "",
        "student_id": r.student_id,
        "created_at": iso(r.created_at),
    }


class StaffService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    def _person(self, ctx, person_id: Any, person_type: Any):
        if person_type not in STAFF_TYPES:
            raise ValidationError("Tipo de personal inválido")
        model = Profile if person_type == "system" else Professional
        return self._get_owned(model, person_id, ctx, "Personal")

    def _person_to_dict(self, p, person_type: str) -> Dict[str, Any]:
        return {
            "id": p.id,
            "type": person_type,
            "role": p.role if person_type == "system" else "professional",
            "full_name": p.full_name or getattr(p, "email", None) or "",
            "email": p.email,
            "phone": p.phone,
            "specialty": p.specialty,
            "base_salary": to_float(p.base_salary),
            "commission_percentage": to_float(p.commission_percentage),
        }

    def _branches_for(self, org_id: int) -> Dict[tuple, List[Dict[str, Any]]]:
        rows = self.db.execute(
            select(BranchStaff.profile_id, BranchStaff.professional_id, Branch.id, Branch.name)
            .join(Branch, Branch.id == BranchStaff.branch_id)
            .where(BranchStaff.organization_id == org_id)
            .order_by(Branch.name)
        ).all()
        out: Dict[tuple, List[Dict[str, Any]]] = {}
        for profile_id, professional_id, branch_id, name in rows:
            key = ("system", profile_id) if profile_id else ("professional", professional_id)
            out.setdefault(key, []).append({"id": branch_id, "name": name})
        return out

    def _avg_ratings(self, org_id: int) -> Dict[int, float]:
        rows = self.db.execute(
            select(TeacherReview.teacher_id, func.avg(TeacherReview.rating))
            .where(TeacherReview.organization_id == org_id)
            .group_by(TeacherReview.teacher_id)
        ).all()
        return {teacher_id: round(float(avg), 1) for teacher_id, avg in rows}

    def list_staff(self, ctx) -> List[Dict[str, Any]]:
        org_id = self._org_id(ctx)
        branches = self._branches_for(org_id)
        ratings = self._avg_ratings(org_id)
        profiles = self.db.scalars(
            select(Profile).where(Profile.organization_id == org_id, Profile.role.in_(INVITE_ROLES))
        ).all()
        professionals = self.db.scalars(
            select(Professional).where(Professional.organization_id == org_id)
        ).all()
        items = []
        for p in profiles:
            item = self._person_to_dict(p, "system")
            item["branches"] = branches.get(("system", p.id), [])
            item["avg_rating"] = ratings.get(p.id)
            items.append(item)
        for p in professionals:
            item = self._person_to_dict(p, "professional")
            item["branches"] = branches.get(("professional", p.id), [])
            item["avg_rating"] = None
            items.append(item)
        items.sort(key=lambda i: (i["full_name"] or "").casefold())
        return items

    def get_staff_detail(self, ctx, person_id: Any, person_type: Any) -> Dict[str, Any]:
        person = self._person(ctx, person_id, person_type)
        column = Appointment.profile_id if person_type == "system" else Appointment.professional_id
        branches = self._branches_for(self._org_id(ctx)).get((person_type, person.id), [])

        upcoming = self.db.execute(
            select(Appointment, Service.name)
            .outerjoin(Service, Service.id == Appointment.service_id)
            .where(column == person.id, Appointment.start_time >= local_now())
            .order_by(Appointment.start_time)
            .limit(UPCOMING_LIMIT)
        ).all()

        recent_ids = (
            select(Appointment.id)
            .where(column == person.id)
            .order_by(Appointment.start_time.desc())
            .limit(STUDENTS_APPOINTMENT_LIMIT)
        )
        students = self.db.scalars(
            select(Student)
            .join(AppointmentAttendee, AppointmentAttendee.student_id == Student.id)
            .where(AppointmentAttendee.appointment_id.in_(recent_ids))
            .distinct()
            .order_by(Student.first_name)
        ).all()

        reviews = []
        if person_type == "system":
            reviews = self.db.scalars(
                select(TeacherReview)
                .where(TeacherReview.teacher_id == person.id)
                .order_by(TeacherReview.created_at.desc(), TeacherReview.id.desc())
            ).all()

        item = self._person_to_dict(person, person_type)
        item["branches"] = branches
        item["avg_rating"] = (
            round(sum(r.rating for r in reviews) / len(reviews), 1) if reviews else None
        )
        return {
            "staff": item,
            "upcoming_classes": [
                {
                    "id": a.id,
                    "start_time": iso(a.start_time),
                    "service_name": name or "Clase",
                }
                for a, name in upcoming
            ],
            "students": [
                {"id": s.id, "first_name": s.first_name, "last_name": s.last_name or ""}
                for s in students
            ],
            "reviews": [_review_to_dict(r) for r in reviews],
        }

    def update_staff_profile(self, ctx, person_id: Any, person_type: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        person = self._person(ctx, person_id, person_type)
        salary = to_float(data.get("base_salary"), -1.0) if data.get("base_salary") not in (None, "") else 0.0
        pct = (
            to_float(data.get("commission_percentage"), -1.0)
            if data.get("commission_percentage") not in (None, "")
            else 0.0
        )
        if salary < 0:
            raise ValidationError("El sueldo base debe ser mayor o igual a 0")
        if pct < 0 or pct > 100:
            raise ValidationError("La comisión debe estar entre 0 y 100")
        with self.unit_of_work():
            person.phone = data.get("phone") or None
            person.specialty = data.get("specialty") or None
            person.base_salary = Decimal(str(salary))
            person.commission_percentage = Decimal(str(pct))
        return self._person_to_dict(person, person_type)

    def create_professional(self, ctx, data: Dict[str, Any]) -> Dict[str, Any]:
        name = str(data.get("full_name") or "").strip()
        if not name:
            raise ValidationError("El nombre es obligatorio")
        salary = to_float(data.get("base_salary"), 0.0)
        pct = to_float(data.get("commission_percentage"), 0.0)
        if salary < 0 or pct < 0 or pct > 100:
            raise ValidationError("Sueldo o comisión inválidos")
        with self.unit_of_work():
            p = Professional(
                organization_id=self._org_id(ctx),
                full_name=name,
                email=(str(data.get("email")).strip().lower() or None) if data.get("email") else None,
                phone=data.get("phone") or None,
                specialty=data.get("specialty") or None,
                base_salary=Decimal(str(salary)),
                commission_percentage=Decimal(str(pct)),
            )
            self.db.add(p)
            self.db.flush()
            out = self._person_to_dict(p, "professional")
        logger.info(f"Profesional creado {out['id']} org={ctx.organization_id}")
        return out

    def add_review(self, ctx, teacher_id: Any, rating: Any, comment: Any = None, student_id: Any = None) -> Dict[str, Any]:
        """Reseña de un profesor del sistema; los externos no reciben reseñas."""
        teacher = self._person(ctx, teacher_id, "system")
        try:
            value = int(rating)
        except (TypeError, ValueError):
            raise ValidationError("Calificación inválida")
        if isinstance(rating, float) and rating != value:
            raise ValidationError("Calificación inválida")
        if value < MIN_RATING or value > MAX_RATING:
            raise ValidationError(f"La calificación debe estar entre {MIN_RATING} y {MAX_RATING}")
        student = None
        if student_id not in (None, ""):
            student = self._get_owned(Student, student_id, ctx, "Alumno")
        with self.unit_of_work():
            review = TeacherReview(
                organization_id=self._org_id(ctx),
                teacher_id=teacher.id,
                student_id=student.id if student is not None else None,
                rating=value,
                comment=(str(comment).strip() or None) if comment is not None else None,
                created_at=local_now(),
            )
            self.db.add(review)
            self.db.flush()
            out = _review_to_dict(review)
        logger.info(f"Reseña {out['id']} para profesor {teacher.id} org={ctx.organization_id}")
        return out

    # ========== Sedes ==========

    def _assignment_filter(self, person_type: str, person_id: int):
        if person_type == "system":
            return BranchStaff.profile_id == person_id
        return BranchStaff.professional_id == person_id

    def assign_branch(self, ctx, person_id: Any, person_type: Any, branch_id: Any) -> Dict[str, Any]:
        person = self._person(ctx, person_id, person_type)
        branch = self._get_owned(Branch, branch_id, ctx, "Sede")
        existing = self.db.scalars(
            select(BranchStaff).where(
                self._assignment_filter(person_type, person.id), BranchStaff.branch_id == branch.id
            )
        ).first()
        if existing is not None:
            return {"created": False, "mensaje": "Ya estaba asignado a esta sucursal"}
        try:
            with self.unit_of_work():
                self.db.add(
                    BranchStaff(
                        organization_id=self._org_id(ctx),
                        branch_id=branch.id,
                        profile_id=person.id if person_type == "system" else None,
                        professional_id=person.id if person_type == "professional" else None,
                    )
                )
        except IntegrityError:
            # Otra petición lo asignó entre la consulta y el insert
            logger.info(f"Asignación concurrente {person_type}:{person.id} sede={branch.id}")
            return {"created": False, "mensaje": "Ya estaba asignado a esta sucursal"}
        return {"created": True, "mensaje": "Asignado a nueva sucursal"}

    def remove_branch(self, ctx, person_id: Any, person_type: Any, branch_id: Any) -> Dict[str, Any]:
        person = self._person(ctx, person_id, person_type)
        branch = self._get_owned(Branch, branch_id, ctx, "Sede")
        with self.unit_of_work():
            self.db.execute(
                delete(BranchStaff).where(
                    self._assignment_filter(person_type, person.id), BranchStaff.branch_id == branch.id
                )
            )
        return {"mensaje": "Acceso revocado"}

    # ========== Horario semanal ==========

    def get_weekly_schedule(self, ctx, person_id: Any, person_type: Any, branch_id: Any) -> List[Dict[str, Any]]:
        person = self._person(ctx, person_id, person_type)
        week = [
            {
                "day_of_week": i,
                "day_name": DAYS_OF_WEEK[i],
                "is_active": False,
                "start_time": DEFAULT_SCHEDULE_START,
                "end_time": DEFAULT_SCHEDULE_END,
            }
            for i in range(7)
        ]
        if person_type != "system":
            return week
        branch = self._get_owned(Branch, branch_id, ctx, "Sede")
        rows = self.db.scalars(
            select(StaffSchedule).where(
                StaffSchedule.profile_id == person.id, StaffSchedule.branch_id == branch.id
            )
        ).all()
        for row in rows:
            if 0 <= row.day_of_week <= 6:
                week[row.day_of_week].update(
                    is_active=True,
                    start_time=hhmm(row.start_time),
                    end_time=hhmm(row.end_time),
                )
        return week

    def save_weekly_schedule(
        self, ctx, person_id: Any, person_type: Any, branch_id: Any, days: Any
    ) -> Dict[str, Any]:
        """Reemplaza el horario del perfil en la sede por los días activos."""
        if person_type == "professional":
            raise ValidationError("Los profesionales externos no manejan horario fijo en sistema")
        person = self._person(ctx, person_id, person_type)
        branch = self._get_owned(Branch, branch_id, ctx, "Sede")
        if not isinstance(days, list):
            raise ValidationError("Horario inválido")

        active = []
        for d in days:
            if not isinstance(d, dict) or not d.get("is_active"):
                continue
            try:
                dow = int(d.get("day_of_week"))
            except (TypeError, ValueError):
                raise ValidationError("Día inválido")
            if dow < 0 or dow > 6:
                raise ValidationError("Día inválido")
            start = parse_hhmm(d.get("start_time"))
            end = parse_hhmm(d.get("end_time"))
            if start is None or end is None:
                raise ValidationError(f"Hora inválida para {DAYS_OF_WEEK[dow]}")
            if end <= start:
                raise ValidationError(f"La hora de fin debe ser posterior al inicio ({DAYS_OF_WEEK[dow]})")
            active.append((dow, start, end))

        with self.unit_of_work():
            self.db.execute(
                delete(StaffSchedule).where(
                    StaffSchedule.profile_id == person.id, StaffSchedule.branch_id == branch.id
                )
            )
            for dow, start, end in active:
                self.db.add(
                    StaffSchedule(
                        organization_id=self._org_id(ctx),
                        profile_id=person.id,
                        branch_id=branch.id,
                        day_of_week=dow,
                        start_time=start,
                        end_time=end,
                    )
                )
        return {"active_days": len(active), "mensaje": "Horario actualizado"}

    # ========== Invitaciones ==========

    def create_invitation(self, ctx, email: Any, role: Any = "staff") -> Dict[str, Any]:
        clean = str(email or "").strip().lower()
        if not clean or "@" not in clean:
            raise ValidationError("Email inválido")
        r = str(role or "staff").strip().lower()
        if r not in INVITE_ROLES:
            raise ValidationError("Rol inválido")
        with self.unit_of_work():
            inv = OrganizationInvitation(
                organization_id=self._org_id(ctx),
                email=clean,
                role=r,
                status="pending",
            )
            self.db.add(inv)
            self.db.flush()
            out = {
                "id": inv.id,
                "email": inv.email,
                "role": inv.role,
                "status": inv.status,
                "created_at": iso(inv.created_at),
            }
        logger.info(f"Invitación registrada para {clean} org={ctx.organization_id}")
        return {"invitation": out, "mensaje": "Invitación registrada exitosamente."}
