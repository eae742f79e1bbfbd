"""
Booking Service - SQLAlchemy ORM Implementation

Agenda de citas: listado con estadísticas, profesores disponibles, detección
de clase privada según el horario del staff y el guardado de la cita con sus
alumnos y los cobros por clase.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, delete, or_
from sqlalchemy.orm import Session

from src.services.base import BaseService, NotFoundError, ValidationError
from src.services.membership_service import MembershipService
from src.models.orm_models import (
    Appointment,
    AppointmentAttendee,
    BranchStaff,
    Profile,
    Professional,
    Service,
    StaffSchedule,
    Student,
    Transaction,
)
from src.utils import (
    day_bounds,
    hhmm,
    iso,
    local_now,
    local_today,
    parse_date,
    parse_datetime,
    parse_hhmm,
    to_float,
)

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "card", "transfer")
TEACHER_TYPES = ("system", "professional")
UNASSIGNED_TEACHER = "Sin asignar"
DEFAULT_DURATION_MINUTES = 60


def js_day_of_week(d: date) -> int:
    """0 = domingo ... 6 = sábado."""
    return (d.weekday() + 1) % 7


def load_teacher_names(
    db: Session, profile_ids: Iterable[Optional[int]], professional_ids: Iterable[Optional[int]]
) -> Tuple[Dict[int, str], Dict[int, str]]:
    pids = {int(x) for x in profile_ids if x}
    prof_ids = {int(x) for x in professional_ids if x}
    profiles: Dict[int, str] = {}
    professionals: Dict[int, str] = {}
    if pids:
        profiles = {
            int(i): (n or "")
            for i, n in db.execute(select(Profile.id, Profile.full_name).where(Profile.id.in_(pids))).all()
        }
    if prof_ids:
        professionals = {
            int(i): (n or "")
            for i, n in db.execute(
                select(Professional.id, Professional.full_name).where(Professional.id.in_(prof_ids))
            ).all()
        }
    return profiles, professionals


def teacher_name_for(
    appt: Appointment, profiles: Dict[int, str], professionals: Dict[int, str]
) -> str:
    if appt.profile_id and profiles.get(appt.profile_id):
        return profiles[appt.profile_id]
    if appt.professional_id and professionals.get(appt.professional_id):
        return professionals[appt.professional_id]
    return UNASSIGNED_TEACHER


def load_attendees(db: Session, appointment_ids: Iterable[int]) -> Dict[int, List[Student]]:
    ids = [int(x) for x in appointment_ids]
    out: Dict[int, List[Student]] = {i: [] for i in ids}
    if not ids:
        return out
    rows = db.execute(
        select(AppointmentAttendee.appointment_id, Student)
        .join(Student, Student.id == AppointmentAttendee.student_id)
        .where(AppointmentAttendee.appointment_id.in_(ids))
        .order_by(Student.first_name, Student.id)
    ).all()
    for appointment_id, student in rows:
        out[int(appointment_id)].append(student)
    return out


class BookingService(BaseService):
    """Service for the appointment agenda."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.memberships = MembershipService(db)

    # =========================================================================
    # LISTADO
    # =========================================================================

    def list_appointments(
        self,
        ctx,
        start_date: Any,
        end_date: Any = None,
        service_id: Optional[int] = None,
        teacher_id: Optional[int] = None,
        teacher_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        sd = parse_date(start_date)
        if sd is None:
            raise ValidationError("Fecha inválida")
        ed = parse_date(end_date) if end_date else sd
        if ed is None or ed < sd:
            raise ValidationError("Rango de fechas inválido")
        range_start, _ = day_bounds(sd)
        _, range_end = day_bounds(ed)

        stmt = (
            select(Appointment)
            .where(
                Appointment.organization_id == self._org_id(ctx),
                Appointment.start_time >= range_start,
                Appointment.start_time < range_end,
            )
            .order_by(Appointment.start_time, Appointment.id)
        )
        if ctx.branch_id:
            stmt = stmt.where(Appointment.branch_id == int(ctx.branch_id))
        if service_id:
            stmt = stmt.where(Appointment.service_id == int(service_id))
        if teacher_id:
            tid = int(teacher_id)
            if teacher_type == "system":
                stmt = stmt.where(Appointment.profile_id == tid)
            elif teacher_type == "professional":
                stmt = stmt.where(Appointment.professional_id == tid)
            else:
                stmt = stmt.where(
                    or_(Appointment.profile_id == tid, Appointment.professional_id == tid)
                )
        appointments = self.db.scalars(stmt).all()

        attendees = load_attendees(self.db, [a.id for a in appointments])
        profiles, professionals = load_teacher_names(
            self.db,
            [a.profile_id for a in appointments],
            [a.professional_id for a in appointments],
        )
        service_names = self._service_names([a.service_id for a in appointments])

        items = []
        unique_students = set()
        by_membership = 0
        paid = 0
        for a in appointments:
            students = attendees.get(a.id, [])
            unique_students.update(s.id for s in students)
            if to_float(a.price_at_booking) == 0:
                by_membership += 1
            else:
                paid += 1
            items.append(self._appointment_to_dict(a, students, profiles, professionals, service_names))

        return {
            "items": items,
            "stats": {
                "total": len(items),
                "by_membership": by_membership,
                "paid": paid,
                "unique_students": len(unique_students),
            },
        }

    def _service_names(self, service_ids: Iterable[Optional[int]]) -> Dict[int, str]:
        ids = {int(x) for x in service_ids if x}
        if not ids:
            return {}
        return dict(self.db.execute(select(Service.id, Service.name).where(Service.id.in_(ids))).all())

    def _appointment_to_dict(
        self,
        a: Appointment,
        students: List[Student],
        profiles: Dict[int, str],
        professionals: Dict[int, str],
        service_names: Dict[int, str],
    ) -> Dict[str, Any]:
        if a.profile_id:
            teacher = {"id": a.profile_id, "type": "system"}
        elif a.professional_id:
            teacher = {"id": a.professional_id, "type": "professional"}
        else:
            teacher = None
        if teacher is not None:
            teacher["name"] = teacher_name_for(a, profiles, professionals)
        return {
            "id": a.id,
            "branch_id": a.branch_id,
            "service_id": a.service_id,
            "service_name": service_names.get(a.service_id) if a.service_id else None,
            "profile_id": a.profile_id,
            "professional_id": a.professional_id,
            "teacher": teacher,
            "teacher_name": teacher_name_for(a, profiles, professionals),
            "start_time": iso(a.start_time),
            "end_time": iso(a.end_time),
            "time": hhmm(a.start_time),
            "is_private_class": bool(a.is_private_class),
            "price_at_booking": to_float(a.price_at_booking),
            "status": a.status,
            "attendees": [
                {"id": s.id, "first_name": s.first_name, "last_name": s.last_name or ""}
                for s in students
            ],
        }

    # =========================================================================
    # PROFESORES
    # =========================================================================

    def list_available_teachers(self, ctx) -> List[Dict[str, Any]]:
        """Perfiles del sistema + profesionales externos, con su sede fija si la tienen."""
        org_id = self._org_id(ctx)
        profiles = self.db.scalars(
            select(Profile)
            .where(Profile.organization_id == org_id, Profile.role.in_(("owner", "staff")))
            .order_by(Profile.full_name)
        ).all()
        professionals = self.db.scalars(
            select(Professional).where(Professional.organization_id == org_id).order_by(Professional.full_name)
        ).all()

        assignments = self.db.execute(
            select(BranchStaff.profile_id, BranchStaff.professional_id, BranchStaff.branch_id).where(
                BranchStaff.organization_id == org_id
            )
        ).all()
        profile_branches: Dict[int, set] = {}
        professional_branches: Dict[int, set] = {}
        for profile_id, professional_id, branch_id in assignments:
            if profile_id:
                profile_branches.setdefault(int(profile_id), set()).add(int(branch_id))
            elif professional_id:
                professional_branches.setdefault(int(professional_id), set()).add(int(branch_id))

        def _specific(branches: Optional[set]) -> Optional[int]:
            if branches and len(branches) == 1:
                return next(iter(branches))
            return None

        teachers = [
            {
                "id": p.id,
                "full_name": p.full_name or p.email or "",
                "type": "system",
                "specific_branch_id": _specific(profile_branches.get(p.id)),
            }
            for p in profiles
        ] + [
            {
                "id": p.id,
                "full_name": p.full_name,
                "type": "professional",
                "specific_branch_id": _specific(professional_branches.get(p.id)),
            }
            for p in professionals
        ]
        if ctx.branch_id:
            bid = int(ctx.branch_id)
            teachers = [t for t in teachers if t["specific_branch_id"] in (None, bid)]
        return teachers

    def _resolve_teacher(self, ctx, teacher_id: Any, teacher_type: Optional[str]) -> Optional[Dict[str, Any]]:
        if teacher_id in (None, ""):
            return None
        try:
            tid = int(teacher_id)
        except (TypeError, ValueError):
            raise NotFoundError("Profesor no encontrado")
        org_id = self._org_id(ctx)
        if teacher_type not in (None, "") and teacher_type not in TEACHER_TYPES:
            raise ValidationError("Tipo de profesor inválido")

        if teacher_type in (None, "", "system"):
            profile = self.db.get(Profile, tid)
            if profile is not None and profile.organization_id == org_id:
                return {"id": tid, "type": "system", "full_name": profile.full_name}
        if teacher_type in (None, "", "professional"):
            professional = self.db.get(Professional, tid)
            if professional is not None and professional.organization_id == org_id:
                return {"id": tid, "type": "professional", "full_name": professional.full_name}
        raise NotFoundError("Profesor no encontrado")

    # =========================================================================
    # CLASE PRIVADA
    # =========================================================================

    def is_private_class(
        self,
        ctx,
        teacher: Optional[Dict[str, Any]],
        day: Any,
        time_str: Any,
        branch_id: Optional[int] = None,
    ) -> bool:
        """Una clase es privada si cae fuera del horario del staff en esa sede y día.

        Profesionales externos no tienen horario: nunca es privada.
        """
        if not teacher or teacher.get("type") != "system":
            return False
        d = parse_date(day)
        t = hhmm(time_str)
        if d is None or not t:
            return False
        stmt = select(StaffSchedule).where(
            StaffSchedule.profile_id == int(teacher["id"]),
            StaffSchedule.day_of_week == js_day_of_week(d),
        )
        bid = branch_id or ctx.branch_id
        if bid:
            stmt = stmt.where(StaffSchedule.branch_id == int(bid))
        schedule = self.db.scalars(stmt.order_by(StaffSchedule.id)).first()
        if schedule is None:
            return True
        start = hhmm(schedule.start_time)
        end = hhmm(schedule.end_time)
        return t < start or t >= end

    def check_private_class(
        self,
        ctx,
        teacher_id: Any,
        teacher_type: Optional[str],
        day: Any,
        time_str: Any,
        branch_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        teacher = self._resolve_teacher(ctx, teacher_id, teacher_type)
        if parse_date(day) is None or parse_hhmm(time_str) is None:
            raise ValidationError("Fecha u hora inválida")
        return {
            "teacher": teacher,
            "is_private": self.is_private_class(ctx, teacher, day, time_str, branch_id),
        }

    # =========================================================================
    # GUARDADO
    # =========================================================================

    def _parse_start(self, data: Dict[str, Any]) -> datetime:
        day = data.get("date")
        time_value = data.get("time")
        if day and time_value:
            d = parse_date(day)
            t = parse_hhmm(time_value)
            if d is None or t is None:
                raise ValidationError("Fecha u hora inválida")
            return datetime.combine(d, t)
        start = parse_datetime(data.get("start_time"))
        if start is None:
            raise ValidationError("Fecha u hora inválida")
        return start.replace(second=0, microsecond=0)

    def _student_ids(self, ctx, raw: Any) -> List[int]:
        if raw is None:
            raw = []
        if not isinstance(raw, (list, tuple)):
            raw = [raw]
        ids: List[int] = []
        for x in raw:
            try:
                sid = int(x)
            except (TypeError, ValueError):
                raise ValidationError("Alumno inválido")
            if sid not in ids:
                ids.append(sid)
        if not ids:
            raise ValidationError("Selecciona al menos un alumno")
        found = set(
            self.db.scalars(
                select(Student.id).where(
                    Student.id.in_(ids), Student.organization_id == self._org_id(ctx)
                )
            ).all()
        )
        if len(found) != len(ids):
            raise NotFoundError("Alumno no encontrado")
        return ids

    def save_appointment(
        self, ctx, data: Dict[str, Any], appointment_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """Crea o edita una cita con sus alumnos.

        Todo corre en una sola transacción. Solo la creación registra cobros:
        uno por alumno sin membresía que cubra el servicio.
        """
        raw_students = data.get("student_ids")
        if raw_students is None and data.get("student_id") is not None:
            raw_students = [data.get("student_id")]
        if not raw_students:
            raise ValidationError("Selecciona al menos un alumno")

        org_id = self._org_id(ctx)
        service = self._get_owned(Service, data.get("service_id"), ctx, "Servicio")
        teacher = self._resolve_teacher(ctx, data.get("teacher_id"), data.get("teacher_type"))
        student_ids = self._student_ids(ctx, raw_students)
        start = self._parse_start(data)

        payment_method = str(data.get("payment_method") or "cash").strip().lower()
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError("Método de pago inválido")
        raw_duration = data.get("duration_minutes")
        try:
            duration = int(raw_duration) if raw_duration not in (None, "") else DEFAULT_DURATION_MINUTES
        except (TypeError, ValueError):
            raise ValidationError("Duración inválida")
        if duration <= 0:
            raise ValidationError("Duración inválida")

        existing: Optional[Appointment] = None
        if appointment_id is not None:
            existing = self._get_owned(Appointment, appointment_id, ctx, "Cita")

        branch_id = data.get("branch_id") or (existing.branch_id if existing else None) or ctx.branch_id
        branch_id = int(branch_id) if branch_id else None

        if data.get("is_private") is not None:
            is_private = bool(data.get("is_private"))
        else:
            is_private = self.is_private_class(ctx, teacher, start.date(), start, branch_id)

        charges = 0
        covered_count = 0
        with self.unit_of_work():
            appt = existing or Appointment(organization_id=org_id, status="scheduled")
            appt.branch_id = branch_id
            appt.service_id = service.id
            appt.profile_id = teacher["id"] if teacher and teacher["type"] == "system" else None
            appt.professional_id = (
                teacher["id"] if teacher and teacher["type"] == "professional" else None
            )
            appt.start_time = start
            appt.end_time = start + timedelta(minutes=duration)
            appt.is_private_class = is_private
            appt.price_at_booking = service.price
            if existing is None:
                self.db.add(appt)
            self.db.flush()

            self.db.execute(
                delete(AppointmentAttendee).where(AppointmentAttendee.appointment_id == appt.id)
            )
            self.db.add_all(
                [AppointmentAttendee(appointment_id=appt.id, student_id=sid) for sid in student_ids]
            )

            if existing is None:
                covered = self.memberships.covered_student_ids(
                    ctx, student_ids, service.id, local_today()
                )
                covered_count = len(covered)
                for sid in student_ids:
                    if sid in covered:
                        continue
                    self.db.add(
                        Transaction(
                            organization_id=org_id,
                            branch_id=branch_id,
                            student_id=sid,
                            amount=service.price,
                            payment_method=payment_method,
                            concept=f"Clase: {service.name}",
                            created_at=local_now(),
                        )
                    )
                    charges += 1
            self.db.flush()
            appointment_pk = appt.id

        if existing is None:
            mensaje = (
                f"Cita agendada: {charges} cobros registrados, "
                f"{covered_count} cubierto(s) por membresía"
            )
            logger.info(
                f"Cita {appointment_pk} creada org={org_id}: {len(student_ids)} alumnos, "
                f"{charges} cobros, {covered_count} cubiertos"
            )
        else:
            mensaje = "Cita actualizada correctamente"
            logger.info(f"Cita {appointment_pk} actualizada org={org_id}")

        return {
            "appointment": self.get_appointment(ctx, appointment_pk),
            "charges_created": charges,
            "covered_by_membership": covered_count,
            "mensaje": mensaje,
        }

    def get_appointment(self, ctx, appointment_id: int) -> Dict[str, Any]:
        a = self._get_owned(Appointment, appointment_id, ctx, "Cita")
        attendees = load_attendees(self.db, [a.id])
        profiles, professionals = load_teacher_names(self.db, [a.profile_id], [a.professional_id])
        service_names = self._service_names([a.service_id])
        return self._appointment_to_dict(a, attendees.get(a.id, []), profiles, professionals, service_names)

    def delete_appointment(self, ctx, appointment_id: int) -> None:
        appt = self._get_owned(Appointment, appointment_id, ctx, "Cita")
        with self.unit_of_work():
            self.db.delete(appt)
        logger.info(f"Cita {appointment_id} eliminada org={ctx.organization_id}")
