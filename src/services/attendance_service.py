"""
Attendance Service - SQLAlchemy ORM Implementation

Reconciles class attendance: groups the day's appointments into classes,
builds the roster (enrolled, booked, suggested, manual) and upserts the
attendance records of a class group.
"""

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, or_, func
from sqlalchemy.orm import Session

from src.services.base import BaseService, NotFoundError, ValidationError
from src.services.booking_service import load_attendees, load_teacher_names, teacher_name_for
from src.services.membership_service import plan_covers_service
from src.models.orm_models import (
    Appointment,
    AttendanceRecord,
    Membership,
    Plan,
    Service,
    Student,
)
from src.utils import day_bounds, hhmm, iso, local_now, local_today, parse_date

logger = logging.getLogger(__name__)

ATTENDANCE_STATUSES = ("present", "absent", "late")
SUGGESTED_LIMIT = 10
SEARCH_LIMIT = 5
SEARCH_MIN_CHARS = 2

# Orden del roster después de "presente primero"
_TYPE_RANK = {"enrolled": 0, "booked": 0, "suggested": 1, "manual": 1}


def toggle_status(status: Optional[str]) -> str:
    """present -> absent; cualquier otro estado -> present."""
    return "absent" if status == "present" else "present"


def _roster_item(student: Student, kind: str, status: str = "absent") -> Dict[str, Any]:
    return {
        "id": student.id,
        "first_name": student.first_name,
        "last_name": student.last_name or "",
        "status": status,
        "type": kind,
        "existing_record_id": None,
    }


def _roster_sort_key(item: Dict[str, Any]):
    return (
        0 if item["status"] == "present" else 1,
        _TYPE_RANK.get(item["type"], 1),
        (item["first_name"] or "").casefold(),
    )


class AttendanceService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)

    # =========================================================================
    # CLASES DEL DÍA
    # =========================================================================

    def list_class_groups(self, ctx, day: Any = None) -> List[Dict[str, Any]]:
        """Citas del día agrupadas por (HH:MM, servicio)."""
        d = parse_date(day) if day else local_today()
        if d is None:
            raise ValidationError("Fecha inválida")
        start, end = day_bounds(d)
        stmt = (
            select(Appointment)
            .where(
                Appointment.organization_id == self._org_id(ctx),
                Appointment.start_time >= start,
                Appointment.start_time < end,
            )
            .order_by(Appointment.start_time, Appointment.id)
        )
        if ctx.branch_scope:
            stmt = stmt.where(Appointment.branch_id == ctx.branch_scope)
        appointments = self.db.scalars(stmt).all()
        if not appointments:
            return []

        service_ids = {a.service_id for a in appointments if a.service_id}
        service_names: Dict[int, str] = {}
        if service_ids:
            service_names = dict(
                self.db.execute(select(Service.id, Service.name).where(Service.id.in_(service_ids))).all()
            )
        profiles, professionals = load_teacher_names(
            self.db,
            [a.profile_id for a in appointments],
            [a.professional_id for a in appointments],
        )
        attendees = load_attendees(self.db, [a.id for a in appointments])

        groups: Dict[str, Dict[str, Any]] = {}
        group_students: Dict[str, set] = {}
        for a in appointments:
            key = f"{hhmm(a.start_time)}-{a.service_id or 'none'}"
            if key not in groups:
                groups[key] = {
                    "id": a.id,
                    "key": key,
                    "start_time": iso(a.start_time),
                    "time": hhmm(a.start_time),
                    "service_id": a.service_id,
                    "service_name": service_names.get(a.service_id) or "Clase",
                    "teacher_name": teacher_name_for(a, profiles, professionals),
                    "appointment_ids": [],
                }
                group_students[key] = set()
            groups[key]["appointment_ids"].append(a.id)
            group_students[key].update(s.id for s in attendees.get(a.id, []))

        out = []
        for key, group in groups.items():
            group["appointment_count"] = len(group["appointment_ids"])
            group["student_count"] = len(group_students[key])
            out.append(group)
        return out

    # =========================================================================
    # ROSTER
    # =========================================================================

    def _group_appointments(self, ctx, appointment_ids: Iterable[Any]) -> List[Appointment]:
        if appointment_ids is None:
            appointment_ids = []
        # Un string se iteraría carácter por carácter
        if not isinstance(appointment_ids, (list, tuple)):
            raise ValidationError("Cita inválida")
        ids: List[int] = []
        for x in appointment_ids:
            try:
                aid = int(x)
            except (TypeError, ValueError):
                raise ValidationError("Cita inválida")
            if aid not in ids:
                ids.append(aid)
        if not ids:
            raise ValidationError("Selecciona una clase")
        rows = self.db.scalars(
            select(Appointment).where(
                Appointment.id.in_(ids), Appointment.organization_id == self._org_id(ctx)
            )
        ).all()
        by_id = {a.id: a for a in rows}
        if len(by_id) != len(ids):
            raise NotFoundError("Clase no encontrada")
        return [by_id[i] for i in ids]

    def _enrolled_students(self, ctx, service_id: int, on_day: date) -> List[Student]:
        stmt = (
            select(Student)
            .join(Membership, Membership.student_id == Student.id)
            .join(Plan, Plan.id == Membership.plan_id)
            .where(
                Membership.organization_id == self._org_id(ctx),
                Membership.status == "active",
                Membership.end_date >= on_day,
                plan_covers_service(int(service_id)),
            )
            .distinct()
        )
        return list(self.db.scalars(stmt).all())

    def build_roster(self, ctx, appointment_ids: Iterable[Any]) -> Dict[str, Any]:
        appointments = self._group_appointments(ctx, appointment_ids)
        canonical = appointments[0]
        ids = [a.id for a in appointments]
        service_id = canonical.service_id
        on_day = canonical.start_time.date() if canonical.start_time else local_today()

        roster: List[Dict[str, Any]] = []
        seen = set()
        if service_id:
            for s in self._enrolled_students(ctx, service_id, on_day):
                if s.id not in seen:
                    seen.add(s.id)
                    roster.append(_roster_item(s, "enrolled"))

        for students in load_attendees(self.db, ids).values():
            for s in students:
                if s.id not in seen:
                    seen.add(s.id)
                    roster.append(_roster_item(s, "booked"))

        is_open_class = False
        if not roster:
            is_open_class = True
            recent = self.db.scalars(
                select(Student)
                .where(Student.organization_id == self._org_id(ctx))
                .order_by(Student.created_at.desc(), Student.id.desc())
                .limit(SUGGESTED_LIMIT)
            ).all()
            for s in recent:
                seen.add(s.id)
                roster.append(_roster_item(s, "suggested"))

        records = self.db.scalars(
            select(AttendanceRecord)
            .where(AttendanceRecord.appointment_id.in_(ids))
            .order_by(AttendanceRecord.updated_at, AttendanceRecord.id)
        ).all()
        # El registro de la cita canónica manda sobre los de las demás
        record_map: Dict[int, AttendanceRecord] = {}
        for rec in records:
            current = record_map.get(rec.student_id)
            if current is None or current.appointment_id != canonical.id:
                record_map[rec.student_id] = rec

        for item in roster:
            rec = record_map.get(item["id"])
            if rec is not None:
                item["status"] = rec.status
                item["existing_record_id"] = rec.id

        missing = [sid for sid in record_map if sid not in seen]
        if missing:
            for s in self.db.scalars(select(Student).where(Student.id.in_(missing))).all():
                rec = record_map[s.id]
                item = _roster_item(s, "manual", rec.status)
                item["existing_record_id"] = rec.id
                roster.append(item)

        roster.sort(key=_roster_sort_key)
        return {
            "appointment_ids": ids,
            "service_id": service_id,
            "is_open_class": is_open_class,
            "attendees": roster,
        }

    # =========================================================================
    # BÚSQUEDA
    # =========================================================================

    def search_students(self, ctx, query: Any, exclude_ids: Optional[Iterable[Any]] = None) -> List[Dict[str, Any]]:
        q = str(query or "").strip()
        if len(q) < SEARCH_MIN_CHARS:
            return []
        exclude = set()
        for x in exclude_ids or []:
            try:
                exclude.add(int(x))
            except (TypeError, ValueError):
                continue
        pattern = f"%{q.lower()}%"
        stmt = (
            select(Student)
            .where(
                Student.organization_id == self._org_id(ctx),
                or_(
                    func.lower(Student.first_name).like(pattern),
                    func.lower(Student.last_name).like(pattern),
                ),
            )
            .order_by(Student.first_name, Student.id)
        )
        if exclude:
            stmt = stmt.where(Student.id.not_in(exclude))
        rows = self.db.scalars(stmt.limit(SEARCH_LIMIT)).all()
        return [{"id": s.id, "first_name": s.first_name, "last_name": s.last_name or ""} for s in rows]

    # =========================================================================
    # GUARDADO
    # =========================================================================

    def save_attendance(self, ctx, appointment_ids: Iterable[Any], rows: Any) -> Dict[str, Any]:
        """Upsert por (cita canónica, alumno). Repetir el guardado no duplica filas."""
        if not isinstance(rows, list) or not rows:
            raise ValidationError("No hay alumnos para guardar")
        appointments = self._group_appointments(ctx, appointment_ids)
        canonical = appointments[0]
        org_id = self._org_id(ctx)

        clean: Dict[int, str] = {}
        for row in rows:
            if not isinstance(row, dict):
                raise ValidationError("Fila de asistencia inválida")
            try:
                sid = int(row.get("student_id") if row.get("student_id") is not None else row.get("id"))
            except (TypeError, ValueError):
                raise ValidationError("Alumno inválido")
            status = str(row.get("status") or "").strip().lower()
            if status not in ATTENDANCE_STATUSES:
                raise ValidationError(f"Estado de asistencia inválido: {status or 'vacío'}")
            clean[sid] = status

        found = set(
            self.db.scalars(
                select(Student.id).where(Student.id.in_(clean.keys()), Student.organization_id == org_id)
            ).all()
        )
        if len(found) != len(clean):
            raise NotFoundError("Alumno no encontrado")

        now = local_now()
        with self.unit_of_work():
            existing = {
                r.student_id: r
                for r in self.db.scalars(
                    select(AttendanceRecord).where(
                        AttendanceRecord.appointment_id == canonical.id,
                        AttendanceRecord.student_id.in_(clean.keys()),
                    )
                ).all()
            }
            for sid, status in clean.items():
                rec = existing.get(sid)
                if rec is None:
                    self.db.add(
                        AttendanceRecord(
                            organization_id=org_id,
                            appointment_id=canonical.id,
                            student_id=sid,
                            status=status,
                            marked_by=ctx.user_id,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                else:
                    rec.status = status
                    rec.marked_by = ctx.user_id
                    rec.updated_at = now

        present = sum(1 for s in clean.values() if s == "present")
        late = sum(1 for s in clean.values() if s == "late")
        total = len(clean)
        late_part = f", {late} tardanzas" if late > 0 else ""
        mensaje = f"¡Asistencia guardada! {present} presentes{late_part} de {total} alumnos."
        logger.info(
            f"Asistencia guardada cita={canonical.id} org={org_id}: "
            f"{present} presentes, {late} tardanzas, {total} total"
        )
        return {
            "appointment_id": canonical.id,
            "present": present,
            "late": late,
            "total": total,
            "mensaje": mensaje,
        }
