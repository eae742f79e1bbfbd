from datetime import datetime, time, timedelta

import pytest
from sqlalchemy import func, select

from src.models.orm_models import AttendanceRecord, Student
from src.services.attendance_service import AttendanceService, toggle_status
from src.services.base import NotFoundError, ValidationError
from src.utils import local_today

pytestmark = pytest.mark.unit


@pytest.fixture
def svc(db_session):
    return AttendanceService(db_session)


@pytest.fixture
def today_at():
    today = local_today()

    def _at(hour, minute=0):
        return datetime.combine(today, time(hour, minute))

    return _at


@pytest.fixture
def cleo(db_session, studio):
    s = Student(organization_id=studio.org_id, first_name="Cleo", last_name="Costa")
    db_session.add(s)
    db_session.commit()
    return s.id


def _records(db_session):
    return db_session.scalar(select(func.count()).select_from(AttendanceRecord))


def test_toggle_status():
    assert toggle_status("present") == "absent"
    assert toggle_status("absent") == "present"
    assert toggle_status("late") == "present"
    assert toggle_status(None) == "present"


class TestClassGroups:
    def test_groups_by_time_and_service(self, svc, owner_ctx, studio, make_appointment, today_at):
        first = make_appointment(today_at(19), student_ids=[studio.ana_id], profile_id=studio.teacher_id)
        second = make_appointment(today_at(19), student_ids=[studio.ana_id, studio.beto_id])
        tango = make_appointment(today_at(19), service_id=studio.tango_id, student_ids=[studio.beto_id])
        late = make_appointment(today_at(20, 30))

        groups = svc.list_class_groups(owner_ctx)

        assert [g["key"] for g in groups] == [
            f"19:00-{studio.salsa_id}",
            f"19:00-{studio.tango_id}",
            f"20:30-{studio.salsa_id}",
        ]
        salsa = groups[0]
        assert salsa["id"] == first
        assert salsa["appointment_ids"] == [first, second]
        assert salsa["appointment_count"] == 2
        assert salsa["student_count"] == 2
        assert salsa["service_name"] == "Salsa"
        assert salsa["teacher_name"] == "Carla Profe"
        assert groups[1]["appointment_ids"] == [tango]
        assert groups[2]["appointment_ids"] == [late]
        assert groups[2]["student_count"] == 0

    def test_grouping_is_stable(self, svc, owner_ctx, studio, make_appointment, today_at):
        make_appointment(today_at(19), student_ids=[studio.ana_id])
        make_appointment(today_at(19), student_ids=[studio.beto_id])

        assert svc.list_class_groups(owner_ctx) == svc.list_class_groups(owner_ctx)

    def test_day_without_classes(self, svc, owner_ctx, studio, make_appointment, today_at):
        make_appointment(today_at(19), student_ids=[studio.ana_id])
        tomorrow = (local_today() + timedelta(days=1)).isoformat()

        assert svc.list_class_groups(owner_ctx, tomorrow) == []

    def test_bad_day(self, svc, owner_ctx):
        with pytest.raises(ValidationError):
            svc.list_class_groups(owner_ctx, "ayer")


class TestRoster:
    def test_enrolled_and_booked(self, svc, owner_ctx, studio, make_appointment, make_membership, today_at):
        make_membership(studio.ana_id)
        appt = make_appointment(today_at(19), student_ids=[studio.beto_id])

        roster = svc.build_roster(owner_ctx, [appt])

        assert roster["is_open_class"] is False
        assert roster["service_id"] == studio.salsa_id
        assert [(a["first_name"], a["type"], a["status"]) for a in roster["attendees"]] == [
            ("Ana", "enrolled", "absent"),
            ("Beto", "booked", "absent"),
        ]

    def test_student_enrolled_and_booked_appears_once(
        self, svc, owner_ctx, studio, make_appointment, make_membership, today_at
    ):
        make_membership(studio.ana_id)
        appt = make_appointment(today_at(19), student_ids=[studio.ana_id])

        attendees = svc.build_roster(owner_ctx, [appt])["attendees"]

        assert [(a["id"], a["type"]) for a in attendees] == [(studio.ana_id, "enrolled")]

    def test_open_class_suggests_recent_students(self, svc, owner_ctx, studio, make_appointment, today_at):
        appt = make_appointment(today_at(19), service_id=studio.tango_id)

        roster = svc.build_roster(owner_ctx, [appt])

        assert roster["is_open_class"] is True
        assert {a["type"] for a in roster["attendees"]} == {"suggested"}
        assert [a["first_name"] for a in roster["attendees"]] == ["Ana", "Beto"]

    def test_saved_status_and_present_first(self, svc, owner_ctx, studio, make_appointment, make_membership, today_at):
        make_membership(studio.ana_id)
        appt = make_appointment(today_at(19), student_ids=[studio.beto_id])
        svc.save_attendance(
            owner_ctx,
            [appt],
            [{"student_id": studio.ana_id, "status": "absent"}, {"student_id": studio.beto_id, "status": "present"}],
        )

        attendees = svc.build_roster(owner_ctx, [appt])["attendees"]

        assert [(a["first_name"], a["status"]) for a in attendees] == [("Beto", "present"), ("Ana", "absent")]
        assert all(a["existing_record_id"] for a in attendees)

    def test_manual_student_from_saved_record(self, svc, owner_ctx, studio, make_appointment, today_at, cleo):
        appt = make_appointment(today_at(19), student_ids=[studio.ana_id])
        svc.save_attendance(owner_ctx, [appt], [{"id": cleo, "status": "late"}])

        attendees = svc.build_roster(owner_ctx, [appt])["attendees"]

        manual = [a for a in attendees if a["id"] == cleo]
        assert len(manual) == 1
        assert manual[0]["type"] == "manual"
        assert manual[0]["status"] == "late"

    def test_unknown_appointment(self, svc, owner_ctx, studio):
        with pytest.raises(NotFoundError):
            svc.build_roster(owner_ctx, [9999])
        with pytest.raises(ValidationError):
            svc.build_roster(owner_ctx, [])


class TestSaveAttendance:
    def test_upsert_is_idempotent(self, svc, db_session, owner_ctx, studio, make_appointment, today_at):
        appt = make_appointment(today_at(19), student_ids=[studio.ana_id, studio.beto_id])
        rows = [
            {"student_id": studio.ana_id, "status": "present"},
            {"student_id": studio.beto_id, "status": "late"},
        ]

        first = svc.save_attendance(owner_ctx, [appt], rows)
        svc.save_attendance(owner_ctx, [appt], rows)

        assert _records(db_session) == 2
        assert first["present"] == 1
        assert first["late"] == 1
        assert first["total"] == 2
        assert first["mensaje"] == "¡Asistencia guardada! 1 presentes, 1 tardanzas de 2 alumnos."

        rows[1]["status"] = "absent"
        res = svc.save_attendance(owner_ctx, [appt], rows)

        assert _records(db_session) == 2
        assert res["mensaje"] == "¡Asistencia guardada! 1 presentes de 2 alumnos."
        beto = db_session.scalar(select(AttendanceRecord).where(AttendanceRecord.student_id == studio.beto_id))
        db_session.refresh(beto)
        assert beto.status == "absent"
        assert beto.marked_by == studio.owner_id

    def test_records_attach_to_canonical_appointment(
        self, svc, db_session, owner_ctx, studio, make_appointment, today_at
    ):
        a1 = make_appointment(today_at(19), student_ids=[studio.ana_id])
        a2 = make_appointment(today_at(19), student_ids=[studio.beto_id])

        res = svc.save_attendance(
            owner_ctx, [a1, a2], [{"student_id": studio.beto_id, "status": "present"}]
        )

        assert res["appointment_id"] == a1
        rec = db_session.scalar(select(AttendanceRecord))
        assert rec.appointment_id == a1

    @pytest.mark.parametrize("rows", [[], None, [{"student_id": 1, "status": "maybe"}]])
    def test_invalid_rows(self, svc, db_session, owner_ctx, studio, make_appointment, today_at, rows):
        appt = make_appointment(today_at(19), student_ids=[studio.ana_id])

        with pytest.raises(ValidationError):
            svc.save_attendance(owner_ctx, [appt], rows)
        assert _records(db_session) == 0

    def test_appointment_ids_must_be_a_list(self, svc, db_session, owner_ctx, studio, make_appointment, today_at):
        appt = make_appointment(today_at(19), student_ids=[studio.ana_id])

        with pytest.raises(ValidationError, match="Cita inválida"):
            svc.save_attendance(owner_ctx, str(appt), [{"student_id": studio.ana_id, "status": "present"}])
        assert _records(db_session) == 0

    def test_unknown_student(self, svc, owner_ctx, studio, make_appointment, today_at):
        appt = make_appointment(today_at(19), student_ids=[studio.ana_id])

        with pytest.raises(NotFoundError):
            svc.save_attendance(owner_ctx, [appt], [{"student_id": 9999, "status": "present"}])


class TestSearch:
    def test_min_chars(self, svc, owner_ctx, studio):
        assert svc.search_students(owner_ctx, "a") == []
        assert svc.search_students(owner_ctx, "  ") == []

    def test_matches_first_or_last_name(self, svc, owner_ctx, studio):
        assert [s["id"] for s in svc.search_students(owner_ctx, "AN")] == [studio.ana_id]
        assert [s["id"] for s in svc.search_students(owner_ctx, "brav")] == [studio.beto_id]

    def test_excludes_roster_ids(self, svc, owner_ctx, studio):
        assert svc.search_students(owner_ctx, "an", exclude_ids=[studio.ana_id]) == []

    def test_limit(self, svc, db_session, owner_ctx, studio):
        db_session.add_all(
            [Student(organization_id=studio.org_id, first_name=f"Mariana {i}", last_name="") for i in range(7)]
        )
        db_session.commit()

        assert len(svc.search_students(owner_ctx, "mari")) == 5
