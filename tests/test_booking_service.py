from datetime import date, datetime, time

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from src.models.orm_models import (
    Appointment,
    AppointmentAttendee,
    StaffSchedule,
    Transaction,
)
from src.services.base import NotFoundError, ValidationError
from src.services.booking_service import BookingService, js_day_of_week

pytestmark = pytest.mark.unit

MONDAY = date(2026, 3, 2)


@pytest.fixture
def svc(db_session):
    return BookingService(db_session)


@pytest.fixture
def monday_schedule(db_session, studio):
    db_session.add(
        StaffSchedule(
            organization_id=studio.org_id,
            profile_id=studio.teacher_id,
            branch_id=studio.branch_id,
            day_of_week=1,
            start_time=time(9, 0),
            end_time=time(17, 0),
        )
    )
    db_session.commit()


def _booking(studio, **overrides):
    data = {
        "service_id": studio.salsa_id,
        "teacher_id": studio.teacher_id,
        "teacher_type": "system",
        "student_ids": [studio.ana_id, studio.beto_id],
        "date": MONDAY.isoformat(),
        "time": "10:00",
        "payment_method": "cash",
    }
    data.update(overrides)
    return data


def _count(db_session, model, *where):
    return db_session.scalar(select(func.count()).select_from(model).where(*where))


def test_js_day_of_week_starts_on_sunday():
    assert js_day_of_week(date(2026, 3, 1)) == 0
    assert js_day_of_week(MONDAY) == 1
    assert js_day_of_week(date(2026, 3, 7)) == 6


class TestPrivateClass:
    def test_staff_without_schedule_is_private(self, svc, owner_ctx, studio):
        teacher = {"id": studio.teacher_id, "type": "system"}
        assert svc.is_private_class(owner_ctx, teacher, MONDAY, "10:00") is True

    @pytest.mark.parametrize(
        "hour,expected",
        [("08:59", True), ("09:00", False), ("10:00", False), ("16:59", False), ("17:00", True), ("18:00", True)],
    )
    def test_inside_schedule_is_regular(self, svc, owner_ctx, studio, monday_schedule, hour, expected):
        teacher = {"id": studio.teacher_id, "type": "system"}
        assert svc.is_private_class(owner_ctx, teacher, MONDAY, hour, studio.branch_id) is expected

    def test_other_weekday_has_no_schedule(self, svc, owner_ctx, studio, monday_schedule):
        teacher = {"id": studio.teacher_id, "type": "system"}
        assert svc.is_private_class(owner_ctx, teacher, date(2026, 3, 3), "10:00") is True

    def test_external_professional_is_never_private(self, svc, owner_ctx, studio):
        teacher = {"id": studio.professional_id, "type": "professional"}
        assert svc.is_private_class(owner_ctx, teacher, MONDAY, "22:00") is False
        assert svc.is_private_class(owner_ctx, None, MONDAY, "22:00") is False

    def test_check_private_class_resolves_teacher(self, svc, owner_ctx, studio, monday_schedule):
        res = svc.check_private_class(owner_ctx, studio.teacher_id, "system", "2026-03-02", "18:00")

        assert res["is_private"] is True
        assert res["teacher"]["full_name"] == "Carla Profe"

    def test_check_private_class_rejects_bad_time(self, svc, owner_ctx, studio):
        with pytest.raises(ValidationError):
            svc.check_private_class(owner_ctx, studio.teacher_id, "system", "2026-03-02", "tarde")


class TestSaveAppointment:
    def test_creates_one_charge_per_uncovered_student(self, svc, db_session, owner_ctx, studio):
        res = svc.save_appointment(owner_ctx, _booking(studio))

        assert res["charges_created"] == 2
        assert res["covered_by_membership"] == 0
        appt = res["appointment"]
        assert appt["start_time"] == "2026-03-02T10:00:00"
        assert appt["end_time"] == "2026-03-02T11:00:00"
        assert appt["price_at_booking"] == 10.0
        assert [a["first_name"] for a in appt["attendees"]] == ["Ana", "Beto"]

        charges = db_session.scalars(select(Transaction).order_by(Transaction.student_id)).all()
        assert [t.student_id for t in charges] == [studio.ana_id, studio.beto_id]
        assert all(float(t.amount) == 10.0 for t in charges)
        assert all(t.payment_method == "cash" for t in charges)
        assert all(t.concept == "Clase: Salsa" for t in charges)

    def test_member_is_not_charged(self, svc, db_session, owner_ctx, studio, make_membership):
        make_membership(studio.ana_id)

        res = svc.save_appointment(owner_ctx, _booking(studio, payment_method="card"))

        assert res["charges_created"] == 1
        assert res["covered_by_membership"] == 1
        assert "1 cubierto(s) por membresía" in res["mensaje"]
        tx = db_session.scalars(select(Transaction)).all()
        assert [(t.student_id, t.payment_method) for t in tx] == [(studio.beto_id, "card")]

    def test_zero_price_service_still_records_charges(self, svc, db_session, owner_ctx, studio):
        from src.models.orm_models import Service

        free = Service(organization_id=studio.org_id, name="Clase abierta", price=0)
        db_session.add(free)
        db_session.commit()

        res = svc.save_appointment(owner_ctx, _booking(studio, service_id=free.id))

        assert res["charges_created"] == 2
        assert _count(db_session, Transaction, Transaction.amount == 0) == 2

    def test_edit_replaces_attendees_without_new_charges(self, svc, db_session, owner_ctx, studio):
        created = svc.save_appointment(owner_ctx, _booking(studio))
        appt_id = created["appointment"]["id"]

        res = svc.save_appointment(
            owner_ctx,
            _booking(studio, student_ids=[studio.beto_id], time="11:30", service_id=studio.tango_id),
            appointment_id=appt_id,
        )

        assert res["charges_created"] == 0
        assert res["mensaje"] == "Cita actualizada correctamente"
        assert res["appointment"]["service_name"] == "Tango"
        assert res["appointment"]["time"] == "11:30"
        assert [a["id"] for a in res["appointment"]["attendees"]] == [studio.beto_id]
        assert _count(db_session, Transaction) == 2
        assert _count(db_session, AppointmentAttendee) == 1

    def test_no_students_fails_before_writing(self, svc, db_session, owner_ctx, studio):
        with pytest.raises(ValidationError, match="al menos un alumno"):
            svc.save_appointment(owner_ctx, _booking(studio, student_ids=[]))

        assert _count(db_session, Appointment) == 0
        assert _count(db_session, Transaction) == 0

    def test_unknown_student_rolls_nothing(self, svc, db_session, owner_ctx, studio):
        with pytest.raises(NotFoundError):
            svc.save_appointment(owner_ctx, _booking(studio, student_ids=[studio.ana_id, 9999]))

        assert _count(db_session, Appointment) == 0

    def test_unknown_teacher(self, svc, owner_ctx, studio):
        with pytest.raises(NotFoundError, match="Profesor"):
            svc.save_appointment(owner_ctx, _booking(studio, teacher_id=9999))

    def test_invalid_payment_method(self, svc, owner_ctx, studio):
        with pytest.raises(ValidationError, match="Método de pago"):
            svc.save_appointment(owner_ctx, _booking(studio, payment_method="bitcoin"))

    def test_professional_teacher_fills_professional_column(self, svc, db_session, owner_ctx, studio):
        res = svc.save_appointment(
            owner_ctx,
            _booking(studio, teacher_id=studio.professional_id, teacher_type="professional", time="22:00"),
        )

        appt = db_session.get(Appointment, res["appointment"]["id"])
        assert appt.profile_id is None
        assert appt.professional_id == studio.professional_id
        assert appt.is_private_class is False
        assert res["appointment"]["teacher"] == {
            "id": studio.professional_id,
            "type": "professional",
            "name": "Pablo Externo",
        }

    def test_private_flag_from_schedule(self, svc, db_session, owner_ctx, studio, monday_schedule):
        inside = svc.save_appointment(owner_ctx, _booking(studio, time="10:00", branch_id=studio.branch_id))
        outside = svc.save_appointment(owner_ctx, _booking(studio, time="18:00", branch_id=studio.branch_id))

        assert inside["appointment"]["is_private_class"] is False
        assert outside["appointment"]["is_private_class"] is True

    def test_custom_duration(self, svc, owner_ctx, studio):
        res = svc.save_appointment(owner_ctx, _booking(studio, duration_minutes=90))
        assert res["appointment"]["end_time"] == "2026-03-02T11:30:00"

        with pytest.raises(ValidationError, match="Duración"):
            svc.save_appointment(owner_ctx, _booking(studio, duration_minutes=0))

    def test_delete_cascades_attendees(self, svc, db_session, owner_ctx, studio):
        res = svc.save_appointment(owner_ctx, _booking(studio))

        svc.delete_appointment(owner_ctx, res["appointment"]["id"])

        assert _count(db_session, Appointment) == 0
        assert _count(db_session, AppointmentAttendee) == 0
        # los cobros quedan en el libro
        assert _count(db_session, Transaction) == 2


class TestListing:
    def test_list_with_stats_and_filters(self, svc, owner_ctx, studio, make_appointment):
        make_appointment(datetime(2026, 3, 2, 10), student_ids=[studio.ana_id], profile_id=studio.teacher_id)
        make_appointment(
            datetime(2026, 3, 3, 18),
            service_id=studio.tango_id,
            student_ids=[studio.ana_id, studio.beto_id],
            professional_id=studio.professional_id,
        )
        make_appointment(datetime(2026, 3, 4, 9), student_ids=[studio.beto_id], price=0)

        res = svc.list_appointments(owner_ctx, "2026-03-02", "2026-03-03")

        assert [i["time"] for i in res["items"]] == ["10:00", "18:00"]
        assert res["stats"] == {"total": 2, "by_membership": 0, "paid": 2, "unique_students": 2}

        by_teacher = svc.list_appointments(
            owner_ctx, "2026-03-01", "2026-03-08", teacher_id=studio.professional_id, teacher_type="professional"
        )
        assert [i["service_name"] for i in by_teacher["items"]] == ["Tango"]

        week = svc.list_appointments(owner_ctx, "2026-03-01", "2026-03-08")
        assert week["stats"]["by_membership"] == 1

    def test_unassigned_teacher_label(self, svc, owner_ctx, studio, make_appointment):
        make_appointment(datetime(2026, 3, 2, 10), student_ids=[studio.ana_id])

        item = svc.list_appointments(owner_ctx, "2026-03-02")["items"][0]

        assert item["teacher"] is None
        assert item["teacher_name"] == "Sin asignar"

    def test_bad_range(self, svc, owner_ctx):
        with pytest.raises(ValidationError):
            svc.list_appointments(owner_ctx, "2026-03-05", "2026-03-01")

    def test_available_teachers(self, svc, owner_ctx, studio):
        teachers = svc.list_available_teachers(owner_ctx)

        assert {(t["type"], t["full_name"]) for t in teachers} == {
            ("system", "Diana Dueña"),
            ("system", "Carla Profe"),
            ("professional", "Pablo Externo"),
        }


def test_appointment_cannot_have_two_teachers(db_session, studio):
    db_session.add(
        Appointment(
            organization_id=studio.org_id,
            service_id=studio.salsa_id,
            profile_id=studio.teacher_id,
            professional_id=studio.professional_id,
            start_time=datetime(2026, 3, 2, 10),
            price_at_booking=10,
        )
    )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()
