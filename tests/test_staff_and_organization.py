from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from src.models.orm_models import BranchStaff, OrganizationInvitation, StaffSchedule
from src.services.base import NotFoundError, ValidationError
from src.services.organization_service import OrganizationService
from src.services.staff_service import StaffService
from src.utils import local_now

pytestmark = pytest.mark.unit


@pytest.fixture
def staff(db_session):
    return StaffService(db_session)


@pytest.fixture
def orgs(db_session):
    return OrganizationService(db_session)


def _week(**active):
    """Semana completa con los días indicados activos: _week(d1=("09:00", "17:00"))."""
    days = []
    for i in range(7):
        start_end = active.get(f"d{i}")
        days.append(
            {
                "day_of_week": i,
                "is_active": bool(start_end),
                "start_time": start_end[0] if start_end else "09:00",
                "end_time": start_end[1] if start_end else "18:00",
            }
        )
    return days


class TestStaffDirectory:
    def test_list_includes_owner_staff_and_professionals(self, staff, owner_ctx, studio):
        items = staff.list_staff(owner_ctx)

        assert [(i["full_name"], i["type"], i["role"]) for i in items] == [
            ("Carla Profe", "system", "staff"),
            ("Diana Dueña", "system", "owner"),
            ("Pablo Externo", "professional", "professional"),
        ]

    def test_create_professional(self, staff, owner_ctx):
        out = staff.create_professional(
            owner_ctx, {"full_name": "Rita Yoga", "email": "RITA@x.io", "base_salary": 300, "commission_percentage": 15}
        )

        assert out["email"] == "rita@x.io"
        assert out["commission_percentage"] == 15.0
        with pytest.raises(ValidationError):
            staff.create_professional(owner_ctx, {"full_name": "X", "commission_percentage": 120})

    def test_update_profile(self, staff, owner_ctx, studio):
        out = staff.update_staff_profile(
            owner_ctx, studio.teacher_id, "system", {"base_salary": "1200", "commission_percentage": 12.5, "phone": "555"}
        )

        assert out["base_salary"] == 1200.0
        assert out["commission_percentage"] == 12.5
        assert out["phone"] == "555"
        with pytest.raises(ValidationError):
            staff.update_staff_profile(owner_ctx, studio.teacher_id, "system", {"base_salary": -1})

    def test_unknown_type_or_person(self, staff, owner_ctx, studio):
        with pytest.raises(ValidationError):
            staff.get_staff_detail(owner_ctx, studio.teacher_id, "robot")
        with pytest.raises(NotFoundError):
            staff.get_staff_detail(owner_ctx, 9999, "professional")

    def test_detail_with_upcoming_classes_and_students(self, staff, owner_ctx, studio, make_appointment):
        make_appointment(local_now() + timedelta(days=1), profile_id=studio.teacher_id, student_ids=[studio.ana_id])
        make_appointment(datetime(2026, 1, 5, 10), profile_id=studio.teacher_id,
                         student_ids=[studio.ana_id, studio.beto_id])

        detail = staff.get_staff_detail(owner_ctx, studio.teacher_id, "system")

        assert detail["staff"]["full_name"] == "Carla Profe"
        assert [c["service_name"] for c in detail["upcoming_classes"]] == ["Salsa"]
        assert [s["first_name"] for s in detail["students"]] == ["Ana", "Beto"]


class TestReviews:
    def test_detail_lists_reviews_newest_first_with_average(self, staff, owner_ctx, studio):
        staff.add_review(owner_ctx, studio.teacher_id, 5, "Excelente", studio.ana_id)
        staff.add_review(owner_ctx, studio.teacher_id, "4", "  ")

        detail = staff.get_staff_detail(owner_ctx, studio.teacher_id, "system")

        assert [(r["rating"], r["comment"]) for r in detail["reviews"]] == [(4, ""), (5, "Excelente")]
        assert detail["reviews"][1]["student_id"] == studio.ana_id
        assert detail["staff"]["avg_rating"] == 4.5
        listed = {i["full_name"]: i["avg_rating"] for i in staff.list_staff(owner_ctx)}
        assert listed == {"Carla Profe": 4.5, "Diana Dueña": None, "Pablo Externo": None}

    def test_professionals_have_no_reviews(self, staff, owner_ctx, studio):
        detail = staff.get_staff_detail(owner_ctx, studio.professional_id, "professional")

        assert detail["reviews"] == []
        assert detail["staff"]["avg_rating"] is None

    @pytest.mark.parametrize("rating", [0, 6, "cinco", None, 3.5])
    def test_rating_must_be_between_one_and_five(self, staff, owner_ctx, studio, rating):
        with pytest.raises(ValidationError):
            staff.add_review(owner_ctx, studio.teacher_id, rating)

    def test_unknown_teacher_or_student(self, staff, owner_ctx, studio):
        with pytest.raises(NotFoundError):
            staff.add_review(owner_ctx, 9999, 5)
        with pytest.raises(NotFoundError, match="Alumno"):
            staff.add_review(owner_ctx, studio.teacher_id, 5, student_id=9999)


class TestBranchAssignments:
    def test_assign_is_idempotent_and_revocable(self, staff, db_session, owner_ctx, studio):
        first = staff.assign_branch(owner_ctx, studio.professional_id, "professional", studio.branch_id)
        again = staff.assign_branch(owner_ctx, studio.professional_id, "professional", studio.branch_id)

        assert first["created"] is True
        assert again == {"created": False, "mensaje": "Ya estaba asignado a esta sucursal"}
        listed = {i["full_name"]: i["branches"] for i in staff.list_staff(owner_ctx)}
        assert listed["Pablo Externo"] == [{"id": studio.branch_id, "name": "Sede Centro"}]

        staff.remove_branch(owner_ctx, studio.professional_id, "professional", studio.branch_id)
        assert db_session.scalar(select(func.count()).select_from(BranchStaff)) == 0

    def test_unknown_branch(self, staff, owner_ctx, studio):
        with pytest.raises(NotFoundError):
            staff.assign_branch(owner_ctx, studio.teacher_id, "system", 9999)

    def test_duplicate_assignment_rows_are_rejected(self, db_session, studio):
        db_session.add(BranchStaff(organization_id=studio.org_id, branch_id=studio.branch_id,
                                   profile_id=studio.teacher_id))
        db_session.commit()

        db_session.add(BranchStaff(organization_id=studio.org_id, branch_id=studio.branch_id,
                                   profile_id=studio.teacher_id))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_concurrent_assignment_reports_existing(self, staff, db_session, owner_ctx, studio, mocker):
        # La otra petición insertó la fila después de la consulta previa
        db_session.add(BranchStaff(organization_id=studio.org_id, branch_id=studio.branch_id,
                                   professional_id=studio.professional_id))
        db_session.commit()
        mocker.patch.object(db_session, "scalars", return_value=mocker.Mock(first=lambda: None))

        res = staff.assign_branch(owner_ctx, studio.professional_id, "professional", studio.branch_id)

        assert res == {"created": False, "mensaje": "Ya estaba asignado a esta sucursal"}
        mocker.stopall()
        assert db_session.scalar(select(func.count()).select_from(BranchStaff)) == 1


class TestWeeklySchedule:
    def test_default_week(self, staff, owner_ctx, studio):
        week = staff.get_weekly_schedule(owner_ctx, studio.teacher_id, "system", studio.branch_id)

        assert len(week) == 7
        assert week[0]["day_name"] == "Domingo"
        assert not any(d["is_active"] for d in week)

    def test_save_replaces_rows(self, staff, db_session, owner_ctx, studio):
        staff.save_weekly_schedule(owner_ctx, studio.teacher_id, "system", studio.branch_id,
                                   _week(d1=("09:00", "17:00"), d3=("10:00", "14:00")))
        res = staff.save_weekly_schedule(owner_ctx, studio.teacher_id, "system", studio.branch_id,
                                         _week(d1=("08:00", "12:00")))

        assert res["active_days"] == 1
        rows = db_session.scalars(select(StaffSchedule)).all()
        assert [(r.day_of_week, r.start_time.strftime("%H:%M")) for r in rows] == [(1, "08:00")]

        week = staff.get_weekly_schedule(owner_ctx, studio.teacher_id, "system", studio.branch_id)
        assert week[1] == {
            "day_of_week": 1,
            "day_name": "Lunes",
            "is_active": True,
            "start_time": "08:00",
            "end_time": "12:00",
        }

    def test_end_must_follow_start(self, staff, owner_ctx, studio):
        with pytest.raises(ValidationError, match="Lunes"):
            staff.save_weekly_schedule(owner_ctx, studio.teacher_id, "system", studio.branch_id,
                                       _week(d1=("17:00", "09:00")))

    def test_professionals_have_no_schedule(self, staff, owner_ctx, studio):
        with pytest.raises(ValidationError, match="profesionales externos"):
            staff.save_weekly_schedule(owner_ctx, studio.professional_id, "professional", studio.branch_id, _week())
        week = staff.get_weekly_schedule(owner_ctx, studio.professional_id, "professional", None)
        assert not any(d["is_active"] for d in week)


def test_create_invitation(staff, db_session, owner_ctx, studio):
    res = staff.create_invitation(owner_ctx, " Nueva@Estudio.test ")

    assert res["invitation"]["email"] == "nueva@estudio.test"
    assert res["invitation"]["status"] == "pending"
    assert db_session.scalar(select(OrganizationInvitation)).role == "staff"
    with pytest.raises(ValidationError):
        staff.create_invitation(owner_ctx, "sin-arroba")
    with pytest.raises(ValidationError):
        staff.create_invitation(owner_ctx, "a@b.c", role="super_admin")


class TestOrganization:
    def test_settings_and_branches(self, orgs, owner_ctx, studio):
        assert orgs.get_settings(owner_ctx)["name"] == "Estudio Uno"
        assert orgs.rename(owner_ctx, " Estudio Dos ")["name"] == "Estudio Dos"
        with pytest.raises(ValidationError):
            orgs.rename(owner_ctx, "")

        orgs.create_branch(owner_ctx, {"name": "Sede Norte", "address": "Calle 1"})
        assert [b["name"] for b in orgs.list_branches(owner_ctx)] == ["Sede Centro", "Sede Norte"]

    def test_platform_views(self, orgs, studio, make_appointment):
        make_appointment(datetime(2026, 3, 2, 10), student_ids=[studio.ana_id])

        stats = orgs.platform_stats()
        assert stats["total_organizations"] == 1
        assert stats["total_students"] == 2
        assert stats["total_appointments"] == 1
        assert stats["total_revenue"] == 0.0

        details = orgs.get_organization_details(studio.org_id)
        assert details["staff_count"] == 2
        assert [b["name"] for b in details["branches"]] == ["Sede Centro"]
        with pytest.raises(NotFoundError):
            orgs.get_organization_details(9999)
